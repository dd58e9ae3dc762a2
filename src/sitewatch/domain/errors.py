from typing import Sequence


class SiteWatchError(Exception):
    """Base class for every error raised by the extraction core."""


class SchemaError(SiteWatchError):
    """Raised when agent options or an extraction rule are malformed.

    Validation collects every problem before raising so a single error lists
    all of them.
    """

    def __init__(self, errors: Sequence[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors: list[str] = list(errors)
        super().__init__("; ".join(self.errors))


class ModeConfigurationError(SiteWatchError):
    """Raised for an unrecognized `mode`; aborts the whole invocation."""


class ExtractionTypeError(SiteWatchError):
    """Raised when a selector resolves to an unexpected shape at runtime."""


class UnevenSizeError(SiteWatchError):
    """Raised when non-repeat extractions disagree on the number of matches."""


class NoTupleSizeError(SiteWatchError):
    """Raised when a schema has no non-repeat extraction to size the rows."""


class FetchError(SiteWatchError):
    """Raised by fetch adapters when a document cannot be retrieved."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status
