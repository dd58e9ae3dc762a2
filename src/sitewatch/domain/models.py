from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class DocumentType(str, Enum):
    HTML = "html"
    XML = "xml"
    JSON = "json"
    TEXT = "text"


class ExtractionKind(str, Enum):
    CSS = "css"
    XPATH = "xpath"
    JSON_PATH = "path"
    REGEX = "regexp"


@dataclass(frozen=True)
class ExtractionRule:
    name: str
    kind: ExtractionKind
    selector: str | None = None
    path: str | None = None
    pattern: str | None = None
    value: str = "."
    index: int | str | None = None
    repeat: bool = False
    hidden: bool = False
    as_array: bool = False
    # Compiled selector/path/pattern and value expression, built once at validation.
    compiled: Any = field(default=None, compare=False, repr=False)
    compiled_value: Any = field(default=None, compare=False, repr=False)

    @property
    def expression(self) -> str:
        if self.kind in (ExtractionKind.CSS, ExtractionKind.XPATH):
            return self.selector or ""
        if self.kind is ExtractionKind.JSON_PATH:
            return self.path or ""
        return self.pattern or ""


@dataclass(frozen=True)
class ExtractionSchema:
    document_type: DocumentType
    rules: dict[str, ExtractionRule] = field(default_factory=dict)
    use_namespaces: bool = True
    allow_unequal_values: bool = False

    @property
    def full_json_passthrough(self) -> bool:
        return self.document_type is DocumentType.JSON and not self.rules

    @property
    def hidden_keys(self) -> tuple[str, ...]:
        return tuple(name for name, rule in self.rules.items() if rule.hidden)


@dataclass(frozen=True)
class RecentEvent:
    id: int
    payload: dict[str, Any]
    expires_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_digest(self) -> bool:
        return bool(self.payload.get("digest"))


@dataclass(frozen=True)
class CheckSummary:
    documents_total: int
    documents_failed: int
    tuples_total: int
    new_total: int
    duplicate_total: int
    events_created: int

    def combined(self, other: "CheckSummary") -> "CheckSummary":
        return CheckSummary(
            documents_total=self.documents_total + other.documents_total,
            documents_failed=self.documents_failed + other.documents_failed,
            tuples_total=self.tuples_total + other.tuples_total,
            new_total=self.new_total + other.new_total,
            duplicate_total=self.duplicate_total + other.duplicate_total,
            events_created=self.events_created + other.events_created,
        )
