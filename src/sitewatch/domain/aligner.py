from typing import Any, Callable, Iterable, Iterator

from src.config.logger_config import logger
from src.sitewatch.domain.errors import NoTupleSizeError, UnevenSizeError
from src.sitewatch.domain.models import ExtractionRule, ExtractionSchema

RowTuple = dict[str, Any]
Resolver = Callable[[ExtractionRule], Iterable[Any]]


class Repeated:
    """A single value broadcast to every row."""

    __slots__ = ("value",)

    def __init__(self, value: Any) -> None:
        self.value = value

    @classmethod
    def first_of(cls, values: Iterable[Any]) -> "Repeated":
        # Only the first match is pulled; the resolver is not run any further.
        return cls(next(iter(values), None))

    def __repr__(self) -> str:
        return f"[{self.value!r}, ...]"


class ExtractionOutput:
    """Per-field value sequences aligned into rows of equal length."""

    def __init__(self) -> None:
        self._values: dict[str, list[Any] | Repeated] = {}
        self._size: int | None = None
        self.hidden_keys: list[str] = []

    @property
    def size(self) -> int | None:
        return self._size

    def __setitem__(self, name: str, values: list[Any] | Repeated) -> None:
        if not isinstance(values, Repeated):
            if self._size is not None and self._size != len(values):
                raise UnevenSizeError(
                    f"got an uneven size for {name!r}: {len(values)} values, expected {self._size}"
                )
            self._size = len(values)
        self._values[name] = values

    def __len__(self) -> int:
        return self._size or 0

    def __iter__(self) -> Iterator[RowTuple]:
        for index in range(self._size or 0):
            yield {
                name: values.value if isinstance(values, Repeated) else values[index]
                for name, values in self._values.items()
            }


def align(schema: ExtractionSchema, resolver: Resolver) -> ExtractionOutput:
    """Resolve every rule of `schema` and align the results into rows.

    `resolver` is called once per rule. Repeat rules keep only their first
    value. Raises `UnevenSizeError` when non-repeat rules disagree on their
    length (unless the schema allows unequal values, in which case an empty
    output is returned) and `NoTupleSizeError` when no rule sizes the rows.
    """
    output = ExtractionOutput()
    for name, rule in schema.rules.items():
        if rule.repeat:
            values: list[Any] | Repeated = Repeated.first_of(resolver(rule))
        else:
            values = list(resolver(rule))
        logger.debug("Values extracted for {}: {}", name, values)
        try:
            output[name] = values
        except UnevenSizeError:
            if not schema.allow_unequal_values:
                raise
            logger.warning("Skipping document with an uneven number of matches for {}", name)
            return ExtractionOutput()
        if rule.hidden:
            output.hidden_keys.append(name)

    if output.size is None:
        raise NoTupleSizeError("At least one non-repeat key is required")
    return output
