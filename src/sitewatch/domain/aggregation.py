import json
from typing import Any, Callable, Iterable, Mapping, Sequence

from src.config.logger_config import logger

UNKNOWN_VALUE = "unknown"
DEFAULT_AGGREGATE_LIMIT = 10

Payload = dict[str, Any]


def compact_payloads(payloads: Iterable[Mapping[str, Any]], keys: Sequence[str] | None) -> list[Payload]:
    """Merge payloads sharing the same projection onto `keys`.

    Fields whose value is "unknown" are dropped first, so they never shadow a
    known value. Later payloads win on conflicting keys; groups keep the
    order in which they were first seen.
    """
    if not keys:
        return [dict(payload) for payload in payloads]
    wanted = set(keys)
    groups: dict[str, Payload] = {}
    for payload in payloads:
        known = {key: value for key, value in payload.items() if value != UNKNOWN_VALUE}
        projection = {key: value for key, value in known.items() if key in wanted}
        group_key = json.dumps(projection, sort_keys=True, default=str)
        groups.setdefault(group_key, {}).update(known)
    return list(groups.values())


def digest_slices(
    payloads: Sequence[Mapping[str, Any]],
    limit: int = DEFAULT_AGGREGATE_LIMIT,
    extra_payload: Mapping[str, Any] | None = None,
) -> list[Payload]:
    if limit < 1:
        raise ValueError(f"aggregate limit must be positive, got {limit}")
    digests: list[Payload] = []
    for start in range(0, len(payloads), limit):
        digest: Payload = {
            "digest": True,
            "events": [{"payload": dict(payload)} for payload in payloads[start : start + limit]],
        }
        if extra_payload:
            digest.update(extra_payload)
        digests.append(digest)
    return digests


class EventAggregator:
    def __init__(
        self,
        aggregate: bool = False,
        limit: int = DEFAULT_AGGREGATE_LIMIT,
        extra_payload: Mapping[str, Any] | None = None,
        digest_extra_payload: Mapping[str, Any] | None = None,
        compact_keys: Sequence[str] | None = None,
        predicate: Callable[[Payload], bool] | None = None,
    ) -> None:
        self.aggregate = aggregate
        self.limit = limit
        self.extra_payload = dict(extra_payload or {})
        self.digest_extra_payload = dict(digest_extra_payload or {})
        self.compact_keys = list(compact_keys or [])
        self.predicate = predicate

    def emit(self, payload: Mapping[str, Any], buffer: list[Payload]) -> None:
        event_payload = dict(payload)
        if self.extra_payload:
            event_payload.update(self.extra_payload)
        buffer.append(event_payload)

    def prepare(self, buffer: Sequence[Payload]) -> list[Payload]:
        payloads = list(buffer)
        if self.compact_keys:
            logger.info("Compacting {} payloads with keys {}", len(payloads), self.compact_keys)
            payloads = compact_payloads(payloads, self.compact_keys)
        if self.predicate is not None:
            payloads = [payload for payload in payloads if self.predicate(payload)]
        return payloads

    def build_events(self, buffer: Sequence[Payload]) -> list[Payload]:
        payloads = self.prepare(buffer)
        if not payloads:
            return []
        if self.aggregate:
            digests = digest_slices(payloads, self.limit, self.digest_extra_payload)
            logger.info("Aggregated {} payloads into {} digest events", len(payloads), len(digests))
            return digests
        return payloads

    def flush(self, buffer: Sequence[Payload], create_event: Callable[[Payload], Any]) -> list[Payload]:
        events = self.build_events(buffer)
        for event in events:
            create_event(event)
        return events
