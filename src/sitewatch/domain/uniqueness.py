"""Decides whether an extracted payload is new or a repeat of a recent event.

In `on_change` mode the most recent stored events form a lookback window.
A payload matching an event of the window is not stored again; the matched
event gets its expiration pushed back instead. Digest events are searched
through their sub-event payloads.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Protocol, Sequence

from src.config.logger_config import logger
from src.sitewatch.domain.errors import ModeConfigurationError
from src.sitewatch.domain.models import RecentEvent

UNIQUENESS_LOOK_BACK = 200
UNIQUENESS_FACTOR = 3

MODE_ON_CHANGE = "on_change"
MODE_ALL = "all"
MODE_MERGE = "merge"
VALID_MODES = (MODE_ON_CHANGE, MODE_ALL, MODE_MERGE)


class RecentEventStore(Protocol):
    def recent_events(self, limit: int) -> Sequence[RecentEvent]: ...

    def refresh_expiration(self, event: RecentEvent, expires_at: datetime | None) -> None: ...


@dataclass(frozen=True)
class UniquenessDecision:
    is_new: bool
    reason: str
    matched_event_id: int | None = None


def normalize_mode(mode: str | None) -> str:
    value = (mode or "").strip()
    if value and value not in VALID_MODES:
        raise ModeConfigurationError(f"Illegal mode {value!r}: must be set to on_change, all or merge")
    return value


def lookback_window(num_tuples: int, configured: int | None = None) -> int:
    if configured is not None:
        return configured
    return max(UNIQUENESS_FACTOR * num_tuples, UNIQUENESS_LOOK_BACK)


def payloads_equal(one: Mapping[str, Any], two: Mapping[str, Any], uniqueness_keys: Iterable[str] | None = None) -> bool:
    if uniqueness_keys:
        keys = {str(key) for key in uniqueness_keys}
        return {k: v for k, v in one.items() if str(k) in keys} == {k: v for k, v in two.items() if str(k) in keys}
    return dict(one) == dict(two)


def _candidate_payloads(event: RecentEvent) -> Iterable[Mapping[str, Any]]:
    if not event.is_digest:
        yield event.payload
        return
    for sub_event in event.payload.get("events") or []:
        if isinstance(sub_event, Mapping) and isinstance(sub_event.get("payload"), Mapping):
            yield sub_event["payload"]


def _comparable(payload: Mapping[str, Any]) -> dict[str, Any]:
    # Stored payloads went through JSON; compare the new one in the same shape.
    return json.loads(json.dumps(payload))


class UniquenessEngine:
    def __init__(
        self,
        mode: str | None,
        store: RecentEventStore,
        uniqueness_keys: Sequence[str] | None = None,
        look_back: int | None = None,
        expiration: Callable[[], datetime | None] = lambda: None,
    ) -> None:
        self.mode = normalize_mode(mode)
        self.store = store
        self.uniqueness_keys = tuple(uniqueness_keys or ())
        self.look_back = look_back
        self.expiration = expiration

    @property
    def needs_lookback(self) -> bool:
        return self.mode == MODE_ON_CHANGE

    def load_window(self, num_tuples: int) -> list[RecentEvent]:
        """Most recent events first; empty unless the mode compares payloads."""
        if not self.needs_lookback:
            return []
        limit = lookback_window(num_tuples, self.look_back)
        return list(self.store.recent_events(limit))

    def find_match(self, window: Iterable[RecentEvent], payload: Mapping[str, Any]) -> RecentEvent | None:
        for event in window:
            for candidate in _candidate_payloads(event):
                if payloads_equal(candidate, payload, self.uniqueness_keys):
                    return event
        return None

    def store_payload(self, window: Iterable[RecentEvent], payload: Mapping[str, Any]) -> UniquenessDecision:
        if not self.needs_lookback:
            return UniquenessDecision(is_new=True, reason=f"mode_{self.mode or MODE_ALL}")

        found = self.find_match(window, _comparable(payload))
        if found is None:
            return UniquenessDecision(is_new=True, reason="no_match")

        self.store.refresh_expiration(found, self.expiration())
        logger.debug("Payload matches event {}; expiration refreshed", found.id)
        return UniquenessDecision(is_new=False, reason="duplicate_refreshed", matched_event_id=found.id)
