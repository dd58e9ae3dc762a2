from datetime import datetime
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

import aiohttp

from src.sitewatch.application.contracts import FetchedDocument, FetchRequest
from src.sitewatch.domain.models import RecentEvent


@runtime_checkable
class DocumentFetcherPort(Protocol):
    async def fetch(self, session: aiohttp.ClientSession, request: FetchRequest) -> FetchedDocument | None: ...
    """Fetch one document; None when it could not be retrieved."""


@runtime_checkable
class QueryConnectionPort(Protocol):
    def execute(self, url: str, query: str) -> list[dict[str, Any]]: ...
    """Run a query against the database behind `url`, reusing a live connection."""

    def close(self) -> None: ...


@runtime_checkable
class EventStorePort(Protocol):
    def recent_events(self, limit: int) -> Sequence[RecentEvent]: ...
    """Stored events of this agent, most recent first."""

    def create_event(self, payload: Mapping[str, Any], expires_at: datetime | None = None) -> RecentEvent: ...

    def refresh_expiration(self, event: RecentEvent, expires_at: datetime | None) -> None: ...

    def close(self) -> None: ...


@runtime_checkable
class TemplateRendererPort(Protocol):
    def render(self, expression: str, scope: Mapping[str, Any]) -> str: ...

    def evaluate(self, expression: str, scope: Mapping[str, Any]) -> Any: ...
    """Evaluate a boolean-ish expression, used for event filtering."""

    def validate(self, expression: str) -> None: ...
    """Raise SchemaError when `expression` is not a valid template."""

    def validate_expression(self, expression: str) -> None: ...
