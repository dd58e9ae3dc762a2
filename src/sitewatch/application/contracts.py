from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping
from urllib.parse import urlsplit

QUERY_URL_SCHEMES = ("postgresql", "postgres", "sqlite")


@dataclass(frozen=True)
class FetchRequest:
    url: str
    body: str | None = None

    @property
    def method(self) -> str:
        return "POST" if self.body else "GET"

    @property
    def is_query(self) -> bool:
        return is_query_url(self.url)


@dataclass(frozen=True)
class FetchedDocument:
    body: str | bytes
    url: str
    status: int = 200
    headers: Mapping[str, str] = field(default_factory=dict)
    requested_url: str | None = None


class HeaderScope(Mapping[str, str]):
    """Response headers with keys insensitive to case and to `-` versus `_`."""

    def __init__(self, headers: Mapping[str, Any] | None = None) -> None:
        self._headers: dict[str, str] = {}
        self._names: dict[str, str] = {}
        for name, value in (headers or {}).items():
            key = self._normalize(name)
            self._headers[key] = str(value)
            self._names.setdefault(key, str(name))

    @staticmethod
    def _normalize(name: str) -> str:
        return str(name).lower().replace("_", "-")

    def __getitem__(self, name: str) -> str:
        return self._headers[self._normalize(name)]

    def __iter__(self) -> Iterator[str]:
        return iter(self._names[key] for key in self._headers)

    def __len__(self) -> int:
        return len(self._headers)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self._normalize(name) in self._headers


def response_context(document: FetchedDocument) -> dict[str, Any]:
    return {
        "_url_": document.requested_url or document.url,
        "_response_": {
            "status": document.status,
            "headers": HeaderScope(document.headers),
            "url": document.url,
        },
    }


def event_response_context(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Response context for documents taken from an incoming event."""
    try:
        status = int(payload.get("status"))
    except (TypeError, ValueError):
        status = None
    headers = payload.get("headers")
    return {
        "_response_": {
            "status": status,
            "headers": HeaderScope(headers if isinstance(headers, Mapping) else None),
            "url": payload.get("url"),
        },
    }


def is_query_url(url: str) -> bool:
    scheme = urlsplit(url).scheme.lower()
    return scheme.split("+", 1)[0] in QUERY_URL_SCHEMES
