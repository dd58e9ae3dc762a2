import asyncio
from datetime import datetime, timezone
from typing import Any, Sequence

import aiohttp
from aiohttp import (
    ClientConnectorError,
    ClientPayloadError,
    ClientResponseError,
    ServerDisconnectedError,
)
from src.config.logger_config import logger

from src.sitewatch.application.contracts import FetchedDocument, FetchRequest
from src.sitewatch.domain.errors import FetchError
from src.sitewatch.domain.models import DocumentType
from src.sitewatch.infrastructure.raw_sink import RawFetchJsonlSink

DEFAULT_USER_AGENT = "sitewatch/0.1 (+https://github.com/sitewatch)"
_BINARY_TYPES = (DocumentType.HTML, DocumentType.XML)


class HttpDocumentClient:
    """Fetches documents over HTTP with retries on server errors and dropped connections."""

    def __init__(
        self,
        document_type: DocumentType = DocumentType.HTML,
        success_codes: Sequence[int] = (),
        headers: dict[str, str] | None = None,
        user_agent: str | None = None,
        basic_auth: tuple[str, str] | None = None,
        disable_ssl_verification: bool = False,
        force_encoding: str | None = None,
        raw_sink: RawFetchJsonlSink | None = None,
        retries: int = 3,
        timeout_seconds: float = 45,
    ) -> None:
        self.document_type = document_type
        self.success_codes = set(success_codes)
        self.headers = dict(headers or {})
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self.auth = aiohttp.BasicAuth(*basic_auth) if basic_auth else None
        self.ssl = not disable_ssl_verification
        self.force_encoding = force_encoding
        self.raw_sink = raw_sink
        self.retries = retries
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds, connect=10)

    def _is_success(self, status: int) -> bool:
        return 200 <= status < 300 or status in self.success_codes

    def _request_headers(self) -> dict[str, str]:
        headers = {"User-Agent": self.user_agent}
        headers.update(self.headers)
        return headers

    async def fetch(self, session: aiohttp.ClientSession, request: FetchRequest) -> FetchedDocument:
        logger.info("Fetching {} {}", request.method, request.url)
        for attempt in range(1, self.retries + 1):
            started_at = datetime.now(timezone.utc).isoformat()
            try:
                async with session.request(
                    request.method,
                    request.url,
                    data=request.body.encode("utf-8") if request.body else None,
                    headers=self._request_headers(),
                    auth=self.auth,
                    ssl=self.ssl,
                    timeout=self.timeout,
                ) as resp:
                    if resp.status >= 500 or resp.status == 429:
                        logger.warning("Server error {}. Attempt {}/{}", resp.status, attempt, self.retries)
                        raise ClientResponseError(
                            resp.request_info,
                            resp.history,
                            status=resp.status,
                            message="Server Error",
                        )

                    raw = await resp.read()
                    if not self._is_success(resp.status):
                        await self._write_raw_event(
                            request,
                            attempt,
                            started_at,
                            http=self._build_http_meta(resp),
                            error={"type": "HTTPError", "message": f"HTTP {resp.status}"},
                            outcome="http_error",
                        )
                        raise FetchError(f"Failed: {request.url} status {resp.status}", status=resp.status)

                    await self._write_raw_event(
                        request,
                        attempt,
                        started_at,
                        http=self._build_http_meta(resp),
                        size=len(raw),
                        outcome="success",
                    )
                    return FetchedDocument(
                        body=self._decode(raw, resp.charset),
                        url=str(resp.url),
                        status=resp.status,
                        headers=dict(resp.headers),
                        requested_url=request.url,
                    )

            except (
                ClientResponseError,
                ClientConnectorError,
                ServerDisconnectedError,
                asyncio.TimeoutError,
                ClientPayloadError,
            ) as exc:
                await self._write_raw_event(
                    request,
                    attempt,
                    started_at,
                    http={"status": getattr(exc, "status", None)},
                    error={"type": type(exc).__name__, "message": str(exc)},
                    outcome="retryable_error",
                )
                if attempt == self.retries:
                    logger.error("Failed after {} attempts. Error: {}", self.retries, exc)
                    raise FetchError(
                        f"Failed: {request.url} after {self.retries} attempts: {exc}",
                        status=getattr(exc, "status", None),
                    ) from exc
                wait_time = 2**attempt
                logger.warning("Connection unstable ({}). Retrying in {}s...", exc, wait_time)
                await asyncio.sleep(wait_time)

        raise FetchError(f"Failed: {request.url}")

    def _decode(self, raw: bytes, charset: str | None) -> str | bytes:
        if self.force_encoding:
            return raw.decode(self.force_encoding, errors="replace")
        if self.document_type in _BINARY_TYPES:
            # Markup parsers detect the encoding from the document itself.
            return raw
        return raw.decode(charset or "utf-8", errors="replace")

    @staticmethod
    def _build_http_meta(resp: aiohttp.ClientResponse) -> dict[str, Any]:
        return {
            "status": resp.status,
            "etag": resp.headers.get("ETag", ""),
            "last_modified": resp.headers.get("Last-Modified", ""),
            "headers": dict(resp.headers),
        }

    async def _write_raw_event(
        self,
        request: FetchRequest,
        attempt: int,
        started_at: str,
        *,
        http: dict[str, Any],
        outcome: str,
        error: dict[str, Any] | None = None,
        size: int | None = None,
    ) -> None:
        if self.raw_sink is None:
            return
        event = {
            "attempt": attempt,
            "request": {"method": request.method, "url": request.url, "body": request.body},
            "http": http,
            "response_size": size,
            "error": error,
            "timing": {
                "started_at": started_at,
                "finished_at": datetime.now(timezone.utc).isoformat(),
            },
            "outcome": outcome,
        }
        try:
            await self.raw_sink.write_event(event)
        except Exception as exc:
            logger.warning("Failed to persist raw fetch event: {}", exc)
