import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import aiohttp

from src.sitewatch.application.contracts import FetchRequest
from src.sitewatch.domain.errors import FetchError
from src.sitewatch.domain.models import DocumentType
from src.sitewatch.infrastructure.http_client import HttpDocumentClient


class FakeResponse:
    def __init__(self, status=200, body=b"", headers=None, charset=None, url="http://unit.invalid/final"):
        self.status = status
        self._body = body
        self.headers = headers or {}
        self.charset = charset
        self.url = url
        self.request_info = SimpleNamespace(real_url="http://unit.invalid")
        self.history = ()

    async def read(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    def __init__(self, responses):
        self._responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        if not self._responses:
            raise AssertionError("No more fake responses configured")
        self.calls.append((method, url, kwargs))
        return self._responses.pop(0)


class FakeRawSink:
    def __init__(self):
        self.events = []

    async def write_event(self, event):
        self.events.append(event)


class HttpDocumentClientTests(unittest.IsolatedAsyncioTestCase):
    async def test_get_returns_markup_as_bytes(self):
        client = HttpDocumentClient(document_type=DocumentType.HTML)
        session = FakeSession([FakeResponse(body=b"<html></html>", headers={"ETag": "e1"})])

        document = await client.fetch(session, FetchRequest(url="http://unit.invalid/start"))

        self.assertEqual(document.body, b"<html></html>")
        self.assertEqual(document.status, 200)
        self.assertEqual(document.url, "http://unit.invalid/final")
        self.assertEqual(document.requested_url, "http://unit.invalid/start")
        self.assertEqual(document.headers, {"ETag": "e1"})
        method, url, kwargs = session.calls[0]
        self.assertEqual((method, url), ("GET", "http://unit.invalid/start"))
        self.assertIsNone(kwargs["data"])
        self.assertIn("User-Agent", kwargs["headers"])

    async def test_post_with_headers_auth_and_ssl_settings(self):
        client = HttpDocumentClient(
            headers={"Accept": "application/json"},
            user_agent="unit-agent",
            basic_auth=("user", "secret"),
            disable_ssl_verification=True,
        )
        session = FakeSession([FakeResponse(body=b"<p/>")])

        await client.fetch(session, FetchRequest(url="http://unit.invalid/", body='{"q": 1}'))

        method, _, kwargs = session.calls[0]
        self.assertEqual(method, "POST")
        self.assertEqual(kwargs["data"], b'{"q": 1}')
        self.assertEqual(kwargs["headers"], {"User-Agent": "unit-agent", "Accept": "application/json"})
        self.assertEqual(kwargs["auth"], aiohttp.BasicAuth("user", "secret"))
        self.assertIs(kwargs["ssl"], False)

    async def test_text_is_decoded_with_response_charset(self):
        client = HttpDocumentClient(document_type=DocumentType.JSON)
        session = FakeSession([FakeResponse(body="{\"a\": \"é\"}".encode("latin-1"), charset="latin-1")])
        document = await client.fetch(session, FetchRequest(url="http://unit.invalid/"))
        self.assertEqual(document.body, '{"a": "é"}')

    async def test_force_encoding_wins(self):
        client = HttpDocumentClient(document_type=DocumentType.HTML, force_encoding="latin-1")
        session = FakeSession([FakeResponse(body="<p>é</p>".encode("latin-1"), charset="utf-8")])
        document = await client.fetch(session, FetchRequest(url="http://unit.invalid/"))
        self.assertEqual(document.body, "<p>é</p>")

    async def test_retries_on_server_error(self):
        client = HttpDocumentClient()
        session = FakeSession([FakeResponse(status=500), FakeResponse(status=200, body=b"ok")])

        with patch("src.sitewatch.infrastructure.http_client.asyncio.sleep", new=AsyncMock()):
            document = await client.fetch(session, FetchRequest(url="http://unit.invalid/"))

        self.assertEqual(document.body, b"ok")
        self.assertEqual(len(session.calls), 2)

    async def test_gives_up_after_retries(self):
        client = HttpDocumentClient(retries=2)
        session = FakeSession([FakeResponse(status=503), FakeResponse(status=429)])

        with patch("src.sitewatch.infrastructure.http_client.asyncio.sleep", new=AsyncMock()):
            with self.assertRaises(FetchError) as ctx:
                await client.fetch(session, FetchRequest(url="http://unit.invalid/"))

        self.assertEqual(ctx.exception.status, 429)

    async def test_unexpected_status_fails(self):
        raw_sink = FakeRawSink()
        client = HttpDocumentClient(raw_sink=raw_sink)
        session = FakeSession([FakeResponse(status=404, body=b"missing")])

        with self.assertRaises(FetchError) as ctx:
            await client.fetch(session, FetchRequest(url="http://unit.invalid/"))

        self.assertEqual(ctx.exception.status, 404)
        self.assertEqual(len(session.calls), 1)
        self.assertEqual(raw_sink.events[0]["outcome"], "http_error")

    async def test_any_2xx_status_is_a_success(self):
        client = HttpDocumentClient(document_type=DocumentType.TEXT, retries=1)
        session = FakeSession([FakeResponse(status=201, body=b"hello")])

        document = await client.fetch(session, FetchRequest(url="http://unit.invalid/x"))

        self.assertEqual(document.status, 201)
        self.assertEqual(document.body, "hello")

    async def test_configured_success_codes_are_accepted(self):
        raw_sink = FakeRawSink()
        client = HttpDocumentClient(success_codes=(404,), raw_sink=raw_sink)
        session = FakeSession([FakeResponse(status=404, body=b"<p>gone</p>")])

        document = await client.fetch(session, FetchRequest(url="http://unit.invalid/"))

        self.assertEqual(document.status, 404)
        self.assertEqual(raw_sink.events[0]["outcome"], "success")
        self.assertEqual(raw_sink.events[0]["response_size"], len(b"<p>gone</p>"))


if __name__ == "__main__":
    unittest.main()
