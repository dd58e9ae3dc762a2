import unittest

from src.sitewatch.application.contracts import (
    FetchedDocument,
    FetchRequest,
    HeaderScope,
    event_response_context,
    is_query_url,
    response_context,
)


class HeaderScopeTests(unittest.TestCase):
    def test_lookup_ignores_case_and_separator(self):
        headers = HeaderScope({"Content-Type": "text/html", "X-Rate_Limit": 5})
        self.assertEqual(headers["content_type"], "text/html")
        self.assertEqual(headers["CONTENT-TYPE"], "text/html")
        self.assertEqual(headers["x-rate-limit"], "5")
        self.assertIn("content_type", headers)
        self.assertNotIn("etag", headers)

    def test_iteration_keeps_original_names(self):
        headers = HeaderScope({"Content-Type": "text/html", "ETag": "abc"})
        self.assertEqual(list(headers), ["Content-Type", "ETag"])
        self.assertEqual(len(headers), 2)

    def test_missing_header_raises_key_error(self):
        with self.assertRaises(KeyError):
            HeaderScope({})["location"]


class ResponseContextTests(unittest.TestCase):
    def test_response_context_from_document(self):
        document = FetchedDocument(
            body="",
            url="https://a.test/final",
            status=200,
            headers={"Server": "unit"},
            requested_url="https://a.test/start",
        )
        context = response_context(document)
        self.assertEqual(context["_url_"], "https://a.test/start")
        self.assertEqual(context["_response_"]["url"], "https://a.test/final")
        self.assertEqual(context["_response_"]["headers"]["server"], "unit")

    def test_event_context_coerces_status(self):
        context = event_response_context({"status": "404", "url": "https://a.test/", "headers": "nope"})
        self.assertEqual(context["_response_"]["status"], 404)
        self.assertEqual(len(context["_response_"]["headers"]), 0)
        self.assertIsNone(event_response_context({"status": "n/a"})["_response_"]["status"])


class RequestTests(unittest.TestCase):
    def test_method_follows_body(self):
        self.assertEqual(FetchRequest(url="https://a.test/").method, "GET")
        self.assertEqual(FetchRequest(url="https://a.test/", body="q=1").method, "POST")

    def test_query_urls(self):
        self.assertTrue(is_query_url("postgresql://user@db/app"))
        self.assertTrue(is_query_url("postgresql+psycopg://user@db/app"))
        self.assertTrue(is_query_url("sqlite:///events.db"))
        self.assertFalse(is_query_url("https://a.test/"))


if __name__ == "__main__":
    unittest.main()
