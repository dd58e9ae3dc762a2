import json
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from src.sitewatch.__main__ import main
from src.sitewatch.check import receive_events, receive_events_async, run_check, run_check_async
from src.sitewatch.domain.errors import SchemaError
from src.sitewatch.domain.models import CheckSummary
from tests.utils.tempdir import managed_temp_dir

OPTIONS = {
    "url": "https://xkcd.test/",
    "mode": "on_change",
    "extract": {"url": {"css": "#comic img", "value": "@src"}},
}


def summary(**overrides) -> CheckSummary:
    values = dict(
        documents_total=1,
        documents_failed=0,
        tuples_total=1,
        new_total=1,
        duplicate_total=0,
        events_created=1,
    )
    values.update(overrides)
    return CheckSummary(**values)


class CheckApiTests(unittest.TestCase):
    def test_run_check_sync_wrapper(self):
        expected = summary()
        with patch("src.sitewatch.check.run_check_async", new=AsyncMock(return_value=expected)):
            result = run_check(OPTIONS)
        self.assertEqual(result, expected)

    def test_receive_events_sync_wrapper(self):
        expected = summary(events_created=2)
        with patch("src.sitewatch.check.receive_events_async", new=AsyncMock(return_value=expected)) as receive:
            result = receive_events(OPTIONS, [{"url": "x"}])
        self.assertEqual(result, expected)
        receive.assert_awaited_once()

    def test_main_reads_options_file(self):
        with managed_temp_dir("check_api_main") as tmp:
            options_path = tmp / "agent.json"
            options_path.write_text(json.dumps(OPTIONS), encoding="utf-8")
            with patch("src.sitewatch.__main__.run_check", return_value=summary()) as run:
                code = main([str(options_path), "--agent", "xkcd"])

        self.assertEqual(code, 0)
        args, kwargs = run.call_args
        self.assertEqual(args[0], OPTIONS)
        self.assertEqual(kwargs["agent_name"], "xkcd")

    def test_main_reports_failed_documents(self):
        with managed_temp_dir("check_api_main_failed") as tmp:
            options_path = tmp / "agent.json"
            options_path.write_text(json.dumps(OPTIONS), encoding="utf-8")
            with patch("src.sitewatch.__main__.run_check", return_value=summary(documents_failed=1)):
                self.assertEqual(main([str(options_path)]), 1)


class CheckApiAsyncTests(unittest.IsolatedAsyncioTestCase):
    def _patches(self, store, raw_sink, query_client, workflow):
        return (
            patch("src.sitewatch.check.SQLiteEventStore", return_value=store),
            patch("src.sitewatch.check.RawFetchJsonlSink", return_value=raw_sink),
            patch("src.sitewatch.check.SqlQueryClient", return_value=query_client),
            patch("src.sitewatch.check.HttpDocumentClient", return_value=MagicMock()),
            patch("src.sitewatch.check.CheckDocumentsWorkflow", return_value=workflow),
        )

    async def test_run_check_async_wiring_and_close(self):
        expected = summary()
        store, raw_sink, query_client = MagicMock(), MagicMock(), MagicMock()
        workflow = MagicMock()
        workflow.check = AsyncMock(return_value=expected)
        p1, p2, p3, p4, p5 = self._patches(store, raw_sink, query_client, workflow)

        with p1 as store_cls, p2, p3, p4 as http_cls, p5:
            result = await run_check_async(OPTIONS, agent_name="xkcd", db_path="tests/tmp/unit.db")

        self.assertEqual(result, expected)
        store_cls.assert_called_once()
        self.assertEqual(store_cls.call_args.kwargs["agent"], "xkcd")
        self.assertIsNone(http_cls.call_args.kwargs["basic_auth"])
        store.close.assert_called_once()
        raw_sink.close.assert_called_once()
        query_client.close.assert_called_once()

    async def test_adapters_are_closed_when_check_fails(self):
        store, raw_sink, query_client = MagicMock(), MagicMock(), MagicMock()
        workflow = MagicMock()
        workflow.check = AsyncMock(side_effect=RuntimeError("boom"))
        p1, p2, p3, p4, p5 = self._patches(store, raw_sink, query_client, workflow)

        with p1, p2, p3, p4, p5:
            with self.assertRaises(RuntimeError):
                await run_check_async(OPTIONS)

        store.close.assert_called_once()
        raw_sink.close.assert_called_once()
        query_client.close.assert_called_once()

    async def test_invalid_options_fail_before_anything_opens(self):
        store, raw_sink, query_client = MagicMock(), MagicMock(), MagicMock()
        p1, p2, p3, p4, p5 = self._patches(store, raw_sink, query_client, MagicMock())

        with p1 as store_cls, p2 as sink_cls, p3, p4, p5:
            with self.assertRaises(SchemaError):
                await run_check_async({"mode": "all"})

        store_cls.assert_not_called()
        sink_cls.assert_not_called()

    async def test_receive_events_async_delegates_to_workflow(self):
        expected = summary(events_created=3)
        store, raw_sink, query_client = MagicMock(), MagicMock(), MagicMock()
        workflow = MagicMock()
        workflow.receive = AsyncMock(return_value=expected)
        p1, p2, p3, p4, p5 = self._patches(store, raw_sink, query_client, workflow)

        with p1, p2, p3, p4, p5:
            result = await receive_events_async(OPTIONS, [{"url": "https://xkcd.test/1"}])

        self.assertEqual(result, expected)
        workflow.receive.assert_awaited_once_with([{"url": "https://xkcd.test/1"}])
        store.close.assert_called_once()


if __name__ == "__main__":
    unittest.main()
