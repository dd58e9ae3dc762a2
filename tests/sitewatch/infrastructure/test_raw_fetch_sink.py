import json
import unittest

from src.sitewatch.infrastructure.raw_sink import RawFetchJsonlSink
from tests.utils.tempdir import managed_temp_dir


class RawFetchJsonlSinkTests(unittest.IsolatedAsyncioTestCase):
    async def test_events_are_appended_as_json_lines(self):
        with managed_temp_dir("raw_fetch_sink_lines") as tmp:
            sink = RawFetchJsonlSink(tmp, agent_name="xkcd", run_id="run1")
            try:
                await sink.write_event({"outcome": "success", "request": {"url": "http://unit.invalid/"}})
                await sink.write_event({"outcome": "http_error"})
            finally:
                sink.close()

            lines = sink.file_path.read_text(encoding="utf-8").splitlines()
            self.assertEqual(len(lines), 2)
            first = json.loads(lines[0])
            self.assertEqual(first["agent"], "xkcd")
            self.assertEqual(first["run_id"], "run1")
            self.assertEqual(first["request"]["url"], "http://unit.invalid/")

    async def test_agent_name_is_made_safe_for_the_filename(self):
        with managed_temp_dir("raw_fetch_sink_name") as tmp:
            sink = RawFetchJsonlSink(tmp, agent_name="news/feed:*", run_id="run2")
            try:
                self.assertEqual(sink.file_path.parent, tmp)
                self.assertNotIn("/", sink.file_path.name)
                self.assertNotIn(":", sink.file_path.name)
                self.assertTrue(sink.file_path.exists())
            finally:
                sink.close()

    async def test_closed_sink_rejects_events(self):
        with managed_temp_dir("raw_fetch_sink_closed") as tmp:
            sink = RawFetchJsonlSink(tmp, agent_name="xkcd", run_id="run3")
            sink.close()
            sink.close()
            with self.assertRaises(RuntimeError):
                await sink.write_event({"outcome": "success"})


if __name__ == "__main__":
    unittest.main()
