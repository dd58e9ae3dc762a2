import unittest
from datetime import datetime, timedelta, timezone

from src.sitewatch.infrastructure.event_store_sqlite import SQLiteEventStore
from tests.utils.tempdir import managed_temp_dir


class SQLiteEventStoreTests(unittest.TestCase):
    def test_recent_events_are_most_recent_first(self):
        with managed_temp_dir("event_store_order") as tmp:
            store = SQLiteEventStore(tmp / "events.db", agent="unit")
            try:
                for n in range(5):
                    store.create_event({"n": n})

                events = store.recent_events(3)

                self.assertEqual([event.payload["n"] for event in events], [4, 3, 2])
                self.assertGreater(events[0].id, events[1].id)
                self.assertIsNotNone(events[0].created_at)
            finally:
                store.close()

    def test_payload_round_trips_as_json(self):
        with managed_temp_dir("event_store_payload") as tmp:
            store = SQLiteEventStore(tmp / "events.db")
            try:
                created = store.create_event({"digest": True, "events": [{"payload": {"title": "é"}}]})
                [loaded] = store.recent_events(1)
                self.assertEqual(loaded.id, created.id)
                self.assertTrue(loaded.is_digest)
                self.assertEqual(loaded.payload["events"][0]["payload"]["title"], "é")
            finally:
                store.close()

    def test_agents_do_not_see_each_other(self):
        with managed_temp_dir("event_store_agents") as tmp:
            first = SQLiteEventStore(tmp / "events.db", agent="first")
            second = SQLiteEventStore(tmp / "events.db", agent="second")
            try:
                first.create_event({"n": 1})
                self.assertEqual(second.recent_events(10), [])
                self.assertEqual(first.count_events(), 1)
            finally:
                first.close()
                second.close()

    def test_refresh_expiration_and_expired_events(self):
        with managed_temp_dir("event_store_expiry") as tmp:
            store = SQLiteEventStore(tmp / "events.db")
            try:
                past = datetime.now(timezone.utc) - timedelta(days=1)
                future = datetime.now(timezone.utc) + timedelta(days=3)
                event = store.create_event({"n": 1}, expires_at=past)
                self.assertEqual(store.recent_events(10), [])

                store.refresh_expiration(event, future)

                [refreshed] = store.recent_events(10)
                self.assertEqual(refreshed.id, event.id)
                self.assertEqual(refreshed.expires_at, future)
            finally:
                store.close()

    def test_persists_across_instances(self):
        with managed_temp_dir("event_store_reopen") as tmp:
            store = SQLiteEventStore(tmp / "nested" / "events.db")
            store.create_event({"n": 1})
            store.close()

            reopened = SQLiteEventStore(tmp / "nested" / "events.db")
            try:
                self.assertEqual([event.payload for event in reopened.recent_events(10)], [{"n": 1}])
            finally:
                reopened.close()


if __name__ == "__main__":
    unittest.main()
