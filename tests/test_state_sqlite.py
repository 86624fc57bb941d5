import os
import sqlite3
import sys
import tempfile
import unittest


sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src")))


from sfr.state.sqlite_store import SqliteStateStore  # noqa: E402
from sfr.state.store import load_watermark  # noqa: E402


class TestSqliteStateStore(unittest.TestCase):
    def test_seen_dedupe(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            db = os.path.join(td, "state.sqlite3")
            store = SqliteStateStore(db)
            store.ensure_schema()

            fp = "abc"
            self.assertFalse(store.has_seen(fp))
            store.mark_seen(fp)
            self.assertTrue(store.has_seen(fp))

            store.mark_seen(fp)
            self.assertTrue(store.has_seen(fp))

    def test_watermark_roundtrip(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            db = os.path.join(td, "state.sqlite3")
            store = SqliteStateStore(db)
            store.ensure_schema()

            self.assertIsNone(store.get_watermark())
            store.set_watermark(1700000000)
            store.set_watermark(1700000042)
            self.assertEqual(store.get_watermark(), 1700000042)

            # 重新打开同一个库，模拟进程重启
            self.assertEqual(SqliteStateStore(db).get_watermark(), 1700000042)

    def test_load_watermark_initializes_with_grace_window(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            store = SqliteStateStore(os.path.join(td, "state.sqlite3"))
            store.ensure_schema()

            self.assertEqual(load_watermark(store, now=1_000_000, grace_seconds=300), 999_700)
            self.assertEqual(store.get_watermark(), 999_700)
            self.assertEqual(load_watermark(store, now=2_000_000, grace_seconds=300), 999_700)

    def test_delivery_list_is_most_recent_first_and_trims_oldest(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            store = SqliteStateStore(os.path.join(td, "state.sqlite3"))
            store.ensure_schema()

            self.assertIsNone(store.oldest_delivery())
            for mid in ("m1", "m2", "m3"):
                store.push_delivery(mid)
            self.assertEqual(store.list_deliveries(), ["m3", "m2", "m1"])
            self.assertEqual(store.delivery_count(), 3)
            self.assertEqual(store.oldest_delivery(), "m1")

            store.trim_deliveries(2)
            self.assertEqual(store.list_deliveries(), ["m3", "m2"])
            self.assertEqual(store.oldest_delivery(), "m2")

    def test_delivery_failure_is_recorded(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            db = os.path.join(td, "state.sqlite3")
            store = SqliteStateStore(db)
            store.ensure_schema()
            store.record_delivery_failure(fingerprint="fp1", error="RuntimeError: boom")

            conn = sqlite3.connect(db)
            try:
                row = conn.execute("SELECT fingerprint, error FROM delivery_failures").fetchone()
            finally:
                conn.close()
            self.assertEqual(tuple(row), ("fp1", "RuntimeError: boom"))

    def test_delivery_failure_keeps_event_json_and_is_capped(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            db = os.path.join(td, "state.sqlite3")
            store = SqliteStateStore(db, max_failures=2)
            store.ensure_schema()
            for i in range(3):
                store.record_delivery_failure(fingerprint=f"fp{i}", error="boom", event_json=f'{{"event_id": "e{i}"}}')

            conn = sqlite3.connect(db)
            try:
                rows = conn.execute("SELECT fingerprint, event_json FROM delivery_failures ORDER BY id").fetchall()
            finally:
                conn.close()
            self.assertEqual([tuple(r) for r in rows], [("fp1", '{"event_id": "e1"}'), ("fp2", '{"event_id": "e2"}')])

    def test_old_seen_fingerprints_are_pruned_on_watermark_write(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            db = os.path.join(td, "state.sqlite3")
            store = SqliteStateStore(db, seen_retention_seconds=3600)
            store.ensure_schema()
            store.mark_seen("fresh")

            conn = sqlite3.connect(db)
            try:
                with conn:
                    conn.execute(
                        "INSERT INTO seen_events(fingerprint, first_seen_at) VALUES(?, ?)",
                        ("stale", "2000-01-01T00:00:00+00:00"),
                    )
            finally:
                conn.close()
            self.assertTrue(store.has_seen("stale"))

            store.set_watermark(100)
            self.assertFalse(store.has_seen("stale"))
            self.assertTrue(store.has_seen("fresh"))

    def test_schema_upgrade_adds_event_json_column(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            db = os.path.join(td, "state.sqlite3")
            conn = sqlite3.connect(db)
            try:
                with conn:
                    conn.execute(
                        """
                        CREATE TABLE delivery_failures (
                            id INTEGER PRIMARY KEY AUTOINCREMENT,
                            fingerprint TEXT NOT NULL,
                            error TEXT NOT NULL,
                            created_at TEXT NOT NULL
                        )
                        """
                    )
            finally:
                conn.close()

            store = SqliteStateStore(db)
            store.ensure_schema()
            store.record_delivery_failure(fingerprint="fp", error="boom", event_json="{}")
