from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass(slots=True)
class SqliteStateStore:
    """
    默认状态存储：SQLite

    表设计（最小可用）：
    - watermark：单行游标（name 固定为 last_processed_timestamp）
    - deliveries：已投递消息 id，seq 自增，seq 越大越新
    - seen_events：fingerprint 去重集合，超过 seen_retention_seconds 的记录在写 watermark 时清理
    - delivery_failures：投递失败留痕（不做队列重试，但保证可追踪），只保留最近 max_failures 条
    """

    sqlite_path: str
    seen_retention_seconds: int = 7 * 24 * 3600
    max_failures: int = 1000

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.sqlite_path)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.row_factory = sqlite3.Row
        return conn

    def ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS watermark (
                    name TEXT PRIMARY KEY,
                    value INTEGER NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS deliveries (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    message_id TEXT NOT NULL,
                    delivered_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS seen_events (
                    fingerprint TEXT PRIMARY KEY,
                    first_seen_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS delivery_failures (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    fingerprint TEXT NOT NULL,
                    error TEXT NOT NULL,
                    event_json TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            # 旧库补列
            columns = {r["name"] for r in conn.execute("PRAGMA table_info(delivery_failures)").fetchall()}
            if "event_json" not in columns:
                conn.execute("ALTER TABLE delivery_failures ADD COLUMN event_json TEXT")

    def get_watermark(self) -> int | None:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM watermark WHERE name = 'last_processed_timestamp'").fetchone()
            if not row:
                return None
            return int(row["value"])

    def set_watermark(self, timestamp: int) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO watermark(name, value, updated_at)
                VALUES('last_processed_timestamp', ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    value=excluded.value,
                    updated_at=excluded.updated_at
                """,
                (int(timestamp), _utc_now_iso()),
            )
            cutoff = datetime.now(tz=UTC) - timedelta(seconds=max(0, int(self.seen_retention_seconds)))
            conn.execute("DELETE FROM seen_events WHERE first_seen_at < ?", (cutoff.isoformat(),))

    def push_delivery(self, message_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO deliveries(message_id, delivered_at) VALUES(?, ?)",
                (message_id, _utc_now_iso()),
            )

    def delivery_count(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM deliveries").fetchone()
            return int(row["n"])

    def oldest_delivery(self) -> str | None:
        with self._connect() as conn:
            row = conn.execute("SELECT message_id FROM deliveries ORDER BY seq ASC LIMIT 1").fetchone()
            return row["message_id"] if row else None

    def trim_deliveries(self, keep: int) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                DELETE FROM deliveries
                WHERE seq NOT IN (SELECT seq FROM deliveries ORDER BY seq DESC LIMIT ?)
                """,
                (max(0, int(keep)),),
            )

    def list_deliveries(self) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute("SELECT message_id FROM deliveries ORDER BY seq DESC").fetchall()
            return [r["message_id"] for r in rows]

    def has_seen(self, fingerprint: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM seen_events WHERE fingerprint = ? LIMIT 1",
                (fingerprint,),
            ).fetchone()
            return row is not None

    def mark_seen(self, fingerprint: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO seen_events(fingerprint, first_seen_at)
                VALUES(?, ?)
                """,
                (fingerprint, _utc_now_iso()),
            )

    def record_delivery_failure(self, *, fingerprint: str, error: str, event_json: str | None = None) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO delivery_failures(fingerprint, error, event_json, created_at)
                VALUES(?, ?, ?, ?)
                """,
                (fingerprint, error, event_json, _utc_now_iso()),
            )
            conn.execute(
                """
                DELETE FROM delivery_failures
                WHERE id NOT IN (SELECT id FROM delivery_failures ORDER BY id DESC LIMIT ?)
                """,
                (max(1, int(self.max_failures)),),
            )

    def close(self) -> None:
        # 每次操作独立连接，没有常驻资源需要释放
        return None
