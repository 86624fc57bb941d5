from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import redis


@dataclass(slots=True)
class RedisStateStore:
    """
    Redis 状态存储（与线上 bot 的 key 布局保持一致）。

    key 设计：
    - <prefix>:last_processed_timestamp   watermark（字符串形式的秒级时间戳）
    - <prefix>:deliveries                 LIST，LPUSH 新消息 id，LTRIM 控制长度
    - <prefix>:seen:<fingerprint>         SET NX EX，带 TTL，集合规模有界
    - <prefix>:delivery_failures          LIST，失败留痕，只保留最近 max_failures 条
    """

    client: Any
    key_prefix: str = "stokefire"
    seen_ttl_seconds: int = 7 * 24 * 3600
    max_failures: int = 1000

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> RedisStateStore:
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=5,
            socket_connect_timeout=5,
        )
        return cls(client=client, **kwargs)

    def _key(self, name: str) -> str:
        return f"{self.key_prefix}:{name}"

    def ensure_schema(self) -> None:
        # Redis 无需建表；这里只验证连接可用，连接失败直接抛出
        self.client.ping()

    def get_watermark(self) -> int | None:
        value = self.client.get(self._key("last_processed_timestamp"))
        if value is None:
            return None
        return int(value)

    def set_watermark(self, timestamp: int) -> None:
        self.client.set(self._key("last_processed_timestamp"), str(int(timestamp)))

    def push_delivery(self, message_id: str) -> None:
        self.client.lpush(self._key("deliveries"), message_id)

    def delivery_count(self) -> int:
        return int(self.client.llen(self._key("deliveries")))

    def oldest_delivery(self) -> str | None:
        return self.client.lindex(self._key("deliveries"), -1)

    def trim_deliveries(self, keep: int) -> None:
        keep = max(0, int(keep))
        if keep == 0:
            self.client.delete(self._key("deliveries"))
            return
        self.client.ltrim(self._key("deliveries"), 0, keep - 1)

    def list_deliveries(self) -> list[str]:
        return list(self.client.lrange(self._key("deliveries"), 0, -1))

    def has_seen(self, fingerprint: str) -> bool:
        return bool(self.client.exists(self._key(f"seen:{fingerprint}")))

    def mark_seen(self, fingerprint: str) -> None:
        self.client.set(
            self._key(f"seen:{fingerprint}"),
            datetime.now(tz=UTC).isoformat(),
            nx=True,
            ex=self.seen_ttl_seconds,
        )

    def record_delivery_failure(self, *, fingerprint: str, error: str, event_json: str | None = None) -> None:
        entry = json.dumps(
            {
                "fingerprint": fingerprint,
                "error": error,
                "event": None if event_json is None else json.loads(event_json),
                "created_at": datetime.now(tz=UTC).isoformat(),
            },
            ensure_ascii=False,
        )
        key = self._key("delivery_failures")
        self.client.lpush(key, entry)
        self.client.ltrim(key, 0, self.max_failures - 1)

    def close(self) -> None:
        self.client.close()
