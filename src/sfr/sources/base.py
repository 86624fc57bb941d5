from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from ..normalize import RawBatches


@dataclass(frozen=True, slots=True)
class FetchResult:
    batches: RawBatches
    has_more: bool


class EventSource(Protocol):
    """
    事件源接口：拉取 occurred_at 严格大于 timestamp 的原始事件（每个分片最多 limit 条）。

    返回的页内顺序不作保证，排序由 normalizer 负责；拉取失败直接抛异常。
    """

    def key(self) -> str: ...

    def fetch_events_since(self, timestamp: int, limit: int) -> FetchResult: ...
