from __future__ import annotations

from dataclasses import dataclass

from .state.store import StateStore


@dataclass(slots=True)
class DeliveryTracker:
    """
    已投递消息的有界保留窗口（最新的在前）。

    record() 超出 max_entries 时淘汰最旧的一条并返回其 id，由调用方向发布端请求撤回。
    所有操作都直接落在持久化列表上，不在内存中保留中间状态。
    """

    store: StateStore
    max_entries: int

    def __post_init__(self) -> None:
        if self.max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {self.max_entries}")

    def record(self, message_id: str) -> str | None:
        self.store.push_delivery(message_id)
        if self.store.delivery_count() <= self.max_entries:
            return None
        evicted = self.store.oldest_delivery()
        self.store.trim_deliveries(self.max_entries)
        return evicted

    def peek_oldest(self) -> str | None:
        return self.store.oldest_delivery()

    def __len__(self) -> int:
        return self.store.delivery_count()
