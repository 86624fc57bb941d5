from __future__ import annotations

from typing import Protocol


class StateStore(Protocol):
    """
    状态层接口：
    - watermark：最后一条成功投递事件的时间戳（单值游标）
    - deliveries：最近投递的消息 id 列表（新的在前），供 DeliveryTracker 控制保留窗口
    - seen_events：事件指纹集合，尽力而为的去重
    - delivery_failures：投递失败留痕（附事件 JSON 快照），数量有上限

    任何方法抛出的异常都视为持久化失败：当前周期直接中止，runner 不做吞异常处理。
    """

    def ensure_schema(self) -> None: ...

    def get_watermark(self) -> int | None: ...

    def set_watermark(self, timestamp: int) -> None: ...

    def push_delivery(self, message_id: str) -> None: ...

    def delivery_count(self) -> int: ...

    def oldest_delivery(self) -> str | None: ...

    def trim_deliveries(self, keep: int) -> None: ...

    def list_deliveries(self) -> list[str]: ...

    def has_seen(self, fingerprint: str) -> bool: ...

    def mark_seen(self, fingerprint: str) -> None: ...

    def record_delivery_failure(self, *, fingerprint: str, error: str, event_json: str | None = None) -> None: ...

    def close(self) -> None: ...


def load_watermark(store: StateStore, *, now: int, grace_seconds: int) -> int:
    """
    读取 watermark；首次运行（不存在）时初始化为 now - grace_seconds 并落盘，
    避免启动时回放无限历史。
    """
    watermark = store.get_watermark()
    if watermark is None:
        watermark = now - max(0, grace_seconds)
        store.set_watermark(watermark)
    return watermark
