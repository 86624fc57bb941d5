from __future__ import annotations

from typing import Protocol


class Publisher(Protocol):
    """
    发布端接口：把格式化好的文本发到广播渠道。

    约定：
    - publish 成功返回渠道分配的消息 id；失败抛异常，由 runner 统一捕获、记录并中止本批
    - retract 撤回一条历史消息，返回是否成功（DeliveryTracker 淘汰旧消息时调用）
    - channel() 用于日志与故障记录
    """

    def channel(self) -> str: ...

    def publish(self, text: str) -> str: ...

    def retract(self, message_id: str) -> bool: ...
