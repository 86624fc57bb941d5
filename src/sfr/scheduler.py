from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable


logger = logging.getLogger(__name__)


class CancellationToken:
    """
    关闭信号：由信号处理函数 cancel()，runner 在两次投递之间检查，scheduler 在等待时被唤醒。
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """等待 timeout 秒或被取消；返回 True 表示已取消。"""
        return self._event.wait(timeout)


@dataclass(slots=True)
class FixedDelayScheduler:
    """
    "执行一次，结束后延迟 interval 再执行下一次" 的定时原语。

    - 间隔从上一周期结束时开始计算，不对齐墙钟；周期严格串行，不会重叠
    - 单个周期抛异常只记日志（cycle crashed），下个周期照常执行
    - wait 可注入，测试时可以不依赖真实时钟逐步推进
    """

    interval_seconds: float
    token: CancellationToken
    wait: Callable[[float], bool] | None = None
    cycles: int = field(default=0, init=False)

    def run(self, task: Callable[[], object]) -> int:
        wait = self.wait or self.token.wait
        while not self.token.cancelled:
            self.cycles += 1
            try:
                task()
            except Exception:  # noqa: BLE001
                logger.exception("cycle crashed: id=%d", self.cycles)
            if self.token.cancelled:
                break
            if wait(max(0.0, self.interval_seconds)):
                break
        logger.info("scheduler stopped: cycles=%d", self.cycles)
        return self.cycles
