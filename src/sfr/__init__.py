"""
Stokefire Relay (sfr)

轮询 Stokefire 游戏的事件 feed（GraphQL），把多种形状的事件归一为统一事件模型，
按时间顺序逐条格式化后发布到 Farcaster，并用持久化 watermark 保证进程重启后
每条事件至少发布一次。
"""

from .models import CanonicalEvent, EventKind

__all__ = [
    "CanonicalEvent",
    "EventKind",
]
