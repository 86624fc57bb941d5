from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from .base import Publisher


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LogPublisher(Publisher):
    """
    dry-run 发布端：只写日志，返回本地生成的消息 id。
    """

    published: list[str] = field(default_factory=list)

    def channel(self) -> str:
        return "log"

    def publish(self, text: str) -> str:
        message_id = f"dry-{uuid.uuid4().hex}"
        self.published.append(text)
        logger.info("dry-run publish: id=%s text=%s", message_id, text)
        return message_id

    def retract(self, message_id: str) -> bool:
        logger.info("dry-run retract: id=%s", message_id)
        return True
