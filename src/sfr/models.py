from __future__ import annotations

import hashlib
import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Union


def utc_now_ts() -> int:
    return int(time.time())


class EventKind(str, Enum):
    GATHER_FOOD = "GatherFood"
    CHOP_WOOD = "ChopWood"
    BUILD_HUT = "BuildHut"
    COMMIT_DEFENSE = "CommitDefense"
    ATTACK_VILLAGE = "AttackVillage"
    REVEAL_BATTLE = "RevealBattle"
    GENERIC = "Generic"


@dataclass(frozen=True, slots=True)
class Player:
    username: str
    display_name: str

    @classmethod
    def from_raw(cls, value: Any) -> Player | None:
        """
        解析 GraphQL 中的 player 子对象；缺失或形状不对时返回 None（不抛异常）。
        """
        if not isinstance(value, dict):
            return None
        username = value.get("username")
        if not username:
            return None
        return cls(username=str(username), display_name=str(value.get("displayName") or username))


@dataclass(frozen=True, slots=True)
class GatherFoodPayload:
    amount: int
    villager_count: int


@dataclass(frozen=True, slots=True)
class ChopWoodPayload:
    amount: int
    villager_count: int


@dataclass(frozen=True, slots=True)
class BuildHutPayload:
    huts_added: int


@dataclass(frozen=True, slots=True)
class CommitDefensePayload:
    pass


@dataclass(frozen=True, slots=True)
class AttackVillagePayload:
    resource_to_steal: int
    defender: Player | None


@dataclass(frozen=True, slots=True)
class RevealBattlePayload:
    winner_village_ids: str
    resources_exchanged: str
    amount_exchanged: str
    attacker: Player | None
    defender: Player | None


@dataclass(frozen=True, slots=True)
class GenericPayload:
    description: str
    raw_kind: str | None = None


EventPayload = Union[
    GatherFoodPayload,
    ChopWoodPayload,
    BuildHutPayload,
    CommitDefensePayload,
    AttackVillagePayload,
    RevealBattlePayload,
    GenericPayload,
]

PAYLOAD_KINDS: Mapping[type, EventKind] = {
    GatherFoodPayload: EventKind.GATHER_FOOD,
    ChopWoodPayload: EventKind.CHOP_WOOD,
    BuildHutPayload: EventKind.BUILD_HUT,
    CommitDefensePayload: EventKind.COMMIT_DEFENSE,
    AttackVillagePayload: EventKind.ATTACK_VILLAGE,
    RevealBattlePayload: EventKind.REVEAL_BATTLE,
    GenericPayload: EventKind.GENERIC,
}


@dataclass(frozen=True, slots=True)
class CanonicalEvent:
    """
    统一事件模型：游戏 feed 中各种形状的事件都归一到该结构。

    设计目标：
    - kind 与 payload 变体一一对应，formatter 可以按 kind 穷举
    - occurred_at 同时作为排序键与 watermark 取值（秒级时间戳）
    - fingerprint 稳定可重建，用于尽力而为的去重
    """

    event_id: str
    kind: EventKind
    occurred_at: int
    actor: Player | None
    payload: EventPayload
    raw: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        expected = PAYLOAD_KINDS.get(type(self.payload))
        if expected is not self.kind:
            raise ValueError(f"payload {type(self.payload).__name__} does not match kind {self.kind.value}")

    def fingerprint(self) -> str:
        """
        事件指纹（幂等键）。

        只使用 kind + event_id：同一事件在不同批次重新拉取时 id 不变，
        而不同集合之间的 id 可能重复，所以要带上 kind。
        """
        stable = {"kind": self.kind.value, "event_id": self.event_id}
        payload = json.dumps(stable, ensure_ascii=False, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "kind": self.kind.value,
            "occurred_at": self.occurred_at,
            "actor": None if self.actor is None else {"username": self.actor.username, "display_name": self.actor.display_name},
            "raw": self.raw,
        }
