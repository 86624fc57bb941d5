from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

from .models import (
    AttackVillagePayload,
    BuildHutPayload,
    CanonicalEvent,
    ChopWoodPayload,
    CommitDefensePayload,
    EventKind,
    EventPayload,
    GatherFoodPayload,
    GenericPayload,
    Player,
    RevealBattlePayload,
)


logger = logging.getLogger(__name__)

RawRecord = Mapping[str, Any]
RawBatches = Mapping[str, Sequence[RawRecord]]

DEFAULT_GENERIC_DESCRIPTION = "performed an action"


class MalformedRecord(ValueError):
    pass


def _as_int(value: Any, *, field: str) -> int:
    if isinstance(value, bool):
        raise MalformedRecord(f"{field}: expected integer, got bool")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise MalformedRecord(f"{field}: expected integer, got {value!r}")


def _as_str(value: Any) -> str:
    return "" if value is None else str(value)


def _gather_food(r: RawRecord) -> EventPayload:
    return GatherFoodPayload(
        amount=_as_int(r.get("foodAdded"), field="foodAdded"),
        villager_count=_as_int(r.get("numVillagers"), field="numVillagers"),
    )


def _chop_wood(r: RawRecord) -> EventPayload:
    return ChopWoodPayload(
        amount=_as_int(r.get("woodAdded"), field="woodAdded"),
        villager_count=_as_int(r.get("numVillagers"), field="numVillagers"),
    )


def _build_hut(r: RawRecord) -> EventPayload:
    return BuildHutPayload(huts_added=_as_int(r.get("hutsAdded"), field="hutsAdded"))


def _commit_defense(r: RawRecord) -> EventPayload:  # noqa: ARG001
    return CommitDefensePayload()


def _attack_village(r: RawRecord) -> EventPayload:
    return AttackVillagePayload(
        resource_to_steal=_as_int(r.get("resourceToSteal"), field="resourceToSteal"),
        defender=Player.from_raw(r.get("defenderPlayer")),
    )


def _reveal_battle(r: RawRecord) -> EventPayload:
    return RevealBattlePayload(
        winner_village_ids=_as_str(r.get("winnerVillageIds")),
        resources_exchanged=_as_str(r.get("resourcesExchanged")),
        amount_exchanged=_as_str(r.get("amountResourcesExchanged")),
        attacker=Player.from_raw(r.get("attackerPlayer")),
        defender=Player.from_raw(r.get("defenderPlayer")),
    )


@dataclass(frozen=True, slots=True)
class KindSpec:
    """
    单个事件种类的字段映射：
    - collection：GraphQL 集合名（按种类分片拉取时的 batch key）
    - time_field：该种类的时间戳字段名（各不相同）
    - actor_field：行动者所在字段（战斗类事件是 attackerPlayer）
    """

    kind: EventKind
    collection: str
    time_field: str
    actor_field: str
    build_payload: Callable[[RawRecord], EventPayload]


KIND_SPECS: tuple[KindSpec, ...] = (
    KindSpec(EventKind.GATHER_FOOD, "gatherFoods", "timeGatherFood", "player", _gather_food),
    KindSpec(EventKind.CHOP_WOOD, "chopWoods", "timeChopWood", "player", _chop_wood),
    KindSpec(EventKind.BUILD_HUT, "buildHuts", "timeBuildHut", "player", _build_hut),
    KindSpec(EventKind.COMMIT_DEFENSE, "commitDefenses", "timeCommittedDefense", "player", _commit_defense),
    KindSpec(EventKind.ATTACK_VILLAGE, "attackVillages", "timeAttackedVillage", "attackerPlayer", _attack_village),
    KindSpec(EventKind.REVEAL_BATTLE, "revealBattles", "timeRevealed", "attackerPlayer", _reveal_battle),
)

SPECS_BY_COLLECTION: Mapping[str, KindSpec] = {s.collection: s for s in KIND_SPECS}

_GENERIC_TIME_FIELDS = ("timestamp", "occurredAt", "time")


def _discriminator_key(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.lower())


SPECS_BY_DISCRIMINATOR: Mapping[str, KindSpec] = {
    **{_discriminator_key(s.kind.value): s for s in KIND_SPECS},
    **{_discriminator_key(s.collection): s for s in KIND_SPECS},
}


def resolve_kind(discriminator: Any) -> KindSpec | None:
    """
    宽松匹配判别字段：GatherFood / GATHER_FOOD / gatherFood / gatherFoods 视为同一种类。
    """
    if not isinstance(discriminator, str) or not discriminator.strip():
        return None
    return SPECS_BY_DISCRIMINATOR.get(_discriminator_key(discriminator))


def _timestamp_of(record: RawRecord, spec: KindSpec | None) -> int | None:
    fields = ((spec.time_field,) if spec else ()) + _GENERIC_TIME_FIELDS
    for name in fields:
        if record.get(name) is None:
            continue
        try:
            return _as_int(record[name], field=name)
        except MalformedRecord:
            return None
    if spec is None:
        # 未知种类的时间字段名不可预知，退而取第一个 time* 字段
        for name, value in record.items():
            if name.startswith("time") and value is not None:
                try:
                    return _as_int(value, field=name)
                except MalformedRecord:
                    return None
    return None


def _actor_of(record: RawRecord, spec: KindSpec | None) -> Player | None:
    if spec is not None:
        return Player.from_raw(record.get(spec.actor_field))
    return Player.from_raw(record.get("player")) or Player.from_raw(record.get("attackerPlayer"))


def _generic(record: RawRecord, raw_kind: str | None) -> GenericPayload:
    description = record.get("description")
    if not isinstance(description, str) or not description:
        description = DEFAULT_GENERIC_DESCRIPTION
    return GenericPayload(description=description, raw_kind=raw_kind)


def normalize_record(record: RawRecord, kind_hint: KindSpec | None = None) -> CanonicalEvent | None:
    """
    将单条原始记录归一为 CanonicalEvent，绝不抛异常。

    - kind_hint 为空时读取记录自带的 kind / __typename 判别字段
    - 未识别的种类映射为 Generic（上游 feed 会独立演进，需要向前兼容）
    - 已知种类但 payload 字段不合法时降级为 Generic
    - 缺少 id 或时间戳的记录无法放入有序序列，返回 None 并记录 warning
    """
    if not isinstance(record, Mapping):
        logger.warning("dropping non-object record: %r", record)
        return None

    raw_kind = record.get("kind") or record.get("__typename")
    spec = kind_hint or resolve_kind(raw_kind)

    event_id = record.get("id")
    occurred_at = _timestamp_of(record, spec)
    if not event_id or occurred_at is None:
        logger.warning("dropping record without id/timestamp: kind=%s id=%r", raw_kind or (spec and spec.collection), event_id)
        return None

    actor = _actor_of(record, spec)
    if spec is None:
        return CanonicalEvent(
            event_id=str(event_id),
            kind=EventKind.GENERIC,
            occurred_at=occurred_at,
            actor=actor,
            payload=_generic(record, _as_str(raw_kind) or None),
            raw=record,
        )

    try:
        payload = spec.build_payload(record)
    except (MalformedRecord, TypeError, ValueError) as e:
        logger.warning("downgrading malformed %s record to Generic: id=%s error=%s", spec.kind.value, event_id, e)
        return CanonicalEvent(
            event_id=str(event_id),
            kind=EventKind.GENERIC,
            occurred_at=occurred_at,
            actor=actor,
            payload=_generic(record, spec.kind.value),
            raw=record,
        )

    return CanonicalEvent(
        event_id=str(event_id),
        kind=spec.kind,
        occurred_at=occurred_at,
        actor=actor,
        payload=payload,
        raw=record,
    )


def normalize_batches(batches: RawBatches) -> list[CanonicalEvent]:
    """
    合并多个 batch（单一混合 batch 或按种类分片的多个 batch），输出按 occurred_at 升序的事件序列。

    不信任页内顺序（上游可能升序也可能降序返回）；时间戳相同时按拉取顺序
    （batch 顺序、再按记录顺序）保持稳定，保证输出确定。
    """
    indexed: list[tuple[int, int, CanonicalEvent]] = []
    seq = 0
    for batch_name, records in batches.items():
        hint = SPECS_BY_COLLECTION.get(batch_name)
        for record in records or ():
            event = normalize_record(record, hint)
            seq += 1
            if event is None:
                continue
            indexed.append((event.occurred_at, seq, event))
    indexed.sort(key=lambda t: (t[0], t[1]))
    return [e for _, _, e in indexed]


def safe_horizon(batches: RawBatches, limit: int) -> int | None:
    """
    计算本页可以安全投递到的最大时间戳。

    某个种类的分片返回了满页（len == limit）时，该种类在页外可能还有更新的事件；
    如果按其它种类的事件把 watermark 推过去，这些页外事件就会被永久跳过。
    因此取所有满页分片中"最新时间戳"的最小值作为上限；没有满页分片时返回 None。
    """
    horizon: int | None = None
    for batch_name, records in batches.items():
        if limit <= 0 or len(records or ()) < limit:
            continue
        hint = SPECS_BY_COLLECTION.get(batch_name)
        newest: int | None = None
        for record in records:
            if not isinstance(record, Mapping):
                continue
            spec = hint or resolve_kind(record.get("kind") or record.get("__typename"))
            ts = _timestamp_of(record, spec)
            if ts is not None and (newest is None or ts > newest):
                newest = ts
        if newest is not None and (horizon is None or newest < horizon):
            horizon = newest
    return horizon
