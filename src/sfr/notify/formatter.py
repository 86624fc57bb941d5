from __future__ import annotations

from ..models import (
    AttackVillagePayload,
    BuildHutPayload,
    CanonicalEvent,
    ChopWoodPayload,
    CommitDefensePayload,
    GatherFoodPayload,
    GenericPayload,
    Player,
    RevealBattlePayload,
)


def _mention(player: Player | None) -> str:
    return f"@{player.username}" if player is not None else "@unknown"


def attacker_won(payload: RevealBattlePayload) -> bool:
    """
    胜负判定：攻击方 username 出现在 winner_village_ids 字符串中即判攻击方获胜。

    已知限制：这是子串包含判断而非精确匹配，username 互为子串时（如 "bob" 与 "bobby"）
    可能误判。上游对 winnerVillageIds 的语义没有明确定义，这里保持与线上行为一致。
    """
    if payload.attacker is None:
        return False
    return payload.attacker.username in payload.winner_village_ids


def format_time_ago(occurred_at: int, now: int) -> str:
    diff = now - occurred_at
    if diff < 60:
        return "a few seconds ago"
    if diff < 3600:
        minutes = diff // 60
        return f"{minutes} minute{'s' if minutes > 1 else ''} ago"
    hours = diff // 3600
    return f"{hours} hour{'s' if hours > 1 else ''} ago"


def format_event_message(event: CanonicalEvent, *, now: int | None = None) -> str:
    """
    CanonicalEvent -> 展示文本。纯函数：同一事件（以及同一 now）总是得到相同的字符串。

    now 不为空时在末尾追加相对时间（"3 minutes ago"）；默认不追加。
    """
    actor = _mention(event.actor)
    p = event.payload

    if isinstance(p, GatherFoodPayload):
        text = f"{actor} gathered {p.amount} food with {p.villager_count} villagers"
    elif isinstance(p, ChopWoodPayload):
        text = f"{actor} gathered {p.amount} wood with {p.villager_count} villagers"
    elif isinstance(p, BuildHutPayload):
        text = f"{actor} built {p.huts_added} hut{'s' if p.huts_added > 1 else ''}"
    elif isinstance(p, CommitDefensePayload):
        text = f"{actor} committed their defense"
    elif isinstance(p, AttackVillagePayload):
        target = f"{_mention(p.defender)}'s village" if p.defender is not None else "a village"
        text = f"{actor} raided {target}, tried to steal {p.resource_to_steal} resources"
    elif isinstance(p, RevealBattlePayload):
        winner = p.attacker if attacker_won(p) else p.defender
        text = f"{actor} revealed battle. {_mention(winner)} won {p.amount_exchanged} {p.resources_exchanged}"
    elif isinstance(p, GenericPayload):
        text = f"{actor} {p.description}"
    else:
        raise TypeError(f"unsupported payload: {type(p).__name__}")

    if now is not None:
        text = f"{text} {format_time_ago(event.occurred_at, now)}"
    return text
