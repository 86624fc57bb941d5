import pytest

from sfr.models import (
    BuildHutPayload,
    CanonicalEvent,
    EventKind,
    GenericPayload,
    Player,
)


def test_fingerprint_is_stable() -> None:
    """
    fingerprint 只由 kind + event_id 组成，payload/actor/raw 的变化不应影响幂等键。
    """
    e1 = CanonicalEvent(
        event_id="0xabc-1",
        kind=EventKind.BUILD_HUT,
        occurred_at=100,
        actor=Player(username="alice", display_name="Alice"),
        payload=BuildHutPayload(huts_added=1),
        raw=None,
    )
    e2 = CanonicalEvent(
        event_id="0xabc-1",
        kind=EventKind.BUILD_HUT,
        occurred_at=200,
        actor=None,
        payload=BuildHutPayload(huts_added=5),
        raw={"x": 1},
    )
    assert e1.fingerprint() == e2.fingerprint()


def test_fingerprint_differs_across_kinds_with_same_id() -> None:
    hut = CanonicalEvent("1", EventKind.BUILD_HUT, 1, None, BuildHutPayload(huts_added=1))
    generic = CanonicalEvent("1", EventKind.GENERIC, 1, None, GenericPayload(description="x"))
    assert hut.fingerprint() != generic.fingerprint()


def test_kind_must_match_payload() -> None:
    with pytest.raises(ValueError):
        CanonicalEvent("1", EventKind.GATHER_FOOD, 1, None, BuildHutPayload(huts_added=1))


def test_player_from_raw_tolerates_missing() -> None:
    assert Player.from_raw(None) is None
    assert Player.from_raw({"displayName": "no username"}) is None
    assert Player.from_raw({"username": "bob"}) == Player(username="bob", display_name="bob")
