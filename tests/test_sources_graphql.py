import json
from dataclasses import dataclass, field

import pytest

from sfr.http_utils import HttpResponse
from sfr.normalize import normalize_batches, safe_horizon
from sfr.sources.graphql import EVENTS_QUERY, GraphQLError, StokefireGraphQLSource


@dataclass
class FakeHttp:
    body: object
    calls: list[tuple[str, dict]] = field(default_factory=list)

    def post_json(self, url: str, body, *, headers=None, retry: bool = True) -> HttpResponse:  # noqa: ANN001
        self.calls.append((url, body))
        return HttpResponse(status=200, url=url, headers={}, body=json.dumps(self.body).encode("utf-8"))


def _empty_data() -> dict:
    return {
        name: {"items": []}
        for name in ("gatherFoods", "chopWoods", "buildHuts", "commitDefenses", "attackVillages", "revealBattles")
    }


def test_query_filters_every_collection_on_its_time_field() -> None:
    for time_field in (
        "timeGatherFood",
        "timeChopWood",
        "timeBuildHut",
        "timeCommittedDefense",
        "timeAttackedVillage",
        "timeRevealed",
    ):
        assert f"{time_field}_gt: $timestamp" in EVENTS_QUERY
    assert 'orderDirection: "asc"' in EVENTS_QUERY
    assert "$timestamp: BigInt!" in EVENTS_QUERY


def test_fetch_sends_variables_and_returns_batches() -> None:
    data = _empty_data()
    data["buildHuts"]["items"] = [
        {"id": "h1", "timeBuildHut": "120", "hutsAdded": 2, "player": {"username": "a", "displayName": "A"}},
    ]
    http = FakeHttp(body={"data": data})
    src = StokefireGraphQLSource(http=http, endpoint="https://example.com/graphql")

    result = src.fetch_events_since(100, 25)

    url, body = http.calls[0]
    assert url == "https://example.com/graphql"
    assert body["variables"] == {"timestamp": "100", "limit": 25}
    assert result.has_more is False
    assert [e.event_id for e in normalize_batches(result.batches)] == ["h1"]


def test_has_more_when_any_slice_is_full() -> None:
    data = _empty_data()
    data["commitDefenses"]["items"] = [
        {"id": f"d{i}", "timeCommittedDefense": str(i), "player": None} for i in range(2)
    ]
    src = StokefireGraphQLSource(http=FakeHttp(body={"data": data}))
    assert src.fetch_events_since(0, 2).has_more is True


def test_missing_collections_are_treated_as_empty() -> None:
    src = StokefireGraphQLSource(http=FakeHttp(body={"data": {"gatherFoods": None}}))
    result = src.fetch_events_since(0, 10)
    assert all(items == [] for items in result.batches.values())


@pytest.mark.parametrize(
    "body",
    [
        {"errors": [{"message": "bad timestamp"}]},
        {"data": None},
        ["not", "an", "object"],
    ],
)
def test_malformed_responses_raise(body) -> None:  # noqa: ANN001
    src = StokefireGraphQLSource(http=FakeHttp(body=body))
    with pytest.raises(GraphQLError):
        src.fetch_events_since(0, 10)


def test_non_object_items_count_toward_a_full_slice() -> None:
    data = _empty_data()
    data["buildHuts"]["items"] = [
        "garbage",
        {"id": "h2", "timeBuildHut": "50", "hutsAdded": 1, "player": None},
    ]
    src = StokefireGraphQLSource(http=FakeHttp(body={"data": data}))

    result = src.fetch_events_since(0, 2)

    assert result.has_more is True
    assert len(result.batches["buildHuts"]) == 2
    assert safe_horizon(result.batches, 2) == 50
    assert [e.event_id for e in normalize_batches(result.batches)] == ["h2"]
