from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from ..http_utils import HttpClient
from ..normalize import KIND_SPECS
from .base import FetchResult


DEFAULT_ENDPOINT = "https://api.stokefire.xyz/graphql"

_PLAYER = "{ username displayName }"

# 各集合除 id 与时间字段以外需要取回的字段
_SELECTIONS: Mapping[str, str] = {
    "gatherFoods": f"foodAdded numVillagers player {_PLAYER}",
    "chopWoods": f"woodAdded numVillagers player {_PLAYER}",
    "buildHuts": f"hutsAdded player {_PLAYER}",
    "commitDefenses": f"player {_PLAYER}",
    "attackVillages": f"resourceToSteal attackerPlayer {_PLAYER} defenderPlayer {_PLAYER}",
    "revealBattles": (
        "winnerVillageIds resourcesExchanged amountResourcesExchanged "
        f"attackerPlayer {_PLAYER} defenderPlayer {_PLAYER}"
    ),
}


class GraphQLError(RuntimeError):
    pass


def build_events_query() -> str:
    """
    一次请求拉取全部六个集合，每个集合按自己的时间字段过滤（_gt）并升序分页。
    """
    parts: list[str] = []
    for spec in KIND_SPECS:
        parts.append(
            f"""
  {spec.collection}(
    limit: $limit
    orderBy: "{spec.time_field}"
    orderDirection: "asc"
    where: {{ {spec.time_field}_gt: $timestamp }}
  ) {{
    items {{ id {spec.time_field} {_SELECTIONS[spec.collection]} }}
  }}"""
        )
    return "query GetEvents($timestamp: BigInt!, $limit: Int!) {" + "".join(parts) + "\n}\n"


EVENTS_QUERY = build_events_query()


@dataclass(slots=True)
class StokefireGraphQLSource:
    """
    Stokefire 索引服务（GraphQL）事件源。

    分片语义：每个集合各自最多 limit 条；任一分片满页即认为 has_more。
    """

    http: HttpClient
    endpoint: str = DEFAULT_ENDPOINT

    def key(self) -> str:
        return f"graphql:{self.endpoint}"

    def fetch_events_since(self, timestamp: int, limit: int) -> FetchResult:
        resp = self.http.post_json(
            self.endpoint,
            {"query": EVENTS_QUERY, "variables": {"timestamp": str(int(timestamp)), "limit": int(limit)}},
            headers={"Accept": "application/json"},
        )
        body = resp.json()
        if not isinstance(body, dict):
            raise GraphQLError(f"GraphQL expected object, got {type(body)}: {resp.url}")
        if body.get("errors"):
            raise GraphQLError(f"GraphQL returned errors: {body['errors']!r}")
        data = body.get("data")
        if not isinstance(data, dict):
            raise GraphQLError(f"GraphQL response missing data: {resp.url}")

        batches: dict[str, list[Any]] = {}
        has_more = False
        for spec in KIND_SPECS:
            conn = data.get(spec.collection)
            items = conn.get("items") if isinstance(conn, dict) else None
            if not isinstance(items, list):
                items = []
            # 非对象条目原样保留，由 normalizer 丢弃；满页判断与 safe_horizon 看到的是同一份列表
            batches[spec.collection] = list(items)
            if limit > 0 and len(batches[spec.collection]) >= limit:
                has_more = True
        return FetchResult(batches=batches, has_more=has_more)
