from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Mapping

from .notify.neynar import DEFAULT_API_URL as DEFAULT_NEYNAR_API_URL
from .sources.graphql import DEFAULT_ENDPOINT as DEFAULT_GRAPHQL_URL


def _require_dict(value: Any, *, where: str) -> Mapping[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"Expected object at {where}, got {type(value)}")
    return value


def _get_bool(d: Mapping[str, Any], key: str, default: bool) -> bool:
    v = d.get(key, default)
    return bool(v)


def _get_int(d: Mapping[str, Any], key: str, default: int, *, minimum: int | None = None) -> int:
    v = d.get(key, default)
    if isinstance(v, bool):
        return default
    try:
        value = int(v)
    except Exception:
        return default
    if minimum is not None and value < minimum:
        return default
    return value


def _get_str(d: Mapping[str, Any], key: str, default: str | None = None) -> str | None:
    v = d.get(key, default)
    if v is None:
        return None
    return str(v)


@dataclass(frozen=True, slots=True)
class NeynarPublishConfig:
    """
    Neynar（Farcaster）发布配置。

    api_key_env / signer_uuid_env:
      - API key 与 signer uuid 的环境变量名（secret 不落盘）
    max_chars:
      - cast 文本长度上限，超出截断
    """

    api_key_env: str
    signer_uuid_env: str
    api_url: str = DEFAULT_NEYNAR_API_URL
    max_chars: int = 320


@dataclass(frozen=True, slots=True)
class AppConfig:
    """
    应用总配置。

    poll_interval_seconds:
      - 轮询间隔（daemon 模式下生效，从上一周期结束开始计时）
    page_size:
      - 每个事件分片单次最多拉取条数
    initial_grace_seconds:
      - 首次运行没有 watermark 时，从 now - grace 开始，不回放更早的历史
    retention_max:
      - DeliveryTracker 最多保留的已投递消息数，超出后撤回最旧的一条
    state_backend:
      - sqlite（默认）或 redis
    """

    poll_interval_seconds: int
    page_size: int
    max_pages_per_cycle: int
    initial_grace_seconds: int
    retention_max: int
    include_relative_time: bool
    state_backend: str
    sqlite_path: str
    redis_url_env: str
    redis_key_prefix: str
    graphql_url: str
    neynar: NeynarPublishConfig | None

    def resolve_env(self, env_name: str | None) -> str | None:
        if not env_name:
            return None
        return os.environ.get(env_name)


def load_config(config_path: str) -> AppConfig:
    """
    使用 JSON 作为配置落地形式，避免引入第三方 YAML 解析依赖。

    JSON 顶层结构（示意）：
    {
      "poll_interval_seconds": 5,
      "page_size": 100,
      "retention_max": 3000,
      "state": { "backend": "sqlite", "sqlite_path": "./sfr_state.sqlite3" },
      "source": { "graphql_url": "https://api.stokefire.xyz/graphql" },
      "publish": { "neynar": { ... } }
    }
    """
    with open(config_path, "rb") as f:
        raw = json.loads(f.read().decode("utf-8"))

    root = _require_dict(raw, where="$")

    state = _require_dict(root.get("state", {}), where="$.state")
    source = _require_dict(root.get("source", {}), where="$.source")
    publish = _require_dict(root.get("publish", {}), where="$.publish")

    neynar_cfg: NeynarPublishConfig | None = None
    if isinstance(publish.get("neynar"), dict):
        ny = _require_dict(publish["neynar"], where="$.publish.neynar")
        neynar_cfg = NeynarPublishConfig(
            api_key_env=str(ny.get("api_key_env") or "NEYNAR_API_KEY"),
            signer_uuid_env=str(ny.get("signer_uuid_env") or "NEYNAR_SIGNER_UUID"),
            api_url=str(ny.get("api_url") or DEFAULT_NEYNAR_API_URL),
            max_chars=_get_int(ny, "max_chars", 320, minimum=2),
        )

    return AppConfig(
        poll_interval_seconds=_get_int(root, "poll_interval_seconds", 5, minimum=1),
        page_size=_get_int(root, "page_size", 100, minimum=1),
        max_pages_per_cycle=_get_int(root, "max_pages_per_cycle", 10, minimum=1),
        initial_grace_seconds=_get_int(root, "initial_grace_seconds", 300, minimum=0),
        retention_max=_get_int(root, "retention_max", 3000, minimum=1),
        include_relative_time=_get_bool(root, "include_relative_time", False),
        state_backend=(_get_str(state, "backend", "sqlite") or "sqlite").strip().lower(),
        sqlite_path=str(state.get("sqlite_path") or "./sfr_state.sqlite3"),
        redis_url_env=str(state.get("redis_url_env") or "REDIS_URL"),
        redis_key_prefix=str(state.get("key_prefix") or "stokefire"),
        graphql_url=str(source.get("graphql_url") or DEFAULT_GRAPHQL_URL),
        neynar=neynar_cfg,
    )
