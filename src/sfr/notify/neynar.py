from __future__ import annotations

from dataclasses import dataclass

from ..http_utils import HttpClient
from .base import Publisher


DEFAULT_API_URL = "https://api.neynar.com/v2/farcaster/cast"


class PublishError(RuntimeError):
    pass


@dataclass(slots=True)
class NeynarPublisher(Publisher):
    """
    通过 Neynar API 发布 Farcaster cast。

    说明：
    - POST {api_url}，body 为 signer_uuid/text，认证放在 api_key 请求头
    - 成功响应形如 {"success": true, "cast": {"hash": "0x..."}}，cast.hash 作为消息 id
    - 发布不在 HttpClient 内重试（重试 POST 可能重复发帖），失败交给下个周期
    - text 超过 max_chars 会被截断
    """

    api_key: str
    signer_uuid: str
    http: HttpClient
    api_url: str = DEFAULT_API_URL
    max_chars: int = 320

    def channel(self) -> str:
        return "farcaster"

    def _headers(self) -> dict[str, str]:
        return {
            "accept": "application/json",
            "api_key": self.api_key,
            "content-type": "application/json",
        }

    def _truncate(self, text: str) -> str:
        text = (text or "").strip() or "-"
        if len(text) > self.max_chars:
            text = text[: self.max_chars - 1] + "…"
        return text

    def publish(self, text: str) -> str:
        resp = self.http.post_json(
            self.api_url,
            {"signer_uuid": self.signer_uuid, "text": self._truncate(text)},
            headers=self._headers(),
            retry=False,
        )
        if resp.status < 200 or resp.status >= 300:
            raise PublishError(f"Neynar publish failed: status={resp.status}, body={resp.body[:200]!r}")

        try:
            data = resp.json()
        except Exception as e:  # noqa: BLE001
            raise PublishError(f"Neynar publish invalid JSON response: {resp.body[:200]!r}") from e

        cast = data.get("cast") if isinstance(data, dict) else None
        message_id = cast.get("hash") if isinstance(cast, dict) else None
        if not message_id:
            raise PublishError(f"Neynar publish returned no cast hash: {data!r}")
        return str(message_id)

    def retract(self, message_id: str) -> bool:
        resp = self.http.delete_json(
            self.api_url,
            {"signer_uuid": self.signer_uuid, "target_hash": message_id},
            headers=self._headers(),
        )
        if resp.status < 200 or resp.status >= 300:
            return False
        try:
            data = resp.json()
        except Exception:  # noqa: BLE001
            return False
        return isinstance(data, dict) and bool(data.get("success"))
