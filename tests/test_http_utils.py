import json
import urllib.error

import pytest

from sfr.http_utils import HttpClient, HttpResponse


class _FakeResponse:
    """
    模拟 urllib.request.urlopen 返回的 response 对象。
    """

    def __init__(self, *, status: int, body: bytes) -> None:
        self.status = status
        self._body = body
        self.headers = {"Content-Type": "application/json"}

    def read(self) -> bytes:
        return self._body

    def geturl(self) -> str:
        return "https://example.com/graphql"

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        return None


def test_response_json_and_text() -> None:
    resp = HttpResponse(status=200, url="u", headers={}, body=b'{"a": 1}')
    assert resp.json() == {"a": 1}
    assert resp.text() == '{"a": 1}'


def test_post_json_encodes_body_and_retries_on_503(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[tuple[str, bytes]] = []

    def _fake_urlopen(req, **_kwargs):  # noqa: ANN001
        seen.append((req.get_method(), req.data))
        if len(seen) == 1:
            raise urllib.error.HTTPError(req.full_url, 503, "Unavailable", {}, None)
        return _FakeResponse(status=200, body=b'{"data": {}}')

    monkeypatch.setattr("urllib.request.urlopen", _fake_urlopen)
    monkeypatch.setattr("time.sleep", lambda _s: None)

    client = HttpClient(max_retries=2, base_backoff_seconds=0)
    resp = client.post_json("https://example.com/graphql", {"query": "{ x }"})

    assert resp.json() == {"data": {}}
    assert len(seen) == 2
    assert seen[0][0] == "POST"
    assert json.loads(seen[0][1]) == {"query": "{ x }"}


def test_retry_disabled_surfaces_first_error(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[int] = []

    def _fake_urlopen(req, **_kwargs):  # noqa: ANN001
        calls.append(1)
        raise urllib.error.HTTPError(req.full_url, 503, "Unavailable", {}, None)

    monkeypatch.setattr("urllib.request.urlopen", _fake_urlopen)
    client = HttpClient(max_retries=3, base_backoff_seconds=0)
    with pytest.raises(urllib.error.HTTPError):
        client.post_json("https://example.com/cast", {"text": "hi"}, retry=False)
    assert calls == [1]
