from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from tenacity import wait_none

from conftest import run
from cinesonics.config import Settings
from cinesonics.errors import (
    EmptyResult,
    MalformedUpstreamPayload,
    UpstreamAuthFailed,
    UpstreamBalanceExhausted,
    UpstreamUnavailable,
)
from cinesonics.upstream import PollinationsClient
import cinesonics.upstream as upstream_mod


def test_cover_url_encodes_prompt_and_key():
    cfg = Settings(pollinations_api_key="s3cr&t", image_api_base="https://img.test/image")
    client = PollinationsClient(cfg.pollinations_api_key, cfg)
    url = client.cover_url("Dark rain. 4k / moody", seed=1234)
    parts = urlsplit(url)
    assert parts.path == "/image/Dark%20rain.%204k%20%2F%20moody"
    q = parse_qs(parts.query)
    assert q["seed"] == ["1234"]
    assert q["key"] == ["s3cr&t"]
    assert q["nologo"] == ["true"]
    assert q["width"] == [str(cfg.image_size)]


def _patch_transport(monkeypatch, handler):
    real = httpx.AsyncClient

    def factory(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(handler)
        return real(*args, **kwargs)

    monkeypatch.setattr(upstream_mod.httpx, "AsyncClient", factory)


def test_fetch_image_passes_content_type(monkeypatch):
    _patch_transport(monkeypatch, lambda req: httpx.Response(200, content=b"img", headers={"content-type": "image/webp"}))
    client = PollinationsClient("k", Settings(pollinations_api_key="k"))
    body, ctype = run(client.fetch_image("https://img.test/x"))
    assert body == b"img"
    assert ctype == "image/webp"


def test_fetch_image_defaults_content_type(monkeypatch):
    _patch_transport(monkeypatch, lambda req: httpx.Response(200, content=b"img"))
    client = PollinationsClient("k", Settings(pollinations_api_key="k"))
    _, ctype = run(client.fetch_image("https://img.test/x"))
    assert ctype == "image/jpeg"


def test_fetch_image_error_status(monkeypatch):
    _patch_transport(monkeypatch, lambda req: httpx.Response(500))
    client = PollinationsClient("k", Settings(pollinations_api_key="k"))
    with pytest.raises(UpstreamUnavailable) as ei:
        run(client.fetch_image("https://img.test/x"))
    assert ei.value.status_code == 500


def _completion(content):
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 0,
        "model": "qwen-safety",
        "choices": [
            {"index": 0, "finish_reason": "stop", "message": {"role": "assistant", "content": content}}
        ],
    }


def _text_client(monkeypatch, handler, retries=2):
    monkeypatch.setattr(upstream_mod, "wait_exponential", lambda **kw: wait_none())
    cfg = Settings(pollinations_api_key="k", text_api_base="https://text.test/v1", upstream_retries=retries)
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PollinationsClient("k", cfg, http_client=http)


def test_complete_returns_content(monkeypatch):
    seen = []

    def handler(req):
        seen.append(req)
        return httpx.Response(200, json=_completion('{"tracks":[1]}'))

    client = _text_client(monkeypatch, handler)
    assert run(client.complete("sys", "user")) == '{"tracks":[1]}'
    assert seen[0].url.path == "/v1/chat/completions"
    assert seen[0].headers["authorization"] == "Bearer k"


@pytest.mark.parametrize(
    "status,exc",
    [(401, UpstreamAuthFailed), (402, UpstreamBalanceExhausted), (404, UpstreamUnavailable)],
)
def test_complete_maps_error_statuses(monkeypatch, status, exc):
    calls = []

    def handler(req):
        calls.append(req)
        return httpx.Response(status, json={"error": {"message": "nope"}})

    client = _text_client(monkeypatch, handler)
    with pytest.raises(exc) as ei:
        run(client.complete("sys", "user"))
    assert ei.value.kind == "upstream_error"
    assert len(calls) == 1
    if exc is UpstreamUnavailable:
        assert ei.value.status_code == 404


def test_complete_empty_choices(monkeypatch):
    body = _completion("x")
    body["choices"] = []
    client = _text_client(monkeypatch, lambda req: httpx.Response(200, json=body))
    with pytest.raises(EmptyResult) as ei:
        run(client.complete("sys", "user"))
    assert ei.value.message == "No content returned from AI"


def test_complete_empty_content(monkeypatch):
    client = _text_client(monkeypatch, lambda req: httpx.Response(200, json=_completion("")))
    with pytest.raises(EmptyResult):
        run(client.complete("sys", "user"))


def test_complete_non_json_body(monkeypatch):
    client = _text_client(
        monkeypatch,
        lambda req: httpx.Response(200, content=b"<html>gateway</html>", headers={"content-type": "text/html"}),
    )
    with pytest.raises(MalformedUpstreamPayload):
        run(client.complete("sys", "user"))


def test_complete_retries_server_error_then_succeeds(monkeypatch):
    replies = [httpx.Response(503, json={"error": {"message": "busy"}}), httpx.Response(200, json=_completion("ok"))]
    client = _text_client(monkeypatch, lambda req: replies.pop(0))
    assert run(client.complete("sys", "user")) == "ok"
    assert replies == []


def test_complete_retries_connection_error_then_succeeds(monkeypatch):
    attempts = []

    def handler(req):
        attempts.append(req)
        if len(attempts) == 1:
            raise httpx.ConnectError("refused", request=req)
        return httpx.Response(200, json=_completion("ok"))

    client = _text_client(monkeypatch, handler)
    assert run(client.complete("sys", "user")) == "ok"
    assert len(attempts) == 2


def test_complete_gives_up_after_retries(monkeypatch):
    attempts = []

    def handler(req):
        attempts.append(req)
        return httpx.Response(503, json={"error": {"message": "busy"}})

    client = _text_client(monkeypatch, handler, retries=2)
    with pytest.raises(UpstreamUnavailable) as ei:
        run(client.complete("sys", "user"))
    assert ei.value.status_code == 503
    assert len(attempts) == 2
