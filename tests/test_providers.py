import io
import json
from urllib import error as urllib_error

import pytest

from gcode.errors import ProviderFailure, RateLimited, StreamInterrupted
from gcode.model_providers import AnthropicProvider, OpenAICompatProvider, StreamChunk, collect_stream
from gcode.model_providers import adapters


class FakeResponse:
    def __init__(self, lines=None, body=b""):
        self.lines = [l if isinstance(l, bytes) else l.encode("utf-8") for l in (lines or [])]
        self.body = body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def __iter__(self):
        return iter(self.lines)

    def read(self):
        return self.body


def _sse(obj):
    return "data: " + (obj if isinstance(obj, str) else json.dumps(obj)) + "\n"


def test_iter_sse_data_skips_non_data_lines():
    lines = [b": keep-alive\n", b"event: message\n", b"data: {\"a\": 1}\n", b"\n", "data:[DONE]"]
    assert list(adapters.iter_sse_data(lines)) == ['{"a": 1}', "[DONE]"]


def test_parse_openai_event():
    assert adapters.parse_openai_event("[DONE]").type == "done"
    chunk = adapters.parse_openai_event(json.dumps({"choices": [{"delta": {"content": "hi"}}]}))
    assert (chunk.type, chunk.text) == ("text", "hi")
    assert adapters.parse_openai_event("{not json") is None
    assert adapters.parse_openai_event(json.dumps({"choices": [{"delta": {}}]})) is None


def test_parse_anthropic_event():
    delta = {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "yo"}}
    assert adapters.parse_anthropic_event(json.dumps(delta)).text == "yo"
    assert adapters.parse_anthropic_event(json.dumps({"type": "message_stop"})).type == "done"
    assert adapters.parse_anthropic_event(json.dumps({"type": "ping"})) is None
    with pytest.raises(RateLimited):
        adapters.parse_anthropic_event(json.dumps({"type": "error", "error": {"type": "rate_limit_error"}}))
    with pytest.raises(ProviderFailure):
        adapters.parse_anthropic_event(json.dumps({"type": "error", "error": {"message": "overloaded"}}))


def test_collect_stream():
    chunks = [StreamChunk("text", "a"), StreamChunk("tool_call"), StreamChunk("text", "b"), StreamChunk("done")]
    assert collect_stream(chunks) == "ab"
    with pytest.raises(StreamInterrupted):
        collect_stream([StreamChunk("text", "a")], provider="fast")


def test_openai_stream(monkeypatch):
    sent = {}

    def fake_open(provider, url, payload, headers, timeout_s):
        sent.update(url=url, payload=payload, headers=headers, timeout=timeout_s)
        return FakeResponse(
            [
                _sse({"choices": [{"delta": {"content": "<file "}}]}),
                _sse({"choices": [{"delta": {"content": 'path="a">x</file>'}}]}),
                _sse("[DONE]"),
                _sse({"choices": [{"delta": {"content": "after done"}}]}),
            ]
        )

    monkeypatch.setattr(adapters, "_open", fake_open)
    p = OpenAICompatProvider("https://api.example/v1/", "m1", api_key="k", timeout_s=42)
    text = collect_stream(p.stream("prompt"), provider=p.name)
    assert text == '<file path="a">x</file>'
    assert sent["url"] == "https://api.example/v1/chat/completions"
    assert sent["payload"]["stream"] is True
    assert sent["payload"]["messages"] == [{"role": "user", "content": "prompt"}]
    assert sent["headers"] == {"Authorization": "Bearer k"}
    assert sent["timeout"] == 42


def test_openai_generate(monkeypatch):
    body = json.dumps({"choices": [{"message": {"content": "hello"}}]}).encode()
    monkeypatch.setattr(adapters, "_open", lambda *a: FakeResponse(body=body))
    p = OpenAICompatProvider("https://api.example/v1", "m1", api_key="k")
    assert p.generate("sys", "user") == "hello"


def test_anthropic_generate(monkeypatch):
    sent = {}
    body = json.dumps({"content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]}).encode()

    def fake_open(provider, url, payload, headers, timeout_s):
        sent.update(url=url, payload=payload, headers=headers)
        return FakeResponse(body=body)

    monkeypatch.setattr(adapters, "_open", fake_open)
    p = AnthropicProvider("https://api.anthropic.com/v1", "claude", api_key="k", api_version="2023-06-01")
    assert p.generate("sys", "user") == "ab"
    assert sent["url"].endswith("/messages")
    assert sent["payload"]["system"] == "sys"
    assert sent["headers"] == {"x-api-key": "k", "anthropic-version": "2023-06-01"}


def test_missing_key_fails_before_network(monkeypatch):
    def fail_open(*a):
        raise AssertionError("network should not be touched")

    monkeypatch.setattr(adapters, "_open", fail_open)
    with pytest.raises(ProviderFailure):
        OpenAICompatProvider("https://x", "m", api_key="").generate("s", "u")


def test_http_429_maps_to_rate_limited(monkeypatch):
    def fake_urlopen(req, timeout=None):
        raise urllib_error.HTTPError(req.full_url, 429, "Too Many Requests", {"retry-after": "7"}, io.BytesIO(b"slow"))

    monkeypatch.setattr(adapters.urllib_request, "urlopen", fake_urlopen)
    p = OpenAICompatProvider("https://api.example/v1", "m", api_key="k")
    with pytest.raises(RateLimited) as info:
        p.generate("s", "u")
    assert info.value.retry_after == 7.0


def test_http_500_maps_to_provider_failure(monkeypatch):
    def fake_urlopen(req, timeout=None):
        raise urllib_error.HTTPError(req.full_url, 500, "Server Error", {}, io.BytesIO(b"oops"))

    monkeypatch.setattr(adapters.urllib_request, "urlopen", fake_urlopen)
    with pytest.raises(ProviderFailure) as info:
        OpenAICompatProvider("https://api.example/v1", "m", api_key="k").generate("s", "u")
    assert not isinstance(info.value, RateLimited)
    assert "HTTP 500" in str(info.value)


def test_connection_error_maps_to_provider_failure(monkeypatch):
    def fake_urlopen(req, timeout=None):
        raise urllib_error.URLError("connection refused")

    monkeypatch.setattr(adapters.urllib_request, "urlopen", fake_urlopen)
    with pytest.raises(ProviderFailure):
        AnthropicProvider("https://x/v1", "c", api_key="k").generate("s", "u")
