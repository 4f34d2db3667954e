"""HTTP adapters for the fast and refine model backends.

Both speak JSON over the standard library client, the same way the local
llama.cpp server is driven: non-streaming calls read one JSON body, streaming
calls read server-sent events line by line.
"""

from __future__ import annotations

import json
import socket
from typing import Any, Dict, Iterator, List, Optional
from urllib import error as urllib_error
from urllib import request as urllib_request

from .. import config
from ..errors import ProviderFailure, RateLimited
from ..utils import dbg
from .base import StreamChunk


def _retry_after_seconds(headers: Any) -> Optional[float]:
    if headers is None:
        return None
    for name in ("retry-after", "x-ratelimit-reset"):
        value = headers.get(name)
        if not value:
            continue
        try:
            seconds = float(str(value).strip())
        except ValueError:
            continue
        if seconds >= 0:
            return seconds
    return None


def _open(
    provider: str,
    url: str,
    payload: Dict[str, Any],
    headers: Dict[str, str],
    timeout_s: int,
):
    body = json.dumps(payload).encode("utf-8")
    req = urllib_request.Request(
        url,
        data=body,
        headers={"Content-Type": "application/json", **headers},
        method="POST",
    )
    try:
        return urllib_request.urlopen(req, timeout=max(1, int(timeout_s)))
    except urllib_error.HTTPError as exc:
        detail = ""
        try:
            detail = exc.read().decode("utf-8", errors="replace")
        except Exception:
            pass
        code = getattr(exc, "code", 0)
        if code == 429:
            raise RateLimited(
                f"{provider} rate limit exceeded",
                retry_after=_retry_after_seconds(getattr(exc, "headers", None)),
                provider=provider,
            )
        raise ProviderFailure(f"{provider} HTTP {code}: {detail[:300]}", provider=provider)
    except (urllib_error.URLError, socket.timeout, OSError) as exc:
        raise ProviderFailure(f"{provider} request failed: {exc}", provider=provider)


def _read_json(provider: str, resp) -> Dict[str, Any]:
    try:
        with resp:
            raw = resp.read().decode("utf-8", errors="replace")
    except (socket.timeout, OSError) as exc:
        raise ProviderFailure(f"{provider} read failed: {exc}", provider=provider)
    try:
        obj = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProviderFailure(f"{provider} returned invalid JSON: {exc}", provider=provider)
    if not isinstance(obj, dict):
        raise ProviderFailure(f"{provider} returned a non-object response", provider=provider)
    return obj


def iter_sse_data(lines) -> Iterator[str]:
    """Yield the payload of every `data:` line of a server-sent event stream."""
    for raw_line in lines:
        line = raw_line.decode("utf-8", errors="replace") if isinstance(raw_line, bytes) else raw_line
        line = line.strip()
        if not line.startswith("data:"):
            continue
        yield line[5:].strip()


def _stream_events(provider: str, resp) -> Iterator[str]:
    try:
        with resp:
            yield from iter_sse_data(resp)
    except (socket.timeout, OSError) as exc:
        raise ProviderFailure(f"{provider} stream read failed: {exc}", provider=provider)


def parse_openai_event(payload: str) -> Optional[StreamChunk]:
    if payload == "[DONE]":
        return StreamChunk(type="done")
    try:
        obj = json.loads(payload)
    except json.JSONDecodeError:
        return None
    choices = obj.get("choices") if isinstance(obj, dict) else None
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    choice = choices[0]
    delta = choice.get("delta") or {}
    if isinstance(delta, dict) and delta.get("content"):
        return StreamChunk(type="text", text=str(delta["content"]), raw=obj)
    if isinstance(delta, dict) and delta.get("tool_calls"):
        return StreamChunk(type="tool_call", raw=obj)
    message = choice.get("message") or {}
    if isinstance(message, dict) and message.get("content"):
        return StreamChunk(type="text", text=str(message["content"]), raw=obj)
    return None


def parse_anthropic_event(payload: str, provider: str = "anthropic") -> Optional[StreamChunk]:
    try:
        obj = json.loads(payload)
    except json.JSONDecodeError:
        return None
    if not isinstance(obj, dict):
        return None
    kind = obj.get("type")
    if kind == "content_block_delta":
        delta = obj.get("delta") or {}
        if isinstance(delta, dict) and delta.get("text"):
            return StreamChunk(type="text", text=str(delta["text"]), raw=obj)
        return None
    if kind == "message_stop":
        return StreamChunk(type="done", raw=obj)
    if kind == "error":
        err = obj.get("error") or {}
        message = str(err.get("message") or "stream error")
        if err.get("type") == "rate_limit_error":
            raise RateLimited(f"{provider} rate limit exceeded: {message}", provider=provider)
        raise ProviderFailure(f"{provider} stream error: {message}", provider=provider)
    return None


class OpenAICompatProvider:
    """Any OpenAI-compatible /chat/completions endpoint (xAI Grok, llama.cpp server, ...)."""

    kind = "openai_compat"

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str = "",
        temperature: float = 0.7,
        max_tokens: int = 8192,
        timeout_s: int = 0,
        name: str = "",
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.temperature = float(temperature)
        self.max_tokens = int(max_tokens)
        self.timeout_s = int(timeout_s or config.GEN_TIMEOUT)
        self.name = name or model

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise ProviderFailure(f"{self.name}: missing API key", provider=self.name)
        return {"Authorization": f"Bearer {self.api_key}"}

    def _payload(self, messages: List[Dict[str, str]], stream: bool) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": stream,
        }

    def generate(self, system: str, user: str, timeout_s: Optional[int] = None) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": user})
        dbg(f"{self.name}: generate system_len={len(system)} user_len={len(user)}")
        resp = _open(
            self.name,
            self.base_url + "/chat/completions",
            self._payload(messages, stream=False),
            self._headers(),
            timeout_s or self.timeout_s,
        )
        obj = _read_json(self.name, resp)
        choices = obj.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            msg = choices[0].get("message")
            if isinstance(msg, dict) and isinstance(msg.get("content"), str):
                return msg["content"]
            if isinstance(choices[0].get("text"), str):
                return choices[0]["text"]
        raise ProviderFailure(f"{self.name} response missing completion content", provider=self.name)

    def stream(self, prompt: str, timeout_s: Optional[int] = None) -> Iterator[StreamChunk]:
        dbg(f"{self.name}: stream prompt_len={len(prompt)}")
        resp = _open(
            self.name,
            self.base_url + "/chat/completions",
            self._payload([{"role": "user", "content": prompt}], stream=True),
            self._headers(),
            timeout_s or self.timeout_s,
        )
        for payload in _stream_events(self.name, resp):
            chunk = parse_openai_event(payload)
            if chunk is None:
                continue
            yield chunk
            if chunk.type == "done":
                return

    def status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "base_url": self.base_url,
            "model": self.model,
            "has_key": bool(self.api_key),
        }


class AnthropicProvider:
    """Anthropic messages API."""

    kind = "anthropic"

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str = "",
        temperature: float = 0.3,
        max_tokens: int = 8192,
        timeout_s: int = 0,
        name: str = "",
        api_version: str = "",
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.temperature = float(temperature)
        self.max_tokens = int(max_tokens)
        self.timeout_s = int(timeout_s or config.GEN_TIMEOUT)
        self.name = name or model
        self.api_version = api_version or config.ANTHROPIC_VERSION

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise ProviderFailure(f"{self.name}: missing API key", provider=self.name)
        return {"x-api-key": self.api_key, "anthropic-version": self.api_version}

    def _payload(self, system: str, user: str, stream: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": user}],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "stream": stream,
        }
        if system:
            payload["system"] = system
        return payload

    def generate(self, system: str, user: str, timeout_s: Optional[int] = None) -> str:
        dbg(f"{self.name}: generate system_len={len(system)} user_len={len(user)}")
        resp = _open(
            self.name,
            self.base_url + "/messages",
            self._payload(system, user, stream=False),
            self._headers(),
            timeout_s or self.timeout_s,
        )
        obj = _read_json(self.name, resp)
        blocks = obj.get("content")
        if isinstance(blocks, list):
            texts = [
                str(b.get("text") or "")
                for b in blocks
                if isinstance(b, dict) and b.get("type") == "text"
            ]
            return "".join(texts)
        raise ProviderFailure(f"{self.name} response missing content blocks", provider=self.name)

    def stream(self, prompt: str, timeout_s: Optional[int] = None) -> Iterator[StreamChunk]:
        dbg(f"{self.name}: stream prompt_len={len(prompt)}")
        resp = _open(
            self.name,
            self.base_url + "/messages",
            self._payload("", prompt, stream=True),
            self._headers(),
            timeout_s or self.timeout_s,
        )
        for payload in _stream_events(self.name, resp):
            chunk = parse_anthropic_event(payload, provider=self.name)
            if chunk is None:
                continue
            yield chunk
            if chunk.type == "done":
                return

    def status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "base_url": self.base_url,
            "model": self.model,
            "has_key": bool(self.api_key),
        }


def build_fast_provider() -> OpenAICompatProvider:
    return OpenAICompatProvider(
        base_url=config.FAST_BASE_URL,
        model=config.FAST_MODEL,
        api_key=config.FAST_API_KEY,
        temperature=config.FAST_TEMP,
        max_tokens=config.FAST_MAX_TOKENS,
        name=f"fast:{config.FAST_MODEL}",
    )


def build_refine_provider():
    if config.REFINE_API_STYLE == "openai":
        return OpenAICompatProvider(
            base_url=config.REFINE_BASE_URL,
            model=config.REFINE_MODEL,
            api_key=config.REFINE_API_KEY,
            temperature=config.REFINE_TEMP,
            max_tokens=config.REFINE_MAX_TOKENS,
            name=f"refine:{config.REFINE_MODEL}",
        )
    return AnthropicProvider(
        base_url=config.REFINE_BASE_URL,
        model=config.REFINE_MODEL,
        api_key=config.REFINE_API_KEY,
        temperature=config.REFINE_TEMP,
        max_tokens=config.REFINE_MAX_TOKENS,
        name=f"refine:{config.REFINE_MODEL}",
    )
