"""Provider protocol for model backends."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, Optional, Protocol

from ..errors import StreamInterrupted


@dataclass
class StreamChunk:
    type: str  # "text" | "tool_call" | "done"
    text: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


class ModelProvider(Protocol):
    kind: str
    name: str

    def generate(self, system: str, user: str, timeout_s: Optional[int] = None) -> str:
        ...

    def stream(self, prompt: str, timeout_s: Optional[int] = None) -> Iterator[StreamChunk]:
        ...

    def status(self) -> Dict[str, Any]:
        ...


def collect_stream(chunks: Iterable[StreamChunk], provider: str = "") -> str:
    """Join text deltas; a stream that stops before its done signal is a failure."""
    parts = []
    for chunk in chunks:
        if chunk.type == "done":
            return "".join(parts)
        if chunk.type == "text" and chunk.text:
            parts.append(chunk.text)
    raise StreamInterrupted(
        f"{provider or 'model'} stream ended without completion ({len(parts)} chunk(s) received)",
        provider=provider,
    )
