"""Small stand-ins for model providers, embedders, recall and the test runner."""

from typing import Dict, List, Optional, Sequence

from gcode.model_providers.base import StreamChunk
from gcode.verify import TestRunOutput


class FakeProvider:
    """Replies are popped in order; an Exception reply is raised instead."""

    kind = "fake"

    def __init__(self, replies: Sequence = (), name: str = "fake", complete: bool = True):
        self.name = name
        self.replies = list(replies)
        self.complete = complete
        self.calls: List[tuple] = []

    def _next(self):
        item = self.replies.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def generate(self, system: str, user: str, timeout_s: Optional[int] = None) -> str:
        self.calls.append(("generate", system, user))
        return self._next()

    def stream(self, prompt: str, timeout_s: Optional[int] = None):
        self.calls.append(("stream", prompt))
        text = self._next()
        half = len(text) // 2
        chunks = [StreamChunk(type="text", text=text[:half]), StreamChunk(type="text", text=text[half:])]
        if self.complete:
            chunks.append(StreamChunk(type="done"))
        return iter(chunks)

    def status(self) -> Dict[str, object]:
        return {"name": self.name, "kind": self.kind}


class FakeEmbedder:
    """Vector of the first key found in the text, else the default."""

    def __init__(self, table: Optional[Dict[str, List[float]]] = None, default=None, fail: bool = False):
        self.table = table or {}
        self.default = default if default is not None else [1.0, 0.0]
        self.fail = fail
        self.texts: List[str] = []

    def embed(self, text: str) -> List[float]:
        self.texts.append(text)
        if self.fail:
            raise RuntimeError("embedding service down")
        for key, vec in self.table.items():
            if key in text:
                return list(vec)
        return list(self.default)


class RecordingRecall:
    def __init__(self):
        self.records: List[tuple] = []

    def record_detached(self, record_type, content, user_id=None):
        self.records.append((record_type, dict(content), user_id))

    def query(self, text, min_similarity=None, limit=None, record_type=None):
        return []


class FakeTestRunner:
    def __init__(self, output: str, exit_code: int = 0):
        self.output = output
        self.exit_code = exit_code
        self.selectors: List[Optional[str]] = []

    def run(self, selector: Optional[str] = None) -> TestRunOutput:
        self.selectors.append(selector)
        return TestRunOutput(raw_output=self.output, exit_code=self.exit_code)
