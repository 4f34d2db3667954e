"""Semantic recall: embedded summaries of accepted patterns and debug corrections.

Records are append-only. Queries embed the text, score a recent window of
records by cosine similarity and keep the best matches above a threshold.
Writes never raise to the caller: failures are logged and dropped.
"""

from __future__ import annotations

import json
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple
from urllib import error as urllib_error
from urllib import request as urllib_request

import numpy as np

from . import config
from .errors import ProviderFailure, StorageFailure
from .utils import dbg, warn

RECORD_TYPES = ("pattern", "correction")


@dataclass(frozen=True)
class RecallRecord:
    id: str
    type: str
    embedding: Tuple[float, ...]
    content: Mapping[str, Any]
    created_at: float
    user_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "content": dict(self.content),
            "created_at": self.created_at,
            "user_id": self.user_id,
        }


@dataclass(frozen=True)
class RecallHit:
    record: RecallRecord
    score: float


def build_summary(record_type: str, content: Mapping[str, Any]) -> str:
    """Canonical text that gets embedded: label, preset, prompt, diff."""
    parts = ["Correction" if record_type == "correction" else "Pattern"]
    if content.get("preset"):
        parts.append(f"Vibe: {content['preset']}")
    if content.get("prompt"):
        parts.append(f"Prompt: {content['prompt']}")
    if content.get("diff"):
        parts.append(f"Diff:\n{content['diff']}")
    return "\n\n".join(parts)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine over the shared prefix of a and b; 0.0 when either norm is zero."""
    n = min(len(a), len(b))
    if n == 0:
        return 0.0
    va = np.asarray(a[:n], dtype=float)
    vb = np.asarray(b[:n], dtype=float)
    na = float(np.linalg.norm(va))
    nb = float(np.linalg.norm(vb))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (na * nb))


class Embedder(Protocol):
    def embed(self, text: str) -> List[float]:
        ...


class SentenceTransformerEmbedder:
    """Local sentence-transformers model, loaded on first use."""

    def __init__(self, model_name: Optional[str] = None):
        self.model_name = model_name or config.EMBEDDING_MODEL
        self._model = None
        self._lock = threading.Lock()

    def _get_model(self):
        with self._lock:
            if self._model is None:
                from sentence_transformers import SentenceTransformer

                self._model = SentenceTransformer(self.model_name)
                dbg(f"recall: loaded embedding model {self.model_name}")
            return self._model

    def embed(self, text: str) -> List[float]:
        try:
            vec = self._get_model().encode(text, convert_to_numpy=True)
        except Exception as exc:
            raise ProviderFailure(f"embedding failed: {exc}", provider=self.model_name)
        return [float(x) for x in vec.tolist()]


class HttpEmbedder:
    """OpenAI-style embeddings endpoint."""

    def __init__(
        self,
        url: Optional[str] = None,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_s: Optional[int] = None,
    ):
        self.url = url or config.EMBEDDING_URL
        self.model = model or config.EMBEDDING_MODEL
        self.api_key = config.EMBEDDING_API_KEY if api_key is None else api_key
        self.timeout_s = int(timeout_s or config.GEN_TIMEOUT)

    def embed(self, text: str) -> List[float]:
        if not self.url:
            raise ProviderFailure("embedding URL not configured", provider="embeddings")
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        body = json.dumps({"model": self.model, "input": text}).encode("utf-8")
        req = urllib_request.Request(self.url, data=body, headers=headers, method="POST")
        try:
            with urllib_request.urlopen(req, timeout=self.timeout_s) as resp:
                obj = json.loads(resp.read().decode("utf-8", errors="replace"))
        except (urllib_error.URLError, OSError, json.JSONDecodeError) as exc:
            raise ProviderFailure(f"embedding request failed: {exc}", provider="embeddings")
        return parse_embedding_response(obj)


def parse_embedding_response(obj: Any) -> List[float]:
    vec = None
    if isinstance(obj, dict):
        data = obj.get("data")
        if isinstance(data, list) and data and isinstance(data[0], dict):
            vec = data[0].get("embedding")
        elif "embedding" in obj:
            vec = obj.get("embedding")
    if not isinstance(vec, list) or not vec:
        raise ProviderFailure("embedding response missing vector", provider="embeddings")
    return [float(x) for x in vec]


def build_embedder() -> Embedder:
    if config.EMBEDDING_BACKEND == "http":
        return HttpEmbedder()
    return SentenceTransformerEmbedder()


class RecallStorage(Protocol):
    def append(self, record: RecallRecord) -> None:
        ...

    def recent(self, limit: int) -> List[RecallRecord]:
        """Newest first, at most limit records."""
        ...


class InMemoryRecallStorage:
    def __init__(self):
        self._records: List[RecallRecord] = []
        self._lock = threading.Lock()

    def append(self, record: RecallRecord) -> None:
        with self._lock:
            self._records.append(record)

    def recent(self, limit: int) -> List[RecallRecord]:
        with self._lock:
            newest = list(reversed(self._records))
        return newest[: max(0, limit)]

    def __len__(self) -> int:
        return len(self._records)


def _default_lancedb_path() -> Path:
    if config.LANCEDB_PATH:
        return Path(config.LANCEDB_PATH).expanduser()
    return Path(config.ROOT) / ".gcode" / "lancedb"


class LanceRecallStorage:
    """One LanceDB table; content is stored as a JSON string column."""

    def __init__(self, path: Optional[Path] = None, table: Optional[str] = None):
        self.path = Path(path) if path is not None else _default_lancedb_path()
        self.table = table or config.RECALL_TABLE
        self._db = None
        self._lock = threading.Lock()

    def _ensure_db(self):
        if self._db is None:
            import lancedb

            self.path.mkdir(parents=True, exist_ok=True)
            self._db = lancedb.connect(str(self.path))
        return self._db

    def append(self, record: RecallRecord) -> None:
        row = {
            "vector": [float(x) for x in record.embedding],
            "id": record.id,
            "type": record.type,
            "content": json.dumps(dict(record.content)),
            "created_at": float(record.created_at),
            "user_id": record.user_id or "",
        }
        with self._lock:
            db = self._ensure_db()
            if self.table not in db.table_names():
                db.create_table(self.table, [row])
            else:
                db.open_table(self.table).add([row])

    def recent(self, limit: int) -> List[RecallRecord]:
        """Newest first. Only created_at is scanned; full rows are read for the window."""
        if limit <= 0:
            return []
        with self._lock:
            db = self._ensure_db()
            if self.table not in db.table_names():
                return []
            tbl = db.open_table(self.table)
            total = tbl.count_rows()
            if total == 0:
                return []
            query = tbl.search().limit(total)
            if total > limit:
                stamps = tbl.search().select(["created_at"]).limit(total).to_list()
                cutoff = sorted((float(r["created_at"]) for r in stamps), reverse=True)[limit - 1]
                query = query.where(f"created_at >= {cutoff!r}")
            rows = query.to_list()
        rows.sort(key=lambda r: r.get("created_at") or 0.0, reverse=True)
        return [_row_to_record(r) for r in rows[:limit]]


def _row_to_record(row: Dict[str, Any]) -> RecallRecord:
    try:
        content = json.loads(row.get("content") or "{}")
    except json.JSONDecodeError:
        content = {}
    return RecallRecord(
        id=str(row.get("id") or ""),
        type=str(row.get("type") or "pattern"),
        embedding=tuple(float(x) for x in (row.get("vector") or [])),
        content=content if isinstance(content, dict) else {},
        created_at=float(row.get("created_at") or 0.0),
        user_id=row.get("user_id") or None,
    )


@dataclass
class RecallStore:
    embedder: Embedder
    storage: RecallStorage = field(default_factory=InMemoryRecallStorage)
    window: int = field(default_factory=lambda: config.RECALL_WINDOW)
    clock: Callable[[], float] = time.time

    def _insert(
        self, record_type: str, content: Mapping[str, Any], user_id: Optional[str]
    ) -> RecallRecord:
        summary = build_summary(record_type, content)
        try:
            vector = self.embedder.embed(summary)
            record = RecallRecord(
                id=str(uuid.uuid4()),
                type=record_type,
                embedding=tuple(float(x) for x in vector),
                content=dict(content),
                created_at=self.clock(),
                user_id=user_id,
            )
            self.storage.append(record)
        except Exception as exc:
            raise StorageFailure(f"recall insert failed: {exc}") from exc
        return record

    def record(
        self, record_type: str, content: Mapping[str, Any], user_id: Optional[str] = None
    ) -> Optional[RecallRecord]:
        """Append one record. Returns None (after a warning) when the insert fails."""
        if record_type not in RECORD_TYPES:
            raise ValueError(f"record type must be one of {RECORD_TYPES}, got {record_type!r}")
        try:
            record = self._insert(record_type, content, user_id)
        except StorageFailure as exc:
            warn(f"recall: {exc}")
            return None
        dbg(f"recall: stored {record_type} {record.id}")
        return record

    def record_detached(
        self, record_type: str, content: Mapping[str, Any], user_id: Optional[str] = None
    ) -> threading.Thread:
        """Fire-and-forget record() on a daemon thread."""
        if record_type not in RECORD_TYPES:
            raise ValueError(f"record type must be one of {RECORD_TYPES}, got {record_type!r}")
        t = threading.Thread(
            target=self.record,
            args=(record_type, dict(content), user_id),
            name="gcode-recall-record",
            daemon=True,
        )
        t.start()
        return t

    def query(
        self,
        text: str,
        min_similarity: Optional[float] = None,
        limit: Optional[int] = None,
        record_type: Optional[str] = None,
    ) -> List[RecallHit]:
        min_similarity = config.RECALL_MIN_SIMILARITY if min_similarity is None else float(min_similarity)
        limit = config.RECALL_LIMIT if limit is None else int(limit)
        if limit <= 0:
            return []
        vector = self.embedder.embed(text)
        hits = []
        for record in self.storage.recent(self.window):
            if record_type and record.type != record_type:
                continue
            score = cosine_similarity(vector, record.embedding)
            if score >= min_similarity:
                hits.append(RecallHit(record=record, score=score))
        hits.sort(key=lambda h: h.score, reverse=True)
        dbg(f"recall: query matched {len(hits)} record(s), returning {min(len(hits), limit)}")
        return hits[:limit]
