from __future__ import annotations

import hashlib
import threading
import time
from typing import Any

import pytest

from vekta.embedding.interfaces import BaseEmbedder, EmbedResponse
from vekta.errors import BackendError, InputParseError, ResourceUnreadable, VektaError
from vekta.pipeline.records import Record, RecordKind, Result
from vekta.rerank.interfaces import BaseReranker
from vekta.tasks.interfaces import BaseTask


def fake_vector(text: str, dim: int = 4) -> list[float]:
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [round(b / 255.0, 6) for b in digest[:dim]]


class StubEmbedder(BaseEmbedder):
    """Deterministic embedder; items containing ``fail_marker`` fail on their own."""

    def __init__(self, dim: int = 4, fail_marker: str | None = None, explode_on: str | None = None):
        self.model_name = "stub-embedder"
        self.max_batch_size = 64
        self.dimension = dim
        self.fail_marker = fail_marker
        self.explode_on = explode_on
        self.calls: list[list[Any]] = []
        self._lock = threading.Lock()

    def embed(self, items: list[Any]) -> EmbedResponse:
        with self._lock:
            self.calls.append(list(items))
        if self.explode_on is not None and any(self.explode_on in str(i) for i in items):
            raise BackendError("backend unreachable")
        vectors: list[list[float] | None] = []
        errors: dict[int, VektaError] = {}
        for pos, item in enumerate(items):
            if self.fail_marker is not None and self.fail_marker in str(item):
                vectors.append(None)
                errors[pos] = ResourceUnreadable(f"cannot read {item}")
            else:
                vectors.append(fake_vector(str(item), self.dimension))
        return EmbedResponse(vectors=vectors, model=self.model_name, dimension=self.dimension, errors=errors)


class StubReranker(BaseReranker):
    """Score = number of query words present in the document."""

    model_id = "stub-reranker"

    def score(self, query: str, documents: list[str]) -> list[float]:
        words = set(query.lower().split())
        return [float(len(words & set(doc.lower().split()))) for doc in documents]


class EchoTask(BaseTask):
    """Generic task for pipeline tests; no files, optional per-batch delays.

    ``delay`` maps a batch's first sequence index to seconds to sleep, which
    forces batches to finish out of order.
    """

    name = "echo"
    kind = RecordKind.TEXT_PATH
    per_item_bytes = 1

    def __init__(self, delay=None, fail_batches: set[int] | None = None, on_batch=None):
        self.delay = delay or (lambda first_index: 0.0)
        self.fail_batches = fail_batches or set()
        self.on_batch = on_batch
        self.calls = 0
        self.active = 0
        self.peak_active = 0
        self._lock = threading.Lock()

    def parse(self, line: str) -> str:
        if line.startswith("!"):
            raise InputParseError(f"bad line {line}")
        return line

    def run_batch(self, records: list[Record]) -> list[Result]:
        first = records[0].sequence_index
        with self._lock:
            self.calls += 1
            self.active += 1
            self.peak_active = max(self.peak_active, self.active)
        try:
            if self.on_batch is not None:
                self.on_batch(first)
            time.sleep(self.delay(first))
            if first in self.fail_batches:
                raise BackendError(f"batch at {first} failed")
            return [Result.success(r, [float(len(r.payload))]) for r in records]
        finally:
            with self._lock:
                self.active -= 1

    def render(self, result: Result) -> dict[str, Any]:
        out: dict[str, Any] = {"sequence_index": result.sequence_index, "item": result.record.payload or result.record.source}
        if result.ok:
            out["embedding"] = result.value
        else:
            out["error"] = result.error.to_dict()
        return out


@pytest.fixture
def stub_embedder() -> StubEmbedder:
    return StubEmbedder()


@pytest.fixture
def stub_reranker() -> StubReranker:
    return StubReranker()


@pytest.fixture
def text_files(tmp_path):
    paths = []
    for name, body in [("a.txt", "alpha apples"), ("b.txt", "bravo bananas"), ("c.txt", "charlie cherries")]:
        p = tmp_path / name
        p.write_text(body, encoding="utf-8")
        paths.append(str(p))
    return paths
