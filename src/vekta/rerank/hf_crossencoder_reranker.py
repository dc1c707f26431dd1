from __future__ import annotations

from vekta.config import DEFAULT_RERANK_MODEL
from vekta.embedding.device import resolve_device
from vekta.errors import BackendError

from .interfaces import BaseReranker

try:
    from sentence_transformers import CrossEncoder
except Exception:
    CrossEncoder = None


class HFCrossEncoderReranker(BaseReranker):
    """Cross-Encoder reranker using Sentence-Transformers.

    Works with:
    - cross-encoder/ms-marco-... (MiniLM, Electra, TinyBERT, etc.)
    - jinaai/jina-reranker-v1-turbo-en and Qwen/Qwen3-Reranker-* checkpoints.
    """

    def __init__(self, model_id: str = DEFAULT_RERANK_MODEL, device: str | None = None):
        if CrossEncoder is None:
            raise RuntimeError("sentence-transformers not installed.")
        self.model_id = model_id
        self.model = CrossEncoder(model_id, device=resolve_device(device))

    def score(self, query: str, documents: list[str]) -> list[float]:
        if not documents:
            return []
        pairs = [(query, doc) for doc in documents]
        try:
            scores = self.model.predict(pairs, batch_size=len(pairs), show_progress_bar=False)  # higher = better
        except Exception as e:
            raise BackendError(f"{self.model_id}: {e}") from e
        return [float(s) for s in scores]
