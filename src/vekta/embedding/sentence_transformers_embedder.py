from __future__ import annotations

import requests

from vekta.config import DEFAULT_TEXT_MODEL
from vekta.embedding.device import resolve_device
from vekta.embedding.interfaces import BaseEmbedder, EmbedResponse
from vekta.errors import BackendError
from vekta.utils.retry import retry_remote

try:
    from sentence_transformers import SentenceTransformer
except ImportError:
    SentenceTransformer = None


class SentenceTransformerEmbedder(BaseEmbedder):
    """Embed text using a SentenceTransformer/HuggingFace model. Two modes:
    1) Local in-process via SentenceTransformer (if installed)
    2) TEI server via REST (``tei_url``).
    """

    def __init__(
        self,
        model_id: str = DEFAULT_TEXT_MODEL,
        local: bool = True,
        device: str | None = None,
        tei_url: str | None = None,
        batch_size: int = 128,
    ):
        self.model_name = model_id
        self.local = local and not tei_url
        self.tei_url = tei_url
        self.max_batch_size = batch_size
        self.dimension = None

        if self.local:
            if SentenceTransformer is None:
                raise RuntimeError("sentence-transformers not installed; install it or point --tei-url at a TEI server.")
            self.device = resolve_device(device)
            self.model = SentenceTransformer(model_id, device=self.device)
            self.dimension = self.model.get_sentence_embedding_dimension()

        elif not tei_url:
            raise ValueError("For remote mode, tei_url must be provided.")

    def embed(self, items: list[str]) -> EmbedResponse:
        if not items:
            return EmbedResponse(vectors=[], model=self.model_name, dimension=self.dimension or 0)
        try:
            vecs = self._encode_local(items) if self.local else self._encode_remote(items)
        except BackendError:
            raise
        except Exception as e:
            raise BackendError(f"{self.model_name}: {e}") from e

        if len(vecs) != len(items):
            raise BackendError(f"{self.model_name} returned {len(vecs)} vectors for {len(items)} texts")
        if self.dimension is None and vecs:
            self.dimension = len(vecs[0])
        return EmbedResponse(vectors=vecs, model=self.model_name, dimension=self.dimension or 0)

    def _encode_local(self, texts: list[str]) -> list[list[float]]:
        arr = self.model.encode(
            texts,
            batch_size=min(len(texts), self.max_batch_size),
            convert_to_numpy=True,
            show_progress_bar=False,
        )
        return [row.tolist() for row in arr]

    @retry_remote()
    def _encode_remote(self, texts: list[str]) -> list[list[float]]:
        resp = requests.post(
            f"{self.tei_url.rstrip('/')}/embed",
            json={"inputs": texts},
            timeout=120,
        )
        resp.raise_for_status()
        data = resp.json()
        # TEI answers with a bare list; some proxies wrap it
        if isinstance(data, dict):
            data = data.get("embeddings") or data.get("results") or []
        return [list(map(float, v)) for v in data]
