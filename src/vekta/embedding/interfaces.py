from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from vekta.errors import VektaError


@dataclass
class EmbedResponse:
    vectors: list[list[float] | None]
    model: str
    dimension: int
    errors: dict[int, VektaError] = field(default_factory=dict)   # position -> per-item failure


class BaseEmbedder(ABC):
    """Batch-first interface so we can stream -> batch -> embed.

    Implementations must be safe to call from several worker threads at once.
    """

    model_name: str
    max_batch_size: int
    dimension: int | None = None  # some backends report dimension after first call

    @abstractmethod
    def embed(self, items: list[Any]) -> EmbedResponse:
        """Embed a batch. Must preserve order 1:1.

        Items that fail on their own get ``None`` in ``vectors`` and an entry in
        ``errors``; a failure of the whole call raises ``BackendError``.
        """
