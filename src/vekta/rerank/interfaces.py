from __future__ import annotations

from abc import ABC, abstractmethod


class BaseReranker(ABC):
    """Scores documents against a query. Higher is more relevant.

    Must return one score per document, in input order, and be safe to call
    from several worker threads at once.
    """

    model_id: str

    @abstractmethod
    def score(self, query: str, documents: list[str]) -> list[float]:
        ...
