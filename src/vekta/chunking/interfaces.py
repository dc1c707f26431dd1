from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass


@dataclass(frozen=True)
class TextChunk:
    path: str
    chunk_index: int
    text: str
    start_line: int     # first line of the chunk, 0-based
    end_line: int       # exclusive


class BaseChunker(ABC):

    @abstractmethod
    def chunk(self, text: str, *, path: str) -> Iterator[TextChunk]:
        """Yield chunks in order; callers pull them as batches need them."""
        ...
