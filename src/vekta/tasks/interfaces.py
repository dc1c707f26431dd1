from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

from vekta.pipeline.records import Record, RecordKind, Result


class BaseTask(ABC):
    """Glue between the generic pipeline and one backend.

    A task knows how to turn an input line into a payload, how to run a batch
    of records through its backend, and how to render a result as a JSON
    object. ``run_batch`` runs on worker threads and must be safe to call
    concurrently.
    """

    name: str
    kind: RecordKind
    per_item_bytes: int

    @abstractmethod
    def parse(self, line: str) -> Any:
        """Return the payload for a stripped, non-empty line or raise ``InputParseError``."""

    def expand(self, payload: Any) -> Iterable[tuple[RecordKind, Any]]:
        """Fan one parsed line out into one or more records (default: one).

        May return a lazy iterable; the reader pulls from it only as batches
        are formed. Raise ``ResourceUnreadable`` eagerly, before returning.
        """
        return [(self.kind, payload)]

    @abstractmethod
    def run_batch(self, records: list[Record]) -> list[Result]:
        """Return exactly one Result per record, in the same order.

        Raise ``BackendError`` when the backend call fails as a whole.
        """

    @abstractmethod
    def render(self, result: Result) -> dict[str, Any]:
        ...
