"""Result sinks that serialize JSON lines onto a single output stream."""

from __future__ import annotations

import heapq
import json
from collections.abc import Callable
from typing import Any, TextIO

from vekta.errors import ReorderBufferOverflow
from vekta.pipeline.records import Result, RunStats
from vekta.utils._json_default import _json_default

Renderer = Callable[[Result], dict[str, Any]]


def dumps_line(obj: dict[str, Any]) -> str:
    return json.dumps(obj, ensure_ascii=False, default=_json_default) + "\n"


class ResultWriter:
    """Reorder buffer: emits results in strictly increasing sequence index.

    Completed batches may arrive in any order. A batch whose first index is
    not the next expected one is held; whenever the smallest held index
    matches, contiguous results are drained and the stream is flushed.
    Holding more than ``capacity`` records raises ``ReorderBufferOverflow``.
    """

    def __init__(
        self,
        stream: TextIO,
        render: Renderer,
        *,
        capacity: int,
        stats: RunStats | None = None,
        first_index: int = 0,
    ):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._stream = stream
        self._render = render
        self.capacity = capacity
        self.stats = stats if stats is not None else RunStats()
        self.next_index = first_index
        self._heap: list[tuple[int, list[Result]]] = []
        self._held_records = 0
        self.peak_held_records = 0

    @property
    def held_batches(self) -> int:
        return len(self._heap)

    @property
    def held_records(self) -> int:
        return self._held_records

    def accept(self, results: list[Result]) -> int:
        """Take one completed batch; return how many lines were written."""
        if not results:
            return 0
        results = sorted(results, key=lambda r: r.sequence_index)
        if self._held_records + len(results) > self.capacity:
            raise ReorderBufferOverflow(
                f"holding {self._held_records + len(results)} results exceeds capacity {self.capacity}"
            )
        heapq.heappush(self._heap, (results[0].sequence_index, results))
        self._held_records += len(results)
        self.peak_held_records = max(self.peak_held_records, self._held_records)
        return self._drain()

    def _drain(self) -> int:
        written = 0
        while self._heap and self._heap[0][0] == self.next_index:
            _, results = heapq.heappop(self._heap)
            self._held_records -= len(results)
            for result in results:
                if result.sequence_index != self.next_index:
                    raise ReorderBufferOverflow(
                        f"gap in sequence: expected {self.next_index}, got {result.sequence_index}"
                    )
                self._write(result)
                self.next_index += 1
                written += 1
        if written:
            self._stream.flush()
        return written

    def _write(self, result: Result) -> None:
        self._stream.write(dumps_line(self._render(result)))
        self.stats.emitted += 1
        if result.ok:
            self.stats.succeeded += 1
        else:
            self.stats.failed += 1

    def finish(self) -> None:
        self._stream.flush()


class ScoreOrderedWriter(ResultWriter):
    """Collects every result and writes them by descending score at the end.

    Ties keep input order; failed results follow all scored ones. Unlike the
    streaming writer this holds the whole run, so it is only used when score
    ordering is requested. ``top_n`` limits scored lines; failures are always
    written.
    """

    def __init__(
        self,
        stream: TextIO,
        render: Renderer,
        *,
        top_n: int | None = None,
        stats: RunStats | None = None,
    ):
        super().__init__(stream, render, capacity=1, stats=stats)
        self.top_n = top_n
        self._collected: list[Result] = []

    @property
    def held_batches(self) -> int:
        return 0

    @property
    def held_records(self) -> int:
        return len(self._collected)

    def accept(self, results: list[Result]) -> int:
        self._collected.extend(results)
        self.peak_held_records = max(self.peak_held_records, len(self._collected))
        return 0

    def finish(self) -> None:
        scored = sorted(
            (r for r in self._collected if r.ok),
            key=lambda r: (-float(r.value), r.sequence_index),
        )
        failed = sorted((r for r in self._collected if not r.ok), key=lambda r: r.sequence_index)
        if self.top_n is not None:
            scored = scored[: self.top_n]
        for result in scored + failed:
            self._write(result)
        self._collected.clear()
        self._stream.flush()
