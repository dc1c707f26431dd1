from __future__ import annotations

from collections.abc import Iterator
from typing import TextIO

from vekta.errors import InputParseError, ResourceUnreadable
from vekta.pipeline.records import Record, RunStats
from vekta.tasks.interfaces import BaseTask
from vekta.utils.log import get_logger

logger = get_logger("vekta.pipeline.reader")


class LineReader:
    """Lazily turns stdin lines into records with strictly increasing indices.

    Blank lines are skipped without using an index. A line that fails to
    parse either becomes a failed record (``on_parse_error="emit"``) or is
    dropped with a warning (``"skip"``); both are counted in ``stats``.
    """

    def __init__(
        self,
        stream: TextIO,
        task: BaseTask,
        *,
        on_parse_error: str = "emit",
        stats: RunStats | None = None,
    ):
        self._stream = stream
        self._task = task
        self._skip_malformed = on_parse_error == "skip"
        self.stats = stats if stats is not None else RunStats()
        self._next_index = 0

    def _take_index(self) -> int:
        index = self._next_index
        self._next_index += 1
        return index

    def __iter__(self) -> Iterator[Record]:
        for line_no, raw in enumerate(self._stream, start=1):
            line = raw.strip()
            if not line:
                self.stats.skipped_blank += 1
                continue

            try:
                expanded = self._task.expand(self._task.parse(line))
            except (InputParseError, ResourceUnreadable) as e:
                self.stats.malformed += 1
                if self._skip_malformed:
                    self.stats.skipped_malformed += 1
                    logger.warning("Skipping input line", line_no=line_no, source=line[:200], error=str(e))
                    continue
                index = self._take_index()
                logger.warning("Input line failed", line_no=line_no, sequence_index=index, error=str(e))
                self.stats.read += 1
                yield Record.failed(index, self._task.kind, line, e)
                continue

            for kind, payload in expanded:
                self.stats.read += 1
                yield Record(sequence_index=self._take_index(), kind=kind, payload=payload, source=line)
