from __future__ import annotations

from collections.abc import Iterable, Iterator
from itertools import islice

from vekta.pipeline.records import Batch, Record


class Batcher:
    """Groups records into ordered batches of at most ``max_batch_size``.

    Records are only pulled from the source when a batch is requested, so the
    reader never runs ahead of the dispatcher.
    """

    def __init__(self, records: Iterable[Record], max_batch_size: int):
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be >= 1")
        self._source = iter(records)
        self.max_batch_size = max_batch_size
        self._next_batch_id = 0
        self._exhausted = False

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def next_batch(self) -> Batch | None:
        if self._exhausted:
            return None

        records = list(islice(self._source, self.max_batch_size))
        if len(records) < self.max_batch_size:
            self._exhausted = True
        if not records:
            return None

        batch = Batch(batch_id=self._next_batch_id, records=records)
        self._next_batch_id += 1
        return batch

    def __iter__(self) -> Iterator[Batch]:
        while True:
            batch = self.next_batch()
            if batch is None:
                return
            yield batch
