"""Bounded-concurrency execution of batches on a worker pool.

Up to ``max_in_flight_batches`` backend calls run at once. As soon as one
finishes, the next batch is pulled from the batcher and submitted, subject
to a ``backlog`` callback that reports how many completed batches are still
held downstream (the reorder buffer). In-flight plus held never exceeds the
in-flight budget, which bounds buffered records to
``max_in_flight_batches * max_batch_size``.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass

from vekta.errors import BackendError, ErrorKind
from vekta.pipeline.batcher import Batcher
from vekta.pipeline.records import Batch, ErrorInfo, Record, Result
from vekta.resources.sizer import ResourceBudget
from vekta.tasks.interfaces import BaseTask
from vekta.utils.log import get_logger

logger = get_logger("vekta.pipeline.dispatcher")


@dataclass
class BatchOutcome:
    batch: Batch
    results: list[Result]

    @property
    def backend_failed(self) -> bool:
        return any(r.error is not None and r.error.kind is ErrorKind.BACKEND for r in self.results)


class Dispatcher:

    def __init__(self, task: BaseTask, budget: ResourceBudget, *, fail_fast: bool = False):
        self._task = task
        self.budget = budget
        self.fail_fast = fail_fast
        self._cancelled = threading.Event()
        self._aborted = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def stopping(self) -> bool:
        return self._aborted or self._cancelled.is_set()

    def cancel(self) -> None:
        """Stop admitting batches; in-flight batches still complete."""
        self._cancelled.set()

    def run_batch(self, batch: Batch) -> BatchOutcome:
        """Run one batch; never raises. Backend failures become failed results."""
        live: list[Record] = [r for r in batch.records if not r.is_failed]
        by_index: dict[int, Result] = {
            r.sequence_index: Result.failure(r, r.error) for r in batch.records if r.is_failed
        }

        if live:
            try:
                produced = self._task.run_batch(live)
                if [r.sequence_index for r in produced] != [r.sequence_index for r in live]:
                    raise BackendError(
                        f"backend returned {len(produced)} results for {len(live)} records"
                    )
            except BackendError as e:
                logger.error(
                    "Batch failed",
                    batch_id=batch.batch_id,
                    size=len(live),
                    first_index=batch.first_index,
                    error=str(e),
                )
                produced = []
                for pos, record in enumerate(live):
                    cause = e.item_errors.get(pos, e)
                    produced.append(Result.failure(record, ErrorInfo.from_exception(cause)))
            except Exception as e:
                logger.exception("Unexpected error in batch", batch_id=batch.batch_id)
                wrapped = BackendError(f"{e.__class__.__name__}: {e}")
                produced = [Result.failure(record, wrapped) for record in live]

            for result in produced:
                by_index[result.sequence_index] = result
                if not result.ok:
                    logger.warning(
                        "Record failed",
                        sequence_index=result.sequence_index,
                        source=result.record.source[:200],
                        kind=result.error.kind.value,
                        error=result.error.message,
                    )

        ordered = [by_index[r.sequence_index] for r in batch.records]
        return BatchOutcome(batch=batch, results=ordered)

    def stream(
        self,
        batcher: Batcher,
        *,
        backlog: Callable[[], int] = lambda: 0,
    ) -> Iterator[BatchOutcome]:
        """Yield outcomes in completion order until input ends or the run stops."""
        limit = self.budget.max_in_flight_batches
        pending: dict[Future[BatchOutcome], Batch] = {}

        with ThreadPoolExecutor(max_workers=limit, thread_name_prefix="vekta-worker") as pool:
            while True:
                while not self.stopping and len(pending) + backlog() < limit:
                    batch = batcher.next_batch()
                    if batch is None:
                        break
                    # cancellation may arrive while next_batch() blocks on stdin
                    if self.stopping:
                        logger.warning(
                            "Discarding unadmitted batch",
                            batch_id=batch.batch_id,
                            dropped_records=len(batch),
                            first_index=batch.first_index,
                        )
                        break
                    logger.debug("Dispatching batch", batch_id=batch.batch_id, size=len(batch))
                    pending[pool.submit(self.run_batch, batch)] = batch

                if not pending:
                    if self.stopping or batcher.exhausted:
                        return
                    # unreachable while the reorder buffer drains contiguously
                    raise RuntimeError("dispatcher stalled with no work in flight")

                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in sorted(done, key=lambda f: pending[f].batch_id):
                    pending.pop(future)
                    outcome = future.result()
                    if self.fail_fast and outcome.backend_failed and not self._aborted:
                        self._aborted = True
                        logger.error(
                            "Backend error with fail-fast set, draining in-flight batches",
                            batch_id=outcome.batch.batch_id,
                            in_flight=len(pending),
                        )
                    yield outcome
