from __future__ import annotations

import signal
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TextIO

from vekta.config import PipelineConfig
from vekta.pipeline.batcher import Batcher
from vekta.pipeline.dispatcher import Dispatcher
from vekta.pipeline.reader import LineReader
from vekta.pipeline.records import RunStats
from vekta.pipeline.writer import ResultWriter, ScoreOrderedWriter
from vekta.resources.sizer import ResourceBudget
from vekta.tasks.interfaces import BaseTask
from vekta.utils.log import get_logger

logger = get_logger("vekta.pipeline.runner")


@contextmanager
def _interrupt_handler(dispatcher: Dispatcher, enabled: bool = True) -> Iterator[None]:
    """First SIGINT/SIGTERM drains in-flight work; a second SIGINT interrupts hard."""
    if not enabled or threading.current_thread() is not threading.main_thread():
        yield
        return

    previous = {}

    def _handle(signum, frame):
        if dispatcher.cancelled and signum == signal.SIGINT:
            raise KeyboardInterrupt
        logger.warning("Interrupt received, draining in-flight batches", signal=signum)
        dispatcher.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, _handle)
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def run_pipeline(
    stream_in: TextIO,
    stream_out: TextIO,
    task: BaseTask,
    budget: ResourceBudget,
    config: PipelineConfig | None = None,
    *,
    dispatcher: Dispatcher | None = None,
) -> RunStats:
    """stdin -> reader -> batcher -> dispatcher -> writer -> stdout."""
    config = config or PipelineConfig()
    stats = RunStats()

    reader = LineReader(stream_in, task, on_parse_error=config.on_parse_error, stats=stats)
    batcher = Batcher(reader, budget.max_batch_size)
    dispatcher = dispatcher or Dispatcher(task, budget, fail_fast=config.fail_fast)

    if config.output_order == "score":
        writer: ResultWriter = ScoreOrderedWriter(stream_out, task.render, top_n=config.top_n, stats=stats)
    else:
        writer = ResultWriter(stream_out, task.render, capacity=budget.buffer_capacity, stats=stats)

    started = time.perf_counter()
    with _interrupt_handler(dispatcher, enabled=config.install_signal_handlers):
        for outcome in dispatcher.stream(batcher, backlog=lambda: writer.held_batches):
            writer.accept(outcome.results)
    writer.finish()

    stats.aborted = dispatcher.aborted
    stats.interrupted = dispatcher.cancelled
    logger.info(
        "Run finished",
        read=stats.read,
        emitted=stats.emitted,
        succeeded=stats.succeeded,
        failed=stats.failed,
        malformed=stats.malformed,
        skipped=stats.skipped_malformed,
        peak_buffered=writer.peak_held_records,
        duration_s=round(time.perf_counter() - started, 3),
    )
    return stats
