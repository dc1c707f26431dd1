import io
import json
import os
import signal

from vekta.config import PipelineConfig
from vekta.pipeline.batcher import Batcher
from vekta.pipeline.dispatcher import Dispatcher
from vekta.pipeline.reader import LineReader
from vekta.pipeline.records import RunStats
from vekta.pipeline.runner import run_pipeline
from vekta.pipeline.writer import ResultWriter
from vekta.resources.sizer import ResourceBudget
from vekta.tasks.rerank import RerankTask
from vekta.tasks.text_embed import TextEmbedTask
from vekta.utils.log import configure_logging

from conftest import EchoTask, StubEmbedder, StubReranker

NO_SIGNALS = PipelineConfig(install_signal_handlers=False)


def _lines(buf):
    return [json.loads(line) for line in buf.getvalue().splitlines()]


def _input(n):
    return io.StringIO("".join(f"item-{i}\n" for i in range(n)))


def _slow_even_batches(first):
    # earlier batches take longer so later ones finish first
    return 0.03 if (first // 4) % 2 == 0 else 0.0


def test_scenario_three_files_batch_of_two(text_files):
    embedder = StubEmbedder()
    out = io.StringIO()
    stats = run_pipeline(
        io.StringIO("\n".join(text_files) + "\n"),
        out,
        TextEmbedTask(embedder),
        ResourceBudget(max_batch_size=2, max_in_flight_batches=2),
        NO_SIGNALS,
    )
    lines = _lines(out)
    assert [line["path"] for line in lines] == text_files
    assert all(isinstance(v, float) for line in lines for v in line["embedding"])
    assert sorted(len(call) for call in embedder.calls) == [1, 2]
    assert stats.exit_code == 0


def test_output_order_matches_input_despite_out_of_order_completion():
    task = EchoTask(delay=_slow_even_batches)
    out = io.StringIO()
    stats = run_pipeline(_input(64), out, task, ResourceBudget(max_batch_size=4, max_in_flight_batches=4), NO_SIGNALS)
    lines = _lines(out)
    assert [line["sequence_index"] for line in lines] == list(range(64))
    assert [line["item"] for line in lines] == [f"item-{i}" for i in range(64)]
    assert stats.emitted == 64
    assert task.peak_active > 1


def test_output_line_count_equals_non_blank_input_lines():
    text = "a\n\n!broken\nb\n   \nc\n"
    out = io.StringIO()
    stats = run_pipeline(io.StringIO(text), out, EchoTask(), ResourceBudget(2, 2), NO_SIGNALS)
    lines = _lines(out)
    assert len(lines) == 4
    assert lines[1]["error"]["kind"] == "InputParseError"
    assert stats.exit_code == 1


def test_rerun_is_byte_identical(text_files):
    def once():
        out = io.StringIO()
        run_pipeline(
            io.StringIO("\n".join(text_files * 5) + "\n"),
            out,
            TextEmbedTask(StubEmbedder()),
            ResourceBudget(max_batch_size=2, max_in_flight_batches=3),
            NO_SIGNALS,
        )
        return out.getvalue()

    assert once() == once()


def test_buffered_records_never_exceed_budget_on_large_input():
    budget = ResourceBudget(max_batch_size=8, max_in_flight_batches=3)
    task = EchoTask(delay=lambda first: 0.002 if (first // 8) % 3 == 0 else 0.0)
    stats = RunStats()

    def lines():
        for i in range(20_000):
            yield f"item-{i}\n"

    reader = LineReader(lines(), task, stats=stats)
    batcher = Batcher(reader, budget.max_batch_size)
    writer = ResultWriter(io.StringIO(), task.render, capacity=budget.buffer_capacity, stats=stats)
    dispatcher = Dispatcher(task, budget)

    peak_outstanding = 0
    for outcome in dispatcher.stream(batcher, backlog=lambda: writer.held_batches):
        peak_outstanding = max(peak_outstanding, stats.read - stats.emitted)
        writer.accept(outcome.results)

    assert stats.emitted == 20_000
    assert peak_outstanding <= budget.buffer_capacity
    assert writer.peak_held_records <= budget.buffer_capacity


def test_partial_failure_isolation(tmp_path, text_files):
    missing = str(tmp_path / "missing.txt")
    paths = text_files[:2] + [missing] + text_files[2:]
    out = io.StringIO()
    stats = run_pipeline(
        io.StringIO("\n".join(paths) + "\n"),
        out,
        TextEmbedTask(StubEmbedder()),
        ResourceBudget(max_batch_size=4, max_in_flight_batches=1),
        NO_SIGNALS,
    )
    lines = _lines(out)
    assert len(lines) == 4
    assert [("embedding" in line) for line in lines] == [True, True, False, True]
    assert lines[2]["error"]["kind"] == "ResourceUnreadable"
    assert (stats.succeeded, stats.failed) == (3, 1)
    assert stats.exit_code == 1


def test_partial_backend_failure_inside_a_batch(text_files, tmp_path):
    poisoned = tmp_path / "poisoned.txt"
    poisoned.write_text("POISON here", encoding="utf-8")
    paths = [text_files[0], str(poisoned), text_files[1]]
    out = io.StringIO()
    stats = run_pipeline(
        io.StringIO("\n".join(paths) + "\n"),
        out,
        TextEmbedTask(StubEmbedder(fail_marker="POISON")),
        ResourceBudget(max_batch_size=3, max_in_flight_batches=1),
        NO_SIGNALS,
    )
    lines = _lines(out)
    assert "embedding" in lines[0] and "embedding" in lines[2]
    assert "error" in lines[1]
    assert stats.failed == 1


def test_total_backend_failure_fails_one_batch_and_run_continues(text_files, tmp_path):
    bad = tmp_path / "bad.txt"
    bad.write_text("EXPLODE", encoding="utf-8")
    paths = [text_files[0], str(bad), text_files[1], text_files[2]]
    out = io.StringIO()
    stats = run_pipeline(
        io.StringIO("\n".join(paths) + "\n"),
        out,
        TextEmbedTask(StubEmbedder(explode_on="EXPLODE")),
        ResourceBudget(max_batch_size=2, max_in_flight_batches=1),
        NO_SIGNALS,
    )
    lines = _lines(out)
    assert [line["error"]["kind"] for line in lines[:2]] == ["BackendError", "BackendError"]
    assert all("embedding" in line for line in lines[2:])
    assert stats.exit_code == 1
    assert not stats.aborted


def test_fail_fast_exits_with_abort_code():
    task = EchoTask(fail_batches={2})
    out = io.StringIO()
    stats = run_pipeline(
        _input(10), out, task, ResourceBudget(2, 1),
        PipelineConfig(fail_fast=True, install_signal_handlers=False),
    )
    assert stats.aborted
    assert stats.exit_code == 3
    assert [line["sequence_index"] for line in _lines(out)] == [0, 1, 2, 3]


def test_reranker_scenario_malformed_line_is_skipped(stub_reranker):
    stdin = io.StringIO('{"id": 1, "text": "not closed"\n{"id": "a", "text": "red apples"}\n{"id": "b", "text": "green pears"}\n')
    out = io.StringIO()
    stats = run_pipeline(
        stdin, out, RerankTask(stub_reranker, "red apples"), ResourceBudget(2, 2),
        PipelineConfig(on_parse_error="skip", output_order="score", install_signal_handlers=False),
    )
    lines = _lines(out)
    assert [line["id"] for line in lines] == ["a", "b"]
    assert [line["score"] for line in lines] == [2.0, 0.0]
    assert stats.skipped_malformed == 1
    assert stats.exit_code != 0


def test_reranker_scenario_warning_goes_to_stderr_only(stub_reranker, capsys):
    configure_logging(log_format="json", tool="vre")
    stdin = io.StringIO('{"id": 1, "text": "not closed"\n{"id": "a", "text": "red apples"}\n{"id": "b", "text": "green pears"}\n')
    out = io.StringIO()
    run_pipeline(
        stdin, out, RerankTask(stub_reranker, "red apples"), ResourceBudget(2, 2),
        PipelineConfig(on_parse_error="skip", output_order="score", install_signal_handlers=False),
    )
    assert len(out.getvalue().splitlines()) == 2
    captured = capsys.readouterr()
    assert captured.out == ""
    events = [json.loads(line) for line in captured.err.splitlines() if line.startswith("{")]
    skipped = [e for e in events if e["event"] == "Skipping input line"]
    assert len(skipped) == 1
    assert skipped[0]["level"] == "warning"
    assert skipped[0]["line_no"] == 1
    assert skipped[0]["tool"] == "vre"


def test_reranker_input_order_streams(stub_reranker):
    stdin = io.StringIO('{"id": "a", "text": "pears"}\n{"id": "b", "text": "red apples"}\n')
    out = io.StringIO()
    run_pipeline(
        stdin, out, RerankTask(stub_reranker, "red apples"), ResourceBudget(1, 2),
        PipelineConfig(output_order="input", install_signal_handlers=False),
    )
    assert [line["id"] for line in _lines(out)] == ["a", "b"]


def test_sigint_drains_in_flight_batches_and_stops():
    def interrupt_on_first(first):
        if first == 0:
            os.kill(os.getpid(), signal.SIGINT)

    task = EchoTask(delay=lambda first: 0.05, on_batch=interrupt_on_first)
    out = io.StringIO()
    stats = run_pipeline(_input(100), out, task, ResourceBudget(2, 1), PipelineConfig())
    lines = _lines(out)
    assert stats.interrupted
    assert stats.exit_code == 130
    assert [line["sequence_index"] for line in lines] == list(range(len(lines)))
    assert 2 <= len(lines) < 100
