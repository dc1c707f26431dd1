import os
import sys
from enum import Enum

import typer

from vekta.chunking.word_chunker import WordWindowChunker
from vekta.config import (
    DEFAULT_IMAGE_MODEL,
    DEFAULT_RERANK_MODEL,
    DEFAULT_TEXT_MODEL,
    IMAGE_ITEM_BYTES,
    MIB,
    RERANK_ITEM_BYTES,
    TEXT_ITEM_BYTES,
    PipelineConfig,
    VektaSettings,
)
from vekta.embedding.interfaces import BaseEmbedder
from vekta.pipeline.runner import run_pipeline
from vekta.rerank.interfaces import BaseReranker
from vekta.resources.sizer import detect_budget
from vekta.tasks.image_embed import ImageEmbedTask
from vekta.tasks.interfaces import BaseTask
from vekta.tasks.rerank import RerankTask
from vekta.tasks.text_embed import TextEmbedTask
from vekta.utils.log import configure_logging, get_logger

EXIT_IO_ERROR = 4

logger = get_logger("vekta.cli")


class OnParseError(str, Enum):
    emit = "emit"
    skip = "skip"


class OutputOrder(str, Enum):
    score = "score"
    input = "input"


class LogFormat(str, Enum):
    console = "console"
    json = "json"


app = typer.Typer(help="Embed and rerank files from Unix pipes (paths on stdin -> JSONL on stdout)")
vte_app = typer.Typer(add_completion=False)
vie_app = typer.Typer(add_completion=False)
vre_app = typer.Typer(add_completion=False)


def build_text_embedder(model: str, settings: VektaSettings) -> BaseEmbedder:
    from vekta.embedding.sentence_transformers_embedder import SentenceTransformerEmbedder

    return SentenceTransformerEmbedder(model_id=model, device=settings.device, tei_url=settings.tei_url)


def build_image_embedder(model: str, settings: VektaSettings) -> BaseEmbedder:
    from vekta.embedding.clip_embedder import ClipImageEmbedder

    return ClipImageEmbedder(model_id=model, device=settings.device)


def build_reranker(model: str, settings: VektaSettings) -> BaseReranker:
    from vekta.rerank.hf_crossencoder_reranker import HFCrossEncoderReranker

    return HFCrossEncoderReranker(model_id=model, device=settings.device)


def _settings(
    *,
    quiet: bool,
    log_format: LogFormat | None,
    batch_size: int | None,
    max_in_flight: int | None,
    device: str | None,
    fail_fast: bool,
    tei_url: str | None = None,
) -> VektaSettings:
    settings = VektaSettings.from_env()
    settings.quiet = settings.quiet or quiet
    settings.fail_fast = settings.fail_fast or fail_fast
    if log_format is not None:
        settings.log_format = log_format.value
    if batch_size:
        settings.batch_size = batch_size
    if max_in_flight:
        settings.max_in_flight = max_in_flight
    if device:
        settings.device = device
    if tei_url:
        settings.tei_url = tei_url
    return settings


def _silence_stdout() -> None:
    """Point the stdout descriptor at devnull; the interpreter flushes it again at exit."""
    try:
        fd = sys.stdout.fileno()
    except (AttributeError, OSError, ValueError):
        return
    devnull = os.open(os.devnull, os.O_WRONLY)
    os.dup2(devnull, fd)
    os.close(devnull)


def _execute(task: BaseTask, settings: VektaSettings, config: PipelineConfig) -> int:
    budget = detect_budget(
        per_item_bytes=task.per_item_bytes,
        batch_size=settings.batch_size,
        max_in_flight=settings.max_in_flight,
    )
    if sys.stdin is None or sys.stdout is None:
        logger.error("stdin/stdout not available")
        return EXIT_IO_ERROR
    try:
        stats = run_pipeline(sys.stdin, sys.stdout, task, budget, config)
    except BrokenPipeError:
        logger.error("stdout closed by reader")
        _silence_stdout()
        return EXIT_IO_ERROR
    except OSError as e:
        logger.error("I/O failure on standard streams", error=str(e))
        return EXIT_IO_ERROR
    return stats.exit_code


def _item_bytes(item_memory_mb: int | None, default: int) -> int:
    return item_memory_mb * MIB if item_memory_mb else default


# shared options
_BATCH_SIZE = typer.Option(None, "--batch-size", "-b", min=1, help="Override the detected batch size")
_MAX_IN_FLIGHT = typer.Option(None, "--max-in-flight", "-j", min=1, help="Override the number of concurrent batches")
_ITEM_MEMORY = typer.Option(None, "--item-memory-mb", min=1, help="Per-item memory estimate used to size batches")
_DEVICE = typer.Option(None, "--device", help="cpu, cuda, cuda:1, mps (default: auto)")
_FAIL_FAST = typer.Option(False, "--fail-fast", help="Abort on the first backend error")
_QUIET = typer.Option(False, "--quiet", "-q", help="Only log errors (same as VEKTA_QUIET=1)")
_VERBOSE = typer.Option(False, "--verbose", "-v", help="Log debug output")
_LOG_FORMAT = typer.Option(None, "--log-format", help="Diagnostics format on stderr")


@vte_app.command()
def vte(
    model: str = typer.Option(DEFAULT_TEXT_MODEL, "--model", "-m", help="sentence-transformers model id"),
    tei_url: str | None = typer.Option(None, "--tei-url", help="Use a Text Embeddings Inference server instead of a local model"),
    chunk_words: int = typer.Option(0, "--chunk-words", min=0, help="Split files into N-word chunks (0 = whole file)"),
    on_parse_error: OnParseError = typer.Option(OnParseError.emit, "--on-parse-error"),
    batch_size: int | None = _BATCH_SIZE,
    max_in_flight: int | None = _MAX_IN_FLIGHT,
    item_memory_mb: int | None = _ITEM_MEMORY,
    device: str | None = _DEVICE,
    fail_fast: bool = _FAIL_FAST,
    quiet: bool = _QUIET,
    verbose: bool = _VERBOSE,
    log_format: LogFormat | None = _LOG_FORMAT,
):
    """Read text file paths from stdin and write one JSON embedding per file to stdout.

    Example: find . -name '*.txt' | vte > text_embeddings.jsonl
    """
    settings = _settings(
        quiet=quiet, log_format=log_format, batch_size=batch_size, max_in_flight=max_in_flight,
        device=device, fail_fast=fail_fast, tei_url=tei_url,
    )
    configure_logging(quiet=settings.quiet, verbose=verbose, log_format=settings.log_format, tool="vte")

    logger.info("Initializing text embedding model", model=model, tei_url=settings.tei_url)
    embedder = build_text_embedder(model, settings)
    logger.info("Model initialized")

    chunker = WordWindowChunker(chunk_words) if chunk_words > 0 else None
    task = TextEmbedTask(embedder, chunker=chunker, per_item_bytes=_item_bytes(item_memory_mb, TEXT_ITEM_BYTES))
    config = PipelineConfig(fail_fast=settings.fail_fast, on_parse_error=on_parse_error.value)
    raise typer.Exit(code=_execute(task, settings, config))


@vie_app.command()
def vie(
    model: str = typer.Option(DEFAULT_IMAGE_MODEL, "--model", "-m", help="sentence-transformers CLIP model id"),
    on_parse_error: OnParseError = typer.Option(OnParseError.emit, "--on-parse-error"),
    batch_size: int | None = _BATCH_SIZE,
    max_in_flight: int | None = _MAX_IN_FLIGHT,
    item_memory_mb: int | None = _ITEM_MEMORY,
    device: str | None = _DEVICE,
    fail_fast: bool = _FAIL_FAST,
    quiet: bool = _QUIET,
    verbose: bool = _VERBOSE,
    log_format: LogFormat | None = _LOG_FORMAT,
):
    """Read image paths from stdin and write one JSON embedding per image to stdout.

    Example: find . -name '*.jpg' -o -name '*.png' | vie > image_embeddings.jsonl
    """
    settings = _settings(
        quiet=quiet, log_format=log_format, batch_size=batch_size, max_in_flight=max_in_flight,
        device=device, fail_fast=fail_fast,
    )
    configure_logging(quiet=settings.quiet, verbose=verbose, log_format=settings.log_format, tool="vie")

    logger.info("Initializing image embedding model", model=model)
    embedder = build_image_embedder(model, settings)
    logger.info("Model initialized")

    task = ImageEmbedTask(embedder, per_item_bytes=_item_bytes(item_memory_mb, IMAGE_ITEM_BYTES))
    config = PipelineConfig(fail_fast=settings.fail_fast, on_parse_error=on_parse_error.value)
    raise typer.Exit(code=_execute(task, settings, config))


@vre_app.command()
def vre(
    query: str = typer.Argument(..., help="Query to score candidates against"),
    model: str = typer.Option(DEFAULT_RERANK_MODEL, "--model", "-m", help="Cross-encoder model id"),
    order: OutputOrder = typer.Option(OutputOrder.score, "--order", help="score: best first (buffers all input); input: stream in input order"),
    top_n: int | None = typer.Option(None, "--top-n", min=1, help="Keep only the N best candidates (score order)"),
    on_parse_error: OnParseError = typer.Option(OnParseError.skip, "--on-parse-error"),
    batch_size: int | None = _BATCH_SIZE,
    max_in_flight: int | None = _MAX_IN_FLIGHT,
    item_memory_mb: int | None = _ITEM_MEMORY,
    device: str | None = _DEVICE,
    fail_fast: bool = _FAIL_FAST,
    quiet: bool = _QUIET,
    verbose: bool = _VERBOSE,
    log_format: LogFormat | None = _LOG_FORMAT,
):
    """Rerank JSON candidates from stdin against QUERY; adds a "score" field.

    Each line needs "text", "document", "id", or vte-style metadata
    (file_path, start_line, end_line) to read the candidate text from disk.

    Example: cat top_k_results.jsonl | vre 'my search query' > reranked.jsonl
    """
    if not query.strip():
        raise typer.BadParameter("query must not be empty", param_hint="QUERY")
    if top_n is not None and order is OutputOrder.input:
        raise typer.BadParameter("--top-n requires --order score", param_hint="--top-n")

    settings = _settings(
        quiet=quiet, log_format=log_format, batch_size=batch_size, max_in_flight=max_in_flight,
        device=device, fail_fast=fail_fast,
    )
    configure_logging(quiet=settings.quiet, verbose=verbose, log_format=settings.log_format, tool="vre")

    logger.info("Initializing reranker model", model=model)
    reranker = build_reranker(model, settings)
    logger.info("Model initialized")

    task = RerankTask(reranker, query, per_item_bytes=_item_bytes(item_memory_mb, RERANK_ITEM_BYTES))
    config = PipelineConfig(
        fail_fast=settings.fail_fast,
        on_parse_error=on_parse_error.value,
        output_order=order.value,
        top_n=top_n,
    )
    raise typer.Exit(code=_execute(task, settings, config))


app.command("vte")(vte)
app.command("vie")(vie)
app.command("vre")(vre)


if __name__ == "__main__":
    app()
