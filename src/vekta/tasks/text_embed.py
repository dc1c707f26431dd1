from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from vekta.chunking.interfaces import BaseChunker, TextChunk
from vekta.config import PREVIEW_CHARS, TEXT_ITEM_BYTES
from vekta.embedding.interfaces import BaseEmbedder
from vekta.errors import BackendError, ResourceUnreadable
from vekta.pipeline.records import Record, RecordKind, Result
from vekta.tasks._files import file_name, preview, read_text_file
from vekta.tasks.interfaces import BaseTask


class TextEmbedTask(BaseTask):
    """``vte``: one path per line -> one embedding per file (or per chunk)."""

    name = "vte"
    kind = RecordKind.TEXT_PATH

    def __init__(
        self,
        embedder: BaseEmbedder,
        *,
        chunker: BaseChunker | None = None,
        per_item_bytes: int = TEXT_ITEM_BYTES,
    ):
        self._embedder = embedder
        self._chunker = chunker
        self.per_item_bytes = per_item_bytes

    def parse(self, line: str) -> str:
        return line

    def expand(self, payload: str) -> Iterable[tuple[RecordKind, Any]]:
        if self._chunker is None:
            return [(RecordKind.TEXT_PATH, payload)]
        # read here so an unreadable file fails on its input line
        text = read_text_file(payload)
        return ((RecordKind.TEXT_CHUNK, ch) for ch in self._chunker.chunk(text, path=payload))

    def _load(self, record: Record) -> tuple[str, dict[str, Any]]:
        if record.kind is RecordKind.TEXT_CHUNK:
            ch: TextChunk = record.payload
            return ch.text, {
                "label": f"{file_name(ch.path)}_part{ch.chunk_index}",
                "file_path": ch.path,
                "file_name": file_name(ch.path),
                "chunk_index": ch.chunk_index,
                "start_line": ch.start_line,
                "end_line": ch.end_line,
                "content_preview": preview(ch.text, PREVIEW_CHARS),
            }

        path: str = record.payload
        text = read_text_file(path)
        return text, {
            "label": file_name(path),
            "file_path": path,
            "file_name": file_name(path),
            "chunk_index": 0,
            "start_line": 0,
            "end_line": len(text.splitlines()),
            "content_preview": preview(text, PREVIEW_CHARS),
        }

    def run_batch(self, records: list[Record]) -> list[Result]:
        results: list[Result | None] = [None] * len(records)
        texts: list[str] = []
        loaded: list[tuple[int, dict[str, Any]]] = []
        unreadable: dict[int, ResourceUnreadable] = {}

        for pos, record in enumerate(records):
            try:
                text, meta = self._load(record)
            except ResourceUnreadable as e:
                unreadable[pos] = e
                results[pos] = Result.failure(record, e)
                continue
            texts.append(text)
            loaded.append((pos, meta))

        if texts:
            try:
                resp = self._embedder.embed(texts)
            except BackendError as e:
                # re-key per-item errors from text positions to record positions
                item_errors = {pos: unreadable[pos] for pos in unreadable}
                item_errors.update({loaded[i][0]: err for i, err in e.item_errors.items()})
                raise BackendError(str(e), hint=e.hint, item_errors=item_errors) from e
            if len(resp.vectors) != len(texts):
                raise BackendError(f"{resp.model} returned {len(resp.vectors)} vectors for {len(texts)} texts")
            for i, (pos, meta) in enumerate(loaded):
                if i in resp.errors or resp.vectors[i] is None:
                    results[pos] = Result.failure(records[pos], resp.errors.get(i) or BackendError("no vector returned"))
                else:
                    results[pos] = Result.success(records[pos], resp.vectors[i], metadata=meta)

        return results

    def render(self, result: Result) -> dict[str, Any]:
        record = result.record
        if record.kind is RecordKind.TEXT_CHUNK:
            path = record.payload.path
        else:
            path = record.payload if isinstance(record.payload, str) else record.source
        out: dict[str, Any] = {"sequence_index": result.sequence_index, "path": path}
        if result.ok:
            meta = result.metadata or {}
            out["label"] = meta.get("label", file_name(path))
            out["embedding"] = result.value
            out["metadata"] = {k: v for k, v in meta.items() if k != "label"}
        else:
            out["error"] = result.error.to_dict()
        return out
