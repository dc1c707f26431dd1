from __future__ import annotations

import json
from typing import Any

from vekta.config import RERANK_ITEM_BYTES
from vekta.errors import BackendError, InputParseError, ResourceUnreadable, VektaError
from vekta.pipeline.records import Record, RecordKind, Result
from vekta.rerank.interfaces import BaseReranker
from vekta.tasks._files import read_line_range
from vekta.tasks.interfaces import BaseTask

CANDIDATE_HINT = "each line must be a JSON object with text, document, metadata.file_path or id"


def _has_file_range(candidate: dict[str, Any]) -> bool:
    meta = candidate.get("metadata")
    return isinstance(meta, dict) and isinstance(meta.get("file_path"), str)


def candidate_text(candidate: dict[str, Any]) -> str:
    """Document text of a candidate.

    ``text``, then ``document``, then the line range named by
    ``metadata.file_path``/``start_line``/``end_line`` (as written by ``vte``),
    then ``id``.
    """
    for key in ("text", "document"):
        value = candidate.get(key)
        if isinstance(value, str):
            return value

    if _has_file_range(candidate):
        meta = candidate["metadata"]
        start, end = meta.get("start_line", 0), meta.get("end_line")
        if not isinstance(start, int) or not isinstance(end, int):
            raise ResourceUnreadable(f"metadata for {meta['file_path']} needs integer start_line/end_line")
        return read_line_range(meta["file_path"], start, end)

    if "id" in candidate and candidate["id"] is not None:
        return str(candidate["id"])

    raise InputParseError("candidate has none of text, document, metadata.file_path or id", hint=CANDIDATE_HINT)


class RerankTask(BaseTask):
    """``vre``: JSON candidates on stdin, scored against one query."""

    name = "vre"
    kind = RecordKind.RERANK_CANDIDATE

    def __init__(self, reranker: BaseReranker, query: str, *, per_item_bytes: int = RERANK_ITEM_BYTES):
        if not query.strip():
            raise ValueError("query must not be empty")
        self._reranker = reranker
        self.query = query
        self.per_item_bytes = per_item_bytes

    def parse(self, line: str) -> dict[str, Any]:
        try:
            candidate = json.loads(line)
        except json.JSONDecodeError as e:
            raise InputParseError(f"invalid JSON: {e}", hint=CANDIDATE_HINT) from e
        if not isinstance(candidate, dict):
            raise InputParseError(f"expected a JSON object, got {type(candidate).__name__}", hint=CANDIDATE_HINT)
        if not (
            isinstance(candidate.get("text"), str)
            or isinstance(candidate.get("document"), str)
            or _has_file_range(candidate)
            or candidate.get("id") is not None
        ):
            raise InputParseError("candidate has none of text, document, metadata.file_path or id", hint=CANDIDATE_HINT)
        return candidate

    def run_batch(self, records: list[Record]) -> list[Result]:
        results: list[Result | None] = [None] * len(records)
        documents: list[str] = []
        positions: list[int] = []
        unusable: dict[int, VektaError] = {}

        for pos, record in enumerate(records):
            try:
                documents.append(candidate_text(record.payload))
                positions.append(pos)
            except (InputParseError, ResourceUnreadable) as e:
                unusable[pos] = e
                results[pos] = Result.failure(record, e)

        if documents:
            try:
                scores = self._reranker.score(self.query, documents)
            except BackendError as e:
                raise BackendError(str(e), hint=e.hint, item_errors=unusable) from e
            if len(scores) != len(documents):
                raise BackendError(f"reranker returned {len(scores)} scores for {len(documents)} documents")
            for pos, score in zip(positions, scores, strict=True):
                results[pos] = Result.success(records[pos], float(score))

        return results

    def render(self, result: Result) -> dict[str, Any]:
        record = result.record
        if isinstance(record.payload, dict):
            out = dict(record.payload)
        else:
            out = {"source": record.source}
        out["sequence_index"] = result.sequence_index
        if result.ok:
            out["score"] = result.value
        else:
            out["error"] = result.error.to_dict()
        return out
