from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from vekta.errors import ErrorKind, VektaError, error_kind_of


class RecordKind(str, Enum):
    TEXT_PATH = "text_path"
    TEXT_CHUNK = "text_chunk"
    IMAGE_PATH = "image_path"
    RERANK_CANDIDATE = "rerank_candidate"


class Status(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class ErrorInfo:
    kind: ErrorKind
    message: str
    hint: str | None = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> ErrorInfo:
        return cls(
            kind=error_kind_of(exc),
            message=str(exc) or exc.__class__.__name__,
            hint=getattr(exc, "hint", None),
        )

    def to_dict(self) -> dict[str, str]:
        out = {"kind": self.kind.value, "message": self.message}
        if self.hint:
            out["hint"] = self.hint
        return out


@dataclass
class Record:
    """One unit of work read from stdin."""

    sequence_index: int
    kind: RecordKind
    payload: Any
    source: str = ""
    status: Status = Status.PENDING
    error: ErrorInfo | None = None

    @classmethod
    def failed(cls, sequence_index: int, kind: RecordKind, source: str, exc: VektaError) -> Record:
        return cls(
            sequence_index=sequence_index,
            kind=kind,
            payload=None,
            source=source,
            status=Status.FAILED,
            error=ErrorInfo.from_exception(exc),
        )

    @property
    def is_failed(self) -> bool:
        return self.status is Status.FAILED


@dataclass
class Batch:
    batch_id: int
    records: list[Record]
    created_at: float = field(default_factory=time.monotonic)

    def __post_init__(self) -> None:
        if not self.records:
            raise ValueError("a Batch is never empty")

    def __len__(self) -> int:
        return len(self.records)

    @property
    def first_index(self) -> int:
        return self.records[0].sequence_index

    @property
    def last_index(self) -> int:
        return self.records[-1].sequence_index


@dataclass
class Result:
    sequence_index: int
    record: Record
    value: Any = None               # vector (list[float]) or score (float)
    metadata: dict[str, Any] | None = None
    error: ErrorInfo | None = None

    @classmethod
    def success(cls, record: Record, value: Any, metadata: dict[str, Any] | None = None) -> Result:
        record.status = Status.COMPLETED
        return cls(sequence_index=record.sequence_index, record=record, value=value, metadata=metadata)

    @classmethod
    def failure(cls, record: Record, error: ErrorInfo | BaseException) -> Result:
        info = error if isinstance(error, ErrorInfo) else ErrorInfo.from_exception(error)
        record.status = Status.FAILED
        record.error = info
        return cls(sequence_index=record.sequence_index, record=record, error=info)

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RunStats:
    read: int = 0                   # records that entered the batcher
    skipped_blank: int = 0
    malformed: int = 0              # parse failures, emitted or skipped
    skipped_malformed: int = 0
    emitted: int = 0
    succeeded: int = 0
    failed: int = 0
    aborted: bool = False
    interrupted: bool = False

    @property
    def exit_code(self) -> int:
        # 130 mirrors a shell interrupted by SIGINT
        if self.interrupted:
            return 130
        if self.aborted:
            return 3
        if self.failed or self.skipped_malformed:
            return 1
        return 0
