from __future__ import annotations

import os
from dataclasses import dataclass

QUIET_ENV = "VEKTA_QUIET"
LOG_FORMAT_ENV = "VEKTA_LOG_FORMAT"
BATCH_SIZE_ENV = "VEKTA_BATCH_SIZE"
MAX_IN_FLIGHT_ENV = "VEKTA_MAX_IN_FLIGHT"
DEVICE_ENV = "VEKTA_DEVICE"
FAIL_FAST_ENV = "VEKTA_FAIL_FAST"
TEI_URL_ENV = "VEKTA_TEI_URL"

MIB = 1024 * 1024

# rough peak memory per item while it is inside a backend call
TEXT_ITEM_BYTES = 8 * MIB
IMAGE_ITEM_BYTES = 64 * MIB
RERANK_ITEM_BYTES = 4 * MIB

DEFAULT_TEXT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
DEFAULT_IMAGE_MODEL = "clip-ViT-B-32"
DEFAULT_RERANK_MODEL = "cross-encoder/ms-marco-MiniLM-L-6-v2"

PREVIEW_CHARS = 100

ON_PARSE_ERROR_CHOICES = ("emit", "skip")
OUTPUT_ORDER_CHOICES = ("input", "score")


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str) -> int | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value > 0 else None


@dataclass
class VektaSettings:
    quiet: bool = False
    log_format: str = "console"        # 'console' or 'json'
    batch_size: int | None = None      # overrides the sized budget when set
    max_in_flight: int | None = None
    device: str | None = None          # None lets the backend pick
    fail_fast: bool = False
    tei_url: str | None = None

    @classmethod
    def from_env(cls) -> VektaSettings:
        return cls(
            quiet=os.getenv(QUIET_ENV, "") == "1",
            log_format=os.getenv(LOG_FORMAT_ENV, "console") or "console",
            batch_size=_env_int(BATCH_SIZE_ENV),
            max_in_flight=_env_int(MAX_IN_FLIGHT_ENV),
            device=os.getenv(DEVICE_ENV) or None,
            fail_fast=_env_flag(FAIL_FAST_ENV),
            tei_url=os.getenv(TEI_URL_ENV) or None,
        )


@dataclass
class PipelineConfig:
    fail_fast: bool = False
    on_parse_error: str = "emit"       # 'emit' a failed record or 'skip' the line
    output_order: str = "input"        # 'input' or 'score' (reranker only)
    top_n: int | None = None
    install_signal_handlers: bool = True

    def __post_init__(self) -> None:
        if self.on_parse_error not in ON_PARSE_ERROR_CHOICES:
            raise ValueError(f"on_parse_error must be one of {ON_PARSE_ERROR_CHOICES}")
        if self.output_order not in OUTPUT_ORDER_CHOICES:
            raise ValueError(f"output_order must be one of {OUTPUT_ORDER_CHOICES}")
        if self.top_n is not None and self.top_n < 1:
            raise ValueError("top_n must be >= 1")
