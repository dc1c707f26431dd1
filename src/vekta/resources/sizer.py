"""Derive batch size and parallelism from the host.

``probe_host`` is the only impure piece; ``compute_budget`` is a plain
function of the probed ``HostInfo`` so it can be tested with fake hosts.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace

import psutil

from vekta.errors import ResourceSizingFailure
from vekta.utils.log import get_logger

logger = get_logger("vekta.resources.sizer")

GIB = 1024 ** 3

MAX_BATCH_CAP = 256
MAX_IN_FLIGHT_CAP = 8
MEMORY_FRACTION = 0.25


@dataclass(frozen=True)
class ResourceBudget:
    max_batch_size: int
    max_in_flight_batches: int

    def __post_init__(self) -> None:
        if self.max_batch_size < 1 or self.max_in_flight_batches < 1:
            raise ValueError("ResourceBudget values must be >= 1")

    @property
    def buffer_capacity(self) -> int:
        """Most records that may be in flight or held for reordering at once."""
        return self.max_batch_size * self.max_in_flight_batches


DEFAULT_BUDGET = ResourceBudget(max_batch_size=4, max_in_flight_batches=1)


@dataclass(frozen=True)
class HostInfo:
    available_memory: int
    physical_cores: int
    gpu_count: int = 0

    @property
    def available_gb(self) -> float:
        return self.available_memory / GIB


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def compute_budget(
    host: HostInfo,
    *,
    per_item_bytes: int,
    memory_fraction: float = MEMORY_FRACTION,
    max_batch_cap: int = MAX_BATCH_CAP,
    max_in_flight_cap: int = MAX_IN_FLIGHT_CAP,
) -> ResourceBudget:
    """Size a budget so that every in-flight batch fits in a slice of free memory.

    Parallelism follows GPU count when GPUs exist (one batch per device),
    otherwise physical cores. Batch size is the memory slice divided by the
    per-item estimate and the number of concurrent batches.
    """
    if per_item_bytes <= 0:
        raise ValueError("per_item_bytes must be positive")

    units = host.gpu_count if host.gpu_count > 0 else host.physical_cores
    in_flight = _clamp(int(units), 1, max_in_flight_cap)

    usable = max(0, int(host.available_memory * memory_fraction))
    batch = usable // (per_item_bytes * in_flight)
    batch = _clamp(int(batch), 1, max_batch_cap)

    return ResourceBudget(max_batch_size=batch, max_in_flight_batches=in_flight)


def _gpu_count() -> int:
    try:
        import torch
    except ImportError:
        return 0
    if torch.cuda.is_available():
        return int(torch.cuda.device_count())
    if hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
        return 1
    return 0


def probe_host() -> HostInfo:
    """Inspect memory, cores and GPUs. Raises ``ResourceSizingFailure``."""
    try:
        memory = psutil.virtual_memory()
        cores = psutil.cpu_count(logical=False) or os.cpu_count() or 1
        gpus = _gpu_count()
    except Exception as e:
        raise ResourceSizingFailure(f"host introspection failed: {e}") from e
    return HostInfo(available_memory=int(memory.available), physical_cores=int(cores), gpu_count=gpus)


def detect_budget(
    *,
    per_item_bytes: int,
    batch_size: int | None = None,
    max_in_flight: int | None = None,
    probe=probe_host,
) -> ResourceBudget:
    """Probe the host once and size a budget; never raises.

    ``batch_size`` / ``max_in_flight`` replace the sized values when given.
    """
    try:
        host = probe()
        budget = compute_budget(host, per_item_bytes=per_item_bytes)
        logger.info(
            "Detected system",
            cores=host.physical_cores,
            gpus=host.gpu_count,
            available_gb=round(host.available_gb, 1),
        )
    except Exception as e:
        logger.warning("Resource sizing failed, using defaults", error=str(e))
        budget = DEFAULT_BUDGET

    if batch_size:
        budget = replace(budget, max_batch_size=max(1, batch_size))
    if max_in_flight:
        budget = replace(budget, max_in_flight_batches=max(1, max_in_flight))

    logger.info(
        "Using batch size",
        max_batch_size=budget.max_batch_size,
        max_in_flight_batches=budget.max_in_flight_batches,
    )
    return budget
