import pytest

from vekta.errors import ResourceSizingFailure
from vekta.resources.sizer import (
    DEFAULT_BUDGET,
    GIB,
    MAX_BATCH_CAP,
    HostInfo,
    ResourceBudget,
    compute_budget,
    detect_budget,
)

MIB = 1024 * 1024


def test_budget_uses_cores_without_gpu():
    host = HostInfo(available_memory=16 * GIB, physical_cores=4)
    budget = compute_budget(host, per_item_bytes=8 * MIB)
    assert budget.max_in_flight_batches == 4
    # 16 GiB * 0.25 / (8 MiB * 4)
    assert budget.max_batch_size == 128


def test_budget_prefers_gpu_count():
    host = HostInfo(available_memory=16 * GIB, physical_cores=32, gpu_count=2)
    budget = compute_budget(host, per_item_bytes=8 * MIB)
    assert budget.max_in_flight_batches == 2


def test_larger_items_give_smaller_batches():
    host = HostInfo(available_memory=8 * GIB, physical_cores=2)
    text = compute_budget(host, per_item_bytes=8 * MIB)
    image = compute_budget(host, per_item_bytes=64 * MIB)
    assert image.max_batch_size < text.max_batch_size


def test_budget_clamps_to_floor_and_cap():
    tiny = compute_budget(HostInfo(available_memory=1 * MIB, physical_cores=0), per_item_bytes=64 * MIB)
    assert tiny == ResourceBudget(max_batch_size=1, max_in_flight_batches=1)

    huge = compute_budget(HostInfo(available_memory=1024 * GIB, physical_cores=128), per_item_bytes=1)
    assert huge.max_batch_size == MAX_BATCH_CAP
    assert huge.max_in_flight_batches == 8


def test_budget_rejects_non_positive_item_size():
    with pytest.raises(ValueError):
        compute_budget(HostInfo(available_memory=GIB, physical_cores=1), per_item_bytes=0)


def test_buffer_capacity():
    assert ResourceBudget(max_batch_size=16, max_in_flight_batches=3).buffer_capacity == 48


def test_detect_budget_falls_back_when_probe_fails():
    def broken_probe():
        raise ResourceSizingFailure("no /proc")

    assert detect_budget(per_item_bytes=MIB, probe=broken_probe) == DEFAULT_BUDGET


def test_detect_budget_survives_unexpected_errors():
    def broken_probe():
        raise RuntimeError("boom")

    assert detect_budget(per_item_bytes=MIB, probe=broken_probe) == DEFAULT_BUDGET


def test_detect_budget_applies_overrides():
    def probe():
        return HostInfo(available_memory=16 * GIB, physical_cores=4)

    budget = detect_budget(per_item_bytes=8 * MIB, batch_size=2, max_in_flight=3, probe=probe)
    assert budget == ResourceBudget(max_batch_size=2, max_in_flight_batches=3)
