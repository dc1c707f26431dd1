from __future__ import annotations

import torch


def resolve_device(preference: str | None = None) -> str:
    """Pick cuda, mps or cpu; an explicit preference wins."""
    if preference and preference != "auto":
        return preference
    if torch.cuda.is_available():
        return "cuda"
    if hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
        return "mps"
    return "cpu"
