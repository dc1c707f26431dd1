from __future__ import annotations

import os
from typing import Any

from PIL import Image, UnidentifiedImageError

from vekta.config import IMAGE_ITEM_BYTES
from vekta.embedding.interfaces import BaseEmbedder
from vekta.errors import BackendError, ResourceUnreadable
from vekta.pipeline.records import Record, RecordKind, Result
from vekta.tasks._files import file_name
from vekta.tasks.interfaces import BaseTask

_COLOR_SPACES = {
    "L": "Grayscale",
    "LA": "GrayscaleAlpha",
    "RGB": "RGB",
    "RGBA": "RGBA",
}


def image_metadata(path: str) -> dict[str, Any]:
    """Header-level facts about an image; does not decode pixel data."""
    try:
        size = os.path.getsize(path)
        with Image.open(path) as img:
            width, height = img.size
            fmt = img.format or "Unknown"
            mode = img.mode
    except (OSError, UnidentifiedImageError) as e:
        raise ResourceUnreadable(f"cannot read image {path}: {e}", hint="expected a file Pillow can open") from e
    return {
        "label": file_name(path),
        "file_path": path,
        "file_name": file_name(path),
        "file_size": size,
        "image_format": fmt,
        "dimensions": [width, height],
        "color_space": _COLOR_SPACES.get(mode, "Unknown"),
    }


class ImageEmbedTask(BaseTask):
    """``vie``: one image path per line -> one embedding per image."""

    name = "vie"
    kind = RecordKind.IMAGE_PATH

    def __init__(self, embedder: BaseEmbedder, *, per_item_bytes: int = IMAGE_ITEM_BYTES):
        self._embedder = embedder
        self.per_item_bytes = per_item_bytes

    def parse(self, line: str) -> str:
        return line

    def run_batch(self, records: list[Record]) -> list[Result]:
        paths = [r.payload for r in records]
        resp = self._embedder.embed(paths)
        if len(resp.vectors) != len(paths):
            raise BackendError(f"{resp.model} returned {len(resp.vectors)} vectors for {len(paths)} images")

        results: list[Result] = []
        for pos, record in enumerate(records):
            vector = resp.vectors[pos]
            if pos in resp.errors or vector is None:
                results.append(Result.failure(record, resp.errors.get(pos) or BackendError("no vector returned")))
                continue
            try:
                meta = image_metadata(record.payload)
            except ResourceUnreadable as e:
                results.append(Result.failure(record, e))
                continue
            results.append(Result.success(record, vector, metadata=meta))
        return results

    def render(self, result: Result) -> dict[str, Any]:
        record = result.record
        path = record.payload if isinstance(record.payload, str) else record.source
        out: dict[str, Any] = {"sequence_index": result.sequence_index, "path": path}
        if result.ok:
            meta = dict(result.metadata or {})
            out["label"] = meta.pop("label", file_name(path))
            out["embedding"] = result.value
            out["metadata"] = meta
        else:
            out["error"] = result.error.to_dict()
        return out
