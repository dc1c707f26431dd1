from __future__ import annotations

from PIL import Image, UnidentifiedImageError

from vekta.config import DEFAULT_IMAGE_MODEL
from vekta.embedding.device import resolve_device
from vekta.embedding.interfaces import BaseEmbedder, EmbedResponse
from vekta.errors import BackendError, ResourceUnreadable, VektaError

try:
    from sentence_transformers import SentenceTransformer
except ImportError:
    SentenceTransformer = None


def load_image(path: str) -> Image.Image:
    try:
        with Image.open(path) as img:
            img.load()
            return img.convert("RGB")
    except (OSError, UnidentifiedImageError, Image.DecompressionBombError) as e:
        raise ResourceUnreadable(f"cannot read image {path}: {e}", hint="expected a file Pillow can open") from e


class ClipImageEmbedder(BaseEmbedder):
    """CLIP image embeddings via sentence-transformers.

    Takes image paths. An image that cannot be opened is reported per item;
    the remaining images of the batch are still embedded.
    """

    def __init__(
        self,
        model_id: str = DEFAULT_IMAGE_MODEL,
        device: str | None = None,
        batch_size: int = 32,
    ):
        if SentenceTransformer is None:
            raise RuntimeError("sentence-transformers not installed.")
        self.model_name = model_id
        self.max_batch_size = batch_size
        self.device = resolve_device(device)
        self.model = SentenceTransformer(model_id, device=self.device)
        self.dimension = self.model.get_sentence_embedding_dimension()

    def embed(self, items: list[str]) -> EmbedResponse:
        vectors: list[list[float] | None] = [None] * len(items)
        errors: dict[int, VektaError] = {}
        images: list[Image.Image] = []
        positions: list[int] = []

        for pos, path in enumerate(items):
            try:
                images.append(load_image(path))
                positions.append(pos)
            except ResourceUnreadable as e:
                errors[pos] = e

        if images:
            try:
                arr = self.model.encode(
                    images,
                    batch_size=min(len(images), self.max_batch_size),
                    convert_to_numpy=True,
                    show_progress_bar=False,
                )
            except Exception as e:
                raise BackendError(f"{self.model_name}: {e}", item_errors=errors) from e
            finally:
                for img in images:
                    img.close()
            for pos, row in zip(positions, arr, strict=True):
                vectors[pos] = row.tolist()
            if self.dimension is None:
                self.dimension = len(arr[0])

        return EmbedResponse(vectors=vectors, model=self.model_name, dimension=self.dimension or 0, errors=errors)
