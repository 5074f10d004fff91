"""Image generation for image-mode models."""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from chatzo_models import ModelDescriptor
from chatzo.config import settings
from chatzo.providers.base import ImageModel

logger = logging.getLogger(__name__)


class ImageGenerationError(Exception):
    """Generating or storing an image failed."""


@dataclass
class ImageAsset:
    image_url: str
    image_size: str
    mime_type: str

    def to_dict(self) -> dict[str, Any]:
        return {"image_url": self.image_url, "image_size": self.image_size, "mime_type": self.mime_type}


@dataclass
class ImageGenerationResult:
    prompt: str
    model_id: str
    assets: list[ImageAsset] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "assets": [asset.to_dict() for asset in self.assets],
            "prompt": self.prompt,
            "model_id": self.model_id,
        }


def resolve_image_size(model: ModelDescriptor, requested: str | None) -> str:
    """Use the requested size when supported, else the model's first size."""
    if requested and requested in model.supported_image_sizes:
        return requested
    if not model.supported_image_sizes:
        raise ImageGenerationError(f"Model {model.id} has no supported image sizes configured")
    if requested:
        logger.warning(f"Unsupported image size {requested} for {model.id}, using default")
    return model.supported_image_sizes[0]


def size_arguments(image_size: str) -> dict[str, str]:
    """Sizes with an "x" are resolutions; anything else is an aspect ratio."""
    if "x" in image_size:
        return {"size": image_size}
    return {"aspect_ratio": image_size.replace("-hd", "")}


async def generate_and_store_image(
    prompt: str,
    model: ModelDescriptor,
    image_model: ImageModel,
    media_store,
    user_id: str,
    image_size: str | None = None,
) -> ImageGenerationResult:
    """Generate images for `prompt` and upload each one.

    Raises:
        ImageGenerationError: If generation or any upload fails.

    """
    if model.mode != "image":
        raise ImageGenerationError(f"Model {model.id} is not an image generation model")

    size = resolve_image_size(model, image_size)
    logger.info(f"Generating image with {model.id} ({size})")

    try:
        images = await image_model.generate(prompt, **size_arguments(size))
        result = ImageGenerationResult(prompt=prompt, model_id=model.id)
        for image in images:
            public_id = (
                f"{settings.cloudinary_generations_folder}/{user_id}/"
                f"{int(time.time() * 1000)}-{uuid.uuid4()}-gen"
            )
            url = await media_store.upload(image.data, image.mime_type, public_id)
            result.assets.append(ImageAsset(image_url=url, image_size=size, mime_type=image.mime_type))
    except Exception as e:
        logger.error(f"Error generating image: {e}")
        raise ImageGenerationError(f"Failed to generate image: {e}") from e

    logger.info(f"Image generation complete ({len(result.assets)} assets)")
    return result
