"""Client for OpenAI-style image generation endpoints."""

import base64
import logging

import httpx

from chatzo.config import settings
from chatzo.providers.base import GeneratedImage, ProviderError

logger = logging.getLogger(__name__)


class OpenAIImageModel:
    """Generates images through ``/images/generations`` and decodes the base64 payloads."""

    def __init__(self, model_id: str, base_url: str, api_key: str, timeout: float | None = None):
        self.model_id = model_id
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout or settings.request_timeout

    async def generate(
        self,
        prompt: str,
        size: str | None = None,
        aspect_ratio: str | None = None,
    ) -> list[GeneratedImage]:
        payload: dict = {
            "model": self.model_id,
            "prompt": prompt,
            "n": 1,
        }
        if size:
            payload["size"] = size
        elif aspect_ratio:
            payload["aspect_ratio"] = aspect_ratio

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(
                    f"{self.base_url}/images/generations",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json=payload,
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise ProviderError(
                    f"HTTP {e.response.status_code}: {e.response.text[:500]}"
                ) from e
            except httpx.RequestError as e:
                raise ProviderError(f"Request failed: {str(e)}") from e

        images = []
        for item in response.json().get("data", []):
            if item.get("b64_json"):
                images.append(
                    GeneratedImage(
                        data=base64.b64decode(item["b64_json"]),
                        mime_type=item.get("mime_type", "image/png"),
                    )
                )
        logger.info(f"Generated {len(images)} image(s) with {self.model_id}")
        return images
