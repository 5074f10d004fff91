"""Durable media storage backed by Cloudinary."""

import hashlib
import logging
import time

import httpx

from chatzo.config import settings

logger = logging.getLogger(__name__)


class MediaUploadError(Exception):
    """Uploading a binary to the media store failed."""


def _resource_type(mime_type: str) -> str:
    if mime_type.startswith("image/"):
        return "image"
    if mime_type.startswith("video/"):
        return "video"
    return "raw"


class MediaStore:
    """Uploads binaries and returns a durable URL for them."""

    def __init__(
        self,
        cloud_name: str | None = None,
        api_key: str | None = None,
        api_secret: str | None = None,
        timeout: float = 60.0,
    ):
        self.cloud_name = cloud_name or settings.cloudinary_cloud_name
        self.api_key = api_key or settings.cloudinary_api_key
        self.api_secret = api_secret or settings.cloudinary_api_secret
        self.timeout = timeout

    def _sign(self, params: dict[str, str]) -> str:
        """Cloudinary signature: sha1 of the sorted params followed by the secret."""
        to_sign = "&".join(f"{key}={params[key]}" for key in sorted(params))
        return hashlib.sha1(f"{to_sign}{self.api_secret}".encode()).hexdigest()

    async def upload(self, data: bytes, mime_type: str, public_id: str) -> str:
        """Upload a binary and return its secure URL.

        Raises:
            MediaUploadError: If the store is not configured or rejects the upload.

        """
        if not self.cloud_name or not self.api_key:
            raise MediaUploadError("Media storage is not configured")

        params = {"public_id": public_id, "timestamp": str(int(time.time()))}
        form = {**params, "api_key": self.api_key, "signature": self._sign(params)}
        url = f"https://api.cloudinary.com/v1_1/{self.cloud_name}/{_resource_type(mime_type)}/upload"

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(
                    url,
                    data=form,
                    files={"file": (public_id.rsplit("/", 1)[-1], data, mime_type)},
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise MediaUploadError(
                    f"HTTP {e.response.status_code}: {e.response.text[:300]}"
                ) from e
            except httpx.RequestError as e:
                raise MediaUploadError(f"Upload request failed: {str(e)}") from e

        secure_url = response.json().get("secure_url")
        if not secure_url:
            raise MediaUploadError("Upload response did not include a URL")
        logger.info(f"Stored media {public_id} ({len(data)} bytes)")
        return secure_url


# Singleton store instance
_store: MediaStore | None = None


def get_media_store() -> MediaStore:
    """Get the singleton media store."""
    global _store
    if _store is None:
        _store = MediaStore()
    return _store
