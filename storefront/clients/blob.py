"""
Blob Store - HTTP client for the public object store holding order images.

Accepts raw bytes plus a mime type and hands back a stable public URL.
Beyond the folder naming convention there is no logic here.
"""
import asyncio
import logging
import random
import string
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

import httpx

from ..config import Settings, get_settings
from ..errors import ArtifactStoreError

logger = logging.getLogger(__name__)

API_VERSION = "7"


@dataclass
class StoredBlob:
    """A blob written to the store."""
    url: str
    pathname: str
    content_type: str


def extension_for(mime_type: Optional[str]) -> str:
    """File extension from a mime type, e.g. image/jpeg -> jpeg."""
    if mime_type and "/" in mime_type:
        subtype = mime_type.split("/", 1)[1]
        if subtype:
            return subtype
    return "png"


def unique_suffix() -> str:
    """Millisecond timestamp plus a short random tail, e.g. 1706550000000-k3j9x0a."""
    timestamp = int(time.time() * 1000)
    tail = "".join(random.choices(string.ascii_lowercase + string.digits, k=7))
    return f"{timestamp}-{tail}"


def temp_folder() -> str:
    """Folder for images uploaded before a checkout session exists."""
    return f"temp/{unique_suffix()}"


def order_folder(order_id: str) -> str:
    """Folder for images recovered after payment, scoped to the session ID."""
    return f"orders/{order_id}"


class BlobStore:
    """HTTP client for the blob storage API."""

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self._settings = settings
        self._base_url = settings.blob_api_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=settings.http_timeout)

    async def put(self, pathname: str, data: bytes, content_type: str) -> StoredBlob:
        """
        Store a blob with public access.

        Args:
            pathname: Folder-qualified name, e.g. temp/<suffix>/original.png
            data: Raw bytes
            content_type: Mime type served back to readers

        Returns:
            StoredBlob with the public URL
        """
        self._settings.require_blob_token()

        headers = {
            "authorization": f"Bearer {self._settings.blob_read_write_token}",
            "x-api-version": API_VERSION,
            "x-content-type": content_type,
            "x-add-random-suffix": "0",
        }

        start_time = time.time()
        try:
            response = await self._client.put(
                f"{self._base_url}/",
                params={"pathname": pathname},
                content=data,
                headers=headers,
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            error_msg = f"HTTP {e.response.status_code}: {e.response.text[:200]}"
            logger.error("Blob upload failed for %s: %s", pathname, error_msg)
            raise ArtifactStoreError("Failed to upload images", error_msg) from e
        except httpx.HTTPError as e:
            logger.error("Blob upload failed for %s: %s", pathname, e)
            raise ArtifactStoreError("Failed to upload images", str(e)) from e
        except ValueError as e:
            logger.error("Blob store returned a non-JSON body for %s", pathname)
            raise ArtifactStoreError("Failed to upload images", "Invalid response from blob store") from e

        url = body.get("url") if isinstance(body, dict) else None
        if not url:
            logger.error("Blob store response for %s has no url", pathname)
            raise ArtifactStoreError("Failed to upload images", "Blob store returned no url")

        latency_ms = int((time.time() - start_time) * 1000)
        logger.debug("Stored %s (%d bytes) in %dms", pathname, len(data), latency_ms)

        return StoredBlob(
            url=url,
            pathname=body.get("pathname", pathname),
            content_type=body.get("contentType", content_type),
        )

    async def put_pair(
        self,
        original_path: str,
        original: bytes,
        original_type: str,
        processed_path: str,
        processed: bytes,
        processed_type: str,
    ) -> tuple[StoredBlob, StoredBlob]:
        """
        Store an original/processed pair concurrently.

        Both uploads are issued at once and joined. If either fails the
        error propagates; a blob that did make it is left behind.
        """
        original_blob, processed_blob = await asyncio.gather(
            self.put(original_path, original, original_type),
            self.put(processed_path, processed, processed_type),
        )
        return original_blob, processed_blob

    async def aclose(self):
        await self._client.aclose()


@lru_cache()
def get_blob_store() -> BlobStore:
    """Get the blob store instance."""
    return BlobStore(get_settings())
