"""
Stylizer Client - HTTP client for the image stylization sidecar.

The storefront does not know how a photo becomes an engraving preview.
It posts the photo to the sidecar and gets back styled bytes and a mime type.
"""
import base64
import binascii
import logging
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

import httpx

from ..config import get_settings
from ..errors import StylizationError

logger = logging.getLogger(__name__)


@dataclass
class StyledImage:
    """Output of the stylization transform."""
    data: bytes
    mime_type: str
    latency_ms: int = 0

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


class StylizerClient:
    """HTTP client for the stylization sidecar service."""

    def __init__(self, base_url: str, timeout: float = 120.0, http_client: Optional[httpx.AsyncClient] = None):
        self._base_url = base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

        logger.info("Stylizer client initialized: %s", self._base_url)

    async def stylize(self, data: bytes, mime_type: str) -> StyledImage:
        """
        Turn a photo into a laser-engraving preview.

        The sidecar answers with {"image": <base64>, "mimeType": <str>}.
        """
        start_time = time.time()

        logger.debug("Stylize request: %d bytes, %s", len(data), mime_type)

        try:
            response = await self._client.post(
                f"{self._base_url}/stylize",
                files={"image": ("image", data, mime_type)},
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            latency_ms = int((time.time() - start_time) * 1000)
            error_msg = f"HTTP {e.response.status_code}: {e.response.text[:200]}"
            logger.error("Stylizer error after %dms: %s", latency_ms, error_msg)
            raise StylizationError("Failed to process image", error_msg) from e
        except httpx.HTTPError as e:
            latency_ms = int((time.time() - start_time) * 1000)
            logger.error("Stylizer error after %dms: %s", latency_ms, e)
            raise StylizationError("Failed to process image", str(e)) from e

        latency_ms = int((time.time() - start_time) * 1000)

        encoded = body.get("image")
        if not encoded:
            raise StylizationError("Failed to process image", "Stylizer returned no image")

        try:
            styled = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise StylizationError("Failed to process image", "Stylizer returned invalid base64") from e

        logger.debug("Stylize response: latency=%dms, len=%d", latency_ms, len(styled))

        return StyledImage(
            data=styled,
            mime_type=body.get("mimeType") or "image/png",
            latency_ms=latency_ms,
        )

    async def aclose(self):
        await self._client.aclose()


@lru_cache()
def get_stylizer_client() -> StylizerClient:
    """Get the stylizer client instance."""
    settings = get_settings()
    return StylizerClient(
        base_url=settings.stylizer_service_url,
        timeout=settings.stylizer_timeout,
    )
