"""
Upload and preview workflow for custom engravings.

Order of operations for a custom order:
    stylize the photo -> store original and styled image -> create checkout

Everything here is a caller of the blob store, the stylizer and the
checkout builder. No state of its own.
"""
import logging
from functools import lru_cache
from typing import Optional

from .checkout import CheckoutBuilder, get_checkout_builder
from .clients.blob import BlobStore, extension_for, get_blob_store, temp_folder
from .clients.stylizer import StyledImage, StylizerClient, get_stylizer_client
from .config import Settings, get_settings
from .errors import ValidationError
from .models import ArtifactRef, CheckoutResult, OrderIntent, OrderType, UploadResult

logger = logging.getLogger(__name__)


def is_image(content_type: Optional[str]) -> bool:
    return bool(content_type) and content_type.startswith("image/")


class UploadOrchestrator:
    """Sequences stylization, storage and checkout for a photo upload."""

    def __init__(
        self,
        settings: Settings,
        blob_store: BlobStore,
        stylizer: StylizerClient,
        checkout_builder: CheckoutBuilder,
    ):
        self.settings = settings
        self.blob_store = blob_store
        self.stylizer = stylizer
        self.checkout_builder = checkout_builder

    async def preview(self, data: Optional[bytes], content_type: Optional[str]) -> StyledImage:
        """Run the stylization transform on a photo."""
        if not data:
            raise ValidationError("No image provided")
        if not is_image(content_type):
            raise ValidationError("File must be an image")
        return await self.stylizer.stylize(data, content_type)

    async def upload_images(
        self,
        original: Optional[bytes],
        original_type: Optional[str],
        processed: Optional[bytes],
        processed_type: Optional[str],
    ) -> UploadResult:
        """
        Store an original photo and its styled rendering side by side under
        a fresh temp folder.
        """
        self.settings.require_blob_token()

        if not original or not processed:
            raise ValidationError("Both original and processed images are required")
        if not is_image(original_type) or not is_image(processed_type):
            raise ValidationError("Both files must be images")

        folder = temp_folder()
        original_blob, processed_blob = await self.blob_store.put_pair(
            f"{folder}/original.{extension_for(original_type)}",
            original,
            original_type,
            f"{folder}/processed.png",
            processed,
            processed_type,
        )

        logger.info("Uploaded image pair to %s", folder)
        return UploadResult(original_url=original_blob.url, processed_url=processed_blob.url)

    async def start_custom_order(
        self,
        data: Optional[bytes],
        content_type: Optional[str],
        price: Optional[str] = None,
        test_mode: bool = False,
        return_origin: Optional[str] = None,
    ) -> CheckoutResult:
        """Photo in, checkout redirect out."""
        self.settings.require_stripe()
        self.settings.require_blob_token()

        styled = await self.preview(data, content_type)
        uploaded = await self.upload_images(data, content_type, styled.data, styled.mime_type)

        intent = OrderIntent(
            order_type=OrderType.CUSTOM_ENGRAVING,
            price=price,
            test_mode=test_mode,
            original=ArtifactRef(url=uploaded.original_url, mime_type=content_type),
            processed=ArtifactRef(url=uploaded.processed_url, mime_type=styled.mime_type),
        )
        return await self.checkout_builder.build_session(intent, return_origin)


@lru_cache()
def get_upload_orchestrator() -> UploadOrchestrator:
    """Get the upload orchestrator instance."""
    return UploadOrchestrator(
        get_settings(),
        get_blob_store(),
        get_stylizer_client(),
        get_checkout_builder(),
    )
