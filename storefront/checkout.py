"""
Checkout intent builder.

Turns an OrderIntent into a Stripe Checkout Session. Everything needed to
rebuild the order after payment is written onto the session as metadata,
since there is no order database.
"""
import base64
import binascii
import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from functools import lru_cache
from typing import Optional

from .catalog import Product, get_product
from .clients.blob import BlobStore, extension_for, get_blob_store, temp_folder
from .clients.stripe_client import StripeClient, get_stripe_client
from .config import Settings, get_settings
from .errors import ValidationError
from .models import ArtifactRef, CheckoutResult, OrderIntent, OrderType

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def parse_price(raw: Optional[str]) -> Optional[Decimal]:
    """Parse a major-unit price string. Returns None for anything non-numeric."""
    if raw is None:
        return None
    try:
        price = Decimal(str(raw).strip())
    except InvalidOperation:
        return None
    if not price.is_finite():
        return None
    return price


def resolve_price(intent: OrderIntent, product: Product, settings: Settings) -> Decimal:
    """
    Decide what the customer will be charged, in major units.

    Test mode is applied after the client price is parsed so it always wins,
    even over a price that would not parse.
    """
    if intent.price is None:
        price = product.default_price
    else:
        price = parse_price(intent.price)

    if intent.test_mode:
        price = settings.test_mode_price

    if price is None or price <= 0:
        raise ValidationError("Invalid price provided")
    return price


def to_minor_units(price: Decimal) -> int:
    """Major units to cents, rounding half up at the cent boundary."""
    try:
        return int(price.quantize(CENT, rounding=ROUND_HALF_UP) * 100)
    except InvalidOperation as e:
        raise ValidationError("Invalid price provided", f"{price} cannot be expressed in cents") from e


def check_metadata(metadata: dict, limit: int):
    """Reject metadata values over the per-value ceiling instead of truncating."""
    for key, value in metadata.items():
        if len(value) > limit:
            raise ValidationError(
                "Metadata value too large",
                f"{key} is {len(value)} characters; the limit is {limit}",
            )


def decode_image(ref: ArtifactRef, label: str) -> bytes:
    try:
        data = base64.b64decode(ref.data or "", validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Invalid {label} image data", str(e)) from e
    if not data:
        raise ValidationError(f"Missing {label} image data (URL or base64 required)")
    return data


class CheckoutBuilder:
    """Builds Stripe Checkout Sessions from purchase intents."""

    def __init__(self, settings: Settings, stripe_client: StripeClient, blob_store: BlobStore):
        self.settings = settings
        self.stripe_client = stripe_client
        self.blob_store = blob_store

    async def build_session(self, intent: OrderIntent, return_origin: Optional[str] = None) -> CheckoutResult:
        """
        Create exactly one checkout session for the intent.

        For custom engravings supplied as inline base64, both images are
        stored before the session is created. After payment the webhook has
        no other way to reach images that never made it to the store.

        Raises:
            ConfigurationError: Stripe (or, for inline images, blob) credentials absent
            ValidationError: bad price or missing image references
        """
        self.settings.require_stripe()

        product = get_product(intent.order_type, self.settings)
        price = resolve_price(intent, product, self.settings)
        unit_amount = to_minor_units(price)
        if unit_amount <= 0:
            raise ValidationError("Invalid price provided")

        origin = (return_origin or self.settings.default_return_origin).rstrip("/")

        metadata = {
            "orderType": intent.order_type.value,
            "price": str(price),
            "testMode": "true" if intent.test_mode else "false",
        }

        original_url = None
        processed_url = None

        if intent.order_type == OrderType.CUSTOM_ENGRAVING:
            metadata.update({
                "originalMimeType": intent.original.mime_type,
                "processedMimeType": intent.processed.mime_type,
            })
            # Nothing is stored for metadata that would be rejected anyway.
            check_metadata(metadata, self.settings.metadata_value_limit)
            original_url, processed_url = await self._resolve_artifacts(intent)
            metadata.update({"originalUrl": original_url, "processedUrl": processed_url})
            cancel_url = f"{origin}/upload?canceled=true"
        else:
            cancel_url = f"{origin}?canceled=true"

        check_metadata(metadata, self.settings.metadata_value_limit)

        params = {
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": self.settings.currency,
                        "product_data": {
                            "name": product.name,
                            "description": product.description,
                        },
                        "unit_amount": unit_amount,
                    },
                    "quantity": 1,
                }
            ],
            "mode": "payment",
            "shipping_address_collection": {
                "allowed_countries": self.settings.shipping_countries,
            },
            "shipping_options": [
                {
                    "shipping_rate_data": {
                        "type": "fixed_amount",
                        "fixed_amount": {"amount": 0, "currency": self.settings.currency},
                        "display_name": "Free Shipping",
                    },
                }
            ],
            "success_url": f"{origin}/thank-you?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": cancel_url,
            "metadata": metadata,
        }

        logger.info(
            "Creating %s checkout: unit_amount=%d, test_mode=%s",
            intent.order_type.value,
            unit_amount,
            intent.test_mode,
        )

        session_id, url = await self.stripe_client.create_checkout_session(params)

        return CheckoutResult(
            session_id=session_id,
            url=url,
            original_url=original_url,
            processed_url=processed_url,
        )

    async def _resolve_artifacts(self, intent: OrderIntent) -> tuple[str, str]:
        """Hosted URLs for both images, storing inline bytes first if needed."""
        original = intent.original or ArtifactRef()
        processed = intent.processed or ArtifactRef()

        if not original.is_present:
            raise ValidationError("Missing original image data (URL or base64 required)")
        if not processed.is_present:
            raise ValidationError("Missing processed image data (URL or base64 required)")

        if original.has_url and processed.has_url:
            return original.url, processed.url

        # Fallback for clients that still post base64
        if not (original.has_data and processed.has_data):
            raise ValidationError("Missing image data - URLs or base64 required")

        original_bytes = decode_image(original, "original")
        processed_bytes = decode_image(processed, "processed")

        self.settings.require_blob_token()

        folder = temp_folder()
        original_blob, processed_blob = await self.blob_store.put_pair(
            f"{folder}/original.{extension_for(original.mime_type)}",
            original_bytes,
            original.mime_type,
            f"{folder}/processed.png",
            processed_bytes,
            processed.mime_type,
        )

        logger.info("Stored inline images under %s", folder)
        return original_blob.url, processed_blob.url

    def prepare_purchase(self, intent: OrderIntent) -> dict:
        """
        Legacy path: check that inline images fit in session metadata as-is.

        Sessions created this way carry base64 images in metadata, which the
        webhook later stores under the order's folder.
        """
        original = intent.original or ArtifactRef()
        processed = intent.processed or ArtifactRef()

        if not (original.has_data and processed.has_data):
            raise ValidationError("Missing image data")

        limit = self.settings.metadata_value_limit
        if len(original.data) > limit or len(processed.data) > limit:
            raise ValidationError(
                "Image data too large for Stripe metadata",
                f"Inline images must be at most {limit} characters; upload them and pass URLs instead.",
            )

        return {
            "success": True,
            "message": "Purchase data prepared",
            "imageData": {
                "originalImage": original.data,
                "processedImage": processed.data,
                "originalMimeType": original.mime_type,
                "processedMimeType": processed.mime_type,
            },
        }


@lru_cache()
def get_checkout_builder() -> CheckoutBuilder:
    """Get the checkout builder instance."""
    return CheckoutBuilder(get_settings(), get_stripe_client(), get_blob_store())
