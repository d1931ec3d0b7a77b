"""
Pydantic models for the order pipeline.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field


class OrderType(str, Enum):
    """What the customer is buying. The value is what lands in session metadata."""
    FIXED_PRODUCT = "old-main-classic"
    CUSTOM_ENGRAVING = "custom-engraving"

    @classmethod
    def from_metadata(cls, value: Optional[str]) -> "OrderType":
        """Sessions without an orderType predate custom engravings."""
        if value == cls.CUSTOM_ENGRAVING.value:
            return cls.CUSTOM_ENGRAVING
        return cls.FIXED_PRODUCT


class ArtifactRef(BaseModel):
    """An image reference: a hosted URL, inline base64 data, or both."""
    url: Optional[str] = None
    data: Optional[str] = None  # base64
    mime_type: str = "image/png"

    @property
    def has_url(self) -> bool:
        return bool(self.url)

    @property
    def has_data(self) -> bool:
        return bool(self.data)

    @property
    def is_present(self) -> bool:
        return self.has_url or self.has_data


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


def _as_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class OrderIntent(BaseModel):
    """
    A purchase attempt, as submitted by the client.

    Never persisted here. Its only durable form is the metadata written
    onto the checkout session.
    """
    order_type: OrderType
    price: Optional[str] = None  # major units, as the client sent it
    test_mode: bool = False
    original: Optional[ArtifactRef] = None
    processed: Optional[ArtifactRef] = None

    @classmethod
    def from_request(cls, order_type: OrderType, data: Mapping[str, Any]) -> "OrderIntent":
        """Build an intent from form fields or a JSON body."""
        original = None
        processed = None

        if order_type == OrderType.CUSTOM_ENGRAVING:
            original = ArtifactRef(
                url=_as_str(data.get("originalImageUrl")),
                data=_as_str(data.get("originalImage")),
                mime_type=_as_str(data.get("originalMimeType")) or "image/png",
            )
            processed = ArtifactRef(
                url=_as_str(data.get("processedImageUrl")),
                data=_as_str(data.get("processedImage")),
                mime_type=_as_str(data.get("processedMimeType")) or "image/png",
            )

        return cls(
            order_type=order_type,
            price=_as_str(data.get("price")),
            test_mode=_as_bool(data.get("testMode", False)),
            original=original,
            processed=processed,
        )


class CheckoutResult(BaseModel):
    """A created checkout session."""
    session_id: str
    url: str
    original_url: Optional[str] = None
    processed_url: Optional[str] = None

    def to_response(self) -> dict:
        body = {"success": True, "sessionId": self.session_id, "url": self.url}
        if self.original_url and self.processed_url:
            body["imageUrls"] = {
                "original": self.original_url,
                "processed": self.processed_url,
            }
        return body


class ShippingAddress(BaseModel):
    """Shipping address from Stripe."""
    line1: str = ""
    line2: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""

    @classmethod
    def from_stripe(cls, address: Mapping[str, Any]) -> "ShippingAddress":
        return cls(
            line1=address.get("line1") or "",
            line2=address.get("line2") or "",
            city=address.get("city") or "",
            state=address.get("state") or "",
            postal_code=address.get("postal_code") or "",
            country=address.get("country") or "",
        )


class ShippingSource(str, Enum):
    """Where on the session the shipping address was found, by priority."""
    SHIPPING_DETAILS = "shipping_details"
    COLLECTED_INFORMATION = "collected_information"
    CUSTOMER_DETAILS = "customer_details"


class ResolvedShipping(BaseModel):
    address: ShippingAddress
    name: str = ""
    source: ShippingSource


class ReconciledOrder(BaseModel):
    """
    Authoritative order facts recovered from a completed checkout session.

    Built fresh on every webhook delivery and handed by value to the
    notification dispatcher.
    """
    order_id: str
    order_type: OrderType
    product_name: str
    product_price: Decimal
    amount_subtotal: Optional[Decimal] = None
    amount_tax: Optional[Decimal] = None
    customer_email: Optional[str] = None
    shipping_address: Optional[ShippingAddress] = None
    shipping_name: str = ""
    test_mode: bool = False

    # Custom engraving only
    original_url: Optional[str] = None
    processed_url: Optional[str] = None
    original_mime_type: str = "image/png"
    processed_mime_type: str = "image/png"
    original_bytes: Optional[bytes] = None
    processed_bytes: Optional[bytes] = None
    images_repaired: bool = False

    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def has_images(self) -> bool:
        return bool(self.original_url and self.processed_url)


class NotificationResult(BaseModel):
    """Aggregate outcome of a notification fan-out."""
    success: bool
    sent: int = 0
    failed: int = 0
    skipped: bool = False

    def to_response(self) -> dict:
        if self.skipped:
            return {"success": self.success, "skipped": True}
        return {"success": self.success, "sent": self.sent, "failed": self.failed}


class UploadResult(BaseModel):
    """Hosted URLs for an original photo and its stylized rendering."""
    original_url: str
    processed_url: str

    def to_response(self) -> dict:
        return {
            "success": True,
            "originalUrl": self.original_url,
            "processedUrl": self.processed_url,
        }
