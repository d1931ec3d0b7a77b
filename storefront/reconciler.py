"""
Payment webhook verification and order reconciliation.

One webhook delivery runs through a small state machine:

    RECEIVED -> VERIFIED -> RECONCILING -> COMPLETED
        |           |            |
        v           v            v
    REJECTED    (ignored)     FAILED

Nothing is remembered between deliveries. A redelivered event repeats
reconciliation and notification in full (at-least-once).

The session record's shape has drifted across Stripe API versions, so all
"try field A, then B, then C" probing lives in the reconcile_* functions
below rather than in the handler.
"""
import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from functools import lru_cache
from typing import Any, Callable, Mapping, Optional

import httpx

from .catalog import get_product
from .checkout import CENT, parse_price
from .clients.blob import BlobStore, extension_for, get_blob_store, order_folder, unique_suffix
from .clients.stripe_client import StripeClient, get_stripe_client
from .config import Settings, get_settings
from .email_service import EmailService, get_email_service
from .errors import ConfigurationError, ReconciliationError, StorefrontError, VerificationError
from .models import (
    OrderType,
    ReconciledOrder,
    ResolvedShipping,
    ShippingAddress,
    ShippingSource,
)

logger = logging.getLogger(__name__)


class WebhookState(str, Enum):
    RECEIVED = "received"
    VERIFIED = "verified"
    RECONCILING = "reconciling"
    REJECTED = "rejected"
    FAILED = "failed"
    COMPLETED = "completed"


@dataclass
class WebhookOutcome:
    """Terminal state of one delivery plus the response for Stripe."""
    state: WebhookState
    status_code: int
    body: dict = field(default_factory=dict)


# =============================================================================
# Field reconciliation
# =============================================================================

def minor_to_major(amount: Any) -> Optional[Decimal]:
    if amount is None:
        return None
    return (Decimal(int(amount)) / 100).quantize(CENT)


def reconcile_price(session: Mapping[str, Any]) -> Optional[Decimal]:
    """
    The price actually charged.

    amount_total is set by Stripe at payment time and beats anything the
    client or metadata claims. metadata.price is only a fallback.
    """
    charged = minor_to_major(session.get("amount_total"))
    if charged is not None:
        return charged
    metadata = session.get("metadata") or {}
    return parse_price(metadata.get("price"))


def reconcile_customer_email(session: Mapping[str, Any]) -> Optional[str]:
    email = session.get("customer_email") or (session.get("customer_details") or {}).get("email")
    if email and email.strip():
        return email.strip()
    return None


def _from_shipping_details(session: Mapping[str, Any]) -> Optional[tuple[Mapping, str]]:
    # shipping_details on current API versions, shipping on older ones
    shipping = session.get("shipping_details") or session.get("shipping") or {}
    if shipping.get("address"):
        return shipping["address"], shipping.get("name") or ""
    return None


def _from_collected_information(session: Mapping[str, Any]) -> Optional[tuple[Mapping, str]]:
    collected = session.get("collected_information") or {}
    details = collected.get("shipping_details") or collected.get("shipping_address") or {}
    if not details:
        return None
    # shipping_details nests the address, shipping_address is the address
    address = details.get("address") if "address" in details else details
    if not address:
        return None
    return address, details.get("name") or ""


def _from_customer_details(session: Mapping[str, Any]) -> Optional[tuple[Mapping, str]]:
    customer = session.get("customer_details") or {}
    if customer.get("address"):
        return customer["address"], customer.get("name") or ""
    return None


SHIPPING_PROBES: dict[ShippingSource, Callable[[Mapping[str, Any]], Optional[tuple[Mapping, str]]]] = {
    ShippingSource.SHIPPING_DETAILS: _from_shipping_details,
    ShippingSource.COLLECTED_INFORMATION: _from_collected_information,
    ShippingSource.CUSTOMER_DETAILS: _from_customer_details,
}


def reconcile_shipping(session: Mapping[str, Any]) -> Optional[ResolvedShipping]:
    """
    Find the shipping address. First location that has one wins, in
    ShippingSource order. No address anywhere is a valid result.
    """
    for source in ShippingSource:
        found = SHIPPING_PROBES[source](session)
        if found:
            address, name = found
            return ResolvedShipping(
                address=ShippingAddress.from_stripe(address),
                name=name,
                source=source,
            )
    return None


def _decode_metadata_image(metadata: Mapping[str, Any], key: str) -> bytes:
    try:
        return base64.b64decode(metadata[key], validate=True)
    except (binascii.Error, ValueError) as e:
        raise ReconciliationError("Invalid image data", f"{key} is not valid base64") from e


# =============================================================================
# Reconciler
# =============================================================================

class PaymentReconciler:
    """Verifies Stripe webhooks and turns completed sessions into notified orders."""

    def __init__(
        self,
        settings: Settings,
        stripe_client: StripeClient,
        blob_store: BlobStore,
        email_service: EmailService,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings
        self.stripe_client = stripe_client
        self.blob_store = blob_store
        self.email_service = email_service
        self._http = http_client or httpx.AsyncClient(
            timeout=settings.http_timeout,
            follow_redirects=True,
        )

    async def handle_webhook(self, payload: bytes, signature: Optional[str]) -> WebhookOutcome:
        """
        Run one webhook delivery to a terminal state.

        Dispatch happens before returning, so Stripe's own timeout is the
        effective deadline for the whole reconciliation.
        """
        if not signature:
            return WebhookOutcome(WebhookState.REJECTED, 400, {"error": "No signature provided"})

        try:
            event = self.stripe_client.construct_event(payload, signature)
        except VerificationError as e:
            return WebhookOutcome(WebhookState.REJECTED, e.status_code, e.to_dict())
        except ConfigurationError as e:
            logger.error("Webhook received but %s", e.message)
            return WebhookOutcome(WebhookState.FAILED, e.status_code, e.to_dict())

        state = WebhookState.VERIFIED
        logger.info("Webhook event %s (%s) verified", event.id, event.type)

        if not event.is_checkout_completed:
            return WebhookOutcome(state, 200, {"received": True})

        if not event.object_id:
            return WebhookOutcome(WebhookState.FAILED, 400, {"error": "Event has no session id"})

        state = WebhookState.RECONCILING
        logger.debug("Session %s: %s", event.object_id, state.value)
        try:
            session = await self.stripe_client.retrieve_session(event.object_id)
            order = await self.reconcile(session)
            email_result = await self.email_service.notify(order)
        except ReconciliationError as e:
            logger.error("Reconciliation failed for %s: %s", event.object_id, e.message)
            return WebhookOutcome(WebhookState.FAILED, e.status_code, e.to_dict())
        except ConfigurationError as e:
            logger.error("Cannot process %s: %s", event.object_id, e.message)
            return WebhookOutcome(WebhookState.FAILED, e.status_code, e.to_dict())
        except StorefrontError as e:
            logger.error("Error processing order %s: %s (%s)", event.object_id, e.message, e.details)
            return WebhookOutcome(
                WebhookState.FAILED,
                500,
                {"error": "Failed to process order", "details": e.details or e.message},
            )
        except Exception as e:
            logger.exception("Error processing order %s", event.object_id)
            return WebhookOutcome(
                WebhookState.FAILED,
                500,
                {"error": "Failed to process order", "details": str(e)},
            )

        logger.info(
            "Order %s completed: sent=%d failed=%d skipped=%s",
            order.order_id,
            email_result.sent,
            email_result.failed,
            email_result.skipped,
        )

        body = {
            "success": True,
            "orderId": order.order_id,
            "orderType": order.order_type.value,
        }
        if order.has_images:
            body["images"] = {"original": order.original_url, "processed": order.processed_url}
        body["email"] = email_result.to_response()

        return WebhookOutcome(WebhookState.COMPLETED, 200, body)

    async def reconcile(self, session: Mapping[str, Any]) -> ReconciledOrder:
        """
        Build the authoritative order from a full session record.

        Raises:
            ReconciliationError: no price can be determined, or a legacy
                session carries no image data at all
        """
        order_id = session["id"]
        metadata = session.get("metadata") or {}
        order_type = OrderType.from_metadata(metadata.get("orderType"))

        price = reconcile_price(session)
        logger.info(
            "Order %s amounts: amount_total=%s amount_subtotal=%s amount_tax=%s metadata_price=%s",
            order_id,
            session.get("amount_total"),
            session.get("amount_subtotal"),
            session.get("amount_tax"),
            metadata.get("price"),
        )
        if price is None:
            raise ReconciliationError("Product price not found in Stripe session")

        shipping = reconcile_shipping(session)
        if shipping:
            logger.info("Order %s shipping address found in %s", order_id, shipping.source.value)
        else:
            logger.warning("Order %s has no shipping address in any location", order_id)

        product = get_product(order_type, self.settings)

        order = ReconciledOrder(
            order_id=order_id,
            order_type=order_type,
            product_name=product.name,
            product_price=price,
            amount_subtotal=minor_to_major(session.get("amount_subtotal")),
            amount_tax=minor_to_major(session.get("amount_tax")),
            customer_email=reconcile_customer_email(session),
            shipping_address=shipping.address if shipping else None,
            shipping_name=shipping.name if shipping else "",
            test_mode=metadata.get("testMode") == "true",
        )

        if order_type == OrderType.CUSTOM_ENGRAVING:
            await self._reconcile_images(order, metadata)

        return order

    async def _reconcile_images(self, order: ReconciledOrder, metadata: Mapping[str, Any]):
        order.original_mime_type = metadata.get("originalMimeType") or "image/png"
        order.processed_mime_type = metadata.get("processedMimeType") or "image/png"

        if metadata.get("originalUrl") and metadata.get("processedUrl"):
            order.original_url = metadata["originalUrl"]
            order.processed_url = metadata["processedUrl"]
            order.original_bytes, order.processed_bytes = await asyncio.gather(
                self._fetch(order.original_url),
                self._fetch(order.processed_url),
            )
            return

        # Sessions from before images were stored up front carry them inline.
        # Storing them again on redelivery only leaves a duplicate blob.
        if not metadata.get("originalImage") or not metadata.get("processedImage"):
            raise ReconciliationError("Missing image data")

        original = _decode_metadata_image(metadata, "originalImage")
        processed = _decode_metadata_image(metadata, "processedImage")

        folder = order_folder(order.order_id)
        suffix = unique_suffix()
        original_blob, processed_blob = await self.blob_store.put_pair(
            f"{folder}/original-{suffix}.{extension_for(order.original_mime_type)}",
            original,
            order.original_mime_type,
            f"{folder}/processed-{suffix}.png",
            processed,
            order.processed_mime_type,
        )

        logger.warning("Order %s images were not stored before payment; stored under %s", order.order_id, folder)

        order.original_url = original_blob.url
        order.processed_url = processed_blob.url
        order.original_bytes = original
        order.processed_bytes = processed
        order.images_repaired = True

    async def _fetch(self, url: str) -> Optional[bytes]:
        """Image bytes for attaching. A failed fetch drops the attachment only."""
        try:
            response = await self._http.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Could not fetch %s for attachment: %s", url, e)
            return None
        return response.content

    async def aclose(self):
        await self._http.aclose()


@lru_cache()
def get_reconciler() -> PaymentReconciler:
    """Get the reconciler instance."""
    return PaymentReconciler(
        get_settings(),
        get_stripe_client(),
        get_blob_store(),
        get_email_service(),
    )
