import asyncio
import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Optional

import stripe

from ..config import Settings, get_settings
from ..errors import PaymentProcessorError, VerificationError

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"


def to_plain(obj: Any) -> dict:
    """Convert a StripeObject (and everything nested in it) to plain dicts."""
    if obj is None:
        return {}
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(obj, dict):
        return json.loads(json.dumps(obj, default=str))
    return json.loads(str(obj))


@dataclass
class PaymentEvent:
    """A verified webhook event."""
    id: str
    type: str
    object_id: Optional[str]

    @property
    def is_checkout_completed(self) -> bool:
        return self.type == CHECKOUT_COMPLETED


class StripeClient:
    """Client for interacting with Stripe API."""

    def __init__(self, settings: Settings):
        self.settings = settings

    async def create_checkout_session(self, params: dict) -> tuple[str, str]:
        """
        Create a hosted Checkout Session.

        No retries: a failure fails the whole checkout back to the caller.

        Returns:
            (session_id, redirect_url)
        """
        self.settings.require_stripe()

        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                api_key=self.settings.stripe_secret_key,
                **params,
            )
        except stripe.StripeError as e:
            logger.error("Error creating checkout session: %s", e)
            raise PaymentProcessorError("Failed to create checkout session", str(e)) from e

        logger.info("Created checkout session %s", session.id)
        return session.id, session.url

    async def retrieve_session(self, session_id: str) -> dict:
        """
        Fetch the full session record.

        The webhook payload can omit fields (shipping in particular) that
        only the retrieved record carries.
        """
        self.settings.require_stripe()

        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.retrieve,
                session_id,
                api_key=self.settings.stripe_secret_key,
            )
        except stripe.StripeError as e:
            logger.error("Error fetching checkout session %s: %s", session_id, e)
            raise PaymentProcessorError("Failed to retrieve checkout session", str(e)) from e

        return to_plain(session)

    def construct_event(self, payload: bytes, signature: str) -> PaymentEvent:
        """
        Verify a webhook signature against the raw body and parse the event.

        Raises:
            VerificationError: signature mismatch, stale timestamp or bad JSON
        """
        self.settings.require_webhook_secret()

        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature,
                self.settings.stripe_webhook_secret,
            )
        except stripe.SignatureVerificationError as e:
            logger.error("Webhook signature verification failed: %s", e)
            raise VerificationError(f"Webhook Error: {e}") from e
        except ValueError as e:
            logger.error("Webhook payload could not be parsed: %s", e)
            raise VerificationError(f"Webhook Error: {e}") from e

        data = to_plain(event)
        obj = (data.get("data") or {}).get("object") or {}

        return PaymentEvent(
            id=data.get("id", ""),
            type=data.get("type", ""),
            object_id=obj.get("id"),
        )

    async def test_connection(self) -> bool:
        """Test the Stripe API connection."""
        if not self.settings.is_stripe_configured:
            return False
        try:
            await asyncio.to_thread(stripe.Balance.retrieve, api_key=self.settings.stripe_secret_key)
            return True
        except stripe.StripeError as e:
            logger.warning("Stripe connection check failed: %s", e)
            return False


@lru_cache()
def get_stripe_client() -> StripeClient:
    """Get the Stripe client instance."""
    return StripeClient(get_settings())
