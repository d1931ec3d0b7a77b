"""
Storefront service for custom laser-engraved products.

Captures purchase intents, hands off to Stripe Checkout, reconciles the
completed session and notifies fulfillment by email.
"""

__version__ = "1.0.0"
