"""
Error taxonomy for the order pipeline.

Each error carries the HTTP status it maps to at the API boundary.
TransportError is the exception: it is recorded per email send and never
escalated past the dispatcher.
"""
from typing import Optional


class StorefrontError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ConfigurationError(StorefrontError):
    """A required credential is missing."""
    status_code = 500


class ValidationError(StorefrontError):
    """Malformed or missing client input."""
    status_code = 400


class VerificationError(StorefrontError):
    """Webhook signature could not be verified. The request is untrusted."""
    status_code = 400


class ReconciliationError(StorefrontError):
    """Authoritative order facts could not be recovered from the session."""
    status_code = 400


class PaymentProcessorError(StorefrontError):
    """A call to Stripe failed."""
    status_code = 500


class ArtifactStoreError(StorefrontError):
    """A blob upload failed."""
    status_code = 500


class StylizationError(StorefrontError):
    """The stylization sidecar failed or returned an unusable image."""
    status_code = 502


class TransportError(Exception):
    """A single email send failed."""

    def __init__(self, recipient: str, reason: str):
        super().__init__(f"Failed to send to {recipient}: {reason}")
        self.recipient = recipient
        self.reason = reason
