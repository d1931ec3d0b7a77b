"""
Clients for the services the storefront leans on: Stripe, the blob store
and the stylization sidecar.
"""
from .blob import BlobStore, StoredBlob, get_blob_store
from .stripe_client import PaymentEvent, StripeClient, get_stripe_client
from .stylizer import StyledImage, StylizerClient, get_stylizer_client

__all__ = [
    "BlobStore",
    "StoredBlob",
    "get_blob_store",
    "PaymentEvent",
    "StripeClient",
    "get_stripe_client",
    "StyledImage",
    "StylizerClient",
    "get_stylizer_client",
]
