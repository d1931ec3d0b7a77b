"""
Shared fixtures: settings, in-memory stand-ins for Stripe, the blob store,
the stylizer and SMTP, and a signer for webhook payloads.
"""
import hashlib
import hmac
import json
import time
from typing import Optional

import httpx
import pytest

from storefront.checkout import CheckoutBuilder
from storefront.clients.blob import BlobStore, StoredBlob
from storefront.clients.stripe_client import StripeClient
from storefront.clients.stylizer import StyledImage, StylizerClient
from storefront.config import Settings
from storefront.email_service import EmailService
from storefront.errors import ArtifactStoreError, StylizationError
from storefront.reconciler import PaymentReconciler
from storefront.uploads import UploadOrchestrator

WEBHOOK_SECRET = "whsec_test_secret"
BLOB_BASE = "https://blob.test"
ORIGIN = "https://shop.example.com"


def make_settings(**overrides) -> Settings:
    values = {
        "stripe_secret_key": "sk_test_123",
        "stripe_webhook_secret": WEBHOOK_SECRET,
        "blob_read_write_token": "vercel_blob_rw_test",
        "gmail_user": "orders@example.com",
        "gmail_app_password": "app-password",
        "notification_emails": "ops@example.com",
        "default_return_origin": ORIGIN,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Stripe-Signature header value: t=<ts>,v1=<hmac_sha256(secret, "<ts>.<payload>")>."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def event_payload(obj: dict, event_type: str = "checkout.session.completed", event_id: str = "evt_test_1") -> bytes:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }).encode("utf-8")


def make_session(session_id: str = "cs_test_abc", **fields) -> dict:
    """A retrieved checkout session for a fixed product order."""
    session = {
        "id": session_id,
        "object": "checkout.session",
        "amount_total": 5000,
        "amount_subtotal": 5000,
        "amount_tax": 0,
        "customer_email": None,
        "customer_details": {"email": "buyer@example.com", "name": "Pat Buyer", "address": None},
        "metadata": {"orderType": "old-main-classic", "price": "50", "testMode": "false"},
    }
    session.update(fields)
    return session


class FakeBlobStore(BlobStore):
    """Keeps writes in memory and hands back predictable URLs."""

    def __init__(self, settings: Settings, fail: bool = False):
        super().__init__(settings)
        self.writes = []
        self.fail = fail

    async def put(self, pathname: str, data: bytes, content_type: str) -> StoredBlob:
        self._settings.require_blob_token()
        if self.fail:
            raise ArtifactStoreError("Failed to upload images", "HTTP 503: unavailable")
        self.writes.append((pathname, data, content_type))
        return StoredBlob(url=f"{BLOB_BASE}/{pathname}", pathname=pathname, content_type=content_type)


class FakeStripeClient(StripeClient):
    """Records created sessions and serves retrieved ones from a dict.

    Webhook verification is left to the real client so signatures are
    checked by the stripe library itself.
    """

    def __init__(self, settings: Settings):
        super().__init__(settings)
        self.created = []
        self.sessions = {}
        self.retrieved = []
        self.before_create = None

    async def create_checkout_session(self, params: dict) -> tuple[str, str]:
        self.settings.require_stripe()
        if self.before_create:
            self.before_create()
        self.created.append(params)
        session_id = f"cs_test_{len(self.created)}"
        return session_id, f"https://checkout.stripe.com/c/pay/{session_id}"

    async def retrieve_session(self, session_id: str) -> dict:
        self.retrieved.append(session_id)
        return self.sessions[session_id]


class FakeStylizer(StylizerClient):
    def __init__(self, fail: bool = False):
        super().__init__("http://stylizer.test")
        self.calls = []
        self.fail = fail

    async def stylize(self, data: bytes, mime_type: str) -> StyledImage:
        self.calls.append((data, mime_type))
        if self.fail:
            raise StylizationError("Failed to process image", "HTTP 500: model crashed")
        return StyledImage(data=b"styled-" + data, mime_type="image/png", latency_ms=5)


class RecordingTransport:
    """Async stand-in for SMTP. Addresses in fail_for raise on send."""

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.sent = []
        self.calls = 0

    async def __call__(self, message):
        self.calls += 1
        if str(message["To"]) in self.fail_for:
            raise ConnectionError("550 mailbox unavailable")
        self.sent.append(message)

    @property
    def recipients(self) -> list[str]:
        return [str(m["To"]) for m in self.sent]


def image_http_client(images: dict) -> httpx.AsyncClient:
    """HTTP client that serves bytes from a url -> bytes dict, 404 otherwise."""

    def handler(request: httpx.Request) -> httpx.Response:
        body = images.get(str(request.url))
        if body is None:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, content=body)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def blob_store(settings):
    return FakeBlobStore(settings)


@pytest.fixture
def stripe_client(settings):
    return FakeStripeClient(settings)


@pytest.fixture
def stylizer():
    return FakeStylizer()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def email_service(settings, transport):
    return EmailService(settings, transport=transport)


@pytest.fixture
def checkout_builder(settings, stripe_client, blob_store):
    return CheckoutBuilder(settings, stripe_client, blob_store)


@pytest.fixture
def hosted_images():
    return {}


@pytest.fixture
def reconciler(settings, stripe_client, blob_store, email_service, hosted_images):
    return PaymentReconciler(
        settings,
        stripe_client,
        blob_store,
        email_service,
        http_client=image_http_client(hosted_images),
    )


@pytest.fixture
def orchestrator(settings, blob_store, stylizer, checkout_builder):
    return UploadOrchestrator(settings, blob_store, stylizer, checkout_builder)
