"""
Storefront Service - FastAPI application.

Creates Stripe checkout sessions for fixed and custom engravings, stores
order images, and turns completed payments into fulfillment emails.
"""
import base64
import binascii
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .checkout import CheckoutBuilder, get_checkout_builder
from .clients import get_blob_store, get_stripe_client, get_stylizer_client
from .clients.stripe_client import StripeClient
from .config import get_settings
from .email_service import EmailService, get_email_service
from .errors import StorefrontError, ValidationError
from .models import OrderIntent, OrderType, ReconciledOrder
from .reconciler import PaymentReconciler, get_reconciler
from .uploads import UploadOrchestrator, get_upload_orchestrator


def setup_logging():
    """Configure logging with file and console handlers."""
    settings = get_settings()
    log_level = getattr(logging, settings.log_level.upper())

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    # Console handler (always)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # File handler (if configured)
    if settings.log_path:
        try:
            log_path = Path(settings.log_path)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path)
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
            root_logger.info(f"Logging to file: {log_path}")
        except OSError as e:
            root_logger.error(f"Failed to set up file logging: {e}")

    return logging.getLogger(__name__)


settings = get_settings()
logger = setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info("Storefront service starting up")

    summary = settings.get_config_summary()
    for name in ("stripe_configured", "webhook_configured", "blob_configured", "mail_configured"):
        if not summary[name]:
            logger.warning("Not configured: %s - dependent requests will fail", name.replace("_configured", ""))
    if not summary["notification_recipients"]:
        logger.info("Notification list is empty; only customers will be emailed")

    yield

    logger.info("Storefront service shutting down")
    await get_blob_store().aclose()
    await get_stylizer_client().aclose()
    await get_reconciler().aclose()


app = FastAPI(
    title="Storefront Service",
    description="Checkout, payment reconciliation and order notifications for laser engravings",
    version=settings.version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def read_payload(request: Request) -> dict:
    """Request fields from either a JSON body or a form."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            data = await request.json()
        except ValueError as e:
            raise ValidationError("Invalid JSON payload") from e
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload")
        return data
    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


# =============================================================================
# Health
# =============================================================================

@app.get("/health")
async def health_check():
    """Liveness plus which integrations are configured."""
    return {
        "status": "ok",
        "timestamp": datetime.now().isoformat(),
        **settings.get_config_summary(),
    }


@app.get("/status")
async def status(stripe_client: StripeClient = Depends(get_stripe_client)):
    """Configuration plus a live Stripe check."""
    return {
        "stripe_connected": await stripe_client.test_connection(),
        **settings.get_config_summary(),
    }


# =============================================================================
# Images
# =============================================================================

@app.post("/api/process-image")
async def process_image(
    image: Optional[UploadFile] = File(None),
    orchestrator: UploadOrchestrator = Depends(get_upload_orchestrator),
):
    """Stylize a photo into an engraving preview."""
    data = await image.read() if image else None
    styled = await orchestrator.preview(data, image.content_type if image else None)
    return {"success": True, "image": styled.to_base64(), "mimeType": styled.mime_type}


@app.post("/api/upload-images")
async def upload_images(
    originalImage: Optional[UploadFile] = File(None),
    processedImage: Optional[UploadFile] = File(None),
    originalMimeType: Optional[str] = Form(None),
    processedMimeType: Optional[str] = Form(None),
    orchestrator: UploadOrchestrator = Depends(get_upload_orchestrator),
):
    """Store an original photo and its stylized rendering, returning both URLs."""
    original = await originalImage.read() if originalImage else None
    processed = await processedImage.read() if processedImage else None

    original_type = originalImage.content_type if originalImage else None
    processed_type = processedImage.content_type if processedImage else None

    # The declared mime type wins for storage once the part itself is an image
    if original_type and original_type.startswith("image/") and originalMimeType:
        original_type = originalMimeType
    if processed_type and processed_type.startswith("image/") and processedMimeType:
        processed_type = processedMimeType

    result = await orchestrator.upload_images(original, original_type, processed, processed_type)
    return result.to_response()


# =============================================================================
# Checkout
# =============================================================================

@app.post("/api/create-checkout")
async def create_checkout(
    request: Request,
    builder: CheckoutBuilder = Depends(get_checkout_builder),
):
    """Checkout for a custom engraving. Images as URLs (preferred) or base64."""
    payload = await read_payload(request)
    intent = OrderIntent.from_request(OrderType.CUSTOM_ENGRAVING, payload)
    result = await builder.build_session(intent, request.headers.get("origin"))
    return result.to_response()


@app.post("/api/create-checkout-old-main")
async def create_checkout_old_main(
    request: Request,
    builder: CheckoutBuilder = Depends(get_checkout_builder),
):
    """Checkout for the fixed Old Main design."""
    payload = await read_payload(request)
    intent = OrderIntent.from_request(OrderType.FIXED_PRODUCT, payload)
    result = await builder.build_session(intent, request.headers.get("origin"))
    return result.to_response()


@app.post("/api/custom-order")
async def custom_order(
    request: Request,
    image: Optional[UploadFile] = File(None),
    price: Optional[str] = Form(None),
    testMode: Optional[str] = Form(None),
    orchestrator: UploadOrchestrator = Depends(get_upload_orchestrator),
):
    """Photo in, checkout URL out: stylize, store both images, create the session."""
    data = await image.read() if image else None
    result = await orchestrator.start_custom_order(
        data,
        image.content_type if image else None,
        price=price,
        test_mode=(testMode or "").lower() == "true",
        return_origin=request.headers.get("origin"),
    )
    return result.to_response()


@app.post("/api/prepare-purchase")
async def prepare_purchase(
    request: Request,
    builder: CheckoutBuilder = Depends(get_checkout_builder),
):
    """Legacy: check inline images are small enough to ride in session metadata."""
    payload = await read_payload(request)
    intent = OrderIntent.from_request(OrderType.CUSTOM_ENGRAVING, payload)
    return builder.prepare_purchase(intent)


# =============================================================================
# Webhook
# =============================================================================

@app.post("/api/stripe-webhook")
async def stripe_webhook(
    request: Request,
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """
    Stripe webhook receiver.

    The raw body is verified before anything is parsed. A non-2xx answer
    makes Stripe redeliver, which repeats the whole reconciliation.
    """
    body = await request.body()
    signature = request.headers.get("stripe-signature")

    outcome = await reconciler.handle_webhook(body, signature)

    logger.info("Webhook finished: state=%s status=%d", outcome.state.value, outcome.status_code)
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)


# =============================================================================
# Diagnostics
# =============================================================================

@app.post("/api/send-test-email")
async def send_test_email(
    originalUrl: Optional[str] = Form(None),
    processedUrl: Optional[str] = Form(None),
    orderId: Optional[str] = Form(None),
    customerEmail: Optional[str] = Form(None),
    originalBuffer: Optional[str] = Form(None),
    processedBuffer: Optional[str] = Form(None),
    email_service: EmailService = Depends(get_email_service),
):
    """Simulate a completed custom order and send its notifications."""
    if not originalUrl or not processedUrl or not orderId:
        raise ValidationError("Missing required fields")

    order = ReconciledOrder(
        order_id=orderId,
        order_type=OrderType.CUSTOM_ENGRAVING,
        product_name=email_service.settings.custom_product_name,
        product_price=Decimal(email_service.settings.custom_product_price),
        customer_email=customerEmail or None,
        original_url=originalUrl,
        processed_url=processedUrl,
        original_bytes=_decode_optional(originalBuffer),
        processed_bytes=_decode_optional(processedBuffer),
        test_mode=True,
    )

    result = await email_service.notify(order)
    return {"success": True, "orderId": orderId, "email": result.to_response()}


def _decode_optional(value: Optional[str]) -> Optional[bytes]:
    if not value:
        return None
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("Invalid base64 buffer") from e


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "storefront.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
