"""
Order notification emails.

Every send is independent: one bad address never blocks or cancels the
others. Sends are fired together, then the outcomes are tallied.
"""
import asyncio
import logging
from email.message import EmailMessage
from email.utils import formataddr
from functools import lru_cache
from typing import Any, Awaitable, Callable, Optional

import aiosmtplib

from .clients.blob import extension_for
from .config import Settings, get_settings
from .errors import TransportError
from .models import NotificationResult, ReconciledOrder
from .templates import render_customer_confirmation, render_operations_notice

logger = logging.getLogger(__name__)

Transport = Callable[[EmailMessage], Awaitable[Any]]

Attachment = tuple[str, bytes, str]  # filename, content, mime type


def order_attachments(order: ReconciledOrder) -> list[Attachment]:
    """Image attachments for an order. Missing bytes just mean no attachment."""
    attachments = []
    if order.original_bytes:
        attachments.append((
            f"original-{order.order_id}.{extension_for(order.original_mime_type)}",
            order.original_bytes,
            order.original_mime_type,
        ))
    if order.processed_bytes:
        attachments.append((
            f"laser-engraved-{order.order_id}.{extension_for(order.processed_mime_type)}",
            order.processed_bytes,
            order.processed_mime_type,
        ))
    return attachments


class EmailService:
    """Sends order notifications over SMTP."""

    def __init__(self, settings: Settings, transport: Optional[Transport] = None):
        self.settings = settings
        self._transport = transport or self._smtp_send

    async def _smtp_send(self, message: EmailMessage):
        port = self.settings.smtp_port
        return await aiosmtplib.send(
            message,
            hostname=self.settings.smtp_host,
            port=port,
            username=self.settings.gmail_user,
            password=self.settings.gmail_app_password,
            use_tls=port == 465,
            start_tls=port != 465,
        )

    def build_message(
        self,
        to_email: str,
        subject: str,
        html: str,
        attachments: Optional[list[Attachment]] = None,
    ) -> EmailMessage:
        message = EmailMessage()
        message["From"] = formataddr((self.settings.mail_from_name, self.settings.gmail_user))
        message["To"] = to_email
        message["Subject"] = subject
        message.set_content(html, subtype="html")

        for filename, content, mime_type in attachments or []:
            maintype, _, subtype = mime_type.partition("/")
            message.add_attachment(
                content,
                maintype=maintype or "application",
                subtype=subtype or "octet-stream",
                filename=filename,
            )
        return message

    async def _deliver(self, recipient: str, message: EmailMessage):
        try:
            return await self._transport(message)
        except Exception as e:
            raise TransportError(recipient, str(e)) from e

    async def notify(self, order: ReconciledOrder) -> NotificationResult:
        """
        Send the operations notice and the customer confirmation.

        Raises:
            ConfigurationError: mail credentials are missing
        """
        self.settings.require_mail()

        internal = self.settings.notification_recipients
        customer = (order.customer_email or "").strip()

        if not internal and not customer:
            logger.info("No email recipients configured (email list empty and no customer email)")
            return NotificationResult(success=True, skipped=True)

        brand = self.settings.mail_from_name
        attachments = order_attachments(order)

        sends: list[tuple[str, str, EmailMessage]] = []

        if internal:
            ops_html = render_operations_notice(order, brand)
            for email in internal:
                sends.append((
                    "internal",
                    email,
                    self.build_message(
                        email,
                        f"New {order.product_name} Order - {order.order_id}",
                        ops_html,
                        attachments,
                    ),
                ))

        if customer:
            sends.append((
                "customer",
                customer,
                self.build_message(
                    customer,
                    f"Order Confirmation - {order.order_id}",
                    render_customer_confirmation(order, brand),
                    attachments,
                ),
            ))
        else:
            logger.warning("No customer email on order %s - confirmation not sent", order.order_id)

        results = await asyncio.gather(
            *(self._deliver(recipient, message) for _, recipient, message in sends),
            return_exceptions=True,
        )

        sent = 0
        failed = 0
        for (kind, recipient, _), result in zip(sends, results):
            if isinstance(result, BaseException):
                failed += 1
                logger.error("%s email to %s failed: %s", kind.upper(), recipient, result)
            else:
                sent += 1
                logger.info("%s email sent to %s", kind.upper(), recipient)

        logger.info(
            "Order %s notifications: %d sent, %d failed (%d internal + %d customer)",
            order.order_id,
            sent,
            failed,
            len(internal),
            1 if customer else 0,
        )

        return NotificationResult(success=sent > 0, sent=sent, failed=failed)

@lru_cache()
def get_email_service() -> EmailService:
    """Get the email service instance."""
    return EmailService(get_settings())
