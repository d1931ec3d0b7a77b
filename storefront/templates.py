"""
HTML bodies for order notifications.

Two audiences: the operations list gets a work notice with both images and
raw links, the customer gets a confirmation with the engraving preview.
"""
from decimal import Decimal
from html import escape
from typing import Optional

from .models import ReconciledOrder, ShippingAddress

BRAND_COLOR = "#041E42"

BASE_STYLE = f"""
      body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
      .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
      .header {{ background-color: {BRAND_COLOR}; color: white; padding: 20px; text-align: center; }}
      .content {{ padding: 20px; background-color: #f9f9f9; }}
      .image-section {{ margin: 20px 0; text-align: center; }}
      .image-section img {{ max-width: 100%; height: auto; border: 1px solid #ddd; border-radius: 8px; margin: 10px 0; }}
      .links, .order-info {{ margin: 20px 0; padding: 15px; background-color: white; border-radius: 8px; }}
      .links a {{ color: {BRAND_COLOR}; text-decoration: none; display: block; margin: 5px 0; }}
      .order-info h3 {{ margin-top: 0; color: {BRAND_COLOR}; }}
      .order-info table {{ width: 100%; border-collapse: collapse; }}
      .order-info td {{ padding: 8px 0; border-bottom: 1px solid #eee; }}
      .order-info td:first-child {{ font-weight: bold; width: 40%; }}
      .price {{ font-size: 24px; font-weight: bold; color: {BRAND_COLOR}; }}
      .contact {{ background-color: #e3f2fd; padding: 15px; border-radius: 8px; margin: 20px 0; }}
      .footer {{ text-align: center; padding: 20px; color: #666; font-size: 12px; }}
"""

NEXT_STEPS = [
    "Your order is confirmed and in production",
    "We'll send you shipping updates via email",
    "Expected processing time: 3-5 business days",
    "You'll receive tracking information once your order ships",
]


def format_price(price: Decimal) -> str:
    return f"${price:,.2f}"


def format_date(order: ReconciledOrder) -> str:
    return f"{order.created_at:%B} {order.created_at.day}, {order.created_at:%Y}"


def address_lines(address: ShippingAddress, name: str = "") -> list[str]:
    """Shipping address as printable lines, skipping empty parts."""
    lines = []
    if name:
        lines.append(name)
    if address.line1:
        lines.append(address.line1)
    if address.line2:
        lines.append(address.line2)
    city_line = ", ".join(p for p in (address.city, address.state) if p)
    if address.postal_code:
        city_line = f"{city_line} {address.postal_code}".strip()
    if city_line:
        lines.append(city_line)
    if address.country:
        lines.append(address.country)
    return lines


def _page(title: str, subtitle: Optional[str], body: str, footer: str) -> str:
    subtitle_html = f'<p style="margin: 0; font-size: 18px;">{escape(subtitle)}</p>' if subtitle else ""
    return f"""<!DOCTYPE html>
<html>
  <head>
    <style>{BASE_STYLE}</style>
  </head>
  <body>
    <div class="container">
      <div class="header">
        <h1>{escape(title)}</h1>
        {subtitle_html}
      </div>
      <div class="content">
{body}
      </div>
      <div class="footer">
{footer}
      </div>
    </div>
  </body>
</html>
"""


def _image_section(heading: str, url: str, link_text: str, caption: Optional[str] = None) -> str:
    url = escape(url, quote=True)
    caption_html = f"<p>{escape(caption)}</p>" if caption else ""
    return f"""
        <div class="image-section">
          <h3>{escape(heading)}</h3>
          {caption_html}
          <img src="{url}" alt="{escape(heading, quote=True)}" />
          <p><a href="{url}" target="_blank">{escape(link_text)}</a></p>
        </div>"""


def _shipping_section(order: ReconciledOrder, heading: str) -> str:
    if not order.shipping_address:
        return ""
    lines = "<br />".join(escape(line) for line in address_lines(order.shipping_address, order.shipping_name))
    return f"""
        <div class="order-info">
          <h3>{escape(heading)}</h3>
          <p>{lines}</p>
        </div>"""


def render_operations_notice(order: ReconciledOrder, brand: str) -> str:
    """Work notice for the internal operations list."""
    parts = [
        f"        <p>A new {escape(order.product_name)} order has been completed.</p>",
        f"        <p><strong>Order ID:</strong> {escape(order.order_id)}</p>",
        f"        <p><strong>Product:</strong> {escape(order.product_name)}</p>",
        f"        <p><strong>Price:</strong> {format_price(order.product_price)}</p>",
    ]
    if order.customer_email:
        parts.append(f"        <p><strong>Customer Email:</strong> {escape(order.customer_email)}</p>")
    if order.test_mode:
        parts.append("        <p><strong>Test order</strong> - do not fulfill.</p>")

    parts.append(_shipping_section(order, "Ship To"))

    if order.has_images:
        parts.append(_image_section("Original Image", order.original_url, "View Original Image"))
        parts.append(_image_section("Laser Engraved Preview", order.processed_url, "View Processed Image"))
        original = escape(order.original_url, quote=True)
        processed = escape(order.processed_url, quote=True)
        parts.append(f"""
        <div class="links">
          <h3>Image Links:</h3>
          <p><strong>Original:</strong> <a href="{original}" target="_blank">{original}</a></p>
          <p><strong>Processed:</strong> <a href="{processed}" target="_blank">{processed}</a></p>
        </div>""")

    footer = f"        <p>{escape(brand)} - {escape(order.product_name)} Orders</p>"
    return _page(f"New {order.product_name} Order!", None, "\n".join(parts), footer)


def render_customer_confirmation(order: ReconciledOrder, brand: str) -> str:
    """Confirmation for the customer who paid."""
    order_id = escape(order.order_id)
    rows = [
        ("Order Number:", order_id),
        ("Order Date:", escape(format_date(order))),
        ("Item:", escape(order.product_name)),
    ]
    # Breakdown only when tax was actually charged.
    if order.amount_tax and order.amount_subtotal is not None:
        rows.append(("Subtotal:", format_price(order.amount_subtotal)))
        rows.append(("Tax:", format_price(order.amount_tax)))
    rows.append(("Total Paid:", f'<span class="price">{format_price(order.product_price)}</span>'))
    rows.append(("Status:", '<strong style="color: green;">Confirmed</strong>'))
    table = "\n".join(
        f"            <tr><td>{label}</td><td>{value}</td></tr>" for label, value in rows
    )

    parts = [
        "        <p>Hello,</p>",
        f"        <p>Thank you for your order! We've received your payment and your "
        f"{escape(order.product_name)} is confirmed.</p>",
        f"""
        <div class="order-info">
          <h3>Order Summary</h3>
          <table>
{table}
          </table>
        </div>""",
    ]

    if order.has_images:
        parts.append(_image_section(
            "Your Custom Design Preview",
            order.processed_url,
            "View Full Size Preview",
            caption="Here's a preview of your laser-engraved design:",
        ))
        parts.append(_image_section("Original Image", order.original_url, "View Original Image"))

    parts.append(_shipping_section(order, "Shipping To"))

    steps = "\n".join(f'            <li style="margin: 8px 0;">{escape(s)}</li>' for s in NEXT_STEPS)
    parts.append(f"""
        <div class="order-info">
          <h3>What Happens Next?</h3>
          <ul style="margin: 10px 0; padding-left: 20px;">
{steps}
          </ul>
        </div>
        <div class="contact">
          <h3 style="margin-top: 0; color: {BRAND_COLOR};">Need Help?</h3>
          <p style="margin: 5px 0;">If you have any questions about your order, please reply to this email or contact us.</p>
          <p style="margin: 5px 0;"><strong>Order Reference:</strong> {order_id}</p>
        </div>
        <p>We appreciate your business!</p>""")

    footer = (
        f'        <p style="font-weight: bold; color: {BRAND_COLOR};">{escape(brand)}</p>\n'
        f"        <p>{escape(order.product_name)} Orders</p>"
    )
    return _page("Order Confirmation", "Thank You for Your Purchase!", "\n".join(parts), footer)
