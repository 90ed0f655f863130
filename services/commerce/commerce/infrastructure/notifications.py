"""Order confirmation senders (email over SMTP, WhatsApp over Twilio).

Both are best effort: they run after the order has committed, an
unconfigured sender only logs what it would have sent, and any failure
is logged and dropped.
"""
import html
import smtplib
from email.message import EmailMessage
from typing import Dict, Optional

import httpx

from commerce.application.schemas import OrderNotice
from commerce.core_settings import Settings, get_settings
from shared.core import get_logger

logger = get_logger(__name__)


def format_phone(phone: str, default_country_code: str = "+91") -> str:
    phone = phone.strip()
    return phone if phone.startswith("+") else f"{default_country_code}{phone}"


def whatsapp_body(notice: OrderNotice, store_name: str) -> str:
    items = ", ".join(f"{item.quantity} x {item.name}" for item in notice.items)
    return (
        f"*{store_name}*\n\n"
        f"*Order Confirmed!*\n"
        f"Order ID: {notice.order_number}\n"
        f"Items: {items}\n"
        f"Total: ₹{notice.total_amount}\n\n"
        f"Thank you for choosing {store_name}! We'll keep you updated on your order status."
    )


def confirmation_email(notice: OrderNotice, store_name: str) -> EmailMessage:
    esc = html.escape
    rows = "".join(
        f"<tr><td>{esc(item.name)}</td><td>{item.quantity}</td>"
        f"<td>₹{item.unit_price}</td><td>₹{item.total_price}</td></tr>"
        for item in notice.items
    )
    address = "<br>".join(esc(line) for line in notice.shipping_lines)
    html_body = f"""\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>Order Confirmation</h2>
  <p>Dear {esc(notice.customer_name)},</p>
  <p>Thank you for your order! We've received it and will process it shortly.</p>
  <h3>Order Details</h3>
  <p><strong>Order Number:</strong> {esc(notice.order_number)}<br>
  <strong>Order Date:</strong> {notice.created_at:%d %b %Y}<br>
  <strong>Status:</strong> {esc(notice.status)}<br>
  <strong>Payment Method:</strong> {esc(notice.payment_method.upper())}</p>
  <h3>Shipping Address</h3>
  <p>{esc(notice.shipping_name)}<br>{address}</p>
  <h3>Order Items</h3>
  <table><tr><th>Item</th><th>Qty</th><th>Price</th><th>Total</th></tr>{rows}</table>
  <p>Subtotal: ₹{notice.subtotal}<br>Shipping: ₹{notice.shipping_cost}<br>
  Tax: ₹{notice.tax_amount}<br><strong>Total: ₹{notice.total_amount}</strong></p>
  <p>Thank you for choosing {esc(store_name)}!</p>
</div>"""
    text_lines = [
        f"Order {notice.order_number} confirmed.",
        *(f"{item.quantity} x {item.name} = {item.total_price}" for item in notice.items),
        f"Total: {notice.total_amount}",
    ]

    message = EmailMessage()
    message["Subject"] = f"Order Confirmation - {notice.order_number}"
    message["To"] = notice.contact_email
    message.set_content("\n".join(text_lines))
    message.add_alternative(html_body, subtype="html")
    return message


class EmailSender:
    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def configured(self) -> bool:
        return bool(self.settings.SMTP_HOST and (self.settings.SMTP_FROM or self.settings.SMTP_USER))

    def send_order_confirmation(self, notice: OrderNotice) -> Dict[str, str]:
        if not self.configured:
            logger.info(
                "Order confirmation email not sent, SMTP not configured",
                extra={'extra_fields': {'order_number': notice.order_number}}
            )
            return {"status": "logged"}

        message = confirmation_email(notice, self.settings.STORE_NAME)
        message["From"] = self.settings.SMTP_FROM or self.settings.SMTP_USER
        with smtplib.SMTP(
            self.settings.SMTP_HOST, self.settings.SMTP_PORT,
            timeout=self.settings.NOTIFICATION_TIMEOUT_SECONDS,
        ) as smtp:
            if self.settings.SMTP_USE_TLS:
                smtp.starttls()
            if self.settings.SMTP_USER and self.settings.SMTP_PASSWORD:
                smtp.login(self.settings.SMTP_USER, self.settings.SMTP_PASSWORD)
            smtp.send_message(message)
        return {"status": "sent"}


class WhatsAppSender:
    def __init__(self, settings: Settings, client: Optional[httpx.Client] = None):
        self.settings = settings
        self.client = client

    @property
    def configured(self) -> bool:
        s = self.settings
        return bool(s.TWILIO_ACCOUNT_SID and s.TWILIO_AUTH_TOKEN and s.TWILIO_WHATSAPP_FROM)

    def send_order_whatsapp(self, notice: OrderNotice) -> Dict[str, str]:
        phone = format_phone(notice.contact_phone, self.settings.DEFAULT_PHONE_COUNTRY_CODE)
        body = whatsapp_body(notice, self.settings.STORE_NAME)
        if not self.configured:
            logger.info(
                "WhatsApp notification not sent, credentials not configured",
                extra={'extra_fields': {'order_number': notice.order_number, 'message': body}}
            )
            return {"status": "logged"}

        s = self.settings
        url = f"{s.TWILIO_API_BASE}/Accounts/{s.TWILIO_ACCOUNT_SID}/Messages.json"
        data = {
            "From": f"whatsapp:{s.TWILIO_WHATSAPP_FROM}",
            "To": f"whatsapp:{phone}",
            "Body": body,
        }
        auth = (s.TWILIO_ACCOUNT_SID, s.TWILIO_AUTH_TOKEN)
        if self.client is not None:
            response = self.client.post(url, data=data, auth=auth)
        else:
            with httpx.Client(timeout=s.NOTIFICATION_TIMEOUT_SECONDS) as client:
                response = client.post(url, data=data, auth=auth)
        response.raise_for_status()
        return {"status": "sent", "sid": response.json().get("sid", "")}


class NotificationDispatcher:
    """Fans an order confirmation out to every channel; never raises."""

    def __init__(self, email: EmailSender, whatsapp: WhatsAppSender):
        self.email = email
        self.whatsapp = whatsapp

    def order_placed(self, notice: OrderNotice) -> Dict[str, str]:
        outcome = {}
        for channel, send in (
            ("email", self.email.send_order_confirmation),
            ("whatsapp", self.whatsapp.send_order_whatsapp),
        ):
            try:
                outcome[channel] = send(notice)["status"]
            except Exception:
                outcome[channel] = "failed"
                logger.error(
                    f"Order {channel} notification failed",
                    exc_info=True,
                    extra={'extra_fields': {'order_number': notice.order_number, 'channel': channel}}
                )
        logger.info(
            "Order notifications dispatched",
            extra={'extra_fields': {'order_number': notice.order_number, **outcome}}
        )
        return outcome


def get_notification_dispatcher() -> NotificationDispatcher:
    settings = get_settings()
    return NotificationDispatcher(EmailSender(settings), WhatsAppSender(settings))
