import smtplib
from email.message import EmailMessage

from app.config import settings

SMTP_TIMEOUT_SECONDS = 10


class _TemplateData(dict):
    def __missing__(self, key: str) -> str:
        return ""


# name -> (subject, plain text body); bodies use str.format fields from the template data.
TEMPLATES: dict[str, tuple[str, str]] = {
    "buyer-order-pending": (
        "Order confirmed - awaiting seller commitment",
        "Hi {buyerName},\n\n"
        "Your order #{orderId} from {sellerName} (R{totalAmount}) has been paid.\n"
        "The seller has until {expiresAt} to commit. If they don't, you will be refunded in full.\n\n"
        "Track it here: {statusUrl}",
    ),
    "seller-new-order": (
        "New order - action required within 48 hours",
        "Hi {sellerName},\n\n"
        "{buyerName} bought {itemSummary} (order #{orderId}, R{totalAmount}).\n"
        "Please commit before {expiresAt} or the order will be cancelled and refunded.\n\n"
        "Commit here: {commitUrl}",
    ),
    "buyer-order-confirmed": (
        "Your order has been confirmed!",
        "Hi {buyerName},\n\n"
        "{sellerName} has committed to order #{orderId}. Expected delivery: {expectedDelivery}.",
    ),
    "seller-pickup-notification": (
        "Order #{orderId} - courier pickup scheduled",
        "Hi {sellerName},\n\n"
        "{courierProvider} will collect order #{orderId} on {pickupDate} ({pickupTimeWindow}).\n"
        "Tracking number: {trackingNumber}\n"
        "Shipping label: {shippingLabelUrl}",
    ),
    "commit-confirmation-basic": (
        "Order commitment confirmed - next steps",
        "Hi {sellerName},\n\n"
        "Thanks for committing to order #{orderId}. We could not book a courier automatically "
        "({bookingError}); our team will arrange the pickup and contact you.",
    ),
    "buyer-order-declined": (
        "Order declined - full refund {refundStatus}",
        "Hi {buyerName},\n\n"
        "{sellerName} declined order #{orderId}: {reason}\n"
        "Refund of R{refundAmount}: {refundStatus}.",
    ),
    "seller-decline-confirmation": (
        "Order decline confirmed",
        "Hi {sellerName},\n\nOrder #{orderId} has been declined. Reason: {reason}",
    ),
    "buyer-order-expired": (
        "Order cancelled - seller did not commit in time",
        "Hi {buyerName},\n\n"
        "{sellerName} did not commit to order #{orderId} within {commitWindowHours} hours, so it was cancelled.\n"
        "Refund of R{refundAmount}: {refundStatus}.",
    ),
    "seller-order-expired": (
        "Order expired",
        "Hi {sellerName},\n\n"
        "Order #{orderId} expired because it was not committed within {commitWindowHours} hours. "
        "Your books are listed as available again.",
    ),
    "seller-commit-reminder": (
        "{urgencyPrefix}Order #{orderId} expires in {timeLeft} hours",
        "Hi {sellerName},\n\n"
        "Order #{orderId} (R{totalAmount}) is waiting for your commitment. "
        "It expires at {expiresAt}.\n\nCommit here: {commitUrl}",
    ),
    "buyer-order-collected": (
        "Your order is on the way!",
        "Hi {buyerName},\n\n"
        "Order #{orderId} was collected on {collectedAt}. Tracking reference: {trackingReference}.\n"
        "Estimated delivery: {estimatedDelivery}.",
    ),
    "seller-order-collected": (
        "Order collected successfully",
        "Hi {sellerName},\n\nOrder #{orderId} was collected by {collectedBy} on {collectedAt}.",
    ),
    "buyer-order-delivered": (
        "Your order has been delivered",
        "Hi {buyerName},\n\nOrder #{orderId} was delivered on {deliveredAt}. Enjoy your books!",
    ),
    "admin-auto-expire-report": (
        "Auto-expire report: {processedCount} orders expired",
        "Report date: {reportDate}\n"
        "Expired: {processedCount}\nErrors: {errorCount}\nTotal refunded: R{totalRefundAmount}\n\n"
        "{details}",
    ),
    "admin-checkout-reversal": (
        "Checkout reversed after inventory conflict: {reference}",
        "Payment {reference} (R{amount}) was captured but books {unavailableBooks} were already sold.\n"
        "Reversal status: {reversalStatus}",
    ),
}


def render_template(template_name: str, template_data: dict) -> tuple[str, str]:
    if template_name not in TEMPLATES:
        raise KeyError(f"Unknown email template: {template_name}")
    subject, body = TEMPLATES[template_name]
    data = _TemplateData(template_data)
    return subject.format_map(data), body.format_map(data)


def _send_email(to_email: str, subject: str, text_body: str, html_body: str | None = None) -> None:
    if not settings.SMTP_HOST or not settings.SMTP_FROM_EMAIL:
        raise RuntimeError("SMTP is not configured (SMTP_HOST and SMTP_FROM_EMAIL are required).")

    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = f"{settings.SMTP_FROM_NAME} <{settings.SMTP_FROM_EMAIL}>"
    message["To"] = to_email
    message.set_content(text_body)
    if html_body:
        message.add_alternative(html_body, subtype="html")

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=SMTP_TIMEOUT_SECONDS) as smtp:
        smtp.ehlo()
        if settings.SMTP_USE_TLS:
            smtp.starttls()
            smtp.ehlo()
        if settings.SMTP_USER:
            smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
        smtp.send_message(message)


def send_template_email(to_email: str, template_name: str, template_data: dict) -> None:
    subject, text = render_template(template_name, template_data)
    _send_email(to_email=to_email, subject=subject, text_body=text)
