"""
Booking confirmation email via SMTP.
Set SMTP_HOST, SMTP_USER, SMTP_PASSWORD (and optionally SMTP_PORT, EMAIL_FROM_ADDRESS) in .env.
"""
import html
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from ..config import settings
from ..models import Appointments

logger = logging.getLogger(__name__)


def build_confirmation_email(appointment: Appointments, meet_link: str | None) -> tuple[str, str]:
    """Subject and HTML body for a confirmed appointment."""
    seller = appointment.seller
    buyer = appointment.buyer
    when = appointment.start.strftime("%A, %d %B %Y at %H:%M")
    subject = f"Appointment confirmed: {appointment.title}"

    lines = [
        "<h2>Your appointment is confirmed</h2>",
        f"<p>Hello {html.escape(buyer.name or 'there')},</p>",
        f"<p><strong>{html.escape(appointment.title)}</strong> with "
        f"{html.escape(seller.name or 'your host')}</p>",
        f"<p>{when} ({html.escape(appointment.timezone or 'UTC')}), "
        f"{appointment.duration} minutes</p>",
    ]
    if meet_link:
        lines.append(f'<p>Join meeting: <a href="{html.escape(meet_link)}">{html.escape(meet_link)}</a></p>')
    lines.append(f"<p style='color:#999;font-size:12px'>Booking ID: {appointment.id}</p>")
    return subject, "\n".join(lines)


class SmtpMailer:
    """Sends mail through the configured SMTP server."""

    def is_configured(self) -> bool:
        return bool(settings.smtp_host and settings.smtp_user and settings.smtp_password)

    def send(self, to: str, subject: str, html_content: str) -> None:
        """
        Send one HTML email.

        Raises:
            smtplib.SMTPException / OSError: on delivery failure
        """
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = settings.email_from_address
        msg["To"] = to
        msg.attach(MIMEText(html_content, "html"))

        context = ssl.create_default_context()
        if settings.smtp_port == 465:
            server = smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, context=context, timeout=30)
        else:
            server = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30)
            server.starttls(context=context)

        with server:
            server.login(settings.smtp_user, settings.smtp_password)
            server.sendmail(settings.email_from_address, [to], msg.as_string())
        logger.info(f"Email sent to {to}: {subject}")
