import smtplib
from email.message import EmailMessage

import structlog

from ..config import settings


def send_mail(to: str, subject: str, body: str) -> bool:
    """Send a plain-text mail when SMTP is configured. Never raises."""
    if not (settings.smtp_host and settings.mail_from):
        return False
    try:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = settings.mail_from
        msg["To"] = to
        msg.set_content(body)
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as s:
            if settings.smtp_tls:
                s.starttls()
            if settings.smtp_username and settings.smtp_password:
                s.login(settings.smtp_username, settings.smtp_password)
            s.send_message(msg)
        return True
    except (smtplib.SMTPException, OSError) as e:
        structlog.get_logger().warning("mail_send_failed", to=to, subject=subject, error=str(e))
        return False
