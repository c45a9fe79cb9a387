import smtplib
from datetime import datetime
from email.message import EmailMessage
from functools import lru_cache

import resend
from loguru import logger

from app.core.config import Settings, get_settings


OTP_SUBJECT = "Your OTP Verification Code"


def render_otp_html(code: str, display_name: str, app_name: str, ttl_minutes: int) -> str:
    greeting = f"Hi {display_name}," if display_name else "Hello,"
    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>OTP Verification</title>
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
    <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
        <h2 style="text-align: center;">Email Verification</h2>
        <p>{greeting}</p>
        <p>Please use the following verification code to complete your registration:</p>
        <div style="background-color: #e7f3ff; padding: 20px; text-align: center; font-size: 32px;
                    font-weight: bold; letter-spacing: 5px; border: 2px dashed #0066cc; color: #0066cc;">{code}</div>
        <p><strong>Important:</strong> This code will expire in {ttl_minutes} minutes.</p>
        <p>If you didn't request this verification code, please ignore this email and your account will remain secure.</p>
        <p style="font-size: 14px; color: #666; text-align: center;">
            This is an automated message, please do not reply to this email.<br>
            &copy; {datetime.utcnow().year} {app_name}. All rights reserved.
        </p>
    </div>
</body>
</html>
"""


def render_otp_text(code: str, display_name: str, app_name: str, ttl_minutes: int) -> str:
    greeting = f"Hi {display_name}," if display_name else "Hello,"
    return (
        f"{greeting}\n\nYour verification code is: {code}\n\n"
        f"This code will expire in {ttl_minutes} minutes.\n\n"
        "If you didn't request this code, please ignore this email.\n\n"
        f"---\nThis is an automated message, please do not reply.\n{app_name}"
    )


class EmailService:
    """Delivers transactional mail through Resend, falling back to SMTP."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def _build_smtp_client(self):
        if not self.settings.SMTP_HOST:
            return None
        host = self.settings.SMTP_HOST
        port = self.settings.SMTP_PORT
        if self.settings.SMTP_USE_SSL:
            return smtplib.SMTP_SSL(host, port, timeout=30)
        client = smtplib.SMTP(host, port, timeout=30)
        if self.settings.SMTP_USE_TLS:
            client.starttls()
        return client

    def _send_via_resend(self, to_email: str, subject: str, html: str, text: str) -> bool:
        api_key = self.settings.RESEND_API_KEY
        sender = self.settings.RESEND_FROM or self.settings.SMTP_FROM
        if not api_key or not sender:
            return False
        try:
            resend.api_key = api_key
            resend.Emails.send(
                {
                    "from": sender,
                    "to": to_email,
                    "subject": subject,
                    "html": html,
                    "text": text,
                }
            )
            logger.info(f"[email:resend] sent to={to_email} subject={subject}")
            return True
        except Exception as exc:
            logger.error(f"[email:resend:error] to={to_email} {exc}")
            return False

    def _send_via_smtp(self, to_email: str, subject: str, html: str, text: str) -> bool:
        if not self.settings.SMTP_HOST or not self.settings.SMTP_FROM:
            return False

        msg = EmailMessage()
        msg["From"] = self.settings.SMTP_FROM
        msg["To"] = to_email
        msg["Subject"] = subject
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")

        try:
            client = self._build_smtp_client()
        except (OSError, smtplib.SMTPException) as exc:
            logger.error(f"[email:smtp:error] connect failed: {exc}")
            return False
        if not client:
            return False

        try:
            if self.settings.SMTP_USER and self.settings.SMTP_PASSWORD:
                client.login(self.settings.SMTP_USER, self.settings.SMTP_PASSWORD)
            client.send_message(msg)
            logger.info(f"[email:smtp] sent to={to_email} subject={subject}")
            return True
        except (OSError, smtplib.SMTPException) as exc:
            logger.error(f"[email:smtp:error] to={to_email} {exc}")
            return False
        finally:
            try:
                client.quit()
            except (OSError, smtplib.SMTPException):
                pass

    def send_email(self, to_email: str, subject: str, html: str, text: str) -> bool:
        if self._send_via_resend(to_email, subject, html, text):
            return True
        if self._send_via_smtp(to_email, subject, html, text):
            return True
        if self.settings.EMAIL_LOG_ONLY:
            # Body carries the OTP code and is never logged
            logger.warning(f"[email:log_only] to={to_email} subject={subject} (body not logged)")
            return True
        logger.error(f"[email] no transport delivered mail to={to_email} subject={subject}")
        return False

    def send_otp_email(self, to_email: str, code: str, display_name: str = "") -> bool:
        app_name = self.settings.APP_NAME
        ttl = self.settings.OTP_TTL_MINUTES
        return self.send_email(
            to_email,
            OTP_SUBJECT,
            render_otp_html(code, display_name, app_name, ttl),
            render_otp_text(code, display_name, app_name, ttl),
        )


@lru_cache
def get_mailer() -> EmailService:
    return EmailService(get_settings())
