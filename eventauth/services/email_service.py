"""Email service for sending verification codes."""

from email.message import EmailMessage

import aiosmtplib
import structlog

from eventauth.config import get_settings

logger = structlog.get_logger(__name__)

OTP_EMAIL_SUBJECT = "Email Verification OTP"
SMTP_TIMEOUT_SECONDS = 30


def _otp_html(otp: str, ttl_minutes: int) -> str:
    return f"""\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #333;">Email Verification</h2>
  <p>Your OTP for email verification is:</p>
  <div style="background-color: #f4f4f4; padding: 20px; text-align: center; font-size: 24px; font-weight: bold; letter-spacing: 5px;">
    {otp}
  </div>
  <p>This OTP will expire in {ttl_minutes} minutes.</p>
  <p>If you didn't request this, please ignore this email.</p>
</div>
"""


def build_otp_message(sender: str, to_email: str, otp: str, ttl_minutes: int) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = OTP_EMAIL_SUBJECT
    msg["From"] = sender
    msg["To"] = to_email
    msg.set_content(
        f"Your OTP for email verification is: {otp}\n"
        f"This OTP will expire in {ttl_minutes} minutes."
    )
    msg.add_alternative(_otp_html(otp, ttl_minutes), subtype="html")
    return msg


class EmailService:
    """Service for sending transactional emails over SMTP."""

    async def send_otp(self, to_email: str, otp: str) -> bool:
        """Send a verification code email.

        Returns True on success, False on failure.
        """
        settings = get_settings()
        msg = build_otp_message(
            sender=settings.smtp_from or settings.smtp_username,
            to_email=to_email,
            otp=otp,
            ttl_minutes=settings.otp_ttl_seconds // 60,
        )

        try:
            await aiosmtplib.send(
                msg,
                hostname=settings.smtp_host,
                port=settings.smtp_port,
                username=settings.smtp_username or None,
                password=settings.smtp_password or None,
                use_tls=settings.smtp_use_tls,
                # implicit TLS and STARTTLS are mutually exclusive
                start_tls=settings.smtp_start_tls and not settings.smtp_use_tls,
                timeout=SMTP_TIMEOUT_SECONDS,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error("otp_email_failed", to=to_email, error=str(e))
            return False

        logger.info("otp_email_sent", to=to_email)
        return True
