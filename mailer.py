# One-Time Password Email Delivery

from email.message import EmailMessage

import aiosmtplib

from api_client import log
import config


def otp_message(to: str, otp: str) -> EmailMessage:
    minutes = config.OTP_TTL_SEC // 60
    msg = EmailMessage()
    msg["Subject"] = "Your verification code"
    msg["From"] = config.SMTP_SENDER or config.SMTP_USER
    msg["To"] = to
    msg.set_content(f"Your verification code is: {otp}\n\nThis code will expire in {minutes} minutes.")
    msg.add_alternative(
        f"<h2>Verification Code</h2>"
        f"<p>Your verification code is: <strong>{otp}</strong></p>"
        f"<p>This code will expire in {minutes} minutes.</p>",
        subtype="html",
    )
    return msg

async def send_otp_email(to: str, otp: str):
    """Send the code over SMTP with STARTTLS; raises RuntimeError when SMTP is not configured."""
    if not (config.SMTP_HOST and config.SMTP_USER and config.SMTP_PASSWORD):
        raise RuntimeError("SMTP is not configured")
    await aiosmtplib.send(
        otp_message(to, otp),
        hostname=config.SMTP_HOST,
        port=config.SMTP_PORT,
        username=config.SMTP_USER,
        password=config.SMTP_PASSWORD,
        start_tls=True,
        timeout=config.HTTP_TIMEOUT_SEC,
    )
    log(f"[AUTH] Verification code sent to {to}")
