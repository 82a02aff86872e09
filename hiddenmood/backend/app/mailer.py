from __future__ import annotations

import logging
import os
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

logger = logging.getLogger("hiddenmood.mail")


def smtp_settings() -> dict:
    return {
        "host": os.getenv("SMTP_HOST", "smtp.gmail.com"),
        "port": int(os.getenv("SMTP_PORT", "465")),
        "sender": os.getenv("SENDER_EMAIL", ""),
        "password": os.getenv("APP_PASSWORD", ""),
    }


def send_reset_code(to_email: str, code: str, expires_minutes: int) -> bool:
    settings = smtp_settings()
    if not settings["sender"] or not settings["password"]:
        logger.warning("Mail not configured. Reset code for %s: %s", to_email, code)
        return True
    msg = MIMEMultipart("alternative")
    msg["Subject"] = "Your HiddenMood password reset code"
    msg["From"] = f"HiddenMood <{settings['sender']}>"
    msg["To"] = to_email
    text_body = (
        f"Your password reset code is {code}.\n"
        f"It expires in {expires_minutes} minutes. "
        "If you did not ask to reset your password, ignore this email."
    )
    html_body = f"""
    <div style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; max-width: 480px; margin: 0 auto; padding: 32px 20px;">
        <h1 style="margin: 0 0 16px; font-size: 22px; color: #18181b;">Reset your password</h1>
        <p style="margin: 0 0 12px; color: #52525b; font-size: 14px;">Use this code to continue:</p>
        <div style="font-size: 32px; font-weight: bold; letter-spacing: 8px; font-family: monospace;">{code}</div>
        <p style="margin: 16px 0 0; color: #71717a; font-size: 12px;">This code expires in {expires_minutes} minutes.</p>
    </div>
    """
    msg.attach(MIMEText(text_body, "plain"))
    msg.attach(MIMEText(html_body, "html"))
    try:
        with smtplib.SMTP_SSL(settings["host"], settings["port"]) as server:
            server.login(settings["sender"], settings["password"])
            server.sendmail(settings["sender"], to_email, msg.as_string())
    except (smtplib.SMTPException, OSError):
        logger.exception("Failed to send reset code to %s", to_email)
        return False
    logger.info("Reset code sent to %s", to_email)
    return True
