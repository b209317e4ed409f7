"""
Email Utilities
===============

Outbound email for invitations, account confirmation, password reset and
notifications. Supports both SMTP and a log-only mode for development.
"""

import os
import html
import smtplib
import logging
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional

logger = logging.getLogger(__name__)


def get_email_config():
    """Get email configuration from environment variables."""
    return {
        "smtp_host": os.environ.get("SMTP_HOST", ""),
        "smtp_port": int(os.environ.get("SMTP_PORT", "587")),
        "smtp_user": os.environ.get("SMTP_USER", ""),
        "smtp_password": os.environ.get("SMTP_PASSWORD", ""),
        "smtp_from": os.environ.get("SMTP_FROM", "noreply@casebridge.app"),
        "smtp_use_tls": os.environ.get("SMTP_USE_TLS", "true").lower() == "true",
        "internal_app_url": os.environ.get("INTERNAL_APP_URL", "http://localhost:5174"),
        "client_app_url": os.environ.get("CLIENT_APP_URL", "http://localhost:5173"),
    }


def is_email_configured() -> bool:
    """Check if SMTP is properly configured."""
    config = get_email_config()
    return bool(config["smtp_host"] and config["smtp_user"] and config["smtp_password"])


def send_email(
    to_email: str,
    subject: str,
    html_body: str,
    text_body: Optional[str] = None
) -> bool:
    """
    Send an email.

    Returns True if sent successfully, False otherwise.
    In development mode (SMTP not configured), logs the email instead.
    """
    config = get_email_config()

    if not is_email_configured():
        logger.info(f"[DEV MODE] Email would be sent to {to_email}: {subject}")
        logger.debug(f"[DEV MODE] Email body: {text_body or html_body[:200]}")
        return True

    try:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = config["smtp_from"]
        msg["To"] = to_email

        if text_body:
            msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        with smtplib.SMTP(config["smtp_host"], config["smtp_port"]) as server:
            if config["smtp_use_tls"]:
                server.starttls()
            server.login(config["smtp_user"], config["smtp_password"])
            server.sendmail(config["smtp_from"], to_email, msg.as_string())

        logger.info(f"Email sent successfully to {to_email}")
        return True

    except Exception as e:
        logger.error(f"Failed to send email to {to_email}: {e}")
        return False


def _render(heading: str, paragraphs, link: Optional[str] = None, link_label: str = "Open CaseBridge") -> str:
    body = "".join(f"<p>{html.escape(p)}</p>" for p in paragraphs)
    button = ""
    if link:
        button = (
            f'<p><a href="{html.escape(link)}" style="display:inline-block;background:#1d4ed8;color:#fff;'
            f'padding:12px 24px;border-radius:6px;text-decoration:none;font-weight:bold">'
            f"{html.escape(link_label)}</a></p>"
            f'<p style="font-size:12px;color:#555;word-break:break-all">{html.escape(link)}</p>'
        )
    return f"""
    <!DOCTYPE html>
    <html lang="en">
    <head><meta charset="UTF-8"></head>
    <body style="font-family: Arial, sans-serif;">
        <div style="max-width:600px;margin:0 auto;padding:20px">
            <h1 style="color:#0f172a;font-size:22px">{html.escape(heading)}</h1>
            {body}
            {button}
            <p style="text-align:center;color:#666;font-size:12px;margin-top:24px">
                This message was sent automatically by CaseBridge. Please do not reply.
            </p>
        </div>
    </body>
    </html>
    """


def role_label(role: str) -> str:
    """admin_manager -> Admin Manager"""
    return role.replace("_", " ").title()


def send_invitation_email(to_email: str, token: str, firm_name: str, role: str) -> bool:
    config = get_email_config()
    link = f"{config['internal_app_url'].rstrip('/')}/auth/accept-invite?token={token}"
    label = role_label(role)
    subject = f"You've been invited to join {firm_name} on CaseBridge"
    intro = f"You've been invited to join {firm_name} on CaseBridge as a {label}."
    text_body = f"{intro}\n\nAccept the invitation here:\n{link}\n\nThis invitation expires in 7 days."
    html_body = _render(subject, [intro, "This invitation expires in 7 days."], link, "Accept invitation")
    return send_email(to_email, subject, html_body, text_body)


def send_email_confirmation(to_email: str, token: str, user_name: Optional[str] = None, internal: bool = False) -> bool:
    config = get_email_config()
    base = config["internal_app_url"] if internal else config["client_app_url"]
    link = f"{base.rstrip('/')}/auth/confirm-email?token={token}"
    greeting = f"Hello {user_name}," if user_name else "Hello,"
    subject = "Confirm your email - CaseBridge"
    text_body = f"{greeting}\n\nPlease confirm your email address:\n{link}\n"
    html_body = _render(subject, [greeting, "Please confirm your email address."], link, "Confirm email")
    return send_email(to_email, subject, html_body, text_body)


def send_password_reset_email(to_email: str, reset_token: str, user_name: Optional[str] = None, internal: bool = False) -> bool:
    """
    Send a password reset email.

    Args:
        to_email: Recipient email address
        reset_token: The password reset token
        user_name: Optional user name for personalization
        internal: Link to the internal portal instead of the client portal
    """
    config = get_email_config()
    base = config["internal_app_url"] if internal else config["client_app_url"]
    link = f"{base.rstrip('/')}/auth/reset-password?token={reset_token}"
    greeting = f"Hello {user_name}," if user_name else "Hello,"
    subject = "Password reset - CaseBridge"
    notice = "This link is valid for one hour. If you did not request a reset, ignore this message."
    text_body = f"{greeting}\n\nReset your password here:\n{link}\n\n{notice}\n"
    html_body = _render(subject, [greeting, "We received a request to reset your password.", notice], link, "Reset password")
    return send_email(to_email, subject, html_body, text_body)


def send_notification_email(to_email: str, title: str, message: str, link: Optional[str] = None) -> bool:
    text_body = f"{message}\n\n{link}" if link else message
    return send_email(to_email, f"{title} - CaseBridge", _render(title, [message], link), text_body)
