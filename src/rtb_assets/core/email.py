"""
Email Service using Resend

Sends the e-mail copy of in-app notifications (application submitted,
reviewed, devices assigned, ...).
"""

import asyncio
import logging
from html import escape

import resend

from rtb_assets.core.config import settings

logger = logging.getLogger(__name__)

resend.api_key = settings.resend_api_key


async def send_email(
    to_email: str,
    subject: str,
    html_content: str,
) -> bool:
    """
    Send an email using Resend.

    Args:
        to_email: Recipient email address
        subject: Email subject line
        html_content: HTML content of the email

    Returns:
        True if email was sent successfully
    """
    if not resend.api_key:
        logger.warning("RESEND_API_KEY not set - logging email instead of sending")
        logger.info(f"EMAIL TO: {to_email} | SUBJECT: {subject}")
        return True

    try:
        params: resend.Emails.SendParams = {
            "from": settings.email_from,
            "to": [to_email],
            "subject": subject,
            "html": html_content,
        }

        # Run sync Resend call in thread pool to avoid blocking event loop
        email = await asyncio.to_thread(resend.Emails.send, params)
        logger.info(f"Email sent successfully to {to_email}, id: {email['id']}")
        return True
    except Exception as e:
        logger.error(f"Failed to send email to {to_email}: {e}")
        return False


async def send_notification_email(
    to_email: str,
    recipient_name: str,
    title: str,
    message: str,
    action_url: str | None = None,
) -> bool:
    """Send the e-mail version of an in-app notification."""
    # Escape user inputs to prevent XSS
    safe_name = escape(recipient_name)
    safe_title = escape(title)
    safe_message = escape(message)

    button = ""
    if action_url:
        link = escape(f"{settings.frontend_url}{action_url}")
        button = f'<a href="{link}" class="button">Open in RTB Assets</a>'

    html_content = f"""
    <!DOCTYPE html>
    <html>
    <head>
        <style>
            body {{ font-family: system-ui, -apple-system, sans-serif; line-height: 1.6; color: #1f2937; }}
            .container {{ max-width: 600px; margin: 0 auto; padding: 40px 20px; }}
            .header {{ color: #1a365d; margin-bottom: 24px; }}
            .button {{ display: inline-block; background-color: #1a365d; color: white; padding: 14px 28px; text-decoration: none; border-radius: 8px; margin: 24px 0; }}
            .footer {{ margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e7eb; color: #6b7280; font-size: 14px; }}
        </style>
    </head>
    <body>
        <div class="container">
            <h1 class="header">{safe_title}</h1>

            <p>Hello {safe_name},</p>

            <p>{safe_message}</p>

            {button}

            <div class="footer">
                <p>RTB Asset Management System</p>
            </div>
        </div>
    </body>
    </html>
    """
    return await send_email(
        to_email=to_email,
        subject=f"RTB Assets: {safe_title}",
        html_content=html_content,
    )
