"""
Email Service using Resend

Handles sending emails for the admission and account recovery flows.

The admission and recovery services depend on the ``Notifier`` protocol, not
on these functions directly; ``EmailNotifier`` adapts them.
"""

import asyncio
import logging
from html import escape
from typing import Protocol

import resend

from intake.core.config import settings
from intake.core.exceptions import NotificationError

logger = logging.getLogger(__name__)

# Initialize Resend with API key
resend.api_key = settings.resend_api_key

_STYLE = """
            body { font-family: system-ui, -apple-system, sans-serif; line-height: 1.6; color: #1f2937; }
            .container { max-width: 600px; margin: 0 auto; padding: 40px 20px; }
            .header { color: #1a365d; margin-bottom: 24px; }
            .box { background-color: #f9fafb; border: 1px solid #e5e7eb; padding: 16px; border-radius: 8px; margin: 16px 0; }
            .box p { margin: 8px 0; }
            .code { font-size: 32px; font-weight: bold; letter-spacing: 8px; font-family: monospace; text-align: center; }
            .warning { background-color: #fef3c7; border: 1px solid #f59e0b; padding: 12px 16px; border-radius: 8px; margin: 16px 0; font-size: 14px; }
            .reason-box { background-color: #fef2f2; border: 1px solid #fecaca; padding: 16px; border-radius: 8px; margin: 16px 0; }
            .button { display: inline-block; background-color: #1a365d; color: white; padding: 14px 28px; text-decoration: none; border-radius: 8px; margin: 24px 0; }
            .footer { margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e7eb; color: #6b7280; font-size: 14px; }
"""


def _render(title: str, body: str) -> str:
    """Wrap an email body in the shared HTML layout."""
    institution = escape(settings.institution_name)
    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <style>{_STYLE}</style>
    </head>
    <body>
        <div class="container">
            <h1 class="header">{escape(title)}</h1>
            {body}
            <div class="footer">
                <p>{institution}</p>
                <p>This is an automated message. Please do not reply.</p>
            </div>
        </div>
    </body>
    </html>
    """


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


async def send_acceptance_email(
    to_email: str,
    name: str,
    student_id: str,
    temporary_password: str,
) -> bool:
    """Send admission approval with the new member's login credentials."""
    # Escape user inputs to prevent XSS
    safe_name = escape(name)
    safe_student_id = escape(student_id)
    safe_institution = escape(settings.institution_name)
    login_url = f"{settings.frontend_url}/login"

    body = f"""
            <p>Dear {safe_name},</p>

            <p>Congratulations! Your application to <strong>{safe_institution}</strong> has been approved.</p>

            <div class="box">
                <p><strong>Student ID:</strong> {safe_student_id}</p>
                <p><strong>Email:</strong> {escape(to_email)}</p>
                <p><strong>Temporary Password:</strong> <code>{escape(temporary_password)}</code></p>
            </div>

            <div class="warning">
                <strong>Important:</strong> Please change your password after your first login.
            </div>

            <a href="{login_url}" class="button">Log In</a>
    """
    return await send_email(
        to_email=to_email,
        subject=f"Admission approved - welcome to {settings.institution_name}",
        html_content=_render("Admission Approved", body),
    )


async def send_rejection_email(
    to_email: str,
    name: str,
    reason: str,
) -> bool:
    """Send notification that an application was rejected."""
    safe_name = escape(name)
    safe_reason = escape(reason)
    safe_institution = escape(settings.institution_name)

    body = f"""
            <p>Dear {safe_name},</p>

            <p>Thank you for your interest in <strong>{safe_institution}</strong>. After reviewing your application, we are unable to offer you admission at this time.</p>

            <div class="reason-box">
                <p><strong>Reason:</strong></p>
                <p>{safe_reason}</p>
            </div>

            <p>If you have questions about this decision, please contact the admissions office.</p>
    """
    return await send_email(
        to_email=to_email,
        subject=f"Update on your application to {settings.institution_name}",
        html_content=_render("Application Update", body),
    )


async def send_credentials_email(
    to_email: str,
    name: str,
    student_id: str,
    temporary_password: str,
) -> bool:
    """Send freshly issued login credentials to an existing member."""
    safe_name = escape(name)
    login_url = f"{settings.frontend_url}/login"

    body = f"""
            <p>Dear {safe_name},</p>

            <p>New login credentials have been issued for your account.</p>

            <div class="box">
                <p><strong>Student ID:</strong> {escape(student_id)}</p>
                <p><strong>Email:</strong> {escape(to_email)}</p>
                <p><strong>Temporary Password:</strong> <code>{escape(temporary_password)}</code></p>
            </div>

            <div class="warning">
                Any previous password no longer works. Please change this one after logging in.
            </div>

            <a href="{login_url}" class="button">Log In</a>
    """
    return await send_email(
        to_email=to_email,
        subject="Your login credentials",
        html_content=_render("Your Login Credentials", body),
    )


async def send_recovery_code_email(
    to_email: str,
    name: str,
    code: str,
    role: str,
    expiry_minutes: int,
) -> bool:
    """Send a password reset verification code."""
    safe_name = escape(name)
    safe_role = escape(role)

    body = f"""
            <p>Dear {safe_name},</p>

            <p>We received a request to reset the password of your {safe_role} account. Use the verification code below to continue.</p>

            <div class="box">
                <p class="code">{escape(code)}</p>
            </div>

            <div class="warning">
                This code expires in <strong>{expiry_minutes} minutes</strong> and can only be used once.
                If you did not request a password reset, you can safely ignore this email.
            </div>
    """
    return await send_email(
        to_email=to_email,
        subject="Password reset verification code",
        html_content=_render("Password Reset Verification", body),
    )


class Notifier(Protocol):
    """Outbound notifications the admission and recovery services depend on.

    Implementations raise ``NotificationError`` when delivery fails.
    """

    async def send_acceptance(
        self, *, email: str, name: str, student_id: str, temporary_password: str
    ) -> None: ...

    async def send_rejection(self, *, email: str, name: str, reason: str) -> None: ...

    async def send_credentials(
        self, *, email: str, name: str, student_id: str, temporary_password: str
    ) -> None: ...

    async def send_recovery_code(self, *, email: str, name: str, code: str, role: str) -> None: ...


class EmailNotifier:
    """``Notifier`` backed by the Resend email functions above."""

    async def send_acceptance(
        self, *, email: str, name: str, student_id: str, temporary_password: str
    ) -> None:
        sent = await send_acceptance_email(email, name, student_id, temporary_password)
        if not sent:
            raise NotificationError(f"Failed to send acceptance email to {email}")

    async def send_rejection(self, *, email: str, name: str, reason: str) -> None:
        sent = await send_rejection_email(email, name, reason)
        if not sent:
            raise NotificationError(f"Failed to send rejection email to {email}")

    async def send_credentials(
        self, *, email: str, name: str, student_id: str, temporary_password: str
    ) -> None:
        sent = await send_credentials_email(email, name, student_id, temporary_password)
        if not sent:
            raise NotificationError(f"Failed to send credentials email to {email}")

    async def send_recovery_code(self, *, email: str, name: str, code: str, role: str) -> None:
        sent = await send_recovery_code_email(
            email, name, code, role, settings.otp_expiry_minutes
        )
        if not sent:
            raise NotificationError("Failed to send verification email. Please try again.")


__all__ = [
    "EmailNotifier",
    "Notifier",
    "send_acceptance_email",
    "send_credentials_email",
    "send_email",
    "send_recovery_code_email",
    "send_rejection_email",
]
