"""
Booking Email Service using Resend
Provides email functionality using MJML templates for responsive design
"""

import logging
from datetime import datetime
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import resend
from mjml import mjml_to_html
from starlette.concurrency import run_in_threadpool

from .config import BUSINESS_NAME, BUSINESS_TIMEZONE, EMAIL_FROM_ADDRESS, RESEND_API_KEY
from .email_templates import (
    booking_cancellation_template,
    booking_confirmation_template,
    booking_reschedule_template,
)
from .utils.timeutils import ensure_utc

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    try:
        result = mjml_to_html(mjml_content)
        # mjml_to_html returns a dict-like result with 'html' and 'errors'
        if isinstance(result, dict):
            if result.get("errors"):
                logger.warning(f"MJML compilation warnings: {result['errors']}")
            return result.get("html", "")
        html = getattr(result, "html", None)
        return html if html is not None else str(result)
    except Exception as e:
        logger.error(f"MJML compilation error: {e}")
        raise Exception(f"Failed to compile MJML template: {str(e)}") from e


async def send_email(
    to: Union[str, list[str]],
    subject: str,
    mjml_content: str,
    from_address: Optional[str] = None,
) -> dict:
    """
    Send an email through Resend

    Args:
        to: Recipient email(s)
        subject: Email subject line
        mjml_content: MJML template content (will be compiled to HTML)
        from_address: Optional custom from address

    Returns:
        Send response dict
    """
    html_content = compile_mjml_to_html(mjml_content)
    recipients = [to] if isinstance(to, str) else to

    if not RESEND_API_KEY:
        logger.error("❌ No email service configured - RESEND_API_KEY missing")
        raise Exception("Email service not configured")

    try:
        logger.info(f"📧 Sending email via Resend to: {to}")
        email_data = {
            "from": from_address or EMAIL_FROM_ADDRESS,
            "to": recipients,
            "subject": subject,
            "html": html_content,
        }
        response = await run_in_threadpool(resend.Emails.send, email_data)
        logger.info(f"✅ Email sent successfully via Resend: {response}")
        return response
    except Exception as e:
        logger.error(f"❌ Email send error to {recipients}: {e}")
        raise Exception(f"Failed to send email: {str(e)}") from e


def format_appointment(start: datetime, tz_name: Optional[str] = None) -> tuple[str, str]:
    """Render a slot start as ("Monday, March 3, 2025", "2:00 PM EST") in the booking's zone"""
    try:
        zone = ZoneInfo(tz_name or BUSINESS_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        zone = ZoneInfo("UTC")
    local = ensure_utc(start).astimezone(zone)
    day = f"{local:%A}, {local:%B} {local.day}, {local.year}"
    hour = local.hour % 12 or 12
    return day, f"{hour}:{local:%M} {local:%p} {local.tzname()}"


def _format_cents(cents: Optional[int]) -> Optional[str]:
    if cents is None:
        return None
    return f"${cents / 100:,.2f}"


async def send_booking_confirmation(booking, amount_cents: Optional[int] = None) -> dict:
    """Send the confirmation email once a booking is paid and confirmed"""
    day, time_label = format_appointment(booking.start_at, booking.timezone)
    mjml_content = booking_confirmation_template(
        client_name=booking.client_name or "there",
        service_name=booking.service_name or "Your appointment",
        appointment_date=day,
        appointment_time=time_label,
        amount=_format_cents(amount_cents),
    )
    return await send_email(
        to=booking.client_email,
        subject=f"Booking confirmed - {BUSINESS_NAME}",
        mjml_content=mjml_content,
    )


async def send_booking_reschedule(booking, previous_start: Optional[datetime] = None) -> dict:
    day, time_label = format_appointment(booking.start_at, booking.timezone)
    previous = None
    if previous_start:
        prev_day, prev_time = format_appointment(previous_start, booking.timezone)
        previous = f"{prev_day} at {prev_time}"
    mjml_content = booking_reschedule_template(
        client_name=booking.client_name or "there",
        service_name=booking.service_name or "Your appointment",
        appointment_date=day,
        appointment_time=time_label,
        previous_date=previous,
    )
    return await send_email(
        to=booking.client_email,
        subject=f"Booking rescheduled - {BUSINESS_NAME}",
        mjml_content=mjml_content,
    )


async def send_booking_cancellation(booking, refund_cents: Optional[int] = None) -> dict:
    day, time_label = format_appointment(booking.start_at, booking.timezone)
    mjml_content = booking_cancellation_template(
        client_name=booking.client_name or "there",
        service_name=booking.service_name or "Your appointment",
        appointment_date=day,
        appointment_time=time_label,
        refund_amount=_format_cents(refund_cents) if refund_cents else None,
    )
    return await send_email(
        to=booking.client_email,
        subject=f"Booking cancelled - {BUSINESS_NAME}",
        mjml_content=mjml_content,
    )
