"""
MJML Email Templates
Booking lifecycle emails, compiled to HTML by email_service
"""

from html import escape
from typing import Optional

from .config import BUSINESS_NAME, BUSINESS_PHONE

THEME = {
    "primary": "#14b8a6",
    "background": "#f8fafc",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "border": "#e2e8f0",
    "success": "#14b8a6",
    "danger": "#ef4444",
}


def get_base_template(title: str, preview_text: str, content_sections: str) -> str:
    """Base MJML template wrapper for all emails"""

    contact_line = ""
    if BUSINESS_PHONE:
        contact_line = f"""
        <mj-text align="center" font-size="13px" color="#94a3b8" padding="12px 0 0 0">
          Questions? Call us at {escape(BUSINESS_PHONE)}
        </mj-text>
        """

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{title}</mj-title>
        <mj-preview>{escape(preview_text)}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="#ffffff" padding="32px 40px 48px 40px">
          <mj-column>
            <mj-text font-size="24px" font-weight="600" color="{THEME['text_primary']}" line-height="1.3" padding="0 0 16px 0">
              {title}
            </mj-text>
            <mj-divider border-color="{THEME['border']}" border-width="1px" padding="0 0 24px 0" />

            {content_sections}
          </mj-column>
        </mj-section>

        <mj-section padding="32px 20px">
          <mj-column>
            <mj-text align="center" font-size="13px" color="#94a3b8" padding="0">
              {escape(BUSINESS_NAME)}
            </mj-text>
            {contact_line}
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def _appointment_block(service_name: str, appointment_date: str, appointment_time: str) -> str:
    return f"""
    <mj-text align="center" font-size="18px" font-weight="600" color="{THEME['text_primary']}" padding="20px 0 4px 0">
      {escape(service_name)}
    </mj-text>

    <mj-text align="center" font-size="16px" color="{THEME['text_primary']}" padding="0">
      📅 {escape(appointment_date)}
    </mj-text>

    <mj-text align="center" font-size="16px" color="{THEME['text_primary']}" padding="0 0 20px 0">
      ⏰ {escape(appointment_time)}
    </mj-text>
    """


def booking_confirmation_template(
    client_name: str,
    service_name: str,
    appointment_date: str,
    appointment_time: str,
    amount: Optional[str] = None,
) -> str:
    """Booking confirmed after payment"""
    amount_line = ""
    if amount:
        amount_line = f"""
    <mj-text>
      We received your payment of <strong>{escape(amount)}</strong>.
    </mj-text>
    """

    content = f"""
    <mj-text>
      Hi {escape(client_name)},
    </mj-text>

    <mj-text>
      Your appointment is confirmed.
    </mj-text>

    {_appointment_block(service_name, appointment_date, appointment_time)}

    {amount_line}

    <mj-text>
      Need to change the time? Reschedules are available up to 72 hours before your appointment.
    </mj-text>
    """

    return get_base_template(
        title="Your Booking is Confirmed! 🎉",
        preview_text=f"{service_name} on {appointment_date}",
        content_sections=content,
    )


def booking_reschedule_template(
    client_name: str,
    service_name: str,
    appointment_date: str,
    appointment_time: str,
    previous_date: Optional[str] = None,
) -> str:
    """Booking moved to a new time"""
    previous_line = ""
    if previous_date:
        previous_line = f"""
    <mj-text color="#94a3b8" font-size="14px">
      Previously scheduled for {escape(previous_date)}
    </mj-text>
    """

    content = f"""
    <mj-text>
      Hi {escape(client_name)},
    </mj-text>

    <mj-text>
      Your appointment has been rescheduled. Here is your new time:
    </mj-text>

    {_appointment_block(service_name, appointment_date, appointment_time)}

    {previous_line}
    """

    return get_base_template(
        title="Your Booking Has Been Rescheduled",
        preview_text=f"New time: {appointment_date} at {appointment_time}",
        content_sections=content,
    )


def booking_cancellation_template(
    client_name: str,
    service_name: str,
    appointment_date: str,
    appointment_time: str,
    refund_amount: Optional[str] = None,
) -> str:
    """Booking cancelled, with the refund when one was issued"""
    refund_line = ""
    if refund_amount:
        refund_line = f"""
    <mj-text>
      A refund of <strong>{escape(refund_amount)}</strong> has been issued to your original payment method.
      It can take 5-10 business days to appear on your statement.
    </mj-text>
    """

    content = f"""
    <mj-text>
      Hi {escape(client_name)},
    </mj-text>

    <mj-text>
      Your appointment has been cancelled.
    </mj-text>

    {_appointment_block(service_name, appointment_date, appointment_time)}

    {refund_line}
    """

    return get_base_template(
        title="Your Booking Has Been Cancelled",
        preview_text=f"{service_name} on {appointment_date} was cancelled",
        content_sections=content,
    )
