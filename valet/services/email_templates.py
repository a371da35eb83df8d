"""
MJML Email Templates
Service completion notifications, compiled to HTML by the email service
"""

from html import escape
from typing import Optional

from ..config import APP_URL

THEME = {
    "primary": "#1e3a5f",
    "background": "#f8fafc",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
}

SUBJECT_LINES = {
    "pickup_complete": "Your Items Are Safely With Us!",
    "delivery_complete": "Your Items Are Home!",
}


def item_text(item_count: int) -> str:
    return "one of your items" if item_count == 1 else f"{item_count} of your items"


def get_base_template(
    title: str,
    preview_text: str,
    content_sections: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
) -> str:
    """Base MJML template wrapper for all emails"""

    cta_section = ""
    if cta_url and cta_label:
        cta_section = f"""
        <mj-section padding="20px 0">
          <mj-column>
            <mj-button href="{cta_url}" background-color="{THEME['primary']}" color="#ffffff"
              font-weight="600" border-radius="8px" padding="18px 40px" font-size="16px">
              {cta_label}
            </mj-button>
          </mj-column>
        </mj-section>
        """

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{title}</mj-title>
        <mj-preview>{preview_text}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="#ffffff" padding="40px 40px 48px 40px">
          <mj-column>
            <mj-text font-size="24px" font-weight="600" color="{THEME['text_primary']}" line-height="1.3" padding="0 0 16px 0">
              {title}
            </mj-text>
            {content_sections}
          </mj-column>
        </mj-section>

        {cta_section}

        <mj-section padding="32px 20px">
          <mj-column>
            <mj-text align="center" font-size="13px" color="#94a3b8" padding="0">
              You're receiving this because you have a Storage Valet account.
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def _greeting(first_name: Optional[str]) -> str:
    return f"Hi {escape(first_name)}," if first_name else "Hi there,"


def pickup_complete_template(first_name: Optional[str], item_count: int) -> str:
    """Pickup completed: items are now in storage"""
    content = f"""
    <mj-text>{_greeting(first_name)}</mj-text>
    <mj-text>
      We picked up {item_text(item_count)} and they are now safely stored with us.
    </mj-text>
    <mj-text color="{THEME['text_muted']}">
      You can see everything we're holding for you in your portal.
    </mj-text>
    """
    return get_base_template(
        title=SUBJECT_LINES["pickup_complete"],
        preview_text="Your pickup is complete",
        content_sections=content,
        cta_url=APP_URL,
        cta_label="View My Items",
    )


def delivery_complete_template(first_name: Optional[str], item_count: int) -> str:
    """Delivery completed: items are back home"""
    content = f"""
    <mj-text>{_greeting(first_name)}</mj-text>
    <mj-text>
      We delivered {item_text(item_count)} back to your home.
    </mj-text>
    <mj-text color="{THEME['text_muted']}">
      Schedule another pickup any time from your portal.
    </mj-text>
    """
    return get_base_template(
        title=SUBJECT_LINES["delivery_complete"],
        preview_text="Your delivery is complete",
        content_sections=content,
        cta_url=APP_URL,
        cta_label="Open Portal",
    )
