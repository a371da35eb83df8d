"""
Tests for completion email templates and the Resend notifier.
"""

import pytest

from valet.services import email_service, notification_service
from valet.services.email_templates import (
    SUBJECT_LINES,
    delivery_complete_template,
    item_text,
    pickup_complete_template,
)
from valet.services.notification_service import ResendCompletionNotifier


def test_item_text():
    assert item_text(1) == "one of your items"
    assert item_text(3) == "3 of your items"


def test_pickup_template_mentions_customer_and_count():
    mjml = pickup_complete_template("Alex", 3)

    assert "<mjml>" in mjml
    assert "Alex" in mjml
    assert "3 of your items" in mjml


def test_delivery_template_escapes_name():
    mjml = delivery_complete_template("<b>Sam</b>", 1)

    assert "<b>Sam</b>" not in mjml
    assert "&lt;b&gt;Sam&lt;/b&gt;" in mjml


class TestResendCompletionNotifier:
    @pytest.mark.parametrize(
        "service_type,subject",
        [
            ("pickup", SUBJECT_LINES["pickup_complete"]),
            ("delivery", SUBJECT_LINES["delivery_complete"]),
        ],
    )
    async def test_picks_template_by_service_type(self, monkeypatch, service_type, subject):
        sent = []

        async def fake_send_email(to, subject, mjml_content, from_address=None):
            sent.append({"to": to, "subject": subject, "mjml": mjml_content})
            return {"id": "email_1"}

        monkeypatch.setattr(notification_service, "send_email", fake_send_email)

        await ResendCompletionNotifier().send_service_completed(
            to="alex@example.com", service_type=service_type, first_name="Alex", item_count=2
        )

        assert len(sent) == 1
        assert sent[0]["to"] == "alex@example.com"
        assert sent[0]["subject"] == subject
        assert "2 of your items" in sent[0]["mjml"]


async def test_send_email_without_api_key_raises(monkeypatch):
    monkeypatch.setattr(email_service, "RESEND_API_KEY", None)

    with pytest.raises(email_service.EmailDeliveryError):
        await email_service.send_email("alex@example.com", "Hi", "<mjml></mjml>")
