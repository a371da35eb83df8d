"""Completion notifications sent to customers after a service is completed"""

import logging
from typing import Optional

from .email_service import send_email
from .email_templates import (
    SUBJECT_LINES,
    delivery_complete_template,
    pickup_complete_template,
)

logger = logging.getLogger(__name__)


class CompletionNotifier:
    """Interface for the pickup/delivery completion notification"""

    async def send_service_completed(
        self,
        *,
        to: str,
        service_type: str,
        first_name: Optional[str],
        item_count: int,
    ) -> None:
        raise NotImplementedError


class ResendCompletionNotifier(CompletionNotifier):
    """Sends pickup_complete / delivery_complete emails through Resend"""

    async def send_service_completed(
        self,
        *,
        to: str,
        service_type: str,
        first_name: Optional[str],
        item_count: int,
    ) -> None:
        if service_type == "delivery":
            email_type = "delivery_complete"
            mjml_content = delivery_complete_template(first_name, item_count)
        else:
            email_type = "pickup_complete"
            mjml_content = pickup_complete_template(first_name, item_count)

        await send_email(to=to, subject=SUBJECT_LINES[email_type], mjml_content=mjml_content)
        logger.info(f"📧 Sent {email_type} email to {to}")
