"""Webhook envelope schemas - Calendly and Stripe event bodies"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class ScheduledEvent(BaseModel):
    uri: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


class InviteePayload(BaseModel):
    """The parts of a Calendly invitee payload we act on (the rest is kept raw)"""

    model_config = ConfigDict(extra="ignore")

    email: Optional[str] = None
    scheduled_event: Optional[ScheduledEvent] = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v):
        if v is None:
            return v
        return v.strip().lower() or None


class CalendlyWebhookEvent(BaseModel):
    """{event: "invitee.created" | "invitee.canceled" | ..., payload: {...}}"""

    event: str
    payload: dict[str, Any] = {}

    def invitee(self) -> InviteePayload:
        return InviteePayload.model_validate(self.payload)


class StripeEventData(BaseModel):
    object: dict[str, Any]


class StripeEvent(BaseModel):
    """{id, type, data: {object}}"""

    model_config = ConfigDict(extra="ignore")

    id: str
    type: str
    data: StripeEventData

    @field_validator("id", "type")
    @classmethod
    def validate_not_empty(cls, v):
        if not v.strip():
            raise ValueError("must not be empty")
        return v
