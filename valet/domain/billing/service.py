"""Billing service - applies Stripe events to customer subscription state"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ... import config
from ...models import CustomerProfile
from ...utils.time import utcnow
from ..customers.repository import CustomerRepository

logger = logging.getLogger(__name__)


def is_in_service_area(zip_code: Optional[str]) -> bool:
    if not zip_code:
        return False
    return zip_code.strip() in config.SERVICE_AREA_ZIPS


def build_delivery_address(address: Optional[dict]) -> Optional[dict]:
    """Stripe address object -> delivery_address JSON"""
    if not address:
        return None
    return {
        "street": address.get("line1") or "",
        "unit": address.get("line2") or None,
        "city": address.get("city") or "",
        "state": address.get("state") or "",
        "zip": address.get("postal_code") or "",
    }


class PaymentEventProcessor:
    """Dispatches verified Stripe events to profile updates"""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.customers = CustomerRepository()
        self.handlers = {
            "checkout.session.completed": self.handle_checkout_completed,
            "customer.subscription.created": self.handle_subscription_change,
            "customer.subscription.updated": self.handle_subscription_change,
            "customer.subscription.deleted": self.handle_subscription_deleted,
            "invoice.payment_succeeded": self.handle_invoice_payment_succeeded,
            "invoice.payment_failed": self.handle_invoice_payment_failed,
        }

    async def process(self, event_type: str, obj: dict) -> bool:
        """Apply one event. Returns False for event types we do not handle."""
        handler = self.handlers.get(event_type)
        if handler is None:
            logger.info(f"Unhandled Stripe event type: {event_type}")
            return False
        await handler(obj)
        return True

    async def handle_checkout_completed(self, session: dict) -> None:
        details = session.get("customer_details") or {}
        email = (session.get("customer_email") or details.get("email") or "").strip().lower()
        stripe_customer_id = session.get("customer")

        if not email or not stripe_customer_id:
            logger.error("❌ Missing email or customer id in checkout session")
            return

        delivery_address = build_delivery_address(details.get("address"))
        zip_code = (delivery_address or {}).get("zip")
        in_service_area = is_in_service_area(zip_code)
        logger.info(f"Address validation: ZIP={zip_code}, in_service_area={in_service_area}")

        # Setup fee payments are mode=payment; the subscription is started manually later
        metadata = session.get("metadata") or {}
        is_setup_fee = session.get("mode") == "payment" or metadata.get("product_type") == "setup_fee"

        customer = await self.customers.get_customer_by_email(self.db, email)
        if customer is None:
            customer = self.customers.create_customer(self.db, email)
            await self.db.flush()
            logger.info(f"👤 Created customer for {email}: {customer.id}")

        profile = await self.customers.get_profile_by_user_id(self.db, customer.id)
        if profile is None:
            profile = self.customers.create_profile(self.db, customer.id, email)

        profile.email = email
        profile.stripe_customer_id = stripe_customer_id
        profile.subscription_status = "inactive" if is_setup_fee else "active"
        profile.subscription_id = session.get("subscription")
        profile.full_name = details.get("name")
        if profile.full_name and not profile.first_name:
            profile.first_name = profile.full_name.split()[0]
        profile.delivery_address = delivery_address
        profile.out_of_service_area = not in_service_area
        profile.needs_manual_refund = not in_service_area
        profile.updated_at = self.clock()

        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.error(f"❌ Failed to upsert customer profile for {email}")
            raise

        logger.info(
            f"✅ Checkout completed for {email} "
            f"(setup_fee={is_setup_fee}, out_of_service_area={not in_service_area})"
        )

    async def _profile_for(self, obj: dict) -> Optional[CustomerProfile]:
        stripe_customer_id = obj.get("customer")
        if not stripe_customer_id:
            logger.error(f"❌ Stripe object {obj.get('id')} has no customer id")
            return None
        profile = await self.customers.get_profile_by_stripe_customer(self.db, stripe_customer_id)
        if profile is None:
            logger.error(f"❌ No profile found for Stripe customer {stripe_customer_id}")
        return profile

    async def handle_subscription_change(self, subscription: dict) -> None:
        profile = await self._profile_for(subscription)
        if profile is None:
            return
        profile.subscription_status = subscription.get("status") or profile.subscription_status
        profile.subscription_id = subscription.get("id")
        profile.updated_at = self.clock()
        await self.db.commit()
        logger.info(
            f"✅ Subscription {subscription.get('id')} is {profile.subscription_status} "
            f"for user {profile.user_id}"
        )

    async def handle_subscription_deleted(self, subscription: dict) -> None:
        profile = await self._profile_for(subscription)
        if profile is None:
            return
        profile.subscription_status = "canceled"
        profile.updated_at = self.clock()
        await self.db.commit()
        logger.info(f"Subscription {subscription.get('id')} canceled for user {profile.user_id}")

    async def handle_invoice_payment_succeeded(self, invoice: dict) -> None:
        profile = await self._profile_for(invoice)
        if profile is None:
            return
        now = self.clock()
        profile.subscription_status = "active"
        profile.last_payment_at = now
        profile.updated_at = now
        await self.db.commit()
        logger.info(f"💳 Invoice {invoice.get('id')} payment succeeded for user {profile.user_id}")

    async def handle_invoice_payment_failed(self, invoice: dict) -> None:
        profile = await self._profile_for(invoice)
        if profile is None:
            return
        now = self.clock()
        profile.subscription_status = "past_due"
        profile.last_payment_failed_at = now
        profile.updated_at = now
        await self.db.commit()
        logger.warning(f"⚠️ Invoice {invoice.get('id')} payment failed for user {profile.user_id}")
