"""Customer repository - Database operations for customers, profiles and staff"""

from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ...models import Customer, CustomerProfile, Staff


class CustomerRepository:
    """Repository for customer and profile database operations"""

    @staticmethod
    async def get_customer(db: AsyncSession, customer_id: str) -> Optional[Customer]:
        result = await db.execute(select(Customer).where(Customer.id == customer_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_customer_by_email(db: AsyncSession, email: str) -> Optional[Customer]:
        """Case-insensitive lookup of the auth identity"""
        result = await db.execute(
            select(Customer).where(func.lower(Customer.email) == email.strip().lower())
        )
        return result.scalars().first()

    @staticmethod
    def create_customer(db: AsyncSession, email: str) -> Customer:
        """Stage a new customer. Caller commits."""
        customer = Customer(email=email.strip().lower())
        db.add(customer)
        return customer

    @staticmethod
    async def get_profile_by_email(db: AsyncSession, email: str) -> Optional[CustomerProfile]:
        """Case-insensitive profile lookup"""
        result = await db.execute(
            select(CustomerProfile).where(
                func.lower(CustomerProfile.email) == email.strip().lower()
            )
        )
        return result.scalars().first()

    @staticmethod
    async def get_profile_by_user_id(db: AsyncSession, user_id: str) -> Optional[CustomerProfile]:
        result = await db.execute(
            select(CustomerProfile).where(CustomerProfile.user_id == user_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_profile_by_stripe_customer(
        db: AsyncSession, stripe_customer_id: str
    ) -> Optional[CustomerProfile]:
        result = await db.execute(
            select(CustomerProfile).where(
                CustomerProfile.stripe_customer_id == stripe_customer_id
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def create_profile(db: AsyncSession, user_id: str, email: str, **profile_data) -> CustomerProfile:
        """Stage a new profile. Caller commits."""
        profile = CustomerProfile(user_id=user_id, email=email, **profile_data)
        db.add(profile)
        return profile


class StaffRepository:
    """Staff registry lookups"""

    @staticmethod
    async def get_staff(db: AsyncSession, user_id: str) -> Optional[Staff]:
        result = await db.execute(select(Staff).where(Staff.user_id == user_id))
        return result.scalar_one_or_none()
