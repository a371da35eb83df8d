import logging

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from jose import jwt as jose_jwt
from sqlalchemy.ext.asyncio import AsyncSession

from . import config
from .database import get_db
from .domain.customers.repository import CustomerRepository, StaffRepository
from .exceptions import Forbidden, Misconfiguration, Unauthenticated
from .models import Customer
from .security_middleware import set_rls_context

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

ALGORITHM = "HS256"


def decode_access_token(token: str) -> dict:
    """Verify an HS256 access token issued by the auth provider"""
    if not config.AUTH_JWT_SECRET:
        logger.error("❌ AUTH_JWT_SECRET not configured")
        raise Misconfiguration("Auth not configured")

    if len(token.split(".")) != 3:
        logger.warning(f"⚠️ Malformed token received, length: {len(token)}")
        raise Unauthenticated("Invalid or expired token")

    try:
        return jose_jwt.decode(
            token, config.AUTH_JWT_SECRET, algorithms=[ALGORITHM], audience=config.AUTH_JWT_AUDIENCE
        )
    except JWTError as e:
        logger.warning(f"🚫 Token verification failed: {e}")
        raise Unauthenticated("Invalid or expired token") from e


async def get_current_customer(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Customer:
    """Get current customer from the bearer token"""
    if not credentials or not credentials.credentials:
        raise Unauthenticated("No authorization header")

    claims = decode_access_token(credentials.credentials)
    customer_id = claims.get("sub")
    if not customer_id:
        logger.error(f"❌ Token missing sub claim. Available claims: {list(claims.keys())}")
        raise Unauthenticated("Invalid token claims")

    customer = await CustomerRepository.get_customer(db, customer_id)
    if customer is None:
        logger.warning(f"🚫 Token subject {customer_id} has no customer record")
        raise Unauthenticated("Invalid or expired token")

    if db.bind is not None and db.bind.dialect.name == "postgresql":
        await set_rls_context(db, customer.id)

    return customer


async def get_current_staff(
    customer: Customer = Depends(get_current_customer),
    db: AsyncSession = Depends(get_db),
) -> Customer:
    """Authenticated caller who is also in the staff registry"""
    staff = await StaffRepository.get_staff(db, customer.id)
    if staff is None:
        logger.warning(f"🚫 Staff check failed: {customer.id} not in staff table")
        raise Forbidden("Forbidden: staff only")
    return customer
