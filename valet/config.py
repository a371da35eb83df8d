import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./storage_valet.db")

# Portal auth: HS256 access tokens issued by the auth provider ("sub" is the customer id)
AUTH_JWT_SECRET = os.getenv("AUTH_JWT_SECRET")
AUTH_JWT_AUDIENCE = os.getenv("AUTH_JWT_AUDIENCE", "authenticated")

# Webhook signing secrets - both webhooks fail closed when these are missing
CALENDLY_WEBHOOK_SIGNING_KEY = os.getenv("CALENDLY_WEBHOOK_SIGNING_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")

# "record_after": check, process, then record (provider retries are safe after a crash)
# "insert_first": record before processing (safer against concurrent duplicates)
PAYMENT_WEBHOOK_IDEMPOTENCY = os.getenv("PAYMENT_WEBHOOK_IDEMPOTENCY", "record_after")

# Booking statuses from which staff may complete a service
COMPLETABLE_STATUSES = tuple(
    s.strip()
    for s in os.getenv("COMPLETABLE_STATUSES", "confirmed,pending_confirmation").split(",")
    if s.strip()
)

# CORS / origin allow-list for the customer portal
ALLOWED_ORIGINS = [
    o.strip()
    for o in os.getenv(
        "ALLOWED_ORIGINS",
        "https://portal.mystoragevalet.com,https://www.mystoragevalet.com,http://localhost:5173",
    ).split(",")
    if o.strip()
]

# Primary service area (soft gate: outside ZIPs are flagged for ops review, not rejected)
SERVICE_AREA_ZIPS = [
    z.strip()
    for z in os.getenv(
        "SERVICE_AREA_ZIPS",
        "07030,07086,07020,07093,07302,07303,07304,07305,07306,07307,07308,07310,07311",
    ).split(",")
    if z.strip()
]

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "Storage Valet <notifications@mystoragevalet.com>")
APP_URL = os.getenv("APP_URL", "http://localhost:5173")

# Redis (webhook rate limiting)
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
WEBHOOK_RATE_LIMIT = int(os.getenv("WEBHOOK_RATE_LIMIT", "100"))
WEBHOOK_RATE_WINDOW_SECONDS = int(os.getenv("WEBHOOK_RATE_WINDOW_SECONDS", "60"))
