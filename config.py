# config.py
"""
Application configuration loaded from the environment.

Values come from a local .env file (python-dotenv) or the process
environment. Everything is read once at import time.
"""
import os
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
     return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


# Database
DB_SERVER = os.getenv("DB_SERVER")
DB_PORT = os.getenv("DB_PORT", "1433")
DB_USER = os.getenv("DB_USER")
DB_PASS = os.getenv("DB_PASS")
DB_NAME = os.getenv("DB_NAME")
SQL_ECHO = _env_bool("SQL_ECHO")

# Auth
JWT_SECRET = os.getenv("JWT_SECRET", "")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]

# Stripe
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_API_BASE = os.getenv("STRIPE_API_BASE", "https://api.stripe.com/v1")
STRIPE_CURRENCY = os.getenv("STRIPE_CURRENCY", "nzd")

# Identity provider (portal accounts)
IDENTITY_API_BASE = os.getenv("IDENTITY_API_BASE", "https://identitytoolkit.googleapis.com/v1")
IDENTITY_PROJECT_ID = os.getenv("IDENTITY_PROJECT_ID")
IDENTITY_ACCESS_TOKEN = os.getenv("IDENTITY_ACCESS_TOKEN")

# Email
BREVO_API_KEY = os.getenv("BREVO_API_KEY")
EMAIL_FROM_NAME = os.getenv("EMAIL_FROM_NAME", "Dance Studio")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "noreply@example.com")
LOW_BALANCE_EMAILS_ENABLED = _env_bool("LOW_BALANCE_EMAILS_ENABLED")

# Studio rules
STUDIO_TIMEZONE = os.getenv("STUDIO_TIMEZONE", "Pacific/Auckland")
LOW_BALANCE_THRESHOLD = 1
# Prepaid classes can be moved until this hour (studio time) on the class day
CLASS_DATE_CUTOFF_HOUR = 19
REFUND_EPSILON = Decimal("0.01")

# Batched writes never exceed the store's per-commit limit
MAX_BATCH_SIZE = 500
MERGE_BATCH_SIZE = min(int(os.getenv("MERGE_BATCH_SIZE", str(MAX_BATCH_SIZE))), MAX_BATCH_SIZE)

# Retries for idempotent database work
RETRY_ATTEMPTS = int(os.getenv("RETRY_ATTEMPTS", "3"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "console")


def build_database_url() -> str:
     """
     Resolve the SQLAlchemy URL.

     DATABASE_URL wins when set; otherwise the Azure SQL URL is assembled
     from the DB_* variables (mssql+pymssql).
     """
     override = os.getenv("DATABASE_URL")
     if override:
          return override
     from urllib.parse import quote_plus
     safe_user = quote_plus(DB_USER or "")
     safe_pass = quote_plus(DB_PASS or "")
     return f"mssql+pymssql://{safe_user}:{safe_pass}@{DB_SERVER}:{DB_PORT}/{DB_NAME}"
