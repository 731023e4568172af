# utils/ids.py
"""
Document id builders.

Ids are human-readable and derived from the student's name and a date or
millisecond timestamp, so the same records can be found by eye in the admin
console and in exports.
"""
import re
import secrets
import time
from datetime import date, datetime
from typing import Union

_NON_SLUG = re.compile(r"[^a-z0-9]")
_DASHES = re.compile(r"-+")


def slugify_name(value: str, default: str = "unknown") -> str:
     """Lowercase, non-alphanumerics to dashes, collapsed and trimmed."""
     slug = _NON_SLUG.sub("-", (value or "").strip().lower())
     slug = _DASHES.sub("-", slug).strip("-")
     return slug or default


def now_ms() -> int:
     return int(time.time() * 1000)


def random_suffix(length: int = 6) -> str:
     return secrets.token_hex(length)[:length]


def _day(value: Union[date, datetime]) -> str:
     if isinstance(value, datetime):
          value = value.date()
     return value.isoformat()


def checkin_id(checkin_date: Union[date, datetime], first_name: str, last_name: str) -> str:
     """checkin-YYYY-MM-DD-firstname-lastname: one active check-in per student per day."""
     return f"checkin-{_day(checkin_date)}-{slugify_name(first_name)}-{slugify_name(last_name)}"


def block_id(first_name: str, last_name: str, purchase_date: Union[date, datetime], ms: int) -> str:
     return f"{slugify_name(first_name)}-{slugify_name(last_name)}-purchased-{_day(purchase_date)}-{ms}"


def purchase_transaction_id(first_name: str, last_name: str, kind: str, ms: int) -> str:
     return f"{slugify_name(first_name)}-{slugify_name(last_name)}-{slugify_name(kind)}-{ms}"


def gift_transaction_id(first_name: str, last_name: str, ms: int) -> str:
     return f"{slugify_name(first_name)}-{slugify_name(last_name)}-gifted-{ms}-{random_suffix()}"


def refund_transaction_id(student_id: str, ms: int) -> str:
     return f"{student_id}-refund-{ms}"


def checkin_transaction_id(student_id: str, checkin_doc_id: str, ms: int) -> str:
     return f"{student_id}-{checkin_doc_id}-{ms}"
