import re
import secrets
from datetime import datetime
from typing import Optional

BOOKING_CODE_RE = re.compile(r"^(?P<prefix>[A-Z]+)-(?P<court_id>\d+)-(?P<date>\d{8})-(?P<random>\d{4})$")
INVOICE_CODE_RE = re.compile(r"^IN-(?P<invoice_id>\d+)-(?P<date>\d{8})$")


def booking_code(prefix: str, court_id: int, when: datetime) -> str:
    """Display code like VS-3-20260120-0427. Not a key; collisions are tolerated."""
    return f"{prefix}-{court_id}-{when.strftime('%Y%m%d')}-{secrets.randbelow(10000):04d}"


def invoice_code(invoice_id: int, when: datetime) -> str:
    return f"IN-{invoice_id}-{when.strftime('%Y%m%d')}"


def parse_booking_code(code: str) -> Optional[dict]:
    m = BOOKING_CODE_RE.match((code or "").strip().upper())
    if not m:
        return None
    return {
        "prefix": m.group("prefix"),
        "court_id": int(m.group("court_id")),
        "date": datetime.strptime(m.group("date"), "%Y%m%d").date(),
    }


def parse_invoice_code(code: str) -> Optional[int]:
    m = INVOICE_CODE_RE.match((code or "").strip().upper())
    return int(m.group("invoice_id")) if m else None
