"""
Pricing rules for court bookings.

Every function here is pure. Amounts are integers in the smallest currency
unit; fractional intermediate results are rounded half-up exactly once per
priced line.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Optional

from models.enums import PaymentMethod, ServiceUnit
from services.errors import ValidationError
from services.timeutil import minutes_between
from services.validators import coerce_enum

# Observed discount tiers; the only place tier percentages live.
DISCOUNT_TIERS = {
    "none": 0,
    "student": 10,
    "platinum": 20,
}


def round_money(value) -> int:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _slot_minutes(slot) -> int:
    if isinstance(slot, (tuple, list)):
        start, end = slot
    else:
        start, end = slot.start_time, slot.end_time
    return minutes_between(start, end)


def court_fee(price_per_hour: int, slots: Iterable, slot_duration_minutes: Optional[int] = None) -> int:
    """
    ``price_per_hour`` times the booked hours.

    ``slots`` holds ``(start, end)`` pairs or objects with ``start_time`` /
    ``end_time``. When ``slot_duration_minutes`` is given every slot counts for
    exactly that long, which is how a court type's fixed slot length is priced.
    """
    slots = list(slots)
    if price_per_hour < 0:
        raise ValidationError("Hourly price cannot be negative")
    if not slots:
        return 0
    if slot_duration_minutes is not None:
        total_minutes = len(slots) * int(slot_duration_minutes)
    else:
        total_minutes = sum(_slot_minutes(s) for s in slots)
    return round_money(Decimal(price_per_hour) * Decimal(total_minutes) / Decimal(60))


@dataclass
class ServiceLine:
    unit: ServiceUnit
    unit_price: int
    quantity: int = 1
    duration_minutes: Optional[int] = None
    service_id: Optional[int] = None
    name: str = ""

    @property
    def amount(self) -> int:
        return service_line_amount(self)


def service_line_amount(line: ServiceLine) -> int:
    if line.quantity <= 0:
        raise ValidationError("Service quantity must be positive", service_id=line.service_id)
    if line.unit_price < 0:
        raise ValidationError("Service price cannot be negative", service_id=line.service_id)

    unit = coerce_enum(ServiceUnit, line.unit, "service unit")
    if unit is ServiceUnit.FREE:
        return 0
    if unit is ServiceUnit.HOUR:
        if not line.duration_minutes or line.duration_minutes <= 0:
            raise ValidationError("Hourly services need a positive duration", service_id=line.service_id)
        return round_money(
            Decimal(line.unit_price) * line.quantity * Decimal(line.duration_minutes) / Decimal(60)
        )
    return line.unit_price * line.quantity


def service_fee(items: Iterable[ServiceLine]) -> int:
    return sum(service_line_amount(item) for item in items)


def _check_percent(percent) -> Decimal:
    try:
        value = Decimal(str(percent))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("Discount percent must be a number")
    if not value.is_finite() or value < 0 or value > 100:
        raise ValidationError("Discount percent must be between 0 and 100")
    return value


def discount(subtotal: int, percent) -> int:
    value = _check_percent(percent)
    return round_money(Decimal(subtotal) * value / Decimal(100))


def discount_percent_for(tier: Optional[str]) -> int:
    key = (tier or "none").strip().lower()
    if key not in DISCOUNT_TIERS:
        raise ValidationError(f"Unknown discount tier '{tier}'", allowed=sorted(DISCOUNT_TIERS))
    return DISCOUNT_TIERS[key]


def deposit(court_fee_amount: int, ratio, method, minutes_until_start: int, cancel_window_minutes: int) -> int:
    """
    Deposit owed up front for a counter-payment booking made outside the cancel
    window. Inside the window (or for any other payment method) nothing is due.
    """
    ratio = Decimal(str(ratio))
    if ratio < 0 or ratio > 1:
        raise ValidationError("Deposit ratio must be between 0 and 1")
    if coerce_enum(PaymentMethod, method, "payment method") is not PaymentMethod.COUNTER:
        return 0
    if minutes_until_start <= cancel_window_minutes:
        return 0
    return round_money(Decimal(court_fee_amount) * ratio)


@dataclass
class Quote:
    court_fee: int
    service_fee: int
    subtotal: int
    discount_percent: float
    discount_amount: int
    total: int

    def to_dict(self) -> dict:
        return {
            "court_fee": self.court_fee,
            "service_fee": self.service_fee,
            "subtotal": self.subtotal,
            "discount_percent": self.discount_percent,
            "discount_amount": self.discount_amount,
            "total": self.total,
        }


def quote(court_fee_amount: int, lines: Iterable[ServiceLine], discount_percent=0) -> Quote:
    services = service_fee(lines)
    subtotal = court_fee_amount + services
    cut = discount(subtotal, discount_percent or 0)
    return Quote(
        court_fee=court_fee_amount,
        service_fee=services,
        subtotal=subtotal,
        discount_percent=float(discount_percent or 0),
        discount_amount=cut,
        total=subtotal - cut,
    )


def balance_due(total: int, already_paid: int) -> int:
    """Positive: customer owes more after an edit; negative: overpaid."""
    return total - already_paid
