import pytest

from models.enums import ServiceUnit
from services import pricing
from services.errors import ValidationError
from tests.helpers import rng


def test_court_fee_counts_booked_hours():
    assert pricing.court_fee(50000, [rng(18), rng(19)]) == 100000


def test_court_fee_rounds_half_up_on_partial_hours():
    # 45 minutes at 10,001/h = 7500.75
    assert pricing.court_fee(10001, [rng(18, minutes=45)]) == 7501
    assert pricing.court_fee(50000, []) == 0


def test_court_fee_with_fixed_slot_length():
    assert pricing.court_fee(60000, [rng(18), rng(19)], slot_duration_minutes=90) == 180000


def test_service_fee_per_unit_kind():
    lines = [
        pricing.ServiceLine(unit=ServiceUnit.USE, unit_price=20000, quantity=2),
        pricing.ServiceLine(unit=ServiceUnit.HOUR, unit_price=60000, quantity=1, duration_minutes=90),
        pricing.ServiceLine(unit=ServiceUnit.FREE, unit_price=99999, quantity=3),
    ]
    assert [line.amount for line in lines] == [40000, 90000, 0]
    assert pricing.service_fee(lines) == 130000


def test_hourly_service_needs_duration():
    with pytest.raises(ValidationError):
        pricing.service_fee([pricing.ServiceLine(unit=ServiceUnit.HOUR, unit_price=60000)])


def test_discount_bounds():
    assert pricing.discount(140000, 10) == 14000
    assert pricing.discount(140000, 0) == 0
    assert pricing.discount(140000, 100) == 140000
    for bad in (-1, 100.5, "lots"):
        with pytest.raises(ValidationError):
            pricing.discount(140000, bad)


def test_quote_scenario():
    lines = [pricing.ServiceLine(unit=ServiceUnit.USE, unit_price=20000, quantity=2)]
    q = pricing.quote(100000, lines, discount_percent=10)

    assert q.subtotal == 140000
    assert q.discount_amount == 14000
    assert q.total == 126000
    assert q.to_dict()["total"] == 126000


def test_discount_tiers():
    assert pricing.discount_percent_for("student") == 10
    assert pricing.discount_percent_for("Platinum") == 20
    assert pricing.discount_percent_for(None) == 0
    with pytest.raises(ValidationError):
        pricing.discount_percent_for("gold")


def test_deposit_outside_cancel_window():
    assert pricing.deposit(100000, 0.5, "counter", minutes_until_start=45, cancel_window_minutes=30) == 50000


def test_no_deposit_inside_cancel_window_or_other_methods():
    assert pricing.deposit(100000, 0.5, "counter", minutes_until_start=20, cancel_window_minutes=30) == 0
    assert pricing.deposit(100000, 0.5, "counter", minutes_until_start=30, cancel_window_minutes=30) == 0
    assert pricing.deposit(100000, 0.5, "bank_transfer", minutes_until_start=600, cancel_window_minutes=30) == 0


def test_deposit_never_decreases_as_start_moves_away():
    amounts = [
        pricing.deposit(100000, 0.5, "counter", minutes_until_start=m, cancel_window_minutes=30)
        for m in range(0, 120, 5)
    ]
    assert amounts == sorted(amounts)


def test_balance_due():
    assert pricing.balance_due(126000, 100000) == 26000
    assert pricing.balance_due(100000, 126000) == -26000
