from datetime import date, datetime, time

import pytest

from services.codes import booking_code, invoice_code, parse_booking_code, parse_invoice_code
from services.errors import ValidationError
from services.timeutil import overlaps, parse_clock, parse_date, parse_datetime


def test_parse_datetime_normalizes_offsets_to_naive_utc():
    assert parse_datetime("2030-01-20T18:00:00Z") == datetime(2030, 1, 20, 18, 0)
    assert parse_datetime("2030-01-20T20:00:00+02:00") == datetime(2030, 1, 20, 18, 0)
    assert parse_datetime("2030-01-20T18:00:00") == datetime(2030, 1, 20, 18, 0)


def test_parse_datetime_rejects_garbage():
    for bad in ("", "tomorrow", None, 42):
        with pytest.raises(ValidationError):
            parse_datetime(bad, "start_time")


def test_parse_date():
    assert parse_date("2030-01-20") == date(2030, 1, 20)
    assert parse_date(datetime(2030, 1, 20, 23, 0)) == date(2030, 1, 20)
    with pytest.raises(ValidationError):
        parse_date("20/01/2030")


def test_parse_clock_shapes():
    assert parse_clock("06:00") == time(6, 0)
    assert parse_clock("21:30:00") == time(21, 30)
    assert parse_clock("1970-01-01T07:15:00") == time(7, 15)
    assert parse_clock(time(8, 5, 30)) == time(8, 5)


def test_parse_clock_falls_back_on_malformed_input():
    fallback = time(6, 0)
    for bad in (None, "", "noon", "25:00", "6"):
        assert parse_clock(bad, default=fallback) == fallback


def test_half_open_overlap():
    a = datetime(2030, 1, 20, 18, 0)
    b = datetime(2030, 1, 20, 19, 0)
    c = datetime(2030, 1, 20, 20, 0)
    assert not overlaps(a, b, b, c)
    assert overlaps(a, c, b, c)


def test_booking_codes():
    code = booking_code("VS", 3, datetime(2030, 1, 20, 8, 0))
    parsed = parse_booking_code(code)
    assert code.startswith("VS-3-20300120-")
    assert parsed["court_id"] == 3
    assert parsed["date"] == date(2030, 1, 20)
    assert parse_booking_code("nonsense") is None


def test_invoice_codes():
    assert invoice_code(12, datetime(2030, 1, 20)) == "IN-12-20300120"
    assert parse_invoice_code("in-12-20300120") == 12
    assert parse_invoice_code("IN-x") is None
