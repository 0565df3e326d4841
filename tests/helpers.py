"""Shared constants and request helpers for tests."""
from datetime import datetime, timedelta

PASSWORD = "court-pass-123"

# service-level tests run against this clock
NOW = datetime(2030, 1, 20, 8, 0)
DAY = NOW.date()


def rng(hour, minutes=60, day=DAY, minute=0):
    start = datetime(day.year, day.month, day.day, hour, minute)
    return start, start + timedelta(minutes=minutes)


def slot(hour, minutes=60, day=DAY):
    start, end = rng(hour, minutes, day)
    return {"start_time": start.isoformat(), "end_time": end.isoformat()}


def login(client, email, password=PASSWORD):
    resp = client.post("/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.get_json()
    return {"X-CSRF-Token": client.get_cookie("csrf_token").value}
