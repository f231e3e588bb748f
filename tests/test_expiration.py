from datetime import date, datetime, timedelta, timezone

from prepper.expiration import (
    days_until, expiration_status, window_end,
    SAFE, WARNING, DANGER, EXPIRED,
)

NOW = datetime(2025, 3, 10, 12, 0, 0)


def test_missing_date_is_safe():
    assert days_until(None, NOW) is None
    assert expiration_status(None, NOW) == SAFE


def test_classifier_boundaries():
    today = NOW.date()
    assert expiration_status(today + timedelta(days=8), NOW) == SAFE
    assert expiration_status(today + timedelta(days=30), NOW) == SAFE
    assert expiration_status(today + timedelta(days=7), NOW) == WARNING
    assert expiration_status(today + timedelta(days=4), NOW) == WARNING
    assert expiration_status(today + timedelta(days=3), NOW) == DANGER
    assert expiration_status(today + timedelta(days=1), NOW) == DANGER


def test_today_is_danger_and_yesterday_expired():
    today = NOW.date()
    assert days_until(today, NOW) == 0
    assert expiration_status(today, NOW) == DANGER
    assert days_until(today - timedelta(days=1), NOW) == -1
    assert expiration_status(today - timedelta(days=1), NOW) == EXPIRED
    assert expiration_status(today - timedelta(days=400), NOW) == EXPIRED


def test_days_round_up():
    # Midnight of the next day is half a day away at noon
    assert days_until(date(2025, 3, 11), NOW) == 1
    assert days_until(date(2025, 3, 11), datetime(2025, 3, 10, 0, 0, 0)) == 1
    assert days_until(date(2025, 3, 17), NOW) == 7


def test_aware_datetimes_are_compared_in_utc():
    aware_now = datetime(2025, 3, 10, 14, 0, 0, tzinfo=timezone(timedelta(hours=2)))
    assert days_until(date(2025, 3, 13), aware_now) == 3


def test_window_end_covers_seven_days():
    assert window_end(NOW) == date(2025, 3, 17)
    assert window_end(NOW, days=3) == date(2025, 3, 13)
