"""Tests for shared utilities (shop_recon.utils)."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from shop_recon.utils import (
    format_duration,
    gid_tail,
    iter_dates,
    local_day_bounds,
    normalize_shop_domain,
    parse_date,
    parse_timestamp,
    round_money,
    to_decimal,
    to_local_date,
    within_tolerance,
)


def test_parse_date() -> None:
    assert parse_date("2024-03-10") == date(2024, 3, 10)
    with pytest.raises(ValueError):
        parse_date("10/03/2024")


def test_parse_timestamp() -> None:
    utc = datetime(2024, 3, 10, 10, 0, tzinfo=timezone.utc)

    assert parse_timestamp("2024-03-10T10:00:00Z") == utc
    assert parse_timestamp("2024-03-10T11:00:00+01:00") == utc
    assert parse_timestamp("2024-03-10T10:00:00") == utc
    with pytest.raises(ValueError):
        parse_timestamp("yesterday")


def test_to_local_date_across_dst() -> None:
    # Stockholm moves to UTC+2 on 2024-03-31
    assert to_local_date(parse_timestamp("2024-03-30T23:30:00Z"), "Europe/Stockholm") == date(2024, 3, 31)
    assert to_local_date(parse_timestamp("2024-03-31T22:30:00Z"), "Europe/Stockholm") == date(2024, 4, 1)
    assert to_local_date(parse_timestamp("2024-03-31T21:30:00Z"), "Europe/Stockholm") == date(2024, 3, 31)


def test_local_day_bounds() -> None:
    start, end = local_day_bounds(date(2024, 3, 10), "Europe/Stockholm")

    assert start == datetime(2024, 3, 9, 23, 0, tzinfo=timezone.utc)
    assert end.date() == date(2024, 3, 10)
    assert (end.hour, end.minute) == (22, 59)


def test_unknown_timezone() -> None:
    with pytest.raises(ValueError, match="Unknown timezone"):
        to_local_date(parse_timestamp("2024-03-10T10:00:00Z"), "Mars/Olympus")


def test_iter_dates() -> None:
    assert list(iter_dates(date(2024, 2, 28), date(2024, 3, 1))) == [
        date(2024, 2, 28),
        date(2024, 2, 29),
        date(2024, 3, 1),
    ]
    assert list(iter_dates(date(2024, 3, 2), date(2024, 3, 1))) == []


def test_to_decimal() -> None:
    assert to_decimal("19.99") == Decimal("19.99")
    assert to_decimal(5) == Decimal("5")
    assert to_decimal(" 0.10 ") == Decimal("0.10")
    for bad in (None, "abc", True, "NaN", "Infinity"):
        with pytest.raises(ValueError):
            to_decimal(bad)


def test_round_money_half_up() -> None:
    assert round_money(Decimal("10.005")) == Decimal("10.01")
    assert round_money(Decimal("10.004")) == Decimal("10.00")
    assert round_money(Decimal("-10.005")) == Decimal("-10.01")
    assert str(round_money(Decimal("7"))) == "7.00"


def test_within_tolerance() -> None:
    assert within_tolerance(Decimal("10.00"), Decimal("10.01"))
    assert not within_tolerance(Decimal("10.00"), Decimal("10.02"))


def test_gid_tail() -> None:
    assert gid_tail("gid://shopify/Order/5512") == "5512"
    assert gid_tail("gid://shopify/LineItem/77?x=1") == "77"
    assert gid_tail(5512) == "5512"
    assert gid_tail(None) is None
    assert gid_tail("") is None


def test_normalize_shop_domain() -> None:
    assert normalize_shop_domain("https://www.My-Shop.myshopify.com/admin") == "my-shop.myshopify.com"
    assert normalize_shop_domain("my-shop") == "my-shop.myshopify.com"
    assert normalize_shop_domain("shop.example.com") == "shop.example.com"


def test_format_duration() -> None:
    assert format_duration(90.5) == "1m 30.5s"
    assert format_duration(45.2) == "45.2s"
