"""Tests for webhook verification and replay windows."""

import base64
import hashlib
import hmac
from datetime import date

import pytest

from shop_recon.exceptions import MalformedSourceRecordError
from shop_recon.webhooks import affected_window, verify_webhook

SECRET = "hush"


def _sign(body: bytes, secret: str = SECRET) -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()


class TestVerifyWebhook:
    def test_valid_signature(self) -> None:
        body = b'{"id": 4501}'

        assert verify_webhook(body, _sign(body), SECRET)

    def test_tampered_body(self) -> None:
        assert not verify_webhook(b'{"id": 4502}', _sign(b'{"id": 4501}'), SECRET)

    def test_wrong_secret(self) -> None:
        body = b'{"id": 4501}'

        assert not verify_webhook(body, _sign(body, "other"), SECRET)

    def test_missing_header(self) -> None:
        assert not verify_webhook(b"{}", None, SECRET)
        assert not verify_webhook(b"{}", "", SECRET)


class TestAffectedWindow:
    def test_new_order(self, rest_order) -> None:
        assert affected_window(rest_order(), "UTC") == (date(2024, 3, 10), date(2024, 3, 10))

    def test_refund_dates_under_both_modes(self, rest_order) -> None:
        raw = rest_order(
            refunds=[
                {
                    "id": 3,
                    "created_at": "2024-03-12T22:00:00Z",
                    "refund_line_items": [],
                    "transactions": [
                        {
                            "id": 8,
                            "kind": "refund",
                            "status": "success",
                            "processed_at": "2024-03-13T09:00:00Z",
                            "amount": "10.00",
                        }
                    ],
                }
            ]
        )

        assert affected_window(raw, "UTC") == (date(2024, 3, 10), date(2024, 3, 13))

    def test_late_payment(self, graphql_order) -> None:
        raw = graphql_order(5, "2024-03-10T10:00:00Z", paid_at="2024-03-15T10:00:00Z")

        assert affected_window(raw, "UTC") == (date(2024, 3, 10), date(2024, 3, 15))

    def test_timezone_shifts_days(self, graphql_order) -> None:
        raw = graphql_order(6, "2024-03-09T23:30:00Z")

        assert affected_window(raw, "Europe/Stockholm") == (date(2024, 3, 10), date(2024, 3, 10))

    def test_malformed_payload(self, rest_order) -> None:
        with pytest.raises(MalformedSourceRecordError):
            affected_window(rest_order(currency=None), "UTC")
