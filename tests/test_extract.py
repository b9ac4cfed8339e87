"""Tests for the source fetcher (shop_recon.orders.extract).

No network: a scripted session plays back responses in call order.
"""

from __future__ import annotations

import threading
from datetime import date, datetime, timezone
from typing import Any

import pytest
import requests

from shop_recon.config import ReconConfig
from shop_recon.credentials import ShopConnection
from shop_recon.exceptions import (
    AuthError,
    ExtractionError,
    RunCancelledError,
    TransientFetchError,
)
from shop_recon.orders.extract import ShopifyOrdersFetcher, make_session, money_moved_between

DAY = date(2024, 3, 10)


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, headers: dict[str, str] | None = None) -> None:
        self.status_code = status_code
        self._body = body
        self.headers = headers or {}
        self.text = "" if body is None else str(body)

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("No JSON body")
        return self._body


class FakeSession:
    """Plays back queued responses; an Exception in the queue is raised."""

    def __init__(self, responses: list[Any]) -> None:
        self.responses = list(responses)
        self.payloads: list[dict[str, Any]] = []
        self.urls: list[str] = []

    def post(self, url: str, json: dict[str, Any]) -> FakeResponse:
        self.urls.append(url)
        self.payloads.append(json)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def page(nodes: list[dict[str, Any]], cursor: str | None = None, available: int | None = None) -> FakeResponse:
    body: dict[str, Any] = {
        "data": {
            "orders": {
                "edges": [{"node": n} for n in nodes],
                "pageInfo": {"hasNextPage": cursor is not None, "endCursor": cursor},
            }
        }
    }
    if available is not None:
        body["extensions"] = {
            "cost": {
                "throttleStatus": {
                    "currentlyAvailable": available,
                    "maximumAvailable": 1000,
                    "restoreRate": 50,
                }
            }
        }
    return FakeResponse(200, body)


def node(order_id: int, created_at: str = "2024-03-10T10:00:00Z", **extra: Any) -> dict[str, Any]:
    n = {
        "id": f"gid://shopify/Order/{order_id}",
        "legacyResourceId": str(order_id),
        "createdAt": created_at,
        "test": False,
        "refunds": [],
        "transactions": [],
    }
    n.update(extra)
    return n


def make_fetcher(responses: list[Any], **config: Any) -> tuple[ShopifyOrdersFetcher, FakeSession, list[float]]:
    session = FakeSession(responses)
    sleeps: list[float] = []
    settings = {"max_retries": 2, "backoff_factor": 1.0, "max_backoff": 30.0}
    settings.update(config)
    fetcher = ShopifyOrdersFetcher(
        ShopConnection(tenant_id="acme", shop="acme.myshopify.com", access_token="shpat_test"),
        config=ReconConfig(**settings),
        session=session,
        sleep=sleeps.append,
    )
    return fetcher, session, sleeps


def fetch(fetcher: ShopifyOrdersFetcher, **kwargs: Any):
    return fetcher.fetch_orders(DAY, DAY, timezone_name="UTC", **kwargs)


class TestFetchOrders:
    def test_paginates_both_passes(self) -> None:
        fetcher, session, _ = make_fetcher(
            [
                page([node(1), node(2)], cursor="c1"),
                page([node(3)]),
                page([]),
            ]
        )

        result = fetch(fetcher)

        assert [o["legacyResourceId"] for o in result.orders] == ["1", "2", "3"]
        assert result.pages == 3
        assert result.duplicates == 0
        assert session.urls[0] == "https://acme.myshopify.com/admin/api/2023-10/graphql.json"

        first, second, third = (p["variables"] for p in session.payloads)
        assert first["after"] is None
        assert second["after"] == "c1"
        assert first["query"] == "created_at:>='2024-03-09T00:00:00Z' AND created_at:<='2024-03-11T23:59:59Z'"
        assert third["query"] == "updated_at:>='2024-03-10T00:00:00Z'"
        assert first["first"] == 100

    def test_second_pass_keeps_orders_with_money_in_window(self) -> None:
        refunded = node(
            9,
            created_at="2024-02-01T10:00:00Z",
            refunds=[{"createdAt": "2024-03-10T12:00:00Z", "transactions": {"edges": []}}],
        )
        paid_later = node(
            10,
            created_at="2024-02-02T10:00:00Z",
            transactions=[{"kind": "CAPTURE", "status": "SUCCESS", "processedAt": "2024-03-10T08:00:00Z"}],
        )
        merely_edited = node(
            8,
            created_at="2024-02-01T10:00:00Z",
            refunds=[{"createdAt": "2024-02-05T12:00:00Z", "transactions": {"edges": []}}],
        )
        fetcher, _, _ = make_fetcher([page([node(1)]), page([refunded, merely_edited, paid_later])])

        result = fetch(fetcher)

        assert [o["legacyResourceId"] for o in result.orders] == ["1", "9", "10"]

    def test_orders_in_both_passes_are_kept_once(self) -> None:
        both = node(2, refunds=[{"createdAt": "2024-03-10T12:00:00Z"}])
        fetcher, _, _ = make_fetcher([page([node(1), both]), page([both])])

        result = fetch(fetcher)

        assert len(result.orders) == 2
        assert result.duplicates == 1

    def test_test_orders_dropped_by_default(self) -> None:
        fetcher, _, _ = make_fetcher([page([node(1), node(2, test=True)]), page([])])

        assert [o["legacyResourceId"] for o in fetch(fetcher).orders] == ["1"]

    def test_test_orders_kept_on_request(self) -> None:
        fetcher, _, _ = make_fetcher([page([node(1), node(2, test=True)]), page([])])

        result = fetch(fetcher, exclude_test_orders=False)

        assert len(result.orders) == 2

    def test_low_query_budget_waits(self) -> None:
        fetcher, _, sleeps = make_fetcher([page([node(1)], cursor="c1", available=50), page([]), page([])])

        fetch(fetcher)

        # (1000 - 50) / 50 per second
        assert sleeps == [19]

    def test_cancel_before_first_page(self) -> None:
        cancel = threading.Event()
        cancel.set()
        fetcher, session, _ = make_fetcher([page([node(1)])])

        with pytest.raises(RunCancelledError):
            fetch(fetcher, cancel_event=cancel)
        assert session.payloads == []

    def test_since_after_until(self) -> None:
        fetcher, _, _ = make_fetcher([])

        with pytest.raises(ValueError):
            fetcher.fetch_orders(date(2024, 3, 11), DAY, timezone_name="UTC")

    def test_missing_orders_connection(self) -> None:
        fetcher, _, _ = make_fetcher([FakeResponse(200, {"data": {}})])

        with pytest.raises(ExtractionError, match="data.orders"):
            fetch(fetcher)


class TestRetries:
    def test_server_error_is_retried(self) -> None:
        fetcher, session, sleeps = make_fetcher([FakeResponse(503), page([node(1)]), page([])])

        result = fetch(fetcher)

        assert len(result.orders) == 1
        assert len(session.payloads) == 3
        assert sleeps == [1.0]

    def test_retry_budget_exhausted(self) -> None:
        fetcher, session, sleeps = make_fetcher([FakeResponse(503), FakeResponse(502), FakeResponse(500)])

        with pytest.raises(TransientFetchError) as excinfo:
            fetch(fetcher)

        assert excinfo.value.attempts == 3
        assert len(session.payloads) == 3
        assert sleeps == [1.0, 2.0]

    def test_backoff_is_capped(self) -> None:
        responses = [FakeResponse(429)] * 5 + [page([]), page([])]
        fetcher, _, sleeps = make_fetcher(responses, max_retries=5, max_backoff=5.0)

        fetch(fetcher)

        assert sleeps == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_retry_after_header_is_honoured(self) -> None:
        fetcher, _, sleeps = make_fetcher([FakeResponse(429, headers={"Retry-After": "7"}), page([]), page([])])

        fetch(fetcher)

        assert sleeps == [7.0]

    def test_network_errors_are_retried(self) -> None:
        fetcher, _, sleeps = make_fetcher(
            [requests.ConnectionError("reset"), requests.Timeout("slow"), page([]), page([])]
        )

        fetch(fetcher)

        assert sleeps == [1.0, 2.0]

    @pytest.mark.parametrize(
        "error",
        [
            requests.exceptions.ChunkedEncodingError("connection reset mid-body"),
            requests.exceptions.ContentDecodingError("bad gzip stream"),
        ],
    )
    def test_body_read_errors_are_retried(self, error: Exception) -> None:
        fetcher, _, sleeps = make_fetcher([error, page([node(1)]), page([])])

        assert len(fetch(fetcher).orders) == 1
        assert sleeps == [1.0]

    def test_body_read_errors_exhaust_into_transient_error(self) -> None:
        reset = requests.exceptions.ChunkedEncodingError("connection reset mid-body")
        fetcher, session, sleeps = make_fetcher([reset, reset, reset])

        with pytest.raises(TransientFetchError, match="ChunkedEncodingError") as excinfo:
            fetch(fetcher)

        assert excinfo.value.attempts == 3
        assert len(session.payloads) == 3
        assert sleeps == [1.0, 2.0]

    def test_graphql_throttle_is_retried(self) -> None:
        throttled = FakeResponse(200, {"errors": [{"message": "Throttled", "extensions": {"code": "THROTTLED"}}]})
        fetcher, _, sleeps = make_fetcher([throttled, page([node(1)]), page([])])

        assert len(fetch(fetcher).orders) == 1
        assert sleeps == [1.0]

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_failure_is_not_retried(self, status: int) -> None:
        fetcher, session, sleeps = make_fetcher([FakeResponse(status)])

        with pytest.raises(AuthError) as excinfo:
            fetch(fetcher)

        assert excinfo.value.tenant_id == "acme"
        assert len(session.payloads) == 1
        assert sleeps == []

    def test_graphql_error_is_not_retried(self) -> None:
        bad = FakeResponse(200, {"errors": [{"message": "Field 'foo' doesn't exist"}]})
        fetcher, session, _ = make_fetcher([bad])

        with pytest.raises(ExtractionError, match="Field 'foo'") as excinfo:
            fetch(fetcher)

        assert not isinstance(excinfo.value, TransientFetchError)
        assert len(session.payloads) == 1

    def test_client_error_is_not_retried(self) -> None:
        fetcher, session, _ = make_fetcher([FakeResponse(400, {"errors": "bad query"})])

        with pytest.raises(ExtractionError, match="HTTP 400"):
            fetch(fetcher)
        assert len(session.payloads) == 1


def test_money_moved_between() -> None:
    start = datetime(2024, 3, 10, tzinfo=timezone.utc)
    end = datetime(2024, 3, 10, 23, 59, 59, tzinfo=timezone.utc)

    refunded_tx = node(
        1,
        refunds=[
            {
                "createdAt": "2024-03-09T23:00:00Z",
                "transactions": {
                    "edges": [{"node": {"kind": "REFUND", "status": "SUCCESS", "processedAt": "2024-03-10T01:00:00Z"}}]
                },
            }
        ],
    )
    failed_sale = node(
        2,
        transactions=[{"kind": "SALE", "status": "FAILURE", "processedAt": "2024-03-10T01:00:00Z"}],
    )

    assert money_moved_between(refunded_tx, start, end)
    assert not money_moved_between(failed_sale, start, end)
    assert money_moved_between(node(3, refunds=[{"createdAt": "garbage"}]), start, end)


def test_make_session_headers() -> None:
    s = make_session("shpat_secret", timeout=5)

    assert s.headers["X-Shopify-Access-Token"] == "shpat_secret"
    assert s.headers["Content-Type"] == "application/json"
    assert "https://" in s.adapters


def test_fetcher_session_leaves_retries_to_the_fetcher() -> None:
    fetcher = ShopifyOrdersFetcher(
        ShopConnection(tenant_id="acme", shop="acme.myshopify.com", access_token="shpat_test"),
        config=ReconConfig(max_retries=4),
    )

    retry = fetcher.session.get_adapter("https://acme.myshopify.com").max_retries

    assert retry.total == 0
    assert retry.connect == 0
