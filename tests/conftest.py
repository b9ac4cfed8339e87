"""Shared fixtures: raw order builders in the GraphQL and REST shapes."""

from __future__ import annotations

from typing import Any

import pytest


def _money(amount: str | None) -> dict[str, Any] | None:
    if amount is None:
        return None
    return {"shopMoney": {"amount": amount, "currencyCode": "SEK"}}


def build_graphql_order(
    order_id: int,
    created_at: str = "2024-03-10T10:00:00Z",
    lines: list[tuple[str, int]] | None = None,
    discount: str | None = "0.00",
    line_discounts: list[str] | None = None,
    line_taxes: list[str] | None = None,
    customer_orders: int | None | str = "guest",
    paid_at: str | None = "same",
    refunds: list[dict[str, Any]] | None = None,
    cancelled_at: str | None = None,
    currency: str = "SEK",
    test: bool = False,
    extra_transactions: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Build a GraphQL-shaped order node.

    ``lines`` holds (unit price, quantity). ``customer_orders`` is "guest"
    for no customer, None for a customer without a count, or the count.
    ``paid_at`` is "same" for a sale at creation time, None for unpaid.
    """
    lines = lines or [("100.00", 1)]
    line_nodes = []
    for i, (price, qty) in enumerate(lines):
        node: dict[str, Any] = {
            "id": f"gid://shopify/LineItem/{order_id}{i}",
            "quantity": qty,
            "originalUnitPriceSet": _money(price),
            "discountAllocations": [],
            "taxLines": [],
            "variant": {"id": f"gid://shopify/ProductVariant/{900 + i}"},
            "product": {"id": f"gid://shopify/Product/{800 + i}"},
        }
        if line_discounts:
            node["discountAllocations"] = [{"allocatedAmountSet": _money(line_discounts[i])}]
        if line_taxes:
            node["taxLines"] = [{"priceSet": _money(line_taxes[i])}]
        line_nodes.append({"node": node})

    transactions = []
    if paid_at is not None:
        transactions.append(
            {
                "id": f"gid://shopify/OrderTransaction/{order_id}1",
                "kind": "SALE",
                "status": "SUCCESS",
                "processedAt": created_at if paid_at == "same" else paid_at,
                "amountSet": _money("0.00"),
            }
        )
    transactions.extend(extra_transactions or [])

    if customer_orders == "guest":
        customer = None
    else:
        customer = {
            "id": f"gid://shopify/Customer/{order_id}",
            "numberOfOrders": None if customer_orders is None else str(customer_orders),
        }

    return {
        "id": f"gid://shopify/Order/{order_id}",
        "legacyResourceId": str(order_id),
        "name": f"#{order_id}",
        "createdAt": created_at,
        "processedAt": created_at,
        "updatedAt": created_at,
        "cancelledAt": cancelled_at,
        "test": test,
        "currencyCode": currency,
        "totalDiscountsSet": _money(discount),
        "customer": customer,
        "lineItems": {"edges": line_nodes},
        "refunds": refunds or [],
        "transactions": transactions,
    }


def build_graphql_refund(
    refund_id: int,
    created_at: str,
    total: str | None,
    processed_at: str | None = None,
    lines: list[dict[str, Any]] | None = None,
    adjustments: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Build a GraphQL-shaped refund; ``processed_at`` adds a successful refund transaction."""
    tx_edges = []
    if processed_at is not None:
        tx_edges.append(
            {
                "node": {
                    "id": f"gid://shopify/OrderTransaction/{refund_id}9",
                    "kind": "REFUND",
                    "status": "SUCCESS",
                    "processedAt": processed_at,
                    "amountSet": _money(total),
                }
            }
        )
    return {
        "id": f"gid://shopify/Refund/{refund_id}",
        "legacyResourceId": str(refund_id),
        "createdAt": created_at,
        "totalRefundedSet": _money(total),
        "refundLineItems": {"edges": [{"node": li} for li in lines or []]},
        "orderAdjustments": {"edges": [{"node": a} for a in adjustments or []]},
        "transactions": {"edges": tx_edges},
    }


def build_rest_order(order_id: int = 4501, **overrides: Any) -> dict[str, Any]:
    """Build a REST/webhook-shaped order."""
    order = {
        "id": order_id,
        "name": f"#{order_id}",
        "created_at": "2024-03-10T12:00:00+01:00",
        "processed_at": "2024-03-10T12:00:05+01:00",
        "cancelled_at": None,
        "currency": "EUR",
        "test": False,
        "financial_status": "paid",
        "total_discounts": "5.00",
        "line_items": [
            {
                "id": 11,
                "variant_id": 21,
                "product_id": 31,
                "price": "20.00",
                "quantity": 2,
                "discount_allocations": [{"amount": "5.00"}],
                "tax_lines": [{"price": "7.00"}],
            }
        ],
        "refunds": [],
        "customer": {"id": 77, "orders_count": 1},
    }
    order.update(overrides)
    return order


@pytest.fixture
def graphql_order():
    return build_graphql_order


@pytest.fixture
def graphql_refund():
    return build_graphql_refund


@pytest.fixture
def rest_order():
    return build_rest_order
