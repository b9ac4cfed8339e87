"""Order normalizer: raw platform records to canonical orders.

This module converts one raw order record into a ``CanonicalOrder`` with
uniform ``Decimal`` money fields. It understands both shapes the platform
produces:

- the GraphQL Admin API shape (``legacyResourceId``, ``*Set.shopMoney.amount``,
  upper-case enums, connections with ``edges``/``nodes``, customer
  ``numberOfOrders`` as a string);
- the REST/webhook shape (``id``, plain string amounts, lower-case enums,
  customer ``orders_count``).

``normalize_order`` is pure: no I/O and no logging. ``normalize_orders``
applies it to a whole window and skips (and logs) malformed records.

Conventions:
    - Refund adjustment amounts are stored as money added to the refund.
      The REST shape reports them as order balance deltas (negative for a
      shipping refund), so they are negated.
    - A REST record without a ``transactions`` list but with a settled
      ``financial_status`` gets one synthetic successful sale at its
      ``processed_at`` so that financial-mode bucketing still works.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from shop_recon.exceptions import MalformedSourceRecordError
from shop_recon.types import (
    REFUND_KIND,
    CanonicalOrder,
    Customer,
    FinancialStatus,
    LineItem,
    OrderAdjustment,
    Refund,
    RefundLineItem,
    Transaction,
)
from shop_recon.utils import gid_tail, parse_timestamp, to_decimal

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# REST financial_status values meaning money was collected
SETTLED_STATUSES = frozenset({"paid", "partially_paid", "partially_refunded", "refunded"})


@dataclass
class NormalizationResult:
    """Outcome of normalizing a window of raw orders.

    Attributes:
        orders: Canonical orders, in input order.
        skipped: (order id or "<unknown>", reason) for each malformed record.
    """

    orders: list[CanonicalOrder] = field(default_factory=list)
    skipped: list[tuple[str, str]] = field(default_factory=list)

    @property
    def skipped_ids(self) -> list[str]:
        return [order_id for order_id, _ in self.skipped]


# ------------------------- Field helpers -------------------------


def _first(record: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


def _nodes(value: Any) -> list[dict[str, Any]]:
    """Flatten a GraphQL connection or a plain list into a list of dicts."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, Mapping):
        if "nodes" in value:
            return list(value["nodes"] or [])
        if "edges" in value:
            return [edge["node"] for edge in value["edges"] or [] if edge.get("node") is not None]
    raise ValueError(f"Expected a list or connection, got {type(value).__name__}")


def _money(value: Any) -> Decimal:
    """Read an amount from a MoneyBag, a MoneyV2 or a plain scalar."""
    if isinstance(value, Mapping):
        if "shopMoney" in value:
            value = value["shopMoney"]
        value = value.get("amount")
    return to_decimal(value)


def _optional_money(value: Any) -> Decimal | None:
    if value is None:
        return None
    return _money(value)


def _sum_money(items: Iterable[Mapping[str, Any]], *keys: str) -> Decimal:
    total = ZERO
    for item in items:
        value = _first(item, *keys)
        if value is not None:
            total += _money(value)
    return total


def _timestamp(record: Mapping[str, Any], *keys: str, required: bool = False):
    value = _first(record, *keys)
    if value is None:
        if required:
            raise ValueError(f"missing {keys[0]}")
        return None
    return parse_timestamp(value)


def _quantity(value: Any) -> int:
    if value is None or isinstance(value, bool):
        raise ValueError("missing quantity")
    qty = int(value)
    if qty < 0:
        raise ValueError(f"negative quantity {qty}")
    return qty


def _enum(value: Any) -> str:
    return str(value or "").strip().lower()


def _order_id(raw: Mapping[str, Any]) -> str | None:
    return gid_tail(_first(raw, "legacyResourceId", "id"))


# ------------------------- Sub-records -------------------------


def _transaction(raw: Mapping[str, Any]) -> Transaction:
    amount = _first(raw, "amountSet", "amount")
    return Transaction(
        id=gid_tail(raw.get("id")),
        kind=_enum(raw.get("kind")),
        status=_enum(raw.get("status")),
        processed_at=_timestamp(raw, "processedAt", "processed_at", "createdAt", "created_at"),
        amount=_optional_money(amount),
    )


def _line_item(raw: Mapping[str, Any]) -> LineItem:
    price = _first(raw, "originalUnitPriceSet", "price")
    if price is None:
        raise ValueError("line item without price")

    allocations = _nodes(_first(raw, "discountAllocations", "discount_allocations"))
    if allocations:
        discount = _sum_money(allocations, "allocatedAmountSet", "amount")
    else:
        discount = _money(raw.get("total_discount") or "0")

    variant = raw.get("variant") or {}
    product = raw.get("product") or {}
    product_id = gid_tail(
        _first(variant, "id") or raw.get("variant_id") or _first(product, "id") or raw.get("product_id")
    )

    return LineItem(
        id=gid_tail(raw.get("id")),
        product_id=product_id,
        quantity=_quantity(raw.get("quantity")),
        price=_money(price),
        total_discount=discount,
        tax=_sum_money(_nodes(_first(raw, "taxLines", "tax_lines")), "priceSet", "price"),
    )


def _refund_line_item(raw: Mapping[str, Any]) -> RefundLineItem:
    line_item = raw.get("lineItem") or raw.get("line_item") or {}
    subtotal = _first(raw, "subtotalSet", "subtotal")
    tax = _first(raw, "totalTaxSet", "total_tax")
    price = _first(line_item, "originalUnitPriceSet", "price")
    return RefundLineItem(
        line_item_id=gid_tail(_first(line_item, "id") or raw.get("line_item_id")),
        quantity=_quantity(raw.get("quantity")),
        subtotal=_optional_money(subtotal),
        tax=_money(tax) if tax is not None else ZERO,
        price=_optional_money(price),
    )


def _adjustment(raw: Mapping[str, Any], rest_shape: bool) -> OrderAdjustment:
    amount = _money(_first(raw, "amountSet", "amount") or "0")
    tax = _money(_first(raw, "taxAmountSet", "tax_amount") or "0")
    if rest_shape:
        amount, tax = -amount, -tax
    return OrderAdjustment(reason=_first(raw, "reason", "kind"), amount=amount, tax_amount=tax)


def _refund(raw: Mapping[str, Any]) -> Refund:
    rest_shape = "created_at" in raw or "order_adjustments" in raw
    transactions = tuple(_transaction(t) for t in _nodes(raw.get("transactions")))

    total = _first(raw, "totalRefundedSet", "totalRefunded")
    if total is not None:
        total_refunded = _money(total)
    elif transactions:
        # REST refunds carry the money moved only on their transactions
        total_refunded = sum(
            (t.amount for t in transactions if t.kind == REFUND_KIND and t.succeeded and t.amount is not None),
            ZERO,
        )
    else:
        total_refunded = None

    return Refund(
        id=gid_tail(_first(raw, "legacyResourceId", "id")),
        created_at=_timestamp(raw, "createdAt", "created_at", required=True),
        total_refunded=total_refunded,
        refund_line_items=tuple(
            _refund_line_item(r) for r in _nodes(_first(raw, "refundLineItems", "refund_line_items"))
        ),
        adjustments=tuple(
            _adjustment(a, rest_shape)
            for a in _nodes(_first(raw, "orderAdjustments", "order_adjustments"))
        ),
        transactions=transactions,
    )


def _customer(raw: Mapping[str, Any] | None) -> Customer | None:
    if not raw:
        return None
    count = _first(raw, "numberOfOrders", "orders_count")
    try:
        lifetime = int(count) if count is not None else None
    except (TypeError, ValueError):
        lifetime = None
    return Customer(id=gid_tail(raw.get("id")), lifetime_orders=lifetime)


def infer_financial_status(
    cancelled: bool,
    transactions: Iterable[Transaction],
    refunds: Iterable[Refund] = (),
) -> FinancialStatus:
    """Infer an order's financial status from its transactions.

    Cancelled orders are always ``voided``. A successful sale/capture
    together with a successful refund is ``partially_refunded``; a
    successful sale alone is ``paid``; anything else is ``pending``.

    Examples:
        >>> infer_financial_status(False, [])
        <FinancialStatus.PENDING: 'pending'>
    """
    if cancelled:
        return FinancialStatus.VOIDED

    all_tx = list(transactions)
    for refund in refunds:
        all_tx.extend(refund.transactions)

    has_sale = any(t.is_sale and t.succeeded for t in all_tx)
    has_refund = any(t.kind == REFUND_KIND and t.succeeded for t in all_tx)

    if has_sale and has_refund:
        return FinancialStatus.PARTIALLY_REFUNDED
    if has_sale:
        return FinancialStatus.PAID
    return FinancialStatus.PENDING


# ------------------------- Public API -------------------------


def normalize_order(raw: Mapping[str, Any]) -> CanonicalOrder:
    """Convert one raw order record into a canonical order.

    Order-level discount totals are preferred over the line-item sum when
    present, since they also capture discounts outside any line item (for
    example shipping discounts). Order tax is always summed from line-item
    tax lines.

    Args:
        raw: Order record in either the GraphQL or the REST shape.

    Returns:
        The canonical order.

    Raises:
        MalformedSourceRecordError: If the order id, creation time or
            currency is missing, or any amount, quantity or timestamp
            cannot be parsed.
    """
    if not isinstance(raw, Mapping):
        raise MalformedSourceRecordError(f"order record is a {type(raw).__name__}, not an object")
    order_id = _order_id(raw)
    if not order_id:
        raise MalformedSourceRecordError("order without id")

    try:
        created_at = _timestamp(raw, "createdAt", "created_at", required=True)
        currency = _first(raw, "currencyCode", "currency")
        if not currency:
            raise ValueError("missing currency")

        line_items = tuple(_line_item(li) for li in _nodes(_first(raw, "lineItems", "line_items")))
        refunds = tuple(_refund(r) for r in _nodes(raw.get("refunds")))
        processed_at = _timestamp(raw, "processedAt", "processed_at")
        cancelled_at = _timestamp(raw, "cancelledAt", "cancelled_at")

        if "transactions" in raw:
            transactions = tuple(_transaction(t) for t in _nodes(raw["transactions"]))
        elif _enum(raw.get("financial_status")) in SETTLED_STATUSES:
            transactions = (
                Transaction(
                    id=None,
                    kind="sale",
                    status="success",
                    processed_at=processed_at or created_at,
                ),
            )
        else:
            transactions = ()

        order_discount = _first(raw, "totalDiscountsSet", "total_discounts")
        if order_discount is not None:
            total_discounts = _money(order_discount)
        else:
            total_discounts = sum((li.total_discount for li in line_items), ZERO)

        customer = _customer(raw.get("customer"))
    except (ValueError, TypeError, KeyError, AttributeError) as e:
        raise MalformedSourceRecordError(f"order {order_id}: {e}", order_id=order_id) from e

    return CanonicalOrder(
        id=order_id,
        name=raw.get("name"),
        created_at=created_at,
        processed_at=processed_at,
        cancelled_at=cancelled_at,
        currency=str(currency).upper(),
        test=bool(raw.get("test", False)),
        line_items=line_items,
        refunds=refunds,
        transactions=transactions,
        customer=customer,
        total_discounts=total_discounts,
        total_tax=sum((li.tax for li in line_items), ZERO),
        financial_status=infer_financial_status(cancelled_at is not None, transactions, refunds),
    )


def normalize_orders(raw_orders: Iterable[Mapping[str, Any]]) -> NormalizationResult:
    """Normalize a window of raw orders, skipping malformed ones.

    One bad record never blocks the rest of the window: each malformed
    order is logged with its id and reason and reported in ``skipped``.

    Args:
        raw_orders: Raw order records in either source shape.

    Returns:
        NormalizationResult with the canonical orders and skipped ids.
    """
    result = NormalizationResult()
    for raw in raw_orders:
        try:
            result.orders.append(normalize_order(raw))
        except MalformedSourceRecordError as e:
            order_id = e.order_id or _safe_id(raw)
            logger.warning("Skipping malformed order %s: %s", order_id, e)
            result.skipped.append((order_id, str(e)))

    if result.skipped:
        logger.warning(
            "Normalized %d orders, skipped %d malformed",
            len(result.orders),
            len(result.skipped),
        )
    else:
        logger.debug("Normalized %d orders", len(result.orders))
    return result


def _safe_id(raw: Any) -> str:
    if isinstance(raw, Mapping):
        return _order_id(raw) or "<unknown>"
    return "<unknown>"
