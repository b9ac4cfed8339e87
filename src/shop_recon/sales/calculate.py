"""Sales calculator: per-order breakdowns and the daily fold.

This module computes the monetary breakdown of a canonical order and
folds a window of orders into one ``DailySalesRow`` per local calendar
date for a given mode.

Conventions:
    - Gross sales = sum of line-item unit price x quantity, before discounts
      and before tax.
    - Discounts = the order's ``total_discounts``.
    - Refunds = sum of each refund's refunded amount, excluding tax (see
      ``refund_amount``).
    - Net sales = gross - discounts - refunds. Tax is tracked separately.
    - All arithmetic is Decimal; rounding to cents happens only when the
      daily totals are turned into rows.

Mode only changes two things: which orders qualify and which timestamp
buckets an order and its refunds. Everything else is shared.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from zoneinfo import ZoneInfo

from shop_recon.exceptions import ReconciliationInvariantViolation
from shop_recon.orders.classify import CustomerClassification
from shop_recon.types import (
    CanonicalOrder,
    CustomerType,
    DailySalesRow,
    Mode,
    OrderSalesBreakdown,
    Refund,
    RefundLineItem,
)
from shop_recon.utils import get_timezone, round_money, to_local_date, within_tolerance

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


# ============================================================================
# Per-order breakdown
# ============================================================================


def _refund_line_subtotal(line: RefundLineItem, order: CanonicalOrder | None) -> Decimal:
    if line.subtotal is not None:
        return line.subtotal
    if line.price is not None:
        return line.price * line.quantity
    if order is not None and line.line_item_id is not None:
        for item in order.line_items:
            if item.id == line.line_item_id:
                return item.price * line.quantity
    logger.warning(
        "Cannot price refunded line item %s on order %s; counting it as 0",
        line.line_item_id,
        order.id if order is not None else "?",
    )
    return ZERO


def refund_amount(refund: Refund, order: CanonicalOrder | None = None) -> Decimal:
    """Money returned by one refund, excluding tax.

    The platform's refunded total is preferred: it already includes
    shipping refunds and other order-level adjustments that no line item
    shows. Tax on refunded lines and adjustments is taken out of it.
    Without that total, refunded line subtotals plus adjustment amounts
    are used, and a refunded line without a subtotal is priced at its unit
    price (looked up on the order if needed) times the refunded quantity.

    Args:
        refund: The refund.
        order: The refunded order, used to price refund lines that carry
            neither a subtotal nor a price.

    Returns:
        The refunded amount, excluding tax.
    """
    if refund.total_refunded is not None:
        if refund.total_refunded == ZERO:
            return ZERO
        tax = sum((li.tax for li in refund.refund_line_items), ZERO)
        tax += sum((adj.tax_amount for adj in refund.adjustments), ZERO)
        return refund.total_refunded - tax

    lines = sum((_refund_line_subtotal(li, order) for li in refund.refund_line_items), ZERO)
    return lines + sum((adj.amount for adj in refund.adjustments), ZERO)


def compute_order_breakdown(order: CanonicalOrder) -> OrderSalesBreakdown:
    """Compute gross, discounts, refunds, tax and net for one order.

    Args:
        order: Canonical order.

    Returns:
        Unrounded OrderSalesBreakdown in the order's currency.

    Examples:
        >>> b = compute_order_breakdown(order)
        >>> b.net_sales == b.gross_sales - b.discounts - b.refunds
        True
    """
    gross = sum((li.gross for li in order.line_items), ZERO)
    refunds = sum((refund_amount(r, order) for r in order.refunds), ZERO)
    discounts = order.total_discounts
    return OrderSalesBreakdown(
        order_id=order.id,
        currency=order.currency,
        gross_sales=gross,
        discounts=discounts,
        refunds=refunds,
        tax=order.total_tax,
        net_sales=gross - discounts - refunds,
    )


def check_breakdown(breakdown: OrderSalesBreakdown) -> None:
    """Raise if a breakdown does not satisfy net = gross - discounts - refunds.

    Raises:
        ReconciliationInvariantViolation: If the identity fails by more than 0.01.
    """
    expected = breakdown.gross_sales - breakdown.discounts - breakdown.refunds
    if not within_tolerance(breakdown.net_sales, expected):
        raise ReconciliationInvariantViolation(
            f"Order {breakdown.order_id}: net {breakdown.net_sales} != "
            f"gross {breakdown.gross_sales} - discounts {breakdown.discounts} - refunds {breakdown.refunds}",
            details={"order_id": breakdown.order_id},
        )


# ============================================================================
# Bucketing
# ============================================================================


def qualifies(order: CanonicalOrder, mode: Mode) -> bool:
    """Whether an order belongs to a mode's order set at all.

    Test orders never qualify. ``shopify`` mode keeps cancelled and unpaid
    orders; ``financial`` mode keeps only uncancelled orders with a
    successful sale or capture.
    """
    if order.test:
        return False
    if mode is Mode.SHOPIFY:
        return True
    return not order.is_cancelled and order.first_successful_sale_at is not None


def order_bucket_date(order: CanonicalOrder, mode: Mode, tz: str | ZoneInfo) -> date | None:
    """Local date an order's sales land on, or None if it does not qualify."""
    if not qualifies(order, mode):
        return None
    if mode is Mode.SHOPIFY:
        return to_local_date(order.created_at, tz)
    return to_local_date(order.first_successful_sale_at, tz)


def refund_bucket_date(refund: Refund, mode: Mode, tz: str | ZoneInfo) -> date:
    """Local date a refund lands on.

    ``shopify`` mode uses the refund's creation time. ``financial`` mode
    uses the time its refund transaction settled, falling back to the
    creation time.
    """
    if mode is Mode.FINANCIAL and refund.processed_at is not None:
        return to_local_date(refund.processed_at, tz)
    return to_local_date(refund.created_at, tz)


# ============================================================================
# Daily fold
# ============================================================================


@dataclass
class _Bucket:
    currency: str
    gross: Decimal = ZERO
    discounts: Decimal = ZERO
    refunds: Decimal = ZERO
    tax: Decimal = ZERO
    net: Decimal = ZERO
    orders_count: int = 0
    split: dict[CustomerType, Decimal] = field(
        default_factory=lambda: {ct: ZERO for ct in CustomerType}
    )
    split_complete: bool = True


def _bucket_for(
    buckets: dict[date, _Bucket],
    day: date,
    order: CanonicalOrder,
) -> _Bucket:
    bucket = buckets.get(day)
    if bucket is None:
        bucket = buckets[day] = _Bucket(currency=order.currency)
    elif bucket.currency != order.currency:
        raise ReconciliationInvariantViolation(
            f"Mixed currencies on {day.isoformat()}: {bucket.currency} and "
            f"{order.currency} (order {order.id})",
            date=day.isoformat(),
            details={"currencies": [bucket.currency, order.currency], "order_id": order.id},
        )
    return bucket


def _route(bucket: _Bucket, label: CustomerType | None, amount: Decimal) -> None:
    if label is None:
        bucket.split_complete = False
    else:
        bucket.split[label] += amount


def _to_row(tenant_id: str, day: date, mode: Mode, bucket: _Bucket) -> DailySalesRow:
    split: dict[CustomerType, Decimal | None]
    if bucket.split_complete:
        split = {ct: round_money(v) for ct, v in bucket.split.items()}
    else:
        split = {ct: None for ct in CustomerType}

    return DailySalesRow(
        tenant_id=tenant_id,
        date=day.isoformat(),
        mode=mode,
        gross_sales_excl_tax=round_money(bucket.gross),
        discounts_excl_tax=round_money(bucket.discounts),
        refunds_excl_tax=round_money(bucket.refunds),
        net_sales_excl_tax=round_money(bucket.net),
        tax_total=round_money(bucket.tax),
        orders_count=bucket.orders_count,
        currency=bucket.currency,
        new_customer_net_sales=split[CustomerType.NEW],
        returning_customer_net_sales=split[CustomerType.RETURNING],
        guest_net_sales=split[CustomerType.GUEST],
    )


def check_row(row: DailySalesRow) -> None:
    """Raise if a row breaks the sales identity or the customer split.

    Raises:
        ReconciliationInvariantViolation: If net differs from
            gross - discounts - refunds, or the three-way split differs
            from net, by more than 0.01.
    """
    expected = row.gross_sales_excl_tax - row.discounts_excl_tax - row.refunds_excl_tax
    if not within_tolerance(row.net_sales_excl_tax, expected):
        raise ReconciliationInvariantViolation(
            f"{row.mode.value} {row.date}: net {row.net_sales_excl_tax} != gross - discounts - refunds ({expected})",
            date=row.date,
            details=row.to_dict(),
        )
    if row.has_split:
        split_sum = (
            row.new_customer_net_sales + row.returning_customer_net_sales + row.guest_net_sales
        )
        if not within_tolerance(split_sum, row.net_sales_excl_tax):
            raise ReconciliationInvariantViolation(
                f"{row.mode.value} {row.date}: customer split {split_sum} != net {row.net_sales_excl_tax}",
                date=row.date,
                details=row.to_dict(),
            )


def compute_daily_aggregates(
    orders: Iterable[CanonicalOrder],
    classification: CustomerClassification,
    mode: Mode | str,
    *,
    tenant_id: str,
    timezone: str | ZoneInfo,
    since: date | None = None,
    until: date | None = None,
) -> list[DailySalesRow]:
    """Fold canonical orders into one row per local date for a mode.

    Each qualifying order adds its gross, discounts, tax and order count
    to its bucket date, and its net before refunds to the customer type it
    was classified as. Each refund lands on its own bucket date, whatever
    the order's date, and is taken out of that day's net and out of the
    same customer type. A day touched by an unclassified order gets no
    split.

    When ``since``/``until`` are given, only dates inside that window are
    emitted. Orders fetched only because a refund or payment fell in the
    window contribute nothing to the days outside it.

    Args:
        orders: Canonical orders of the window.
        classification: Customer classification for those orders.
        mode: "shopify" or "financial".
        tenant_id: Tenant the rows belong to.
        timezone: Tenant timezone used to derive calendar dates.
        since: First date to emit (inclusive), or None for no bound.
        until: Last date to emit (inclusive), or None for no bound.

    Returns:
        Rows sorted by date ascending.

    Raises:
        ValueError: If mode is invalid or since > until.
        ReconciliationInvariantViolation: If a row breaks the identity or
            split, or a day mixes currencies.
    """
    mode = Mode.parse(mode)
    if since is not None and until is not None and since > until:
        raise ValueError(f"since ({since}) is after until ({until})")
    tz = get_timezone(timezone) if isinstance(timezone, str) else timezone

    def in_window(day: date) -> bool:
        return (since is None or day >= since) and (until is None or day <= until)

    buckets: dict[date, _Bucket] = {}
    voided_sales = 0

    for order in orders:
        order_day = order_bucket_date(order, mode, tz)
        if order_day is None:
            continue

        breakdown = compute_order_breakdown(order)
        check_breakdown(breakdown)
        label = classification.get(order.id)

        if mode is Mode.FINANCIAL and order.has_voided_sale:
            voided_sales += 1

        if in_window(order_day):
            bucket = _bucket_for(buckets, order_day, order)
            before_refunds = breakdown.gross_sales - breakdown.discounts
            bucket.gross += breakdown.gross_sales
            bucket.discounts += breakdown.discounts
            bucket.tax += breakdown.tax
            bucket.net += before_refunds
            bucket.orders_count += 1
            _route(bucket, label, before_refunds)

        for refund in order.refunds:
            amount = refund_amount(refund, order)
            if amount == ZERO:
                continue
            refund_day = refund_bucket_date(refund, mode, tz)
            if not in_window(refund_day):
                continue
            bucket = _bucket_for(buckets, refund_day, order)
            bucket.refunds += amount
            bucket.net -= amount
            _route(bucket, label, -amount)

    if voided_sales:
        # Whether these belong in financial mode is undecided; they are kept.
        logger.warning(
            "%d financial-mode orders have a voided transaction next to a successful sale",
            voided_sales,
        )

    rows = [_to_row(tenant_id, day, mode, buckets[day]) for day in sorted(buckets)]
    for row in rows:
        check_row(row)

    logger.debug("Folded %s mode into %d daily rows for tenant %s", mode.value, len(rows), tenant_id)
    return rows
