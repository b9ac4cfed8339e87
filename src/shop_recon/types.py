"""Shared types for the reconciliation pipeline.

Canonical orders and their parts are frozen dataclasses: the normalizer
builds them once per raw order and nothing downstream mutates them.
Money is always ``decimal.Decimal``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

SALE_KINDS = frozenset({"sale", "capture"})
REFUND_KIND = "refund"
VOID_KIND = "void"
SUCCESS = "success"


class Mode(str, Enum):
    """Bucketing convention for daily aggregates.

    ``SHOPIFY`` buckets orders by creation date and keeps unpaid and
    cancelled orders. ``FINANCIAL`` buckets by the first successful
    sale/capture and drops orders that never settled.
    """

    SHOPIFY = "shopify"
    FINANCIAL = "financial"

    @classmethod
    def parse(cls, value: str | Mode) -> Mode:
        """Return the Mode for ``value``.

        Raises:
            ValueError: If value is not "shopify" or "financial".
        """
        if isinstance(value, Mode):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"Invalid mode '{value}'. Must be 'shopify' or 'financial'."
            ) from None


class CustomerType(str, Enum):
    NEW = "new"
    RETURNING = "returning"
    GUEST = "guest"


class FinancialStatus(str, Enum):
    VOIDED = "voided"
    PAID = "paid"
    PARTIALLY_REFUNDED = "partially_refunded"
    PENDING = "pending"


@dataclass(frozen=True)
class Transaction:
    """A payment movement on an order or refund.

    Attributes:
        id: Platform transaction id, if supplied.
        kind: Lower-case kind ("sale", "capture", "refund", "void", "authorization").
        status: Lower-case status ("success", "failure", "pending", "error").
        processed_at: When the platform processed the transaction.
        amount: Transaction amount in shop currency, if supplied.
    """

    id: str | None
    kind: str
    status: str
    processed_at: datetime | None
    amount: Decimal | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCESS

    @property
    def is_sale(self) -> bool:
        return self.kind in SALE_KINDS


@dataclass(frozen=True)
class LineItem:
    id: str | None
    product_id: str | None
    quantity: int
    price: Decimal
    total_discount: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")

    @property
    def gross(self) -> Decimal:
        """Unit price times quantity, before discounts and tax."""
        return self.price * self.quantity


@dataclass(frozen=True)
class RefundLineItem:
    line_item_id: str | None
    quantity: int
    subtotal: Decimal | None
    tax: Decimal = Decimal("0")
    price: Decimal | None = None


@dataclass(frozen=True)
class OrderAdjustment:
    """Order-level refund adjustment such as a shipping refund or a discrepancy."""

    reason: str | None
    amount: Decimal
    tax_amount: Decimal = Decimal("0")


@dataclass(frozen=True)
class Refund:
    """A refund on an order.

    Attributes:
        id: Platform refund id.
        created_at: When the refund was created.
        total_refunded: Money actually returned, as reported by the platform.
            None when the source record does not carry it.
        refund_line_items: Refunded line items.
        adjustments: Order-level adjustments (shipping, discrepancies).
        transactions: Refund transactions nested under this refund.
    """

    id: str | None
    created_at: datetime
    total_refunded: Decimal | None = None
    refund_line_items: tuple[RefundLineItem, ...] = ()
    adjustments: tuple[OrderAdjustment, ...] = ()
    transactions: tuple[Transaction, ...] = ()

    @property
    def processed_at(self) -> datetime | None:
        """Processing time of the first successful refund transaction, if any."""
        times = [
            t.processed_at
            for t in self.transactions
            if t.kind == REFUND_KIND and t.succeeded and t.processed_at is not None
        ]
        return min(times) if times else None


@dataclass(frozen=True)
class Customer:
    """Customer reference attached to an order.

    ``lifetime_orders`` is the platform's account-wide order counter as of
    fetch time, or None when the source did not supply it.
    """

    id: str | None
    lifetime_orders: int | None


@dataclass(frozen=True)
class CanonicalOrder:
    """Normalized order, independent of the API shape that produced it."""

    id: str
    created_at: datetime
    currency: str
    total_discounts: Decimal
    total_tax: Decimal
    financial_status: FinancialStatus
    name: str | None = None
    processed_at: datetime | None = None
    cancelled_at: datetime | None = None
    test: bool = False
    line_items: tuple[LineItem, ...] = ()
    refunds: tuple[Refund, ...] = ()
    transactions: tuple[Transaction, ...] = ()
    customer: Customer | None = None

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled_at is not None

    @property
    def first_successful_sale_at(self) -> datetime | None:
        """When money for this order first settled, or None if it never did."""
        times = [
            t.processed_at
            for t in self.transactions
            if t.is_sale and t.succeeded and t.processed_at is not None
        ]
        return min(times) if times else None

    @property
    def has_voided_sale(self) -> bool:
        return any(t.kind == VOID_KIND and t.succeeded for t in self.transactions)


@dataclass(frozen=True)
class OrderSalesBreakdown:
    """Per-order monetary breakdown in the order's currency.

    Values are unrounded; ``net_sales == gross_sales - discounts - refunds``.
    Tax is tracked separately and is part of neither gross nor net.
    """

    order_id: str
    currency: str
    gross_sales: Decimal
    discounts: Decimal
    refunds: Decimal
    tax: Decimal
    net_sales: Decimal


@dataclass(frozen=True)
class DailySalesRow:
    """Persisted per-day aggregate, keyed by (tenant_id, date, mode).

    ``date`` is the local calendar date as ``YYYY-MM-DD``. The three
    customer split fields are None when some order of the day could not
    be classified.
    """

    tenant_id: str
    date: str
    mode: Mode
    gross_sales_excl_tax: Decimal
    discounts_excl_tax: Decimal
    refunds_excl_tax: Decimal
    net_sales_excl_tax: Decimal
    orders_count: int
    currency: str
    tax_total: Decimal = Decimal("0.00")
    new_customer_net_sales: Decimal | None = None
    returning_customer_net_sales: Decimal | None = None
    guest_net_sales: Decimal | None = None

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.tenant_id, self.date, self.mode.value)

    @property
    def has_split(self) -> bool:
        return None not in (
            self.new_customer_net_sales,
            self.returning_customer_net_sales,
            self.guest_net_sales,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert the row to a plain dict with ``mode`` as its string value."""
        data = asdict(self)
        data["mode"] = self.mode.value
        return data


@dataclass
class FetchResult:
    """Raw orders assembled by the fetcher for one tenant and window.

    Attributes:
        orders: De-duplicated raw order records, in first-seen order.
        pages: Number of API pages read across all passes.
        duplicates: Number of records dropped as exact-id duplicates.
        fetched_at: When the fetch completed (lifetime counts are valid as of then).
    """

    orders: list[dict[str, Any]]
    pages: int = 0
    duplicates: int = 0
    fetched_at: datetime | None = None
