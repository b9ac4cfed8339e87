"""Reporting views over stored daily sales rows.

The store answers range queries without gap filling. This module gives
reporting callers the pieces they need on top of it: a pandas view of
the rows and a calendar gap filler.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

import pandas as pd

from shop_recon.types import DailySalesRow, Mode
from shop_recon.utils import iter_dates, parse_date

if TYPE_CHECKING:
    from shop_recon.sales.store import DailySalesStore

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

COLUMNS = [
    "tenant_id",
    "date",
    "mode",
    "gross_sales_excl_tax",
    "discounts_excl_tax",
    "refunds_excl_tax",
    "net_sales_excl_tax",
    "tax_total",
    "orders_count",
    "currency",
    "new_customer_net_sales",
    "returning_customer_net_sales",
    "guest_net_sales",
]

MONEY_COLUMNS = [
    "gross_sales_excl_tax",
    "discounts_excl_tax",
    "refunds_excl_tax",
    "net_sales_excl_tax",
    "tax_total",
    "new_customer_net_sales",
    "returning_customer_net_sales",
    "guest_net_sales",
]


def rows_to_frame(rows: Iterable[DailySalesRow]) -> pd.DataFrame:
    """Convert rows to a DataFrame with float money columns.

    Args:
        rows: Daily sales rows.

    Returns:
        DataFrame with one row per record and the columns in ``COLUMNS``.
        ``date`` stays a YYYY-MM-DD string; null split values become NaN.
    """
    df = pd.DataFrame([row.to_dict() for row in rows], columns=COLUMNS)
    for col in MONEY_COLUMNS:
        df[col] = pd.to_numeric(df[col].map(lambda v: None if v is None else float(v)), errors="coerce")
    df["orders_count"] = df["orders_count"].astype("int64")
    return df


def fill_calendar_gaps(
    rows: Iterable[DailySalesRow],
    tenant_id: str,
    mode: Mode | str,
    start: date | str,
    end: date | str,
    currency: str | None = None,
) -> list[DailySalesRow]:
    """Return a contiguous daily series, adding zero rows for missing dates.

    Args:
        rows: Stored rows for one tenant and mode.
        tenant_id: Tenant of the synthesized rows.
        mode: Mode of the synthesized rows.
        start: First date of the series (inclusive).
        end: Last date of the series (inclusive).
        currency: Currency of synthesized rows (default: that of the stored rows).

    Returns:
        One row per date from start to end, ascending.

    Raises:
        ValueError: If no currency is given and there are no stored rows.
    """
    mode = Mode.parse(mode)
    start_d = parse_date(start) if isinstance(start, str) else start
    end_d = parse_date(end) if isinstance(end, str) else end

    by_date = {row.date: row for row in rows}
    if currency is None:
        if not by_date:
            raise ValueError("currency is required when there are no stored rows")
        currency = next(iter(by_date.values())).currency

    filled = []
    for day in iter_dates(start_d, end_d):
        key = day.isoformat()
        if key in by_date:
            filled.append(by_date[key])
        else:
            filled.append(
                DailySalesRow(
                    tenant_id=tenant_id,
                    date=key,
                    mode=mode,
                    gross_sales_excl_tax=ZERO,
                    discounts_excl_tax=ZERO,
                    refunds_excl_tax=ZERO,
                    net_sales_excl_tax=ZERO,
                    tax_total=ZERO,
                    orders_count=0,
                    currency=currency,
                    new_customer_net_sales=ZERO,
                    returning_customer_net_sales=ZERO,
                    guest_net_sales=ZERO,
                )
            )
    return filled


def fetch_daily(
    store: DailySalesStore,
    tenant_id: str,
    mode: Mode | str,
    start_date: str,
    end_date: str,
    *,
    fill_gaps: bool = False,
) -> pd.DataFrame:
    """Read the stored daily series for a tenant and mode as a DataFrame.

    Args:
        store: Daily sales store.
        tenant_id: Tenant identifier.
        mode: "shopify" or "financial".
        start_date: Start date in YYYY-MM-DD format (inclusive).
        end_date: End date in YYYY-MM-DD format (inclusive).
        fill_gaps: Add zero rows for dates without stored data.

    Returns:
        DataFrame as produced by ``rows_to_frame``.
    """
    rows = store.query_range(tenant_id, mode, start_date, end_date)
    if fill_gaps and rows:
        rows = fill_calendar_gaps(rows, tenant_id, mode, start_date, end_date)
    elif fill_gaps:
        logger.debug("No stored rows for %s between %s and %s; nothing to fill", tenant_id, start_date, end_date)
    return rows_to_frame(rows)
