"""QA checks for daily sales frames.

Each ``detect_*`` function takes a frame shaped like
``shop_recon.sales.marts.rows_to_frame`` output and returns a DataFrame
of offending rows, or None when nothing is wrong.
"""

from __future__ import annotations

import pandas as pd

KEY_COLUMNS = ["tenant_id", "date", "mode"]

REQUIRED_COLUMNS = [
    "tenant_id",
    "date",
    "mode",
    "gross_sales_excl_tax",
    "discounts_excl_tax",
    "refunds_excl_tax",
    "net_sales_excl_tax",
    "orders_count",
    "currency",
    "new_customer_net_sales",
    "returning_customer_net_sales",
    "guest_net_sales",
]

SPLIT_COLUMNS = ["new_customer_net_sales", "returning_customer_net_sales", "guest_net_sales"]

# One cent of rounding drift, plus float slack
TOLERANCE = 0.01 + 1e-9


def prepare_daily_sales_df(df: pd.DataFrame) -> pd.DataFrame:
    """Parse ``date`` into datetimes for calendar checks."""
    df["date"] = pd.to_datetime(df["date"])
    return df


def detect_duplicate_days(df: pd.DataFrame) -> pd.DataFrame | None:
    """Find rows whose (tenant_id, date, mode) key appears more than once.

    Examples:
        >>> df = pd.DataFrame({
        ...     'tenant_id': ['a', 'a'],
        ...     'date': pd.to_datetime(['2024-03-01', '2024-03-01']),
        ...     'mode': ['shopify', 'shopify'],
        ... })
        >>> len(detect_duplicate_days(df))
        2

    """
    if df.empty:
        return None
    dup_mask = df.duplicated(subset=KEY_COLUMNS, keep=False)
    if not dup_mask.any():
        return None
    return df[dup_mask].sort_values(KEY_COLUMNS).reset_index(drop=True)


def detect_missing_days(df: pd.DataFrame) -> pd.DataFrame | None:
    """Find calendar gaps per (tenant_id, mode) between its first and last date.

    Gaps are normal for days without orders; this check reports them so a
    caller can tell them apart from failed windows.
    """
    if df.empty:
        return None

    missing_rows = []
    for (tenant_id, mode), group in df.groupby(["tenant_id", "mode"]):
        date_range = pd.date_range(start=group["date"].min(), end=group["date"].max(), freq="D")
        existing = set(group["date"].dt.date)
        for day in date_range:
            if day.date() not in existing:
                missing_rows.append({"tenant_id": tenant_id, "mode": mode, "date": day.date()})

    if not missing_rows:
        return None
    return pd.DataFrame(missing_rows)


def detect_identity_failures(df: pd.DataFrame) -> pd.DataFrame | None:
    """Find rows where net != gross - discounts - refunds beyond one cent."""
    if df.empty:
        return None
    expected = df["gross_sales_excl_tax"] - df["discounts_excl_tax"] - df["refunds_excl_tax"]
    diff = (df["net_sales_excl_tax"] - expected).abs()
    bad = df[diff > TOLERANCE].copy()
    if bad.empty:
        return None
    bad["identity_diff"] = diff[diff > TOLERANCE]
    return bad.reset_index(drop=True)


def detect_split_failures(df: pd.DataFrame) -> pd.DataFrame | None:
    """Find rows whose customer split does not sum to net beyond one cent.

    Rows with a null split (classification unavailable) are not checked.
    """
    if df.empty:
        return None
    has_split = df[SPLIT_COLUMNS].notna().all(axis=1)
    split_sum = df[SPLIT_COLUMNS].sum(axis=1)
    diff = (split_sum - df["net_sales_excl_tax"]).abs()
    mask = has_split & (diff > TOLERANCE)
    if not mask.any():
        return None
    bad = df[mask].copy()
    bad["split_diff"] = diff[mask]
    return bad.reset_index(drop=True)


def detect_mode_inversions(shopify_df: pd.DataFrame, financial_df: pd.DataFrame) -> pd.DataFrame | None:
    """Find dates where financial mode counts more orders than shopify mode.

    Financial mode is normally a subset of shopify mode on the same date.
    An order captured on a later day than it was placed moves to that day
    in financial mode, so inversions are reported rather than treated as
    errors.
    """
    if shopify_df.empty or financial_df.empty:
        return None
    merged = financial_df[["tenant_id", "date", "orders_count"]].merge(
        shopify_df[["tenant_id", "date", "orders_count"]],
        on=["tenant_id", "date"],
        how="left",
        suffixes=("_financial", "_shopify"),
    )
    merged["orders_count_shopify"] = merged["orders_count_shopify"].fillna(0).astype("int64")
    bad = merged[merged["orders_count_financial"] > merged["orders_count_shopify"]]
    if bad.empty:
        return None
    return bad.reset_index(drop=True)
