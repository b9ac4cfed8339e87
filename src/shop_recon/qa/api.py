"""Public API for daily sales QA.

This module runs QA checks on daily sales frames in memory, without
reading or writing any files.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import pandas as pd

from shop_recon.exceptions import DataQualityError
from shop_recon.qa.checks import (
    REQUIRED_COLUMNS,
    detect_duplicate_days,
    detect_identity_failures,
    detect_missing_days,
    detect_mode_inversions,
    detect_split_failures,
    prepare_daily_sales_df,
)

logger = logging.getLogger(__name__)


@dataclass
class DailySalesQAResult:
    """Result of the daily sales QA checks.

    Attributes:
        summary: Dictionary with summary statistics and counts.
        duplicate_days: Rows sharing a (tenant_id, date, mode) key, or None.
        missing_days: Calendar gaps per tenant and mode, or None.
        identity_failures: Rows where net != gross - discounts - refunds, or None.
        split_failures: Rows whose customer split does not sum to net, or None.
    """

    summary: dict
    duplicate_days: pd.DataFrame | None
    missing_days: pd.DataFrame | None
    identity_failures: pd.DataFrame | None
    split_failures: pd.DataFrame | None

    @property
    def has_errors(self) -> bool:
        """True when duplicates or arithmetic failures were found (gaps are not errors)."""
        return any(
            frame is not None and not frame.empty
            for frame in (self.duplicate_days, self.identity_failures, self.split_failures)
        )


def _require_columns(df: pd.DataFrame, name: str, columns: list[str]) -> None:
    missing_cols = [col for col in columns if col not in df.columns]
    if missing_cols:
        raise DataQualityError(
            f"Missing required columns in {name}: {missing_cols}. Required: {columns}"
        )


def run_daily_sales_qa(daily_df: pd.DataFrame) -> DailySalesQAResult:
    """Run all daily sales checks on a frame.

    Args:
        daily_df: Frame as produced by ``shop_recon.sales.marts.rows_to_frame``.

    Returns:
        DailySalesQAResult with a summary and the offending rows per check.

    Raises:
        DataQualityError: If required columns are missing.
    """
    _require_columns(daily_df, "daily_df", REQUIRED_COLUMNS)
    df = prepare_daily_sales_df(daily_df.copy())

    logger.info("Running daily sales QA for %d rows", len(df))

    duplicate_days = detect_duplicate_days(df)
    missing_days = detect_missing_days(df)
    identity_failures = detect_identity_failures(df)
    split_failures = detect_split_failures(df)

    summary = {
        "total_rows": len(df),
        "total_tenants": df["tenant_id"].nunique(),
        "min_date": df["date"].min().date().isoformat() if not df.empty else None,
        "max_date": df["date"].max().date().isoformat() if not df.empty else None,
        "rows_without_split": int(df["new_customer_net_sales"].isna().sum()),
        "duplicate_days_count": len(duplicate_days) if duplicate_days is not None else 0,
        "missing_days_count": len(missing_days) if missing_days is not None else 0,
        "identity_failures_count": len(identity_failures) if identity_failures is not None else 0,
        "split_failures_count": len(split_failures) if split_failures is not None else 0,
    }

    if identity_failures is not None or split_failures is not None:
        logger.error(
            "Daily sales QA found %d identity and %d split failures",
            summary["identity_failures_count"],
            summary["split_failures_count"],
        )

    return DailySalesQAResult(
        summary=summary,
        duplicate_days=duplicate_days,
        missing_days=missing_days,
        identity_failures=identity_failures,
        split_failures=split_failures,
    )


def compare_modes(shopify_df: pd.DataFrame, financial_df: pd.DataFrame) -> pd.DataFrame | None:
    """List dates where financial mode has more orders than shopify mode.

    Args:
        shopify_df: Shopify-mode frame for one or more tenants.
        financial_df: Financial-mode frame for the same tenants and dates.

    Returns:
        DataFrame with tenant_id, date, orders_count_financial and
        orders_count_shopify for each inversion, or None.

    Raises:
        DataQualityError: If required columns are missing.
    """
    columns = ["tenant_id", "date", "orders_count"]
    _require_columns(shopify_df, "shopify_df", columns)
    _require_columns(financial_df, "financial_df", columns)

    inversions = detect_mode_inversions(shopify_df, financial_df)
    if inversions is not None:
        logger.warning("%d dates have more financial than shopify orders", len(inversions))
    return inversions
