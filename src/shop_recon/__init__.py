"""Shop Recon - order-to-daily-sales reconciliation for Shopify tenants.

This package turns a merchant's raw order and transaction history into
per-day sales aggregates that reconcile, to the cent, with the
platform's own reports.

Pipeline (one pass per tenant, mode and date window):

- **Fetch**: page orders, refunds and transactions out of the Admin API
- **Normalize**: one canonical order per raw record, Decimal money
- **Classify**: new / returning / guest from lifetime order counts
- **Aggregate**: fold orders into daily rows for a mode
- **Persist**: idempotent upsert keyed by (tenant, date, mode)

Module Structure:
    shop_recon.orders: Fetcher, normalizer and customer classifier
    shop_recon.sales: Sales calculator, daily aggregate store and marts
    shop_recon.driver: Reconciliation driver and scheduler entry point
    shop_recon.qa: Data quality checks on stored rows
    shop_recon.webhooks: Webhook verification and replay windows
    shop_recon.config: ReconConfig settings

Quick Start:
    >>> from shop_recon import ReconConfig, run_job
    >>> from shop_recon.sales import DailySalesStore, marts
    >>>
    >>> config = ReconConfig.from_env()
    >>> results = run_job("acme", since="2025-01-01", until="2025-01-31", config=config)
    >>>
    >>> store = DailySalesStore(config.database_url)
    >>> daily = marts.fetch_daily(store, "acme", "financial", "2025-01-01", "2025-01-31")
    >>> print(daily.head())

Modes:
    - shopify: orders bucketed by creation date, cancelled/unpaid included
    - financial: orders bucketed by first successful payment, unpaid excluded
"""

__version__ = "0.1.0"

from shop_recon.config import ReconConfig
from shop_recon.driver import RunContext, RunResult, RunState, reconcile_window, run_job
from shop_recon.exceptions import (
    AuthError,
    ConfigError,
    ETLError,
    ExtractionError,
    MalformedSourceRecordError,
    ReconciliationInvariantViolation,
    ReconError,
    RunCancelledError,
    TransientFetchError,
)
from shop_recon.types import DailySalesRow, Mode

__all__ = [
    "AuthError",
    "ConfigError",
    "DailySalesRow",
    "ETLError",
    "ExtractionError",
    "MalformedSourceRecordError",
    "Mode",
    "ReconConfig",
    "ReconError",
    "ReconciliationInvariantViolation",
    "RunCancelledError",
    "RunContext",
    "RunResult",
    "RunState",
    "TransientFetchError",
    "__version__",
    "reconcile_window",
    "run_job",
]
