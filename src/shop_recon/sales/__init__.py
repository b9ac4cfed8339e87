"""Sales domain module.

- **calculate**: `compute_order_breakdown()` per order and
  `compute_daily_aggregates()` to fold a window into daily rows for a mode
- **store**: `DailySalesStore` with idempotent upserts keyed by
  (tenant_id, date, mode) and ascending range queries
- **marts**: pandas views and calendar gap filling for reporting

Example:
    >>> from shop_recon.sales import DailySalesStore, marts
    >>>
    >>> store = DailySalesStore("sqlite:///daily_sales.db")
    >>> rows = store.query_range("acme", "shopify", "2025-01-01", "2025-01-31")
    >>> df = marts.fetch_daily(store, "acme", "shopify", "2025-01-01", "2025-01-31", fill_gaps=True)
"""

from shop_recon.sales import marts
from shop_recon.sales.calculate import compute_daily_aggregates, compute_order_breakdown
from shop_recon.sales.store import DailySalesStore

__all__ = ["DailySalesStore", "compute_daily_aggregates", "compute_order_breakdown", "marts"]
