"""QA module for daily sales data.

Example:
    >>> from shop_recon.sales import DailySalesStore, marts
    >>> from shop_recon.qa import run_daily_sales_qa
    >>>
    >>> store = DailySalesStore("sqlite:///daily_sales.db")
    >>> df = marts.fetch_daily(store, "acme", "shopify", "2025-01-01", "2025-01-31")
    >>> result = run_daily_sales_qa(df)
    >>> print(result.summary)
    >>> if result.has_errors:
    ...     print(result.split_failures)

"""

from shop_recon.qa.api import DailySalesQAResult, compare_modes, run_daily_sales_qa

__all__ = ["DailySalesQAResult", "compare_modes", "run_daily_sales_qa"]
