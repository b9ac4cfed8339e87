"""Orders domain module.

This module covers everything before the money is added up:

- **extract**: `ShopifyOrdersFetcher` pages raw orders out of the Admin API
- **transform**: `normalize_order()` / `normalize_orders()` build canonical orders
- **classify**: `classify_customers()` labels orders new / returning / guest

Example:
    >>> from shop_recon.credentials import EnvCredentialStore
    >>> from shop_recon.orders import ShopifyOrdersFetcher, classify_customers, normalize_orders
    >>>
    >>> conn = EnvCredentialStore().get_connection("acme")
    >>> fetched = ShopifyOrdersFetcher(conn).fetch_orders(since, until, timezone_name="Europe/Stockholm")
    >>> orders = normalize_orders(fetched.orders).orders
    >>> labels = classify_customers(orders, observed_at=fetched.fetched_at)
"""

from shop_recon.orders.classify import CustomerClassification, classify_customers
from shop_recon.orders.extract import ShopifyOrdersFetcher, make_session
from shop_recon.orders.transform import NormalizationResult, normalize_order, normalize_orders

__all__ = [
    "CustomerClassification",
    "NormalizationResult",
    "ShopifyOrdersFetcher",
    "classify_customers",
    "make_session",
    "normalize_order",
    "normalize_orders",
]
