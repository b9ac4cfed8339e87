"""Customer classification of orders: new, returning or guest.

The platform's account-wide lifetime order count is trusted as ground
truth for "is this the customer's first order ever". It is never
recomputed from the window's orders.

That count is cumulative as of fetch time, not as of the order's date.
An old order whose customer has since ordered again is labelled
``returning`` even if it was their first order. New and guest labels
cannot drift this way, so every returning label is reported with
``as_of_fetch`` confidence instead of being presented as exact.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from shop_recon.types import CanonicalOrder, CustomerType

logger = logging.getLogger(__name__)

EXACT = "exact"
AS_OF_FETCH = "as_of_fetch"


@dataclass
class CustomerClassification:
    """Order id to customer type, plus what is known about its accuracy.

    Attributes:
        labels: Order id to CustomerType for every order that could be classified.
        unclassified: Order ids whose customer carried no lifetime count.
        observed_at: When the lifetime counts were read from the platform.
    """

    labels: dict[str, CustomerType] = field(default_factory=dict)
    unclassified: set[str] = field(default_factory=set)
    observed_at: datetime | None = None

    def get(self, order_id: str) -> CustomerType | None:
        return self.labels.get(order_id)

    def confidence(self, order_id: str) -> str | None:
        """Return "exact", "as_of_fetch", or None for unclassified orders."""
        label = self.labels.get(order_id)
        if label is None:
            return None
        return AS_OF_FETCH if label is CustomerType.RETURNING else EXACT

    @property
    def possibly_stale(self) -> list[str]:
        """Order ids whose label depends on the fetch-time lifetime count."""
        return sorted(oid for oid, label in self.labels.items() if label is CustomerType.RETURNING)


def classify_order(order: CanonicalOrder) -> CustomerType | None:
    """Classify a single order, or return None if its customer has no count."""
    if order.customer is None:
        return CustomerType.GUEST
    count = order.customer.lifetime_orders
    if count is None:
        return None
    if count <= 1:
        return CustomerType.NEW
    return CustomerType.RETURNING


def classify_customers(
    orders: Iterable[CanonicalOrder],
    observed_at: datetime | None = None,
) -> CustomerClassification:
    """Label each order as new, returning or guest.

    Rules: no customer reference is ``guest``; a lifetime count of 1 is
    ``new``; a count above 1 is ``returning``. A count of 0 (the platform
    has not caught up with the order yet) is ``new``. A customer without
    any count leaves the order unclassified.

    Args:
        orders: Canonical orders of the window.
        observed_at: When the counts were fetched (default: now, UTC).

    Returns:
        CustomerClassification for the window.
    """
    result = CustomerClassification(observed_at=observed_at or datetime.now(timezone.utc))

    for order in orders:
        label = classify_order(order)
        if label is None:
            result.unclassified.add(order.id)
        else:
            result.labels[order.id] = label

    if result.unclassified:
        logger.warning(
            "%d orders have a customer without a lifetime order count; their days get no split",
            len(result.unclassified),
        )
    stale = len(result.possibly_stale)
    if stale:
        logger.info(
            "%d returning-customer labels are based on lifetime counts as of %s",
            stale,
            result.observed_at.isoformat(),
        )
    return result
