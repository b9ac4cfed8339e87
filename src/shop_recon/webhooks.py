"""Webhook replay support.

Order webhooks deliver the REST shape of an order. Instead of patching
stored rows from the payload, a webhook triggers a recompute of exactly
the days the order touches, through the normal driver path, so a
replayed or duplicated webhook converges on the same stored state.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from collections.abc import Mapping
from datetime import date
from typing import Any

from shop_recon.orders.transform import normalize_order
from shop_recon.sales.calculate import refund_bucket_date
from shop_recon.types import Mode
from shop_recon.utils import to_local_date

logger = logging.getLogger(__name__)


def verify_webhook(body: bytes, hmac_header: str | None, secret: str) -> bool:
    """Check a webhook body against its ``X-Shopify-Hmac-Sha256`` header.

    Args:
        body: Raw request body, exactly as received.
        hmac_header: Base64 HMAC-SHA256 from the request header.
        secret: The app's shared secret.

    Returns:
        True if the signature matches.
    """
    if not hmac_header:
        return False
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(expected, hmac_header.strip())


def affected_window(raw_order: Mapping[str, Any], timezone: str) -> tuple[date, date]:
    """Local date range a webhook order can change, across both modes.

    Covers the creation date, the settlement date, and every refund
    date under either mode's rule.

    Args:
        raw_order: Order payload in either source shape.
        timezone: Tenant timezone.

    Returns:
        (first, last) local dates to recompute, inclusive.

    Raises:
        MalformedSourceRecordError: If the payload cannot be normalized.
    """
    order = normalize_order(raw_order)
    days = {to_local_date(order.created_at, timezone)}
    # A cancellation removes the order from its settlement day, so that
    # day is included even when the order no longer qualifies.
    settled_at = order.first_successful_sale_at
    if settled_at is not None:
        days.add(to_local_date(settled_at, timezone))
    for refund in order.refunds:
        for mode in Mode:
            days.add(refund_bucket_date(refund, mode, timezone))

    first, last = min(days), max(days)
    logger.debug("Order %s touches %s to %s", order.id, first, last)
    return first, last
