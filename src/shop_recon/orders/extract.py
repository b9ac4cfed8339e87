"""Source fetcher: pages orders out of the Shopify GraphQL Admin API.

This module assembles the complete, de-duplicated set of raw orders a
reconciliation window needs:

1. every order created in the window (widened by a day on each side so
   timezone edges are never missed);
2. every order updated since the window started that has a refund, a
   settled refund transaction or a settled sale inside the window. These
   are orders created earlier whose money moved in the window.

Pages are read sequentially with a cursor. Transient failures (network
errors, timeouts, HTTP 429/5xx, GraphQL THROTTLED) are retried with
bounded exponential backoff; HTTP 401/403 fail fast with ``AuthError``.

Environment:
    RECON_HTTP_TIMEOUT / RECON_MAX_RETRIES: see ``shop_recon.config``.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable, Iterator, Mapping
from datetime import date, datetime, timedelta, timezone
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from shop_recon.config import ReconConfig
from shop_recon.credentials import ShopConnection
from shop_recon.exceptions import (
    AuthError,
    ExtractionError,
    RunCancelledError,
    TransientFetchError,
)
from shop_recon.orders.queries import ORDERS_QUERY, build_search_query
from shop_recon.types import FetchResult
from shop_recon.utils import gid_tail, local_day_bounds, parse_timestamp

logger = logging.getLogger(__name__)

RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})
AUTH_STATUSES = frozenset({401, 403})

# Failures of the exchange itself; the request is repeated as is
TRANSPORT_ERRORS = (
    requests.ConnectionError,
    requests.Timeout,
    requests.exceptions.ChunkedEncodingError,
    requests.exceptions.ContentDecodingError,
)

# Query cost budget: below the floor, wait until the bucket refills to the target
THROTTLE_FLOOR = 100
THROTTLE_REFILL = 1000

USER_AGENT = "shop-recon/0.1"


def make_session(access_token: str, timeout: float = 60.0, connect_retries: int = 3) -> requests.Session:
    """Create a requests Session for the Admin API with a default timeout.

    Configures the session with:
    - the access token and JSON headers
    - a retry adapter for connection failures only (the request never
      reached the server, so it is always safe to repeat)
    - a default timeout for all requests

    ``ShopifyOrdersFetcher`` builds its session with ``connect_retries=0``
    and retries everything itself, so ``RECON_MAX_RETRIES`` bounds the
    attempts per page.

    Args:
        access_token: Admin API access token.
        timeout: Default timeout in seconds for all requests.
        connect_retries: Connection attempts retried by the adapter.

    Returns:
        Configured requests.Session object.
    """
    s = requests.Session()
    s.headers.update(
        {
            "User-Agent": USER_AGENT,
            "X-Shopify-Access-Token": access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
    )
    retry = Retry(
        total=connect_retries,
        connect=connect_retries,
        read=0,
        status=0,
        backoff_factor=0.8,  # 0.8, 1.6, 3.2, ...
        allowed_methods=frozenset({"GET", "POST"}),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    # Default timeouts via a wrapper
    orig_request = s.request

    def timed_request(method: str, url: str, **kwargs: Any) -> requests.Response:
        kwargs.setdefault("timeout", timeout)
        return orig_request(method, url, **kwargs)

    s.request = timed_request  # type: ignore[method-assign]
    return s


def _retry_after(resp: requests.Response) -> float | None:
    value = resp.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def _is_throttled(errors: Any) -> bool:
    if not isinstance(errors, list):
        return False
    return any(
        isinstance(e, Mapping) and (e.get("extensions") or {}).get("code") == "THROTTLED"
        for e in errors
    )


def _error_messages(errors: Any) -> str:
    if isinstance(errors, list):
        return "; ".join(str(e.get("message", e)) if isinstance(e, Mapping) else str(e) for e in errors)
    return str(errors)


def _order_key(node: Mapping[str, Any]) -> str | None:
    return gid_tail(node.get("legacyResourceId") or node.get("id"))


def _nodes(value: Any) -> list[Mapping[str, Any]]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if "nodes" in value:
        return value["nodes"] or []
    return [edge["node"] for edge in value.get("edges") or []]


def _successful(tx: Mapping[str, Any], kinds: set[str]) -> bool:
    return (
        str(tx.get("kind", "")).lower() in kinds
        and str(tx.get("status", "")).lower() == "success"
    )


def money_moved_between(node: Mapping[str, Any], start: datetime, end: datetime) -> bool:
    """Whether a raw order has a refund or settled payment inside [start, end].

    Unparseable timestamps count as a match so that the normalizer gets to
    see (and report) the record.
    """

    def inside(value: Any) -> bool:
        if value is None:
            return False
        return start <= parse_timestamp(value) <= end

    try:
        for refund in node.get("refunds") or []:
            if inside(refund.get("createdAt")):
                return True
            for tx in _nodes(refund.get("transactions")):
                if _successful(tx, {"refund"}) and inside(tx.get("processedAt")):
                    return True
        for tx in _nodes(node.get("transactions")):
            if _successful(tx, {"sale", "capture", "refund"}) and inside(tx.get("processedAt")):
                return True
    except (ValueError, TypeError, AttributeError):
        return True
    return False


class ShopifyOrdersFetcher:
    """Fetches raw orders for one tenant.

    Each instance owns its session and holds no state between calls, so
    concurrent runs for different tenants use different fetchers.

    Args:
        connection: Shop and token for the tenant.
        config: Retry, timeout and page-size settings.
        session: HTTP session to use (default: ``make_session``).
        sleep: Function used to wait between attempts (default: ``time.sleep``).
    """

    def __init__(
        self,
        connection: ShopConnection,
        config: ReconConfig | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.connection = connection
        self.config = config or ReconConfig()
        # post() owns every retry; the adapter makes a single attempt
        self.session = session or make_session(connection.access_token, self.config.timeout, connect_retries=0)
        self._sleep = sleep

    @property
    def endpoint(self) -> str:
        return f"https://{self.connection.shop}/admin/api/{self.config.api_version}/graphql.json"

    def _backoff(self, attempt: int, retry_after: float | None) -> float:
        if retry_after is not None:
            return min(retry_after, self.config.max_backoff)
        return min(self.config.backoff_factor * (2**attempt), self.config.max_backoff)

    def post(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST a GraphQL payload, retrying transient failures.

        Status retries (429/5xx) live here rather than in the adapter's
        ``Retry(status_forcelist=...)``: GraphQL throttling arrives as
        HTTP 200 with a THROTTLED error, and both paths must share one
        attempt count and one ``max_backoff`` cap. Transport errors
        (``TRANSPORT_ERRORS``) go through the same loop.

        Args:
            payload: GraphQL request body (query and variables).

        Returns:
            Decoded response body without top-level errors.

        Raises:
            AuthError: On HTTP 401/403.
            TransientFetchError: When the retry budget is exhausted.
            ExtractionError: On other HTTP errors, undecodable bodies or
                non-throttle GraphQL errors.
        """
        attempts = self.config.max_retries + 1
        last_error = ""
        retry_after: float | None = None

        for attempt in range(attempts):
            if attempt:
                wait = self._backoff(attempt - 1, retry_after)
                logger.warning(
                    "Retrying %s (attempt %d/%d) in %.1fs after %s",
                    self.connection.shop,
                    attempt + 1,
                    attempts,
                    wait,
                    last_error,
                )
                self._sleep(wait)
            retry_after = None

            try:
                resp = self.session.post(self.endpoint, json=payload)
            except TRANSPORT_ERRORS as e:
                last_error = f"{type(e).__name__}: {e}"
                continue

            if resp.status_code in AUTH_STATUSES:
                raise AuthError(
                    f"Shop {self.connection.shop} rejected the access token (HTTP {resp.status_code})",
                    tenant_id=self.connection.tenant_id,
                )
            if resp.status_code in RETRY_STATUSES:
                last_error = f"HTTP {resp.status_code}"
                retry_after = _retry_after(resp)
                continue
            if not (200 <= resp.status_code < 300):
                raise ExtractionError(
                    f"Orders request failed. HTTP {resp.status_code}: {resp.text[:400]}"
                )

            try:
                body = resp.json()
            except ValueError as e:
                raise ExtractionError(f"Orders response is not JSON: {resp.text[:200]}") from e

            errors = body.get("errors")
            if errors:
                if _is_throttled(errors):
                    last_error = "GraphQL THROTTLED"
                    continue
                raise ExtractionError(f"GraphQL errors: {_error_messages(errors)}")
            return body

        raise TransientFetchError(
            f"Giving up on {self.connection.shop} after {attempts} attempts: {last_error}",
            attempts=attempts,
        )

    def _respect_cost(self, body: Mapping[str, Any]) -> None:
        throttle = ((body.get("extensions") or {}).get("cost") or {}).get("throttleStatus") or {}
        available = throttle.get("currentlyAvailable")
        rate = throttle.get("restoreRate")
        if available is None or not rate or available >= THROTTLE_FLOOR:
            return
        target = min(throttle.get("maximumAvailable") or THROTTLE_REFILL, THROTTLE_REFILL)
        wait = math.ceil(max(target - available, 0) / rate)
        if wait > 0:
            logger.info("Query budget low (%s available); waiting %ds", available, wait)
            self._sleep(wait)

    def iter_pages(
        self,
        search: str,
        cancel_event: threading.Event | None = None,
    ) -> Iterator[list[Mapping[str, Any]]]:
        """Yield each page of order nodes matching ``search``.

        Raises:
            RunCancelledError: If ``cancel_event`` is set before a page is requested.
            ExtractionError: If a response lacks the orders connection.
        """
        cursor: str | None = None
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise RunCancelledError(f"Fetch for {self.connection.tenant_id} cancelled")

            body = self.post(
                {
                    "query": ORDERS_QUERY,
                    "variables": {"first": self.config.page_size, "after": cursor, "query": search},
                }
            )
            orders = (body.get("data") or {}).get("orders")
            if orders is None:
                raise ExtractionError("Orders response has no data.orders")

            yield [edge["node"] for edge in orders.get("edges") or []]

            page_info = orders.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                return
            cursor = page_info.get("endCursor")
            if not cursor:
                raise ExtractionError("Orders page says hasNextPage but has no endCursor")
            self._respect_cost(body)

    def fetch_orders(
        self,
        since: date,
        until: date,
        *,
        timezone_name: str,
        exclude_test_orders: bool | None = None,
        cancel_event: threading.Event | None = None,
    ) -> FetchResult:
        """Fetch every raw order a window's daily rows depend on.

        Args:
            since: First local date of the window (inclusive).
            until: Last local date of the window (inclusive).
            timezone_name: Tenant timezone the dates are expressed in.
            exclude_test_orders: Drop orders flagged ``test`` (default: from config).
            cancel_event: When set, the fetch stops before the next page.

        Returns:
            FetchResult with de-duplicated raw orders.

        Raises:
            ValueError: If since > until.
            RunCancelledError: If cancelled. Nothing fetched is returned.
            AuthError, TransientFetchError, ExtractionError: See ``post``.
        """
        if since > until:
            raise ValueError(f"since ({since}) is after until ({until})")
        if exclude_test_orders is None:
            exclude_test_orders = self.config.exclude_test_orders

        window_start, _ = local_day_bounds(since, timezone_name)
        _, window_end = local_day_bounds(until, timezone_name)
        wide_start, _ = local_day_bounds(since - timedelta(days=1), timezone_name)
        _, wide_end = local_day_bounds(until + timedelta(days=1), timezone_name)

        seen: dict[str, Mapping[str, Any]] = {}
        pages = 0
        duplicates = 0
        tests = 0

        def add(node: Mapping[str, Any]) -> None:
            nonlocal duplicates, tests
            key = _order_key(node) or f"<missing-id-{len(seen)}>"
            if key in seen:
                duplicates += 1
                return
            if exclude_test_orders and node.get("test"):
                tests += 1
                return
            seen[key] = node

        created = build_search_query("created_at", wide_start, wide_end)
        for page in self.iter_pages(created, cancel_event):
            pages += 1
            for node in page:
                add(node)

        updated = build_search_query("updated_at", window_start)
        for page in self.iter_pages(updated, cancel_event):
            pages += 1
            for node in page:
                if money_moved_between(node, window_start, window_end):
                    add(node)

        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelledError(f"Fetch for {self.connection.tenant_id} cancelled")

        logger.info(
            "Fetched %d orders for %s (%s to %s) in %d pages; %d duplicates, %d test orders dropped",
            len(seen),
            self.connection.tenant_id,
            since,
            until,
            pages,
            duplicates,
            tests,
        )
        return FetchResult(
            orders=list(seen.values()),
            pages=pages,
            duplicates=duplicates,
            fetched_at=datetime.now(timezone.utc),
        )
