"""Reconciliation driver: fetch, normalize, classify, aggregate, persist.

One pass handles one ``(tenant, mode, window)`` request and walks the
states::

    FETCHING -> NORMALIZING -> CLASSIFYING -> AGGREGATING -> PERSISTING -> DONE

Any error moves the run to ``FAILED`` and nothing is written: the
store's previously committed days stay as they were. Re-invoking the
same window is the retry mechanism; the driver never retries itself.

Each pass is scoped to a caller-owned ``RunContext``. There is no
process-wide state, so runs for different tenants can execute
concurrently.

Examples:
    >>> from shop_recon.driver import run_job
    >>> results = run_job("acme", since="2025-01-01", until="2025-01-31")
    >>> [(r.context.mode.value, r.state.value) for r in results]
    [('shopify', 'DONE'), ('financial', 'DONE')]
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError

from shop_recon import __version__
from shop_recon.config import ReconConfig
from shop_recon.credentials import (
    CredentialStore,
    EnvCredentialStore,
    JsonCredentialStore,
    ShopConnection,
)
from shop_recon.exceptions import AuthError, ReconError, RunCancelledError, TransientFetchError
from shop_recon.metadata import RunMetadata, write_metadata
from shop_recon.orders.classify import classify_customers
from shop_recon.orders.extract import ShopifyOrdersFetcher
from shop_recon.orders.transform import normalize_orders
from shop_recon.sales.calculate import compute_daily_aggregates
from shop_recon.sales.store import DailySalesStore
from shop_recon.types import FetchResult, Mode
from shop_recon.utils import format_duration, get_timezone, parse_date

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    FETCHING = "FETCHING"
    NORMALIZING = "NORMALIZING"
    CLASSIFYING = "CLASSIFYING"
    AGGREGATING = "AGGREGATING"
    PERSISTING = "PERSISTING"
    DONE = "DONE"
    FAILED = "FAILED"


PIPELINE = (
    RunState.FETCHING,
    RunState.NORMALIZING,
    RunState.CLASSIFYING,
    RunState.AGGREGATING,
    RunState.PERSISTING,
    RunState.DONE,
)
TERMINAL = frozenset({RunState.DONE, RunState.FAILED})


class OrderSource(Protocol):
    """What the driver needs from a fetcher."""

    def fetch_orders(
        self,
        since: date,
        until: date,
        *,
        timezone_name: str,
        cancel_event: threading.Event | None = None,
    ) -> FetchResult: ...


@dataclass(frozen=True)
class RunContext:
    """Caller-owned scope of one reconciliation pass.

    Attributes:
        tenant_id: Tenant identifier.
        since: First local date of the window (inclusive).
        until: Last local date of the window (inclusive).
        mode: Bucketing mode.
        timezone: Tenant timezone the window is expressed in.
    """

    tenant_id: str
    since: date
    until: date
    mode: Mode
    timezone: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "mode", Mode.parse(self.mode))
        if self.since > self.until:
            raise ValueError(f"since ({self.since}) is after until ({self.until})")
        get_timezone(self.timezone)


@dataclass
class RunFailure:
    """Structured failure reason relayed to the scheduler.

    Attributes:
        error_kind: Exception class name (e.g., "TransientFetchError").
        message: Human-readable message.
        state: State the run was in when it failed.
        retryable: Whether re-invoking the window later may succeed.
        needs_reauth: Whether the tenant must re-authenticate first.
    """

    error_kind: str
    message: str
    state: str
    retryable: bool = False
    needs_reauth: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_kind": self.error_kind,
            "message": self.message,
            "state": self.state,
            "retryable": self.retryable,
            "needs_reauth": self.needs_reauth,
        }


@dataclass
class RunResult:
    """Outcome of one reconciliation pass."""

    context: RunContext
    state: RunState = RunState.FETCHING
    history: list[RunState] = field(default_factory=lambda: [RunState.FETCHING])
    orders_fetched: int = 0
    orders_normalized: int = 0
    skipped_orders: list[str] = field(default_factory=list)
    unclassified_orders: int = 0
    possibly_stale_labels: int = 0
    rows_written: int = 0
    failure: RunFailure | None = None
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.state is RunState.DONE

    def advance(self, state: RunState) -> None:
        """Move to the next pipeline state.

        Raises:
            RuntimeError: If the move skips a state, re-enters one, or
                leaves a terminal state.
        """
        if self.state in TERMINAL:
            raise RuntimeError(f"Run already finished in {self.state.value}")
        if state is not RunState.FAILED:
            expected = PIPELINE[PIPELINE.index(self.state) + 1]
            if state is not expected:
                raise RuntimeError(f"Cannot move from {self.state.value} to {state.value}")
        logger.debug(
            "%s/%s: %s -> %s",
            self.context.tenant_id,
            self.context.mode.value,
            self.state.value,
            state.value,
        )
        self.state = state
        self.history.append(state)

    def fail(self, error: BaseException) -> None:
        self.failure = RunFailure(
            error_kind=type(error).__name__,
            message=str(error),
            state=self.state.value,
            retryable=isinstance(error, (TransientFetchError, SQLAlchemyError)),
            needs_reauth=isinstance(error, AuthError),
        )
        self.advance(RunState.FAILED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.context.tenant_id,
            "mode": self.context.mode.value,
            "since": self.context.since.isoformat(),
            "until": self.context.until.isoformat(),
            "state": self.state.value,
            "history": [s.value for s in self.history],
            "orders_fetched": self.orders_fetched,
            "orders_normalized": self.orders_normalized,
            "skipped_orders": list(self.skipped_orders),
            "unclassified_orders": self.unclassified_orders,
            "possibly_stale_labels": self.possibly_stale_labels,
            "rows_written": self.rows_written,
            "failure": self.failure.to_dict() if self.failure else None,
        }


def _record(result: RunResult, runs_dir: Path | None) -> None:
    if runs_dir is None:
        return
    ctx = result.context
    write_metadata(
        runs_dir,
        RunMetadata(
            tenant_id=ctx.tenant_id,
            mode=ctx.mode.value,
            start_date=ctx.since.isoformat(),
            end_date=ctx.until.isoformat(),
            version=__version__,
            last_run=datetime.now(timezone.utc).isoformat(),
            status="ok" if result.ok else "failed",
            state=result.state.value,
            rows_written=result.rows_written,
            failure=result.failure.to_dict() if result.failure else None,
            skipped_orders=list(result.skipped_orders),
        ),
    )


def reconcile_window(
    ctx: RunContext,
    source: OrderSource,
    store: DailySalesStore,
    *,
    cancel_event: threading.Event | None = None,
    runs_dir: Path | None = None,
) -> RunResult:
    """Run one reconciliation pass for a tenant, mode and window.

    Errors raised by the pipeline (every ``ReconError`` and database
    errors) end the run in ``FAILED`` with a structured reason; they are
    not re-raised. Anything else is recorded and then re-raised, since it
    points at a defect rather than at the data.

    Args:
        ctx: Tenant, window, mode and timezone of the pass.
        source: Fetcher for the tenant's orders.
        store: Daily aggregate store.
        cancel_event: When set, the run stops before persisting anything.
        runs_dir: Directory for run metadata, or None to skip it.

    Returns:
        RunResult describing the terminal state.
    """
    result = RunResult(context=ctx)
    started = time.monotonic()
    logger.info(
        "Reconciling %s %s from %s to %s (%s)",
        ctx.tenant_id,
        ctx.mode.value,
        ctx.since,
        ctx.until,
        ctx.timezone,
    )

    try:
        fetched = source.fetch_orders(
            ctx.since,
            ctx.until,
            timezone_name=ctx.timezone,
            cancel_event=cancel_event,
        )
        result.orders_fetched = len(fetched.orders)

        result.advance(RunState.NORMALIZING)
        normalized = normalize_orders(fetched.orders)
        result.orders_normalized = len(normalized.orders)
        result.skipped_orders = normalized.skipped_ids

        result.advance(RunState.CLASSIFYING)
        classification = classify_customers(normalized.orders, observed_at=fetched.fetched_at)
        result.unclassified_orders = len(classification.unclassified)
        result.possibly_stale_labels = len(classification.possibly_stale)

        result.advance(RunState.AGGREGATING)
        rows = compute_daily_aggregates(
            normalized.orders,
            classification,
            ctx.mode,
            tenant_id=ctx.tenant_id,
            timezone=ctx.timezone,
            since=ctx.since,
            until=ctx.until,
        )

        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelledError(f"Run for {ctx.tenant_id} cancelled before persisting")

        result.advance(RunState.PERSISTING)
        result.rows_written = store.replace_window(ctx.tenant_id, ctx.mode, ctx.since, ctx.until, rows)

        result.advance(RunState.DONE)
    except (ReconError, SQLAlchemyError) as e:
        result.fail(e)
    except Exception as e:
        result.fail(e)
        result.duration_seconds = time.monotonic() - started
        _record(result, runs_dir)
        raise

    result.duration_seconds = time.monotonic() - started
    if result.ok:
        logger.info(
            "%s %s done: %d rows in %s (%d orders, %d skipped)",
            ctx.tenant_id,
            ctx.mode.value,
            result.rows_written,
            format_duration(result.duration_seconds),
            result.orders_normalized,
            len(result.skipped_orders),
        )
    else:
        logger.error(
            "%s %s failed in %s: %s: %s",
            ctx.tenant_id,
            ctx.mode.value,
            result.failure.state,
            result.failure.error_kind,
            result.failure.message,
        )
    _record(result, runs_dir)
    return result


def default_window(lookback_days: int, tz: str, today: date | None = None) -> tuple[date, date]:
    """Last ``lookback_days`` local days ending today, inclusive."""
    if today is None:
        today = datetime.now(get_timezone(tz)).date()
    return today - timedelta(days=lookback_days - 1), today


def _as_date(value: date | str | None) -> date | None:
    if value is None or isinstance(value, date):
        return value
    return parse_date(value)


def run_job(
    tenant_id: str,
    mode: Mode | str | None = None,
    since: date | str | None = None,
    until: date | str | None = None,
    *,
    config: ReconConfig | None = None,
    credentials: CredentialStore | None = None,
    store: DailySalesStore | None = None,
    fetcher_factory: Callable[[ShopConnection, ReconConfig], OrderSource] | None = None,
    cancel_event: threading.Event | None = None,
    today: date | None = None,
) -> list[RunResult]:
    """Scheduler entry point: reconcile a tenant for one or both modes.

    Without a mode both modes run, each as its own independent pass.
    Without dates the window is the last ``config.lookback_days`` days
    ending today in the tenant's timezone; a single missing bound is
    filled from that default.

    Args:
        tenant_id: Tenant identifier.
        mode: "shopify", "financial", or None for both.
        since: First date of the window (inclusive).
        until: Last date of the window (inclusive).
        config: Settings (default: ``ReconConfig.from_env()``).
        credentials: Connection store (default: the configured JSON file,
            else the environment).
        store: Daily aggregate store (default: ``config.database_url``).
        fetcher_factory: Builds the order source for a connection
            (default: ``ShopifyOrdersFetcher``).
        cancel_event: Shared cancellation flag for the passes.
        today: Override for "today" when deriving the default window.

    Returns:
        One RunResult per mode, in the order they ran.

    Raises:
        ConfigError: If the tenant has no usable connection.
        ValueError: If mode or the dates are invalid.
    """
    config = config or ReconConfig.from_env()
    if credentials is None:
        if config.connections_json is not None:
            credentials = JsonCredentialStore(config.connections_json)
        else:
            credentials = EnvCredentialStore()

    connection = credentials.get_connection(tenant_id)
    tz = connection.timezone or config.default_timezone

    default_since, default_until = default_window(config.lookback_days, tz, today)
    start = _as_date(since) or default_since
    end = _as_date(until) or default_until

    modes = [Mode.parse(mode)] if mode is not None else [Mode.SHOPIFY, Mode.FINANCIAL]
    store = store or DailySalesStore(config.database_url)
    factory = fetcher_factory or ShopifyOrdersFetcher
    source = factory(connection, config)

    results = []
    for m in modes:
        ctx = RunContext(tenant_id=tenant_id, since=start, until=end, mode=m, timezone=tz)
        results.append(
            reconcile_window(ctx, source, store, cancel_event=cancel_event, runs_dir=config.runs_dir)
        )
    return results
