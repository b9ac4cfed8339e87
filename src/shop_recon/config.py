"""Unified configuration for the reconciliation engine.

This module provides a single configuration class used by the fetcher,
the store, the driver and the CLI. Values can be given directly or read
from the environment with ``ReconConfig.from_env()``.

Environment:
    RECON_DATABASE_URL: SQLAlchemy URL of the daily sales store.
    SHOPIFY_API_VERSION: Admin API version (default 2023-10).
    RECON_HTTP_TIMEOUT: Per-request timeout in seconds (default 60).
    RECON_MAX_RETRIES: Retry budget for transient fetch errors (default 5).
    RECON_BACKOFF_FACTOR: Base of the exponential backoff in seconds (default 0.8).
    RECON_MAX_BACKOFF: Ceiling for a single backoff wait in seconds (default 30).
    RECON_PAGE_SIZE: Orders per API page (default 100).
    RECON_TIMEZONE: Fallback tenant timezone (default Europe/Stockholm).
    RECON_LOOKBACK_DAYS: Window length when the scheduler omits one (default 7).
    RECON_EXCLUDE_TEST_ORDERS: "true"/"false" (default true).
    RECON_CONNECTIONS_JSON: Path to the tenant connections file.
    RECON_RUNS_DIR: Directory for run metadata JSON files.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from shop_recon.exceptions import ConfigError
from shop_recon.utils import get_timezone

DEFAULT_DATABASE_URL = "sqlite:///daily_sales.db"
DEFAULT_API_VERSION = "2023-10"
DEFAULT_TIMEZONE = "Europe/Stockholm"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass
class ReconConfig:
    """Settings shared by every reconciliation run.

    Attributes:
        database_url: SQLAlchemy URL of the daily sales store.
        api_version: Admin API version segment of the GraphQL endpoint.
        timeout: Default timeout for each HTTP request, in seconds.
        max_retries: Attempts after the first one for transient fetch errors.
        backoff_factor: Base backoff in seconds; attempt n waits factor * 2**n.
        max_backoff: Upper bound for a single backoff wait, in seconds.
        page_size: Orders requested per page (the API caps this at 250).
        default_timezone: Timezone used when a connection does not carry one.
        lookback_days: Window length used when the scheduler gives no dates.
        exclude_test_orders: Drop orders flagged as test orders at fetch time.
        connections_json: Path to the tenant connections file, if any.
        runs_dir: Directory for run metadata files, or None to skip them.
    """

    database_url: str = DEFAULT_DATABASE_URL
    api_version: str = DEFAULT_API_VERSION
    timeout: float = 60.0
    max_retries: int = 5
    backoff_factor: float = 0.8
    max_backoff: float = 30.0
    page_size: int = 100
    default_timezone: str = DEFAULT_TIMEZONE
    lookback_days: int = 7
    exclude_test_orders: bool = True
    connections_json: Path | None = None
    runs_dir: Path | None = None

    def __post_init__(self) -> None:
        if isinstance(self.connections_json, str):
            self.connections_json = Path(self.connections_json)
        if isinstance(self.runs_dir, str):
            self.runs_dir = Path(self.runs_dir)
        if self.max_retries < 0:
            raise ConfigError(f"max_retries must be >= 0, got {self.max_retries}")
        if not 1 <= self.page_size <= 250:
            raise ConfigError(f"page_size must be between 1 and 250, got {self.page_size}")
        if self.lookback_days < 1:
            raise ConfigError(f"lookback_days must be >= 1, got {self.lookback_days}")
        try:
            get_timezone(self.default_timezone)
        except ValueError as e:
            raise ConfigError(str(e)) from e

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ReconConfig:
        """Build a configuration from environment variables.

        Args:
            environ: Mapping to read from (default: ``os.environ``).

        Returns:
            ReconConfig with defaults for every unset variable.

        Raises:
            ConfigError: If a variable holds an invalid value.

        Examples:
            >>> cfg = ReconConfig.from_env({"RECON_MAX_RETRIES": "2"})
            >>> cfg.max_retries
            2
        """
        env = os.environ if environ is None else environ

        connections = env.get("RECON_CONNECTIONS_JSON")
        runs_dir = env.get("RECON_RUNS_DIR")

        return cls(
            database_url=env.get("RECON_DATABASE_URL", DEFAULT_DATABASE_URL),
            api_version=env.get("SHOPIFY_API_VERSION", DEFAULT_API_VERSION),
            timeout=_number(env, "RECON_HTTP_TIMEOUT", 60.0, float),
            max_retries=_number(env, "RECON_MAX_RETRIES", 5, int),
            backoff_factor=_number(env, "RECON_BACKOFF_FACTOR", 0.8, float),
            max_backoff=_number(env, "RECON_MAX_BACKOFF", 30.0, float),
            page_size=_number(env, "RECON_PAGE_SIZE", 100, int),
            default_timezone=env.get("RECON_TIMEZONE", DEFAULT_TIMEZONE),
            lookback_days=_number(env, "RECON_LOOKBACK_DAYS", 7, int),
            exclude_test_orders=_flag(env, "RECON_EXCLUDE_TEST_ORDERS", True),
            connections_json=Path(connections) if connections else None,
            runs_dir=Path(runs_dir) if runs_dir else None,
        )


def _number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got '{raw}'") from None


def _flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigError(f"{name} must be true or false, got '{raw}'")
