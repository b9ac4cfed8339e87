"""Shop connection lookup for tenants.

The engine never obtains or refreshes credentials itself. It only asks a
credential store for "a working token for tenant X". Two adapters are
provided: a JSON file keyed by tenant id, and a single-tenant store read
from the environment.

Connections file shape::

    {
      "acme": {
        "shop": "acme-store.myshopify.com",
        "access_token": "shpat_...",
        "timezone": "Europe/Stockholm"
      }
    }
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from shop_recon.exceptions import ConfigError
from shop_recon.utils import get_timezone, normalize_shop_domain


@dataclass(frozen=True)
class ShopConnection:
    """Connection details for one tenant's shop.

    Attributes:
        tenant_id: Tenant identifier.
        shop: Normalized shop host (e.g., "acme.myshopify.com").
        access_token: Admin API access token.
        timezone: IANA timezone used to bucket the shop's orders, or None
            to use the configured default.
    """

    tenant_id: str
    shop: str
    access_token: str
    timezone: str | None = None

    def __repr__(self) -> str:
        return (
            f"ShopConnection(tenant_id={self.tenant_id!r}, shop={self.shop!r}, "
            f"access_token='***', timezone={self.timezone!r})"
        )


class CredentialStore(Protocol):
    """Anything that can hand out a shop connection for a tenant."""

    def get_connection(self, tenant_id: str) -> ShopConnection: ...


def _build_connection(tenant_id: str, rec: Mapping) -> ShopConnection:
    if not isinstance(rec, Mapping):
        raise ConfigError(f"Connection for tenant '{tenant_id}' must be an object")
    shop = rec.get("shop")
    token = rec.get("access_token")
    if not shop or not token:
        raise ConfigError(f"Connection for tenant '{tenant_id}' needs 'shop' and 'access_token'")
    tz = rec.get("timezone")
    if tz:
        try:
            get_timezone(tz)
        except ValueError as e:
            raise ConfigError(f"Tenant '{tenant_id}': {e}") from e
    return ShopConnection(
        tenant_id=tenant_id,
        shop=normalize_shop_domain(str(shop)),
        access_token=str(token),
        timezone=tz or None,
    )


def load_connections_from_json(path: Path) -> dict[str, ShopConnection]:
    """Load tenant connections from a JSON file.

    Args:
        path: Path to the connections file.

    Returns:
        Dictionary mapping tenant ids to ShopConnection objects.

    Raises:
        ConfigError: If the file cannot be read or an entry is incomplete.

    Examples:
        >>> conns = load_connections_from_json(Path("connections.json"))
        >>> conns["acme"].shop
        'acme-store.myshopify.com'
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot load connections from {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Connections file {path} must contain a JSON object")

    return {
        str(tenant_id): _build_connection(str(tenant_id), rec)
        for tenant_id, rec in data.items()
    }


class JsonCredentialStore:
    """Credential store backed by a connections JSON file.

    The file is read once, on construction.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._connections = load_connections_from_json(self.path)

    def tenants(self) -> list[str]:
        return sorted(self._connections)

    def get_connection(self, tenant_id: str) -> ShopConnection:
        try:
            return self._connections[tenant_id]
        except KeyError:
            raise ConfigError(f"No shop connection stored for tenant '{tenant_id}'") from None


class EnvCredentialStore:
    """Single-tenant credential store reading SHOPIFY_SHOP and SHOPIFY_ACCESS_TOKEN."""

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._env = os.environ if environ is None else environ

    def get_connection(self, tenant_id: str) -> ShopConnection:
        return _build_connection(
            tenant_id,
            {
                "shop": self._env.get("SHOPIFY_SHOP"),
                "access_token": self._env.get("SHOPIFY_ACCESS_TOKEN"),
                "timezone": self._env.get("SHOPIFY_TIMEZONE"),
            },
        )
