"""Daily aggregate store backed by SQLAlchemy.

Rows live in a single ``daily_sales`` table keyed by
``(tenant_id, date, mode)``. Writes use the dialect's
``INSERT ... ON CONFLICT DO UPDATE`` so replaying a window overwrites
rows instead of accumulating them, and every write call runs in one
transaction so a window becomes visible all at once or not at all.

SQLite and PostgreSQL are supported.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import date
from typing import Any

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine

from shop_recon.exceptions import ConfigError
from shop_recon.types import DailySalesRow, Mode
from shop_recon.utils import parse_date

logger = logging.getLogger(__name__)

TABLE_DAILY_SALES = "daily_sales"
KEY_COLUMNS = ("tenant_id", "date", "mode")
MONEY_COLUMNS = (
    "gross_sales_excl_tax",
    "discounts_excl_tax",
    "refunds_excl_tax",
    "net_sales_excl_tax",
    "tax_total",
)
SPLIT_COLUMNS = (
    "new_customer_net_sales",
    "returning_customer_net_sales",
    "guest_net_sales",
)

# Rows per INSERT statement; all chunks share one transaction
BATCH_SIZE = 500

metadata = sa.MetaData()


def _money_column(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.Numeric(14, 2, asdecimal=True), nullable=nullable)


daily_sales_table = sa.Table(
    TABLE_DAILY_SALES,
    metadata,
    sa.Column("tenant_id", sa.String(64), primary_key=True),
    sa.Column("date", sa.Date, primary_key=True),
    sa.Column("mode", sa.String(16), primary_key=True),
    *[_money_column(name) for name in MONEY_COLUMNS],
    sa.Column("orders_count", sa.Integer, nullable=False),
    sa.Column("currency", sa.String(3), nullable=False),
    *[_money_column(name, nullable=True) for name in SPLIT_COLUMNS],
    sa.CheckConstraint("mode in ('shopify', 'financial')", name="ck_daily_sales_mode"),
)


def _to_record(row: DailySalesRow) -> dict[str, Any]:
    record = row.to_dict()
    record["date"] = parse_date(row.date)
    return record


def _from_record(record: Any) -> DailySalesRow:
    values = record._mapping
    return DailySalesRow(
        tenant_id=values["tenant_id"],
        date=values["date"].isoformat(),
        mode=Mode(values["mode"]),
        gross_sales_excl_tax=values["gross_sales_excl_tax"],
        discounts_excl_tax=values["discounts_excl_tax"],
        refunds_excl_tax=values["refunds_excl_tax"],
        net_sales_excl_tax=values["net_sales_excl_tax"],
        tax_total=values["tax_total"],
        orders_count=values["orders_count"],
        currency=values["currency"],
        new_customer_net_sales=values["new_customer_net_sales"],
        returning_customer_net_sales=values["returning_customer_net_sales"],
        guest_net_sales=values["guest_net_sales"],
    )


class DailySalesStore:
    """Idempotent store for ``DailySalesRow`` records.

    Args:
        engine: A SQLAlchemy engine or a database URL.
        create_schema: Create the table if it does not exist (default: True).

    Examples:
        >>> store = DailySalesStore("sqlite:///daily_sales.db")
        >>> store.upsert_daily_sales(rows)
        3
        >>> store.query_range("acme", "shopify", "2024-03-01", "2024-03-31")
        [DailySalesRow(tenant_id='acme', date='2024-03-01', ...), ...]
    """

    def __init__(self, engine: Engine | str, create_schema: bool = True) -> None:
        self.engine = sa.create_engine(engine) if isinstance(engine, str) else engine
        if self.engine.dialect.name == "sqlite":
            self._insert = sqlite_insert
        elif self.engine.dialect.name == "postgresql":
            self._insert = pg_insert
        else:
            raise ConfigError(
                f"Unsupported database dialect '{self.engine.dialect.name}'; use sqlite or postgresql"
            )
        if create_schema:
            metadata.create_all(self.engine)

    def _upsert(self, conn: Connection, records: Sequence[dict[str, Any]]) -> None:
        for start in range(0, len(records), BATCH_SIZE):
            chunk = list(records[start : start + BATCH_SIZE])
            stmt = self._insert(daily_sales_table).values(chunk)
            set_cols = {
                col.name: stmt.excluded[col.name]
                for col in daily_sales_table.columns
                if col.name not in KEY_COLUMNS
            }
            conn.execute(stmt.on_conflict_do_update(index_elements=list(KEY_COLUMNS), set_=set_cols))

    def upsert_daily_sales(self, rows: Iterable[DailySalesRow]) -> int:
        """Insert or wholesale-replace rows by (tenant_id, date, mode).

        The whole batch commits in one transaction, or not at all.

        Args:
            rows: Rows to write.

        Returns:
            Number of rows written.

        Raises:
            ValueError: If the batch holds the same key twice.
        """
        records = [_to_record(row) for row in rows]
        if not records:
            return 0
        keys = [(r["tenant_id"], r["date"], r["mode"]) for r in records]
        if len(set(keys)) != len(keys):
            raise ValueError("Batch contains duplicate (tenant_id, date, mode) keys")

        with self.engine.begin() as conn:
            self._upsert(conn, records)

        logger.info("Upserted %d daily sales rows", len(records))
        return len(records)

    def replace_window(
        self,
        tenant_id: str,
        mode: Mode | str,
        since: date | str,
        until: date | str,
        rows: Iterable[DailySalesRow],
    ) -> int:
        """Make the stored window for (tenant, mode) equal to ``rows``.

        Stored days inside ``[since, until]`` that are absent from ``rows``
        are deleted, and ``rows`` are upserted, in one transaction.

        Args:
            tenant_id: Tenant identifier.
            mode: "shopify" or "financial".
            since: First date of the window (inclusive).
            until: Last date of the window (inclusive).
            rows: Freshly computed rows for the window.

        Returns:
            Number of rows written.

        Raises:
            ValueError: If a row belongs to another tenant, mode or date range.
        """
        mode = Mode.parse(mode)
        start = parse_date(since) if isinstance(since, str) else since
        end = parse_date(until) if isinstance(until, str) else until

        records = [_to_record(row) for row in rows]
        for record in records:
            if record["tenant_id"] != tenant_id or record["mode"] != mode.value:
                raise ValueError(
                    f"Row {record['tenant_id']}/{record['mode']} does not belong to {tenant_id}/{mode.value}"
                )
            if not start <= record["date"] <= end:
                raise ValueError(f"Row date {record['date']} is outside {start}..{end}")

        keep = [record["date"] for record in records]
        table = daily_sales_table
        delete = sa.delete(table).where(
            table.c.tenant_id == tenant_id,
            table.c.mode == mode.value,
            table.c.date >= start,
            table.c.date <= end,
        )
        if keep:
            delete = delete.where(table.c.date.not_in(keep))

        with self.engine.begin() as conn:
            removed = conn.execute(delete).rowcount
            if records:
                self._upsert(conn, records)

        if removed:
            logger.info(
                "Removed %d stale %s rows for %s between %s and %s",
                removed,
                mode.value,
                tenant_id,
                start,
                end,
            )
        logger.info("Stored %d %s rows for %s (%s to %s)", len(records), mode.value, tenant_id, start, end)
        return len(records)

    def query_range(
        self,
        tenant_id: str,
        mode: Mode | str,
        start: date | str,
        end: date | str,
    ) -> list[DailySalesRow]:
        """Return stored rows for a tenant and mode, ascending by date.

        Missing dates are not filled in; see ``marts.fill_calendar_gaps``.

        Args:
            tenant_id: Tenant identifier.
            mode: "shopify" or "financial".
            start: First date (inclusive), date or YYYY-MM-DD.
            end: Last date (inclusive), date or YYYY-MM-DD.

        Returns:
            Rows with ``date`` as YYYY-MM-DD strings.
        """
        mode = Mode.parse(mode)
        start_d = parse_date(start) if isinstance(start, str) else start
        end_d = parse_date(end) if isinstance(end, str) else end

        table = daily_sales_table
        query = (
            sa.select(table)
            .where(
                table.c.tenant_id == tenant_id,
                table.c.mode == mode.value,
                table.c.date >= start_d,
                table.c.date <= end_d,
            )
            .order_by(table.c.date.asc())
        )
        with self.engine.connect() as conn:
            return [_from_record(r) for r in conn.execute(query)]
