"""Run metadata for reconciliation windows.

Each run can leave a JSON record under ``<runs_dir>/_meta/`` describing
its outcome, so operators and the scheduler can see which windows are
current and why a window failed.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class RunMetadata:
    """Metadata for a reconciliation run.

    Attributes:
        tenant_id: Tenant the run was for.
        mode: "shopify" or "financial".
        start_date: Start date in YYYY-MM-DD format.
        end_date: End date in YYYY-MM-DD format.
        version: Version of the package that produced the rows.
        last_run: ISO timestamp of when the run finished.
        status: "ok" or "failed".
        state: Terminal driver state ("DONE" or "FAILED").
        rows_written: Number of daily rows stored.
        failure: Structured failure reason, or None.
        skipped_orders: Ids of malformed orders the run skipped.
    """

    tenant_id: str
    mode: str
    start_date: str
    end_date: str
    version: str
    last_run: str  # ISO timestamp
    status: str  # "ok" | "failed"
    state: str
    rows_written: int = 0
    failure: dict[str, Any] | None = None
    skipped_orders: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert metadata to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> RunMetadata:
        """Create metadata from dictionary."""
        return cls(**data)


def metadata_path(runs_dir: Path, tenant_id: str, mode: str, start_date: str, end_date: str) -> Path:
    """Compute the metadata file path for a run window.

    Args:
        runs_dir: Base directory for run metadata.
        tenant_id: Tenant identifier.
        mode: "shopify" or "financial".
        start_date: Start date in YYYY-MM-DD format.
        end_date: End date in YYYY-MM-DD format.

    Returns:
        Path to the metadata JSON file.
    """
    safe_tenant = "".join(c if c.isalnum() or c in "-_." else "_" for c in tenant_id)
    return runs_dir / "_meta" / f"{safe_tenant}_{mode}_{start_date}_{end_date}.json"


def write_metadata(runs_dir: Path, metadata: RunMetadata) -> Path:
    """Write run metadata JSON to the _meta/ subdirectory.

    Returns:
        Path of the written file.
    """
    path = metadata_path(
        runs_dir, metadata.tenant_id, metadata.mode, metadata.start_date, metadata.end_date
    )
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        json.dump(metadata.to_dict(), f, indent=2, ensure_ascii=False)
    return path


def read_metadata(
    runs_dir: Path,
    tenant_id: str,
    mode: str,
    start_date: str,
    end_date: str,
) -> RunMetadata | None:
    """Read run metadata JSON if it exists.

    Returns:
        RunMetadata if the file exists and parses, None otherwise.

    Examples:
        >>> meta = read_metadata(Path("runs"), "acme", "shopify", "2025-01-01", "2025-01-31")
        >>> if meta and meta.status == "ok":
        ...     print("Window is current")
    """
    path = metadata_path(runs_dir, tenant_id, mode, start_date, end_date)

    if not path.exists():
        return None

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return RunMetadata.from_dict(data)
    except (json.JSONDecodeError, KeyError, TypeError):
        # If metadata file is corrupted, treat as missing
        logger.warning("Ignoring unreadable run metadata %s", path)
        return None
