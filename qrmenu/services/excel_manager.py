"""
Order History Ledger with Concurrency Control

Appends finished (complete or cancelled) orders to an Excel workbook.
Several Celery workers may export at once, so every read-modify-write of
the workbook happens under a file lock.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from filelock import FileLock, Timeout

from qrmenu.core.config import get_settings

logger = logging.getLogger(__name__)


class LedgerManager:
    """Process- and thread-safe Excel ledger of finished orders."""

    COLUMNS = [
        "order_id",
        "restaurant_id",
        "table_number",
        "customer_name",
        "items",
        "item_count",
        "total_amount",
        "order_status",
        "created_at",
        "closed_at",
        "exported_at",
    ]

    def __init__(
        self,
        data_directory: Optional[str] = None,
        filename: Optional[str] = None,
        lock_timeout: Optional[int] = None,
    ):
        settings = get_settings()
        self.data_dir = Path(data_directory or settings.data_directory)
        self.ledger_file = self.data_dir / (filename or settings.ledger_filename)
        self.lock_file = self.data_dir / f"{self.ledger_file.name}.lock"
        self.lock_timeout = lock_timeout if lock_timeout is not None else settings.ledger_lock_timeout

    def _ensure_data_dir(self) -> None:
        """Create data directory if needed."""
        if not self.data_dir.exists():
            self.data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {self.data_dir}")

    def _load_or_create_df(self) -> pd.DataFrame:
        """Load existing ledger or start an empty one."""
        if self.ledger_file.exists():
            return pd.read_excel(self.ledger_file, engine="openpyxl", dtype={"order_id": str})
        return pd.DataFrame(columns=self.COLUMNS)

    def export_order(self, order_data: dict[str, Any]) -> dict[str, Any]:
        """
        Append one order to the ledger, replacing an earlier row for the same
        order (an order can only close once, but a retried task may re-run).
        """
        self._ensure_data_dir()

        order_id = order_data.get("order_id", "unknown")
        result = {
            "success": False,
            "message": "",
            "order_id": order_id,
            "exported_at": None,
        }

        try:
            lock = FileLock(str(self.lock_file), timeout=self.lock_timeout)

            with lock:
                logger.debug(f"Lock acquired for order {order_id}")

                df = self._load_or_create_df()
                if not df.empty:
                    df = df[df["order_id"] != order_id]

                export_time = datetime.now(timezone.utc).isoformat()
                new_row = {column: order_data.get(column) for column in self.COLUMNS}
                new_row["exported_at"] = export_time

                new_df = pd.DataFrame([new_row], columns=self.COLUMNS)
                df = new_df if df.empty else pd.concat([df, new_df], ignore_index=True)
                df.to_excel(str(self.ledger_file), index=False, engine="openpyxl")

                logger.info(f"Order {order_id} written to ledger")

                result["success"] = True
                result["message"] = f"Order {order_id} exported"
                result["exported_at"] = export_time

            logger.debug(f"Lock released for order {order_id}")

        except Timeout:
            result["message"] = f"Lock timeout ({self.lock_timeout}s)"
            logger.error(f"Ledger lock timeout for order {order_id}")

        return result

    def get_all_orders(self) -> list[dict[str, Any]]:
        """Every ledger row, oldest export first."""
        if not self.ledger_file.exists():
            return []
        df = pd.read_excel(self.ledger_file, engine="openpyxl", dtype={"order_id": str})
        return df.to_dict("records")

    def clear(self) -> bool:
        """Delete the ledger and its lock file."""
        for f in (self.ledger_file, self.lock_file):
            if f.exists():
                f.unlink()
        logger.info("Ledger cleared")
        return True
