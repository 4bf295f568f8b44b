"""
SQLite persistence for the per-product stock aggregate.

The engine never edits stock totals directly: it emits StockAdjustment
records (grams delta, new average cost or "unchanged") and this repository
applies them.  Each applied adjustment is also appended to the movement log
so stock history stays traceable.

Tables
------
  products   one row per (shop, product): total grams and average cost
  movements  append-only log of every adjustment applied
"""
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from models.stock import Movement, ProductCostState, StockAdjustment
from .document_store import sanitize_shop

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS products (
    shop                   TEXT NOT NULL,
    product_id             TEXT NOT NULL,
    total_grams            REAL NOT NULL DEFAULT 0,
    average_cost_per_gram  REAL NOT NULL DEFAULT 0,
    updated_at             TEXT NOT NULL,
    PRIMARY KEY (shop, product_id)
);

CREATE TABLE IF NOT EXISTS movements (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    shop                TEXT    NOT NULL,
    product_id          TEXT    NOT NULL,
    timestamp           TEXT    NOT NULL,   -- ISO-8601 UTC
    source              TEXT    NOT NULL,   -- receipt | intake | consumption | adjustment
    grams_delta         REAL    NOT NULL,
    total_after         REAL    NOT NULL,
    average_cost_after  REAL    NOT NULL,
    reference_id        TEXT
);

CREATE INDEX IF NOT EXISTS idx_movements_product   ON movements (shop, product_id);
CREATE INDEX IF NOT EXISTS idx_movements_timestamp ON movements (timestamp DESC);
"""


class StockRepository:
    """Thin wrapper around an SQLite database file holding stock totals."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    @contextmanager
    def _conn(self):
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._conn() as conn:
            conn.executescript(_SCHEMA)
        logger.debug("Stock schema ready: %s", self.db_path)

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def apply(self, shop: str, adjustment: StockAdjustment) -> ProductCostState:
        """
        Apply one adjustment and log it.  Totals never go below zero; a
        None average leaves the stored average as it is.
        """
        shop_key = sanitize_shop(shop)
        now = datetime.now(timezone.utc).isoformat()

        with self._conn() as conn:
            row = conn.execute(
                "SELECT total_grams, average_cost_per_gram FROM products "
                "WHERE shop=? AND product_id=?",
                (shop_key, adjustment.product_id),
            ).fetchone()
            total = row["total_grams"] if row else 0.0
            average = row["average_cost_per_gram"] if row else 0.0

            total = max(total + adjustment.grams_delta, 0.0)
            if adjustment.new_average_cost_per_gram is not None:
                average = adjustment.new_average_cost_per_gram

            conn.execute(
                """
                INSERT INTO products (shop, product_id, total_grams, average_cost_per_gram, updated_at)
                VALUES (:shop, :product_id, :total, :average, :now)
                ON CONFLICT(shop, product_id) DO UPDATE SET
                    total_grams           = excluded.total_grams,
                    average_cost_per_gram = excluded.average_cost_per_gram,
                    updated_at            = excluded.updated_at
                """,
                {
                    "shop":       shop_key,
                    "product_id": adjustment.product_id,
                    "total":      total,
                    "average":    average,
                    "now":        now,
                },
            )
            conn.execute(
                """INSERT INTO movements (
                       shop, product_id, timestamp, source, grams_delta,
                       total_after, average_cost_after, reference_id
                   ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    shop_key,
                    adjustment.product_id,
                    now,
                    adjustment.source,
                    adjustment.grams_delta,
                    total,
                    average,
                    adjustment.reference_id,
                ),
            )

        logger.info(
            "Stock adjusted: shop=%s product=%s delta=%+g total=%g avg=%.4f source=%s",
            shop_key, adjustment.product_id, adjustment.grams_delta, total, average,
            adjustment.source,
        )
        return ProductCostState(
            product_id=adjustment.product_id,
            total_grams=total,
            average_cost_per_gram=average,
            updated_at=now,
        )

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def get(self, shop: str, product_id: str) -> ProductCostState:
        """Current state of a product (zeroes for an unknown product)."""
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM products WHERE shop=? AND product_id=?",
                (sanitize_shop(shop), product_id),
            ).fetchone()
        if row is None:
            return ProductCostState(product_id=product_id)
        return ProductCostState(
            product_id=product_id,
            total_grams=row["total_grams"],
            average_cost_per_gram=row["average_cost_per_gram"],
            updated_at=row["updated_at"],
        )

    def list_products(self, shop: str) -> list[ProductCostState]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM products WHERE shop=? ORDER BY product_id",
                (sanitize_shop(shop),),
            ).fetchall()
        return [
            ProductCostState(
                product_id=r["product_id"],
                total_grams=r["total_grams"],
                average_cost_per_gram=r["average_cost_per_gram"],
                updated_at=r["updated_at"],
            )
            for r in rows
        ]

    def list_movements(
        self,
        shop: str,
        product_id: Optional[str] = None,
        limit: int = 200,
    ) -> list[Movement]:
        """Most recent movements first."""
        sql = "SELECT * FROM movements WHERE shop=?"
        params: list = [sanitize_shop(shop)]
        if product_id is not None:
            sql += " AND product_id=?"
            params.append(product_id)
        sql += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        with self._conn() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [Movement(**dict(r)) for r in rows]
