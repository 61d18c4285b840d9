from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Protocol

from stocktake_matcher.models import CatalogProduct, StockPhotoRecord


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CatalogStore(Protocol):
    """What the matcher needs from the inventory database."""

    def list_products(self, department: str | None = None) -> list[CatalogProduct]: ...

    def list_recent_stock_photos(self, department: str | None = None, limit: int = 200) -> list[StockPhotoRecord]: ...

    def list_stock_photos(self) -> list[StockPhotoRecord]: ...

    def stats(self) -> dict[str, Any]: ...

    def save_product_feature(self, product_id: str, summary: str, embedding: list[float], fingerprint: str) -> None: ...

    def save_stock_photo_feature(self, photo_id: str, summary: str, embedding: list[float], fingerprint: str) -> None: ...


def _load_list(raw: str | None) -> list[Any]:
    if not raw:
        return []
    value = json.loads(raw)
    return value if isinstance(value, list) else []


def _load_embedding(raw: str | None) -> list[float] | None:
    values = _load_list(raw)
    return [float(v) for v in values] if values else None


class InventoryDB:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS catalog_products (
                    id TEXT PRIMARY KEY,
                    product_code TEXT NOT NULL DEFAULT '',
                    name TEXT NOT NULL,
                    supplier_name TEXT NOT NULL DEFAULT '',
                    specification TEXT NOT NULL DEFAULT '',
                    storage_class TEXT NOT NULL DEFAULT '',
                    departments TEXT NOT NULL DEFAULT '[]',
                    unit TEXT NOT NULL DEFAULT 'P',
                    image_urls TEXT NOT NULL DEFAULT '[]',
                    feature_summary TEXT NOT NULL DEFAULT '',
                    feature_embedding TEXT,
                    feature_fingerprint TEXT,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS photo_records (
                    id TEXT PRIMARY KEY,
                    image_urls TEXT NOT NULL DEFAULT '[]',
                    department TEXT NOT NULL DEFAULT '',
                    captured_at TEXT NOT NULL,
                    product_id TEXT,
                    product_name TEXT NOT NULL DEFAULT '',
                    product_code TEXT NOT NULL DEFAULT '',
                    supplier_name TEXT NOT NULL DEFAULT '',
                    storage_class TEXT NOT NULL DEFAULT '',
                    feature_summary TEXT NOT NULL DEFAULT '',
                    feature_embedding TEXT,
                    feature_fingerprint TEXT,
                    FOREIGN KEY (product_id) REFERENCES catalog_products(id) ON DELETE SET NULL
                );

                CREATE INDEX IF NOT EXISTS idx_photo_records_department_captured
                    ON photo_records(department, captured_at);
                """
            )

    def upsert_products(self, products: Iterable[CatalogProduct]) -> None:
        """Insert or update catalog rows, keeping any feature already stored."""
        timestamp = _utc_now()
        payload = [
            (
                p.id,
                p.product_code,
                p.name,
                p.supplier_name,
                p.specification,
                p.storage_class,
                json.dumps(list(p.departments), ensure_ascii=False),
                p.unit,
                json.dumps(list(p.image_urls)),
                timestamp,
            )
            for p in products
        ]
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO catalog_products (
                    id, product_code, name, supplier_name, specification,
                    storage_class, departments, unit, image_urls, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    product_code=excluded.product_code,
                    name=excluded.name,
                    supplier_name=excluded.supplier_name,
                    specification=excluded.specification,
                    storage_class=excluded.storage_class,
                    departments=excluded.departments,
                    unit=excluded.unit,
                    image_urls=excluded.image_urls,
                    updated_at=excluded.updated_at
                """,
                payload,
            )

    def upsert_stock_photos(self, photos: Iterable[StockPhotoRecord]) -> None:
        payload = [
            (
                r.id,
                json.dumps(list(r.image_urls)),
                r.department,
                r.captured_at or _utc_now(),
                r.assigned_product_id,
                r.product_name,
                r.product_code,
                r.supplier_name,
                r.storage_class,
            )
            for r in photos
        ]
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO photo_records (
                    id, image_urls, department, captured_at, product_id,
                    product_name, product_code, supplier_name, storage_class
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    image_urls=excluded.image_urls,
                    department=excluded.department,
                    captured_at=excluded.captured_at,
                    product_id=excluded.product_id,
                    product_name=excluded.product_name,
                    product_code=excluded.product_code,
                    supplier_name=excluded.supplier_name,
                    storage_class=excluded.storage_class
                """,
                payload,
            )

    @staticmethod
    def _product_from_row(row: sqlite3.Row) -> CatalogProduct:
        return CatalogProduct(
            id=row["id"],
            name=row["name"],
            product_code=row["product_code"],
            supplier_name=row["supplier_name"],
            specification=row["specification"],
            storage_class=row["storage_class"],
            departments=tuple(str(d) for d in _load_list(row["departments"])),
            unit=row["unit"],
            image_urls=tuple(str(u) for u in _load_list(row["image_urls"])),
            feature_summary=row["feature_summary"],
            feature_embedding=_load_embedding(row["feature_embedding"]),
            feature_fingerprint=row["feature_fingerprint"],
        )

    @staticmethod
    def _photo_from_row(row: sqlite3.Row) -> StockPhotoRecord:
        return StockPhotoRecord(
            id=row["id"],
            image_urls=tuple(str(u) for u in _load_list(row["image_urls"])),
            department=row["department"],
            captured_at=row["captured_at"],
            assigned_product_id=row["product_id"],
            product_name=row["product_name"],
            product_code=row["product_code"],
            supplier_name=row["supplier_name"],
            storage_class=row["storage_class"],
            feature_summary=row["feature_summary"],
            feature_embedding=_load_embedding(row["feature_embedding"]),
            feature_fingerprint=row["feature_fingerprint"],
        )

    def list_products(self, department: str | None = None) -> list[CatalogProduct]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM catalog_products ORDER BY rowid ASC").fetchall()
        products = [self._product_from_row(row) for row in rows]
        if department:
            products = [p for p in products if department in p.departments]
        return products

    def list_recent_stock_photos(self, department: str | None = None, limit: int = 200) -> list[StockPhotoRecord]:
        with self._connect() as conn:
            if department:
                rows = conn.execute(
                    """
                    SELECT * FROM photo_records
                    WHERE department = ?
                    ORDER BY captured_at DESC
                    LIMIT ?
                    """,
                    (department, limit),
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM photo_records
                    ORDER BY captured_at DESC
                    LIMIT ?
                    """,
                    (limit,),
                ).fetchall()
        return [self._photo_from_row(row) for row in rows]

    def list_stock_photos(self) -> list[StockPhotoRecord]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM photo_records ORDER BY captured_at DESC").fetchall()
        return [self._photo_from_row(row) for row in rows]

    def save_product_feature(self, product_id: str, summary: str, embedding: list[float], fingerprint: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE catalog_products
                SET feature_summary = ?, feature_embedding = ?, feature_fingerprint = ?
                WHERE id = ?
                """,
                (summary, json.dumps(embedding), fingerprint, product_id),
            )

    def save_stock_photo_feature(self, photo_id: str, summary: str, embedding: list[float], fingerprint: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE photo_records
                SET feature_summary = ?, feature_embedding = ?, feature_fingerprint = ?
                WHERE id = ?
                """,
                (summary, json.dumps(embedding), fingerprint, photo_id),
            )

    def stats(self) -> dict[str, Any]:
        with self._connect() as conn:
            counts = conn.execute(
                """
                SELECT
                  (SELECT COUNT(*) FROM catalog_products) AS product_count,
                  (SELECT COUNT(*) FROM catalog_products WHERE feature_embedding IS NOT NULL) AS product_feature_count,
                  (SELECT COUNT(*) FROM photo_records) AS photo_count,
                  (SELECT COUNT(*) FROM photo_records WHERE feature_embedding IS NOT NULL) AS photo_feature_count
                """
            ).fetchone()
        if not counts:
            return {"product_count": 0, "product_feature_count": 0, "photo_count": 0, "photo_feature_count": 0}
        return dict(counts)
