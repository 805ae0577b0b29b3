"""
SQLite Product Repository - Catalog Persistence
================================================

Stores the product/service catalog the assistant quotes from.
A stock of 0 means "unlimited" (services, digital goods).
"""

import sqlite3
import logging
import math
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional
from dataclasses import dataclass, asdict
from contextlib import contextmanager

logger = logging.getLogger(__name__)

LOW_STOCK_THRESHOLD = 5

# SQLite INTEGER is a signed 64-bit value
MAX_STORED_INT = 2**63 - 1


class ProductStoreError(Exception):
    """Base exception for product store errors."""
    pass


class DuplicateProductError(ProductStoreError):
    """Raised when another product already uses the same name."""
    pass


@dataclass
class Product:
    """Product record from database."""
    id: str
    name: str
    description: str
    category: str
    price: int = 0
    link: Optional[str] = None
    stock: int = 0
    created_at: str = ""
    updated_at: str = ""

    @property
    def is_available(self) -> bool:
        # 0 = unlimited
        return self.stock >= 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["createdAt"] = data.pop("created_at")
        data["updatedAt"] = data.pop("updated_at")
        return data


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError, OverflowError):
        return False


def validate_product_input(data: dict) -> List[str]:
    """Return a list of validation errors (empty when valid)."""
    errors = []

    for key in ("name", "description", "category"):
        value = data.get(key)
        if not isinstance(value, str) or not value.strip():
            errors.append(f"{key.capitalize()} is required")

    for key in ("price", "stock"):
        value = data.get(key)
        if value is None or value == "":
            continue
        if not _is_number(value) or float(value) < 0:
            errors.append(f"{key.capitalize()} must be a non-negative number")
        elif float(value) > MAX_STORED_INT:
            errors.append(f"{key.capitalize()} must not exceed {MAX_STORED_INT}")

    return errors


def sanitize_product_data(data: dict) -> dict:
    """Trim strings and coerce numbers; call after validate_product_input."""
    def to_int(value: Any) -> int:
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return 0

    link = data.get("link")
    return {
        "name": data["name"].strip(),
        "description": data["description"].strip(),
        "category": data["category"].strip(),
        "price": to_int(data.get("price")),
        "link": link.strip() if isinstance(link, str) and link.strip() else None,
        "stock": to_int(data.get("stock")),
    }


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProductRepository:
    """
    SQLite product catalog.

    Usage:
        repo = ProductRepository("config/products.db")
        repo.init()

        product = repo.create_product({"name": "Logo Design", "description": "...",
                                       "category": "service", "price": 150000})
        repo.search(q="logo")
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)

    @contextmanager
    def _get_connection(self):
        """Get database connection with context manager."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def init(self):
        """Initialize database tables."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS products (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT NOT NULL,
                    category TEXT NOT NULL,
                    price INTEGER DEFAULT 0,
                    link TEXT,
                    stock INTEGER DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_products_name ON products (name COLLATE NOCASE)"
            )

            logger.info(f"Product database initialized: {self.db_path}")

    # ── Product CRUD ───────────────────────────────────────────────

    def list_products(self) -> List[Product]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM products ORDER BY created_at, rowid").fetchall()
            return [self._row_to_product(row) for row in rows]

    def get_product(self, product_id: str) -> Optional[Product]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM products WHERE id = ?", (product_id,)).fetchone()
            return self._row_to_product(row) if row else None

    def create_product(self, data: dict) -> Product:
        """Insert a sanitized product. Raises DuplicateProductError on name clash."""
        clean = sanitize_product_data(data)
        now = _now()
        product = Product(id=uuid.uuid4().hex, created_at=now, updated_at=now, **clean)

        try:
            with self._get_connection() as conn:
                conn.execute(
                    """INSERT INTO products (id, name, description, category, price, link, stock,
                                             created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (product.id, product.name, product.description, product.category,
                     product.price, product.link, product.stock, product.created_at, product.updated_at)
                )
        except sqlite3.IntegrityError:
            raise DuplicateProductError("Product with this name already exists")

        logger.info(f"Product created: {product.name}")
        return product

    def update_product(self, product_id: str, data: dict) -> Optional[Product]:
        """Replace product fields. Returns None if the product does not exist."""
        existing = self.get_product(product_id)
        if not existing:
            return None

        clean = sanitize_product_data(data)
        updated = Product(
            id=existing.id,
            created_at=existing.created_at,
            updated_at=_now(),
            **clean,
        )

        try:
            with self._get_connection() as conn:
                conn.execute(
                    """UPDATE products
                       SET name = ?, description = ?, category = ?, price = ?, link = ?, stock = ?,
                           updated_at = ?
                       WHERE id = ?""",
                    (updated.name, updated.description, updated.category, updated.price,
                     updated.link, updated.stock, updated.updated_at, product_id)
                )
        except sqlite3.IntegrityError:
            raise DuplicateProductError("Another product with this name already exists")

        logger.info(f"Product updated: {updated.name}")
        return updated

    def delete_product(self, product_id: str) -> Optional[Product]:
        """Delete a product and return it, or None if it did not exist."""
        existing = self.get_product(product_id)
        if not existing:
            return None
        with self._get_connection() as conn:
            conn.execute("DELETE FROM products WHERE id = ?", (product_id,))
        logger.info(f"Product deleted: {existing.name}")
        return existing

    # ── Queries ────────────────────────────────────────────────────

    def search(self, q: str = "", category: str = "", limit: Optional[int] = None) -> List[Product]:
        products = self.list_products()

        if q:
            term = q.lower()
            products = [
                p for p in products
                if term in p.name.lower() or term in p.description.lower()
            ]

        if category:
            products = [p for p in products if p.category == category]

        if limit is not None:
            products = products[:max(limit, 0)]

        return products

    def stats(self) -> dict:
        products = self.list_products()

        by_category: dict = {}
        for product in products:
            by_category[product.category] = by_category.get(product.category, 0) + 1

        return {
            "total": len(products),
            "byCategory": by_category,
            "lowStock": sum(1 for p in products if 0 < p.stock <= LOW_STOCK_THRESHOLD),
            "outOfStock": sum(1 for p in products if p.stock == 0),
            "totalStock": sum(p.stock for p in products),
        }

    def _row_to_product(self, row: sqlite3.Row) -> Product:
        """Convert database row to Product object."""
        return Product(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            category=row["category"],
            price=row["price"] or 0,
            link=row["link"],
            stock=row["stock"] or 0,
            created_at=row["created_at"] or "",
            updated_at=row["updated_at"] or "",
        )
