"""Record repositories, one per category, selected through :class:`RecordCategory`."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ordersync.core.db import upsert
from ordersync.core.errors import PersistenceError, ValidationError
from ordersync.core.logging import get_logger
from ordersync.models.records import ShopCustomer, ShopOrder, ShopProduct
from ordersync.schemas.sync import RecordCategory

log = get_logger("storage.records")


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        if isinstance(value, str):
            value = value.replace("Z", "+00:00")
            return datetime.fromisoformat(value).astimezone(timezone.utc)
        if isinstance(value, datetime):
            return value.astimezone(timezone.utc)
    except (ValueError, TypeError):
        return None
    return None


def safe_float(value: Any) -> float:
    if value is None:
        return 0.0
    try:
        return float(value)
    except (ValueError, TypeError):
        return 0.0


def safe_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (ValueError, TypeError):
        return None


class RecordRepository(ABC):
    """Maps raw source payloads to rows and upserts them by (tenant_id, source_id)."""

    category: RecordCategory
    model: Type[Any]

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @abstractmethod
    def derive(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Scalar columns derived from the payload."""

    def to_row(self, tenant_id: str, payload: Any, synced_at: datetime) -> Dict[str, Any]:
        if not isinstance(payload, dict):
            raise ValidationError(f"{self.category.value} record is not an object: {type(payload).__name__}")
        source_id = payload.get("id")
        if source_id is None or str(source_id).strip() == "":
            raise ValidationError(f"{self.category.value} record has no id")

        row = {
            "tenant_id": tenant_id,
            "source_id": str(source_id),
            "payload": payload,
            "synced_at": synced_at,
            "source_created_at": parse_timestamp(payload.get("created_at")),
            "source_updated_at": parse_timestamp(payload.get("updated_at")),
        }
        row.update(self.derive(payload))
        return row

    def build_rows(self, tenant_id: str, payloads: List[Any], synced_at: datetime) -> List[Dict[str, Any]]:
        """Map payloads to rows, skipping (and logging) malformed ones.

        A record listed twice (upstream shifted during pagination) keeps only
        its last occurrence: one multi-row upsert may not touch a key twice.
        """
        rows: Dict[str, Dict[str, Any]] = {}
        for payload in payloads:
            try:
                row = self.to_row(tenant_id, payload, synced_at)
            except ValidationError as exc:
                log.warning(f"Skipping invalid {self.category.value} record for {tenant_id}: {exc}")
                continue
            if rows.pop(row["source_id"], None) is not None:
                log.warning(f"Duplicate {self.category.value} record {row['source_id']} for {tenant_id}; keeping the latest copy")
            rows[row["source_id"]] = row
        return list(rows.values())

    @property
    def update_columns(self) -> List[str]:
        return [col.name for col in self.model.__table__.columns if not col.primary_key]

    def upsert_many(self, rows: List[Dict[str, Any]]) -> int:
        """Idempotent batch write. Raises ``PersistenceError`` on any store failure."""
        if not rows:
            return 0
        try:
            with self.session_factory() as db:
                upsert(db, self.model, rows, ["tenant_id", "source_id"], self.update_columns)
                db.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"{self.category.value} batch write failed: {exc}") from exc
        return len(rows)

    def count(self, tenant_id: str) -> int:
        with self.session_factory() as db:
            stmt = select(func.count()).select_from(self.model).where(self.model.tenant_id == tenant_id)
            return db.execute(stmt).scalar() or 0


class OrderRepository(RecordRepository):
    category = RecordCategory.ORDERS
    model = ShopOrder

    def derive(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        customer = payload.get("customer") or {}
        shipping = ((payload.get("total_shipping_price_set") or {}).get("shop_money") or {}).get("amount")
        return {
            "order_number": safe_int(payload.get("order_number")),
            "total_price": safe_float(payload.get("total_price")),
            "subtotal_price": safe_float(payload.get("subtotal_price")),
            "total_tax": safe_float(payload.get("total_tax")),
            "total_discounts": safe_float(payload.get("total_discounts")),
            "total_shipping": safe_float(shipping),
            "customer_id": str(customer["id"]) if customer.get("id") is not None else None,
            "customer_email": customer.get("email") or payload.get("email"),
            "financial_status": payload.get("financial_status"),
            "fulfillment_status": payload.get("fulfillment_status"),
            "confirmed": bool(payload.get("confirmed", False)),
            "cancelled_at": parse_timestamp(payload.get("cancelled_at")),
        }


class ProductRepository(RecordRepository):
    category = RecordCategory.PRODUCTS
    model = ShopProduct

    def derive(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "title": payload.get("title"),
            "vendor": payload.get("vendor"),
            "product_type": payload.get("product_type"),
            "status": payload.get("status"),
        }


class CustomerRepository(RecordRepository):
    category = RecordCategory.CUSTOMERS
    model = ShopCustomer

    def derive(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "email": payload.get("email"),
            "orders_count": safe_int(payload.get("orders_count")) or 0,
            "total_spent": safe_float(payload.get("total_spent")),
        }


class RecordStore:
    """Category -> repository registry."""

    def __init__(self, session_factory: sessionmaker):
        self._repositories: Dict[RecordCategory, RecordRepository] = {
            RecordCategory.ORDERS: OrderRepository(session_factory),
            RecordCategory.PRODUCTS: ProductRepository(session_factory),
            RecordCategory.CUSTOMERS: CustomerRepository(session_factory),
        }

    def repository(self, category: RecordCategory) -> RecordRepository:
        return self._repositories[RecordCategory(category)]
