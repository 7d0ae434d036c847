"""Synchronized source records. Keyed by (tenant_id, source_id) so re-syncs overwrite."""

from sqlalchemy import DateTime, Integer, Numeric, String, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from ordersync.models.base import Base, JSONType

Money = Numeric(14, 2, asdecimal=False)


class ShopOrder(Base):
    """Order/transaction with scalar fields derived for dashboards."""

    __tablename__ = "shop_orders"

    tenant_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    source_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)
    synced_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)

    order_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_price: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    subtotal_price: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    total_tax: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    total_discounts: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    total_shipping: Mapped[float] = mapped_column(Money, nullable=False, default=0)

    customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    financial_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    fulfillment_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancelled_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    source_created_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    source_updated_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ShopProduct(Base):
    __tablename__ = "shop_products"

    tenant_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    source_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)
    synced_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)

    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    vendor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    product_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str | None] = mapped_column(String(50), nullable=True)

    source_created_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    source_updated_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ShopCustomer(Base):
    __tablename__ = "shop_customers"

    tenant_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    source_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)
    synced_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)

    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    orders_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_spent: Mapped[float] = mapped_column(Money, nullable=False, default=0)

    source_created_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    source_updated_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)
