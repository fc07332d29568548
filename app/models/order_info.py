from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.mixins import AuditMixin

if TYPE_CHECKING:
    from app.models.order_attachment import OrderAttachment

ORDER_TYPE_PLATFORM = "platform"
ORDER_TYPE_FACTORY = "factory"
ORDER_TYPES = (ORDER_TYPE_PLATFORM, ORDER_TYPE_FACTORY)

ORDER_STATUS_COMPLETED = 1


class OrderInfo(AuditMixin, Base):
    """
    One e-commerce order line.

    Natural identity for imports is (gsp_order_no, order_type, order_created_at);
    the order number alone is not unique. Rows with deleted_at set are
    soft-deleted and hidden from every normal read.
    """

    __tablename__ = "order_info"
    __table_args__ = (
        Index("ix_order_info_natural_key", "gsp_order_no", "order_type", "order_created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    gsp_order_no: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    order_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ORDER_TYPE_PLATFORM, index=True
    )
    order_created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    required_sign_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    payment_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    shipping_warehouse_code: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    shop_code: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    owner_name: Mapped[str] = mapped_column(String(64), nullable=False, default="")

    # Product
    product_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    spec: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    item_no: Mapped[str] = mapped_column(String(64), nullable=False, default="", index=True)
    seller_sku: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    platform_sku: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    platform_skc: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    platform_spu: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    product_price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    expected_revenue: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    special_product_note: Mapped[str | None] = mapped_column(String(255), nullable=True)
    expected_fulfillment_qty: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    item_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    currency_code: Mapped[str] = mapped_column(String(8), nullable=False, default="CNY")

    # Shipping address / customer
    postal_code: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    country: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    province: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    city: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    district: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    address_line1: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    address_line2: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    customer_full_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    customer_last_name: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    customer_first_name: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    email: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    tax_number: Mapped[str] = mapped_column(String(64), nullable=False, default="")

    status: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)

    attachments: Mapped[list["OrderAttachment"]] = relationship(
        "OrderAttachment",
        back_populates="order",
        order_by="OrderAttachment.id",
    )
