from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from app.models.order_info import ORDER_TYPE_PLATFORM
from app.schemas.base import BaseSchema


class OrderSave(BaseModel):
    """Manual create/update payload; validated by the same rules as imported rows."""

    order_type: str = ORDER_TYPE_PLATFORM
    gsp_order_no: str | None = None
    order_created_at: datetime | None = None
    required_sign_at: datetime | None = None
    payment_time: datetime | None = None
    completed_at: datetime | None = None
    shipping_warehouse_code: str | None = None
    shop_code: str | None = None
    owner_name: str | None = None
    product_id: str | None = None
    product_name: str | None = None
    spec: str | None = None
    item_no: str | None = None
    seller_sku: str | None = None
    platform_sku: str | None = None
    platform_skc: str | None = None
    platform_spu: str | None = None
    product_price: float | None = None
    expected_revenue: float | None = None
    special_product_note: str | None = None
    expected_fulfillment_qty: int | None = None
    item_count: int | None = None
    currency_code: str | None = None
    postal_code: str | None = None
    country: str | None = None
    province: str | None = None
    city: str | None = None
    district: str | None = None
    address_line1: str | None = None
    address_line2: str | None = None
    customer_full_name: str | None = None
    customer_last_name: str | None = None
    customer_first_name: str | None = None
    phone_number: str | None = None
    email: str | None = None
    tax_number: str | None = None
    status: int | None = None


class OrderAttachmentSummary(BaseModel):
    id: int
    url: str = ""
    storage: str = ""
    file_name: str = ""
    material_id: int | None = None


class OrderOut(BaseSchema):
    id: int
    gsp_order_no: str
    order_type: str
    order_created_at: datetime
    required_sign_at: datetime | None = None
    payment_time: datetime | None = None
    completed_at: datetime | None = None
    shipping_warehouse_code: str = ""
    shop_code: str = ""
    owner_name: str = ""
    product_id: str | None = None
    product_name: str = ""
    spec: str = ""
    item_no: str = ""
    seller_sku: str = ""
    platform_sku: str = ""
    platform_skc: str = ""
    platform_spu: str = ""
    product_price: float = 0.0
    expected_revenue: float = 0.0
    special_product_note: str | None = None
    expected_fulfillment_qty: int = 0
    item_count: int = 1
    currency_code: str = "CNY"
    postal_code: str = ""
    country: str = ""
    province: str = ""
    city: str = ""
    district: str = ""
    address_line1: str = ""
    address_line2: str = ""
    customer_full_name: str = ""
    customer_last_name: str = ""
    customer_first_name: str = ""
    phone_number: str = ""
    email: str = ""
    tax_number: str = ""
    status: int = 0
    created_by: int | None = None
    updated_by: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    material_image: OrderAttachmentSummary | None = None
    shipping_label: OrderAttachmentSummary | None = None


class OrderListOut(BaseModel):
    orders: list[OrderOut]
    total: int
    page: int
    page_size: int


class OrderImportResult(BaseModel):
    message: str
    imported: int
    warning_message: str = ""
    warnings: list[dict[str, Any]] = Field(default_factory=list)
