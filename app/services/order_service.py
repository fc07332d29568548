from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from fastapi import HTTPException
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models.order_attachment import (
    FILE_TYPE_MATERIAL_IMAGE,
    FILE_TYPE_SHIPPING_LABEL,
    OrderAttachment,
)
from app.models.order_info import (
    ORDER_STATUS_COMPLETED,
    ORDER_TYPE_FACTORY,
    ORDER_TYPE_PLATFORM,
    ORDER_TYPES,
    OrderInfo,
)
from app.schemas.order import OrderOut, OrderSave
from app.schemas.request_identity import RequestIdentity
from app.services.attachment_service import active_orders_stmt, attachment_url, get_order_or_404
from app.services.order_row_validator import (
    RowContext,
    parse_order_time,
    sheet_label,
    validate_order_values,
)
from app.services.order_validation_errors import format_validation_issues
from app.services.pagination import page_window
from app.services.storage_service import StorageError, StorageService
from app.services.system_config_service import (
    load_default_address,
    load_shipping_warehouse_whitelist,
)

logger = logging.getLogger(__name__)

TIME_FILTER_FIELDS = {"order_created_at", "completed_at", "payment_time", "required_sign_at"}
EXACT_FILTER_FIELDS = {"product_price", "expected_revenue", "expected_fulfillment_qty"}
FUZZY_FILTER_FIELDS = {
    "gsp_order_no",
    "shipping_warehouse_code",
    "shop_code",
    "owner_name",
    "product_id",
    "product_name",
    "spec",
    "item_no",
    "seller_sku",
    "platform_sku",
    "platform_skc",
    "platform_spu",
    "special_product_note",
    "currency_code",
    "postal_code",
    "country",
    "province",
    "city",
    "district",
    "address_line1",
    "address_line2",
    "customer_full_name",
    "customer_last_name",
    "customer_first_name",
    "phone_number",
    "email",
    "tax_number",
}


@dataclass(frozen=True)
class OrderFilters:
    tab: str = ORDER_TYPE_PLATFORM
    time_field: str | None = None
    time_start: str | None = None
    time_end: str | None = None
    exact_field: str | None = None
    exact_value: str | None = None
    fuzzy_field: str | None = None
    fuzzy_keyword: str | None = None


def _parse_filter_time(raw: str | None) -> datetime | None:
    if not raw or not raw.strip():
        return None
    try:
        return parse_order_time(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"时间格式错误: {raw}") from exc


def apply_order_filters(stmt, filters: OrderFilters):
    if filters.time_field in TIME_FILTER_FIELDS:
        column = getattr(OrderInfo, filters.time_field)
        start = _parse_filter_time(filters.time_start)
        end = _parse_filter_time(filters.time_end)
        if start and end:
            if start > end:
                start, end = end, start
            stmt = stmt.where(column.between(start, end))
        elif start:
            stmt = stmt.where(column >= start)
        elif end:
            stmt = stmt.where(column <= end)

    if filters.exact_field in EXACT_FILTER_FIELDS and filters.exact_value not in (None, ""):
        try:
            value = float(filters.exact_value)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="精确查询值需为数字") from exc
        stmt = stmt.where(getattr(OrderInfo, filters.exact_field) == value)

    keyword = (filters.fuzzy_keyword or "").strip()
    if filters.fuzzy_field in FUZZY_FILTER_FIELDS and keyword:
        stmt = stmt.where(getattr(OrderInfo, filters.fuzzy_field).like(f"%{keyword}%"))
    return stmt


def _attachment_summary(attachment: OrderAttachment, storage: StorageService) -> dict[str, Any]:
    return {
        "id": attachment.id,
        "url": attachment_url(attachment, storage),
        "storage": attachment.storage,
        "file_name": attachment.file_name,
        "material_id": attachment.material_id,
    }


def orders_to_out(
    db: Session,
    orders: list[OrderInfo],
    storage: StorageService,
) -> list[OrderOut]:
    by_order: dict[int, dict[str, OrderAttachment]] = {}
    if orders:
        attachments = db.scalars(
            select(OrderAttachment).where(OrderAttachment.order_id.in_([o.id for o in orders]))
        ).all()
        for attachment in attachments:
            by_order.setdefault(attachment.order_id, {})[attachment.file_type] = attachment

    result: list[OrderOut] = []
    for order in orders:
        linked = by_order.get(order.id, {})
        summaries = {
            key: _attachment_summary(linked[file_type], storage) if file_type in linked else None
            for key, file_type in (
                ("material_image", FILE_TYPE_MATERIAL_IMAGE),
                ("shipping_label", FILE_TYPE_SHIPPING_LABEL),
            )
        }
        result.append(OrderOut.model_validate(order).model_copy(update=summaries))
    return result


def list_orders(
    db: Session,
    storage: StorageService,
    *,
    identity: RequestIdentity,
    filters: OrderFilters,
    page: int | None = None,
    page_size: int | None = None,
) -> dict[str, Any]:
    tab = filters.tab if filters.tab in ORDER_TYPES else ORDER_TYPE_PLATFORM
    stmt = apply_order_filters(
        active_orders_stmt(identity).where(OrderInfo.order_type == tab),
        filters,
    )
    total = db.scalar(select(func.count()).select_from(stmt.subquery())) or 0
    window = page_window(page, page_size, total)

    if tab == ORDER_TYPE_FACTORY:
        ordering = (OrderInfo.order_created_at.desc(), OrderInfo.id.desc())
    else:
        ordering = (OrderInfo.id.desc(),)
    orders = list(
        db.scalars(stmt.order_by(*ordering).offset(window.offset).limit(window.page_size))
    )
    return {
        "orders": orders_to_out(db, orders, storage),
        "total": total,
        "page": window.page,
        "page_size": window.page_size,
    }


def _validated_record(db: Session, payload: OrderSave, order_type: str) -> dict[str, Any]:
    if order_type not in ORDER_TYPES:
        raise HTTPException(status_code=400, detail="订单类型无效")
    whitelist = load_shipping_warehouse_whitelist(db)
    context = RowContext(
        order_type=order_type,
        sheet=sheet_label(order_type),
        default_address=load_default_address(db),
        warehouse_whitelist=whitelist or None,
        require_status=True,
    )
    outcome = validate_order_values(payload.model_dump(), context, 1)
    if not outcome.ok:
        raise HTTPException(status_code=400, detail=format_validation_issues(outcome.errors))
    return outcome.order


def _now() -> datetime:
    return datetime.now().replace(microsecond=0)


def create_order(db: Session, payload: OrderSave, identity: RequestIdentity) -> OrderInfo:
    record = _validated_record(db, payload, (payload.order_type or "").strip().lower())
    if record["order_created_at"] is None:
        record["order_created_at"] = _now()
    if record["status"] == ORDER_STATUS_COMPLETED and record["completed_at"] is None:
        record["completed_at"] = _now()

    order = OrderInfo(**record, created_by=identity.user_id, updated_by=identity.user_id)
    db.add(order)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(order)
    return order


def update_order(
    db: Session,
    order_id: int,
    payload: OrderSave,
    identity: RequestIdentity,
) -> OrderInfo:
    order = get_order_or_404(db, order_id, identity)
    order_type = (payload.order_type or order.order_type).strip().lower()
    record = _validated_record(db, payload, order_type)
    if record["order_created_at"] is None:
        record.pop("order_created_at")
    if record["status"] == ORDER_STATUS_COMPLETED:
        if record["completed_at"] is None:
            record["completed_at"] = _now()
    else:
        record["completed_at"] = None

    try:
        for name, value in record.items():
            setattr(order, name, value)
        order.updated_by = identity.user_id
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(order)
    return order


def delete_order(
    db: Session,
    storage: StorageService,
    order_id: int,
    identity: RequestIdentity,
) -> None:
    """
    Soft-delete the order and hard-delete its attachments.

    Blobs owned by the attachments go first; a failing blob delete aborts
    and rolls back the whole operation.
    """
    order = get_order_or_404(db, order_id, identity)
    try:
        for attachment in list(order.attachments):
            if attachment.owns_blob:
                try:
                    storage.delete(attachment.file_path, attachment.storage)
                except StorageError as exc:
                    raise HTTPException(status_code=500, detail="删除附件文件失败") from exc
            db.delete(attachment)
        order.deleted_at = datetime.now()
        order.updated_by = identity.user_id
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("order_deleted order_id=%s by=%s", order_id, identity.user_id)
