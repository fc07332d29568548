from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import HTTPException
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.flow_logging import flow_info
from app.models.material import MaterialAsset
from app.models.order_attachment import FILE_TYPE_MATERIAL_IMAGE
from app.models.order_info import ORDER_TYPE_FACTORY, OrderInfo
from app.services.attachment_service import upsert_material_attachment

logger = logging.getLogger(__name__)

# Never overwritten when an imported record updates an existing order.
_PRESERVED_ON_UPDATE = {"id", "created_at", "created_by"}


def find_by_natural_key(db: Session, record: dict[str, Any]) -> OrderInfo | None:
    stmt = select(OrderInfo).where(
        OrderInfo.deleted_at.is_(None),
        OrderInfo.gsp_order_no == record["gsp_order_no"],
        OrderInfo.order_type == record["order_type"],
        OrderInfo.order_created_at == record["order_created_at"],
    )
    return db.scalar(stmt.order_by(OrderInfo.id).limit(1))


def upsert_order(db: Session, record: dict[str, Any]) -> tuple[OrderInfo, bool]:
    """
    Insert or update one order by (order no, type, created-at).

    A record without a creation time is stamped with the current time before
    matching, so it can only ever create a new order.

    Returns (order, created). Nothing is committed here.
    """
    if record.get("order_created_at") is None:
        record = {**record, "order_created_at": datetime.now().replace(microsecond=0)}

    existing = find_by_natural_key(db, record)
    if existing is None:
        order = OrderInfo(**record)
        db.add(order)
        db.flush()
        return order, True

    for name, value in record.items():
        if name in _PRESERVED_ON_UPDATE:
            continue
        setattr(existing, name, value)
    db.flush()
    return existing, False


def material_link_key(order: OrderInfo) -> str:
    raw = order.gsp_order_no if order.order_type == ORDER_TYPE_FACTORY else order.item_no
    return (raw or "").strip().lower()


def find_material_for_order(db: Session, order: OrderInfo) -> MaterialAsset | None:
    key = material_link_key(order)
    if not key:
        return None
    return db.scalar(
        select(MaterialAsset)
        .where(
            or_(
                func.lower(func.trim(MaterialAsset.title)) == key,
                func.lower(func.trim(MaterialAsset.file_name)).startswith(f"{key}.", autoescape=True),
            )
        )
        .order_by(MaterialAsset.id)
        .limit(1)
    )


def auto_link_material(db: Session, order: OrderInfo) -> tuple[str, str] | None:
    """
    Best-effort: attach a matching library asset as the order's material image.

    Runs in a savepoint so a failure leaves the surrounding import intact.
    Returns a blob the caller should delete once the import commits.
    """
    try:
        with db.begin_nested():
            material = find_material_for_order(db, order)
            if material is None:
                return None
            _, stale_blob = upsert_material_attachment(
                db,
                order=order,
                material=material,
                file_type=FILE_TYPE_MATERIAL_IMAGE,
                uploader_id=order.updated_by,
            )
    except (HTTPException, SQLAlchemyError) as exc:
        detail = exc.detail if isinstance(exc, HTTPException) else exc
        logger.warning("material_auto_link_failed order_id=%s error=%s", order.id, detail)
        return None
    flow_info(
        logger,
        "material_auto_linked order_id=%s material_id=%s",
        order.id,
        material.id,
        category="import",
    )
    return stale_blob
