from __future__ import annotations

import logging
import mimetypes
import os
from dataclasses import dataclass
from io import BytesIO
from typing import Any

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.flow_logging import flow_info
from app.models.material import MaterialAsset
from app.models.order_attachment import (
    FILE_TYPE_MATERIAL_IMAGE,
    FILE_TYPE_SHIPPING_LABEL,
    OrderAttachment,
)
from app.models.order_info import OrderInfo
from app.schemas.request_identity import RequestIdentity
from app.services.material_service import ensure_material_asset_for_order
from app.services.storage_service import (
    DRIVER_LOCAL,
    StorageError,
    StorageService,
    build_attachment_key,
    normalize_driver,
)

logger = logging.getLogger(__name__)

_PDF_EXT = ".pdf"


@dataclass(frozen=True)
class UploadedFile:
    file_name: str
    data: bytes
    content_type: str = ""


def _split(file_name: str) -> tuple[str, str]:
    base, ext = os.path.splitext(os.path.basename(file_name or ""))
    return base, ext.lower()


def detect_content_type(file_name: str, declared: str | None) -> str:
    declared = (declared or "").split(";")[0].strip()
    if declared and declared != "application/octet-stream":
        return declared
    guessed, _ = mimetypes.guess_type(file_name or "")
    return guessed or declared or "application/octet-stream"


def active_orders_stmt(identity: RequestIdentity | None = None):
    stmt = select(OrderInfo).where(OrderInfo.deleted_at.is_(None))
    if identity is not None and not identity.is_admin:
        stmt = stmt.where(OrderInfo.created_by == identity.user_id)
    return stmt


def get_order_or_404(db: Session, order_id: int, identity: RequestIdentity | None = None) -> OrderInfo:
    order = db.scalar(active_orders_stmt(identity).where(OrderInfo.id == order_id))
    if not order:
        raise HTTPException(status_code=404, detail="订单不存在")
    return order


def get_attachment_or_404(db: Session, order_id: int, attachment_id: int) -> OrderAttachment:
    attachment = db.scalar(
        select(OrderAttachment).where(
            OrderAttachment.id == attachment_id,
            OrderAttachment.order_id == order_id,
        )
    )
    if not attachment:
        raise HTTPException(status_code=404, detail="附件不存在")
    return attachment


def attachment_url(attachment: OrderAttachment, storage: StorageService) -> str:
    if normalize_driver(attachment.storage) == DRIVER_LOCAL:
        return f"/api/orders/{attachment.order_id}/attachments/{attachment.id}/download?inline=1"
    try:
        return storage.presigned_download_url(attachment.file_path, attachment.storage)
    except StorageError as exc:
        logger.warning("attachment_presign_failed attachment_id=%s error=%s", attachment.id, exc)
        return storage.object_url(attachment.file_path, attachment.storage)


def attachment_to_out(attachment: OrderAttachment, storage: StorageService) -> dict[str, Any]:
    return {
        "id": attachment.id,
        "order_id": attachment.order_id,
        "file_type": attachment.file_type,
        "file_name": attachment.file_name,
        "file_path": attachment.file_path,
        "file_ext": attachment.file_ext,
        "file_size": attachment.file_size,
        "checksum": attachment.checksum,
        "storage": attachment.storage,
        "uploader_id": attachment.uploader_id,
        "material_id": attachment.material_id,
        "url": attachment_url(attachment, storage),
        "created_at": attachment.created_at,
    }


def list_attachments(db: Session, order_id: int) -> list[OrderAttachment]:
    return list(
        db.scalars(
            select(OrderAttachment)
            .where(OrderAttachment.order_id == order_id)
            .order_by(OrderAttachment.id.desc())
        )
    )


def check_upload_name(order: OrderInfo, file_type: str, file_name: str) -> None:
    """Uploaded file names must carry the order's item number / order number."""
    base, ext = _split(file_name)
    if file_type == FILE_TYPE_MATERIAL_IMAGE:
        item_no = (order.item_no or "").strip()
        if not item_no:
            raise HTTPException(status_code=400, detail="订单未配置货号，无法上传素材图")
        if base != item_no and os.path.basename(file_name) != item_no:
            raise HTTPException(status_code=400, detail=f"素材图文件名需与订单货号完全一致（{item_no}）")
    elif file_type == FILE_TYPE_SHIPPING_LABEL:
        order_no = (order.gsp_order_no or "").strip()
        if not order_no:
            raise HTTPException(status_code=400, detail="订单未配置订单号，无法上传面单")
        if ext != _PDF_EXT:
            raise HTTPException(status_code=400, detail="面单文件仅支持PDF格式")
        if base != order_no:
            raise HTTPException(status_code=400, detail=f"面单文件名需与订单号完全一致（{order_no}）")
    else:
        raise HTTPException(status_code=400, detail="不支持的附件类型")


def _existing_attachment(db: Session, order_id: int, file_type: str) -> OrderAttachment | None:
    return db.scalar(
        select(OrderAttachment).where(
            OrderAttachment.order_id == order_id,
            OrderAttachment.file_type == file_type,
        )
    )


def save_order_attachment(
    db: Session,
    storage: StorageService,
    *,
    order: OrderInfo,
    file_type: str,
    upload: UploadedFile,
    identity: RequestIdentity,
) -> OrderAttachment:
    """
    Store an uploaded file as the order's attachment for `file_type`.

    The blob is written first and recorded second; if recording fails the new
    blob is removed again. A replaced attachment's blob is removed after the
    commit, and only when the attachment owned it.
    """
    if not upload.data:
        raise HTTPException(status_code=400, detail="文件不能为空")
    check_upload_name(order, file_type, upload.file_name)

    file_name = os.path.basename(upload.file_name)
    _, ext = _split(file_name)
    content_type = detect_content_type(file_name, upload.content_type)
    key = build_attachment_key(storage.config.key_prefix, order.id, file_name)
    try:
        stored = storage.upload(key, BytesIO(upload.data), len(upload.data), content_type)
    except StorageError as exc:
        raise HTTPException(status_code=500, detail=f"上传文件失败: {exc}") from exc

    stale_blob: tuple[str, str] | None = None
    try:
        existing = _existing_attachment(db, order.id, file_type)
        if existing is not None:
            if existing.owns_blob:
                stale_blob = (existing.file_path, existing.storage)
            db.delete(existing)
            db.flush()
        attachment = OrderAttachment(
            order_id=order.id,
            file_type=file_type,
            file_name=file_name,
            file_path=stored.key,
            file_ext=ext,
            file_size=stored.size,
            checksum=stored.checksum,
            storage=stored.storage,
            uploader_id=identity.user_id,
            material_id=None,
        )
        db.add(attachment)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        storage.delete_quietly(stored.key, stored.storage, reason="attachment_db_write_failed")
        raise

    if stale_blob and stale_blob != (stored.key, stored.storage):
        storage.delete_quietly(*stale_blob, reason="attachment_replaced")
    db.refresh(attachment)
    flow_info(
        logger,
        "attachment_saved order_id=%s file_type=%s key=%s size=%s",
        order.id,
        file_type,
        stored.key,
        stored.size,
        category="attachment",
    )

    if file_type == FILE_TYPE_MATERIAL_IMAGE:
        try:
            asset = ensure_material_asset_for_order(
                db,
                storage,
                order=order,
                file_name=file_name,
                data=upload.data,
                content_type=content_type,
                identity=identity,
            )
            flow_info(
                logger,
                "material_synced order_id=%s material_id=%s",
                order.id,
                asset.id,
                category="attachment",
            )
        except (StorageError, SQLAlchemyError) as exc:
            logger.warning("material_sync_failed order_id=%s file=%s error=%s", order.id, file_name, exc)
    return attachment


def upsert_material_attachment(
    db: Session,
    *,
    order: OrderInfo,
    material: MaterialAsset,
    file_type: str,
    uploader_id: int | None,
) -> tuple[OrderAttachment, tuple[str, str] | None]:
    """
    Point the order's `file_type` attachment at a library asset.

    Returns the attachment and, when the previous attachment owned its blob,
    that blob's (key, storage) for the caller to delete after committing.
    Nothing is committed here.
    """
    if not material.file_path:
        raise HTTPException(status_code=400, detail="素材未关联文件")

    attachment = _existing_attachment(db, order.id, file_type)
    if attachment is not None and attachment.material_id == material.id:
        return attachment, None

    stale_blob = None
    if attachment is not None and attachment.owns_blob:
        stale_blob = (attachment.file_path, attachment.storage)
    if attachment is None:
        attachment = OrderAttachment(order_id=order.id, file_type=file_type)
        db.add(attachment)

    _, ext = _split(material.file_name)
    attachment.file_name = material.file_name
    attachment.file_path = material.file_path
    attachment.file_ext = ext
    attachment.file_size = material.file_size
    attachment.checksum = ""
    attachment.storage = normalize_driver(material.storage)
    attachment.uploader_id = uploader_id
    attachment.material_id = material.id
    db.flush()
    return attachment, stale_blob


def link_material(
    db: Session,
    storage: StorageService,
    *,
    order: OrderInfo,
    material_id: int,
    file_type: str,
    identity: RequestIdentity,
) -> OrderAttachment:
    material = db.get(MaterialAsset, material_id)
    if not material:
        raise HTTPException(status_code=404, detail="素材不存在")
    if not identity.owns(material.created_by):
        raise HTTPException(status_code=403, detail="无权引用该素材")

    base, ext = _split(material.file_name)
    if file_type == FILE_TYPE_MATERIAL_IMAGE:
        item_no = (order.item_no or "").strip()
        if item_no and base.lower() != item_no.lower():
            raise HTTPException(status_code=400, detail=f"素材文件名需与订单货号一致（{item_no}）")
    elif file_type == FILE_TYPE_SHIPPING_LABEL:
        order_no = (order.gsp_order_no or "").strip()
        if not order_no:
            raise HTTPException(status_code=400, detail="订单未配置订单号，无法关联面单")
        if ext != _PDF_EXT:
            raise HTTPException(status_code=400, detail="面单素材需为 PDF 文件")
        if base.lower() != order_no.lower():
            raise HTTPException(status_code=400, detail=f"面单文件名需与订单号一致（{order_no}）")
    else:
        raise HTTPException(status_code=400, detail="不支持的附件类型")

    try:
        attachment, stale_blob = upsert_material_attachment(
            db,
            order=order,
            material=material,
            file_type=file_type,
            uploader_id=identity.user_id,
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    if stale_blob:
        storage.delete_quietly(*stale_blob, reason="attachment_relinked")
    db.refresh(attachment)
    return attachment


def delete_attachment(
    db: Session,
    storage: StorageService,
    attachment: OrderAttachment,
) -> None:
    if attachment.owns_blob:
        try:
            storage.delete(attachment.file_path, attachment.storage)
        except StorageError as exc:
            raise HTTPException(status_code=500, detail=f"删除附件文件失败: {exc}") from exc
    try:
        db.delete(attachment)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise


def _match_order_for_file(
    db: Session,
    identity: RequestIdentity,
    file_name: str,
) -> tuple[str, str, str, OrderInfo | None]:
    base, ext = _split(file_name)
    if ext == _PDF_EXT:
        file_type, label, column = FILE_TYPE_SHIPPING_LABEL, "GSP订单号", OrderInfo.gsp_order_no
    else:
        file_type, label, column = FILE_TYPE_MATERIAL_IMAGE, "货号", OrderInfo.item_no
    order = db.scalar(
        active_orders_stmt(identity).where(column == base).order_by(OrderInfo.id.desc()).limit(1)
    )
    return file_type, label, base, order


def batch_upload(
    db: Session,
    storage: StorageService,
    *,
    files: list[UploadedFile],
    identity: RequestIdentity,
) -> dict[str, Any]:
    """Route each file to its order by name; files succeed or fail independently."""
    if not files:
        raise HTTPException(status_code=400, detail="请选择要上传的文件")

    success: list[dict[str, Any]] = []
    failed: list[dict[str, Any]] = []
    for upload in files:
        name = os.path.basename(upload.file_name or "")
        file_type, label, key, order = _match_order_for_file(db, identity, name)
        if order is None:
            failed.append({"file_name": name, "message": f"文件 {name}: 未找到匹配的订单（{label}: {key}）"})
            continue
        content_type = detect_content_type(name, upload.content_type)
        if file_type == FILE_TYPE_MATERIAL_IMAGE and not content_type.startswith("image/"):
            failed.append({"file_name": name, "message": f"文件 {name}: 素材图仅支持图片文件"})
            continue
        try:
            attachment = save_order_attachment(
                db,
                storage,
                order=order,
                file_type=file_type,
                upload=UploadedFile(file_name=name, data=upload.data, content_type=content_type),
                identity=identity,
            )
        except HTTPException as exc:
            failed.append({"file_name": name, "message": f"文件 {name}: {exc.detail}"})
            continue
        except SQLAlchemyError as exc:
            logger.warning("batch_upload_db_failed file=%s error=%s", name, exc)
            failed.append({"file_name": name, "message": f"文件 {name}: 保存附件失败"})
            continue
        kind = "素材图" if file_type == FILE_TYPE_MATERIAL_IMAGE else "面单"
        success.append(
            {
                "file_name": name,
                "order_id": order.id,
                "order_no": order.gsp_order_no,
                "file_type": file_type,
                "url": attachment_url(attachment, storage),
                "message": f"订单 {order.gsp_order_no} {kind} 上传成功",
            }
        )

    result = {
        "message": f"成功上传{len(success)}个，失败{len(failed)}个",
        "success": success,
        "failed": failed,
    }
    if not success:
        raise HTTPException(status_code=400, detail=result)
    return result
