from __future__ import annotations

import logging
import math
import os
import secrets
from datetime import datetime
from io import BytesIO
from typing import Any

from fastapi import HTTPException
from PIL import Image, UnidentifiedImageError
from sqlalchemy import distinct, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.material import DEFAULT_FOLDER_NAME, MaterialAsset, MaterialFolder
from app.models.order_attachment import FILE_TYPE_MATERIAL_IMAGE, OrderAttachment
from app.models.order_info import OrderInfo
from app.schemas.material import MaterialCreate, MaterialUpdate
from app.schemas.request_identity import RequestIdentity
from app.services.pagination import page_window
from app.services.storage_service import (
    DRIVER_COS,
    StorageError,
    StorageService,
    build_material_key,
    normalize_driver,
)

logger = logging.getLogger(__name__)

SHAPE_EXTRA_WIDE = "超横形"
SHAPE_WIDE = "横向形"
SHAPE_SQUARE = "似方形"
SHAPE_TALL = "竖向形"
SHAPE_EXTRA_TALL = "超竖形"

# Lower bounds of the aspect ratio (width / height), checked top-down.
_SHAPE_BUCKETS: tuple[tuple[float, str], ...] = (
    (5.0, SHAPE_EXTRA_WIDE),
    (1 / 0.9, SHAPE_WIDE),
    (1 / 1.1, SHAPE_SQUARE),
    (1 / 1.8, SHAPE_TALL),
)

IMAGE_FORMATS = {"jpg", "jpeg", "png", "gif", "bmp", "webp"}


def material_shape(width: int | None, height: int | None) -> str:
    if not width or not height or width <= 0 or height <= 0:
        return ""
    ratio = math.floor(width / height * 1000 + 0.5) / 1000
    for lower_bound, shape in _SHAPE_BUCKETS:
        if ratio >= lower_bound:
            return shape
    return SHAPE_EXTRA_TALL


def material_dimensions(width: int | None, height: int | None) -> str:
    if not width or not height or width <= 0 or height <= 0:
        return ""
    return f"{width} x {height}"


def generate_material_code(now: datetime | None = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y%m%dT%H%M%S")
    return f"MAT{stamp}{secrets.token_hex(4).upper()}"


def read_image_size(data: bytes) -> tuple[int, int]:
    try:
        with Image.open(BytesIO(data)) as image:
            width, height = image.size
    except (UnidentifiedImageError, OSError, ValueError):
        return (0, 0)
    return (int(width), int(height))


def _file_format(file_name: str) -> str:
    return os.path.splitext(file_name or "")[1].lstrip(".").lower()


def _file_base(file_name: str) -> str:
    return os.path.splitext(os.path.basename(file_name or ""))[0]


def _apply_dimensions(material: MaterialAsset, width: int, height: int) -> None:
    material.width = max(width, 0)
    material.height = max(height, 0)
    material.dimensions = material_dimensions(width, height)
    material.shape = material_shape(width, height)


# ---------------------------------------------------------------------------
# Folders
# ---------------------------------------------------------------------------


def _get_folder_or_404(db: Session, folder_id: int) -> MaterialFolder:
    folder = db.get(MaterialFolder, folder_id)
    if not folder:
        raise HTTPException(status_code=404, detail="文件夹不存在")
    return folder


def _clean_folder_name(name: str | None) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise HTTPException(status_code=400, detail="文件夹名称不能为空")
    if "/" in cleaned:
        raise HTTPException(status_code=400, detail="文件夹名称不能包含 /")
    return cleaned


def list_folders(db: Session) -> list[MaterialFolder]:
    return list(db.scalars(select(MaterialFolder).order_by(MaterialFolder.path, MaterialFolder.id)))


def build_folder_tree(folders: list[MaterialFolder]) -> list[dict[str, Any]]:
    nodes: dict[int, dict[str, Any]] = {}
    for folder in folders:
        nodes[folder.id] = {
            "id": folder.id,
            "name": folder.name,
            "parent_id": folder.parent_id,
            "path": folder.path,
            "created_at": folder.created_at,
            "updated_at": folder.updated_at,
            "children": [],
        }
    roots: list[dict[str, Any]] = []
    for folder in folders:
        node = nodes[folder.id]
        parent = nodes.get(folder.parent_id) if folder.parent_id else None
        if parent is None:
            roots.append(node)
        else:
            parent["children"].append(node)
    return roots


def create_folder(
    db: Session,
    *,
    name: str | None,
    parent_id: int | None,
    identity: RequestIdentity,
) -> MaterialFolder:
    cleaned = _clean_folder_name(name)
    parent = None
    if parent_id:
        parent = db.get(MaterialFolder, parent_id)
        if not parent:
            raise HTTPException(status_code=400, detail="父文件夹不存在")
    folder = MaterialFolder(
        name=cleaned,
        parent_id=parent.id if parent else None,
        path=f"{parent.path}/{cleaned}" if parent else cleaned,
        created_by=identity.user_id,
        updated_by=identity.user_id,
    )
    db.add(folder)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(folder)
    return folder


def update_folder(
    db: Session,
    folder_id: int,
    *,
    name: str | None,
    parent_id: int | None,
    identity: RequestIdentity,
) -> MaterialFolder:
    """
    Rename and/or move a folder.

    Every descendant whose path starts with the old path is rewritten in the
    same transaction. A no-op rename leaves all paths untouched.
    """
    folder = _get_folder_or_404(db, folder_id)
    new_name = folder.name if name is None else _clean_folder_name(name)

    parent: MaterialFolder | None = None
    if parent_id is None:
        if folder.parent_id:
            parent = db.get(MaterialFolder, folder.parent_id)
    elif parent_id != 0:
        if parent_id == folder.id:
            raise HTTPException(status_code=400, detail="父文件夹不能为自身")
        parent = db.get(MaterialFolder, parent_id)
        if not parent:
            raise HTTPException(status_code=400, detail="父文件夹不存在")
        if f"{parent.path}/".startswith(f"{folder.path}/"):
            raise HTTPException(status_code=400, detail="不能将文件夹移动到自己的子级")

    old_path = folder.path
    new_path = f"{parent.path}/{new_name}" if parent else new_name
    try:
        folder.name = new_name
        folder.parent_id = parent.id if parent else None
        folder.path = new_path
        folder.updated_by = identity.user_id
        if new_path != old_path:
            descendants = db.scalars(
                select(MaterialFolder).where(
                    MaterialFolder.path.startswith(f"{old_path}/", autoescape=True)
                )
            ).all()
            for child in descendants:
                child.path = new_path + child.path[len(old_path) :]
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(folder)
    return folder


def delete_folder(db: Session, folder_id: int) -> None:
    folder = _get_folder_or_404(db, folder_id)
    has_children = db.scalar(
        select(func.count(MaterialFolder.id)).where(MaterialFolder.parent_id == folder.id)
    )
    if has_children:
        raise HTTPException(status_code=400, detail="存在子文件夹，无法删除")
    has_materials = db.scalar(
        select(func.count(MaterialAsset.id)).where(MaterialAsset.folder_id == folder.id)
    )
    if has_materials:
        raise HTTPException(status_code=400, detail="文件夹下存在素材，无法删除")
    try:
        db.delete(folder)
        db.commit()
    except Exception:
        db.rollback()
        raise


def ensure_default_folder(db: Session, user_id: int | None) -> MaterialFolder:
    """Return the root default folder, staging it on the session when missing."""
    folder = db.scalar(
        select(MaterialFolder)
        .where(MaterialFolder.parent_id.is_(None), MaterialFolder.path == DEFAULT_FOLDER_NAME)
        .limit(1)
    )
    if folder:
        return folder
    folder = MaterialFolder(
        name=DEFAULT_FOLDER_NAME,
        path=DEFAULT_FOLDER_NAME,
        created_by=user_id,
        updated_by=user_id,
    )
    db.add(folder)
    db.flush()
    return folder


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------


def get_material_or_404(db: Session, material_id: int) -> MaterialAsset:
    material = db.get(MaterialAsset, material_id)
    if not material:
        raise HTTPException(status_code=404, detail="素材不存在")
    return material


def ensure_material_access(material: MaterialAsset, identity: RequestIdentity, *, write: bool) -> None:
    if identity.owns(material.created_by):
        return
    raise HTTPException(status_code=403, detail="无权操作该素材" if write else "无权访问该素材")


def material_order_counts(db: Session, material_ids: list[int]) -> dict[int, int]:
    if not material_ids:
        return {}
    rows = db.execute(
        select(OrderAttachment.material_id, func.count(distinct(OrderAttachment.order_id)))
        .join(OrderInfo, OrderInfo.id == OrderAttachment.order_id)
        .where(
            OrderAttachment.material_id.in_(material_ids),
            OrderAttachment.file_type == FILE_TYPE_MATERIAL_IMAGE,
            OrderInfo.deleted_at.is_(None),
        )
        .group_by(OrderAttachment.material_id)
    ).all()
    return {material_id: count for material_id, count in rows}


def material_urls(material: MaterialAsset, storage: StorageService) -> tuple[str, str]:
    if normalize_driver(material.storage) == DRIVER_COS and material.file_path:
        try:
            url = storage.presigned_download_url(material.file_path, material.storage)
        except StorageError as exc:
            logger.warning("material_presign_failed material_id=%s error=%s", material.id, exc)
            url = ""
        return url, url
    base = f"/api/materials/{material.id}/download"
    return f"{base}?disposition=inline", base


def material_to_out(
    material: MaterialAsset,
    storage: StorageService,
    order_count: int | None = None,
) -> dict[str, Any]:
    preview_url, download_url = material_urls(material, storage)
    return {
        "id": material.id,
        "code": material.code,
        "file_name": material.file_name,
        "title": material.title,
        "width": material.width,
        "height": material.height,
        "dimensions": material.dimensions,
        "shape": material.shape,
        "format": material.format,
        "file_size": material.file_size,
        "storage": material.storage,
        "file_path": material.file_path,
        "folder_id": material.folder_id,
        "order_count": material.order_count if order_count is None else order_count,
        "created_by": material.created_by,
        "updated_by": material.updated_by,
        "created_at": material.created_at,
        "updated_at": material.updated_at,
        "preview_url": preview_url,
        "download_url": download_url,
    }


def list_materials(
    db: Session,
    storage: StorageService,
    *,
    identity: RequestIdentity,
    keyword: str | None = None,
    folder_id: int | None = None,
    shape: str | None = None,
    file_format: str | None = None,
    page: int | None = None,
    page_size: int | None = None,
) -> dict[str, Any]:
    stmt = select(MaterialAsset)
    if not identity.is_admin:
        stmt = stmt.where(MaterialAsset.created_by == identity.user_id)
    if keyword and keyword.strip():
        like = f"%{keyword.strip()}%"
        stmt = stmt.where(
            or_(
                MaterialAsset.code.like(like),
                MaterialAsset.file_name.like(like),
                MaterialAsset.title.like(like),
            )
        )
    if folder_id:
        stmt = stmt.where(MaterialAsset.folder_id == folder_id)
    if shape and shape.strip():
        stmt = stmt.where(MaterialAsset.shape == shape.strip())
    if file_format and file_format.strip():
        stmt = stmt.where(MaterialAsset.format == file_format.strip().lower().lstrip("."))

    total = db.scalar(select(func.count()).select_from(stmt.subquery())) or 0
    window = page_window(page, page_size, total)
    materials = db.scalars(
        stmt.order_by(MaterialAsset.id.desc()).offset(window.offset).limit(window.page_size)
    ).all()
    counts = material_order_counts(db, [m.id for m in materials])
    return {
        "materials": [material_to_out(m, storage, counts.get(m.id, 0)) for m in materials],
        "total": total,
        "page": window.page,
        "page_size": window.page_size,
    }


def _ensure_code_available(db: Session, code: str, *, exclude_id: int | None = None) -> None:
    stmt = select(MaterialAsset.id).where(MaterialAsset.code == code)
    if exclude_id is not None:
        stmt = stmt.where(MaterialAsset.id != exclude_id)
    if db.scalar(stmt.limit(1)) is not None:
        raise HTTPException(status_code=400, detail="素材编号已存在")


def _resolve_folder_id(db: Session, folder_id: int | None) -> int | None:
    if not folder_id:
        return None
    if not db.get(MaterialFolder, folder_id):
        raise HTTPException(status_code=400, detail="归属文件夹不存在")
    return folder_id


def create_material(db: Session, payload: MaterialCreate, identity: RequestIdentity) -> MaterialAsset:
    file_name = (payload.file_name or "").strip()
    if not file_name:
        raise HTTPException(status_code=400, detail="文件名不能为空")
    folder_id = _resolve_folder_id(db, payload.folder_id)
    code = (payload.code or "").strip()
    if code:
        _ensure_code_available(db, code)
    else:
        code = generate_material_code()

    material = MaterialAsset(
        code=code,
        file_name=file_name,
        title=(payload.title or "").strip() or _file_base(file_name),
        format=(payload.format or _file_format(file_name)).lower().lstrip("."),
        file_size=payload.file_size or 0,
        storage=normalize_driver(payload.storage),
        file_path=(payload.file_path or "").strip(),
        folder_id=folder_id,
        order_count=payload.order_count or 0,
        created_by=identity.user_id,
        updated_by=identity.user_id,
    )
    _apply_dimensions(material, payload.width or 0, payload.height or 0)
    db.add(material)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(material)
    return material


def update_material(
    db: Session,
    material_id: int,
    payload: MaterialUpdate,
    identity: RequestIdentity,
) -> MaterialAsset:
    material = get_material_or_404(db, material_id)
    ensure_material_access(material, identity, write=True)
    changes = payload.model_dump(exclude_unset=True)

    if changes.get("code") is not None:
        code = changes["code"].strip()
        if not code:
            raise HTTPException(status_code=400, detail="素材编号不能为空")
        if code != material.code:
            _ensure_code_available(db, code, exclude_id=material.id)
        material.code = code
    if changes.get("title") is not None:
        material.title = changes["title"].strip()
    if "folder_id" in changes:
        material.folder_id = _resolve_folder_id(db, changes["folder_id"])
    if changes.get("order_count") is not None:
        material.order_count = max(changes["order_count"], 0)
    if changes.get("width") is not None or changes.get("height") is not None:
        width = changes["width"] if changes.get("width") is not None else material.width
        height = changes["height"] if changes.get("height") is not None else material.height
        _apply_dimensions(material, width, height)
    material.updated_by = identity.user_id

    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(material)
    return material


def delete_material(
    db: Session,
    storage: StorageService,
    material_id: int,
    identity: RequestIdentity,
) -> None:
    material = get_material_or_404(db, material_id)
    ensure_material_access(material, identity, write=True)
    linked = db.scalar(
        select(func.count(OrderAttachment.id)).where(OrderAttachment.material_id == material.id)
    )
    if linked:
        raise HTTPException(status_code=400, detail="素材已被订单引用，无法删除")
    if material.file_path:
        try:
            storage.delete(material.file_path, material.storage)
        except StorageError as exc:
            raise HTTPException(status_code=500, detail=f"删除素材文件失败: {exc}") from exc
    try:
        db.delete(material)
        db.commit()
    except Exception:
        db.rollback()
        raise


def upload_material(
    db: Session,
    storage: StorageService,
    *,
    file_name: str,
    data: bytes,
    content_type: str,
    identity: RequestIdentity,
    title: str | None = None,
    folder_id: int | None = None,
    code: str | None = None,
    order_count: int | None = None,
) -> MaterialAsset:
    if not data:
        raise HTTPException(status_code=400, detail="文件不能为空")
    file_format = _file_format(file_name)
    if file_format not in IMAGE_FORMATS or not (content_type or "").startswith("image/"):
        raise HTTPException(
            status_code=400,
            detail="素材仅支持上传图片文件 (jpg/jpeg/png/gif/bmp/webp)",
        )
    width, height = read_image_size(data)
    if width <= 0 or height <= 0:
        raise HTTPException(status_code=400, detail="无法识别图片尺寸，确认文件是否为有效图片")

    resolved_folder = _resolve_folder_id(db, folder_id)
    resolved_code = (code or "").strip()
    if resolved_code:
        _ensure_code_available(db, resolved_code)
    else:
        resolved_code = generate_material_code()

    key = build_material_key(resolved_code, file_name)
    try:
        stored = storage.upload(key, BytesIO(data), len(data), content_type)
    except StorageError as exc:
        raise HTTPException(status_code=500, detail=f"上传素材失败: {exc}") from exc

    material = MaterialAsset(
        code=resolved_code,
        file_name=file_name,
        title=(title or "").strip() or _file_base(file_name),
        format=file_format,
        file_size=stored.size,
        storage=stored.storage,
        file_path=stored.key,
        folder_id=resolved_folder,
        order_count=order_count or 0,
        created_by=identity.user_id,
        updated_by=identity.user_id,
    )
    _apply_dimensions(material, width, height)
    db.add(material)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        storage.delete_quietly(stored.key, stored.storage, reason="material_db_write_failed")
        raise
    db.refresh(material)
    return material


def ensure_material_asset_for_order(
    db: Session,
    storage: StorageService,
    *,
    order: OrderInfo,
    file_name: str,
    data: bytes,
    content_type: str,
    identity: RequestIdentity,
) -> MaterialAsset:
    """
    Make sure the shared library has an asset for an uploaded material image.

    An asset matching the derived code or the file name is reused as-is;
    otherwise the image is stored under the materials prefix and filed into
    the default folder.
    """
    code = (order.item_no or "").strip() or _file_base(file_name).strip() or generate_material_code()
    existing = db.scalar(
        select(MaterialAsset)
        .where(or_(MaterialAsset.code == code, MaterialAsset.file_name == file_name))
        .limit(1)
    )
    if existing:
        return existing

    width, height = read_image_size(data)
    stored = storage.upload(build_material_key(code, file_name), BytesIO(data), len(data), content_type)
    try:
        folder = ensure_default_folder(db, identity.user_id)
        material = MaterialAsset(
            code=code,
            file_name=file_name,
            title=(order.product_name or "").strip() or _file_base(file_name),
            format=_file_format(file_name),
            file_size=stored.size,
            storage=stored.storage,
            file_path=stored.key,
            folder_id=folder.id,
            order_count=order.item_count if order.item_count and order.item_count > 0 else 1,
            created_by=identity.user_id,
            updated_by=identity.user_id,
        )
        _apply_dimensions(material, width, height)
        db.add(material)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        storage.delete_quietly(stored.key, stored.storage, reason="material_sync_db_write_failed")
        raise
    db.refresh(material)
    return material
