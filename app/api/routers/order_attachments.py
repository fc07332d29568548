from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from app.api.deps.request_identity import get_request_identity
from app.api.deps.storage import get_storage
from app.db.session import get_db
from app.models.order_attachment import FILE_TYPES
from app.schemas.attachment import AttachmentLinkIn, AttachmentOut
from app.schemas.base import MessageOut
from app.schemas.request_identity import RequestIdentity
from app.services.attachment_service import (
    UploadedFile,
    attachment_to_out,
    delete_attachment,
    get_attachment_or_404,
    get_order_or_404,
    link_material,
    list_attachments,
    save_order_attachment,
)
from app.services.storage_service import DRIVER_LOCAL, StorageError, StorageService, normalize_driver

router = APIRouter(prefix="/orders/{order_id}/attachments", tags=["order-attachments"])


def _check_file_type(file_type: str) -> str:
    cleaned = (file_type or "").strip()
    if cleaned not in FILE_TYPES:
        raise HTTPException(status_code=400, detail="不支持的附件类型")
    return cleaned


@router.get("", response_model=list[AttachmentOut])
def list_order_attachments(
    order_id: int,
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    identity: RequestIdentity = Depends(get_request_identity),
):
    get_order_or_404(db, order_id, identity)
    return [attachment_to_out(row, storage) for row in list_attachments(db, order_id)]


@router.post("", response_model=AttachmentOut)
async def upload_order_attachment(
    order_id: int,
    file: UploadFile | None = File(None),
    file_type: str = Form(""),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    identity: RequestIdentity = Depends(get_request_identity),
):
    order = get_order_or_404(db, order_id, identity)
    if file is None:
        raise HTTPException(status_code=400, detail="未选择上传文件")
    upload = UploadedFile(
        file_name=file.filename or "",
        data=await file.read(),
        content_type=file.content_type or "",
    )
    attachment = save_order_attachment(
        db,
        storage,
        order=order,
        file_type=_check_file_type(file_type),
        upload=upload,
        identity=identity,
    )
    return attachment_to_out(attachment, storage)


@router.post("/link", response_model=AttachmentOut)
def link_order_attachment(
    order_id: int,
    payload: AttachmentLinkIn,
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    identity: RequestIdentity = Depends(get_request_identity),
):
    order = get_order_or_404(db, order_id, identity)
    attachment = link_material(
        db,
        storage,
        order=order,
        material_id=payload.material_id,
        file_type=_check_file_type(payload.file_type),
        identity=identity,
    )
    return attachment_to_out(attachment, storage)


@router.get("/{attachment_id}/download")
def download_order_attachment(
    order_id: int,
    attachment_id: int,
    inline: int = Query(0),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    identity: RequestIdentity = Depends(get_request_identity),
):
    get_order_or_404(db, order_id, identity)
    attachment = get_attachment_or_404(db, order_id, attachment_id)
    if normalize_driver(attachment.storage) != DRIVER_LOCAL:
        try:
            return {"url": storage.presigned_download_url(attachment.file_path, attachment.storage)}
        except StorageError as exc:
            raise HTTPException(status_code=500, detail=f"生成下载链接失败: {exc}") from exc

    try:
        path = storage.local_path(attachment.file_path)
    except StorageError as exc:
        raise HTTPException(status_code=400, detail="附件路径无效") from exc
    if not path.is_file():
        raise HTTPException(status_code=404, detail="附件文件不存在")
    return FileResponse(
        path,
        filename=attachment.file_name,
        content_disposition_type="inline" if inline else "attachment",
    )


@router.delete("/{attachment_id}", response_model=MessageOut)
def delete_order_attachment(
    order_id: int,
    attachment_id: int,
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    identity: RequestIdentity = Depends(get_request_identity),
):
    get_order_or_404(db, order_id, identity)
    attachment = get_attachment_or_404(db, order_id, attachment_id)
    delete_attachment(db, storage, attachment)
    return {"message": "删除成功"}
