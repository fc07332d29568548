from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import FileResponse, RedirectResponse
from sqlalchemy.orm import Session

from app.api.deps.request_identity import get_request_identity
from app.api.deps.storage import get_storage
from app.db.session import get_db
from app.schemas.base import MessageOut
from app.schemas.material import MaterialCreate, MaterialListOut, MaterialOut, MaterialUpdate
from app.schemas.request_identity import RequestIdentity
from app.services.attachment_service import detect_content_type
from app.services.material_service import (
    create_material,
    delete_material,
    ensure_material_access,
    get_material_or_404,
    list_materials,
    material_order_counts,
    material_to_out,
    update_material,
    upload_material,
)
from app.services.storage_service import DRIVER_LOCAL, StorageError, StorageService, normalize_driver

router = APIRouter(prefix="/materials", tags=["materials"])


def _out(db: Session, material, storage: StorageService) -> dict:
    counts = material_order_counts(db, [material.id])
    return material_to_out(material, storage, counts.get(material.id, 0))


@router.get("", response_model=MaterialListOut)
def list_material_assets(
    keyword: str | None = Query(None),
    folder_id: int | None = Query(None),
    shape: str | None = Query(None),
    format: str | None = Query(None),
    page: int | None = Query(None),
    page_size: int | None = Query(None),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    identity: RequestIdentity = Depends(get_request_identity),
):
    return list_materials(
        db,
        storage,
        identity=identity,
        keyword=keyword,
        folder_id=folder_id,
        shape=shape,
        file_format=format,
        page=page,
        page_size=page_size,
    )


@router.post("/upload", response_model=MaterialOut, status_code=status.HTTP_201_CREATED)
async def upload_material_asset(
    file: UploadFile | None = File(None),
    title: str | None = Form(None),
    folder_id: int | None = Form(None),
    code: str | None = Form(None),
    order_count: int | None = Form(None),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    identity: RequestIdentity = Depends(get_request_identity),
):
    if file is None:
        raise HTTPException(status_code=400, detail="未选择上传文件")
    file_name = file.filename or ""
    material = upload_material(
        db,
        storage,
        file_name=file_name,
        data=await file.read(),
        content_type=detect_content_type(file_name, file.content_type),
        identity=identity,
        title=title,
        folder_id=folder_id,
        code=code,
        order_count=order_count,
    )
    return _out(db, material, storage)


@router.get("/{material_id}", response_model=MaterialOut)
def get_material_asset(
    material_id: int,
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    identity: RequestIdentity = Depends(get_request_identity),
):
    material = get_material_or_404(db, material_id)
    ensure_material_access(material, identity, write=False)
    return _out(db, material, storage)


@router.get("/{material_id}/download")
def download_material_asset(
    material_id: int,
    disposition: str = Query("attachment"),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    identity: RequestIdentity = Depends(get_request_identity),
):
    material = get_material_or_404(db, material_id)
    ensure_material_access(material, identity, write=False)
    if not material.file_path:
        raise HTTPException(status_code=404, detail="素材文件不存在")

    if normalize_driver(material.storage) != DRIVER_LOCAL:
        try:
            url = storage.presigned_download_url(material.file_path, material.storage)
        except StorageError as exc:
            raise HTTPException(status_code=500, detail=f"生成下载链接失败: {exc}") from exc
        return RedirectResponse(url, status_code=status.HTTP_302_FOUND)

    try:
        path = storage.local_path(material.file_path)
    except StorageError as exc:
        raise HTTPException(status_code=400, detail="素材路径无效") from exc
    if not path.is_file():
        raise HTTPException(status_code=404, detail="素材文件不存在")
    return FileResponse(
        path,
        filename=material.file_name,
        content_disposition_type="inline" if disposition == "inline" else "attachment",
    )


@router.post("", response_model=MaterialOut, status_code=status.HTTP_201_CREATED)
def create_material_asset(
    payload: MaterialCreate,
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    identity: RequestIdentity = Depends(get_request_identity),
):
    material = create_material(db, payload, identity)
    return _out(db, material, storage)


@router.put("/{material_id}", response_model=MaterialOut)
def update_material_asset(
    material_id: int,
    payload: MaterialUpdate,
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    identity: RequestIdentity = Depends(get_request_identity),
):
    material = update_material(db, material_id, payload, identity)
    return _out(db, material, storage)


@router.delete("/{material_id}", response_model=MessageOut)
def delete_material_asset(
    material_id: int,
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    identity: RequestIdentity = Depends(get_request_identity),
):
    delete_material(db, storage, material_id, identity)
    return {"message": "删除成功"}
