from __future__ import annotations

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from sqlalchemy.orm import Session

from app.api.deps.request_identity import get_request_identity
from app.api.deps.storage import get_storage
from app.db.session import get_db
from app.models.order_info import ORDER_TYPE_PLATFORM
from app.schemas.attachment import BatchUploadResult
from app.schemas.base import MessageOut
from app.schemas.order import OrderImportResult, OrderListOut, OrderOut, OrderSave
from app.schemas.request_identity import RequestIdentity
from app.services.attachment_service import UploadedFile, batch_upload, get_order_or_404
from app.services.order_export_service import export_orders
from app.services.order_import_service import import_orders
from app.services.order_service import (
    OrderFilters,
    create_order,
    delete_order,
    list_orders,
    orders_to_out,
    update_order,
)
from app.services.storage_service import StorageService

router = APIRouter(prefix="/orders", tags=["orders"])


def _filters(
    tab: str = Query(ORDER_TYPE_PLATFORM),
    time_field: str | None = Query(None),
    time_start: str | None = Query(None),
    time_end: str | None = Query(None),
    exact_field: str | None = Query(None),
    exact_value: str | None = Query(None),
    fuzzy_field: str | None = Query(None),
    fuzzy_keyword: str | None = Query(None),
) -> OrderFilters:
    return OrderFilters(
        tab=tab.strip().lower(),
        time_field=time_field,
        time_start=time_start,
        time_end=time_end,
        exact_field=exact_field,
        exact_value=exact_value,
        fuzzy_field=fuzzy_field,
        fuzzy_keyword=fuzzy_keyword,
    )


@router.get("", response_model=OrderListOut)
def list_order_rows(
    page: int | None = Query(None),
    page_size: int | None = Query(None),
    filters: OrderFilters = Depends(_filters),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    identity: RequestIdentity = Depends(get_request_identity),
):
    return list_orders(
        db,
        storage,
        identity=identity,
        filters=filters,
        page=page,
        page_size=page_size,
    )


@router.get("/export")
def export_order_rows(
    filters: OrderFilters = Depends(_filters),
    db: Session = Depends(get_db),
    identity: RequestIdentity = Depends(get_request_identity),
):
    return export_orders(db, identity=identity, filters=filters)


@router.post("/import", response_model=OrderImportResult)
async def import_order_rows(
    file: UploadFile | None = File(None),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    identity: RequestIdentity = Depends(get_request_identity),
):
    payload = await file.read() if file is not None else None
    return import_orders(db, storage, payload, identity=identity)


@router.post("/batch-attachments", response_model=BatchUploadResult)
async def upload_batch_attachments(
    files: list[UploadFile] | None = File(None),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    identity: RequestIdentity = Depends(get_request_identity),
):
    uploads = [
        UploadedFile(
            file_name=item.filename or "",
            data=await item.read(),
            content_type=item.content_type or "",
        )
        for item in files or []
    ]
    return batch_upload(db, storage, files=uploads, identity=identity)


@router.get("/{order_id}", response_model=OrderOut)
def get_order_row(
    order_id: int,
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    identity: RequestIdentity = Depends(get_request_identity),
):
    order = get_order_or_404(db, order_id, identity)
    return orders_to_out(db, [order], storage)[0]


@router.post("", response_model=OrderOut, status_code=status.HTTP_201_CREATED)
def create_order_row(
    payload: OrderSave,
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    identity: RequestIdentity = Depends(get_request_identity),
):
    order = create_order(db, payload, identity)
    return orders_to_out(db, [order], storage)[0]


@router.put("/{order_id}", response_model=OrderOut)
def update_order_row(
    order_id: int,
    payload: OrderSave,
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    identity: RequestIdentity = Depends(get_request_identity),
):
    order = update_order(db, order_id, payload, identity)
    return orders_to_out(db, [order], storage)[0]


@router.delete("/{order_id}", response_model=MessageOut)
def delete_order_row(
    order_id: int,
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    identity: RequestIdentity = Depends(get_request_identity),
):
    delete_order(db, storage, order_id, identity)
    return {"message": "删除成功"}
