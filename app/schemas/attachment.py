from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from app.schemas.base import BaseSchema


class AttachmentOut(BaseSchema):
    id: int
    order_id: int
    file_type: str
    file_name: str
    file_path: str
    file_ext: str = ""
    file_size: int = 0
    checksum: str = ""
    storage: str = ""
    uploader_id: int | None = None
    material_id: int | None = None
    url: str = ""
    created_at: datetime | None = None


class AttachmentLinkIn(BaseModel):
    material_id: int
    file_type: str


class BatchUploadSuccess(BaseModel):
    file_name: str
    order_id: int
    order_no: str
    file_type: str
    url: str = ""
    message: str


class BatchUploadFailure(BaseModel):
    file_name: str
    message: str


class BatchUploadResult(BaseModel):
    message: str
    success: list[BatchUploadSuccess] = Field(default_factory=list)
    failed: list[BatchUploadFailure] = Field(default_factory=list)
