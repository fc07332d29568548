from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from app.schemas.base import BaseSchema


class MaterialFolderCreate(BaseModel):
    name: str = ""
    parent_id: int | None = None


class MaterialFolderUpdate(BaseModel):
    name: str | None = None
    # 0 moves the folder to the root
    parent_id: int | None = None


class MaterialFolderOut(BaseSchema):
    id: int
    name: str
    parent_id: int | None = None
    path: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    children: list[MaterialFolderOut] = Field(default_factory=list)


class MaterialCreate(BaseModel):
    code: str | None = None
    file_name: str = ""
    title: str | None = None
    width: int | None = None
    height: int | None = None
    format: str | None = None
    file_size: int | None = None
    storage: str | None = None
    file_path: str | None = None
    folder_id: int | None = None
    order_count: int | None = None


class MaterialUpdate(BaseModel):
    code: str | None = None
    title: str | None = None
    width: int | None = None
    height: int | None = None
    # 0 clears the folder
    folder_id: int | None = None
    order_count: int | None = None


class MaterialOut(BaseSchema):
    id: int
    code: str
    file_name: str
    title: str = ""
    width: int = 0
    height: int = 0
    dimensions: str = ""
    shape: str = ""
    format: str = ""
    file_size: int = 0
    storage: str = ""
    file_path: str = ""
    folder_id: int | None = None
    order_count: int = 0
    created_by: int | None = None
    updated_by: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    preview_url: str = ""
    download_url: str = ""


class MaterialListOut(BaseModel):
    materials: list[MaterialOut]
    total: int
    page: int
    page_size: int
