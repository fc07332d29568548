from __future__ import annotations

from pydantic import BaseModel


class StorageSettingsOut(BaseModel):
    storage_driver: str
    local_storage_path: str
    local_base_url: str
    cos_key_prefix: str


class StorageSettingsUpdate(BaseModel):
    storage_driver: str
    local_storage_path: str | None = None
    local_base_url: str | None = None
    cos_key_prefix: str | None = None
