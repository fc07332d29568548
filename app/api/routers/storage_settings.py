from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.schemas.storage_settings import StorageSettingsOut, StorageSettingsUpdate
from app.services.storage_service import DRIVER_COS, DRIVER_LOCAL, StorageConfig
from app.services.system_config_service import load_storage_config, save_storage_config

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/storage/settings", tags=["storage-settings"])


def _to_out(config: StorageConfig) -> dict:
    return {
        "storage_driver": config.driver,
        "local_storage_path": config.local_storage_path,
        "local_base_url": config.local_base_url,
        "cos_key_prefix": config.key_prefix,
    }


@router.get("", response_model=StorageSettingsOut)
def get_storage_settings(db: Session = Depends(get_db)):
    return _to_out(load_storage_config(db))


@router.put("", response_model=StorageSettingsOut)
def update_storage_settings(payload: StorageSettingsUpdate, db: Session = Depends(get_db)):
    driver = (payload.storage_driver or "").strip().lower()
    if driver not in {DRIVER_LOCAL, DRIVER_COS}:
        raise HTTPException(status_code=400, detail="存储方式无效")
    if driver == DRIVER_COS and not StorageConfig.from_settings().cos_ready:
        raise HTTPException(status_code=400, detail="COS配置不完整，无法启用COS存储")

    values = {"storage_driver": driver}
    for key in ("local_storage_path", "local_base_url", "cos_key_prefix"):
        value = getattr(payload, key)
        if value is not None:
            values[key] = value.strip()
    try:
        save_storage_config(db, values)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("storage_settings_updated driver=%s", driver)
    return _to_out(load_storage_config(db))
