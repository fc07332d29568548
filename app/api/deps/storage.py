from fastapi import Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.services.storage_service import StorageService
from app.services.system_config_service import load_storage_config


def get_storage(db: Session = Depends(get_db)) -> StorageService:
    """Storage bound to the settings in effect for this request."""
    return StorageService(load_storage_config(db))
