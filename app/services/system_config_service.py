from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.dictionary import DICT_STATUS_ACTIVE, SHIPPING_WAREHOUSE_DICT, DictItem, DictType
from app.models.system_config import CONFIG_STATUS_ACTIVE, SystemConfig
from app.services.storage_service import StorageConfig

DEFAULT_ADDRESS_KEY = "default_address"

# system_config key -> StorageConfig field
STORAGE_CONFIG_KEYS: dict[str, str] = {
    "storage_driver": "driver",
    "local_storage_path": "local_storage_path",
    "local_base_url": "local_base_url",
    "cos_key_prefix": "key_prefix",
}
_STORAGE_LABELS = {
    "storage_driver": "存储方式",
    "local_storage_path": "本地存储路径",
    "local_base_url": "本地访问地址",
    "cos_key_prefix": "COS对象前缀",
}
_STORAGE_GROUP = "storage"


def get_config_values(db: Session, keys: list[str]) -> dict[str, str]:
    rows = db.scalars(
        select(SystemConfig).where(
            SystemConfig.config_key.in_(keys),
            SystemConfig.status == CONFIG_STATUS_ACTIVE,
        )
    ).all()
    return {row.config_key: row.config_value for row in rows}


def get_config_value(db: Session, key: str) -> str | None:
    return get_config_values(db, [key]).get(key)


def upsert_config_values(
    db: Session,
    values: dict[str, str],
    *,
    group: str,
    labels: dict[str, str] | None = None,
) -> None:
    """Stage key/value rows on the session; the caller owns the commit."""
    labels = labels or {}
    existing = {
        row.config_key: row
        for row in db.scalars(
            select(SystemConfig).where(SystemConfig.config_key.in_(list(values)))
        ).all()
    }
    for sort, (key, value) in enumerate(values.items()):
        row = existing.get(key)
        if row is None:
            row = SystemConfig(
                config_key=key,
                label=labels.get(key, key),
                config_type="text",
                group_name=group,
                sort=sort,
            )
            db.add(row)
        row.config_value = value
        row.status = CONFIG_STATUS_ACTIVE


def load_default_address(db: Session) -> str:
    value = (get_config_value(db, DEFAULT_ADDRESS_KEY) or "").strip()
    return value or settings.LOCAL_BASE_URL


def load_shipping_warehouse_whitelist(db: Session) -> frozenset[str]:
    rows = db.execute(
        select(DictItem.label, DictItem.value)
        .join(DictType, DictType.id == DictItem.type_id)
        .where(
            DictType.code == SHIPPING_WAREHOUSE_DICT,
            DictItem.status == DICT_STATUS_ACTIVE,
        )
    ).all()
    codes: set[str] = set()
    for label, value in rows:
        for text in (label, value):
            cleaned = (text or "").strip().upper()
            if cleaned:
                codes.add(cleaned)
    return frozenset(codes)


def load_storage_config(db: Session, base: StorageConfig | None = None) -> StorageConfig:
    base = base or StorageConfig.from_settings(settings)
    persisted = get_config_values(db, list(STORAGE_CONFIG_KEYS))
    overrides = {STORAGE_CONFIG_KEYS[key]: value for key, value in persisted.items()}
    return base.with_overrides(overrides)


def save_storage_config(db: Session, values: dict[str, str]) -> None:
    upsert_config_values(
        db,
        {key: value for key, value in values.items() if key in STORAGE_CONFIG_KEYS},
        group=_STORAGE_GROUP,
        labels=_STORAGE_LABELS,
    )
