"""
Blob storage for order attachments and material assets.

Two drivers share one narrow interface (upload / delete / build_url /
presigned_download_url): a local filesystem driver and an S3-compatible
object store driver. The active driver comes from a StorageConfig that is
built from settings and refreshed from persisted storage settings per request;
rows remember the driver they were written with so later deletes and
downloads go to the right backend even after the active driver changes.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import secrets
import shutil
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import BinaryIO, Mapping

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import Settings, settings

logger = logging.getLogger(__name__)

DRIVER_LOCAL = "local"
DRIVER_COS = "cos"

DEFAULT_KEY_PREFIX = "orders"
MATERIAL_KEY_PREFIX = "materials"

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]+")


class StorageError(Exception):
    pass


def normalize_driver(value: str | None) -> str:
    return DRIVER_COS if (value or "").strip().lower() == DRIVER_COS else DRIVER_LOCAL


def sanitize_object_name(value: str) -> str:
    cleaned = _UNSAFE_NAME_CHARS.sub("_", (value or "").strip().lower()).strip("_")
    return cleaned or secrets.token_hex(4)


def _stamp(now: datetime | None = None) -> str:
    # Random part keeps keys distinct when two uploads land in the same second.
    return f"{(now or datetime.now(UTC)).strftime('%Y%m%dT%H%M%S')}_{secrets.token_hex(4)}"


def _split_name(file_name: str) -> tuple[str, str]:
    base, ext = os.path.splitext(os.path.basename(file_name or ""))
    return base, ext.lower()


def build_attachment_key(
    prefix: str,
    order_id: int,
    file_name: str,
    *,
    now: datetime | None = None,
) -> str:
    base, ext = _split_name(file_name)
    clean_prefix = (prefix or "").strip("/") or DEFAULT_KEY_PREFIX
    return f"{clean_prefix}/{order_id}/{_stamp(now)}_{sanitize_object_name(base)}{ext}"


def build_material_key(code: str, file_name: str, *, now: datetime | None = None) -> str:
    base, ext = _split_name(file_name)
    return (
        f"{MATERIAL_KEY_PREFIX}/{sanitize_object_name(code)}/"
        f"{_stamp(now)}_{sanitize_object_name(base)}{ext}"
    )


@dataclass(frozen=True)
class StorageConfig:
    driver: str = DRIVER_LOCAL
    local_storage_path: str = "./uploads"
    local_base_url: str = ""
    key_prefix: str = DEFAULT_KEY_PREFIX
    cos_secret_id: str = ""
    cos_secret_key: str = ""
    cos_bucket: str = ""
    cos_region: str = ""
    cos_endpoint_url: str = ""
    cos_base_url: str = ""
    url_expires: int = 3600

    @classmethod
    def from_settings(cls, source: Settings = settings) -> StorageConfig:
        return cls(
            driver=normalize_driver(source.STORAGE_DRIVER),
            local_storage_path=source.LOCAL_STORAGE_PATH,
            local_base_url=source.LOCAL_BASE_URL,
            key_prefix=source.COS_KEY_PREFIX,
            cos_secret_id=source.COS_SECRET_ID,
            cos_secret_key=source.COS_SECRET_KEY,
            cos_bucket=source.COS_BUCKET,
            cos_region=source.COS_REGION,
            cos_endpoint_url=source.COS_ENDPOINT_URL,
            cos_base_url=source.COS_BASE_URL,
            url_expires=source.COS_URL_EXPIRES,
        )

    def with_overrides(self, overrides: Mapping[str, str]) -> StorageConfig:
        changes: dict[str, str] = {}
        for name in ("driver", "local_storage_path", "local_base_url", "key_prefix"):
            value = (overrides.get(name) or "").strip()
            if value:
                changes[name] = normalize_driver(value) if name == "driver" else value
        return replace(self, **changes) if changes else self

    @property
    def cos_ready(self) -> bool:
        return all((self.cos_secret_id, self.cos_secret_key, self.cos_bucket, self.cos_region))


class HashingReader:
    """File-like wrapper that hashes exactly the bytes its consumer reads."""

    def __init__(self, stream: BinaryIO):
        self._stream = stream
        self._digest = hashlib.sha256()
        self.bytes_read = 0

    def read(self, size: int = -1) -> bytes:
        chunk = self._stream.read(size)
        if chunk:
            self._digest.update(chunk)
            self.bytes_read += len(chunk)
        return chunk

    def hexdigest(self) -> str:
        return self._digest.hexdigest()


class LocalStorageDriver:
    name = DRIVER_LOCAL

    def __init__(self, root: str, base_url: str = ""):
        self.root = Path(root or "./uploads").resolve()
        self.base_url = base_url or ""

    def resolve_path(self, key: str) -> Path:
        path = (self.root / key.lstrip("/")).resolve()
        if path == self.root or self.root not in path.parents:
            raise StorageError("invalid object key path")
        return path

    def upload(self, key: str, stream: BinaryIO, size: int, content_type: str) -> str:
        path = self.resolve_path(key)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("wb") as handle:
                shutil.copyfileobj(stream, handle)
            os.replace(tmp_path, path)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise StorageError(f"local write failed: {exc}") from exc
        return self.build_url(key)

    def delete(self, key: str) -> None:
        if not key:
            return
        try:
            self.resolve_path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"local delete failed: {exc}") from exc

    def build_url(self, key: str) -> str:
        if not self.base_url:
            return ""
        return f"{self.base_url.rstrip('/')}/{key.lstrip('/')}"

    def presigned_download_url(self, key: str) -> str:
        return self.build_url(key)


class ObjectStoreDriver:
    """S3-compatible bucket client (Tencent COS exposes the S3 API)."""

    name = DRIVER_COS

    def __init__(self, config: StorageConfig, client=None):
        if not config.cos_ready:
            raise StorageError("remote storage is not configured")
        self.config = config
        self._client = client

    @property
    def client(self):
        if self._client is None:
            session = boto3.session.Session(
                aws_access_key_id=self.config.cos_secret_id,
                aws_secret_access_key=self.config.cos_secret_key,
                region_name=self.config.cos_region,
            )
            endpoint = self.config.cos_endpoint_url or (
                f"https://cos.{self.config.cos_region}.myqcloud.com"
            )
            self._client = session.client(
                "s3",
                endpoint_url=endpoint,
                config=BotoConfig(s3={"addressing_style": "virtual"}),
            )
        return self._client

    def upload(self, key: str, stream: BinaryIO, size: int, content_type: str) -> str:
        try:
            self.client.upload_fileobj(
                stream,
                self.config.cos_bucket,
                key,
                ExtraArgs={"ContentType": content_type or "application/octet-stream"},
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"remote upload failed: {exc}") from exc
        return self.build_url(key)

    def delete(self, key: str) -> None:
        if not key:
            return
        try:
            self.client.delete_object(Bucket=self.config.cos_bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"remote delete failed: {exc}") from exc

    def build_url(self, key: str) -> str:
        base = self.config.cos_base_url or (
            f"https://{self.config.cos_bucket}.cos.{self.config.cos_region}.myqcloud.com"
        )
        return f"{base.rstrip('/')}/{key.lstrip('/')}"

    def presigned_download_url(self, key: str) -> str:
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.config.cos_bucket, "Key": key},
                ExpiresIn=self.config.url_expires,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"presign failed: {exc}") from exc


@dataclass(frozen=True)
class StoredObject:
    key: str
    url: str
    storage: str
    size: int
    checksum: str


class StorageService:
    def __init__(self, config: StorageConfig, *, remote_client=None):
        self.config = config
        self._remote_client = remote_client
        self._drivers: dict[str, LocalStorageDriver | ObjectStoreDriver] = {}

    @property
    def driver_name(self) -> str:
        return normalize_driver(self.config.driver)

    def driver(self, name: str | None = None) -> LocalStorageDriver | ObjectStoreDriver:
        resolved = normalize_driver(name) if name else self.driver_name
        if resolved not in self._drivers:
            if resolved == DRIVER_COS:
                self._drivers[resolved] = ObjectStoreDriver(self.config, client=self._remote_client)
            else:
                self._drivers[resolved] = LocalStorageDriver(
                    self.config.local_storage_path, self.config.local_base_url
                )
        return self._drivers[resolved]

    def upload(self, key: str, stream: BinaryIO, size: int, content_type: str) -> StoredObject:
        driver = self.driver()
        reader = HashingReader(stream)
        url = driver.upload(key, reader, size, content_type)
        return StoredObject(
            key=key,
            url=url,
            storage=driver.name,
            size=reader.bytes_read or size,
            checksum=reader.hexdigest(),
        )

    def delete(self, key: str, storage: str | None = None) -> None:
        self.driver(storage).delete(key)

    def delete_quietly(self, key: str, storage: str | None = None, *, reason: str) -> None:
        """Compensating / cleanup delete: failures are logged, never raised."""
        try:
            self.delete(key, storage)
        except StorageError as exc:
            logger.warning("storage_cleanup_failed reason=%s key=%s error=%s", reason, key, exc)

    def object_url(self, key: str, storage: str | None = None) -> str:
        if not key:
            return ""
        return self.driver(storage).build_url(key)

    def presigned_download_url(self, key: str, storage: str | None = None) -> str:
        return self.driver(storage).presigned_download_url(key)

    def local_path(self, key: str) -> Path:
        driver = self.driver(DRIVER_LOCAL)
        return driver.resolve_path(key)
