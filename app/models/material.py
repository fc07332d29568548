from __future__ import annotations

from typing import Optional

from sqlalchemy import BigInteger, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.mixins import AuditMixin

DEFAULT_FOLDER_NAME = "默认文件夹"


class MaterialFolder(AuditMixin, Base):
    # path is the slash-joined chain of ancestor names ending with this folder
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("material_folder.id"), nullable=True, index=True
    )
    path: Mapped[str] = mapped_column(String(1024), nullable=False, default="", index=True)


class MaterialAsset(AuditMixin, Base):
    """Reusable image in the shared material library."""

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    # width/height/dimensions/shape are always written together
    width: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    height: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    dimensions: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    shape: Mapped[str] = mapped_column(String(16), nullable=False, default="", index=True)

    format: Mapped[str] = mapped_column(String(16), nullable=False, default="", index=True)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    storage: Mapped[str] = mapped_column(String(16), nullable=False, default="local")
    file_path: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    order_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    folder_id: Mapped[int | None] = mapped_column(
        ForeignKey("material_folder.id"), nullable=True, index=True
    )

    folder: Mapped[Optional[MaterialFolder]] = relationship("MaterialFolder")
