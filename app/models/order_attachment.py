from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from sqlalchemy import BigInteger, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.mixins import TimestampMixin

if TYPE_CHECKING:
    from app.models.material import MaterialAsset
    from app.models.order_info import OrderInfo

FILE_TYPE_SHIPPING_LABEL = "shipping_label"
FILE_TYPE_MATERIAL_IMAGE = "material_image"
FILE_TYPES = (FILE_TYPE_SHIPPING_LABEL, FILE_TYPE_MATERIAL_IMAGE)


class OrderAttachment(TimestampMixin, Base):
    """
    A file bound to one order in one role.

    When material_id is set the blob at file_path belongs to the material
    asset and must survive this row; otherwise the attachment owns it.
    """

    __table_args__ = (UniqueConstraint("order_id", "file_type", name="uq_order_attachment_role"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("order_info.id"), nullable=False, index=True)
    file_type: Mapped[str] = mapped_column(String(32), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(512), nullable=False)
    file_ext: Mapped[str] = mapped_column(String(16), nullable=False, default="")
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    storage: Mapped[str] = mapped_column(String(16), nullable=False, default="local")
    uploader_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    material_id: Mapped[int | None] = mapped_column(
        ForeignKey("material_asset.id"), nullable=True, index=True
    )

    order: Mapped["OrderInfo"] = relationship("OrderInfo", back_populates="attachments")
    material: Mapped[Optional["MaterialAsset"]] = relationship("MaterialAsset")

    @property
    def owns_blob(self) -> bool:
        return self.material_id is None and bool(self.file_path)
