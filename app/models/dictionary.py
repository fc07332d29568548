from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.mixins import TimestampMixin

DICT_STATUS_ACTIVE = 1

# Whitelist of warehouse codes accepted on imported orders.
SHIPPING_WAREHOUSE_DICT = "shipping_warehouse"


class DictType(TimestampMixin, Base):
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    status: Mapped[int] = mapped_column(Integer, nullable=False, default=DICT_STATUS_ACTIVE)


class DictItem(TimestampMixin, Base):
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    type_id: Mapped[int] = mapped_column(ForeignKey("dict_type.id"), nullable=False, index=True)
    label: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    value: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    sort: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[int] = mapped_column(Integer, nullable=False, default=DICT_STATUS_ACTIVE)
