import re
from typing import Any

from sqlalchemy import MetaData
from sqlalchemy.orm import as_declarative, declared_attr

# Stable constraint names keep Alembic autogenerate diffs readable.
_NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


@as_declarative(metadata=MetaData(naming_convention=_NAMING_CONVENTION))
class Base:
    id: Any
    __name__: str

    # Class 'OrderAttachment' automatically becomes table 'order_attachment'
    @declared_attr
    def __tablename__(cls) -> str:
        return re.sub(r"(?<!^)(?=[A-Z])", "_", cls.__name__).lower()
