from app.models.dictionary import DictItem, DictType  # noqa: F401
from app.models.material import MaterialAsset, MaterialFolder  # noqa: F401
from app.models.order_attachment import OrderAttachment  # noqa: F401
from app.models.order_info import OrderInfo  # noqa: F401
from app.models.system_config import SystemConfig  # noqa: F401
