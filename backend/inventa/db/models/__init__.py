from .adjustment_record import AdjustmentRecord  # noqa: F401
from .audit_log import AuditLogEntry  # noqa: F401
from .consumable import Consumable  # noqa: F401
from .notification import Notification  # noqa: F401
from .organization import Faculty, Room, Unit, User, Warehouse  # noqa: F401
from .procurement import Procurement, ProcurementLine, ProcurementTimeline  # noqa: F401
from .request import Request, RequestLine, RequestTimeline  # noqa: F401
from .room_stock import RoomStockLine  # noqa: F401
from .usage_report import UsageDetail, UsageReport  # noqa: F401
from .warehouse_stock import WarehouseStockLine  # noqa: F401

from . import adjustment_record  # noqa: F401
from . import audit_log  # noqa: F401
from . import consumable  # noqa: F401
from . import notification  # noqa: F401
from . import organization  # noqa: F401
from . import procurement  # noqa: F401
from . import request  # noqa: F401
from . import room_stock  # noqa: F401
from . import usage_report  # noqa: F401
from . import warehouse_stock  # noqa: F401
