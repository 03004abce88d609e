from netorch.models.client import (  # noqa: F401
    Client,
    ClientEquipment,
    ClientStatus,
    ServicePackage,
)
from netorch.models.equipment import (  # noqa: F401
    ApprovalStatus,
    DeviceStatus,
    Equipment,
    EquipmentType,
)
from netorch.models.network_event import NetworkEvent  # noqa: F401
from netorch.models.usage import UsageSample  # noqa: F401
