from netorch.services.device_commands.base import (  # noqa: F401
    CommandErrorKind,
    CommandRejectedError,
    CommandResult,
    DeviceCommandError,
    DeviceConfigurationError,
    DeviceTransport,
    DeviceUnreachableError,
    DiscoveryScanner,
    InterfaceCounters,
    QueueCounters,
    RateLimitSpec,
    SessionInfo,
    SystemResource,
    UnsupportedCommandError,
)
from netorch.services.device_commands.client import (  # noqa: F401
    CapabilityTransportResolver,
    DeviceCommandClient,
    StaticTransportResolver,
)
