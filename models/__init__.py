from .payment import (
    FieldMapping,
    Payment,
    PortalTemplate,
    SemanticType,
    VirtualCard,
)
from .events import (
    ExtensionNotification,
    NotificationType,
    TelemetryEvent,
)
from .workflow import (
    WorkflowContext,
    WorkflowError,
    WorkflowState,
    WorkflowTimestamps,
)

__all__ = [
    "FieldMapping",
    "Payment",
    "PortalTemplate",
    "SemanticType",
    "VirtualCard",
    "ExtensionNotification",
    "NotificationType",
    "TelemetryEvent",
    "WorkflowContext",
    "WorkflowError",
    "WorkflowState",
    "WorkflowTimestamps",
]
