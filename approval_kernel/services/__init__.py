"""
Kernel services.

WorkflowEngine is the only writer of approval chains.  Notification
delivery is injected through NotificationPort.
"""

from approval_kernel.services.notification import (
    LoggingNotificationPort,
    NotificationPort,
)
from approval_kernel.services.workflow_engine import (
    BatchFailure,
    BatchResult,
    BatchSuccess,
    DecisionRequest,
    WorkflowEngine,
)

__all__ = [
    "WorkflowEngine",
    "DecisionRequest",
    "BatchResult",
    "BatchSuccess",
    "BatchFailure",
    "NotificationPort",
    "LoggingNotificationPort",
]
