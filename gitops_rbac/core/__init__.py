# GITOPS RBAC Core Infrastructure
"""
Core infrastructure shared by every component.

Modules:
    exceptions: Exception hierarchy
    event_bus: Async pub/sub for audit and policy events
    access_core: Facade wiring store, compiler, engine and audit logger
"""

from .event_bus import Event, EventBus, EventPriority, EventType
from .exceptions import (
    AccessControlError,
    AuditPersistenceError,
    CompileError,
    CompileErrorKind,
    VerificationError,
)

__all__ = [
    "Event",
    "EventBus",
    "EventPriority",
    "EventType",
    "AccessControlError",
    "AuditPersistenceError",
    "CompileError",
    "CompileErrorKind",
    "VerificationError",
]
