from __future__ import annotations

from . import spawn
from .builder import CollisionPolicy, SessionBuilder
from .context import EngineContext
from .dispatcher import DispatchResult, Dispatcher
from .events import SessionEvent
from .model import Update, decode_update
from .permissions import Permissions, PermissionStore
from .routes import RouteController
from .scheduler import ScheduleHandle, Scheduler
from .session import ChatSession, Session, SessionTag, UserSession

__version__ = "0.1.0"

__all__ = [
    "ChatSession",
    "CollisionPolicy",
    "DispatchResult",
    "Dispatcher",
    "EngineContext",
    "PermissionStore",
    "Permissions",
    "RouteController",
    "ScheduleHandle",
    "Scheduler",
    "Session",
    "SessionBuilder",
    "SessionEvent",
    "SessionTag",
    "Update",
    "UserSession",
    "decode_update",
    "spawn",
]
