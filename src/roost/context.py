from __future__ import annotations

import itertools
import time
from collections.abc import Callable

from .config import EngineSettings
from .events import SessionEvent
from .logging import get_logger
from .permissions import PermissionStore
from .scheduler import Scheduler

logger = get_logger(__name__)

__all__ = ["EngineContext"]

RequestSink = Callable[[object], None]
EventSink = Callable[[SessionEvent], None]


def _drop_request(request: object) -> None:
    logger.debug("context.request_dropped", request=repr(request))


def _drop_event(event: SessionEvent) -> None:
    logger.debug("context.event_dropped", kind=event.kind, session_id=event.session_id)


class EngineContext:
    """Process-scoped collaborators shared by a dispatcher and its sessions.

    Nothing here is global: two contexts give two fully independent engines.
    """

    def __init__(
        self,
        *,
        settings: EngineSettings | None = None,
        permissions: PermissionStore | None = None,
        scheduler: Scheduler | None = None,
        clock: Callable[[], float] = time.monotonic,
        send_request: RequestSink | None = None,
        send_event: EventSink | None = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.clock = clock
        self.permissions = (
            permissions
            if permissions is not None
            else PermissionStore(self.settings.permissions)
        )
        self.scheduler = scheduler or Scheduler(clock=clock)
        self.send_request: RequestSink = send_request or _drop_request
        self.send_event: EventSink = send_event or _drop_event
        self._session_ids = itertools.count(1)

    def next_session_id(self, builder_id: str, key: int) -> str:
        return f"{builder_id}:{key}:{next(self._session_ids)}"
