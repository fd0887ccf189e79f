"""Stateful per-chat and per-user session units.

A session is a single-writer actor. Updates and scheduled actions are queued
on its mailbox and run one at a time; a delivery that arrives while the
session is already draining (re-entrant dispatch, or another thread) waits
behind the job in progress.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar, Literal, TypeAlias

from .events import SessionEvent, SessionEventKind
from .flood import FloodLimiter
from .logging import get_logger
from .model import Update
from .permissions import Permissions
from .routes import RouteController
from .scheduler import Action, ScheduleHandle, fire

if TYPE_CHECKING:
    from .context import EngineContext

logger = get_logger(__name__)

__all__ = ["ChatSession", "Session", "SessionScope", "SessionTag", "UserSession"]

SessionScope: TypeAlias = Literal["chat", "user"]


@dataclass(frozen=True, slots=True)
class SessionTag:
    session_id: str
    builder_id: str
    scope: SessionScope
    key: int
    send_request: Callable[[object], None]
    send_event: Callable[[SessionEvent], None]


@dataclass(frozen=True, slots=True)
class _Job:
    update: Update | None = None
    action: Action | None = None
    handle: ScheduleHandle | None = None


class Session:
    scope: ClassVar[SessionScope]

    def __init__(self, tag: SessionTag, update: Update, context: EngineContext) -> None:
        self.tag = tag
        self.context = context
        self.routes = RouteController()
        self.permissions: Permissions = context.permissions.get_permissions(
            update.user_id
        )
        self.flood = FloodLimiter.from_settings(context.settings.flood)
        self.schedule = context.scheduler
        self.state: dict[str, Any] = {}
        now = context.clock()
        self.time_started = now
        self.time_last_active = now
        self.timeout_length = context.settings.session_timeout_s
        self._mailbox: deque[_Job] = deque()
        self._lock = threading.Lock()
        self._draining = False
        self._removal_requested = False
        self._closed = False
        self._on_closed: Callable[[Session], None] | None = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.tag.session_id}>"

    @property
    def session_id(self) -> str:
        return self.tag.session_id

    @property
    def builder_id(self) -> str:
        return self.tag.builder_id

    @property
    def key(self) -> int:
        return self.tag.key

    @property
    def busy(self) -> bool:
        return self._draining

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def removal_requested(self) -> bool:
        return self._removal_requested

    # Lifecycle hooks.

    def post_init(self) -> None:
        """Called once after the session was inserted into the index."""

    def setup_removal(self) -> None:
        """Called once when the session leaves the index."""

    def handle_update(self, update: Update) -> bool:
        return self.routes.route_request(update)

    # Entry points.

    def receive(self, update: Update) -> None:
        self._enqueue(_Job(update=update))

    def post(self, action: Action, *, handle: ScheduleHandle | None = None) -> None:
        self._enqueue(_Job(action=action, handle=handle))

    def _enqueue(self, job: _Job) -> None:
        with self._lock:
            self._mailbox.append(job)
            if self._draining:
                return
            self._draining = True
        self._drain()

    def _drain(self) -> None:
        try:
            while True:
                with self._lock:
                    if not self._mailbox:
                        self._draining = False
                        on_closed, self._on_closed = self._on_closed, None
                        break
                    job = self._mailbox.popleft()
                try:
                    self._run(job)
                except Exception as exc:
                    logger.exception(
                        "session.job_failed",
                        session_id=self.session_id,
                        error=str(exc),
                        error_type=exc.__class__.__name__,
                    )
        except BaseException:
            # interrupted mid-drain; queued jobs run on the next delivery
            with self._lock:
                self._draining = False
            raise
        if on_closed is not None:
            self._teardown(on_closed)

    def _run(self, job: _Job) -> None:
        if job.update is not None:
            self._handle(job.update)
        elif job.handle is not None:
            fire(job.handle)
        elif job.action is not None:
            try:
                job.action()
            except Exception as exc:
                logger.exception(
                    "session.action_failed",
                    session_id=self.session_id,
                    error=str(exc),
                )

    def _handle(self, update: Update) -> None:
        now = self.context.clock()
        if self.flood.bump(now):
            self._report_flood()
        self.time_last_active = now
        try:
            handled = self.handle_update(update)
        except Exception as exc:
            logger.exception(
                "session.job_failed",
                session_id=self.session_id,
                update_id=update.update_id,
                error=str(exc),
            )
            self.send_event(
                "error",
                update_id=update.update_id,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            return
        if not handled:
            logger.debug(
                "session.no_route",
                session_id=self.session_id,
                update_id=update.update_id,
                kind=update.kind,
            )

    def _report_flood(self) -> None:
        logger.warning(
            "session.flood",
            session_id=self.session_id,
            breaches=self.flood.breaches,
            reached_limit=self.flood.reached_limit,
        )
        if self.flood.reached_limit:
            self.send_event("flood_limit", breaches=self.flood.breaches)
        else:
            self.send_event("flood_warning", breaches=self.flood.breaches)

    # Removal.

    def request_removal(self) -> None:
        self._removal_requested = True

    def timed_out(self, now: float) -> bool:
        return (
            self.timeout_length > 0
            and now - self.time_last_active > self.timeout_length
        )

    def close(self, on_closed: Callable[[Session], None]) -> None:
        """Tear the session down now, or once its current drain finishes."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._draining:
                self._on_closed = on_closed
                return
        self._teardown(on_closed)

    def _teardown(self, on_closed: Callable[[Session], None]) -> None:
        try:
            self.setup_removal()
        except Exception as exc:
            logger.exception(
                "session.removal_failed", session_id=self.session_id, error=str(exc)
            )
        on_closed(self)

    # Capabilities.

    def send_request(self, request: object) -> None:
        self.tag.send_request(request)

    def send_event(self, kind: SessionEventKind, **detail: Any) -> None:
        """Hand a lifecycle event to the outbound sink; sink failures are logged."""
        event = SessionEvent(
            kind=kind,
            session_id=self.session_id,
            builder_id=self.builder_id,
            key=self.key,
            detail=detail,
        )
        try:
            self.tag.send_event(event)
        except Exception as exc:
            logger.exception(
                "session.send_event_failed",
                session_id=self.session_id,
                kind=kind,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )

    def refresh_permissions(self) -> Permissions:
        user_id = self.permissions.user_id
        self.permissions = self.context.permissions.get_permissions(user_id)
        return self.permissions

    def after(self, delay: float, action: Action) -> ScheduleHandle:
        return self.schedule.after(delay, action, owner=self)

    def at(self, when: float | datetime, action: Action) -> ScheduleHandle:
        return self.schedule.at(when, action, owner=self)

    def repeating(self, interval: float, action: Action) -> ScheduleHandle:
        return self.schedule.repeating(interval, action, owner=self)


class ChatSession(Session):
    scope: ClassVar[SessionScope] = "chat"

    def __init__(self, tag: SessionTag, update: Update, context: EngineContext) -> None:
        super().__init__(tag, update, context)
        self.chat_id = tag.key
        self.chat_type = update.chat_type
        # User ids only; resolve the sessions through the dispatcher index.
        self.participants: set[int] = set()


class UserSession(Session):
    """Per-user session; also the only scope that sees inline updates."""

    scope: ClassVar[SessionScope] = "user"

    def __init__(self, tag: SessionTag, update: Update, context: EngineContext) -> None:
        super().__init__(tag, update, context)
        self.user_id = tag.key
        self.chat_sessions: list[ChatSession] = []

    def link_chat(self, chat: ChatSession) -> None:
        if all(existing is not chat for existing in self.chat_sessions):
            self.chat_sessions.append(chat)

    def unlink_chat(self, chat: ChatSession) -> None:
        self.chat_sessions = [
            existing for existing in self.chat_sessions if existing is not chat
        ]
