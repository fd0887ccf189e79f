"""Resolves updates to sessions, creates sessions on demand, sweeps expired ones."""

from __future__ import annotations

import itertools
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
from typing import Literal, TypeAlias

from .builder import SessionBuilder
from .context import EngineContext
from .errors import BuilderError
from .logging import get_logger
from .model import Update
from .session import ChatSession, Session, SessionScope, SessionTag, UserSession

logger = get_logger(__name__)

__all__ = [
    "BuildFailed",
    "DispatchResult",
    "Dispatcher",
    "IdentityIndex",
    "SessionCollision",
    "TickResult",
]

RemovalReason: TypeAlias = Literal["timeout", "requested", "replaced", "removed"]
SessionListener = Callable[[Session], None]


@dataclass(frozen=True, slots=True)
class BuildFailed:
    builder_id: str
    key: int
    stage: Literal["predicate", "factory", "post_init"]
    error: str
    error_type: str


@dataclass(frozen=True, slots=True)
class SessionCollision:
    builder_id: str
    key: int
    session_ids: tuple[str, ...]


DispatchError: TypeAlias = BuildFailed | SessionCollision


@dataclass(frozen=True, slots=True)
class DispatchResult:
    update_id: int
    delivered: tuple[str, ...] = ()
    created: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()
    errors: tuple[DispatchError, ...] = ()
    blocked: bool = False


@dataclass(frozen=True, slots=True)
class TickResult:
    fired: int
    removed: tuple[str, ...]


class IdentityIndex:
    """Live sessions keyed by (builder id, key) and by (scope, key)."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._rank: dict[str, int] = {}
        self._by_builder: dict[tuple[str, int], list[Session]] = {}
        self._by_scope: dict[tuple[SessionScope, int], list[Session]] = {}
        self._seq = itertools.count()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session: object) -> bool:
        return (
            isinstance(session, Session)
            and self._sessions.get(session.session_id) is session
        )

    def add(self, session: Session) -> None:
        self._sessions[session.session_id] = session
        self._rank[session.session_id] = next(self._seq)
        self._by_builder.setdefault((session.builder_id, session.key), []).append(
            session
        )
        self._by_scope.setdefault((session.scope, session.key), []).append(session)

    def discard(self, session: Session) -> bool:
        if session not in self:
            return False
        del self._sessions[session.session_id]
        del self._rank[session.session_id]
        for table, key in (
            (self._by_builder, (session.builder_id, session.key)),
            (self._by_scope, (session.scope, session.key)),
        ):
            remaining = [item for item in table.get(key, ()) if item is not session]
            if remaining:
                table[key] = remaining
            else:
                table.pop(key, None)
        return True

    def get(self, builder_id: str, key: int | None) -> list[Session]:
        if key is None:
            return []
        return list(self._by_builder.get((builder_id, key), ()))

    def by_chat(self, chat_id: int | None) -> list[ChatSession]:
        if chat_id is None:
            return []
        return [
            session
            for session in self._by_scope.get(("chat", chat_id), ())
            if isinstance(session, ChatSession)
        ]

    def by_user(self, user_id: int | None) -> list[UserSession]:
        if user_id is None:
            return []
        return [
            session
            for session in self._by_scope.get(("user", user_id), ())
            if isinstance(session, UserSession)
        ]

    def rank(self, session: Session) -> int:
        return self._rank[session.session_id]

    def sessions(self) -> list[Session]:
        return list(self._sessions.values())


class Dispatcher:
    def __init__(self, context: EngineContext | None = None) -> None:
        self.context = context or EngineContext()
        self.index = IdentityIndex()
        self._builders: dict[str, SessionBuilder] = {}
        self._created_listeners: list[SessionListener] = []
        self._removed_listeners: list[SessionListener] = []

    @property
    def builders(self) -> tuple[SessionBuilder, ...]:
        return tuple(self._builders.values())

    def register(self, builder: SessionBuilder) -> SessionBuilder:
        if builder.id in self._builders:
            raise BuilderError(f"Session builder {builder.id!r} is already registered.")
        self._builders[builder.id] = builder
        logger.info(
            "dispatch.builder_registered",
            builder_id=builder.id,
            scope=builder.scope,
            collision=builder.collision,
        )
        return builder

    def on_created(self, listener: SessionListener) -> None:
        self._created_listeners.append(listener)

    def on_removed(self, listener: SessionListener) -> None:
        self._removed_listeners.append(listener)

    def find(self, builder_id: str, key: int | None) -> list[Session]:
        return self.index.get(builder_id, key)

    def sessions(self) -> list[Session]:
        return self.index.sessions()

    def dispatch(self, update: Update) -> DispatchResult:
        settings = self.context.settings
        if self.context.permissions.is_blacklisted(
            update.user_id, update.chat_id, list_name=settings.blacklist_list
        ):
            logger.debug(
                "dispatch.blocked",
                update_id=update.update_id,
                chat_id=update.chat_id,
                user_id=update.user_id,
            )
            return DispatchResult(
                update_id=update.update_id,
                removed=tuple(self.sweep()),
                blocked=True,
            )

        targets: list[Session] = []
        created: list[str] = []
        removed: list[str] = []
        errors: list[DispatchError] = []

        for builder in self._builders.values():
            key = builder.key_for(update)
            if key is None:
                continue
            existing = self.index.get(builder.id, key)
            matched = self._evaluate(builder, update, key, errors)
            if existing and not matched:
                targets.extend(existing)
                continue
            if not matched:
                continue
            if existing:
                policy = builder.collision
                if policy == "skip":
                    targets.extend(existing)
                    continue
                if policy == "error":
                    logger.warning(
                        "dispatch.collision",
                        builder_id=builder.id,
                        key=key,
                        update_id=update.update_id,
                    )
                    errors.append(
                        SessionCollision(
                            builder_id=builder.id,
                            key=key,
                            session_ids=tuple(s.session_id for s in existing),
                        )
                    )
                    continue
                if policy == "replace":
                    for old in existing:
                        if self._remove(old, reason="replaced"):
                            removed.append(old.session_id)
                else:
                    targets.extend(existing)
            session = self._build(builder, update, key, errors)
            if session is not None:
                targets.append(session)
                created.append(session.session_id)

        targets = sorted(
            (session for session in targets if session in self.index),
            key=self.index.rank,
        )
        delivered: list[str] = []
        for session in targets:
            self._link(session, update)
            session.receive(update)
            delivered.append(session.session_id)

        removed.extend(self.sweep())
        logger.debug(
            "dispatch.done",
            update_id=update.update_id,
            kind=update.kind,
            delivered=len(delivered),
            created=len(created),
            removed=len(removed),
            errors=len(errors),
        )
        return DispatchResult(
            update_id=update.update_id,
            delivered=tuple(delivered),
            created=tuple(created),
            removed=tuple(removed),
            errors=tuple(errors),
        )

    def _evaluate(
        self,
        builder: SessionBuilder,
        update: Update,
        key: int,
        errors: list[DispatchError],
    ) -> bool:
        try:
            return builder.matches(update)
        except Exception as exc:
            self._report_failure(builder, key, "predicate", exc, errors)
            return False

    def _report_failure(
        self,
        builder: SessionBuilder,
        key: int,
        stage: Literal["predicate", "factory", "post_init"],
        exc: Exception,
        errors: list[DispatchError],
    ) -> None:
        logger.exception(
            "dispatch.build_failed",
            builder_id=builder.id,
            key=key,
            stage=stage,
            error=str(exc),
        )
        errors.append(
            BuildFailed(
                builder_id=builder.id,
                key=key,
                stage=stage,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
        )

    def _build(
        self,
        builder: SessionBuilder,
        update: Update,
        key: int,
        errors: list[DispatchError],
    ) -> Session | None:
        tag = SessionTag(
            session_id=self.context.next_session_id(builder.id, key),
            builder_id=builder.id,
            scope=builder.scope,
            key=key,
            send_request=self.context.send_request,
            send_event=self.context.send_event,
        )
        try:
            session = builder.build(update, self.context, tag=tag)
        except Exception as exc:
            self._report_failure(builder, key, "factory", exc, errors)
            return None
        self.index.add(session)
        try:
            session.post_init()
        except Exception as exc:
            self.index.discard(session)
            self._report_failure(builder, key, "post_init", exc, errors)
            return None
        logger.info(
            "dispatch.created",
            session_id=session.session_id,
            builder_id=builder.id,
            scope=builder.scope,
            key=key,
        )
        session.send_event("created", update_id=update.update_id)
        self._notify(self._created_listeners, session)
        return session

    def _link(self, session: Session, update: Update) -> None:
        if update.chat_id is None or update.user_id is None:
            return
        if isinstance(session, ChatSession):
            session.participants.add(update.user_id)
            for user in self.index.by_user(update.user_id):
                user.link_chat(session)
        elif isinstance(session, UserSession):
            for chat in self.index.by_chat(update.chat_id):
                chat.participants.add(update.user_id)
                session.link_chat(chat)

    def remove(self, session: Session) -> bool:
        """Remove a session now; teardown waits for any drain in progress."""
        return self._remove(session, reason="removed")

    def _remove(self, session: Session, *, reason: RemovalReason) -> bool:
        if not self.index.discard(session):
            return False
        if isinstance(session, ChatSession):
            for user_id in session.participants:
                for user in self.index.by_user(user_id):
                    user.unlink_chat(session)
        if self.context.settings.cancel_scheduled_on_removal:
            cancelled = self.context.scheduler.cancel_owned(session)
            if cancelled:
                logger.debug(
                    "dispatch.cancelled_scheduled",
                    session_id=session.session_id,
                    count=cancelled,
                )
        logger.info(
            "dispatch.removed",
            session_id=session.session_id,
            builder_id=session.builder_id,
            reason=reason,
        )
        session.close(partial(self._closed, reason=reason))
        return True

    def _closed(self, session: Session, *, reason: RemovalReason) -> None:
        if reason == "timeout":
            session.send_event("timeout", timeout_length=session.timeout_length)
        else:
            session.send_event("removed", reason=reason)
        self._notify(self._removed_listeners, session)

    def _notify(self, listeners: list[SessionListener], session: Session) -> None:
        for listener in listeners:
            try:
                listener(session)
            except Exception as exc:
                logger.exception(
                    "dispatch.listener_failed",
                    session_id=session.session_id,
                    error=str(exc),
                )

    def sweep(self, now: float | None = None) -> list[str]:
        """Remove timed-out sessions and those that asked to be removed.

        Sessions in the middle of a drain are left for the next sweep.
        """
        if now is None:
            now = self.context.clock()
        removed: list[str] = []
        for session in self.index.sessions():
            if session.busy:
                continue
            if session.removal_requested:
                reason: RemovalReason = "requested"
            elif session.timed_out(now):
                reason = "timeout"
            else:
                continue
            if self._remove(session, reason=reason):
                removed.append(session.session_id)
        return removed

    def tick(self, now: float | None = None) -> TickResult:
        if now is None:
            now = self.context.clock()
        fired = self.context.scheduler.run_due(now)
        return TickResult(fired=fired, removed=tuple(self.sweep(now)))
