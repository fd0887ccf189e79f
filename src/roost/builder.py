from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal, TypeAlias

from .config import FloodSettings
from .flood import FloodLimiter
from .model import Update
from .routes import any_update
from .session import Session, SessionScope, SessionTag

if TYPE_CHECKING:
    from .context import EngineContext

__all__ = ["CollisionPolicy", "SessionBuilder", "SessionFactory"]

CollisionPolicy: TypeAlias = Literal["skip", "replace", "error", "append"]
COLLISION_POLICIES: tuple[CollisionPolicy, ...] = ("skip", "replace", "error", "append")

SessionFactory = Callable[[SessionTag, Update, "EngineContext"], Session]


@dataclass(frozen=True, slots=True)
class SessionBuilder:
    """Decides when a session of one kind is created, and how.

    ``timeout`` and ``flood`` override the engine-wide defaults for the
    sessions this builder creates when set.
    """

    id: str
    scope: SessionScope
    factory: SessionFactory
    predicate: Callable[[Update], bool] = any_update
    collision: CollisionPolicy = "skip"
    timeout: float | None = None
    flood: FloodSettings | None = None

    def __post_init__(self) -> None:
        if not self.id or not self.id.strip():
            raise ValueError("SessionBuilder.id must be a non-empty string")
        if self.scope not in ("chat", "user"):
            raise ValueError(f"Unknown session scope {self.scope!r}")
        if self.collision not in COLLISION_POLICIES:
            raise ValueError(f"Unknown collision policy {self.collision!r}")
        if self.timeout is not None and self.timeout < 0:
            raise ValueError("SessionBuilder.timeout must be non-negative")

    def key_for(self, update: Update) -> int | None:
        if self.scope == "chat":
            return update.chat_id
        return update.user_id

    def matches(self, update: Update) -> bool:
        return self.key_for(update) is not None and bool(self.predicate(update))

    def build(
        self, update: Update, context: EngineContext, *, tag: SessionTag
    ) -> Session:
        session = self.factory(tag, update, context)
        if not isinstance(session, Session):
            raise TypeError(
                f"Builder {self.id!r} factory returned {type(session).__name__}, "
                "expected a Session"
            )
        if session.scope != self.scope:
            raise TypeError(
                f"Builder {self.id!r} is {self.scope}-scoped but its factory "
                f"built a {session.scope} session"
            )
        if self.timeout is not None:
            session.timeout_length = self.timeout
        if self.flood is not None:
            session.flood = FloodLimiter.from_settings(self.flood)
        return session
