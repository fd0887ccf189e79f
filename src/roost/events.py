"""Session lifecycle and policy events emitted through ``send_event``."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, TypeAlias

__all__ = ["SessionEvent", "SessionEventKind"]

SessionEventKind: TypeAlias = Literal[
    "created",
    "removed",
    "timeout",
    "flood_warning",
    "flood_limit",
    "error",
]


@dataclass(frozen=True, slots=True)
class SessionEvent:
    kind: SessionEventKind
    session_id: str
    builder_id: str
    key: int
    detail: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": f"session.{self.kind}",
            "session_id": self.session_id,
            "builder_id": self.builder_id,
            "key": self.key,
            "detail": dict(self.detail),
        }
