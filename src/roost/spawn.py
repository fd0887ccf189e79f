"""Ready-made builder predicates."""

from __future__ import annotations

from collections.abc import Callable, Iterable

from .model import Update, UpdateKind
from .permissions import PermissionStore

__all__ = ["per_chat", "per_user"]

Predicate = Callable[[Update], bool]


def _build(
    *,
    has_key: Predicate,
    kinds: Iterable[UpdateKind] | None,
    chat_types: Iterable[str] | None,
    permissions: PermissionStore | None,
    require: str | None,
    when: Predicate | None,
) -> Predicate:
    kind_set = frozenset(kinds) if kinds is not None else None
    type_set = frozenset(chat_types) if chat_types is not None else None
    if require is not None and permissions is None:
        raise ValueError("require= needs a permission store")

    def _predicate(update: Update) -> bool:
        if not has_key(update):
            return False
        if kind_set is not None and update.kind not in kind_set:
            return False
        if type_set is not None and update.chat_type not in type_set:
            return False
        if (
            require is not None
            and permissions is not None
            and not permissions.contains(require, update.user_id)
        ):
            return False
        return when is None or when(update)

    return _predicate


def per_chat(
    *,
    kinds: Iterable[UpdateKind] | None = None,
    chat_types: Iterable[str] | None = None,
    permissions: PermissionStore | None = None,
    require: str | None = None,
    when: Predicate | None = None,
) -> Predicate:
    """Spawn one session per chat id for matching updates."""
    return _build(
        has_key=lambda update: update.chat_id is not None,
        kinds=kinds,
        chat_types=chat_types,
        permissions=permissions,
        require=require,
        when=when,
    )


def per_user(
    *,
    kinds: Iterable[UpdateKind] | None = None,
    chat_types: Iterable[str] | None = None,
    permissions: PermissionStore | None = None,
    require: str | None = None,
    when: Predicate | None = None,
) -> Predicate:
    """Spawn one session per user id for matching updates."""
    return _build(
        has_key=lambda update: update.user_id is not None,
        kinds=kinds,
        chat_types=chat_types,
        permissions=permissions,
        require=require,
        when=when,
    )
