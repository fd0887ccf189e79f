"""Named permission lists (blacklist, admin, ...) keyed by user id."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from .logging import get_logger

logger = get_logger(__name__)

__all__ = ["BLACKLIST", "Permissions", "PermissionStore"]

BLACKLIST = "blacklist"


@dataclass(frozen=True, slots=True)
class Permissions:
    """Snapshot of the lists a single user belonged to when it was taken."""

    user_id: int | None
    names: frozenset[str] = frozenset()

    def has(self, name: str) -> bool:
        return name in self.names

    def __contains__(self, name: object) -> bool:
        return name in self.names

    @property
    def is_blacklisted(self) -> bool:
        return BLACKLIST in self.names


class PermissionStore:
    def __init__(self, lists: Mapping[str, Iterable[int]] | None = None) -> None:
        self._lists: dict[str, set[int]] = {}
        for name, members in (lists or {}).items():
            self.add(name, *members)

    def add(self, name: str, *ids: int) -> None:
        members = self._lists.setdefault(name, set())
        added = [item for item in ids if item not in members]
        members.update(added)
        if added:
            logger.info("permissions.added", list=name, ids=added)

    def remove(self, name: str, *ids: int) -> None:
        members = self._lists.get(name)
        if members is None:
            return
        removed = [item for item in ids if item in members]
        members.difference_update(removed)
        if removed:
            logger.info("permissions.removed", list=name, ids=removed)

    def clear(self, name: str) -> None:
        self._lists.pop(name, None)

    def contains(self, name: str, id_: int | None) -> bool:
        if id_ is None:
            return False
        return id_ in self._lists.get(name, ())

    def members(self, name: str) -> frozenset[int]:
        return frozenset(self._lists.get(name, ()))

    def lists(self) -> list[str]:
        return sorted(self._lists)

    def get_permissions(self, user_id: int | None) -> Permissions:
        if user_id is None:
            return Permissions(user_id=None)
        names = frozenset(
            name for name, members in self._lists.items() if user_id in members
        )
        return Permissions(user_id=user_id, names=names)

    def blacklist(self, *ids: int, list_name: str = BLACKLIST) -> None:
        self.add(list_name, *ids)

    def is_blacklisted(
        self, *ids: int | None, list_name: str = BLACKLIST
    ) -> bool:
        return any(self.contains(list_name, item) for item in ids)
