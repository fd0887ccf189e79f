"""Per-session ordered route table with first-match dispatch."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from .logging import get_logger
from .model import Update, UpdateKind

logger = get_logger(__name__)

__all__ = [
    "Matcher",
    "Route",
    "RouteController",
    "any_update",
    "callback_data",
    "command",
    "pattern",
    "predicate",
    "prefix",
]

Matcher = Callable[[Update], bool]
Handler = Callable[[Update], object]

_COMMAND_RE = re.compile(r"^/([A-Za-z0-9_]+)(?:@([A-Za-z0-9_]+))?(?:\s|$)")


def any_update(update: Update) -> bool:
    return True


def predicate(fn: Callable[[Update], bool]) -> Matcher:
    return fn


def command(*names: str, bot_username: str | None = None) -> Matcher:
    """Match ``/name`` (optionally ``/name@bot``) at the start of the text."""
    wanted = frozenset(name.lstrip("/").lower() for name in names if name.strip())
    if not wanted:
        raise ValueError("command() needs at least one name")
    bot = bot_username.lstrip("@").lower() if bot_username else None

    def _match(update: Update) -> bool:
        text = update.text
        if not text:
            return False
        found = _COMMAND_RE.match(text)
        if found is None:
            return False
        name, mention = found.group(1).lower(), found.group(2)
        if name not in wanted:
            return False
        if mention is not None and bot is not None:
            return mention.lower() == bot
        return True

    return _match


def command_args(text: str | None) -> str:
    if not text:
        return ""
    found = _COMMAND_RE.match(text)
    if found is None:
        return text.strip()
    return text[found.end() :].strip()


def prefix(value: str, *, case_sensitive: bool = True) -> Matcher:
    needle = value if case_sensitive else value.lower()

    def _match(update: Update) -> bool:
        text = update.text
        if text is None:
            return False
        if not case_sensitive:
            text = text.lower()
        return text.startswith(needle)

    return _match


def pattern(regex: str | re.Pattern[str], flags: int = 0) -> Matcher:
    compiled = re.compile(regex, flags) if isinstance(regex, str) else regex

    def _match(update: Update) -> bool:
        text = update.text
        return text is not None and compiled.search(text) is not None

    return _match


def callback_data(*tokens: str) -> Matcher:
    wanted = frozenset(tokens)

    def _match(update: Update) -> bool:
        return update.kind == "callback_query" and update.text in wanted

    return _match


@dataclass(slots=True)
class Route:
    matcher: Matcher
    handler: Handler
    name: str | None = None
    kinds: frozenset[UpdateKind] | None = None
    enabled: bool = True

    def accepts(self, update: Update, kind: UpdateKind) -> bool:
        if not self.enabled:
            return False
        if self.kinds is not None and kind not in self.kinds:
            return False
        return self.matcher(update)


@dataclass(slots=True)
class RouteController:
    _routes: list[Route] = field(default_factory=list)

    @property
    def routes(self) -> tuple[Route, ...]:
        return tuple(self._routes)

    def register(
        self,
        matcher: Matcher,
        handler: Handler,
        *,
        name: str | None = None,
        kinds: Iterable[UpdateKind] | None = None,
    ) -> Route:
        if name is not None and self.get(name) is not None:
            raise ValueError(f"Route {name!r} is already registered")
        route = Route(
            matcher=matcher,
            handler=handler,
            name=name,
            kinds=frozenset(kinds) if kinds is not None else None,
        )
        self._routes.append(route)
        return route

    def get(self, name: str) -> Route | None:
        return next((route for route in self._routes if route.name == name), None)

    def remove(self, name: str) -> bool:
        route = self.get(name)
        if route is None:
            return False
        self._routes.remove(route)
        return True

    def enable(self, name: str) -> None:
        self._require(name).enabled = True

    def disable(self, name: str) -> None:
        self._require(name).enabled = False

    def clear(self) -> None:
        self._routes.clear()

    def _require(self, name: str) -> Route:
        route = self.get(name)
        if route is None:
            raise KeyError(name)
        return route

    def route_request(self, update: Update, kind: UpdateKind | None = None) -> bool:
        kind = kind or update.kind
        for route in list(self._routes):
            if route.accepts(update, kind):
                logger.debug(
                    "routes.matched",
                    route=route.name,
                    update_id=update.update_id,
                    kind=kind,
                )
                route.handler(update)
                return True
        return False

    def __len__(self) -> int:
        return len(self._routes)
