"""anyio driver: feeds updates to a dispatcher, ticks it, drains outbound work."""

from __future__ import annotations

import math
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from pathlib import Path
from typing import Literal

import anyio
from anyio.lowlevel import checkpoint
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from .dispatcher import Dispatcher
from .errors import UpdateDecodeError
from .events import SessionEvent
from .logging import get_logger
from .model import Update, decode_update

logger = get_logger(__name__)

__all__ = ["Outbox", "iter_jsonl_updates", "read_jsonl_updates", "run_engine"]

RequestSender = Callable[[object], Awaitable[None]]
EventSender = Callable[[SessionEvent], Awaitable[None]]
_Item = tuple[Literal["request", "event"], object]


class Outbox:
    """Fire-and-forget channel for outbound requests and session events.

    ``send_request``/``send_event`` never block; a drain task hands the
    items to the external API client.
    """

    def __init__(self) -> None:
        send, receive = anyio.create_memory_object_stream[_Item](
            max_buffer_size=math.inf
        )
        self._send: MemoryObjectSendStream[_Item] = send
        self._receive: MemoryObjectReceiveStream[_Item] = receive

    def _put(self, item: _Item) -> None:
        try:
            self._send.send_nowait(item)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            logger.warning("outbox.closed", kind=item[0])

    def send_request(self, request: object) -> None:
        self._put(("request", request))

    def send_event(self, event: SessionEvent) -> None:
        self._put(("event", event))

    def close(self) -> None:
        self._send.close()

    async def drain(
        self,
        on_request: RequestSender,
        on_event: EventSender | None = None,
    ) -> None:
        async with self._receive:
            async for kind, item in self._receive:
                try:
                    if kind == "request":
                        await on_request(item)
                    elif on_event is not None and isinstance(item, SessionEvent):
                        await on_event(item)
                except Exception as exc:
                    logger.exception(
                        "outbox.send_failed",
                        kind=kind,
                        error=str(exc),
                        error_type=exc.__class__.__name__,
                    )


async def iter_jsonl_updates(lines: AsyncIterable[str]) -> AsyncIterator[Update]:
    async for raw_line in lines:
        line = raw_line.strip()
        if not line:
            continue
        try:
            yield decode_update(line)
        except UpdateDecodeError as exc:
            logger.warning("runtime.invalid_update", error=str(exc), line=line[:200])


async def read_jsonl_updates(path: Path) -> AsyncIterator[Update]:
    async with await anyio.open_file(path, encoding="utf-8") as handle:
        async for update in iter_jsonl_updates(handle):
            yield update


async def _run_ticker(
    dispatcher: Dispatcher,
    interval: float,
    sleep: Callable[[float], Awaitable[None]],
    scope: anyio.CancelScope,
) -> None:
    with scope:
        while True:
            await sleep(interval)
            try:
                result = dispatcher.tick()
            except Exception as exc:
                logger.exception("runtime.tick_failed", error=str(exc))
                continue
            if result.fired or result.removed:
                logger.debug(
                    "runtime.tick",
                    fired=result.fired,
                    removed=len(result.removed),
                )


async def run_engine(
    dispatcher: Dispatcher,
    updates: AsyncIterable[Update],
    *,
    outbox: Outbox | None = None,
    on_request: RequestSender | None = None,
    on_event: EventSender | None = None,
    tick_interval_s: float | None = None,
    sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
) -> int:
    """Dispatch every update from ``updates`` in arrival order.

    Scheduled work and the timeout sweep also run every ``tick_interval_s``
    so idle sessions expire without traffic. Returns the number of updates
    dispatched once the stream is exhausted and the outbox is drained.
    """
    interval = tick_interval_s or dispatcher.context.settings.tick_interval_s
    if outbox is not None and on_request is None:
        raise ValueError("run_engine() needs on_request when an outbox is given")
    count = 0
    async with anyio.create_task_group() as tg:
        if outbox is not None and on_request is not None:
            tg.start_soon(outbox.drain, on_request, on_event)
        ticker_scope = anyio.CancelScope()
        tg.start_soon(_run_ticker, dispatcher, interval, sleep, ticker_scope)
        try:
            async for update in updates:
                try:
                    dispatcher.dispatch(update)
                except Exception as exc:
                    logger.exception(
                        "runtime.dispatch_failed",
                        update_id=update.update_id,
                        error=str(exc),
                    )
                count += 1
                await checkpoint()
            dispatcher.tick()
        finally:
            ticker_scope.cancel()
            if outbox is not None:
                outbox.close()
    logger.info("runtime.finished", updates=count)
    return count
