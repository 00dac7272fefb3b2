"""Predicate-matched waiters and passive observers over one engine transport."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from advisor.errors import EngineClosed, EngineTimeout, EngineUnavailable
from advisor.external.transport import Transport

logger = logging.getLogger(__name__)

Predicate = Callable[[str], bool]
Observer = Callable[[str], None]


@dataclass(eq=False)
class Waiter:
    predicate: Predicate
    future: asyncio.Future
    timer: Optional[asyncio.TimerHandle] = None


class EngineSession:
    """A live connection plus the bookkeeping that correlates responses to requests.

    Each incoming line is offered to every pending waiter (most recently
    registered first) and then to every observer. A waiter that matches is
    removed and resolved; a waiter whose timer fires is removed before it
    fails, so it can never be resolved late.
    """

    def __init__(self, transport: Transport):
        self.transport = transport
        self._waiters: List[Waiter] = []
        self._observers: List[Observer] = []
        self.opened = False
        self.closed = False

    async def open(self):
        if self.closed:
            raise EngineClosed("session already closed")
        if not self.opened:
            await self.transport.start(self.handle_line, self._on_eof)
            self.opened = True

    def send(self, command: str):
        if self.closed:
            raise EngineClosed("session already closed")
        self.transport.send(command)

    def observe(self, observer: Observer) -> Callable[[], None]:
        """Register a passive observer; returns a function that unregisters it."""
        self._observers.append(observer)

        def remove():
            if observer in self._observers:
                self._observers.remove(observer)
        return remove

    async def wait_for(self, predicate: Predicate, timeout: float = 10.0) -> str:
        """Resolve with the next line satisfying `predicate`, or raise EngineTimeout."""
        if self.closed:
            raise EngineClosed("session already closed")
        loop = asyncio.get_running_loop()
        waiter = Waiter(predicate, loop.create_future())
        waiter.timer = loop.call_later(timeout, self._expire, waiter, timeout)
        self._waiters.append(waiter)
        try:
            return await waiter.future
        finally:
            waiter.timer.cancel()
            self._discard(waiter)

    def handle_line(self, line: str):
        logger.debug("<- %s", line)
        for waiter in reversed(list(self._waiters)):
            try:
                match = waiter.predicate(line)
            except Exception:
                logger.exception("engine waiter predicate failed on %r", line)
                match = False
            if match:
                self._discard(waiter)
                waiter.timer.cancel()
                if not waiter.future.done():
                    waiter.future.set_result(line)

        for observer in list(self._observers):
            try:
                observer(line)
            except Exception:
                logger.exception("engine observer failed on %r", line)

    @property
    def pending(self) -> int:
        return len(self._waiters)

    def _discard(self, waiter: Waiter):
        if waiter in self._waiters:
            self._waiters.remove(waiter)

    def _expire(self, waiter: Waiter, timeout: float):
        self._discard(waiter)
        if not waiter.future.done():
            waiter.future.set_exception(EngineTimeout(f"timeout waiting for engine response ({timeout:g}s)"))

    def _fail_all(self, error: Exception):
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            waiter.timer.cancel()
            if not waiter.future.done():
                waiter.future.set_exception(error)

    def _on_eof(self):
        self.closed = True
        self._fail_all(EngineUnavailable(f"{self.transport.name} exited"))

    async def close(self):
        """Release the connection. Safe to call more than once."""
        already = self.closed and not self.opened
        self.closed = True
        self._fail_all(EngineClosed("session closed"))
        self._observers.clear()
        if already:
            return
        self.opened = False
        await self.transport.close()
