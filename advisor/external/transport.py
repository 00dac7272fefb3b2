"""Line-oriented duplex transports for talking to an external engine."""

import asyncio
import logging
from typing import Callable, List, Optional, Sequence

from advisor.errors import EngineUnavailable

logger = logging.getLogger(__name__)

LineHandler = Callable[[str], None]
EofHandler = Callable[[], None]


class Transport:
    """Sends newline-terminated commands and delivers incoming lines to a handler.

    `send` never blocks; lines arrive asynchronously through `on_line`.
    """
    name = "transport"

    async def start(self, on_line: LineHandler, on_eof: EofHandler):
        raise NotImplementedError

    def send(self, command: str):
        raise NotImplementedError

    async def close(self):
        raise NotImplementedError


class SubprocessTransport(Transport):
    def __init__(self, command: Sequence[str]):
        self.command: List[str] = list(command)
        self.name = " ".join(self.command)
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._reader: Optional[asyncio.Task] = None

    async def start(self, on_line: LineHandler, on_eof: EofHandler):
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise EngineUnavailable(f"cannot start {self.name}: {e}") from e
        self._reader = asyncio.create_task(self._read_loop(on_line, on_eof))

    async def _read_loop(self, on_line: LineHandler, on_eof: EofHandler):
        stdout = self._proc.stdout
        while True:
            raw = await stdout.readline()
            if not raw:
                break
            line = raw.decode("ascii", errors="replace").rstrip("\r\n")
            if line:
                on_line(line)
        on_eof()

    def send(self, command: str):
        if self._proc is None or self._proc.stdin is None or self._proc.stdin.is_closing():
            raise EngineUnavailable(f"{self.name} is not running")
        logger.debug("-> %s", command)
        self._proc.stdin.write((command + "\n").encode("ascii"))

    async def close(self):
        proc, self._proc = self._proc, None
        if proc is None:
            return
        if proc.stdin is not None and not proc.stdin.is_closing():
            try:
                proc.stdin.write(b"quit\n")
                proc.stdin.close()
            except (BrokenPipeError, ConnectionResetError):
                pass
        try:
            await asyncio.wait_for(proc.wait(), timeout=1.0)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
