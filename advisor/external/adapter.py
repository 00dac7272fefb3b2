"""Drives an external UCI-speaking engine: handshake, options, depth-limited search."""

import logging
import shlex
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import chess

from advisor.config import CONFIG, ExternalEngineConfig
from advisor.core.context import ply_count
from advisor.errors import EngineClosed, EngineError, EngineProtocolError, EngineTimeout
from advisor.external.protocol import (
    InfoLine, display_score, legal_move, parse_bestmove, parse_info, pv_to_san, target_depth,
)
from advisor.external.session import EngineSession
from advisor.external.transport import SubprocessTransport, Transport

logger = logging.getLogger(__name__)

UNINITIALIZED = "uninitialized"
HANDSHAKING = "handshaking"
READY = "ready"
SEARCHING = "searching"
CLOSED = "closed"


@dataclass
class ExternalLine:
    multipv: int
    uci: str
    san: Optional[str]
    depth: Optional[int]
    score: Optional[float]
    mate: Optional[int]
    display_score: Optional[str]
    pv: List[str] = field(default_factory=list)
    pv_san: List[str] = field(default_factory=list)


@dataclass
class ExternalAnalysis:
    source: str
    depth: int
    best_uci: Optional[str]
    best_san: Optional[str]
    lines: List[ExternalLine] = field(default_factory=list)


class ExternalEngineAdapter:
    def __init__(self, transport: Transport, cfg: Optional[ExternalEngineConfig] = None):
        self.cfg = cfg or CONFIG.external
        self.transport = transport
        self.session = EngineSession(transport)
        self.state = UNINITIALIZED

    @classmethod
    def for_command(cls, command: str, cfg: Optional[ExternalEngineConfig] = None) -> "ExternalEngineAdapter":
        return cls(SubprocessTransport(shlex.split(command)), cfg)

    @property
    def source(self) -> str:
        return self.transport.name

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, *exc):
        await self.close()

    async def initialize(self):
        """Handshake, fixed options, readiness probe. Closes the session on failure."""
        if self.state == CLOSED:
            raise EngineClosed(f"{self.source} was closed")
        if self.state != UNINITIALIZED:
            return
        self.state = HANDSHAKING
        cfg = self.cfg
        try:
            await self.session.open()
            self.session.send("uci")
            await self.session.wait_for(lambda line: line.strip() == "uciok", cfg.handshake_timeout_s)
            self.session.send(f"setoption name Threads value {cfg.threads}")
            self.session.send(f"setoption name Hash value {cfg.hash_mb}")
            self.session.send(f"setoption name MultiPV value {cfg.multipv}")
            await self.is_ready()
        except EngineError:
            await self.close()
            raise
        self.state = READY
        logger.info("external engine ready: %s", self.source)

    async def is_ready(self):
        self.session.send("isready")
        await self.session.wait_for(lambda line: line.strip() == "readyok", self.cfg.ready_timeout_s)

    async def set_multipv(self, count: int):
        self.session.send(f"setoption name MultiPV value {count}")
        await self.is_ready()

    async def wait_for(self, predicate, timeout: float) -> str:
        return await self.session.wait_for(predicate, timeout)

    async def analyze(self, board: chess.Board, deadline: Optional[float] = None) -> Optional[ExternalAnalysis]:
        """Search `board` to a game-length dependent depth.

        Returns None when there is nothing to search or the best-move line never
        arrived. `deadline` (a time.monotonic() timestamp) caps the wait for it.
        A session that cannot confirm readiness afterwards is torn down and the
        timeout propagates. A best move that is malformed or illegal raises
        EngineProtocolError.
        """
        if self.state == UNINITIALIZED:
            await self.initialize()
        if self.state != READY:
            raise EngineClosed(f"{self.source} is {self.state}")

        legal_count = board.legal_moves.count()
        if not legal_count:
            return None
        cfg = self.cfg

        try:
            await self.set_multipv(min(cfg.multipv, max(1, legal_count)))
        except EngineTimeout as e:
            logger.warning("unable to update MultiPV, continuing with defaults: %s", e)

        board = board.copy()
        suggestions: Dict[int, InfoLine] = {}

        def on_info(line: str):
            info = parse_info(line)
            if info is not None:
                suggestions[info.multipv] = info

        depth = target_depth(ply_count(board), cfg.base_depth, cfg.max_depth, cfg.plies_per_depth)
        remove = self.session.observe(on_info)
        self.state = SEARCHING
        best_line = None
        try:
            await self.is_ready()
            self.session.send("ucinewgame")
            await self.is_ready()
            self.session.send(f"position fen {board.fen()}")
            self.session.send(f"go depth {depth}")
            timeout = cfg.bestmove_timeout_s
            if deadline is not None:
                timeout = max(0.0, min(timeout, deadline - time.monotonic()))
            best_line = await self.session.wait_for(lambda line: line.startswith("bestmove"), timeout)
        except EngineTimeout as e:
            logger.warning("external analysis timed out: %s", e)
        finally:
            remove()
            await self._settle()

        if best_line is None:
            return None
        return self._build(board, depth, best_line, suggestions)

    async def _settle(self):
        """Stop any running search and confirm readiness, or tear the session down."""
        if self.session.closed:
            self.state = CLOSED
            raise EngineClosed(f"{self.source} went away mid-search")
        self.session.send("stop")
        try:
            await self.is_ready()
        except EngineError:
            logger.warning("engine did not confirm readiness after stop; closing %s", self.source)
            await self.close()
            raise
        self.state = READY

    def _build(self, board, depth, best_line, suggestions) -> ExternalAnalysis:
        best_uci = parse_bestmove(best_line)
        best_move = None
        if best_uci is not None:
            best_move = legal_move(board, best_uci)
            if best_move is None:
                raise EngineProtocolError(f"{self.source} answered with an unusable move: {best_line.strip()!r}")

        lines = []
        for rank in sorted(suggestions):
            info = suggestions[rank]
            if legal_move(board, info.pv[0]) is None:
                logger.debug("dropping line %d with unusable move %r", rank, info.pv[0])
                continue
            pv_san = pv_to_san(board, info.pv)
            lines.append(ExternalLine(
                multipv=info.multipv,
                uci=info.pv[0],
                san=pv_san[0],
                depth=info.depth,
                score=info.score,
                mate=info.mate,
                display_score=display_score(info.score_type, info.raw_score),
                pv=info.pv[:len(pv_san)],
                pv_san=pv_san,
            ))
        return ExternalAnalysis(
            source=self.source,
            depth=depth,
            best_uci=best_uci,
            best_san=board.san(best_move) if best_move else None,
            lines=lines,
        )

    async def close(self):
        if self.state == CLOSED and self.session.closed and not self.session.opened:
            return
        self.state = CLOSED
        await self.session.close()
