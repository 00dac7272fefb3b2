# advisor/analyzer.py
import asyncio
import concurrent.futures
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

import chess

from advisor.config import CONFIG, Config, ExternalEngineConfig
from advisor.core.evaluator import Evaluator
from advisor.core.ordering import MoveOrderer
from advisor.core.position import Position
from advisor.core.search import SearchEngine, SearchResult
from advisor.core.utils import mate_plies
from advisor.errors import EngineError, EngineUnavailable
from advisor.external.adapter import READY, ExternalAnalysis, ExternalEngineAdapter, ExternalLine
from advisor.external.failures import FailureRegistry
from advisor.external.protocol import pv_to_san

logger = logging.getLogger(__name__)

SOURCE_EXTERNAL = "external"
SOURCE_INTERNAL = "internal"

AdapterFactory = Callable[[str, ExternalEngineConfig], ExternalEngineAdapter]


@dataclass
class CandidateLine:
    """One ranked suggestion. `mate` is signed moves to mate, as engines report it."""
    uci: str
    san: Optional[str]
    from_square: str
    to_square: str
    promotion: Optional[str]
    score: Optional[float]
    mate: Optional[int]
    depth: int
    pv: List[str] = field(default_factory=list)
    pv_san: List[str] = field(default_factory=list)
    rank: int = 1

    @property
    def display_score(self) -> Optional[str]:
        if self.mate is not None:
            return f"#{self.mate}"
        if self.score is None:
            return None
        return f"{self.score:.2f}"

    def describe(self) -> str:
        score = self.display_score or "?"
        return f"{self.san or self.uci}  {self.from_square.upper()}->{self.to_square.upper()} (score≈{score})"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["display_score"] = self.display_score
        return data


@dataclass
class Recommendation:
    source: str
    depth: int
    best: Optional[CandidateLine]
    lines: List[CandidateLine] = field(default_factory=list)
    engine: Optional[str] = None
    engine_error: Optional[str] = None
    nodes: int = 0
    elapsed_ms: float = 0.0
    aborted: bool = False
    timeouts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "depth": self.depth,
            "best": self.best.to_dict() if self.best else None,
            "lines": [line.to_dict() for line in self.lines],
            "engine": self.engine,
            "engine_error": self.engine_error,
            "nodes": self.nodes,
            "elapsed_ms": round(self.elapsed_ms, 1),
            "aborted": self.aborted,
            "timeouts": self.timeouts,
        }


def _candidate(board: chess.Board, uci: str, **fields) -> CandidateLine:
    move = chess.Move.from_uci(uci)
    return CandidateLine(
        uci=uci,
        from_square=chess.square_name(move.from_square),
        to_square=chess.square_name(move.to_square),
        promotion=chess.piece_symbol(move.promotion) if move.promotion else None,
        **fields,
    )


def _out_of_time(deadline: Optional[float], should_stop: Optional[Callable[[], bool]]) -> bool:
    if deadline is not None and time.monotonic() >= deadline:
        return True
    return should_stop is not None and should_stop()


class AnalysisOrchestrator:
    """Picks the external engine when it is reachable, the built-in search otherwise.

    This is the only place that knows both result shapes; everything leaving
    it is a Recommendation. At most one external session is kept alive.
    """

    def __init__(self, config: Optional[Config] = None, search_engine: Optional[SearchEngine] = None,
                 known_bad: Optional[FailureRegistry] = None, adapter_factory: Optional[AdapterFactory] = None):
        self.config = config or CONFIG
        self.search_engine = search_engine
        self.known_bad = known_bad if known_bad is not None else FailureRegistry(self.config.external.failure_ttl_s)
        self.adapter_factory = adapter_factory or ExternalEngineAdapter.for_command
        self._adapter: Optional[ExternalEngineAdapter] = None

    def recommend(self, position: Union[chess.Board, Position], config: Optional[Config] = None,
                  deadline: Optional[float] = None, should_stop: Optional[Callable[[], bool]] = None) -> Recommendation:
        """Blocking entry point. The external session does not outlive the call.

        Inside a running event loop this blocks that loop until the analysis
        is done; async callers should await `recommend_async` instead.
        """
        async def run():
            try:
                return await self.recommend_async(position, config, deadline, should_stop)
            finally:
                await self.aclose()

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(run())
        # asyncio.run refuses to nest, so give the call its own loop on a worker thread.
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, run()).result()

    async def recommend_async(self, position: Union[chess.Board, Position], config: Optional[Config] = None,
                              deadline: Optional[float] = None,
                              should_stop: Optional[Callable[[], bool]] = None) -> Recommendation:
        cfg = config or self.config
        board = position.board if isinstance(position, Position) else position
        board = board.copy()

        if not any(board.generate_legal_moves()):
            return Recommendation(source=SOURCE_INTERNAL, depth=0, best=None, lines=[])

        engine_error = None
        if cfg.external.enabled and _out_of_time(deadline, should_stop):
            engine_error = "no time left for external analysis"
            logger.info(engine_error)
        elif cfg.external.enabled:
            try:
                analysis = await self._run_external(board, cfg, deadline)
            except (EngineError, OSError) as e:
                engine_error = str(e)
                logger.warning("external analysis unavailable: %s", e)
            else:
                if analysis is not None and (analysis.lines or analysis.best_uci):
                    rec = self._from_external(board, analysis)
                    logger.info("ENGINE RECOMMENDATION: %s (depth≈%d, %s)",
                                rec.best.describe() if rec.best else "(none)", rec.depth, rec.engine)
                    return rec
                engine_error = "external engine returned no result"
                logger.warning(engine_error)

        if cfg.search.disabled:
            return Recommendation(source=SOURCE_EXTERNAL, depth=0, best=None, lines=[], engine_error=engine_error)

        search = self.search_engine or SearchEngine(Evaluator(cfg.eval), MoveOrderer(cfg.ordering), cfg.search)
        result = await asyncio.to_thread(
            search.analyze, board, None, cfg.search.time_budget_ms, deadline, should_stop
        )
        rec = self._from_internal(board, result, cfg)
        rec.engine_error = engine_error
        if rec.best:
            logger.info("RECOMMENDATION: %s", rec.best.describe())
        else:
            logger.info("RECOMMENDATION: (search stopped before any move was scored)")
        logger.info("FALLBACK SEARCH: depth=%d%s nodes evaluated=%d elapsed≈%.0fms", rec.depth,
                    " (time cutoff)" if rec.aborted else "", rec.nodes, rec.elapsed_ms)
        return rec

    async def aclose(self):
        """Tear down the live external session, if any."""
        adapter, self._adapter = self._adapter, None
        if adapter is not None:
            await adapter.close()

    async def _run_external(self, board: chess.Board, cfg: Config,
                            deadline: Optional[float] = None) -> Optional[ExternalAnalysis]:
        adapter = await self._ensure_adapter(cfg)
        try:
            return await adapter.analyze(board, deadline)
        except (EngineError, OSError):
            await self.aclose()
            raise

    async def _ensure_adapter(self, cfg: Config) -> ExternalEngineAdapter:
        if self._adapter is not None and self._adapter.state == READY:
            return self._adapter
        await self.aclose()

        ext = cfg.external
        commands = [c for c in ext.commands if ext.retry_failed or c not in self.known_bad]
        skipped = [c for c in ext.commands if c not in commands]
        if skipped:
            logger.info("skipping engine commands with cached failures: %s", skipped)
        if not commands:
            raise EngineUnavailable("all external engine commands failed previously")

        for command in commands:
            adapter = self.adapter_factory(command, ext)
            try:
                await adapter.initialize()
            except (EngineError, OSError) as e:
                self.known_bad.record(command, e)
                logger.warning("failed to load engine from %s: %s", command, e)
                await adapter.close()
                continue
            self.known_bad.forget(command)
            self._adapter = adapter
            return adapter
        raise EngineUnavailable("unable to start an external engine")

    def _from_external(self, board: chess.Board, analysis: ExternalAnalysis) -> Recommendation:
        lines = [self._external_line(board, line, analysis.depth) for line in analysis.lines]
        best = None
        if analysis.best_uci:
            best = next((line for line in lines if line.uci == analysis.best_uci), None)
            if best is None:
                best = _candidate(board, analysis.best_uci, san=analysis.best_san, score=None, mate=None,
                                  depth=analysis.depth, pv=[analysis.best_uci],
                                  pv_san=[analysis.best_san] if analysis.best_san else [])
                if not lines:
                    lines = [best]
        elif lines:
            best = lines[0]
        return Recommendation(source=SOURCE_EXTERNAL, depth=analysis.depth, best=best, lines=lines,
                              engine=analysis.source)

    def _external_line(self, board: chess.Board, line: ExternalLine, depth: int) -> CandidateLine:
        return _candidate(board, line.uci, san=line.san, score=line.score, mate=line.mate,
                          depth=line.depth or depth, pv=list(line.pv), pv_san=list(line.pv_san),
                          rank=line.multipv)

    def _from_internal(self, board: chess.Board, result: SearchResult, cfg: Config) -> Recommendation:
        lines = []
        for rank, root in enumerate(result.lines[:cfg.search.report_lines], start=1):
            plies = mate_plies(root.score)
            mate = None
            if plies is not None:
                moves = (abs(plies) + 1) // 2
                mate = moves if plies > 0 else -moves
            pv = [m.uci() for m in root.pv]
            lines.append(_candidate(
                board, root.move.uci(), san=board.san(root.move), score=root.score, mate=mate,
                depth=result.depth, pv=pv, pv_san=pv_to_san(board, pv), rank=rank,
            ))
        return Recommendation(
            source=SOURCE_INTERNAL,
            depth=result.depth,
            best=lines[0] if lines else None,
            lines=lines,
            nodes=result.nodes,
            elapsed_ms=result.elapsed_ms,
            aborted=result.aborted,
            timeouts=result.timeouts,
        )
