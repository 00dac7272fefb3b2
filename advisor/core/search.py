import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import chess

from advisor.config import CONFIG, SearchConfig
from advisor.core.context import EvaluationContext
from advisor.core.evaluator import Evaluator
from advisor.core.ordering import MoveOrderer, SearchMeta
from advisor.core.position import fingerprint
from advisor.core.transposition import TranspositionTable, TT_EXACT, TT_LOWER, TT_UPPER
from advisor.core.utils import MATE_SCORE, MATE_WINDOW, format_info

logger = logging.getLogger(__name__)

INF = float("inf")
MAX_PLY = 64
MAX_PV = 32


def _to_tt(value: float, ply: int) -> float:
    # mate scores are stored relative to the node, not the root
    if value > MATE_SCORE - MATE_WINDOW:
        return value + ply
    if value < -(MATE_SCORE - MATE_WINDOW):
        return value - ply
    return value


def _from_tt(value: float, ply: int) -> float:
    if value > MATE_SCORE - MATE_WINDOW:
        return value - ply
    if value < -(MATE_SCORE - MATE_WINDOW):
        return value + ply
    return value


@dataclass
class RootLine:
    move: chess.Move
    score: float
    pv: List[chess.Move]


@dataclass
class SearchResult:
    lines: List[RootLine] = field(default_factory=list)
    depth: int = 0
    target_depth: int = 0
    nodes: int = 0
    elapsed_ms: float = 0.0
    aborted: bool = False
    timeouts: int = 0

    @property
    def best(self) -> Optional[RootLine]:
        return self.lines[0] if self.lines else None


class SearchEngine:
    def __init__(self, evaluator: Optional[Evaluator] = None, orderer: Optional[MoveOrderer] = None,
                 cfg: Optional[SearchConfig] = None):
        self.cfg = cfg or CONFIG.search
        self.evaluator = evaluator or Evaluator()
        self.orderer = orderer or MoveOrderer()
        self.tt = TranspositionTable(self.cfg.tt_size_mb)
        self.meta = SearchMeta()
        self.context = EvaluationContext()

        self._stop_event = threading.Event()
        self._should_stop: Optional[Callable[[], bool]] = None
        self._deadline: Optional[float] = None
        self._max_nodes: Optional[int] = None
        self._extension_limit = MAX_PLY
        self._aborted = False
        self.nodes = 0
        self.timeouts = 0

    def stop(self):
        self._stop_event.set()

    def choose_depth(self, ply_count: int, legal_count: int) -> int:
        """Target depth from game length and branching, clamped to the configured bounds."""
        cfg = self.cfg
        depth = 4
        if ply_count < 10:
            depth += 2
        elif ply_count < 20:
            depth += 1
        if legal_count <= 12:
            depth += 1
        if legal_count <= 8:
            depth += 1
        if legal_count >= 28:
            depth -= 1
        if legal_count >= 36:
            depth -= 1
        if ply_count > 60:
            depth = max(cfg.depth_floor, depth - 1)
        depth = max(cfg.depth_floor, min(depth, cfg.depth_ceiling))
        if cfg.min_depth is not None:
            depth = max(depth, cfg.min_depth)
        if cfg.max_depth is not None:
            depth = min(depth, cfg.max_depth)
        return max(1, depth)

    def _begin(self, board: chess.Board, deadline, should_stop, max_nodes, keep_table):
        self._stop_event.clear()
        self._deadline = deadline
        self._should_stop = should_stop
        self._max_nodes = max_nodes if max_nodes is not None else self.cfg.max_nodes
        self._aborted = False
        self.nodes = 0
        self.timeouts = 0
        self.meta = SearchMeta()
        self.context = EvaluationContext.from_board(board)
        if not keep_table:
            self.tt.clear()

    def _should_abort(self) -> bool:
        if self._aborted:
            return True
        if (self._stop_event.is_set()
                or (self._deadline is not None and time.monotonic() > self._deadline)
                or (self._max_nodes is not None and self.nodes >= self._max_nodes)
                or (self._should_stop is not None and self._should_stop())):
            self._aborted = True
        return self._aborted

    def analyze(self, board: chess.Board, depth: Optional[int] = None,
                time_budget_ms: Optional[int] = None, deadline: Optional[float] = None,
                should_stop: Optional[Callable[[], bool]] = None, max_nodes: Optional[int] = None,
                keep_table: bool = False) -> SearchResult:
        """Iterative deepening over the root moves.

        `deadline` is a time.monotonic() timestamp and wins over `time_budget_ms`.
        Stopping early keeps the last iteration that produced any scored move.
        """
        board = board.copy()
        start = time.monotonic()
        if deadline is None:
            budget = time_budget_ms if time_budget_ms is not None else self.cfg.time_budget_ms
            deadline = start + max(self.cfg.min_time_budget_ms, budget) / 1000.0
        self._begin(board, deadline, should_stop, max_nodes, keep_table)

        ctx = self.context
        initial = self.orderer.order(board, ctx, self.meta, 0)
        if not initial:
            return SearchResult()

        target = depth or self.choose_depth(ctx.ply_count, len(initial))
        self._extension_limit = min(MAX_PLY, target * 2 + 2)
        perspective = board.turn
        preference: Dict[chess.Move, int] = {}
        result = SearchResult(target_depth=target)

        for d in range(1, target + 1):
            if self._should_abort():
                break
            candidates = self.orderer.order(board, ctx, self.meta, 0, preference=preference)
            cap = self.cfg.root_cap_deep if d >= 4 else self.cfg.root_cap_shallow
            if cap:
                candidates = candidates[:cap]

            iteration = self._search_root(board, candidates, d, perspective)
            if not iteration:
                break

            # exact scores beat fail-low bounds of equal value; bonuses break remaining ties
            iteration.sort(key=lambda x: (x[1], x[2], x[3]), reverse=True)
            result.lines = [RootLine(move, score, self._principal_variation(board, move))
                            for move, score, _exact, _ranked in iteration]
            result.depth = d
            preference = {entry[0]: index for index, entry in enumerate(iteration)}

            elapsed = (time.monotonic() - start) * 1000
            best = result.lines[0]
            logger.debug(format_info(d, best.score, self.nodes, elapsed, best.pv))
            if self._aborted:
                break

        result.nodes = self.nodes
        result.timeouts = self.timeouts
        result.aborted = self._aborted
        result.elapsed_ms = (time.monotonic() - start) * 1000
        return result

    def _search_root(self, board, candidates, depth, perspective) -> List[Tuple[chess.Move, float, bool, float]]:
        cfg = self.cfg
        alpha, beta = -INF, INF
        iteration = []
        for move in candidates:
            if self._should_abort():
                break
            priority = self.orderer.static_score(board, move, self.context)
            board.push(move)
            if board.is_checkmate():
                score = MATE_SCORE - 1
            else:
                score = -self._negamax(board, depth - 1, -beta, -alpha, not perspective, 1)
            check_bonus = cfg.root_check_bonus if board.is_check() else 0.0
            board.pop()
            if self._aborted:
                # the subtree was cut short; its score is not trustworthy
                break
            exact = score > alpha
            iteration.append((move, score, exact, score + check_bonus + priority * cfg.root_priority_weight))
            if score > alpha:
                alpha = score
        return iteration

    def search_position(self, board: chess.Board, depth: int) -> Tuple[float, Optional[chess.Move]]:
        """Fixed-depth negamax from the root without time limits. Returns (score, best move)."""
        board = board.copy()
        self._begin(board, None, None, None, keep_table=False)
        self._extension_limit = min(MAX_PLY, depth * 2 + 2)
        score = self._negamax(board, depth, -INF, INF, board.turn, 0)
        entry = self.tt.get(board)
        return score, entry.best_move if entry else None

    def _negamax(self, board: chess.Board, depth: int, alpha: float, beta: float,
                 perspective: chess.Color, ply: int) -> float:
        if self._should_abort():
            self.timeouts += 1
            return self.evaluator.evaluate_for(board, perspective, self.context)
        self.nodes += 1
        if ply > 0 and board.is_repetition(2):
            return 0.0

        key = self.tt.key(board)
        entry = self.tt.get(board, key)
        tt_move = None
        if entry is not None:
            tt_move = entry.best_move
            if entry.depth >= depth or entry.terminal:
                value = _from_tt(entry.value, ply)
                if entry.flag == TT_EXACT:
                    return value
                if entry.flag == TT_LOWER:
                    alpha = max(alpha, value)
                elif entry.flag == TT_UPPER:
                    beta = min(beta, value)
                if alpha >= beta:
                    return value

        if not any(board.generate_legal_moves()):
            value = -(MATE_SCORE - ply) if board.is_check() else 0.0
            self.tt.store(board, depth, _to_tt(value, ply), TT_EXACT, None, terminal=True, key=key)
            return value

        if depth <= 0:
            if self.cfg.use_quiescence:
                return self._quiescence(board, alpha, beta, perspective, ply, self.cfg.q_max_depth)
            return self.evaluator.evaluate_for(board, perspective, self.context)

        moves = self.orderer.order(board, self.context, self.meta, ply, tt_move=tt_move, key=key)
        cap = self.cfg.branch_cap_deep if depth >= 3 else self.cfg.branch_cap_shallow
        if cap:
            moves = moves[:cap]

        alpha_orig = alpha
        best_value = -INF
        best_move = None
        for index, move in enumerate(moves):
            quiet = not board.is_capture(move) and not move.promotion
            board.push(move)
            gives_check = board.is_check()
            new_depth = depth - 1
            if gives_check and self.cfg.use_check_extension and ply < self._extension_limit:
                new_depth += 1

            if (self.cfg.use_lmr and quiet and not gives_check and index >= self.cfg.lmr_move_threshold
                    and depth >= self.cfg.lmr_min_depth):
                score = -self._negamax(board, new_depth - 1, -beta, -alpha, not perspective, ply + 1)
                if score > alpha:
                    score = -self._negamax(board, new_depth, -beta, -alpha, not perspective, ply + 1)
            else:
                score = -self._negamax(board, new_depth, -beta, -alpha, not perspective, ply + 1)
            board.pop()

            if score > best_value:
                best_value = score
                best_move = move
            if score > alpha:
                alpha = score
            if alpha >= beta:
                if quiet:
                    self.meta.add_killer(ply, move)
                    self.meta.add_history(move, depth)
                break

        if self._aborted:
            return best_value

        if best_value >= beta:
            flag = TT_LOWER
        elif best_value > alpha_orig:
            flag = TT_EXACT
        else:
            flag = TT_UPPER
        self.tt.store(board, depth, _to_tt(best_value, ply), flag, best_move, key=key)
        return best_value

    def _quiescence(self, board: chess.Board, alpha: float, beta: float,
                    perspective: chess.Color, ply: int, limit: int) -> float:
        if self._should_abort():
            self.timeouts += 1
            return self.evaluator.evaluate_for(board, perspective, self.context)
        self.nodes += 1

        if not any(board.generate_legal_moves()):
            return -(MATE_SCORE - ply) if board.is_check() else 0.0

        stand_pat = self.evaluator.evaluate_for(board, perspective, self.context)
        if stand_pat >= beta:
            return beta
        if stand_pat > alpha:
            alpha = stand_pat
        if limit <= 0:
            return stand_pat

        moves = self.orderer.order(board, self.context, self.meta, ply, captures_only=True)
        for move in moves:
            board.push(move)
            score = -self._quiescence(board, -beta, -alpha, not perspective, ply + 1, limit - 1)
            board.pop()
            if score >= beta:
                return beta
            if score > alpha:
                alpha = score
        return alpha

    def _principal_variation(self, board: chess.Board, move: chess.Move) -> List[chess.Move]:
        """Root move followed by the table's best-child chain; stops on a miss, mate or repeat."""
        pv = [move]
        board.push(move)
        pushed = 1
        seen = {fingerprint(board)}
        try:
            while len(pv) < MAX_PV:
                entry = self.tt.get(board)
                if entry is None or entry.best_move is None or entry.best_move not in board.legal_moves:
                    break
                board.push(entry.best_move)
                pushed += 1
                pv.append(entry.best_move)
                fp = fingerprint(board)
                if fp in seen:
                    break
                seen.add(fp)
        finally:
            for _ in range(pushed):
                board.pop()
        return pv
