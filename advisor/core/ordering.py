"""Move ordering: rank legal moves best-first so alpha-beta cuts early."""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import chess
from chess import polyglot

from advisor.config import CONFIG, OrderingConfig
from advisor.core.context import EvaluationContext
from advisor.core.evaluator import CORE_CENTER, EXTENDED_CENTER, MINOR_START_SQUARES

HistoryKey = Tuple[chess.Square, chess.Square, Optional[chess.PieceType]]

MAX_KILLERS = 2
TT_MOVE_BONUS = 100.0

# exchange values for the safety lookahead; king never "hangs"
EXCHANGE_VALUES = {
    chess.PAWN: 1.0, chess.KNIGHT: 3.2, chess.BISHOP: 3.3,
    chess.ROOK: 5.1, chess.QUEEN: 9.5, chess.KING: 0.0,
}


def history_key(move: chess.Move) -> HistoryKey:
    return (move.from_square, move.to_square, move.promotion)


@dataclass
class SearchMeta:
    """Per-search tables; created for one analysis call and then discarded."""
    killers: Dict[int, List[chess.Move]] = field(default_factory=lambda: defaultdict(list))
    history: Dict[HistoryKey, int] = field(default_factory=lambda: defaultdict(int))
    order_cache: Dict[int, Dict[int, Dict[chess.Move, float]]] = field(default_factory=lambda: defaultdict(dict))

    def add_killer(self, ply: int, move: chess.Move):
        slots = self.killers[ply]
        if move in slots:
            slots.remove(move)
        slots.insert(0, move)
        del slots[MAX_KILLERS:]

    def add_history(self, move: chess.Move, depth: int):
        self.history[history_key(move)] += depth * depth

    def is_killer(self, ply: int, move: chess.Move) -> bool:
        return move in self.killers.get(ply, ())


class MoveOrderer:
    def __init__(self, cfg: Optional[OrderingConfig] = None):
        self.cfg = cfg or CONFIG.ordering

    def order(self, board: chess.Board, context: EvaluationContext, meta: SearchMeta, ply: int,
              captures_only: bool = False, preference: Optional[Dict[chess.Move, int]] = None,
              tt_move: Optional[chess.Move] = None, key: Optional[int] = None) -> List[chess.Move]:
        """Legal moves best-first. With `captures_only`, only captures, promotions and checks."""
        moves = list(board.legal_moves)
        if captures_only:
            moves = [m for m in moves if is_forcing(board, m)]
        if not moves:
            return moves

        cache = meta.order_cache[ply]
        k = key if key is not None else polyglot.zobrist_hash(board)
        static = cache.get(k)
        if static is None:
            static = {}
            cache[k] = static

        scored = []
        for move in moves:
            base = static.get(move)
            if base is None:
                base = self.static_score(board, move, context)
                static[move] = base
            scored.append((base + self._dynamic_score(move, meta, ply, preference, tt_move), move))
        scored.sort(key=lambda x: x[0], reverse=True)
        return [m for _, m in scored]

    def _dynamic_score(self, move, meta, ply, preference, tt_move):
        cfg = self.cfg
        score = 0.0
        if move == tt_move:
            score += TT_MOVE_BONUS
        if preference:
            rank = preference.get(move)
            if rank is not None:
                score += cfg.previous_rank_base - rank
        if meta.is_killer(ply, move):
            score += cfg.killer_bonus
        hist = meta.history.get(history_key(move))
        if hist:
            score += min(cfg.history_cap, hist * cfg.history_scale)
        return score

    def static_score(self, board: chess.Board, move: chess.Move, context: EvaluationContext) -> float:
        """Heuristic priority independent of search state (captures, development, safety)."""
        cfg = self.cfg
        score = 0.0
        piece = board.piece_at(move.from_square)
        pt = piece.piece_type if piece else None
        plies = context.ply_count if context else 0
        opening = plies < cfg.opening_plies
        very_early = plies < cfg.very_early_plies

        captured = _captured_type(board, move)
        if captured is not None:
            score += cfg.capture_base + cfg.capture_weights.get(chess.piece_name(captured).upper(), 0)
            score += cfg.capture_flag_bonus
        if move.promotion:
            score += cfg.promotion_bonus
        if board.is_castling(move):
            score += cfg.castle_bonus + cfg.castle_san_bonus

        if pt in (chess.KNIGHT, chess.BISHOP) and move.from_square in MINOR_START_SQUARES:
            score += cfg.minor_development_bonus if opening else cfg.minor_late_bonus
            if move.to_square in CORE_CENTER:
                score += cfg.minor_core_bonus
            elif move.to_square in EXTENDED_CENTER:
                score += cfg.minor_extended_bonus

        if pt == chess.PAWN:
            if move.to_square in CORE_CENTER:
                score += cfg.pawn_core_bonus
            elif move.to_square in EXTENDED_CENTER:
                score += cfg.pawn_extended_bonus
            if chess.square_file(move.from_square) in (0, 7):
                score -= cfg.flank_pawn_opening_penalty if opening else cfg.flank_pawn_late_penalty
                if very_early:
                    score -= cfg.flank_pawn_very_early_penalty
        elif move.to_square in CORE_CENTER:
            score += cfg.piece_core_bonus
        elif move.to_square in EXTENDED_CENTER:
            score += cfg.piece_extended_bonus

        return score + self._safety(board, move, pt, captured)

    def _safety(self, board: chess.Board, move: chess.Move, pt, captured) -> float:
        """One-ply lookahead: check bonus, hanging-piece and king-exposure penalties."""
        cfg = self.cfg
        us = board.turn
        them = not us
        king = board.king(us)
        guard_king = king is not None and pt is not None and (
            pt == chess.KING or chess.square_distance(king, move.from_square) <= 2
        )
        exposure_before = _king_zone_attacks(board, king, them) if guard_king else 0

        moved_value = EXCHANGE_VALUES[move.promotion or pt] if pt else 0.0
        captured_value = EXCHANGE_VALUES[captured] if captured else 0.0

        score = 0.0
        board.push(move)
        try:
            if board.is_check():
                if board.is_checkmate():
                    score += cfg.mate_bonus
                else:
                    score += cfg.check_bonus
                score += cfg.safety_check_bonus

            attackers = board.attackers(them, move.to_square)
            if attackers and moved_value > 0:
                defenders = board.attackers(us, move.to_square)
                cheapest = min(EXCHANGE_VALUES[board.piece_type_at(sq)] for sq in attackers)
                loss = max(0.0, moved_value - cheapest) if defenders else moved_value
                score -= max(0.0, loss - captured_value) * cfg.hanging_scale

            if guard_king:
                new_king = board.king(us)
                exposure_after = _king_zone_attacks(board, new_king, them)
                if exposure_after > exposure_before:
                    score -= (exposure_after - exposure_before) * cfg.king_exposure_penalty
        finally:
            board.pop()
        return score


def is_forcing(board: chess.Board, move: chess.Move) -> bool:
    return board.is_capture(move) or bool(move.promotion) or board.gives_check(move)


def _captured_type(board: chess.Board, move: chess.Move) -> Optional[chess.PieceType]:
    if board.is_en_passant(move):
        return chess.PAWN
    victim = board.piece_at(move.to_square)
    if victim is None or victim.color == board.turn:
        return None
    return victim.piece_type


def _king_zone_attacks(board: chess.Board, king: Optional[chess.Square], attacker: chess.Color) -> int:
    if king is None:
        return 0
    zone = chess.SquareSet(chess.BB_KING_ATTACKS[king]) | chess.SquareSet.from_square(king)
    return sum(1 for sq in zone if board.is_attacked_by(attacker, sq))
