"""Static evaluator. Scores are in pawns, positive favours White, whoever is to move."""

from typing import Optional

import chess

from advisor.config import CONFIG, EvalConfig
from advisor.core.context import EvaluationContext

CORE_CENTER = chess.SquareSet([chess.D4, chess.E4, chess.D5, chess.E5])
EXTENDED_CENTER = chess.SquareSet([
    chess.C3, chess.C4, chess.C5, chess.C6, chess.D3, chess.E3,
    chess.F3, chess.F4, chess.F5, chess.F6, chess.D6, chess.E6,
])
MINOR_START_SQUARES = chess.SquareSet([
    chess.B1, chess.G1, chess.C1, chess.F1, chess.B8, chess.G8, chess.C8, chess.F8,
])
UNCASTLED_KING_SQUARES = {
    chess.WHITE: (chess.E1, chess.D1),
    chess.BLACK: (chess.E8, chess.D8),
}


def table_index(square: chess.Square, color: chess.Color) -> int:
    """Index into a table printed from a8 to h1, mirrored for Black."""
    rank = chess.square_rank(square)
    if color == chess.WHITE:
        rank = 7 - rank
    return rank * 8 + chess.square_file(square)


class Evaluator:
    def __init__(self, cfg: Optional[EvalConfig] = None):
        self.cfg = cfg or CONFIG.eval

    def evaluate(self, board: chess.Board, context: Optional[EvaluationContext] = None) -> float:
        """Return static eval in pawns, positive favours White."""
        if board.is_insufficient_material():
            return 0.0
        ctx = context or EvaluationContext.from_board(board)
        cfg = self.cfg

        total = 0.0
        phase = 0
        file_counts = {chess.WHITE: [0] * 8, chess.BLACK: [0] * 8}
        minors_home = {chess.WHITE: 0, chess.BLACK: 0}
        bishops = {chess.WHITE: 0, chess.BLACK: 0}

        piece_map = board.piece_map()
        for sq, piece in piece_map.items():
            pt = piece.piece_type
            p_name = chess.piece_name(pt).upper()
            phase += cfg.phase_weights.get(p_name, 0)
            sign = 1 if piece.color == chess.WHITE else -1

            if pt in (chess.KNIGHT, chess.BISHOP) and sq in MINOR_START_SQUARES:
                minors_home[piece.color] += 1
            if pt == chess.BISHOP:
                bishops[piece.color] += 1
            elif pt == chess.PAWN:
                file_counts[piece.color][chess.square_file(sq)] += 1

            if sq in CORE_CENTER:
                total += sign * cfg.core_center_bonus
            elif sq in EXTENDED_CENTER:
                total += sign * cfg.extended_center_bonus

        # Material and placement; the king table is blended by phase.
        king_weight = min(1.0, phase / cfg.max_phase)
        for sq, piece in piece_map.items():
            p_name = chess.piece_name(piece.piece_type).upper()
            idx = table_index(sq, piece.color)
            if piece.piece_type == chess.KING:
                placement = cfg.king_mg[idx] * king_weight + cfg.king_eg[idx] * (1 - king_weight)
            else:
                table = cfg.pst.get(p_name)
                placement = table[idx] if table else 0.0
            value = cfg.piece_values.get(p_name, 0.0) + placement
            total += value if piece.color == chess.WHITE else -value

        if bishops[chess.WHITE] >= 2:
            total += cfg.bishop_pair_bonus
        if bishops[chess.BLACK] >= 2:
            total -= cfg.bishop_pair_bonus

        total += self._eval_rooks(board, file_counts)
        total += self._eval_pawns(board, file_counts, chess.WHITE)
        total -= self._eval_pawns(board, file_counts, chess.BLACK)
        total += self._eval_king(board, chess.WHITE)
        total -= self._eval_king(board, chess.BLACK)
        total += self._eval_history(board, ctx, minors_home)
        total += (self._mobility(board, chess.WHITE) - self._mobility(board, chess.BLACK)) * cfg.mobility_scale
        total += cfg.tempo_bonus if board.turn == chess.WHITE else -cfg.tempo_bonus
        return total

    def evaluate_for(self, board: chess.Board, perspective: chess.Color,
                     context: Optional[EvaluationContext] = None) -> float:
        value = self.evaluate(board, context)
        return value if perspective == chess.WHITE else -value

    def _eval_rooks(self, board, file_counts):
        cfg = self.cfg
        score = 0.0
        for color in (chess.WHITE, chess.BLACK):
            for sq in board.pieces(chess.ROOK, color):
                f = chess.square_file(sq)
                bonus = 0.0
                if file_counts[not color][f] == 0:
                    if file_counts[color][f] == 0:
                        bonus += cfg.rook_open_bonus * cfg.rook_fully_open_factor
                    else:
                        bonus += cfg.rook_open_bonus
                if sq in EXTENDED_CENTER:
                    bonus += cfg.rook_center_bonus
                score += bonus if color == chess.WHITE else -bonus
        return score

    def _eval_pawns(self, board, file_counts, color):
        """Doubled, isolated and passed pawns for one side, as a positive-is-good score."""
        cfg = self.cfg
        counts = file_counts[color]
        score = 0.0
        for f in range(8):
            if counts[f] > 1:
                score -= cfg.doubled_pawn_penalty * (counts[f] - 1)
            if counts[f] > 0:
                left = counts[f - 1] > 0 if f > 0 else False
                right = counts[f + 1] > 0 if f < 7 else False
                if not left and not right:
                    score -= cfg.isolated_pawn_penalty

        enemy_pawns = board.pieces(chess.PAWN, not color)
        for sq in board.pieces(chess.PAWN, color):
            f = chess.square_file(sq)
            r = chess.square_rank(sq)
            blocked = False
            for esq in enemy_pawns:
                if abs(chess.square_file(esq) - f) > 1:
                    continue
                er = chess.square_rank(esq)
                if (color == chess.WHITE and er >= r) or (color == chess.BLACK and er <= r):
                    blocked = True
                    break
            if not blocked:
                advancement = r - 1 if color == chess.WHITE else 6 - r
                score += cfg.passed_pawn_bonus + max(0, advancement) * cfg.passed_pawn_step
        return score

    def _eval_king(self, board, color):
        """Pawn shield bonus minus exposure of orthogonally adjacent empty squares."""
        king = board.king(color)
        if king is None:
            return 0.0
        kf = chess.square_file(king)
        kr = chess.square_rank(king)
        score = 0.0

        shield_rank = kr + 1 if color == chess.WHITE else kr - 1
        if 0 <= shield_rank <= 7:
            own_pawn = chess.Piece(chess.PAWN, color)
            for f in (kf - 1, kf, kf + 1):
                if 0 <= f <= 7 and board.piece_at(chess.square(f, shield_rank)) == own_pawn:
                    score += self.cfg.king_shield_bonus

        for df, dr in ((0, -1), (0, 1), (1, 0), (-1, 0)):
            f, r = kf + df, kr + dr
            if 0 <= f <= 7 and 0 <= r <= 7 and board.piece_at(chess.square(f, r)) is None:
                score -= self.cfg.king_exposure_penalty
        return score

    def _eval_history(self, board, ctx, minors_home):
        """Opening heuristics that depend on how the game got here."""
        cfg = self.cfg
        score = 0.0
        plies = ctx.ply_count

        if plies < cfg.opening_plies:
            penalty = cfg.undeveloped_minor_base + max(0, cfg.undeveloped_minor_horizon - plies) * cfg.undeveloped_minor_decay
            score -= minors_home[chess.WHITE] * penalty
            score += minors_home[chess.BLACK] * penalty

        score -= ctx.repeated_flank[chess.WHITE] * cfg.flank_repeat_penalty
        score += ctx.repeated_flank[chess.BLACK] * cfg.flank_repeat_penalty

        if plies < cfg.early_plies:
            penalty = cfg.uncastled_base_penalty + max(0, plies - cfg.uncastled_grace_plies) * cfg.uncastled_step_penalty
            for color in (chess.WHITE, chess.BLACK):
                if not ctx.castled[color] and board.king(color) in UNCASTLED_KING_SQUARES[color]:
                    score += -penalty if color == chess.WHITE else penalty

        if ctx.castled[chess.WHITE]:
            score += cfg.castled_bonus
        if ctx.castled[chess.BLACK]:
            score -= cfg.castled_bonus
        return score

    def _mobility(self, board: chess.Board, color: chess.Color) -> int:
        """Legal move count for `color`, flipping the side to move in place if needed."""
        if board.turn == color:
            return board.legal_moves.count()
        turn, ep = board.turn, board.ep_square
        board.turn = color
        board.ep_square = None
        try:
            return board.legal_moves.count()
        finally:
            board.turn = turn
            board.ep_square = ep
