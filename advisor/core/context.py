"""History-derived evaluation context, built once per root search."""

from dataclasses import dataclass, field
from typing import Dict

import chess

FLANK_FILES = (0, 7)
FLANK_WINDOW_PLIES = 20


@dataclass(frozen=True)
class EvaluationContext:
    """Read-only summary of the game history that the static evaluator cannot see.

    ply_count:       plies played so far (from the move stack, or the FEN counters
                     when the position carries no history).
    castled:         per-colour flag, True once that side castled.
    king_moved:      per-colour flag, True once that side's king left its square.
    repeated_flank:  per-colour count of second-or-later pawn moves from the same
                     a/h file within the first twenty plies.
    """
    ply_count: int = 0
    castled: Dict[bool, bool] = field(default_factory=lambda: {chess.WHITE: False, chess.BLACK: False})
    king_moved: Dict[bool, bool] = field(default_factory=lambda: {chess.WHITE: False, chess.BLACK: False})
    repeated_flank: Dict[bool, int] = field(default_factory=lambda: {chess.WHITE: 0, chess.BLACK: 0})

    @classmethod
    def from_board(cls, board: chess.Board) -> "EvaluationContext":
        if not board.move_stack:
            return cls._from_static(board)

        castled = {chess.WHITE: False, chess.BLACK: False}
        king_moved = {chess.WHITE: False, chess.BLACK: False}
        repeated = {chess.WHITE: 0, chess.BLACK: 0}
        flank_counts = {chess.WHITE: {}, chess.BLACK: {}}

        replay = board.root()
        for index, move in enumerate(board.move_stack):
            piece = replay.piece_at(move.from_square)
            color = replay.turn
            if piece is not None and piece.piece_type == chess.KING:
                king_moved[color] = True
                if replay.is_castling(move):
                    castled[color] = True
            if (index < FLANK_WINDOW_PLIES and piece is not None
                    and piece.piece_type == chess.PAWN
                    and chess.square_file(move.from_square) in FLANK_FILES):
                counts = flank_counts[color]
                f = chess.square_file(move.from_square)
                counts[f] = counts.get(f, 0) + 1
                if counts[f] > 1:
                    repeated[color] += 1
            replay.push(move)

        start_ply = ply_from_counters(board.root())
        return cls(
            ply_count=start_ply + len(board.move_stack),
            castled=castled,
            king_moved=king_moved,
            repeated_flank=repeated,
        )

    @classmethod
    def _from_static(cls, board: chess.Board) -> "EvaluationContext":
        # No history: infer what we can from placement and castling rights.
        castled = {}
        king_moved = {}
        for color, home_rank in ((chess.WHITE, 0), (chess.BLACK, 7)):
            king = board.king(color)
            has_rights = bool(board.castling_rights & chess.BB_RANK_1 if color == chess.WHITE
                              else board.castling_rights & chess.BB_RANK_8)
            on_castled_square = False
            if king is not None and chess.square_rank(king) == home_rank and not has_rights:
                rook = chess.Piece(chess.ROOK, color)
                if chess.square_file(king) == 6:
                    on_castled_square = board.piece_at(chess.square(5, home_rank)) == rook
                elif chess.square_file(king) == 2:
                    on_castled_square = board.piece_at(chess.square(3, home_rank)) == rook
            castled[color] = on_castled_square
            king_moved[color] = king is None or king != chess.square(4, home_rank)
        return cls(
            ply_count=ply_from_counters(board),
            castled=castled,
            king_moved=king_moved,
            repeated_flank={chess.WHITE: 0, chess.BLACK: 0},
        )


def ply_from_counters(board: chess.Board) -> int:
    return max(0, (board.fullmove_number - 1) * 2 + (1 if board.turn == chess.BLACK else 0))


def ply_count(board: chess.Board) -> int:
    """Plies played, counting any history before the board's root."""
    return ply_from_counters(board.root()) + len(board.move_stack)
