"""Position wrapper over python-chess exposing the advisor's move vocabulary."""

from dataclasses import dataclass
from typing import Iterable, List, Optional

import chess

from advisor.errors import InvalidPosition


@dataclass(frozen=True)
class MoveInfo:
    """One legal move with everything the ranking code needs to know about it."""
    uci: str
    san: str
    from_square: str
    to_square: str
    promotion: Optional[str]
    captured: Optional[str]
    piece: str

    @classmethod
    def from_move(cls, board: chess.Board, move: chess.Move) -> "MoveInfo":
        piece = board.piece_at(move.from_square)
        if board.is_en_passant(move):
            captured = "p"
        else:
            victim = board.piece_at(move.to_square)
            captured = victim.symbol().lower() if victim and victim.color != board.turn else None
        return cls(
            uci=move.uci(),
            san=board.san(move),
            from_square=chess.square_name(move.from_square),
            to_square=chess.square_name(move.to_square),
            promotion=chess.piece_symbol(move.promotion) if move.promotion else None,
            captured=captured,
            piece=piece.symbol().lower() if piece else "?",
        )


def fingerprint(board: chess.Board) -> str:
    """Board, turn, castling rights and en-passant square; no move clocks."""
    return board.epd()


class Position:
    def __init__(self, fen: str = None):
        """Initialize from FEN or the standard starting position."""
        try:
            self.board = chess.Board(fen) if fen else chess.Board()
        except ValueError as e:
            raise InvalidPosition(f"Invalid FEN: {e}") from e
        if fen and not self.board.is_valid():
            raise InvalidPosition(f"Invalid FEN: {fen}")

    @classmethod
    def from_board(cls, board: chess.Board) -> "Position":
        pos = cls.__new__(cls)
        pos.board = board
        return pos

    @classmethod
    def from_moves(cls, moves: Iterable[str], fen: str = None) -> "Position":
        """Replay UCI or SAN moves from `fen` (or the start position)."""
        pos = cls(fen)
        for token in moves:
            pos.apply(pos.parse_move(token))
        return pos

    @property
    def turn(self) -> chess.Color:
        return self.board.turn

    @property
    def fen(self) -> str:
        return self.board.fen()

    def fingerprint(self) -> str:
        return fingerprint(self.board)

    def parse_move(self, token: str) -> chess.Move:
        """Accept either UCI ('g1f3') or SAN ('Nf3'); raise InvalidPosition if illegal."""
        try:
            move = chess.Move.from_uci(token)
            if move in self.board.legal_moves:
                return move
        except ValueError:
            pass
        try:
            return self.board.parse_san(token)
        except ValueError as e:
            raise InvalidPosition(f"Illegal move {token!r} in {self.board.fen()}") from e

    def legal_moves(self) -> List[MoveInfo]:
        return [MoveInfo.from_move(self.board, m) for m in self.board.legal_moves]

    def apply(self, move: chess.Move):
        if move not in self.board.legal_moves:
            raise InvalidPosition(f"Illegal move {move.uci()} in {self.board.fen()}")
        self.board.push(move)

    def undo(self) -> Optional[chess.Move]:
        """Pop the last move; no-op on an empty history."""
        if self.board.move_stack:
            return self.board.pop()
        return None

    def is_check(self) -> bool:
        return self.board.is_check()

    def is_checkmate(self) -> bool:
        return self.board.is_checkmate()

    def is_stalemate(self) -> bool:
        return self.board.is_stalemate()

    def copy(self) -> "Position":
        return Position.from_board(self.board.copy())

    def history_san(self) -> List[str]:
        replay = self.board.root()
        sans = []
        for move in self.board.move_stack:
            sans.append(replay.san(move))
            replay.push(move)
        return sans

    def __str__(self):
        return str(self.board)
