"""Transposition table keyed by zobrist hash, verified by position fingerprint.

Entries record the depth searched, the value, a bound flag and the best
child move. The table belongs to exactly one search; a replacement only
happens when the new result was searched at least as deep as the stored one,
except terminal results, which are exact at any depth.

Usage (example):

    tt = TranspositionTable()
    tt.store(board, depth=3, value=0.4, flag=TT_EXACT, best_move=move)
    entry = tt.get(board)
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

import chess
from chess import polyglot

from advisor.core.position import fingerprint

TT_EXACT = "exact"
TT_LOWER = "lower"
TT_UPPER = "upper"

# rough per-entry footprint of a python dataclass + dict slot
ENTRY_BYTES = 256


@dataclass
class TTEntry:
    fingerprint: str
    depth: int
    value: float
    flag: str
    best_move: Optional[chess.Move]
    terminal: bool = False


class TranspositionTable:
    """Depth-preferred table; `max_entries` bounds memory by dropping the oldest entry."""

    def __init__(self, size_mb: int = 32):
        self.max_entries = max(1024, size_mb * 1024 * 1024 // ENTRY_BYTES)
        self._table: Dict[int, TTEntry] = {}

    def key(self, board: chess.Board) -> int:
        return polyglot.zobrist_hash(board)

    def get(self, board: chess.Board, key: Optional[int] = None) -> Optional[TTEntry]:
        entry = self._table.get(self.key(board) if key is None else key)
        if entry is None:
            return None
        # verify fingerprint to avoid rare collisions
        if entry.fingerprint != fingerprint(board):
            return None
        return entry

    def store(self, board: chess.Board, depth: int, value: float, flag: str,
              best_move: Optional[chess.Move], terminal: bool = False,
              key: Optional[int] = None) -> bool:
        """Store unless a deeper result is already held. Returns True if written."""
        k = self.key(board) if key is None else key
        fp = fingerprint(board)
        existing = self._table.get(k)
        if existing is not None and existing.fingerprint == fp:
            if existing.terminal:
                return False
            if not terminal and depth < existing.depth:
                return False
        elif existing is None and len(self._table) >= self.max_entries:
            self._table.pop(next(iter(self._table)))
        self._table[k] = TTEntry(fp, depth, value, flag, best_move, terminal)
        return True

    def clear(self):
        self._table.clear()

    def __len__(self):
        return len(self._table)
