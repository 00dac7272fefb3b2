"""Parsing and translation helpers for the engine's text protocol."""

import re
from dataclasses import dataclass, field
from typing import List, Optional

import chess

DEPTH_RE = re.compile(r"\bdepth\s+(\d+)")
MULTIPV_RE = re.compile(r"\bmultipv\s+(\d+)")
SCORE_RE = re.compile(r"\bscore\s+(cp|mate)\s+(-?\d+)")
NO_MOVE = "(none)"


@dataclass
class InfoLine:
    """One ranked progress report."""
    multipv: int
    depth: Optional[int]
    score_type: Optional[str]  # "cp" | "mate" | None
    raw_score: Optional[int]
    pv: List[str] = field(default_factory=list)

    @property
    def score(self) -> Optional[float]:
        """Centipawns as pawns; None for mate or missing scores."""
        if self.score_type == "cp" and self.raw_score is not None:
            return self.raw_score / 100
        return None

    @property
    def mate(self) -> Optional[int]:
        if self.score_type == "mate":
            return self.raw_score
        return None


def parse_info(line: str) -> Optional[InfoLine]:
    """Parse an `info ... pv ...` line; None for anything without a principal variation."""
    if not line.startswith("info "):
        return None
    idx = line.find(" pv ")
    if idx == -1:
        return None
    pv = line[idx + 4:].split()
    if not pv:
        return None
    depth = DEPTH_RE.search(line)
    multipv = MULTIPV_RE.search(line)
    score = SCORE_RE.search(line)
    return InfoLine(
        multipv=int(multipv.group(1)) if multipv else 1,
        depth=int(depth.group(1)) if depth else None,
        score_type=score.group(1) if score else None,
        raw_score=int(score.group(2)) if score else None,
        pv=pv,
    )


def parse_bestmove(line: str) -> Optional[str]:
    """UCI move named by a `bestmove` line, or None for the no-move sentinel."""
    parts = line.split()
    if len(parts) < 2 or parts[0] != "bestmove" or parts[1] == NO_MOVE:
        return None
    return parts[1]


def display_score(score_type: Optional[str], raw_score: Optional[int]) -> Optional[str]:
    if score_type is None or raw_score is None:
        return None
    if score_type == "mate":
        return f"#{raw_score}"
    return f"{raw_score / 100:.2f}"


def legal_move(board: chess.Board, uci: str) -> Optional[chess.Move]:
    """The move named by `uci` if it parses and is legal in `board`."""
    if not uci:
        return None
    try:
        move = chess.Move.from_uci(uci)
    except ValueError:
        return None
    return move if move in board.legal_moves else None


def pv_to_san(board: chess.Board, pv: List[str]) -> List[str]:
    """Replay a coordinate-notation line on a scratch copy; stops at the first illegal move."""
    scratch = board.copy(stack=False)
    sans = []
    for uci in pv:
        move = legal_move(scratch, uci)
        if move is None:
            break
        sans.append(scratch.san(move))
        scratch.push(move)
    return sans


def target_depth(plies: int, base: int = 12, ceiling: int = 18, plies_per_depth: int = 6) -> int:
    return min(ceiling, base + plies // plies_per_depth)
