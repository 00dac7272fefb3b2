from typing import Iterable, Optional

import chess

MATE_SCORE = 1000.0
MATE_WINDOW = 200  # any |score| above MATE_SCORE - MATE_WINDOW encodes a forced mate


def mate_plies(score: float) -> Optional[int]:
    """Signed plies to mate encoded in `score`, or None for an ordinary score."""
    if abs(score) < MATE_SCORE - MATE_WINDOW:
        return None
    plies = int(round(MATE_SCORE - abs(score)))
    return plies if score > 0 else -plies


def format_info(d, score, nodes, elapsed_ms, pv_moves: Iterable[chess.Move]):
    pv_str = " ".join(m.uci() for m in pv_moves)
    nps = int(nodes * 1000 / elapsed_ms) if elapsed_ms > 0 else 0
    plies = mate_plies(score)
    if plies is not None:
        mate_in = (abs(plies) + 1) // 2
        score_str = f"mate {mate_in if plies > 0 else -mate_in}"
    else:
        score_str = f"cp {int(round(score * 100))}"
    return f"info depth {d} score {score_str} nodes {nodes} nps {nps} time {int(elapsed_ms)} pv {pv_str}"
