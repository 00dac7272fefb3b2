from typing import Optional

from advisor.analyzer import AnalysisOrchestrator, Recommendation
from advisor.config import CONFIG, Config
from advisor.core.position import Position


class Advisor:
    """A game in progress plus the orchestrator that suggests moves for it."""

    def __init__(self, fen: Optional[str] = None, config: Optional[Config] = None):
        self.config = config or CONFIG
        self.position = Position(fen)
        self.orchestrator = AnalysisOrchestrator(self.config)

    def make_move(self, token: str) -> str:
        """Play a UCI or SAN move; returns its SAN."""
        move = self.position.parse_move(token)
        san = self.position.board.san(move)
        self.position.apply(move)
        return san

    def undo_move(self) -> Optional[str]:
        move = self.position.undo()
        return move.uci() if move else None

    def recommend(self) -> Recommendation:
        return self.orchestrator.recommend(self.position, self.config)
