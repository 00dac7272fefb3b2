"""Core analysis components: position, evaluator, ordering, search, and transposition table."""

from .evaluator import Evaluator
from .ordering import MoveOrderer
from .position import Position
from .search import SearchEngine
from .transposition import TranspositionTable
