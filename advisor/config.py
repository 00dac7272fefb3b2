# advisor/config.py
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import os
import tomllib  # python >=3.11

# Defaults (pawns). Tables are laid out as printed boards: index 0 is a8, 63 is h1,
# written from White's point of view and mirrored vertically for Black.
PIECE_VALUES = {
    "PAWN": 1.0,
    "KNIGHT": 3.2,
    "BISHOP": 3.3,
    "ROOK": 5.1,
    "QUEEN": 9.5,
    "KING": 0.0,
}

PST_PAWN = [
    0, 0, 0, 0, 0, 0, 0, 0,
    0.05, 0.05, 0.05, 0.05, 0.05, 0.05, 0.05, 0.05,
    0.01, 0.01, 0.02, 0.03, 0.03, 0.02, 0.01, 0.01,
    0.005, 0.005, 0.01, 0.025, 0.025, 0.01, 0.005, 0.005,
    0, 0, 0, 0.02, 0.02, 0, 0, 0,
    0.005, -0.005, -0.01, 0, 0, -0.01, -0.005, 0.005,
    0.05, 0.1, 0.1, -0.2, -0.2, 0.1, 0.1, 0.05,
    0, 0, 0, 0, 0, 0, 0, 0,
]

PST_KNIGHT = [
    -0.5, -0.4, -0.3, -0.3, -0.3, -0.3, -0.4, -0.5,
    -0.4, -0.2, 0, 0.05, 0.05, 0, -0.2, -0.4,
    -0.3, 0.05, 0.1, 0.15, 0.15, 0.1, 0.05, -0.3,
    -0.3, 0, 0.15, 0.2, 0.2, 0.15, 0, -0.3,
    -0.3, 0.05, 0.15, 0.2, 0.2, 0.15, 0.05, -0.3,
    -0.3, 0, 0.1, 0.15, 0.15, 0.1, 0, -0.3,
    -0.4, -0.2, 0, 0, 0, 0, -0.2, -0.4,
    -0.5, -0.4, -0.3, -0.3, -0.3, -0.3, -0.4, -0.5,
]

PST_BISHOP = [
    -0.2, -0.1, -0.1, -0.1, -0.1, -0.1, -0.1, -0.2,
    -0.1, 0, 0, 0, 0, 0, 0, -0.1,
    -0.1, 0, 0.05, 0.1, 0.1, 0.05, 0, -0.1,
    -0.1, 0.05, 0.05, 0.1, 0.1, 0.05, 0.05, -0.1,
    -0.1, 0, 0.1, 0.1, 0.1, 0.1, 0, -0.1,
    -0.1, 0.1, 0.1, 0.1, 0.1, 0.1, 0.1, -0.1,
    -0.1, 0.05, 0, 0, 0, 0, 0.05, -0.1,
    -0.2, -0.1, -0.1, -0.1, -0.1, -0.1, -0.1, -0.2,
]

PST_ROOK = [
    0, 0, 0, 0, 0, 0, 0, 0,
    0.05, 0.1, 0.1, 0.1, 0.1, 0.1, 0.1, 0.05,
    -0.05, 0, 0, 0, 0, 0, 0, -0.05,
    -0.05, 0, 0, 0, 0, 0, 0, -0.05,
    -0.05, 0, 0, 0, 0, 0, 0, -0.05,
    -0.05, 0, 0, 0, 0, 0, 0, -0.05,
    -0.05, 0, 0, 0, 0, 0, 0, -0.05,
    0, 0, 0.05, 0.1, 0.1, 0.05, 0, 0,
]

PST_QUEEN = [
    -0.2, -0.1, -0.1, -0.05, -0.05, -0.1, -0.1, -0.2,
    -0.1, 0, 0, 0, 0, 0, 0, -0.1,
    -0.1, 0, 0.05, 0.05, 0.05, 0.05, 0, -0.1,
    -0.05, 0, 0.05, 0.05, 0.05, 0.05, 0, -0.05,
    0, 0, 0.05, 0.05, 0.05, 0.05, 0, -0.05,
    -0.1, 0.05, 0.05, 0.05, 0.05, 0.05, 0, -0.1,
    -0.1, 0, 0.05, 0, 0, 0, 0, -0.1,
    -0.2, -0.1, -0.1, -0.05, -0.05, -0.1, -0.1, -0.2,
]

PST_KING_MG = [
    -0.3, -0.4, -0.4, -0.5, -0.5, -0.4, -0.4, -0.3,
    -0.3, -0.4, -0.4, -0.5, -0.5, -0.4, -0.4, -0.3,
    -0.3, -0.4, -0.4, -0.5, -0.5, -0.4, -0.4, -0.3,
    -0.2, -0.3, -0.3, -0.4, -0.4, -0.3, -0.3, -0.2,
    -0.1, -0.2, -0.2, -0.2, -0.2, -0.2, -0.2, -0.1,
    0, 0.1, 0.1, 0, 0, 0.1, 0.1, 0,
    0.1, 0.2, 0.2, 0.1, 0.1, 0.2, 0.2, 0.1,
    0.2, 0.3, 0.2, 0, 0, 0.2, 0.3, 0.2,
]

PST_KING_EG = [
    -0.05, -0.02, 0, 0, 0, 0, -0.02, -0.05,
    -0.02, 0.05, 0.1, 0.1, 0.1, 0.1, 0.05, -0.02,
    0, 0.1, 0.15, 0.2, 0.2, 0.15, 0.1, 0,
    0, 0.1, 0.2, 0.25, 0.25, 0.2, 0.1, 0,
    0, 0.1, 0.2, 0.25, 0.25, 0.2, 0.1, 0,
    0, 0.1, 0.15, 0.2, 0.2, 0.15, 0.1, 0,
    -0.02, 0, 0.05, 0.1, 0.1, 0.05, 0, -0.02,
    -0.05, -0.02, 0, 0, 0, 0, -0.02, -0.05,
]

DEFAULT_ENGINE_COMMANDS = ["stockfish", "/usr/games/stockfish", "/usr/local/bin/stockfish"]


@dataclass
class SearchConfig:
    time_budget_ms: int = 1700
    min_time_budget_ms: int = 250
    min_depth: Optional[int] = None  # forced bounds; None means "from position complexity"
    max_depth: Optional[int] = None
    depth_floor: int = 3
    depth_ceiling: int = 7
    max_nodes: Optional[int] = None
    disabled: bool = False  # external-only mode
    use_quiescence: bool = True
    q_max_depth: int = 6
    branch_cap_shallow: int = 18
    branch_cap_deep: int = 14
    root_cap_shallow: int = 24
    root_cap_deep: int = 20
    use_lmr: bool = True
    lmr_move_threshold: int = 6
    lmr_min_depth: int = 3
    use_check_extension: bool = True
    root_check_bonus: float = 0.2
    root_priority_weight: float = 0.04
    report_lines: int = 10
    tt_size_mb: int = 32


@dataclass
class EvalConfig:
    piece_values: Dict[str, float] = field(default_factory=lambda: PIECE_VALUES.copy())
    pst: Dict[str, List[float]] = field(default_factory=lambda: {
        "PAWN": list(PST_PAWN), "KNIGHT": list(PST_KNIGHT), "BISHOP": list(PST_BISHOP),
        "ROOK": list(PST_ROOK), "QUEEN": list(PST_QUEEN),
    })
    king_mg: List[float] = field(default_factory=lambda: list(PST_KING_MG))
    king_eg: List[float] = field(default_factory=lambda: list(PST_KING_EG))
    phase_weights: Dict[str, int] = field(default_factory=lambda: {
        "KNIGHT": 1, "BISHOP": 1, "ROOK": 2, "QUEEN": 4
    })
    max_phase: int = 24
    core_center_bonus: float = 0.08
    extended_center_bonus: float = 0.05
    bishop_pair_bonus: float = 0.35
    rook_open_bonus: float = 0.18
    rook_fully_open_factor: float = 1.6
    rook_center_bonus: float = 0.05
    doubled_pawn_penalty: float = 0.12
    isolated_pawn_penalty: float = 0.1
    passed_pawn_bonus: float = 0.2
    passed_pawn_step: float = 0.025
    king_shield_bonus: float = 0.07
    king_exposure_penalty: float = 0.05
    opening_plies: int = 20
    early_plies: int = 30
    undeveloped_minor_base: float = 0.11
    undeveloped_minor_decay: float = 0.004
    undeveloped_minor_horizon: int = 18
    flank_repeat_penalty: float = 0.24
    uncastled_base_penalty: float = 0.2
    uncastled_grace_plies: int = 12
    uncastled_step_penalty: float = 0.016
    castled_bonus: float = 0.05
    mobility_scale: float = 0.016
    tempo_bonus: float = 0.015


@dataclass
class OrderingConfig:
    previous_rank_base: float = 60.0
    killer_bonus: float = 8.0
    history_scale: float = 0.01
    history_cap: float = 6.0
    capture_base: float = 4.0
    capture_weights: Dict[str, float] = field(default_factory=lambda: {
        "PAWN": 1, "KNIGHT": 2, "BISHOP": 2, "ROOK": 3, "QUEEN": 4, "KING": 6
    })
    capture_flag_bonus: float = 1.5
    check_bonus: float = 2.5
    mate_bonus: float = 5.0
    promotion_bonus: float = 6.0
    castle_bonus: float = 3.0
    castle_san_bonus: float = 3.5
    opening_plies: int = 16
    very_early_plies: int = 8
    minor_development_bonus: float = 1.4
    minor_late_bonus: float = 0.4
    minor_core_bonus: float = 0.6
    minor_extended_bonus: float = 0.4
    pawn_core_bonus: float = 0.6
    pawn_extended_bonus: float = 0.3
    flank_pawn_opening_penalty: float = 0.9
    flank_pawn_late_penalty: float = 0.2
    flank_pawn_very_early_penalty: float = 0.6
    piece_core_bonus: float = 0.4
    piece_extended_bonus: float = 0.25
    hanging_scale: float = 1.0
    king_exposure_penalty: float = 0.5
    safety_check_bonus: float = 1.0


@dataclass
class ExternalEngineConfig:
    enabled: bool = True
    commands: List[str] = field(default_factory=lambda: list(DEFAULT_ENGINE_COMMANDS))
    retry_failed: bool = False
    failure_ttl_s: int = 7 * 24 * 3600
    threads: int = 1
    hash_mb: int = 32
    multipv: int = 5
    handshake_timeout_s: float = 10.0
    ready_timeout_s: float = 10.0
    bestmove_timeout_s: float = 15.0
    base_depth: int = 12
    max_depth: int = 18
    plies_per_depth: int = 6


@dataclass
class UIConfig:
    engine_name: str = "ChessAdvisor"
    api_port: int = 8000


@dataclass
class Config:
    search: SearchConfig = field(default_factory=SearchConfig)
    eval: EvalConfig = field(default_factory=EvalConfig)
    ordering: OrderingConfig = field(default_factory=OrderingConfig)
    external: ExternalEngineConfig = field(default_factory=ExternalEngineConfig)
    ui: UIConfig = field(default_factory=UIConfig)
    log_level: str = "INFO"

    @staticmethod
    def load_from_toml(path: str = "config.toml") -> "Config":
        cfg = Config()
        if not os.path.exists(path):
            return cfg
        with open(path, "rb") as f:
            raw = tomllib.load(f)
        for section in ("search", "eval", "ordering", "external", "ui"):
            target = getattr(cfg, section)
            for k, v in raw.get(section, {}).items():
                if hasattr(target, k):
                    setattr(target, k, v)
        if "log_level" in raw:
            cfg.log_level = raw["log_level"]
        return cfg


# single globally importable config instance
CONFIG = Config.load_from_toml(os.environ.get("ADVISOR_CONFIG_TOML", "config.toml"))
# env overrides for quick debugging
if os.environ.get("ADVISOR_TIME_BUDGET_MS"):
    CONFIG.search.time_budget_ms = int(os.environ["ADVISOR_TIME_BUDGET_MS"])
if os.environ.get("ADVISOR_MAX_DEPTH"):
    CONFIG.search.max_depth = int(os.environ["ADVISOR_MAX_DEPTH"])
if os.environ.get("ADVISOR_ENGINE_PATH"):
    CONFIG.external.commands = [os.environ["ADVISOR_ENGINE_PATH"]]
