"""Command-line move advisor: print the recommended move for a position."""

import argparse
import copy
import json
import logging
import sys

from advisor.analyzer import AnalysisOrchestrator
from advisor.config import CONFIG
from advisor.core.position import Position
from advisor.errors import InvalidPosition


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chess-advisor", description=__doc__)
    parser.add_argument("--fen", help="starting position (default: standard start)")
    parser.add_argument("--moves", nargs="*", default=[], help="moves played from the start position, UCI or SAN")
    parser.add_argument("--time-ms", type=int, help="time budget for the built-in search")
    parser.add_argument("--depth", type=int, help="maximum depth for the built-in search")
    parser.add_argument("--engine", action="append", help="external engine command (repeatable)")
    parser.add_argument("--no-engine", action="store_true", help="skip the external engine")
    parser.add_argument("--json", action="store_true", help="print the full recommendation as JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="log search progress")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    level = logging.DEBUG if args.verbose else getattr(logging, CONFIG.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    cfg = copy.deepcopy(CONFIG)
    if args.time_ms is not None:
        cfg.search.time_budget_ms = args.time_ms
    if args.depth is not None:
        cfg.search.max_depth = args.depth
    if args.engine:
        cfg.external.commands = args.engine
    if args.no_engine:
        cfg.external.enabled = False

    try:
        position = Position.from_moves(args.moves, args.fen)
    except InvalidPosition as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    print(position)
    print("----------------------------")
    rec = AnalysisOrchestrator(cfg).recommend(position, cfg)
    if args.json:
        print(json.dumps(rec.to_dict(), indent=2))
    elif rec.best is None:
        print("No legal moves.")
    else:
        print(f"Best move ({rec.source}, depth {rec.depth}): {rec.best.describe()}")
        for line in rec.lines[1:]:
            print(f"  {line.rank}. {line.describe()}  {' '.join(line.pv_san)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
