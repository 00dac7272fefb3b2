"""
Integration test suite for the chess advisor.

Tests components working together end-to-end:
- External engine adapter against a scripted engine (handshake, search, teardown)
- Orchestrator: external first, fallback to the built-in search, failure cache
- Normalized recommendations (mate display, synthesized lines, serialization)
- Advisor facade
- FastAPI REST API
- Command-line entry point
"""

import asyncio
import json
import time

import chess
import pytest

from advisor.analyzer import SOURCE_EXTERNAL, SOURCE_INTERNAL, AnalysisOrchestrator
from advisor.config import Config, ExternalEngineConfig, SearchConfig
from advisor.core.position import Position
from advisor.errors import EngineProtocolError, EngineTimeout
from advisor.external.adapter import CLOSED, READY, ExternalEngineAdapter
from advisor.external.failures import FailureRegistry
from advisor.external.transport import Transport
from advisor.main import Advisor

FOOLS_MATE_FEN = "rnbqkbnr/pppp1ppp/8/4p3/6P1/5P2/PPPPP2P/RNBQKBNR b KQkq - 0 2"
STALEMATE_FEN = "5k2/5P2/5K2/8/8/8/8/8 b - - 0 1"

START_SCRIPT = {
    "uci": ["id name Fakefish", "id author nobody", "uciok"],
    "isready": ["readyok"],
    "go": [
        "info depth 12 multipv 1 score cp 35 nodes 4000 pv e2e4 e7e5 g1f3",
        "info depth 12 multipv 2 score cp 20 nodes 4000 pv d2d4 d7d5",
        "bestmove e2e4 ponder e7e5",
    ],
}


class ScriptedTransport(Transport):
    """Answers each command with canned lines delivered on the next loop iteration."""

    def __init__(self, script=None, silent=False, name="fakefish"):
        self.script = script if script is not None else START_SCRIPT
        self.silent = silent
        self.name = name
        self.sent = []
        self.closed = False
        self.on_line = None
        self.on_eof = None

    async def start(self, on_line, on_eof):
        self.on_line = on_line
        self.on_eof = on_eof

    def reply(self, command):
        for prefix, lines in self.script.items():
            if command == prefix or command.startswith(prefix + " "):
                return lines
        return []

    def send(self, command):
        self.sent.append(command)
        if self.silent:
            return
        loop = asyncio.get_running_loop()
        for line in self.reply(command):
            loop.call_soon(self.on_line, line)

    async def close(self):
        self.closed = True


class ReadyOnlyNTimes(ScriptedTransport):
    def __init__(self, answers, **kwargs):
        super().__init__(**kwargs)
        self.answers = answers

    def reply(self, command):
        if command == "isready":
            self.answers -= 1
            return ["readyok"] if self.answers >= 0 else []
        return super().reply(command)


class ExitsOnGo(ScriptedTransport):
    def send(self, command):
        if command.startswith("go "):
            self.sent.append(command)
            asyncio.get_running_loop().call_soon(self.on_eof)
            return
        super().send(command)


def make_config(search_disabled=False, use_external=True, **external) -> Config:
    ext = ExternalEngineConfig(
        enabled=use_external, commands=["fakefish"],
        handshake_timeout_s=0.05, ready_timeout_s=0.05, bestmove_timeout_s=0.05,
    )
    for k, v in external.items():
        setattr(ext, k, v)
    return Config(search=SearchConfig(time_budget_ms=30000, max_depth=1, disabled=search_disabled), external=ext)


def factory_for(transport_cls=ScriptedTransport, created=None, **kwargs):
    def factory(command, cfg):
        transport = transport_cls(name=command, **kwargs)
        if created is not None:
            created.append(transport)
        return ExternalEngineAdapter(transport, cfg)
    return factory


# ════════════════════════════════════════════════════════════════════════════
#  EXTERNAL ADAPTER
# ════════════════════════════════════════════════════════════════════════════


class TestExternalAdapter:
    """Tests the adapter against a scripted engine."""

    def test_handshake_sets_options(self):
        transport = ScriptedTransport()
        adapter = ExternalEngineAdapter(transport, ExternalEngineConfig())

        async def run():
            await adapter.initialize()
            await adapter.close()

        asyncio.run(run())
        assert transport.sent[0] == "uci"
        assert "setoption name Threads value 1" in transport.sent
        assert "setoption name Hash value 32" in transport.sent
        assert "setoption name MultiPV value 5" in transport.sent
        assert "isready" in transport.sent
        assert transport.closed

    def test_analyze_collects_ranked_lines(self):
        transport = ScriptedTransport()
        adapter = ExternalEngineAdapter(transport, ExternalEngineConfig())

        async def run():
            async with adapter:
                result = await adapter.analyze(chess.Board())
                assert adapter.state == READY
                return result

        result = asyncio.run(run())
        assert result.source == "fakefish"
        assert result.depth == 12
        assert result.best_uci == "e2e4"
        assert result.best_san == "e4"
        assert [line.multipv for line in result.lines] == [1, 2]
        first = result.lines[0]
        assert first.san == "e4"
        assert first.score == pytest.approx(0.35)
        assert first.display_score == "0.35"
        assert first.pv_san == ["e4", "e5", "Nf3"]
        assert f"position fen {chess.STARTING_FEN}" in transport.sent
        assert "go depth 12" in transport.sent
        assert transport.sent.index("stop") > transport.sent.index("go depth 12")

    def test_depth_grows_with_game_length(self):
        transport = ScriptedTransport()
        adapter = ExternalEngineAdapter(transport, ExternalEngineConfig())
        board = chess.Board("r1bq1rk1/pppp1ppp/2n2n2/2b1p3/2B1P3/2NP1N2/PPP2PPP/R1BQ1RK1 w - - 0 10")

        async def run():
            async with adapter:
                await adapter.analyze(board)

        asyncio.run(run())
        assert "go depth 15" in transport.sent

    def test_multipv_capped_by_legal_moves(self):
        script = dict(START_SCRIPT, go=["bestmove a1b1"])
        transport = ScriptedTransport(script)
        adapter = ExternalEngineAdapter(transport, ExternalEngineConfig())

        async def run():
            async with adapter:
                return await adapter.analyze(chess.Board("7k/8/8/8/8/8/8/K7 w - - 0 1"))

        result = asyncio.run(run())
        assert "setoption name MultiPV value 3" in transport.sent
        assert result.best_uci == "a1b1"
        assert result.lines == []

    def test_wait_for_matches_predicate(self):
        transport = ScriptedTransport()
        adapter = ExternalEngineAdapter(transport, ExternalEngineConfig())

        async def run():
            await adapter.initialize()
            transport.send("go depth 1")
            line = await adapter.wait_for(lambda l: l.startswith("bestmove"), 1.0)
            await adapter.close()
            return line

        assert asyncio.run(run()) == "bestmove e2e4 ponder e7e5"

    def test_handshake_timeout_closes_session(self):
        transport = ScriptedTransport(silent=True)
        adapter = ExternalEngineAdapter(transport, ExternalEngineConfig(handshake_timeout_s=0.05))

        async def run():
            with pytest.raises(EngineTimeout):
                await adapter.initialize()

        asyncio.run(run())
        assert adapter.state == CLOSED
        assert transport.closed

    def test_unconfirmed_readiness_after_search_tears_down(self):
        transport = ReadyOnlyNTimes(4)
        adapter = ExternalEngineAdapter(transport, ExternalEngineConfig(ready_timeout_s=0.05))

        async def run():
            await adapter.initialize()
            with pytest.raises(EngineTimeout):
                await adapter.analyze(chess.Board())

        asyncio.run(run())
        assert adapter.state == CLOSED
        assert transport.closed

    @pytest.mark.parametrize("bestmove", ["bestmove xyz", "bestmove e2e5"])
    def test_unusable_bestmove_raises_protocol_error(self, bestmove):
        transport = ScriptedTransport(dict(START_SCRIPT, go=[bestmove]))
        adapter = ExternalEngineAdapter(transport, ExternalEngineConfig())

        async def run():
            async with adapter:
                with pytest.raises(EngineProtocolError):
                    await adapter.analyze(chess.Board())

        asyncio.run(run())

    def test_lines_with_unusable_first_move_dropped(self):
        script = dict(START_SCRIPT, go=[
            "info depth 3 multipv 1 score cp 10 pv e2e9",
            "info depth 3 multipv 2 score cp 5 pv d2d4 d7d5 e2e9",
            "bestmove d2d4",
        ])
        adapter = ExternalEngineAdapter(ScriptedTransport(script), ExternalEngineConfig())

        async def run():
            async with adapter:
                return await adapter.analyze(chess.Board())

        result = asyncio.run(run())
        assert [line.multipv for line in result.lines] == [2]
        assert result.lines[0].pv == ["d2d4", "d7d5"]
        assert result.lines[0].pv_san == ["d4", "d5"]
        assert result.best_san == "d4"

    def test_bestmove_wait_capped_by_deadline(self):
        transport = ScriptedTransport(dict(START_SCRIPT, go=[]))
        adapter = ExternalEngineAdapter(transport, ExternalEngineConfig(bestmove_timeout_s=30.0))

        async def run():
            async with adapter:
                return await adapter.analyze(chess.Board(), deadline=time.monotonic() + 0.05)

        start = time.monotonic()
        assert asyncio.run(run()) is None
        assert time.monotonic() - start < 5.0
        assert "stop" in transport.sent


# ════════════════════════════════════════════════════════════════════════════
#  ORCHESTRATOR
# ════════════════════════════════════════════════════════════════════════════


class TestOrchestrator:
    """External engine first, built-in search as the fallback."""

    def test_external_result_normalized(self):
        orch = AnalysisOrchestrator(make_config(), adapter_factory=factory_for())
        rec = orch.recommend(chess.Board())
        assert rec.source == SOURCE_EXTERNAL
        assert rec.engine == "fakefish"
        assert rec.engine_error is None
        assert rec.best.uci == "e2e4"
        assert rec.best.san == "e4"
        assert rec.best.from_square == "e2"
        assert rec.best.to_square == "e4"
        assert rec.best.display_score == "0.35"
        assert rec.lines[1].rank == 2
        assert rec.lines[1].san == "d4"

    def test_external_mate_display(self):
        script = dict(START_SCRIPT, go=["info depth 1 multipv 1 score mate 1 pv d8h4", "bestmove d8h4"])
        orch = AnalysisOrchestrator(make_config(), adapter_factory=factory_for(script=script))
        rec = orch.recommend(chess.Board(FOOLS_MATE_FEN))
        assert rec.best.san == "Qh4#"
        assert rec.best.mate == 1
        assert rec.best.score is None
        assert rec.best.display_score == "#1"
        assert "Qh4#" in rec.best.describe()

    def test_line_synthesized_from_bestmove(self):
        script = dict(START_SCRIPT, go=["bestmove g1f3"])
        orch = AnalysisOrchestrator(make_config(), adapter_factory=factory_for(script=script))
        rec = orch.recommend(chess.Board())
        assert rec.source == SOURCE_EXTERNAL
        assert len(rec.lines) == 1
        assert rec.best.san == "Nf3"
        assert rec.best.score is None
        assert rec.best.display_score is None

    def test_handshake_timeout_falls_back_to_internal(self):
        created = []
        orch = AnalysisOrchestrator(make_config(), adapter_factory=factory_for(created=created, silent=True))
        rec = orch.recommend(chess.Board())
        assert rec.source == SOURCE_INTERNAL
        assert rec.engine_error
        assert rec.best is not None
        assert chess.Move.from_uci(rec.best.uci) in chess.Board().legal_moves
        assert "fakefish" in orch.known_bad
        assert created[0].closed

    def test_known_bad_command_skipped(self):
        created = []
        known_bad = FailureRegistry()
        known_bad.record("fakefish", OSError("missing"))
        orch = AnalysisOrchestrator(make_config(), known_bad=known_bad, adapter_factory=factory_for(created=created))
        rec = orch.recommend(chess.Board())
        assert rec.source == SOURCE_INTERNAL
        assert "previously" in rec.engine_error
        assert created == []

        retry = AnalysisOrchestrator(make_config(retry_failed=True), known_bad=known_bad,
                                     adapter_factory=factory_for(created=created))
        rec = retry.recommend(chess.Board())
        assert rec.source == SOURCE_EXTERNAL
        assert len(created) == 1
        assert "fakefish" not in known_bad

    def test_tries_next_command(self):
        created = []

        def factory(command, cfg):
            transport = ScriptedTransport(name=command, silent=(command == "broken"))
            created.append(transport)
            return ExternalEngineAdapter(transport, cfg)

        orch = AnalysisOrchestrator(make_config(commands=["broken", "fakefish"]), adapter_factory=factory)
        rec = orch.recommend(chess.Board())
        assert rec.source == SOURCE_EXTERNAL
        assert rec.engine == "fakefish"
        assert "broken" in orch.known_bad
        assert [t.name for t in created] == ["broken", "fakefish"]

    def test_missing_bestmove_falls_back(self):
        script = dict(START_SCRIPT, go=[])
        orch = AnalysisOrchestrator(make_config(), adapter_factory=factory_for(script=script))
        rec = orch.recommend(chess.Board())
        assert rec.source == SOURCE_INTERNAL
        assert rec.engine_error == "external engine returned no result"
        assert "fakefish" not in orch.known_bad

    @pytest.mark.parametrize("bestmove", ["bestmove xyz", "bestmove e2e5"])
    def test_unusable_bestmove_falls_back(self, bestmove):
        created = []
        script = dict(START_SCRIPT, go=[bestmove])
        orch = AnalysisOrchestrator(make_config(), adapter_factory=factory_for(created=created, script=script))
        rec = orch.recommend(chess.Board())
        assert rec.source == SOURCE_INTERNAL
        assert "unusable move" in rec.engine_error
        assert chess.Move.from_uci(rec.best.uci) in chess.Board().legal_moves
        assert created[0].closed
        assert "fakefish" not in orch.known_bad

    def test_unusable_principal_variation_ignored(self):
        script = dict(START_SCRIPT, go=["info depth 3 multipv 1 score cp 10 pv e2e9", "bestmove e2e4"])
        orch = AnalysisOrchestrator(make_config(), adapter_factory=factory_for(script=script))
        rec = orch.recommend(chess.Board())
        assert rec.source == SOURCE_EXTERNAL
        assert rec.best.uci == "e2e4"
        assert rec.best.san == "e4"
        assert [line.uci for line in rec.lines] == ["e2e4"]

    def test_engine_exit_mid_search_falls_back(self):
        created = []
        orch = AnalysisOrchestrator(make_config(), adapter_factory=factory_for(ExitsOnGo, created=created))
        rec = orch.recommend(chess.Board())
        assert rec.source == SOURCE_INTERNAL
        assert rec.engine_error
        assert created[0].closed

    def test_session_reused_across_requests(self):
        created = []
        orch = AnalysisOrchestrator(make_config(), adapter_factory=factory_for(created=created))

        async def run():
            first = await orch.recommend_async(chess.Board())
            board = chess.Board()
            board.push_san("e4")
            second = await orch.recommend_async(board)
            await orch.aclose()
            return first, second

        first, second = asyncio.run(run())
        assert first.source == second.source == SOURCE_EXTERNAL
        assert len(created) == 1
        assert created[0].sent.count("uci") == 1
        assert created[0].closed

    def test_no_legal_moves_skips_both_engines(self):
        class Untouchable:
            def analyze(self, *args, **kwargs):
                raise AssertionError("search must not run")

        def factory(command, cfg):
            raise AssertionError("engine must not start")

        orch = AnalysisOrchestrator(make_config(), search_engine=Untouchable(), adapter_factory=factory)
        rec = orch.recommend(Position(STALEMATE_FEN))
        assert rec.best is None
        assert rec.lines == []
        assert rec.depth == 0

    def test_internal_finds_mate_in_one(self):
        orch = AnalysisOrchestrator(make_config(use_external=False))
        rec = orch.recommend(Position.from_moves(["f3", "e5", "g4"]))
        assert rec.source == SOURCE_INTERNAL
        assert rec.engine_error is None
        assert rec.best.uci == "d8h4"
        assert rec.best.san == "Qh4#"
        assert rec.best.mate == 1
        assert rec.best.display_score == "#1"
        assert rec.depth == 1
        assert rec.nodes > 0

    def test_internal_start_position(self):
        orch = AnalysisOrchestrator(make_config(use_external=False))
        rec = orch.recommend(chess.Board())
        board = chess.Board()
        assert 0 < len(rec.lines) <= 10
        assert [line.rank for line in rec.lines] == list(range(1, len(rec.lines) + 1))
        assert all(chess.Move.from_uci(line.uci) in board.legal_moves for line in rec.lines)
        scores = [line.score for line in rec.lines]
        assert scores == sorted(scores, reverse=True)
        assert rec.best is rec.lines[0]

    def test_external_only_mode(self):
        orch = AnalysisOrchestrator(make_config(search_disabled=True),
                                    adapter_factory=factory_for(silent=True))
        rec = orch.recommend(chess.Board())
        assert rec.best is None
        assert rec.engine_error

    def test_expired_deadline_gives_no_best_move(self):
        orch = AnalysisOrchestrator(make_config(use_external=False))
        rec = orch.recommend(chess.Board(), deadline=time.monotonic() - 1)
        assert rec.best is None
        assert rec.aborted

    def test_expired_deadline_skips_external_engine(self):
        created = []
        orch = AnalysisOrchestrator(make_config(bestmove_timeout_s=30.0),
                                    adapter_factory=factory_for(created=created))
        start = time.monotonic()
        rec = orch.recommend(chess.Board(), deadline=time.monotonic() - 1)
        assert time.monotonic() - start < 5.0
        assert created == []
        assert rec.source == SOURCE_INTERNAL
        assert rec.best is None
        assert rec.engine_error == "no time left for external analysis"

    def test_stop_request_skips_external_engine(self):
        created = []
        orch = AnalysisOrchestrator(make_config(), adapter_factory=factory_for(created=created))
        rec = orch.recommend(chess.Board(), should_stop=lambda: True)
        assert created == []
        assert rec.best is None

    def test_blocking_call_inside_running_loop(self):
        orch = AnalysisOrchestrator(make_config(), adapter_factory=factory_for())

        async def caller():
            return orch.recommend(chess.Board())

        rec = asyncio.run(caller())
        assert rec.source == SOURCE_EXTERNAL
        assert rec.best.san == "e4"

    def test_to_dict_is_json_ready(self):
        orch = AnalysisOrchestrator(make_config(), adapter_factory=factory_for())
        data = json.loads(json.dumps(orch.recommend(chess.Board()).to_dict()))
        assert data["source"] == "external"
        assert data["best"]["uci"] == "e2e4"
        assert data["best"]["display_score"] == "0.35"
        assert data["lines"][0]["pv_san"] == ["e4", "e5", "Nf3"]

    def test_board_not_mutated(self):
        board = chess.Board(FOOLS_MATE_FEN)
        AnalysisOrchestrator(make_config(use_external=False)).recommend(board)
        assert board.fen() == FOOLS_MATE_FEN


# ════════════════════════════════════════════════════════════════════════════
#  ADVISOR FACADE
# ════════════════════════════════════════════════════════════════════════════


class TestAdvisorFacade:
    def test_make_and_undo(self):
        advisor = Advisor(config=make_config(use_external=False))
        assert advisor.make_move("e2e4") == "e4"
        assert advisor.make_move("e5") == "e5"
        assert advisor.undo_move() == "e7e5"
        assert advisor.position.turn == chess.BLACK

    def test_recommend(self):
        advisor = Advisor(FOOLS_MATE_FEN, config=make_config(use_external=False))
        assert advisor.recommend().best.san == "Qh4#"


# ════════════════════════════════════════════════════════════════════════════
#  REST API INTEGRATION
# ════════════════════════════════════════════════════════════════════════════


class TestAPIIntegration:
    """Tests FastAPI REST API endpoints."""

    @pytest.fixture(autouse=True)
    def setup_client(self):
        from fastapi.testclient import TestClient
        from interface.api import app

        self.client = TestClient(app)

    def test_health(self):
        response = self.client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_recommend_from_fen(self):
        response = self.client.post("/recommend", json={
            "fen": FOOLS_MATE_FEN, "use_external": False, "max_depth": 1,
        })
        assert response.status_code == 200
        data = response.json()
        assert data["source"] == "internal"
        assert data["best"]["san"] == "Qh4#"
        assert data["best"]["display_score"] == "#1"
        assert data["fen"] == FOOLS_MATE_FEN

    def test_recommend_from_moves(self):
        response = self.client.post("/recommend", json={
            "moves": ["f2f3", "e7e5", "g2g4"], "use_external": False, "max_depth": 1,
        })
        assert response.status_code == 200
        assert response.json()["best"]["uci"] == "d8h4"

    def test_recommend_no_legal_moves(self):
        response = self.client.post("/recommend", json={"fen": STALEMATE_FEN, "use_external": False})
        assert response.status_code == 200
        data = response.json()
        assert data["best"] is None
        assert data["lines"] == []

    def test_invalid_fen(self):
        response = self.client.post("/recommend", json={"fen": "invalid", "use_external": False})
        assert response.status_code == 400

    def test_illegal_move(self):
        response = self.client.post("/recommend", json={"moves": ["e2e5"], "use_external": False})
        assert response.status_code == 400


# ════════════════════════════════════════════════════════════════════════════
#  COMMAND LINE
# ════════════════════════════════════════════════════════════════════════════


class TestCLI:
    def test_prints_recommendation(self, capsys):
        from interface.cli import main

        assert main(["--no-engine", "--depth", "1", "--moves", "f3", "e5", "g4"]) == 0
        out = capsys.readouterr().out
        assert "Best move (internal, depth 1)" in out
        assert "Qh4#" in out

    def test_json_output(self, capsys):
        from interface.cli import main

        assert main(["--no-engine", "--depth", "1", "--json", "--fen", FOOLS_MATE_FEN]) == 0
        out = capsys.readouterr().out
        data = json.loads(out[out.index("{"):])
        assert data["best"]["uci"] == "d8h4"

    def test_bad_fen(self, capsys):
        from interface.cli import main

        assert main(["--no-engine", "--fen", "not a fen"]) == 2
        assert "error" in capsys.readouterr().err
