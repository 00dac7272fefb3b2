"""FastAPI REST interface for the advisor."""

import asyncio
import copy
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from advisor.analyzer import AnalysisOrchestrator
from advisor.config import CONFIG
from advisor.core.position import Position
from advisor.errors import InvalidPosition

# Shared orchestrator (keeps one external session and the failure cache across requests).
orchestrator = AnalysisOrchestrator(CONFIG)
_analysis_lock = asyncio.Lock()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    yield
    await orchestrator.aclose()


app = FastAPI(title=CONFIG.ui.engine_name, version="1.0.0", lifespan=lifespan)


class RecommendRequest(BaseModel):
    fen: Optional[str] = None
    moves: List[str] = []
    time_budget_ms: Optional[int] = None
    max_depth: Optional[int] = None
    use_external: Optional[bool] = None


@app.get("/health")
def health():
    return {
        "status": "ok",
        "engine": CONFIG.ui.engine_name,
        "known_bad_engines": [rec.command for rec in orchestrator.known_bad.entries()],
    }


@app.post("/recommend")
async def recommend(req: RecommendRequest):
    try:
        position = Position.from_moves(req.moves, req.fen)
    except InvalidPosition as e:
        raise HTTPException(status_code=400, detail=str(e))

    cfg = copy.deepcopy(orchestrator.config)
    if req.time_budget_ms is not None:
        cfg.search.time_budget_ms = req.time_budget_ms
    if req.max_depth is not None:
        cfg.search.max_depth = req.max_depth
    if req.use_external is not None:
        cfg.external.enabled = req.use_external

    async with _analysis_lock:
        rec = await orchestrator.recommend_async(position, cfg)
    data = rec.to_dict()
    data["fen"] = position.fen
    return data
