"""Introspection and control endpoints for the running session."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from packages.sunnyside_core.cognition.personalities import build_agent_system_prompt
from packages.sunnyside_core.llm.policy import DEFAULT_GENERATION_POLICIES
from packages.sunnyside_core.llm.providers import NoProviderConfiguredError

from ..services.session import SessionLoop
from ..storage.llm_logs import list_call_logs


router = APIRouter(prefix="/api", tags=["debug"])


def _session(request: Request) -> SessionLoop:
    return request.app.state.session


def _require_npc(session: SessionLoop, npc: str) -> str:
    if npc not in session.catalog:
        raise HTTPException(status_code=404, detail=f"Unknown NPC: {npc}")
    return npc


@router.get("/status")
def status(request: Request) -> dict:
    return _session(request).status()


@router.get("/debug")
def debug(request: Request) -> dict:
    return _session(request).debug_state()


@router.get("/npc-memory")
def npc_memory(request: Request) -> dict:
    return _session(request).npc_memory()


@router.get("/npc-recall")
def npc_recall(
    request: Request,
    npc: str = Query(min_length=1),
    q: str = Query(default="", max_length=200),
    limit: int = Query(default=5, ge=1, le=20),
) -> dict:
    session = _session(request)
    _require_npc(session, npc)
    result = session.memory.try_recall(npc, q, max_results=limit)
    return {"npc": npc, "query": q, **result.as_dict()}


@router.get("/npc-persona")
def npc_persona(request: Request, npc: str = Query(min_length=1)) -> dict:
    session = _session(request)
    personality = session.catalog.get(_require_npc(session, npc))
    return {
        "npc": npc,
        "summary": personality.summary(),
        "system_prompt": build_agent_system_prompt(personality, session.catalog.names),
    }


@router.get("/player-memory")
def player_memory(request: Request) -> dict:
    return _session(request).player_memory_report()


@router.get("/npc-life")
def npc_life(request: Request) -> dict:
    return _session(request).npc_life()


@router.get("/test-fallback")
def test_fallback(request: Request, npc: Optional[str] = Query(default=None)) -> dict:
    session = _session(request)
    addressed = [_require_npc(session, npc)] if npc else []
    activities = session.world.activities()
    fallback = session.pipeline.contextual_fallback(activities, addressed)
    return {"activities": activities, "addressed": addressed or None, "fallback": fallback}


@router.get("/test-npc")
async def test_npc(request: Request, msg: str = Query(default="Hola a todos", max_length=300)):
    session = _session(request)
    system_prompt, user_message = session.diagnostic_prompt(msg)
    try:
        return await session.pipeline.diagnose(system_prompt=system_prompt, user_message=user_message)
    except NoProviderConfiguredError:
        return JSONResponse(status_code=500, content={"error": "No API keys configured"})


@router.post("/runtime/start")
async def runtime_start(request: Request) -> dict:
    session = _session(request)
    started = session.start()
    return {"ok": True, "started": started, "status": session.status()}


@router.post("/runtime/stop")
async def runtime_stop(request: Request) -> dict:
    session = _session(request)
    stopped = await session.stop()
    return {"ok": True, "stopped": stopped, "status": session.status()}


@router.get("/llm/policies")
def llm_policies() -> dict:
    policies = [policy.as_dict() for policy in DEFAULT_GENERATION_POLICIES.values()]
    return {"count": len(policies), "policies": policies}


@router.get("/llm/logs")
def llm_logs(
    limit: int = Query(default=50, ge=1, le=200),
    task_name: Optional[str] = Query(default=None),
) -> dict:
    rows = list_call_logs(limit=limit, task_name=task_name)
    return {"count": len(rows), "logs": rows}
