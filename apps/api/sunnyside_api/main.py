"""FastAPI entrypoint for the Sunnyside village server."""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from packages.sunnyside_core.llm.providers import providers_from_env

from .middleware.rate_limit import ChatFloodGuard
from .routers.debug import router as debug_router
from .routers.ws import router as ws_router
from .services.session import SessionLoop
from .settings import RuntimeSettings
from .storage.llm_logs import insert_call_log

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger("sunnyside_api")


def create_session(settings: RuntimeSettings) -> SessionLoop:
    providers = providers_from_env()
    for provider in providers:
        logger.info("[STARTUP] Provider enabled: %s", provider.describe())
    return SessionLoop(providers=providers, settings=settings, log_sink=insert_call_log)


settings = RuntimeSettings.from_env()

app = FastAPI(title="Sunnyside Village API", version="0.1.0")

_cors_origins = list(settings.cors_origins)
_cors_allow_credentials = "*" not in _cors_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=_cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(debug_router)
app.include_router(ws_router)

app.state.settings = settings
app.state.session = create_session(settings)
app.state.chat_guard = ChatFloodGuard(
    max_messages=settings.chat_max_messages,
    window_seconds=settings.chat_window_seconds,
)


@app.on_event("startup")
async def startup() -> None:
    logger.info("[STARTUP] Sunnyside API starting up at %s", datetime.now(timezone.utc).isoformat())
    session: SessionLoop = app.state.session
    if not session.pipeline.configured:
        logger.warning("[STARTUP] No generation provider configured; NPCs will use canned lines")
    if settings.autostart_loops:
        session.start()
        logger.info("[STARTUP] Session loop autostart is enabled")
    logger.info("[STARTUP] Sunnyside API startup complete")


@app.on_event("shutdown")
async def shutdown() -> None:
    await app.state.session.stop()


@app.get("/healthz")
def healthz() -> dict[str, str]:
    logger.debug("[HEALTH] Health check requested")
    return {"status": "ok"}
