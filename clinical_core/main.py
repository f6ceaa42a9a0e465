"""FastAPI application exposing the session boundary API."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from clinical_core import __version__
from clinical_core.config import settings
from clinical_core.dependencies import get_engine, get_orchestrator
from clinical_core.engine.decision_engine import DecisionEngine
from clinical_core.models import (
    HealthResponse,
    SessionSnapshot,
    StatsResponse,
    TurnRequest,
    TurnResult,
)
from clinical_core.orchestrator import ConversationOrchestrator, build_orchestrator

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

DISCONNECT_POLL_SECONDS = 0.5


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown.

    Fail-fast approach: Let exceptions propagate with clear messages.
    If any component fails to initialize, app won't start.
    """
    logger.info("🚀 Starting clinical orchestration service...")

    # ========================================================================
    # STARTUP
    # ========================================================================
    orchestrator, store = build_orchestrator(settings)
    await store.start()
    app.state.session_store = store
    app.state.orchestrator = orchestrator
    logger.info("✅ Session store, circuit breakers and decision engine initialized")

    logger.info("🎉 Application startup complete!")
    logger.info(f"   Providers: {settings.default_provider} -> {', '.join(settings.fallback_providers)}")
    logger.info(f"   Ready threshold: {settings.ready_threshold}%  Max iterations: {settings.max_iterations}")

    # ========================================================================
    # YIELD TO APP
    # ========================================================================
    yield

    # ========================================================================
    # SHUTDOWN
    # ========================================================================
    logger.info("👋 Shutting down application...")
    await store.shutdown()
    logger.info("✅ Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Clinical Orchestration API",
    description="Multi-turn clinical extraction and decision orchestration",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def _watch_disconnect(request: Request, cancel_event: asyncio.Event) -> None:
    """Fire the cancel signal when the client goes away."""
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected, cancelling turn")
            cancel_event.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@app.get("/health", response_model=HealthResponse)
async def health_check(engine: DecisionEngine = Depends(get_engine)):
    """Provider availability and circuit breaker state."""
    providers = await engine.system_health()
    status = "healthy" if any(p["healthy"] for p in providers.values()) else "degraded"
    return HealthResponse(
        status=status,
        version=__version__,
        providers=providers,
        circuits=engine.breakers.snapshot(),
    )


@app.post("/sessions/{session_id}/turns", response_model=TurnResult)
async def submit_turn(
    session_id: str,
    turn: TurnRequest,
    request: Request,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    """Submit one clinician message to a session (created on first use).

    Raises:
        HTTPException 500: Internal server error
    """
    cancel_event = asyncio.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel_event))
    try:
        return await orchestrator.submit_turn(
            session_id, turn.text, confirm=turn.confirm, cancel_event=cancel_event
        )
    except Exception as e:
        logger.error(f"❌ Error processing turn for {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error processing request: {str(e)}")
    finally:
        watcher.cancel()


@app.get("/sessions/{session_id}", response_model=SessionSnapshot)
async def get_session(
    session_id: str,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    snapshot = await orchestrator.get_session(session_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found or expired")
    return snapshot


@app.delete("/sessions/{session_id}")
async def delete_session(
    session_id: str,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    deleted = await orchestrator.delete_session(session_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return {"deleted": True, "session_id": session_id}


@app.get("/stats", response_model=StatsResponse)
async def get_stats(orchestrator: ConversationOrchestrator = Depends(get_orchestrator)):
    return StatsResponse(**await orchestrator.get_stats())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level=settings.log_level.lower(),
    )
