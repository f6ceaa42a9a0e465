"""FastAPI dependency injection for application components.

Usage:
    from fastapi import Depends
    from clinical_core.dependencies import get_orchestrator

    @app.post("/endpoint")
    async def endpoint(orchestrator = Depends(get_orchestrator)):
        ...
"""

from fastapi import Request

from clinical_core.engine.decision_engine import DecisionEngine
from clinical_core.orchestrator import ConversationOrchestrator


def get_orchestrator(request: Request) -> ConversationOrchestrator:
    """Get the conversation orchestrator from application state.

    Raises:
        RuntimeError: If orchestrator not initialized (app startup failed)
    """
    if not hasattr(request.app.state, "orchestrator") or request.app.state.orchestrator is None:
        raise RuntimeError(
            "Orchestrator not initialized. Application startup may have failed."
        )
    return request.app.state.orchestrator


def get_engine(request: Request) -> DecisionEngine:
    """Get the decision engine from application state."""
    return get_orchestrator(request).engine
