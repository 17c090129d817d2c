"""Health check endpoint."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request

from threatpilot import __version__

router = APIRouter()


@router.get("/health", summary="Health check")
async def health(request: Request) -> Dict[str, Any]:
    """Return liveness, collaborator circuit breaker states and live temp blocks."""
    settings = request.app.state.settings
    orchestrator = getattr(request.app.state, "orchestrator", None)

    collaborators: Dict[str, str] = {}
    temp_blocks = 0
    if orchestrator is not None:
        collaborators = orchestrator.collaborator_states()
        temp_blocks = sum(1 for entry in orchestrator.ledger.active_entries() if entry.timer_armed)

    return {
        "status": "ok",
        "service": settings.service_name,
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {
            name: {"circuit_breaker": state} for name, state in collaborators.items()
        },
        "temp_blocks": temp_blocks,
    }
