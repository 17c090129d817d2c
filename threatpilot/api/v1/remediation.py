"""Remediation endpoint: the single dispatch entry point."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from threatpilot.models.remediation import RemediationRequest
from threatpilot.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post("/", summary="Dispatch a remediation action")
async def remediate(payload: RemediationRequest, request: Request) -> Dict[str, Any]:
    """Normalize ``action`` and route it.

    Network blocks run immediately; restart / scale / rollback / drain only
    open a Jira approval ticket and answer ``pending_approval``. Client
    errors answer 400, collaborator failures 500 (see the app's exception
    handlers).
    """
    orchestrator = request.app.state.orchestrator
    logger.info(
        "remediation_request_received",
        action=payload.raw_action,
        severity=payload.severity.value,
        issue=payload.issue,
    )
    result = await orchestrator.handle(payload)
    return result.to_response()
