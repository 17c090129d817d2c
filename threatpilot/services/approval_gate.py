"""Approval gate — service-impacting actions become Jira tickets, never executions."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Protocol

from threatpilot.models.remediation import CanonicalAction, RemediationTarget, Severity, TicketPriority
from threatpilot.transformers.action_normalizer import APPROVAL_REQUIRED
from threatpilot.transformers.adf import to_adf
from threatpilot.transformers.severity_policy import ticket_priority
from threatpilot.utils.logger import get_logger

logger = get_logger(__name__)

_VERBS: Dict[CanonicalAction, str] = {
    CanonicalAction.RESTART: "Restart",
    CanonicalAction.SCALE: "Scale",
    CanonicalAction.ROLLBACK: "Rollback",
    CanonicalAction.DRAIN: "Drain",
}


class TicketingBackend(Protocol):
    async def create_ticket(
        self,
        summary: str,
        description: Dict[str, Any],
        priority: TicketPriority = ...,
        issue_type: str = ...,
        labels: Iterable[str] = ...,
    ) -> str: ...


def build_ticket_text(
    action: CanonicalAction,
    target: RemediationTarget,
    severity: Severity,
    issue: Optional[str],
    description: Optional[str],
) -> str:
    """Plain-text ticket body; converted to ADF before it is sent."""
    lines: List[str] = [
        f"ACTION: {_VERBS[action].upper()} SERVICE",
        f"Service: {target.service}",
    ]
    if action is CanonicalAction.SCALE:
        lines.append(f"Target replicas: {target.replicas if target.replicas is not None else 'N/A'}")
    lines.append(f"Severity: {Severity(severity).value}")
    lines.append(f"Issue: {issue or 'unknown'}")
    if description:
        lines.append("")
        lines.append(description)
    lines.append("")
    lines.append("Requested automatically by ThreatPilot. Approve and execute manually.")
    return "\n".join(lines)


class ApprovalGate:
    """Opens an approval ticket for restart / scale / rollback / drain.

    The gate performs no remediation. Ticketing failures propagate unchanged
    so an approval-required action can never look successful without a
    ticket behind it.
    """

    def __init__(self, ticketing: TicketingBackend, issue_type: str = "Task") -> None:
        self._ticketing = ticketing
        self._issue_type = issue_type

    @property
    def ticketing(self) -> TicketingBackend:
        return self._ticketing

    async def request_approval(
        self,
        action: CanonicalAction,
        target: RemediationTarget,
        severity: Severity,
        issue: Optional[str] = None,
        description: Optional[str] = None,
    ) -> str:
        action = CanonicalAction(action)
        if action not in APPROVAL_REQUIRED:
            raise ValueError(f"{action.value} does not go through the approval gate")

        key = await self._ticketing.create_ticket(
            summary=f"[ThreatPilot] {_VERBS[action]} Service {target.service}",
            description=to_adf(build_ticket_text(action, target, severity, issue, description)),
            priority=ticket_priority(severity),
            issue_type=self._issue_type,
            labels=["threatpilot", action.value, "manual-approval"],
        )
        logger.info(
            "approval_ticket_created",
            action=action.value,
            service=target.service,
            ticket=key,
        )
        return key
