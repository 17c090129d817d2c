"""Routes remediation requests to the block ledger, approval gate or notifier."""

from __future__ import annotations

import json
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

import structlog

from threatpilot.exceptions import ClientError
from threatpilot.models.remediation import (
    CanonicalAction,
    RemediationRequest,
    RemediationResult,
    ResultStatus,
)
from threatpilot.services.approval_gate import ApprovalGate
from threatpilot.services.block_ledger import BlockLedger, BlockPolicy
from threatpilot.services.cloudflare import CloudflareService
from threatpilot.services.jira import JiraService
from threatpilot.services.slack import SlackNotifier
from threatpilot.transformers.action_normalizer import APPROVAL_REQUIRED, normalize_action
from threatpilot.utils.config import Settings
from threatpilot.utils.logger import get_logger

logger = get_logger(__name__)

Handler = Callable[[RemediationRequest, CanonicalAction], Awaitable[RemediationResult]]

# Target field each action cannot run without
_REQUIRED_TARGET_FIELD: Dict[CanonicalAction, str] = {
    CanonicalAction.BLOCK: "ip",
    CanonicalAction.UNBLOCK: "ip",
    CanonicalAction.RESTART: "service",
    CanonicalAction.SCALE: "service",
    CanonicalAction.ROLLBACK: "service",
    CanonicalAction.DRAIN: "service",
}


class Notifier(Protocol):
    async def send(self, text: str) -> None: ...


def build_alert_text(request: RemediationRequest, action: CanonicalAction) -> str:
    target = request.target.model_dump(exclude_none=True)
    lines = [
        "🚨 ThreatPilot Alert",
        f"Action: {action.value}",
        f"Severity: {request.severity.value}",
        f"Target: {json.dumps(target, sort_keys=True)}",
        f"Issue: {request.issue or 'unknown'}",
    ]
    if request.description:
        lines.append(request.description)
    return "\n".join(lines)


class RemediationOrchestrator:
    """Top-level dispatcher.

    ``handle`` validates the whole request before touching any collaborator,
    so a client error never leaves a partial side effect behind.

    Raises:
        ClientError: Missing or unknown action, or a missing target field.
        CollaboratorError: The ledger, gate or notifier failed.
    """

    def __init__(
        self,
        ledger: BlockLedger,
        approval_gate: ApprovalGate,
        notifier: Notifier,
        closables: tuple = (),
    ) -> None:
        self.ledger = ledger
        self.approval_gate = approval_gate
        self.notifier = notifier
        self._closables = closables

        self._routes: Dict[CanonicalAction, Handler] = {
            CanonicalAction.BLOCK: self._block,
            CanonicalAction.UNBLOCK: self._unblock,
            CanonicalAction.LIST_BLOCKED: self._list_blocked,
            CanonicalAction.NOTIFY: self._notify,
        }
        for action in APPROVAL_REQUIRED:
            self._routes[action] = self._request_approval

    @classmethod
    def from_settings(cls, settings: Settings) -> "RemediationOrchestrator":
        """Wire the Cloudflare, Jira and Slack clients into a new orchestrator."""
        cloudflare = CloudflareService(settings)
        jira = JiraService(settings)
        slack = SlackNotifier(settings)
        ledger = BlockLedger(
            cloudflare,
            duration_unit=settings.block_duration_unit,
            policy=BlockPolicy(settings.block_policy),
        )
        gate = ApprovalGate(jira, issue_type=settings.jira_issue_type)
        return cls(ledger, gate, slack, closables=(cloudflare, jira, slack))

    async def handle(self, request: RemediationRequest) -> RemediationResult:
        if not request.raw_action:
            raise ClientError("Missing action")

        action = normalize_action(request.raw_action)
        if action is None:
            raise ClientError(f"Unsupported action: {request.raw_action}")

        required = _REQUIRED_TARGET_FIELD.get(action)
        if required and getattr(request.target, required) is None:
            raise ClientError(f"Missing target.{required}")

        with structlog.contextvars.bound_contextvars(action=action.value, issue=request.issue):
            logger.info(
                "remediation_dispatch",
                raw_action=request.raw_action,
                severity=request.severity.value,
            )
            result = await self._routes[action](request, action)
            logger.info("remediation_result", status=result.status.value)
            return result

    # ------------------------------------------------------------------
    # Ledger routes
    # ------------------------------------------------------------------

    async def _block(self, request: RemediationRequest, action: CanonicalAction) -> RemediationResult:
        ip = request.target.ip
        entry = await self.ledger.block(ip, request.severity, request.explicit_block)

        if entry is None:
            return RemediationResult(
                status=ResultStatus.SKIPPED,
                action=action.value,
                ip=ip,
                severity=request.severity,
                message="Block condition not met (block flag not set and severity is high/critical)",
            )

        if entry.permanent:
            return RemediationResult(
                status=ResultStatus.SUCCESS,
                action="block",
                ip=ip,
                severity=request.severity,
                rule_id=entry.remote_rule_id,
                permanent=True,
            )

        return RemediationResult(
            status=ResultStatus.SUCCESS,
            action="temp_block",
            ip=ip,
            severity=request.severity,
            rule_id=entry.remote_rule_id,
            unblock_at=entry.expires_at.isoformat(),
            duration_seconds=(entry.expires_at - entry.created_at).total_seconds(),
        )

    async def _unblock(self, request: RemediationRequest, action: CanonicalAction) -> RemediationResult:
        ip = request.target.ip
        if not await self.ledger.unblock(ip):
            return RemediationResult(
                status=ResultStatus.NOT_FOUND,
                action=action.value,
                ip=ip,
                message="IP was not blocked",
            )
        return RemediationResult(status=ResultStatus.SUCCESS, action=action.value, ip=ip)

    async def _list_blocked(self, request: RemediationRequest, action: CanonicalAction) -> RemediationResult:
        ips = await self.ledger.list_blocked()
        return RemediationResult(status=ResultStatus.SUCCESS, action=action.value, ips=ips)

    # ------------------------------------------------------------------
    # Approval and notification routes
    # ------------------------------------------------------------------

    async def _request_approval(
        self, request: RemediationRequest, action: CanonicalAction
    ) -> RemediationResult:
        key = await self.approval_gate.request_approval(
            action,
            request.target,
            request.severity,
            issue=request.issue,
            description=request.description,
        )
        return RemediationResult(
            status=ResultStatus.PENDING_APPROVAL,
            action=action.value,
            service=request.target.service,
            replicas=request.target.replicas if action is CanonicalAction.SCALE else None,
            severity=request.severity,
            jira_ticket=key,
        )

    async def _notify(self, request: RemediationRequest, action: CanonicalAction) -> RemediationResult:
        await self.notifier.send(build_alert_text(request, action))
        return RemediationResult(
            status=ResultStatus.SUCCESS,
            action=action.value,
            severity=request.severity,
            message="SRE notified via Slack",
        )

    # ------------------------------------------------------------------
    # Status / lifecycle
    # ------------------------------------------------------------------

    def collaborator_states(self) -> Dict[str, Any]:
        """Circuit breaker state of every collaborator client that reports one."""
        states: Dict[str, Any] = {}
        for name, client in (
            ("cloudflare", self.ledger.backend),
            ("jira", self.approval_gate.ticketing),
            ("slack", self.notifier),
        ):
            state: Optional[str] = getattr(client, "circuit_breaker_state", None)
            states[name] = state if isinstance(state, str) else "CLOSED"
        return states

    async def close(self) -> None:
        await self.ledger.close()
        for client in self._closables:
            await client.close()
