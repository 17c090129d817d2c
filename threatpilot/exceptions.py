"""Error taxonomy for the remediation core.

ClientError         – malformed input or unknown action; nothing was attempted.
CollaboratorError   – Cloudflare, Jira or Slack call failed; not retried.

An unblock of an address that is not blocked is *not* an error: it is
reported as a ``not_found`` result.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class RemediationError(Exception):
    """Base class for errors surfaced to the caller of the orchestrator."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"status": "error", "error": self.message}


class ClientError(RemediationError):
    """Raised for a request that cannot be dispatched as given."""

    status_code = 400


class CollaboratorError(RemediationError):
    """Raised when an external collaborator call fails.

    ``detail`` carries whatever the collaborator returned (error list, response
    body or exception text) so it can be passed back to the caller verbatim.
    """

    status_code = 500

    def __init__(self, collaborator: str, detail: Optional[Any] = None) -> None:
        super().__init__(f"{collaborator} request failed")
        self.collaborator = collaborator
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["collaborator"] = self.collaborator
        payload["details"] = self.detail
        return payload
