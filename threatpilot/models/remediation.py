"""Pydantic v2 models for remediation requests and results."""

from __future__ import annotations

import ipaddress
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class CanonicalAction(str, Enum):
    BLOCK = "block"
    UNBLOCK = "unblock"
    LIST_BLOCKED = "list_blocked"
    RESTART = "restart"
    SCALE = "scale"
    ROLLBACK = "rollback"
    DRAIN = "drain"
    NOTIFY = "notify"


class TicketPriority(str, Enum):
    """Jira priority names."""

    HIGHEST = "Highest"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class ResultStatus(str, Enum):
    SUCCESS = "success"
    PENDING_APPROVAL = "pending_approval"
    SKIPPED = "skipped"
    NOT_FOUND = "not_found"
    ERROR = "error"


class RemediationTarget(BaseModel):
    """What an action applies to: an address for blocks, a service otherwise."""

    model_config = ConfigDict(frozen=True)

    ip: Optional[str] = None
    service: Optional[str] = None
    replicas: Optional[int] = Field(default=None, ge=0)

    @field_validator("ip")
    @classmethod
    def _valid_ip(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        # Normalized text form so the ledger keys one address one way
        return str(ipaddress.ip_address(value))

    @field_validator("service")
    @classmethod
    def _strip_service(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class RemediationRequest(BaseModel):
    """Inbound remediation request, the JSON body of ``POST /``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    raw_action: Optional[str] = Field(default=None, alias="action")
    severity: Severity = Severity.MEDIUM
    target: RemediationTarget = Field(default_factory=RemediationTarget)
    issue: Optional[str] = None
    description: Optional[str] = None
    explicit_block: Optional[bool] = Field(default=None, alias="block")

    @field_validator("severity", mode="before")
    @classmethod
    def _default_severity(cls, value: Any) -> Any:
        if value is None:
            return Severity.MEDIUM
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("target", mode="before")
    @classmethod
    def _null_target(cls, value: Any) -> Any:
        return {} if value is None else value


class RemediationResult(BaseModel):
    """Outbound result. ``None`` fields are dropped from the JSON response."""

    status: ResultStatus
    action: str
    ip: Optional[str] = None
    service: Optional[str] = None
    replicas: Optional[int] = None
    severity: Optional[Severity] = None

    # Block ledger metadata
    rule_id: Optional[str] = None
    unblock_at: Optional[str] = None  # ISO-8601 timestamp
    duration_seconds: Optional[float] = None
    permanent: Optional[bool] = None
    ips: Optional[List[str]] = None

    # Approval gate metadata
    jira_ticket: Optional[str] = None

    message: Optional[str] = None

    def to_response(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)
