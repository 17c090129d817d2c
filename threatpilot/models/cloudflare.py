"""Pydantic v2 models for Cloudflare IP access rule payloads."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class AccessRuleConfiguration(BaseModel):
    target: str  # "ip", "ip6", "ip_range", "asn" or "country"
    value: str


class AccessRuleCreate(BaseModel):
    """Payload for POST /zones/{zone}/firewall/access_rules/rules."""

    mode: str = "block"
    configuration: AccessRuleConfiguration
    notes: str = ""


class AccessRule(BaseModel):
    """One rule as returned by the access rules listing."""

    id: str
    mode: str
    configuration: AccessRuleConfiguration
    notes: Optional[str] = None
    created_on: Optional[str] = None

    @property
    def target(self) -> str:
        return self.configuration.value


class CloudflareEnvelope(BaseModel):
    """Outer envelope shared by every Cloudflare v4 response."""

    success: bool = False
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    messages: List[Any] = Field(default_factory=list)
    result: Any = None
    result_info: Optional[Dict[str, Any]] = None
