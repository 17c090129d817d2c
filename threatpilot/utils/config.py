"""
Configuration management for the ThreatPilot Remediation API.

Loads settings from environment variables or a .env file.
Credentials are treated as secrets and never logged.
"""

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import List

from dotenv import load_dotenv

# Load .env from the working directory if present; no-op otherwise
load_dotenv()

BLOCK_POLICIES = ("always", "gated")


@dataclass(frozen=True)
class Settings:
    """Immutable runtime configuration."""

    service_name: str = "ThreatPilot Remediation API"
    port: int = 8080
    log_level: str = "INFO"

    # Enforcement backend (Cloudflare zone access rules)
    cloudflare_api_token: str = ""
    cloudflare_zone_id: str = ""
    cloudflare_api_base: str = "https://api.cloudflare.com/client/v4"

    # Ticketing (Jira Cloud)
    jira_base_url: str = ""
    jira_email: str = ""
    jira_api_token: str = ""
    jira_project_key: str = ""
    jira_issue_type: str = "Task"

    # Notification (Slack incoming webhook)
    slack_webhook_url: str = ""

    # Block ledger
    block_duration_unit_seconds: float = 60.0
    block_policy: str = "always"

    # HTTP client settings
    request_timeout: float = 30.0
    circuit_breaker_threshold: int = 5
    circuit_breaker_timeout: float = 60.0

    @property
    def block_duration_unit(self) -> timedelta:
        return timedelta(seconds=self.block_duration_unit_seconds)

    @property
    def cloudflare_configured(self) -> bool:
        return bool(self.cloudflare_api_token and self.cloudflare_zone_id)

    @property
    def jira_configured(self) -> bool:
        return bool(
            self.jira_base_url
            and self.jira_email
            and self.jira_api_token
            and self.jira_project_key
        )

    def missing_credentials(self) -> List[str]:
        """Names of the collaborators whose credentials are not set."""
        missing = []
        if not self.cloudflare_configured:
            missing.append("cloudflare")
        if not self.jira_configured:
            missing.append("jira")
        if not self.slack_webhook_url:
            missing.append("slack")
        return missing


def _pick(overrides: dict, key: str, env: str, default):
    value = overrides.get(key)
    if value is None:
        value = os.getenv(env, default)
    return value


def load_settings(**overrides) -> Settings:
    """
    Build a Settings instance from environment variables.

    Any keyword argument passed in overrides the corresponding env var
    (used by the CLI runner and by tests).

    Raises:
        ValueError: If a numeric setting is not a positive number or the
            block policy is not one of ``always`` / ``gated``.
    """
    block_policy = str(_pick(overrides, "block_policy", "BLOCK_POLICY", "always")).lower()
    if block_policy not in BLOCK_POLICIES:
        raise ValueError(
            f"BLOCK_POLICY must be one of {', '.join(BLOCK_POLICIES)}, got {block_policy!r}"
        )

    unit = float(
        _pick(overrides, "block_duration_unit_seconds", "BLOCK_DURATION_UNIT_SECONDS", 60)
    )
    if unit <= 0:
        raise ValueError("BLOCK_DURATION_UNIT_SECONDS must be greater than zero")

    threshold = int(_pick(overrides, "circuit_breaker_threshold", "CIRCUIT_BREAKER_THRESHOLD", 5))
    if threshold < 1:
        raise ValueError("CIRCUIT_BREAKER_THRESHOLD must be at least 1")

    return Settings(
        port=int(_pick(overrides, "port", "PORT", 8080)),
        log_level=str(_pick(overrides, "log_level", "LOG_LEVEL", "INFO")),
        cloudflare_api_token=_pick(overrides, "cloudflare_api_token", "CLOUDFLARE_API_TOKEN", ""),
        cloudflare_zone_id=_pick(overrides, "cloudflare_zone_id", "CLOUDFLARE_ZONE_ID", ""),
        cloudflare_api_base=str(
            _pick(overrides, "cloudflare_api_base", "CLOUDFLARE_API_BASE", "https://api.cloudflare.com/client/v4")
        ).rstrip("/"),
        jira_base_url=str(_pick(overrides, "jira_base_url", "JIRA_BASE_URL", "")).rstrip("/"),
        jira_email=_pick(overrides, "jira_email", "JIRA_EMAIL", ""),
        jira_api_token=_pick(overrides, "jira_api_token", "JIRA_API_TOKEN", ""),
        jira_project_key=_pick(overrides, "jira_project_key", "JIRA_PROJECT_KEY", ""),
        jira_issue_type=_pick(overrides, "jira_issue_type", "JIRA_ISSUE_TYPE", "Task"),
        slack_webhook_url=_pick(overrides, "slack_webhook_url", "SLACK_WEBHOOK_URL", ""),
        block_duration_unit_seconds=unit,
        block_policy=block_policy,
        request_timeout=float(_pick(overrides, "request_timeout", "REQUEST_TIMEOUT", 30)),
        circuit_breaker_threshold=threshold,
        circuit_breaker_timeout=float(
            _pick(overrides, "circuit_breaker_timeout", "CIRCUIT_BREAKER_TIMEOUT", 60)
        ),
    )
