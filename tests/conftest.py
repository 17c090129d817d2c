"""Pytest fixtures shared across the test suite."""

from __future__ import annotations

import asyncio
import itertools
from datetime import timedelta
from typing import Dict, List
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from threatpilot.exceptions import CollaboratorError
from threatpilot.main import create_app
from threatpilot.models.cloudflare import AccessRule
from threatpilot.services.approval_gate import ApprovalGate
from threatpilot.services.block_ledger import BlockLedger, BlockPolicy
from threatpilot.services.orchestrator import RemediationOrchestrator
from threatpilot.utils.config import load_settings

# One duration unit in the ledger tests; "low" expires after this long
TEST_UNIT = timedelta(milliseconds=50)


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class FakeCloudflare:
    """In-memory stand-in for the Cloudflare access rules API."""

    circuit_breaker_state = "CLOSED"

    def __init__(self) -> None:
        self.rules: Dict[str, AccessRule] = {}
        self.created: List[str] = []
        self.deleted: List[str] = []
        self.fail_create = False
        self.fail_delete = False
        self._ids = itertools.count(1)

    def seed(self, target: str, mode: str = "block") -> str:
        rule_id = f"seeded-{next(self._ids)}"
        self.rules[rule_id] = AccessRule(
            id=rule_id, mode=mode, configuration={"target": "ip", "value": target}
        )
        return rule_id

    def rules_for(self, target: str) -> List[str]:
        return [rule.id for rule in self.rules.values() if rule.target == target]

    async def create_block_rule(self, target: str, note: str = "") -> str:
        await asyncio.sleep(0)  # let concurrent callers interleave
        if self.fail_create:
            raise CollaboratorError("cloudflare", [{"code": 10000, "message": "Authentication error"}])
        rule_id = f"rule-{next(self._ids)}"
        self.rules[rule_id] = AccessRule(
            id=rule_id, mode="block", configuration={"target": "ip", "value": target}, notes=note
        )
        self.created.append(rule_id)
        return rule_id

    async def delete_block_rule(self, rule_id: str) -> None:
        await asyncio.sleep(0)
        if self.fail_delete:
            raise CollaboratorError("cloudflare", "delete failed")
        self.rules.pop(rule_id, None)
        self.deleted.append(rule_id)

    async def list_block_rules(self) -> List[AccessRule]:
        await asyncio.sleep(0)
        return list(self.rules.values())


def _make_mock_jira():
    svc = AsyncMock()
    svc.circuit_breaker_state = "CLOSED"
    svc.create_ticket.return_value = "SEC-101"
    return svc


def _make_mock_slack():
    svc = AsyncMock()
    svc.circuit_breaker_state = "CLOSED"
    svc.send.return_value = None
    return svc


def make_orchestrator(policy: BlockPolicy = BlockPolicy.ALWAYS, unit: timedelta = TEST_UNIT):
    backend = FakeCloudflare()
    jira = _make_mock_jira()
    slack = _make_mock_slack()
    ledger = BlockLedger(backend, duration_unit=unit, policy=policy)
    orchestrator = RemediationOrchestrator(ledger, ApprovalGate(jira), slack)
    return orchestrator, backend, jira, slack


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def unit() -> timedelta:
    return TEST_UNIT


@pytest.fixture()
def parts():
    """(orchestrator, backend, jira, slack) with the default ``always`` policy."""
    return make_orchestrator()


@pytest.fixture()
def gated_parts():
    return make_orchestrator(policy=BlockPolicy.GATED)


@pytest.fixture()
def backend() -> FakeCloudflare:
    return FakeCloudflare()


@pytest.fixture()
def ledger(backend) -> BlockLedger:
    return BlockLedger(backend, duration_unit=TEST_UNIT)


@pytest.fixture()
def mock_jira():
    return _make_mock_jira()


@pytest.fixture()
def mock_slack():
    return _make_mock_slack()


@pytest.fixture()
def settings():
    return load_settings(
        cloudflare_api_token="cf-test-token",
        cloudflare_zone_id="zone123",
        jira_base_url="https://example.atlassian.net",
        jira_email="secops@example.com",
        jira_api_token="jira-test-token",
        jira_project_key="SEC",
        slack_webhook_url="https://hooks.slack.com/services/T000/B000/XXXX",
        block_duration_unit_seconds=60,
        block_policy="always",
    )


@pytest.fixture()
def app_parts(settings):
    """Orchestrator wired to fakes, plus handles on each fake."""
    orchestrator, backend, jira, slack = make_orchestrator(unit=settings.block_duration_unit)
    return {"orchestrator": orchestrator, "backend": backend, "jira": jira, "slack": slack}


@pytest.fixture()
def app_client(app_parts, settings):
    """TestClient with fake collaborators injected into the app factory."""
    app = create_app(orchestrator=app_parts["orchestrator"], settings=settings)
    with TestClient(app, raise_server_exceptions=False) as client:
        yield client
