"""Jira Cloud ticketing service — opens approval tickets behind a circuit breaker."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

import httpx

from threatpilot.exceptions import CollaboratorError
from threatpilot.models.jira import JiraIssueCreate, JiraIssueCreated, JiraIssueFields
from threatpilot.models.remediation import TicketPriority
from threatpilot.utils.circuit_breaker import CircuitBreaker
from threatpilot.utils.config import Settings, load_settings
from threatpilot.utils.logger import get_logger

logger = get_logger(__name__)


def _error_detail(response: httpx.Response) -> Any:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    # Jira reports field problems under "errors" and general ones under "errorMessages"
    if isinstance(body, dict):
        detail = {k: body[k] for k in ("errorMessages", "errors") if body.get(k)}
        return detail or body
    return body


class JiraService:
    """Async client for the Jira Cloud REST v3 issue API (basic auth, API token)."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._settings = settings or load_settings()
        self._base_url = f"{self._settings.jira_base_url}/rest/api/3"
        self._http = http or httpx.AsyncClient(timeout=self._settings.request_timeout)
        self._circuit_breaker = CircuitBreaker(
            name="jira",
            failure_threshold=self._settings.circuit_breaker_threshold,
            recovery_timeout=self._settings.circuit_breaker_timeout,
        )

    async def create_ticket(
        self,
        summary: str,
        description: Dict[str, Any],
        priority: TicketPriority = TicketPriority.HIGH,
        issue_type: str = "Task",
        labels: Iterable[str] = (),
    ) -> str:
        """Create an issue and return its key (e.g. ``SEC-42``).

        *description* must already be an ADF document.
        """
        if not self._settings.jira_configured:
            raise CollaboratorError(
                "jira",
                "JIRA_BASE_URL, JIRA_EMAIL, JIRA_API_TOKEN and JIRA_PROJECT_KEY must be set",
            )

        payload = JiraIssueCreate(
            fields=JiraIssueFields(
                project={"key": self._settings.jira_project_key},
                summary=summary,
                description=description,
                issuetype={"name": issue_type},
                priority={"name": TicketPriority(priority).value},
                labels=list(dict.fromkeys(labels)),
            )
        )

        async def _do_create() -> str:
            resp = await self._http.post(
                f"{self._base_url}/issue",
                json=payload.model_dump(),
                auth=(self._settings.jira_email, self._settings.jira_api_token),
                headers={"Accept": "application/json"},
            )
            resp.raise_for_status()
            try:
                created = JiraIssueCreated.model_validate(resp.json())
            except ValueError as exc:
                logger.error("jira_invalid_response", status_code=resp.status_code)
                raise CollaboratorError("jira", resp.text or str(exc)) from exc
            logger.info("jira_issue_created", key=created.key, issue_type=issue_type)
            return created.key

        try:
            return await self._circuit_breaker.call(_do_create)
        except httpx.HTTPStatusError as exc:
            logger.error("jira_http_error", status_code=exc.response.status_code)
            raise CollaboratorError("jira", _error_detail(exc.response)) from exc
        except httpx.HTTPError as exc:
            logger.error("jira_transport_error", error=str(exc))
            raise CollaboratorError("jira", str(exc)) from exc

    async def close(self) -> None:
        """Release the underlying httpx client."""
        await self._http.aclose()

    @property
    def circuit_breaker_state(self) -> str:
        return self._circuit_breaker.state.value
