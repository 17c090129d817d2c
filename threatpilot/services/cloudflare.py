"""Cloudflare enforcement backend — zone IP access rules behind a circuit breaker."""

from __future__ import annotations

import ipaddress
from typing import Any, Dict, List, Optional

import httpx

from threatpilot.exceptions import CollaboratorError
from threatpilot.models.cloudflare import (
    AccessRule,
    AccessRuleConfiguration,
    AccessRuleCreate,
    CloudflareEnvelope,
)
from threatpilot.utils.circuit_breaker import CircuitBreaker
from threatpilot.utils.config import Settings, load_settings
from threatpilot.utils.logger import get_logger

logger = get_logger(__name__)

_RULES_PATH = "/firewall/access_rules/rules"
_PAGE_SIZE = 1000  # Cloudflare's maximum for this listing


def _error_detail(response: httpx.Response) -> Any:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("errors"):
        return body["errors"]
    return body


def _configuration_for(target: str) -> AccessRuleConfiguration:
    kind = "ip6" if ipaddress.ip_address(target).version == 6 else "ip"
    return AccessRuleConfiguration(target=kind, value=target)


class CloudflareService:
    """Async client for the Cloudflare v4 zone access rules API.

    This is the enforcement backend of the block ledger: it installs,
    removes and lists ``block`` mode rules for single IP addresses.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._settings = settings or load_settings()
        self._base_url = (
            f"{self._settings.cloudflare_api_base}/zones/{self._settings.cloudflare_zone_id}"
        )
        self._http = http or httpx.AsyncClient(timeout=self._settings.request_timeout)
        self._circuit_breaker = CircuitBreaker(
            name="cloudflare",
            failure_threshold=self._settings.circuit_breaker_threshold,
            recovery_timeout=self._settings.circuit_breaker_timeout,
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._settings.cloudflare_api_token}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs: Any) -> CloudflareEnvelope:
        if not self._settings.cloudflare_configured:
            raise CollaboratorError(
                "cloudflare", "CLOUDFLARE_API_TOKEN and CLOUDFLARE_ZONE_ID must be set"
            )

        async def _do_request() -> CloudflareEnvelope:
            resp = await self._http.request(
                method, f"{self._base_url}{path}", headers=self._headers(), **kwargs
            )
            resp.raise_for_status()
            try:
                envelope = CloudflareEnvelope.model_validate(resp.json())
            except ValueError as exc:
                # JSONDecodeError and pydantic's ValidationError are both ValueErrors
                logger.error("cloudflare_invalid_response", method=method, path=path)
                raise CollaboratorError("cloudflare", resp.text or str(exc)) from exc
            if not envelope.success:
                raise CollaboratorError("cloudflare", envelope.errors or "success=false")
            return envelope

        try:
            return await self._circuit_breaker.call(_do_request)
        except httpx.HTTPStatusError as exc:
            logger.error(
                "cloudflare_http_error",
                method=method,
                path=path,
                status_code=exc.response.status_code,
            )
            raise CollaboratorError("cloudflare", _error_detail(exc.response)) from exc
        except httpx.HTTPError as exc:
            logger.error("cloudflare_transport_error", method=method, path=path, error=str(exc))
            raise CollaboratorError("cloudflare", str(exc)) from exc

    # ------------------------------------------------------------------
    # Access rules
    # ------------------------------------------------------------------

    async def create_block_rule(self, target: str, note: str = "") -> str:
        """Install a ``block`` rule for *target* and return its rule id."""
        payload = AccessRuleCreate(configuration=_configuration_for(target), notes=note)
        envelope = await self._request("POST", _RULES_PATH, json=payload.model_dump())
        rule_id = envelope.result.get("id") if isinstance(envelope.result, dict) else None
        if not rule_id:
            raise CollaboratorError("cloudflare", "rule created without an id")
        logger.info("cloudflare_rule_created", target=target, rule_id=rule_id)
        return rule_id

    async def delete_block_rule(self, rule_id: str) -> None:
        await self._request("DELETE", f"{_RULES_PATH}/{rule_id}")
        logger.info("cloudflare_rule_deleted", rule_id=rule_id)

    async def list_block_rules(self) -> List[AccessRule]:
        """Every access rule of the zone, all modes, across all pages."""
        rules: List[AccessRule] = []
        page = 1
        while True:
            envelope = await self._request(
                "GET", _RULES_PATH, params={"page": page, "per_page": _PAGE_SIZE}
            )
            try:
                rules.extend(AccessRule.model_validate(item) for item in envelope.result or [])
                total_pages = int((envelope.result_info or {}).get("total_pages") or 1)
            except (TypeError, ValueError) as exc:
                raise CollaboratorError("cloudflare", f"unexpected rule listing: {exc}") from exc
            if page >= total_pages:
                break
            page += 1
        logger.debug("cloudflare_rules_listed", count=len(rules), pages=page)
        return rules

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Release the underlying httpx client."""
        await self._http.aclose()

    @property
    def circuit_breaker_state(self) -> str:
        return self._circuit_breaker.state.value
