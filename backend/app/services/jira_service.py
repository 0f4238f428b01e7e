"""Jira service – fetch issues, post comments, move issues between statuses.

Talks to the Jira Cloud REST API v2 with basic auth (account e-mail +
API token) over httpx.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from app.config import settings
from shared.schemas import Issue

logger = logging.getLogger(__name__)


class JiraError(Exception):
    """Raised when a Jira REST call fails."""


class JiraService:
    def __init__(
        self,
        host: str | None = None,
        email: str | None = None,
        api_token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        host = host if host is not None else settings.JIRA_HOST
        if host and not host.startswith(("http://", "https://")):
            host = f"https://{host}"
        self.base_url = f"{host.rstrip('/')}/rest/api/2" if host else ""
        self.email = email if email is not None else settings.JIRA_EMAIL
        self.api_token = api_token if api_token is not None else settings.JIRA_API_TOKEN
        self.timeout = timeout
        self._transport = transport

    # -- HTTP -----------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        if not self.base_url:
            raise JiraError("JIRA_HOST is not set")
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                auth=(self.email, self.api_token),
                timeout=self.timeout,
                headers={"Accept": "application/json"},
                transport=self._transport,
            ) as client:
                resp = await client.request(method, path, **kwargs)
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise JiraError(f"{method} {path} failed: {exc}") from exc

        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    # -- Issues ---------------------------------------------------------

    async def fetch_issue(self, issue_key: str) -> Issue:
        data = await self._request(
            "GET", f"/issue/{issue_key}", params={"fields": "summary,description"}
        )
        if not isinstance(data, dict) or not data.get("key"):
            raise JiraError(f"Issue {issue_key} came back without a body")
        return Issue.from_jira(data)

    async def add_comment(self, issue_key: str, body: str) -> None:
        await self._request("POST", f"/issue/{issue_key}/comment", json={"body": body})
        logger.info("[Jira] Added comment to %s", issue_key)

    async def transition_issue(self, issue_key: str, status_name: str) -> bool:
        """Move *issue_key* through the transition named (or leading to) *status_name*."""
        data = await self._request("GET", f"/issue/{issue_key}/transitions")
        wanted = status_name.strip().lower()
        for transition in (data or {}).get("transitions", []):
            names = {
                str(transition.get("name", "")).lower(),
                str((transition.get("to") or {}).get("name", "")).lower(),
            }
            if wanted in names:
                await self._request(
                    "POST",
                    f"/issue/{issue_key}/transitions",
                    json={"transition": {"id": transition["id"]}},
                )
                logger.info("[Jira] Transitioned %s to %s", issue_key, status_name)
                return True

        logger.warning("[Jira] Transition to '%s' not available for %s", status_name, issue_key)
        return False

    async def report_status(
        self,
        issue_key: str,
        comment: str,
        transition_to: str | None = None,
    ) -> None:
        """Post *comment* and optionally transition the issue."""
        await self.add_comment(issue_key, comment)
        if transition_to:
            await self.transition_issue(issue_key, transition_to)
