from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import logging
from typing import cast
from urllib.parse import quote

import httpx

from feedbackhub.config import JiraInstanceConfig
from feedbackhub.models import HostType, TicketCreationResult, TicketDetails, TicketPayload
from feedbackhub.observability import log_event


_API_PREFIX = "/rest/api/2"
_AVATAR_SIZE = "48x48"


class JiraApiError(RuntimeError):
    """Non-success response from the Jira REST API."""

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class TicketTracker(ABC):
    @abstractmethod
    async def get_username_by_email(self, email: str) -> str | None:
        """Map an email address to the tracker's own user identifier, if one exists."""

    @abstractmethod
    async def create_ticket(self, payload: TicketPayload) -> TicketCreationResult:
        """Create a ticket; an absent key means the tracker declined it."""

    @abstractmethod
    async def get_ticket_details(self, key: str) -> TicketDetails | None:
        """Fetch status and assignee of an existing ticket."""


@dataclass(frozen=True)
class JiraClient(TicketTracker):
    host: str
    token: str = field(repr=False)
    logger: logging.Logger = field(repr=False)
    host_type: HostType = "datacenter"
    timeout_seconds: float = 30.0
    transport: httpx.AsyncBaseTransport | None = field(
        default=None,
        repr=False,
        compare=False,
    )

    @classmethod
    def for_instance(
        cls,
        instance: JiraInstanceConfig,
        logger: logging.Logger,
        *,
        timeout_seconds: float = 30.0,
    ) -> JiraClient:
        return cls(
            host=instance.host,
            token=instance.token,
            logger=logger,
            host_type=instance.host_type,
            timeout_seconds=timeout_seconds,
        )

    @property
    def base_url(self) -> str:
        host = self.host.rstrip("/")
        if "://" in host:
            return host
        return f"https://{host}"

    async def get_username_by_email(self, email: str) -> str | None:
        # Cloud hides usernames behind accountId and searches by `query`.
        params = {"query": email} if self.host_type == "cloud" else {"username": email}
        payload = await self._api_json("GET", f"{_API_PREFIX}/user/search", params=params)
        if not isinstance(payload, list):
            raise JiraApiError(
                "Unexpected Jira response: expected list for user search", status_code=200
            )

        id_field = "accountId" if self.host_type == "cloud" else "name"
        username: str | None = None
        for item in payload:
            item_obj = _as_object_dict(item)
            if item_obj is None:
                continue
            username = _as_optional_nonempty_str(item_obj.get(id_field))
            if username is not None:
                break

        log_event(
            self.logger,
            "jira_read",
            endpoint="user_search",
            host=self.host,
            found=username is not None,
        )
        return username

    async def create_ticket(self, payload: TicketPayload) -> TicketCreationResult:
        try:
            response = await self._api_json(
                "POST", f"{_API_PREFIX}/issue", payload=self._issue_body(payload)
            )
        except (JiraApiError, httpx.HTTPError, ValueError) as exc:
            log_event(
                self.logger,
                "jira_ticket_create_failed",
                host=self.host,
                project_key=payload.project_key,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return TicketCreationResult(key=None)

        response_obj = _as_object_dict(response)
        key = _as_optional_nonempty_str(response_obj.get("key")) if response_obj else None
        log_event(
            self.logger,
            "jira_ticket_created" if key else "jira_ticket_declined",
            host=self.host,
            project_key=payload.project_key,
            ticket_key=key,
        )
        return TicketCreationResult(key=key)

    async def get_ticket_details(self, key: str) -> TicketDetails | None:
        path = f"{_API_PREFIX}/issue/{quote(key, safe='')}"
        payload = await self._api_json(
            "GET", path, params={"fields": "status,assignee"}, allow_missing=True
        )
        if payload is None:
            log_event(self.logger, "jira_read", endpoint="issue", ticket_key=key, found=False)
            return None
        payload_obj = _as_object_dict(payload)
        if payload_obj is None:
            raise JiraApiError("Unexpected Jira response: expected object for issue", status_code=200)

        fields = _as_object_dict(payload_obj.get("fields")) or {}
        status = _as_object_dict(fields.get("status")) or {}
        assignee = _as_object_dict(fields.get("assignee"))
        assignee_name: str | None = None
        avatar_url: str | None = None
        if assignee is not None:
            assignee_name = _as_optional_nonempty_str(assignee.get("displayName"))
            avatars = _as_object_dict(assignee.get("avatarUrls")) or {}
            avatar_url = _as_optional_nonempty_str(avatars.get(_AVATAR_SIZE))

        details = TicketDetails(
            key=_as_optional_nonempty_str(payload_obj.get("key")) or key,
            status=_as_optional_nonempty_str(status.get("name")) or "Unknown",
            assignee=assignee_name,
            avatar_url=avatar_url,
        )
        log_event(self.logger, "jira_read", endpoint="issue", ticket_key=details.key, found=True)
        return details

    def _issue_body(self, payload: TicketPayload) -> dict[str, object]:
        fields: dict[str, object] = {
            "project": {"key": payload.project_key},
            "summary": payload.summary,
            "description": payload.description,
            "issuetype": {"name": payload.issue_type},
            "labels": list(payload.labels),
        }
        if payload.component:
            fields["components"] = [{"name": payload.component}]
        if payload.reporter:
            reporter_field = "id" if self.host_type == "cloud" else "name"
            fields["reporter"] = {reporter_field: payload.reporter}
        return {"fields": fields}

    def _headers(self) -> dict[str, str]:
        scheme = "Basic" if self.host_type == "cloud" else "Bearer"
        return {
            "Authorization": f"{scheme} {self.token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    async def _api_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        payload: dict[str, object] | None = None,
        allow_missing: bool = False,
    ) -> object:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=self.timeout_seconds,
            transport=self.transport,
        ) as client:
            response = await client.request(method.upper(), path, params=params, json=payload)

        if allow_missing and response.status_code == 404:
            return None
        if not response.is_success:
            raise JiraApiError(
                f"Jira API request failed with status {response.status_code}: "
                f"{_preview_for_log(response.text)}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        return response.json()


def _preview_for_log(text: str, *, limit: int = 240) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_optional_nonempty_str(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None
