from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Literal


FeedbackType = Literal["BUG", "FEEDBACK"]
HostType = Literal["cloud", "datacenter"]
IntegrationOutcome = Literal["persisted", "skipped", "aborted"]
# "orphaned": the ticket exists but its URL could not be saved on the record.
SubmissionOutcome = Literal["persisted", "skipped", "aborted", "orphaned"]

HOST_ANNOTATION = "feedback/host"
TYPE_ANNOTATION = "feedback/type"
PROJECT_KEY_ANNOTATION = "jira/project-key"
COMPONENT_ANNOTATION = "jira/component"


@dataclass
class FeedbackRecord:
    summary: str
    description: str
    tag: str
    feedback_type: FeedbackType
    project_id: str
    created_by: str
    feedback_id: str = ""
    url: str = ""
    user_agent: str = ""
    created_at: str = ""
    updated_at: str = ""
    ticket_url: str | None = None


@dataclass(frozen=True)
class EntityRef:
    ref: str
    title: str = ""
    annotations: Mapping[str, str] = field(default_factory=dict)

    def annotation(self, key: str) -> str | None:
        value = self.annotations.get(key)
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None


@dataclass(frozen=True)
class TicketPayload:
    project_key: str
    component: str | None
    summary: str
    description: str
    issue_type: str = "Task"
    labels: tuple[str, ...] = ()
    reporter: str | None = None


@dataclass(frozen=True)
class TicketCreationResult:
    key: str | None


@dataclass(frozen=True)
class TicketDetails:
    key: str
    status: str
    assignee: str | None
    avatar_url: str | None


@dataclass(frozen=True)
class FeedbackPage:
    items: tuple[FeedbackRecord, ...]
    total_count: int
    current_page: int
    page_size: int
