from __future__ import annotations

from dataclasses import dataclass
from functools import partial
import logging
from typing import cast

from feedbackhub.catalog import EntityCatalog, entity_route, normalize_entity_ref
from feedbackhub.config import AppConfig, ConfigError, JiraInstanceConfig
from feedbackhub.integration import TrackerFactory, attempt_ticket_creation
from feedbackhub.jira_client import JiraClient
from feedbackhub.models import (
    TYPE_ANNOTATION,
    FeedbackPage,
    FeedbackRecord,
    FeedbackType,
    SubmissionOutcome,
    TicketDetails,
)
from feedbackhub.observability import log_event
from feedbackhub.store import FeedbackStoreError, SqliteFeedbackStore


LOGGER = logging.getLogger("feedbackhub.service")
DEFAULT_PAGE_SIZE = 10


class FeedbackValidationError(ValueError):
    pass


class FeedbackNotFoundError(LookupError):
    def __init__(self, feedback_id: str) -> None:
        super().__init__(f"No feedback found for id {feedback_id}")
        self.feedback_id = feedback_id


@dataclass(frozen=True)
class FeedbackSubmission:
    summary: str
    description: str
    feedback_type: str
    project_id: str
    created_by: str
    tag: str = ""
    url: str = ""
    user_agent: str = ""
    reporter_email: str | None = None


@dataclass(frozen=True)
class SubmissionResult:
    feedback: FeedbackRecord
    integration: SubmissionOutcome | None
    orphaned_ticket_url: str | None = None


class FeedbackService:
    def __init__(
        self,
        config: AppConfig,
        *,
        store: SqliteFeedbackStore,
        catalog: EntityCatalog,
        tracker_factory: TrackerFactory | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._catalog = catalog
        self._tracker_factory: TrackerFactory = tracker_factory or partial(
            JiraClient.for_instance,
            timeout_seconds=config.runtime.request_timeout_seconds,
        )

    async def submit(self, submission: FeedbackSubmission) -> SubmissionResult:
        if not submission.summary.strip():
            raise FeedbackValidationError("Summary field empty")
        feedback_type = _parse_feedback_type(submission.feedback_type)
        if not submission.project_id.strip():
            raise FeedbackValidationError("Entity ref field empty")

        entity = await self._catalog.get_entity_by_ref(submission.project_id)
        if entity is None:
            raise FeedbackValidationError(f"No entity found for ref {submission.project_id}")

        record = await self._store.store_feedback(
            FeedbackRecord(
                summary=submission.summary.strip(),
                description=submission.description,
                tag=submission.tag,
                feedback_type=feedback_type,
                project_id=entity.ref,
                created_by=submission.created_by,
                url=submission.url,
                user_agent=submission.user_agent,
            )
        )
        log_event(
            LOGGER,
            "feedback_stored",
            feedback_id=record.feedback_id,
            project_id=record.project_id,
            feedback_type=record.feedback_type,
        )

        integration_type = entity.annotation(TYPE_ANNOTATION) or ""
        if integration_type.upper() != "JIRA":
            return SubmissionResult(feedback=record, integration=None)

        try:
            outcome = await attempt_ticket_creation(
                record,
                entity,
                self._config,
                LOGGER,
                self._store,
                reporter_email=submission.reporter_email,
                entity_route=entity_route(entity.ref, base_url=self._config.runtime.app_base_url),
                feedback_type="Bug" if feedback_type == "BUG" else "Feedback",
                app_title=self._config.runtime.app_title,
                tracker_factory=self._tracker_factory,
            )
        except FeedbackStoreError as exc:
            orphaned_url = record.ticket_url
            record.ticket_url = None
            log_event(
                LOGGER,
                "jira_ticket_orphaned",
                level=logging.ERROR,
                feedback_id=record.feedback_id,
                ticket_url=orphaned_url,
                error=str(exc),
            )
            return SubmissionResult(
                feedback=record, integration="orphaned", orphaned_ticket_url=orphaned_url
            )
        return SubmissionResult(feedback=record, integration=outcome)

    async def list_feedback(
        self,
        *,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        project_id: str | None = None,
        query: str | None = None,
    ) -> FeedbackPage:
        if page < 1:
            raise FeedbackValidationError("page must be >= 1")
        if page_size < 1:
            raise FeedbackValidationError("page_size must be >= 1")
        if project_id is not None:
            if not project_id.strip():
                raise FeedbackValidationError("Entity ref field empty")
            project_id = normalize_entity_ref(project_id)
        return await self._store.list_feedback(
            page=page, page_size=page_size, project_id=project_id, query=query
        )

    async def get(self, feedback_id: str) -> FeedbackRecord:
        record = await self._store.get_feedback(feedback_id)
        if record is None:
            raise FeedbackNotFoundError(feedback_id)
        return record

    async def update(
        self,
        feedback_id: str,
        *,
        summary: str | None = None,
        description: str | None = None,
        tag: str | None = None,
        feedback_type: str | None = None,
    ) -> FeedbackRecord:
        record = await self.get(feedback_id)
        if summary is not None:
            if not summary.strip():
                raise FeedbackValidationError("Summary field empty")
            record.summary = summary.strip()
        if description is not None:
            record.description = description
        if tag is not None:
            record.tag = tag
        if feedback_type is not None:
            record.feedback_type = _parse_feedback_type(feedback_type)
        await self._store.update_feedback(record)
        return record

    async def delete(self, feedback_id: str) -> None:
        if not await self._store.delete_feedback(feedback_id):
            raise FeedbackNotFoundError(feedback_id)
        log_event(LOGGER, "feedback_deleted", feedback_id=feedback_id)

    async def get_ticket_details(self, feedback_id: str) -> TicketDetails | None:
        record = await self.get(feedback_id)
        if not record.ticket_url:
            return None
        instance, key = self._split_ticket_url(record.ticket_url)
        tracker = self._tracker_factory(instance, LOGGER)
        return await tracker.get_ticket_details(key)

    def _split_ticket_url(self, ticket_url: str) -> tuple[JiraInstanceConfig, str]:
        for instance in self._config.jira_instances():
            prefix = instance.browse_url("")
            if ticket_url.startswith(prefix) and len(ticket_url) > len(prefix):
                return instance, ticket_url[len(prefix) :]
        raise ConfigError(f"No Jira instance configured for ticket {ticket_url}")


def _parse_feedback_type(value: str) -> FeedbackType:
    normalized = value.strip().upper()
    if normalized not in {"BUG", "FEEDBACK"}:
        raise FeedbackValidationError("feedback_type must be one of: BUG, FEEDBACK")
    return cast(FeedbackType, normalized)
