from __future__ import annotations

from collections.abc import Callable, Sequence
import logging
from typing import Protocol

from feedbackhub.config import ConfigError, JiraInstanceConfig
from feedbackhub.jira_client import JiraClient, TicketTracker
from feedbackhub.models import (
    COMPONENT_ANNOTATION,
    HOST_ANNOTATION,
    PROJECT_KEY_ANNOTATION,
    EntityRef,
    FeedbackRecord,
    FeedbackType,
    IntegrationOutcome,
    TicketCreationResult,
    TicketPayload,
)
from feedbackhub.observability import log_event
from feedbackhub.store import FeedbackStore


# Existing alerting matches on this exact text.
INTEGRATION_NOT_FOUND_MESSAGE = "Jira integration not found"

LOGGER = logging.getLogger("feedbackhub.integration")

TrackerFactory = Callable[[JiraInstanceConfig, logging.Logger], TicketTracker]


class JiraInstanceSource(Protocol):
    def jira_instances(self) -> tuple[JiraInstanceConfig, ...]: ...


class JiraIntegrationNotFound(LookupError):
    """No configured Jira instance serves the entity."""


class MissingProjectKeyError(ConfigError):
    """Neither the entity nor the Jira instance names a project key."""


def resolve_jira_instance(
    instances: Sequence[JiraInstanceConfig], entity: EntityRef
) -> JiraInstanceConfig:
    """Pick the Jira instance named by the entity's ``feedback/host`` annotation.

    Entities without the annotation go to the first configured instance.
    """
    if not instances:
        raise JiraIntegrationNotFound("No Jira instances are configured")

    host = entity.annotation(HOST_ANNOTATION)
    if host is None:
        return instances[0]

    wanted = host.rstrip("/")
    for instance in instances:
        if instance.normalized_host == wanted:
            return instance
    raise JiraIntegrationNotFound(f"No Jira instance configured for host {host!r}")


async def resolve_reporter_username(tracker: TicketTracker, email: str | None) -> str | None:
    if not email:
        return None
    try:
        return await tracker.get_username_by_email(email)
    except Exception as exc:  # noqa: BLE001
        log_event(
            LOGGER, "jira_user_lookup_failed", level=logging.DEBUG, error_type=type(exc).__name__
        )
        return None


def compose_ticket(
    feedback: FeedbackRecord,
    entity: EntityRef,
    instance: JiraInstanceConfig,
    *,
    reporter_email: str | None,
    reporter_username: str | None,
    entity_route: str,
    feedback_type: str,
    app_title: str,
) -> TicketPayload:
    project_key = entity.annotation(PROJECT_KEY_ANNOTATION) or instance.default_project_key
    if not project_key:
        raise MissingProjectKeyError(
            f"No Jira project key for entity {entity.ref!r} on host {instance.host!r}"
        )
    component = entity.annotation(COMPONENT_ANNOTATION) or instance.default_component

    lines = [
        feedback.description,
        "",
        f"Submitted from {app_title}",
        f"Feedback type: {feedback_type}",
        f"Entity: {entity_route}",
    ]
    attribution = _attribution_line(
        reporter_email=reporter_email,
        reporter_username=reporter_username,
        cloud=instance.host_type == "cloud",
    )
    if attribution is not None:
        lines.append(attribution)

    return TicketPayload(
        project_key=project_key,
        component=component,
        summary=feedback.summary,
        description="\n".join(lines),
        issue_type=_issue_type(feedback.feedback_type),
        labels=_labels(feedback.feedback_type, feedback.tag),
        reporter=reporter_username,
    )


async def attempt_ticket_creation(
    feedback: FeedbackRecord,
    entity: EntityRef,
    config: JiraInstanceSource,
    logger: logging.Logger,
    store: FeedbackStore,
    *,
    reporter_email: str | None,
    entity_route: str,
    feedback_type: str,
    app_title: str,
    tracker_factory: TrackerFactory = JiraClient.for_instance,
) -> IntegrationOutcome:
    """Open a Jira ticket for ``feedback`` and record its URL on the stored feedback.

    Tracker-side problems (no matching instance, declined or failed creation) are
    logged and never raised. A failure of ``store.update_feedback`` after a ticket
    exists is raised, since the ticket is then orphaned.
    """
    try:
        instance = resolve_jira_instance(config.jira_instances(), entity)
    except (ConfigError, JiraIntegrationNotFound) as exc:
        logger.error(INTEGRATION_NOT_FOUND_MESSAGE)
        log_event(logger, "jira_integration_aborted", level=logging.DEBUG, reason=str(exc))
        return "aborted"

    tracker = tracker_factory(instance, logger)
    reporter_username = await resolve_reporter_username(tracker, reporter_email)

    try:
        payload = compose_ticket(
            feedback,
            entity,
            instance,
            reporter_email=reporter_email,
            reporter_username=reporter_username,
            entity_route=entity_route,
            feedback_type=feedback_type,
            app_title=app_title,
        )
    except MissingProjectKeyError as exc:
        logger.error("Jira project key not found for entity %s", entity.ref)
        log_event(logger, "jira_integration_aborted", level=logging.DEBUG, reason=str(exc))
        return "aborted"

    try:
        result = await tracker.create_ticket(payload)
    except Exception as exc:  # noqa: BLE001
        log_event(
            logger,
            "jira_ticket_create_failed",
            feedback_id=feedback.feedback_id,
            host=instance.host,
            error_type=type(exc).__name__,
        )
        result = TicketCreationResult(key=None)

    if not result.key:
        log_event(
            logger,
            "jira_ticket_skipped",
            feedback_id=feedback.feedback_id,
            host=instance.host,
        )
        return "skipped"

    feedback.ticket_url = instance.browse_url(result.key)
    await store.update_feedback(feedback)
    log_event(
        logger,
        "jira_ticket_linked",
        feedback_id=feedback.feedback_id,
        ticket_key=result.key,
        ticket_url=feedback.ticket_url,
    )
    return "persisted"


def _attribution_line(
    *, reporter_email: str | None, reporter_username: str | None, cloud: bool
) -> str | None:
    if reporter_username:
        mention = f"accountid:{reporter_username}" if cloud else reporter_username
        return f"Reported by: [~{mention}]"
    if reporter_email:
        return f"Reported by: {reporter_email}"
    return None


def _issue_type(feedback_type: FeedbackType) -> str:
    return "Bug" if feedback_type == "BUG" else "Task"


def _labels(feedback_type: FeedbackType, tag: str) -> tuple[str, ...]:
    labels: list[str] = [feedback_type.lower()]
    tag_label = "-".join(tag.split())
    if tag_label and tag_label not in labels:
        labels.append(tag_label)
    return tuple(labels)
