from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import pytest

from feedbackhub.catalog import FileEntityCatalog
from feedbackhub.config import AppConfig, ConfigError, JiraInstanceConfig, RuntimeConfig
from feedbackhub.jira_client import TicketTracker
from feedbackhub.models import (
    EntityRef,
    FeedbackRecord,
    TicketCreationResult,
    TicketDetails,
    TicketPayload,
)
from feedbackhub.service import (
    FeedbackNotFoundError,
    FeedbackService,
    FeedbackSubmission,
    FeedbackValidationError,
)
from feedbackhub.store import FeedbackStoreError, SqliteFeedbackStore


JIRA_HOST = "https://jira.example.com"


class FakeCatalog:
    def __init__(self, *entities: EntityRef) -> None:
        self.entities = {entity.ref: entity for entity in entities}

    async def get_entity_by_ref(self, ref: str) -> EntityRef | None:
        return self.entities.get(ref)


class FakeTracker(TicketTracker):
    def __init__(self, *, key: str | None = "FB-1", username: str | None = None) -> None:
        self.key = key
        self.username = username
        self.created: list[TicketPayload] = []
        self.detail_requests: list[str] = []

    async def get_username_by_email(self, email: str) -> str | None:
        _ = email
        return self.username

    async def create_ticket(self, payload: TicketPayload) -> TicketCreationResult:
        self.created.append(payload)
        return TicketCreationResult(key=self.key)

    async def get_ticket_details(self, key: str) -> TicketDetails | None:
        self.detail_requests.append(key)
        return TicketDetails(key=key, status="Open", assignee=None, avatar_url=None)


class FailingUpdateStore(SqliteFeedbackStore):
    async def update_feedback(self, record: FeedbackRecord) -> None:
        _ = record
        raise FeedbackStoreError("database is locked")


JIRA_ENTITY = EntityRef(
    ref="component:default/portal",
    title="Portal",
    annotations={
        "feedback/type": "jira",
        "feedback/host": JIRA_HOST,
        "jira/project-key": "FB",
    },
)
MAIL_ENTITY = EntityRef(
    ref="component:default/billing",
    annotations={"feedback/type": "MAIL"},
)


def _config(tmp_path: Path, *, jira: bool = True) -> AppConfig:
    return AppConfig(
        runtime=RuntimeConfig(
            base_dir=tmp_path,
            app_title="Developer Portal",
            app_base_url="https://portal.example.com",
        ),
        jira=(JiraInstanceConfig(host=JIRA_HOST, token="t"),) if jira else None,
    )


def _service(
    tmp_path: Path,
    tracker: FakeTracker,
    *,
    store: SqliteFeedbackStore | None = None,
    jira: bool = True,
) -> tuple[FeedbackService, list[JiraInstanceConfig]]:
    instances: list[JiraInstanceConfig] = []

    def factory(instance: JiraInstanceConfig, logger: logging.Logger) -> TicketTracker:
        _ = logger
        instances.append(instance)
        return tracker

    service = FeedbackService(
        _config(tmp_path, jira=jira),
        store=store or SqliteFeedbackStore(tmp_path / "feedback.db"),
        catalog=FakeCatalog(JIRA_ENTITY, MAIL_ENTITY),
        tracker_factory=factory,
    )
    return service, instances


def _submission(**overrides: object) -> FeedbackSubmission:
    values: dict[str, object] = {
        "summary": "Broken button",
        "description": "It does not click",
        "feedback_type": "bug",
        "project_id": "component:default/portal",
        "created_by": "user:default/alice",
        "tag": "UI",
        "reporter_email": "alice@example.com",
    }
    values.update(overrides)
    return FeedbackSubmission(**values)  # type: ignore[arg-type]


def test_submit_for_jira_entity_links_ticket(tmp_path: Path) -> None:
    tracker = FakeTracker(key="FB-1")
    service, instances = _service(tmp_path, tracker)

    result = asyncio.run(service.submit(_submission()))

    assert result.integration == "persisted"
    assert result.feedback.feedback_type == "BUG"
    assert result.feedback.ticket_url == "https://jira.example.com/browse/FB-1"
    stored = asyncio.run(service.get(result.feedback.feedback_id))
    assert stored.ticket_url == "https://jira.example.com/browse/FB-1"
    assert [instance.host for instance in instances] == [JIRA_HOST]

    payload = tracker.created[0]
    assert payload.project_key == "FB"
    assert payload.issue_type == "Bug"
    assert "Submitted from Developer Portal" in payload.description
    assert "Feedback type: Bug" in payload.description
    assert (
        "Entity: https://portal.example.com/catalog/default/component/portal/feedback"
        in payload.description
    )
    assert "Reported by: alice@example.com" in payload.description


def test_submit_for_non_jira_entity_skips_integration(tmp_path: Path) -> None:
    tracker = FakeTracker()
    service, _ = _service(tmp_path, tracker)

    result = asyncio.run(service.submit(_submission(project_id="component:default/billing")))

    assert result.integration is None
    assert result.feedback.ticket_url is None
    assert tracker.created == []


def test_submit_without_jira_config_still_stores_feedback(tmp_path: Path) -> None:
    tracker = FakeTracker()
    service, _ = _service(tmp_path, tracker, jira=False)

    result = asyncio.run(service.submit(_submission()))

    assert result.integration == "aborted"
    assert result.feedback.ticket_url is None
    assert asyncio.run(service.get(result.feedback.feedback_id)).ticket_url is None


def test_submit_declined_ticket_leaves_record_unlinked(tmp_path: Path) -> None:
    service, _ = _service(tmp_path, FakeTracker(key=None))

    result = asyncio.run(service.submit(_submission()))

    assert result.integration == "skipped"
    assert asyncio.run(service.get(result.feedback.feedback_id)).ticket_url is None


def test_submit_reports_orphaned_ticket_when_link_cannot_be_saved(tmp_path: Path) -> None:
    store = FailingUpdateStore(tmp_path / "feedback.db")
    service, _ = _service(tmp_path, FakeTracker(key="FB-9"), store=store)

    result = asyncio.run(service.submit(_submission()))

    assert result.integration == "orphaned"
    assert result.orphaned_ticket_url == "https://jira.example.com/browse/FB-9"
    assert result.feedback.ticket_url is None
    stored = asyncio.run(store.get_feedback(result.feedback.feedback_id))
    assert stored is not None
    assert stored.ticket_url is None


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"summary": "   "}, "Summary field empty"),
        ({"project_id": "  "}, "Entity ref field empty"),
        ({"feedback_type": "question"}, "feedback_type must be one of"),
        ({"project_id": "component:default/ghost"}, "No entity found for ref"),
    ],
)
def test_submit_validation_errors(
    tmp_path: Path, overrides: dict[str, object], message: str
) -> None:
    service, _ = _service(tmp_path, FakeTracker())

    with pytest.raises(FeedbackValidationError, match=message):
        asyncio.run(service.submit(_submission(**overrides)))
    assert asyncio.run(service.list_feedback()).total_count == 0


def test_list_uses_default_paging(tmp_path: Path) -> None:
    service, _ = _service(tmp_path, FakeTracker())
    for index in range(12):
        asyncio.run(
            service.submit(
                _submission(summary=f"item {index}", project_id="component:default/billing")
            )
        )

    page = asyncio.run(service.list_feedback())
    assert page.current_page == 1
    assert page.page_size == 10
    assert page.total_count == 12
    assert len(page.items) == 10

    with pytest.raises(FeedbackValidationError):
        asyncio.run(service.list_feedback(page=0))
    with pytest.raises(FeedbackValidationError):
        asyncio.run(service.list_feedback(page_size=0))



def test_list_filters_by_short_entity_ref(tmp_path: Path) -> None:
    service = FeedbackService(
        _config(tmp_path),
        store=SqliteFeedbackStore(tmp_path / "feedback.db"),
        catalog=FileEntityCatalog({entity.ref: entity for entity in (JIRA_ENTITY, MAIL_ENTITY)}),
        tracker_factory=lambda instance, logger: FakeTracker(),
    )
    asyncio.run(service.submit(_submission(project_id="billing")))
    asyncio.run(service.submit(_submission(project_id="Billing")))
    asyncio.run(service.submit(_submission(project_id="portal")))

    for ref in ("billing", "Component:Billing", "component:default/billing"):
        page = asyncio.run(service.list_feedback(project_id=ref))
        assert page.total_count == 2
        assert {item.project_id for item in page.items} == {"component:default/billing"}

    with pytest.raises(FeedbackValidationError, match="Entity ref field empty"):
        asyncio.run(service.list_feedback(project_id=" "))

def test_get_update_and_delete_missing_ids(tmp_path: Path) -> None:
    service, _ = _service(tmp_path, FakeTracker())

    with pytest.raises(FeedbackNotFoundError, match="No feedback found for id nonexistent-id"):
        asyncio.run(service.get("nonexistent-id"))
    with pytest.raises(FeedbackNotFoundError, match="No feedback found for id nonexistent-id"):
        asyncio.run(service.update("nonexistent-id", summary="Updated summary"))
    with pytest.raises(FeedbackNotFoundError, match="No feedback found for id nonexistent-id"):
        asyncio.run(service.delete("nonexistent-id"))


def test_update_and_delete(tmp_path: Path) -> None:
    service, _ = _service(tmp_path, FakeTracker())
    created = asyncio.run(
        service.submit(_submission(project_id="component:default/billing"))
    ).feedback

    updated = asyncio.run(
        service.update(
            created.feedback_id,
            summary=" Updated summary ",
            description="More detail",
            tag="Docs",
            feedback_type="feedback",
        )
    )
    assert updated.summary == "Updated summary"
    assert updated.feedback_type == "FEEDBACK"
    assert asyncio.run(service.get(created.feedback_id)).tag == "Docs"

    with pytest.raises(FeedbackValidationError, match="Summary field empty"):
        asyncio.run(service.update(created.feedback_id, summary=""))

    asyncio.run(service.delete(created.feedback_id))
    with pytest.raises(FeedbackNotFoundError):
        asyncio.run(service.get(created.feedback_id))


def test_get_ticket_details_for_linked_feedback(tmp_path: Path) -> None:
    tracker = FakeTracker(key="FB-5")
    service, _ = _service(tmp_path, tracker)
    linked = asyncio.run(service.submit(_submission())).feedback
    unlinked = asyncio.run(
        service.submit(_submission(project_id="component:default/billing"))
    ).feedback

    details = asyncio.run(service.get_ticket_details(linked.feedback_id))

    assert details is not None
    assert details.key == "FB-5"
    assert tracker.detail_requests == ["FB-5"]
    assert asyncio.run(service.get_ticket_details(unlinked.feedback_id)) is None


def test_get_ticket_details_with_unknown_host(tmp_path: Path) -> None:
    store = SqliteFeedbackStore(tmp_path / "feedback.db")
    service, _ = _service(tmp_path, FakeTracker(), store=store)
    record = asyncio.run(
        store.store_feedback(
            FeedbackRecord(
                summary="s",
                description="d",
                tag="",
                feedback_type="BUG",
                project_id="component:default/portal",
                created_by="user:default/alice",
                ticket_url="https://other.example.com/browse/X-1",
            )
        )
    )

    with pytest.raises(ConfigError, match="No Jira instance configured for ticket"):
        asyncio.run(service.get_ticket_details(record.feedback_id))
