from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from feedbackhub.catalog import FileEntityCatalog, entity_route, normalize_entity_ref
from feedbackhub.config import ConfigError


def test_normalize_entity_ref_fills_kind_and_namespace() -> None:
    assert normalize_entity_ref("Portal") == "component:default/portal"
    assert normalize_entity_ref("system:Portal") == "system:default/portal"
    assert normalize_entity_ref(" Component:Team-A/Portal ") == "component:team-a/portal"
    with pytest.raises(ValueError, match="non-empty"):
        normalize_entity_ref("  ")


def test_entity_route_builds_feedback_page_path() -> None:
    assert entity_route("portal") == "/catalog/default/component/portal/feedback"
    assert (
        entity_route("system:ops/pager", base_url="https://portal.example.com/")
        == "https://portal.example.com/catalog/ops/system/pager/feedback"
    )


def test_file_catalog_loads_entities(tmp_path: Path) -> None:
    path = tmp_path / "entities.toml"
    path.write_text(
        """
[entity."component:default/portal"]
title = "Developer Portal"

[entity."component:default/portal".annotations]
"feedback/type" = "JIRA"
"feedback/host" = "https://jira.example.com"
"jira/project-key" = "FB"

[entity.billing]
""".strip(),
        encoding="utf-8",
    )

    catalog = FileEntityCatalog.load(path)

    portal = asyncio.run(catalog.get_entity_by_ref("Portal"))
    assert portal is not None
    assert portal.ref == "component:default/portal"
    assert portal.title == "Developer Portal"
    assert portal.annotation("feedback/type") == "JIRA"
    assert portal.annotation("jira/component") is None

    billing = asyncio.run(catalog.get_entity_by_ref("component:default/billing"))
    assert billing is not None
    assert dict(billing.annotations) == {}
    assert asyncio.run(catalog.get_entity_by_ref("unknown")) is None


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("entity = 1", r"\[entity\] must be a TOML table"),
        ("[entity]\nportal = 1", "must be a TOML table"),
        ('[entity.portal]\ntitle = 3', "title must be a string"),
        ("[entity.portal]\nannotations = 3", "annotations for"),
        ('[entity.portal.annotations]\n"feedback/type" = 1', "must be a string"),
        ('[entity.portal]\n[entity."component:default/portal"]', "Duplicate entity ref"),
        ("[entity", "not valid TOML"),
    ],
)
def test_file_catalog_rejects_invalid_entries(tmp_path: Path, content: str, message: str) -> None:
    path = tmp_path / "entities.toml"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(ConfigError, match=message):
        FileEntityCatalog.load(path)
