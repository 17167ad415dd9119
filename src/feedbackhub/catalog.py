from __future__ import annotations

from pathlib import Path
import tomllib
from typing import Protocol, cast

from feedbackhub.config import ConfigError
from feedbackhub.models import EntityRef


_DEFAULT_KIND = "component"
_DEFAULT_NAMESPACE = "default"


class EntityCatalog(Protocol):
    async def get_entity_by_ref(self, ref: str) -> EntityRef | None: ...


def normalize_entity_ref(ref: str) -> str:
    """Expand ``name`` or ``kind:name`` to ``kind:namespace/name``, lowercased."""
    normalized = ref.strip().lower()
    if not normalized:
        raise ValueError("entity ref must be non-empty")
    kind, sep, rest = normalized.partition(":")
    if not sep:
        kind, rest = _DEFAULT_KIND, normalized
    if "/" not in rest:
        rest = f"{_DEFAULT_NAMESPACE}/{rest}"
    return f"{kind}:{rest}"


def entity_route(ref: str, *, base_url: str = "") -> str:
    kind, _, rest = normalize_entity_ref(ref).partition(":")
    namespace, _, name = rest.partition("/")
    return f"{base_url.rstrip('/')}/catalog/{namespace}/{kind}/{name}/feedback"


class FileEntityCatalog:
    def __init__(self, entities: dict[str, EntityRef]) -> None:
        self._entities = entities

    @classmethod
    def load(cls, path: Path) -> FileEntityCatalog:
        try:
            with path.open("rb") as fh:
                data = tomllib.load(fh)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"{path} is not valid TOML: {exc}") from exc

        raw_entities = data.get("entity", {})
        if not isinstance(raw_entities, dict):
            raise ConfigError("[entity] must be a TOML table")

        entities: dict[str, EntityRef] = {}
        for raw_ref, raw_value in raw_entities.items():
            if not isinstance(raw_value, dict):
                raise ConfigError(f"[entity.{raw_ref!r}] must be a TOML table")
            table = cast(dict[str, object], raw_value)
            ref = normalize_entity_ref(raw_ref)
            if ref in entities:
                raise ConfigError(f"Duplicate entity ref {ref!r} in {path}")
            entities[ref] = EntityRef(
                ref=ref,
                title=_optional_title(table),
                annotations=_annotations(table, ref=ref),
            )
        return cls(entities)

    async def get_entity_by_ref(self, ref: str) -> EntityRef | None:
        return self._entities.get(normalize_entity_ref(ref))


def _optional_title(table: dict[str, object]) -> str:
    value = table.get("title", "")
    if not isinstance(value, str):
        raise ConfigError("entity title must be a string")
    return value


def _annotations(table: dict[str, object], *, ref: str) -> dict[str, str]:
    value = table.get("annotations", {})
    if not isinstance(value, dict):
        raise ConfigError(f"annotations for {ref!r} must be a TOML table")
    annotations: dict[str, str] = {}
    for key, item in value.items():
        if not isinstance(item, str):
            raise ConfigError(f"annotation {key!r} for {ref!r} must be a string")
        annotations[key] = item
    return annotations
