from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import tomllib
from typing import cast

from feedbackhub.models import HostType


@dataclass(frozen=True)
class RuntimeConfig:
    base_dir: Path
    app_title: str = "Feedback"
    app_base_url: str = ""
    request_timeout_seconds: float = 30.0

    @property
    def db_path(self) -> Path:
        return self.base_dir / "feedback.db"


@dataclass(frozen=True)
class JiraInstanceConfig:
    host: str
    token: str = field(repr=False)
    host_type: HostType = "datacenter"
    default_project_key: str | None = None
    default_component: str | None = None

    @property
    def normalized_host(self) -> str:
        return self.host.rstrip("/")

    def browse_url(self, key: str) -> str:
        return f"{self.normalized_host}/browse/{key}"


@dataclass(frozen=True)
class AppConfig:
    runtime: RuntimeConfig
    catalog_path: Path | None = None
    jira: tuple[JiraInstanceConfig, ...] | None = None

    def jira_instances(self) -> tuple[JiraInstanceConfig, ...]:
        if self.jira is None:
            raise ConfigError("[[integrations.jira]] is not configured")
        return self.jira


class ConfigError(ValueError):
    pass


def load_config(path: Path) -> AppConfig:
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"{path} is not valid TOML: {exc}") from exc

    runtime_data = _require_table(data, "runtime")
    catalog_data = _optional_table(data, "catalog")
    integrations_data = _optional_table(data, "integrations")

    runtime = RuntimeConfig(
        base_dir=Path(_require_str(runtime_data, "base_dir")).expanduser(),
        app_title=_str_with_default(runtime_data, "app_title", "Feedback"),
        app_base_url=_str_with_default(runtime_data, "app_base_url", ""),
        request_timeout_seconds=_number_with_default(
            runtime_data, "request_timeout_seconds", 30.0
        ),
    )
    if runtime.request_timeout_seconds <= 0:
        raise ConfigError("runtime.request_timeout_seconds must be > 0")

    catalog_path: Path | None = None
    if catalog_data is not None:
        catalog_path = _resolve_relative(
            Path(_require_str(catalog_data, "path")).expanduser(), base=path.parent
        )

    jira: tuple[JiraInstanceConfig, ...] | None = None
    if integrations_data is not None and "jira" in integrations_data:
        jira = _load_jira_instances(integrations_data["jira"])

    return AppConfig(runtime=runtime, catalog_path=catalog_path, jira=jira)


def _load_jira_instances(raw: object) -> tuple[JiraInstanceConfig, ...]:
    if not isinstance(raw, list):
        raise ConfigError("[[integrations.jira]] must be an array of tables")

    instances: list[JiraInstanceConfig] = []
    seen_hosts: set[str] = set()
    for index, item in enumerate(raw):
        table = _require_entry_table(item, table_name=f"integrations.jira[{index}]")
        instance = JiraInstanceConfig(
            host=_require_str(table, "host"),
            token=_require_str(table, "token"),
            host_type=_parse_host_type(table.get("host_type", "datacenter")),
            default_project_key=_optional_str(table, "default_project_key"),
            default_component=_optional_str(table, "default_component"),
        )
        if instance.normalized_host in seen_hosts:
            raise ConfigError(f"Duplicate Jira host {instance.host!r} in [[integrations.jira]]")
        seen_hosts.add(instance.normalized_host)
        instances.append(instance)
    return tuple(instances)


def _parse_host_type(value: object) -> HostType:
    if not isinstance(value, str):
        raise ConfigError("host_type must be one of: cloud, datacenter")
    normalized = value.strip().lower()
    if normalized not in {"cloud", "datacenter"}:
        raise ConfigError("host_type must be one of: cloud, datacenter")
    return cast(HostType, normalized)


def _resolve_relative(value: Path, *, base: Path) -> Path:
    if value.is_absolute():
        return value
    return base / value


def _require_table(data: dict[str, object], key: str) -> dict[str, object]:
    value = data.get(key)
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] is required and must be a TOML table")
    return cast(dict[str, object], value)


def _optional_table(data: dict[str, object], key: str) -> dict[str, object] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] must be a TOML table when provided")
    return cast(dict[str, object], value)


def _require_entry_table(value: object, *, table_name: str) -> dict[str, object]:
    if not isinstance(value, dict):
        raise ConfigError(f"{table_name} must be a TOML table")
    return cast(dict[str, object], value)


def _require_str(data: dict[str, object], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{key} is required and must be a non-empty string")
    return value.strip()


def _optional_str(data: dict[str, object], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{key} must be a non-empty string if provided")
    return value.strip()


def _str_with_default(data: dict[str, object], key: str, default: str) -> str:
    if key not in data:
        return default
    return _require_str(data, key)


def _number_with_default(data: dict[str, object], key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ConfigError(f"{key} must be a number")
    return float(value)
