from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import yaml

from .db import get_db_path
from .storage import get_setting, set_setting


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Settings:
    db_path: str
    extractor_url: str | None
    extractor_api_key: str | None
    generator_url: str | None
    generator_api_key: str | None


@dataclass(frozen=True)
class HttpConfig:
    user_agent: str
    max_items: int


@dataclass(frozen=True)
class AcquisitionConfig:
    max_attempts: int
    backoff_base_ms: int
    backoff_cap_ms: int
    run_budget_seconds: int


@dataclass(frozen=True)
class QueueConfig:
    batch_size: int
    max_attempts: int
    stale_after_seconds: int
    retry_base_minutes: float
    inter_job_delay_seconds: float
    generator_timeout_seconds: int
    run_budget_seconds: int
    auto_enqueue_limit: int


@dataclass(frozen=True)
class ApprovalConfig:
    default_threshold: float


@dataclass(frozen=True)
class Config:
    http: HttpConfig
    acquisition: AcquisitionConfig
    queue: QueueConfig
    approval: ApprovalConfig


DEFAULT_CONFIG: dict[str, Any] = {
    "http": {
        "user_agent": "storyforge/0.1 (+https://example.invalid/bot)",
        "max_items": 25,
    },
    "acquisition": {
        "max_attempts": 3,
        "backoff_base_ms": 1000,
        "backoff_cap_ms": 10000,
        "run_budget_seconds": 140,
    },
    "queue": {
        "batch_size": 5,
        "max_attempts": 3,
        "stale_after_seconds": 600,
        "retry_base_minutes": 1.0,
        "inter_job_delay_seconds": 1.0,
        "generator_timeout_seconds": 120,
        "run_budget_seconds": 140,
        "auto_enqueue_limit": 20,
    },
    "approval": {
        "default_threshold": 60.0,
    },
}

CONFIG_KEY = "config.runtime"

EXTRACTOR = "extractor"
GENERATOR = "generator"


def load_settings(
    environ: Mapping[str, str] | None = None,
    require: Iterable[str] = (),
) -> Settings:
    env = os.environ if environ is None else environ
    settings = Settings(
        db_path=get_db_path(env),
        extractor_url=_clean(env.get("SF_EXTRACTOR_URL")),
        extractor_api_key=_clean(env.get("SF_EXTRACTOR_API_KEY")),
        generator_url=_clean(env.get("SF_GENERATOR_URL")),
        generator_api_key=_clean(env.get("SF_GENERATOR_API_KEY")),
    )
    missing: list[str] = []
    for collaborator in require:
        if collaborator == EXTRACTOR:
            if not settings.extractor_url:
                missing.append("SF_EXTRACTOR_URL")
            if not settings.extractor_api_key:
                missing.append("SF_EXTRACTOR_API_KEY")
        elif collaborator == GENERATOR:
            if not settings.generator_url:
                missing.append("SF_GENERATOR_URL")
            if not settings.generator_api_key:
                missing.append("SF_GENERATOR_API_KEY")
        else:
            raise ConfigError(f"unknown collaborator {collaborator}")
    if missing:
        raise ConfigError("missing required environment: " + ", ".join(missing))
    return settings


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def bootstrap_runtime_config(conn) -> dict[str, Any]:
    cfg = get_setting(conn, CONFIG_KEY, None)
    if cfg is None:
        set_setting(conn, CONFIG_KEY, _deep_copy(DEFAULT_CONFIG))
        cfg = get_setting(conn, CONFIG_KEY, None)
    if not isinstance(cfg, dict):
        raise ConfigError("config.runtime must be a JSON object")
    return cfg


def get_runtime_config(conn) -> dict[str, Any]:
    cfg = bootstrap_runtime_config(conn)
    errors = validate_runtime_config(cfg)
    if errors:
        raise ConfigError("Invalid config.runtime: " + "; ".join(errors))
    return cfg


def set_runtime_config(conn, cfg: dict[str, Any]) -> None:
    errors = validate_runtime_config(cfg)
    if errors:
        raise ConfigError("Invalid config.runtime: " + "; ".join(errors))
    set_setting(conn, CONFIG_KEY, _deep_copy(cfg))


def load_runtime_config(conn) -> Config:
    return build_config(get_runtime_config(conn))


def validate_runtime_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config.runtime", errors)
    return errors


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    for key in schema.keys():
        if key not in value:
            errors.append(f"missing {path}.{key}")
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if not isinstance(value, int) or isinstance(value, bool):
            errors.append(f"{path} must be an integer")
        elif value < 0:
            errors.append(f"{path} must be >= 0")
        return
    if isinstance(default, float):
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            errors.append(f"{path} must be a number")
        elif value < 0:
            errors.append(f"{path} must be >= 0")
        return
    if isinstance(default, str):
        if not isinstance(value, str):
            errors.append(f"{path} must be a string")
        return


def build_config(cfg: dict[str, Any]) -> Config:
    http_cfg = cfg.get("http") or {}
    acquisition_cfg = cfg.get("acquisition") or {}
    queue_cfg = cfg.get("queue") or {}
    approval_cfg = cfg.get("approval") or {}

    http = HttpConfig(
        user_agent=str(http_cfg.get("user_agent")),
        max_items=int(http_cfg.get("max_items")),
    )
    acquisition = AcquisitionConfig(
        max_attempts=int(acquisition_cfg.get("max_attempts")),
        backoff_base_ms=int(acquisition_cfg.get("backoff_base_ms")),
        backoff_cap_ms=int(acquisition_cfg.get("backoff_cap_ms")),
        run_budget_seconds=int(acquisition_cfg.get("run_budget_seconds")),
    )
    queue = QueueConfig(
        batch_size=int(queue_cfg.get("batch_size")),
        max_attempts=int(queue_cfg.get("max_attempts")),
        stale_after_seconds=int(queue_cfg.get("stale_after_seconds")),
        retry_base_minutes=float(queue_cfg.get("retry_base_minutes")),
        inter_job_delay_seconds=float(queue_cfg.get("inter_job_delay_seconds")),
        generator_timeout_seconds=int(queue_cfg.get("generator_timeout_seconds")),
        run_budget_seconds=int(queue_cfg.get("run_budget_seconds")),
        auto_enqueue_limit=int(queue_cfg.get("auto_enqueue_limit")),
    )
    approval = ApprovalConfig(default_threshold=float(approval_cfg.get("default_threshold")))
    return Config(http=http, acquisition=acquisition, queue=queue, approval=approval)


def load_catalog_file(path: str) -> dict[str, list[dict[str, Any]]]:
    """Read a YAML catalog with top-level ``tenants`` and ``sources`` lists."""
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except FileNotFoundError as exc:
        raise ConfigError(f"catalog not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("catalog must be a mapping")
    catalog: dict[str, list[dict[str, Any]]] = {}
    for key in ("tenants", "sources"):
        entries = data.get(key) or []
        if not isinstance(entries, list):
            raise ConfigError(f"{key} must be a list")
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict):
                raise ConfigError(f"{key}[{index}] must be a mapping")
            if not entry.get("id"):
                raise ConfigError(f"{key}[{index}] is missing id")
        catalog[key] = entries
    for index, entry in enumerate(catalog["sources"]):
        if not (entry.get("address") or entry.get("url")):
            raise ConfigError(f"sources[{index}] is missing address")
    return catalog


def _deep_copy(value: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(value))
