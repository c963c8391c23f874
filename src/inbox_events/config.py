"""Configuration models, YAML loader and composition root."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from .backend import EventStoreBackend
from .bus import DEFAULT_HANDLER_TIMEOUT_SECONDS, EventBus
from .exceptions import ConfigError, ConfigErrorCodes
from .http_backend import HttpEventStoreBackend
from .logger import new_logger
from .memory import InMemoryEventStoreBackend
from .store import DEFAULT_CONFLICT_RETRIES, DEFAULT_SNAPSHOT_EVERY, EventStore
from .webhooks import SubscriptionStore, WebhookDispatcher


class BackendSection(BaseModel):
    """Event store backend settings."""

    kind: Literal["memory", "http"] = "memory"
    rest_url: str = ""
    api_key: str = ""
    timeout_seconds: float = Field(default=10.0, gt=0)

    @model_validator(mode="after")
    def _require_rest_url(self) -> BackendSection:
        if self.kind == "http" and not self.rest_url:
            raise ValueError("backend.rest_url is required when kind is 'http'")
        return self


class StoreSection(BaseModel):
    snapshot_every: int = Field(default=DEFAULT_SNAPSHOT_EVERY, ge=0)
    conflict_retries: int = Field(default=DEFAULT_CONFLICT_RETRIES, ge=0)


class BusSection(BaseModel):
    handler_timeout_seconds: float | None = Field(
        default=DEFAULT_HANDLER_TIMEOUT_SECONDS, gt=0
    )


class WebhookSection(BaseModel):
    timeout_seconds: float = Field(default=10.0, gt=0)


class LogSection(BaseModel):
    level: str = "INFO"
    format: Literal["json", "text"] = "json"


class EventsConfig(BaseModel):
    """Top-level configuration."""

    backend: BackendSection = Field(default_factory=BackendSection)
    store: StoreSection = Field(default_factory=StoreSection)
    bus: BusSection = Field(default_factory=BusSection)
    webhook: WebhookSection = Field(default_factory=WebhookSection)
    log: LogSection = Field(default_factory=LogSection)


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into ``base`` recursively; lists are replaced."""
    result: dict[str, Any] = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(
            code=ConfigErrorCodes.READ_FILE,
            message=f"Failed to read config file: {path}",
            cause=e,
        ) from e
    try:
        data: dict[str, Any] = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigError(
            code=ConfigErrorCodes.PARSE_YAML,
            message=f"Failed to parse YAML: {path}",
            cause=e,
        ) from e
    return data


def load(base_path: Path, env_path: Path | None = None) -> EventsConfig:
    """Load configuration from ``base_path``, overlaid with ``env_path`` if it exists."""
    data = _read_yaml(base_path)
    if env_path is not None and env_path.exists():
        data = deep_merge(data, _read_yaml(env_path))
    try:
        return EventsConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(
            code=ConfigErrorCodes.VALIDATION,
            message=f"Config validation failed: {e}",
            cause=e,
        ) from e


def build_backend(config: EventsConfig) -> EventStoreBackend:
    section = config.backend
    if section.kind == "http":
        return HttpEventStoreBackend(
            rest_url=section.rest_url,
            api_key=section.api_key,
            timeout_seconds=section.timeout_seconds,
        )
    return InMemoryEventStoreBackend()


def build_event_bus(
    config: EventsConfig | None = None, configure_logging: bool = True
) -> EventBus:
    """Wire backend, EventStore and EventBus from configuration.

    Pass ``configure_logging=False`` when the host application sets up
    structlog itself.
    """
    config = config or EventsConfig()
    if configure_logging:
        new_logger(config.log.level, config.log.format)
    store = EventStore(
        build_backend(config),
        snapshot_every=config.store.snapshot_every,
        conflict_retries=config.store.conflict_retries,
    )
    return EventBus(store, handler_timeout_seconds=config.bus.handler_timeout_seconds)


def build_webhook_dispatcher(
    config: EventsConfig, subscriptions: SubscriptionStore
) -> WebhookDispatcher:
    return WebhookDispatcher(subscriptions, timeout_seconds=config.webhook.timeout_seconds)
