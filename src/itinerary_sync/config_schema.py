"""Unified configuration schema for itinerary_sync.

Defines Pydantic models for the YAML config structure with dedicated
sections for each external store, the canonical store, the sync loop,
the webhook server and logging.

Usage:
    from itinerary_sync.config_schema import build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
    fallbacks = unified.flat_fallbacks()
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class NotionConfig(BaseModel):
    """Workspace store (Notion) connection settings.

    All fields are optional: without a token the workspace store is
    simply not synchronized.
    """

    token: str | None = Field(
        default=None, description="Notion integration token"
    )
    version: str = Field(
        default="2022-06-28", description="Notion-Version header"
    )

    model_config = {"frozen": True}


class GoogleConfig(BaseModel):
    """Calendar store (Google Calendar) OAuth settings."""

    client_id: str | None = Field(default=None)
    client_secret: str | None = Field(default=None)
    refresh_token: str | None = Field(default=None)

    model_config = {"frozen": True}


class StoreConfig(BaseModel):
    """Canonical document store settings."""

    directory: str = Field(
        default=".itinerary_sync/trips",
        description="Directory holding one JSON document per trip",
    )

    model_config = {"frozen": True}


class SyncConfig(BaseModel):
    """Reconciliation loop settings."""

    poll_interval: int = Field(
        default=600,
        ge=10,
        le=86400,
        description="Seconds between workspace polls",
    )
    workspace_lookback: int = Field(
        default=60,
        ge=0,
        le=3600,
        description="Seconds subtracted from the workspace watermark when querying",
    )
    max_parallel_trips: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Trips reconciled concurrently per run (1-64)",
    )
    timezone: str = Field(
        default="Asia/Taipei",
        description="Default timezone for calendar events",
    )
    conflict_strategy: str = Field(
        default="last-writer-wins",
        description="last-writer-wins or canonical-wins",
    )

    model_config = {"frozen": True}


class WebhookConfig(BaseModel):
    """Inbound webhook server settings."""

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080, ge=1, le=65535)

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: "text" or "json".
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: str = Field(default="text", description="text or json")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    notion: NotionConfig = Field(default_factory=NotionConfig)
    google: GoogleConfig = Field(default_factory=GoogleConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}

    def flat_fallbacks(self) -> dict[str, Any]:
        """Flatten the sections into the keyword names ``load_config`` uses.

        ``None`` values are dropped so they never shadow an env var.
        """
        flat = {
            "notion_token": self.notion.token,
            "notion_version": self.notion.version,
            "google_client_id": self.google.client_id,
            "google_client_secret": self.google.client_secret,
            "google_refresh_token": self.google.refresh_token,
            "store_dir": self.store.directory,
            "poll_interval": self.sync.poll_interval,
            "workspace_lookback": self.sync.workspace_lookback,
            "max_parallel_trips": self.sync.max_parallel_trips,
            "timezone": self.sync.timezone,
            "conflict_strategy": self.sync.conflict_strategy,
            "host": self.webhook.host,
            "port": self.webhook.port,
        }
        return {k: v for k, v in flat.items() if v is not None}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)
