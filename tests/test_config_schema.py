"""Tests for itinerary_sync.config_schema: Pydantic config models."""

import pytest
from pydantic import ValidationError

from itinerary_sync.config_schema import (
    LoggingConfig,
    NotionConfig,
    SyncConfig,
    UnifiedConfig,
    WebhookConfig,
    build_config,
)

# -------------------------------------------------------------------------
# UnifiedConfig
# -------------------------------------------------------------------------


class TestUnifiedConfig:
    """Tests for the top-level UnifiedConfig model."""

    def test_empty_dict_produces_valid_defaults(self):
        """An empty document validates with every default."""
        config = build_config({})
        assert config.notion.token is None
        assert config.notion.version == "2022-06-28"
        assert config.store.directory == ".itinerary_sync/trips"
        assert config.sync.poll_interval == 600
        assert config.webhook.port == 8080
        assert config.logging.level == "INFO"

    def test_full_config_with_all_sections(self):
        """Every section is parsed."""
        config = build_config(
            {
                "notion": {"token": "secret_abc"},
                "google": {
                    "client_id": "client",
                    "client_secret": "client-secret",
                    "refresh_token": "refresh",
                },
                "store": {"directory": "/srv/trips"},
                "sync": {
                    "poll_interval": 300,
                    "workspace_lookback": 120,
                    "max_parallel_trips": 8,
                    "timezone": "Asia/Tokyo",
                    "conflict_strategy": "canonical-wins",
                },
                "webhook": {"host": "127.0.0.1", "port": 9000},
                "logging": {"level": "DEBUG", "format": "json"},
            }
        )
        assert config.google.refresh_token == "refresh"
        assert config.sync.max_parallel_trips == 8
        assert config.webhook.host == "127.0.0.1"
        assert config.logging.format == "json"

    def test_unknown_sections_ignored(self):
        """Unknown top-level sections are ignored."""
        config = build_config({"firestore": {"project": "x"}, "sync": {}})
        assert config.sync.poll_interval == 600

    def test_frozen_model_prevents_mutation(self):
        """The parsed config cannot be mutated."""
        config = UnifiedConfig()
        with pytest.raises(ValidationError):
            config.sync = SyncConfig()

    def test_flat_fallbacks_drop_unset_values(self):
        """Unset values are left out of the flat fallbacks."""
        flat = build_config({"sync": {"timezone": "Asia/Tokyo"}}).flat_fallbacks()
        assert flat["timezone"] == "Asia/Tokyo"
        assert flat["store_dir"] == ".itinerary_sync/trips"
        assert "notion_token" not in flat
        assert "google_client_id" not in flat

    def test_flat_fallbacks_carry_credentials(self):
        """Credentials are exposed under their flat names."""
        flat = build_config(
            {"notion": {"token": "secret_abc"}, "google": {"client_id": "client"}}
        ).flat_fallbacks()
        assert flat["notion_token"] == "secret_abc"
        assert flat["google_client_id"] == "client"


# -------------------------------------------------------------------------
# Section models
# -------------------------------------------------------------------------


class TestSectionModels:
    def test_notion_zero_config(self):
        """The Notion section needs no values."""
        assert NotionConfig().token is None

    @pytest.mark.parametrize(
        "field, value",
        [
            ("poll_interval", 5),
            ("poll_interval", 86401),
            ("workspace_lookback", -1),
            ("max_parallel_trips", 0),
            ("max_parallel_trips", 65),
        ],
    )
    def test_sync_bounds(self, field, value):
        """Sync settings outside their range are rejected."""
        with pytest.raises(ValidationError):
            SyncConfig(**{field: value})

    def test_webhook_port_bounds(self):
        """The webhook port must be a valid port."""
        with pytest.raises(ValidationError):
            WebhookConfig(port=0)

    def test_logging_defaults(self):
        """Logging defaults to INFO text on stderr only."""
        config = LoggingConfig()
        assert (config.level, config.file, config.format) == ("INFO", None, "text")

    def test_invalid_section_type_rejected(self):
        """Wrongly typed values are rejected."""
        with pytest.raises(ValidationError):
            build_config({"sync": {"poll_interval": "often"}})
