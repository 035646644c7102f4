"""Build the sync service from configuration.

``load_runtime_config()`` resolves settings the way every entry point
needs them (``.env``, YAML files, environment, CLI overrides) and
``SyncRuntime.from_config()`` constructs the injected collaborators:
the canonical store, the clients of the enabled mirrors, the resolver,
the propagator, the ingestors and the reconciliation runner.  Direct
canonical edits are wired to propagation by subscribing the
``CanonicalIngestor`` to the store.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable

from dotenv import load_dotenv

from .canonical.models import utcnow
from .canonical.store import TripStore
from .clients.gcal import GoogleCalendarClient
from .clients.notion import NotionClient
from .config import Config, load_config
from .config_loader import discover_config_files, load_hierarchical_config
from .config_schema import UnifiedConfig, build_config
from .sync.engine import ReconciliationRunner
from .sync.ingest import CalendarIngestor, CanonicalIngestor, WorkspaceIngestor
from .sync.propagation import Propagator
from .sync.resolver import ConflictResolver, create_resolver

logger = logging.getLogger(__name__)


def load_runtime_config(
    overrides: dict[str, Any] | None = None,
) -> tuple[Config, UnifiedConfig]:
    """Resolve configuration with unified precedence.

    CLI overrides > env vars (``.env`` loaded first) > YAML config > defaults.

    Returns:
        The validated ``Config`` and the parsed YAML ``UnifiedConfig``
        (for sections ``Config`` does not carry, such as logging).

    Raises:
        ValueError: If any value is invalid.
    """
    # .env first so ${VAR} interpolation in YAML can use its values.
    load_dotenv()

    unified = UnifiedConfig()
    config_files = discover_config_files()
    if config_files:
        unified = build_config(load_hierarchical_config())
        logger.info("Configuration file: %s", config_files[0])

    overrides = overrides or {}
    config = load_config(
        notion_token=overrides.get("notion_token"),
        store_dir=overrides.get("store_dir"),
        debug=overrides.get("debug", False),
        yaml_fallbacks=unified.flat_fallbacks(),
    )
    return config, unified


@dataclass
class SyncRuntime:
    """All long-lived collaborators of the service."""

    config: Config
    store: TripStore
    resolver: ConflictResolver
    propagator: Propagator
    canonical: CanonicalIngestor
    runner: ReconciliationRunner
    notion: NotionClient | None = None
    gcal: GoogleCalendarClient | None = None

    @classmethod
    def from_config(
        cls,
        config: Config,
        notion: NotionClient | None = None,
        gcal: GoogleCalendarClient | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> "SyncRuntime":
        """Wire the service.

        Clients are created from credentials unless passed in; a store
        without credentials stays disabled.
        """
        if notion is None and config.workspace_enabled:
            notion = NotionClient(config.notion_token, config.notion_version)
        if gcal is None and config.calendar_enabled:
            gcal = GoogleCalendarClient(
                config.google_client_id,
                config.google_client_secret,
                config.google_refresh_token,
            )

        store = TripStore(Path(config.store_dir), clock=clock)
        resolver = create_resolver(config.conflict_strategy)
        propagator = Propagator(
            store, workspace=notion, calendar=gcal, default_timezone=config.timezone
        )
        canonical = CanonicalIngestor(resolver, propagator)
        store.subscribe(canonical)

        runner = ReconciliationRunner(
            store,
            resolver,
            propagator,
            workspace=WorkspaceIngestor(
                notion,
                lookback=timedelta(seconds=config.workspace_lookback),
                clock=clock,
            )
            if notion is not None
            else None,
            calendar=CalendarIngestor(
                gcal, clock=clock, default_timezone=config.timezone
            )
            if gcal is not None
            else None,
        )

        logger.info(
            "Sync runtime ready: store=%s workspace=%s calendar=%s strategy=%s",
            config.store_dir,
            "on" if notion is not None else "off",
            "on" if gcal is not None else "off",
            config.conflict_strategy,
        )
        return cls(
            config=config,
            store=store,
            resolver=resolver,
            propagator=propagator,
            canonical=canonical,
            runner=runner,
            notion=notion,
            gcal=gcal,
        )
