"""Runtime configuration for the itinerary sync service.

Reads store credentials and loop settings from CLI args, environment
variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    NOTION_TOKEN: Notion integration token (optional; disables workspace sync when unset)
    NOTION_VERSION: Notion-Version header (optional, default: 2022-06-28)
    GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET / GOOGLE_REFRESH_TOKEN:
        OAuth credentials for Google Calendar (optional; all three or none)
    ITINERARY_STORE_DIR: Canonical store directory (default: .itinerary_sync/trips)
    ITINERARY_POLL_INTERVAL: Seconds between workspace polls (default: 600)
    ITINERARY_WORKSPACE_LOOKBACK: Watermark overlap in seconds (default: 60)
    ITINERARY_MAX_PARALLEL_TRIPS: Trips reconciled concurrently (default: 4)
    ITINERARY_TIMEZONE: Default event timezone (default: Asia/Taipei)
    ITINERARY_CONFLICT_STRATEGY: last-writer-wins (default) or canonical-wins
    ITINERARY_DEBUG: Enable debug logging (default: false)
"""

import logging
import os
from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class Config:
    notion_token: str | None = None
    notion_version: str = "2022-06-28"
    google_client_id: str | None = None
    google_client_secret: str | None = None
    google_refresh_token: str | None = None
    store_dir: str = ".itinerary_sync/trips"
    poll_interval: int = 600
    workspace_lookback: int = 60
    max_parallel_trips: int = 4
    timezone: str = "Asia/Taipei"
    conflict_strategy: str = "last-writer-wins"
    host: str = "0.0.0.0"
    port: int = 8080
    debug: bool = False

    @property
    def workspace_enabled(self) -> bool:
        return bool(self.notion_token)

    @property
    def calendar_enabled(self) -> bool:
        return bool(
            self.google_client_id
            and self.google_client_secret
            and self.google_refresh_token
        )


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If a numeric setting is out of range, the timezone is
            unknown, or the Google credentials are only partially set.
    """
    google = [
        config.google_client_id,
        config.google_client_secret,
        config.google_refresh_token,
    ]
    if any(google) and not all(google):
        raise ValueError(
            "Google Calendar credentials are incomplete. Set all of "
            "GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET and GOOGLE_REFRESH_TOKEN, "
            "or none of them to disable calendar sync."
        )

    if not config.store_dir.strip():
        raise ValueError(
            "Store directory cannot be empty. Set ITINERARY_STORE_DIR."
        )

    try:
        ZoneInfo(config.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(
            f"Unknown timezone '{config.timezone}'. Use an IANA name such as 'Asia/Taipei'."
        ) from None

    if config.conflict_strategy not in ("last-writer-wins", "canonical-wins"):
        raise ValueError(
            f"Unknown conflict strategy '{config.conflict_strategy}': "
            "use last-writer-wins or canonical-wins"
        )

    if not config.workspace_enabled:
        logger.info("NOTION_TOKEN not set; workspace sync disabled")
    if not config.calendar_enabled:
        logger.info("Google credentials not set; calendar sync disabled")


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _get_int(
    env_key: str,
    fb: dict,
    fb_key: str,
    default: int,
    low: int,
    high: int,
) -> int:
    """Resolve a bounded integer: env > YAML > default."""
    raw = os.getenv(env_key)
    source = env_key
    if raw is None:
        if fb_key not in fb:
            return default
        raw = fb[fb_key]
        source = f"config '{fb_key}'"
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValueError(
            f"Invalid {source} '{raw}': must be a number between {low} and {high}"
        ) from None
    if not (low <= value <= high):
        raise ValueError(
            f"Invalid {source} '{raw}': must be a number between {low} and {high}"
        )
    return value


def load_config(
    notion_token: str | None = None,
    store_dir: str | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        notion_token: Override Notion token.
        store_dir: Override canonical store directory.
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Flat dict from ``UnifiedConfig.flat_fallbacks()``.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If a value is invalid after checking all sources.
    """
    fb = yaml_fallbacks or {}

    def _str(cli: str | None, env_key: str, fb_key: str) -> str | None:
        value = cli or os.getenv(env_key) or fb.get(fb_key)
        return value.strip() if isinstance(value, str) else value

    if debug:
        final_debug = True
    else:
        env_debug = _get_bool_env("ITINERARY_DEBUG")
        final_debug = env_debug if env_debug is not None else False

    config = Config(
        notion_token=_str(notion_token, "NOTION_TOKEN", "notion_token"),
        notion_version=_str(None, "NOTION_VERSION", "notion_version")
        or "2022-06-28",
        google_client_id=_str(None, "GOOGLE_CLIENT_ID", "google_client_id"),
        google_client_secret=_str(
            None, "GOOGLE_CLIENT_SECRET", "google_client_secret"
        ),
        google_refresh_token=_str(
            None, "GOOGLE_REFRESH_TOKEN", "google_refresh_token"
        ),
        store_dir=_str(store_dir, "ITINERARY_STORE_DIR", "store_dir")
        or ".itinerary_sync/trips",
        poll_interval=_get_int(
            "ITINERARY_POLL_INTERVAL", fb, "poll_interval", 600, 10, 86400
        ),
        workspace_lookback=_get_int(
            "ITINERARY_WORKSPACE_LOOKBACK",
            fb,
            "workspace_lookback",
            60,
            0,
            3600,
        ),
        max_parallel_trips=_get_int(
            "ITINERARY_MAX_PARALLEL_TRIPS",
            fb,
            "max_parallel_trips",
            4,
            1,
            64,
        ),
        timezone=_str(None, "ITINERARY_TIMEZONE", "timezone")
        or "Asia/Taipei",
        conflict_strategy=_str(
            None, "ITINERARY_CONFLICT_STRATEGY", "conflict_strategy"
        )
        or "last-writer-wins",
        host=fb.get("host", "0.0.0.0"),
        port=int(fb.get("port", 8080)),
        debug=final_debug,
    )

    validate_config(config)

    return config
