"""Shared pytest fixtures for itinerary-sync tests.

The external stores are replaced by in-memory fakes that behave like the
real APIs where the sync engine depends on it: every write stamps the
record with its own modification time, and the fake calendar reports
changed events through an incremental sync token.
"""

import itertools
from datetime import datetime, timedelta, timezone

import pytest
from dotenv import load_dotenv

from itinerary_sync.canonical.models import Trip
from itinerary_sync.canonical.store import TripStore
from itinerary_sync.config import Config
from itinerary_sync.runtime import SyncRuntime
from itinerary_sync.sync.mapper import parse_timestamp, workspace_properties

load_dotenv()

CONFIG_ENV_VARS = (
    "NOTION_TOKEN",
    "NOTION_VERSION",
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "GOOGLE_REFRESH_TOKEN",
    "ITINERARY_STORE_DIR",
    "ITINERARY_POLL_INTERVAL",
    "ITINERARY_WORKSPACE_LOOKBACK",
    "ITINERARY_MAX_PARALLEL_TRIPS",
    "ITINERARY_TIMEZONE",
    "ITINERARY_CONFLICT_STRATEGY",
    "ITINERARY_DEBUG",
    "ITINERARY_SYNC_CONFIG",
    "LOG_LEVEL",
)

START = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require live Notion / Google Calendar credentials",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "live: mark test as requiring live Notion / Google Calendar credentials",
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Deterministic clock shared by the store and the fakes."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


# ---------------------------------------------------------------------------
# External store fakes
# ---------------------------------------------------------------------------


class FakeNotion:
    """In-memory Notion database with ``NotionClient``'s interface."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.pages: dict[str, dict] = {}
        self.calls: list[tuple] = []
        self.error: Exception | None = None
        self._ids = itertools.count(1)

    def query_modified_since(self, database_id, after):
        self.calls.append(("query", database_id, after))
        if self.error is not None:
            raise self.error
        # Like the real database query, trashed rows are never returned.
        pages = [
            p
            for p in self.pages.values()
            if parse_timestamp(p["last_edited_time"]) > after
            and not p.get("archived")
            and not p.get("in_trash")
        ]
        return iter(sorted(pages, key=lambda p: p["last_edited_time"]))

    def create_page(self, database_id, properties):
        self.calls.append(("create", database_id, properties))
        if self.error is not None:
            raise self.error
        page_id = f"page-{next(self._ids)}"
        page = {
            "id": page_id,
            "last_edited_time": self.clock().isoformat(),
            "archived": False,
            "properties": dict(properties),
        }
        self.pages[page_id] = page
        return page

    def update_page(self, page_id, properties=None, archived=None):
        self.calls.append(("update", page_id, properties, archived))
        if self.error is not None:
            raise self.error
        page = self.pages[page_id]
        page["properties"].update(properties or {})
        if archived is not None:
            page["archived"] = archived
        page["last_edited_time"] = self.clock().isoformat()
        return page

    def user_edit(self, page_id, at: datetime, key=None, **fields):
        """Simulate a person editing (or creating) a row in Notion."""
        page = self.pages.setdefault(
            page_id, {"id": page_id, "archived": False, "properties": {}}
        )
        page["properties"].update(workspace_properties(fields, key=key))
        page["last_edited_time"] = at.isoformat()
        return page

    def writes(self):
        return [c for c in self.calls if c[0] in ("create", "update")]


class FakeCalendar:
    """In-memory Google Calendar with ``GoogleCalendarClient``'s interface."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.events: dict[str, dict] = {}
        self.calls: list[tuple] = []
        self.error: Exception | None = None
        self._changed: list[str] = []
        self._ids = itertools.count(1)
        self._tokens = itertools.count(1)

    def list_changes(self, calendar_id, sync_token=None):
        self.calls.append(("list", calendar_id, sync_token))
        if self.error is not None:
            raise self.error
        if sync_token is None:
            events = list(self.events.values())
        else:
            events = [self.events[i] for i in dict.fromkeys(self._changed)]
        self._changed.clear()
        return [dict(e) for e in events], f"token-{next(self._tokens)}"

    def _touch(self, event):
        event["updated"] = self.clock().isoformat()
        self._changed.append(event["id"])

    def insert_event(self, calendar_id, body):
        self.calls.append(("insert", calendar_id, body))
        event = {**body, "id": f"evt-{next(self._ids)}", "status": "confirmed"}
        self.events[event["id"]] = event
        self._touch(event)
        return dict(event)

    def patch_event(self, calendar_id, event_id, body):
        self.calls.append(("patch", calendar_id, event_id, body))
        event = self.events[event_id]
        event.update(body)
        self._touch(event)
        return dict(event)

    def delete_event(self, calendar_id, event_id):
        self.calls.append(("delete", calendar_id, event_id))
        event = self.events.get(event_id)
        if event is not None:
            event["status"] = "cancelled"
            self._touch(event)

    def user_edit(self, event_id, at: datetime, **body):
        """Simulate a person editing (or creating) an event in Google Calendar."""
        event = self.events.setdefault(
            event_id, {"id": event_id, "status": "confirmed"}
        )
        event.update(body)
        event["updated"] = at.isoformat()
        self._changed.append(event_id)
        return event

    def writes(self):
        return [c for c in self.calls if c[0] != "list"]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every config env var so tests see only what they set."""
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock):
    return TripStore(tmp_path / "trips", clock=clock)


@pytest.fixture
def fake_notion(clock):
    return FakeNotion(clock)


@pytest.fixture
def fake_gcal(clock):
    return FakeCalendar(clock)


@pytest.fixture
def test_config(tmp_path):
    return Config(
        notion_token="secret_test",
        google_client_id="client",
        google_client_secret="client-secret",
        google_refresh_token="refresh",
        store_dir=str(tmp_path / "trips"),
    )


@pytest.fixture
def runtime(test_config, fake_notion, fake_gcal, clock):
    """Fully wired runtime backed by the fakes and a temp store."""
    return SyncRuntime.from_config(
        test_config, notion=fake_notion, gcal=fake_gcal, clock=clock
    )


@pytest.fixture
def trip(runtime):
    """A trip bound to a Notion database and a Google Calendar."""
    return runtime.store.create_trip(
        Trip(
            id="tokyo",
            title="Tokyo 2026",
            external_workspace_page_id="trip-page",
            external_workspace_database_id="db-1",
            external_calendar_id="cal-1",
            external_calendar_channel_id="chan-1",
        )
    )
