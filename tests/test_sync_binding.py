"""Tests for event identity binding."""

import logging

import pytest

from itinerary_sync.canonical.models import Trip
from itinerary_sync.sync.binding import IdentityBinder
from itinerary_sync.sync.models import CandidateChange, Source


@pytest.fixture
def binder(store):
    store.create_trip(Trip(id="tokyo"))
    store.save_item("tokyo", {"title": "Ramen"}, key="lunch")
    store.save_item("tokyo", {"title": "Hotel"}, key="hotel")
    store.record_mirror("tokyo", "lunch", "workspace", "page-1")
    store.record_mirror("tokyo", "hotel", "calendar", "evt-7")
    return IdentityBinder(store)


class TestIdentityBinder:
    """Resolving external ids to canonical items."""

    def test_lookup_by_binding(self, binder) -> None:
        """Items are found by their external id."""
        item = binder.lookup("tokyo", Source.WORKSPACE, "page-1")
        assert item.key == "lunch"

    def test_bindings_are_per_store(self, binder) -> None:
        """Workspace and calendar ids live in separate namespaces."""
        assert binder.lookup("tokyo", Source.CALENDAR, "page-1") is None
        assert binder.lookup("tokyo", Source.CALENDAR, "evt-7").key == "hotel"

    def test_unbound_record(self, binder) -> None:
        """An unknown external id finds nothing."""
        assert binder.lookup("tokyo", Source.WORKSPACE, "page-404") is None

    def test_back_reference_fallback(self, binder) -> None:
        """A record carrying the canonical key resolves even without a binding."""
        item = binder.lookup("tokyo", Source.CALENDAR, "evt-1", key="lunch")
        assert item.key == "lunch"

    def test_back_reference_to_unknown_key(self, binder) -> None:
        """A back-reference to a missing key finds nothing."""
        assert binder.lookup("tokyo", Source.CALENDAR, "evt-1", key="ghost") is None

    def test_back_reference_to_item_bound_elsewhere(self, binder, caplog) -> None:
        """An item already mirrored by another record is not claimed twice."""
        with caplog.at_level(logging.WARNING, logger="itinerary_sync.sync.binding"):
            item = binder.lookup("tokyo", Source.WORKSPACE, "page-2", key="lunch")
        assert item is None
        assert "claims item lunch" in caplog.text

    def test_canonical_source_uses_key(self, binder) -> None:
        """Canonical candidates resolve by item key."""
        assert binder.lookup("tokyo", Source.CANONICAL, "hotel").title == "Hotel"

    def test_resolve_candidate(self, binder, clock) -> None:
        """Candidates resolve by binding first, then back-reference."""
        candidate = CandidateChange(
            source=Source.WORKSPACE,
            external_id="page-1",
            trip_id="tokyo",
            timestamp=clock.now,
        )
        assert binder.resolve(candidate).key == "lunch"
