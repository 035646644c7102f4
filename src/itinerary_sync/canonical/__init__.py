"""Canonical document store: the durable source of truth for trips."""

from .models import BINDING_FIELDS, CONTENT_FIELDS, ItineraryItem, Trip
from .store import (
    BatchConflictError,
    ItemNotFoundError,
    ItemWrite,
    StagedMutation,
    TripBatch,
    TripNotFoundError,
    TripStore,
)

__all__ = [
    "BINDING_FIELDS",
    "BatchConflictError",
    "CONTENT_FIELDS",
    "ItemNotFoundError",
    "ItemWrite",
    "ItineraryItem",
    "StagedMutation",
    "Trip",
    "TripBatch",
    "TripNotFoundError",
    "TripStore",
]
