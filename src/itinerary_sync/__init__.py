"""Keep a trip itinerary consistent across a canonical document store,
a Notion workspace and a Google calendar."""

__version__ = "0.1.0"
