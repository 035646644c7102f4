"""Inbound HTTP surface (calendar push notifications)."""

from .app import create_app

__all__ = ["create_app"]
