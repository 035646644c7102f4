"""Async helpers shared by the webhook server and the poll loop."""

from .async_utils import run_periodic, run_sync

__all__ = ["run_periodic", "run_sync"]
