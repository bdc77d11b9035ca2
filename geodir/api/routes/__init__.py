"""API route modules."""

from . import confirmation, dispatches, entries, health, ratings, subscriptions

__all__ = ["confirmation", "dispatches", "entries", "health", "ratings", "subscriptions"]
