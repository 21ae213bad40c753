"""Durable store: typed JSON collections for every moderation entity."""

from modguard.store.json_store import JsonCollection, ModerationStore

__all__ = ["JsonCollection", "ModerationStore"]
