"""Persistence for rows, plans, rule sets and results."""

from payline.storage.store import PaylineStore

__all__ = ["PaylineStore"]
