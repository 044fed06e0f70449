"""Dedup/memoization engine over a tag store."""

from .dedupe import DedupeCache, DedupeFunction

__all__ = ["DedupeCache", "DedupeFunction"]
