"""Spaced-repetition scheduling for words, phrases and verb conjugations."""

from .errors import CorruptCacheError, SRSError, SyncStateError
from .models import CatalogItem, Difficulty, ReviewDomain, ReviewStats, SRSRecord
from .reminders import ReviewReminder
from .srs import (
    create_initial,
    is_due,
    next_state,
    priority,
    quality_from_outcome,
    select_due,
    sort_by_priority,
    summarize,
)

__all__ = [
    "CatalogItem",
    "CorruptCacheError",
    "Difficulty",
    "ReviewDomain",
    "ReviewReminder",
    "ReviewStats",
    "SRSError",
    "SRSRecord",
    "SyncStateError",
    "create_initial",
    "is_due",
    "next_state",
    "priority",
    "quality_from_outcome",
    "select_due",
    "sort_by_priority",
    "summarize",
]
