class SRSError(Exception):
    """Base class for scheduler errors."""


class SyncStateError(SRSError):
    """Raised when a synchronized store is asked for an invalid state transition."""


class CorruptCacheError(SRSError):
    """Raised when a persisted record collection cannot be decoded."""
