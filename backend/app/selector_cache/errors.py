"""
Selector cache errors

None of these reach callers of the public cache API. The store raises them
internally and the facade turns them into degraded behaviour (memory-only
mode, skipped rows).
"""


class SelectorCacheError(Exception):
    """Base class for selector cache errors"""


class StorageUnavailableError(SelectorCacheError):
    """The durable store could not be opened or initialised"""

    def __init__(self, db_path: str, reason: str):
        self.db_path = db_path
        self.reason = reason
        super().__init__(f"Selector store unavailable at {db_path}: {reason}")


class MalformedRecordError(SelectorCacheError):
    """A stored row could not be decoded into a SelectorEntry"""

    def __init__(self, row_id: str, reason: str):
        self.row_id = row_id
        self.reason = reason
        super().__init__(f"Malformed selector row {row_id!r}: {reason}")
