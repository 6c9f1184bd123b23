"""
Selector Knowledge

Cached selector records, the tiers that hold them and the reliability
bookkeeping that keeps them honest.
"""

from .models import SelectorEntry, SelectorDraft
from .selector_store import SelectorStore
from .memory_cache import VolatileCache, PrefetchQueue
from .write_queue import WriteBehindQueue
from .reliability import ReliabilityTracker

__all__ = [
    "SelectorEntry",
    "SelectorDraft",
    "SelectorStore",
    "VolatileCache",
    "PrefetchQueue",
    "WriteBehindQueue",
    "ReliabilityTracker"
]
