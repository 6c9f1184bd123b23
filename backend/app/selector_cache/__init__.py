"""
Selector Cache

Fast, self-healing selector lookups for the browser agent:
- Tiered reads (memory -> prefetch queue -> SQLite) so most lookups never touch disk
- Laplace-smoothed confidence learned from every reported success and failure
- Auto-healing through stored alternative locators
- Predictive prefetch for the pages the agent is likely to visit next
"""

from .config import CacheConfig
from .errors import SelectorCacheError, StorageUnavailableError, MalformedRecordError
from .telemetry import TelemetrySink, NullTelemetrySink, LoggingTelemetrySink, JsonlTelemetrySink
from .knowledge.models import (
    SelectorEntry,
    SelectorDraft,
    SelectorHealth,
    ElementType,
    LookupSource,
    SelectorLookupResult,
    NavigationEdge,
    NavigationPrediction,
    CacheStats,
    CleanupReport
)
from .knowledge.selector_store import SelectorStore
from .knowledge.memory_cache import VolatileCache, PrefetchQueue
from .knowledge.reliability import ReliabilityTracker
from .context.navigation_model import NavigationModel
from .core.selector_cache import SelectorCache
from .core.selector_resolver import SelectorResolver, ResolvedSelector

__all__ = [
    # Core
    "SelectorCache",
    "SelectorResolver",
    "ResolvedSelector",
    "CacheConfig",
    # Knowledge
    "SelectorStore",
    "VolatileCache",
    "PrefetchQueue",
    "ReliabilityTracker",
    # Context
    "NavigationModel",
    # Models
    "SelectorEntry",
    "SelectorDraft",
    "SelectorHealth",
    "ElementType",
    "LookupSource",
    "SelectorLookupResult",
    "NavigationEdge",
    "NavigationPrediction",
    "OutcomeResult",
    "CacheStats",
    "CleanupReport",
    # Telemetry
    "TelemetrySink",
    "NullTelemetrySink",
    "LoggingTelemetrySink",
    "JsonlTelemetrySink",
    # Errors
    "SelectorCacheError",
    "StorageUnavailableError",
    "MalformedRecordError"
]

__version__ = "1.0.0"
