"""
Core selector cache components.
"""

from .selector_cache import SelectorCache
from .selector_resolver import SelectorResolver, ResolvedSelector

__all__ = [
    "SelectorCache",
    "SelectorResolver",
    "ResolvedSelector"
]
