"""
Selector Cache Models

Typed records shared by every tier of the cache:
- SelectorEntry: one known way to find one logical element on one class of page
- NavigationEdge: one observed page-to-page transition
- Lookup, prediction and stats results returned by the facade
"""

import json
import logging
import time
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import MalformedRecordError

logger = logging.getLogger(__name__)

# Confidence bands for the derived health state
FRESH_CONFIDENCE = 0.7
DEGRADED_CONFIDENCE = 0.3

HEALED_CONFIDENCE = 0.5


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds"""
    return int(time.time() * 1000)


def laplace_confidence(success_count: int, failure_count: int) -> float:
    """Laplace-smoothed success ratio: s / (s + f + 1)"""
    return success_count / (success_count + failure_count + 1)


def extract_domain(url: str) -> str:
    """Host of a URL, or the leading path segment when it isn't one"""
    if not url:
        return ""
    hostname = urlparse(url).hostname
    if hostname:
        return hostname
    return url.split("/")[0]


def merge_alternatives(
    existing: List[str],
    new: List[str],
    limit: int,
    exclude: Optional[str] = None
) -> List[str]:
    """Order-preserving union of two locator lists, truncated to limit"""
    merged: List[str] = []
    for alt in list(existing) + list(new):
        if not alt or alt == exclude or alt in merged:
            continue
        merged.append(alt)
    return merged[:limit]


class ElementType(str, Enum):
    """Kind of element a selector points at"""
    BUTTON = "button"
    INPUT = "input"
    SELECT = "select"
    LINK = "link"
    FORM = "form"
    OTHER = "other"


class SelectorHealth(str, Enum):
    """Derived from confidence, never stored"""
    FRESH = "fresh"
    DEGRADED = "degraded"
    EXHAUSTED = "exhausted"


class LookupSource(str, Enum):
    """Which tier answered a lookup"""
    CACHE = "cache"
    PREFETCH = "prefetch"
    DISCOVERY_MISS = "discovery-miss"


class SelectorEntry(BaseModel):
    """
    A cached selector.

    Frozen: every change goes through model_copy(update=...) and the new
    object replaces the old one wherever it is held.
    """
    model_config = ConfigDict(frozen=True, use_enum_values=False)

    id: str
    domain: str = ""
    url_pattern: str
    test_id: str
    css_selector: str
    xpath_selector: Optional[str] = None
    element_type: ElementType = ElementType.OTHER
    description: str = ""
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    success_count: int = Field(default=0, ge=0)
    failure_count: int = Field(default=0, ge=0)
    last_used: int = 0
    last_updated: int = 0
    ttl_ms: int = Field(default=0, ge=0)
    alternatives: List[str] = Field(default_factory=list)

    @field_validator("element_type", mode="before")
    @classmethod
    def _coerce_element_type(cls, value: Any) -> Any:
        if isinstance(value, str) and value not in ElementType._value2member_map_:
            return ElementType.OTHER
        return value

    @field_validator("description", mode="before")
    @classmethod
    def _none_description(cls, value: Any) -> Any:
        return "" if value is None else value

    def is_expired(self, now: int) -> bool:
        return self.last_updated + self.ttl_ms < now

    @property
    def health(self) -> SelectorHealth:
        if self.confidence >= FRESH_CONFIDENCE:
            return SelectorHealth.FRESH
        if self.confidence >= DEGRADED_CONFIDENCE or self.alternatives:
            return SelectorHealth.DEGRADED
        return SelectorHealth.EXHAUSTED

    def with_outcome(self, success: bool, now: int) -> "SelectorEntry":
        """Copy with one more success or failure and confidence recomputed"""
        success_count = self.success_count + (1 if success else 0)
        failure_count = self.failure_count + (0 if success else 1)
        return self.model_copy(update={
            "success_count": success_count,
            "failure_count": failure_count,
            "confidence": laplace_confidence(success_count, failure_count),
            "last_used": now,
        })

    def to_row(self) -> Dict[str, Any]:
        """Column values for the selectors table"""
        return {
            "id": self.id,
            "domain": self.domain,
            "url_pattern": self.url_pattern,
            "test_id": self.test_id,
            "css_selector": self.css_selector,
            "xpath_selector": self.xpath_selector,
            "element_type": self.element_type.value,
            "description": self.description,
            "confidence": self.confidence,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "last_used": self.last_used,
            "last_updated": self.last_updated,
            "ttl_ms": self.ttl_ms,
            "alternatives": json.dumps(self.alternatives),
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SelectorEntry":
        """
        Decode a selectors-table row.

        A broken alternatives column decodes to an empty list. Anything
        else that fails validation raises MalformedRecordError.
        """
        data = dict(row)
        row_id = str(data.get("id", "?"))
        data["alternatives"] = decode_alternatives(data.get("alternatives"), row_id)

        for key in ("last_used", "last_updated", "ttl_ms", "success_count", "failure_count"):
            if data.get(key) is None:
                data[key] = 0

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise MalformedRecordError(row_id, str(e)) from e


def decode_alternatives(raw: Any, row_id: str = "?") -> List[str]:
    """JSON-text alternatives column to a list of strings, [] when unreadable"""
    if raw is None or raw == "":
        return []
    if isinstance(raw, list):
        value = raw
    else:
        try:
            value = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"[SELECTOR-MODEL] Row {row_id}: undecodable alternatives, treating as empty")
            return []

    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        logger.warning(f"[SELECTOR-MODEL] Row {row_id}: alternatives is not a list of strings, treating as empty")
        return []
    return value


class SelectorDraft(BaseModel):
    """
    What a caller supplies to cache a newly discovered selector.

    confidence is only a seed for an entry with no recorded outcomes. When
    success or failure counts are supplied, confidence is derived from them.
    """
    url_pattern: str
    test_id: str
    css_selector: str
    domain: Optional[str] = None
    xpath_selector: Optional[str] = None
    element_type: ElementType = ElementType.OTHER
    description: str = ""
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    success_count: int = Field(default=0, ge=0)
    failure_count: int = Field(default=0, ge=0)
    ttl_ms: Optional[int] = Field(default=None, ge=0)
    alternatives: List[str] = Field(default_factory=list)

    def to_entry(self, entry_id: str, now: int, default_ttl_ms: int, max_alternatives: int) -> SelectorEntry:
        confidence = self.confidence
        if self.success_count or self.failure_count:
            confidence = laplace_confidence(self.success_count, self.failure_count)

        return SelectorEntry(
            id=entry_id,
            domain=self.domain if self.domain is not None else extract_domain(self.url_pattern),
            url_pattern=self.url_pattern,
            test_id=self.test_id,
            css_selector=self.css_selector,
            xpath_selector=self.xpath_selector,
            element_type=self.element_type,
            description=self.description,
            confidence=confidence,
            success_count=self.success_count,
            failure_count=self.failure_count,
            last_used=now,
            last_updated=now,
            ttl_ms=self.ttl_ms or default_ttl_ms,
            alternatives=merge_alternatives([], self.alternatives, max_alternatives, exclude=self.css_selector),
        )


class NavigationEdge(BaseModel):
    """One observed (from_url, to_url) transition"""
    from_url: str
    to_url: str
    count: int = 1
    last_seen: int = 0


class NavigationPrediction(BaseModel):
    to_url: str
    probability: float


class SelectorLookupResult(BaseModel):
    entry: SelectorEntry
    source: LookupSource
    lookup_time_ms: float = 0.0


class OutcomeResult(BaseModel):
    """A reported outcome: the entry it was counted against, plus any heal"""
    entry: Optional[SelectorEntry] = None
    healed: Optional[SelectorEntry] = None

    @property
    def confidence(self) -> float:
        return self.entry.confidence if self.entry is not None else 0.0


class CacheStats(BaseModel):
    total_selectors: int = 0
    memory_cache_size: int = 0
    prefetch_queue_size: int = 0
    avg_confidence: float = 0.0
    hit_rate: float = 0.0
    memory_hits: int = 0
    prefetch_hits: int = 0
    store_hits: int = 0
    misses: int = 0
    memory_only: bool = False


class CleanupReport(BaseModel):
    memory_removed: int = 0
    prefetch_removed: int = 0
    store_removed: int = 0

    @property
    def total(self) -> int:
        return self.memory_removed + self.prefetch_removed + self.store_removed
