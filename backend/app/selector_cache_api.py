"""
Selector Cache API

HTTP endpoints exposing the selector cache to out-of-process agent
components. A miss is a normal answer here: empty lists and nulls come
back with 200.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from selector_cache import (
    CacheStats,
    CleanupReport,
    NavigationPrediction,
    SelectorCache,
    SelectorDraft,
    SelectorEntry,
    SelectorLookupResult,
)

# Configure logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/api/selector-cache", tags=["Selector Cache"])


def get_selector_cache(request: Request) -> SelectorCache:
    """The cache instance created by the app lifespan"""
    cache = getattr(request.app.state, "selector_cache", None)
    if cache is None:
        raise HTTPException(status_code=503, detail="Selector cache not initialized")
    return cache


# ==================== Request / Response Models ====================

class CacheSelectorResponse(BaseModel):
    id: str


class OutcomeRequest(BaseModel):
    test_id: str
    url_pattern: str
    success: bool
    entry_id: Optional[str] = None


class OutcomeResponse(BaseModel):
    confidence: float
    healed: Optional[SelectorEntry] = None


class AlternativesRequest(BaseModel):
    test_id: str
    url_pattern: str
    alternatives: List[str] = Field(default_factory=list)


class NavigationRequest(BaseModel):
    from_url: str
    to_url: str


class PrefetchRequest(BaseModel):
    url: str


# ==================== Selectors ====================

@router.get("/selectors", response_model=List[SelectorLookupResult])
async def get_selectors(
    url_pattern: str = Query(..., min_length=1),
    cache: SelectorCache = Depends(get_selector_cache)
):
    """Selectors for a URL pattern, best first (empty on miss)"""
    return await cache.get_selectors(url_pattern)


@router.get("/selectors/by-test-id/{test_id}", response_model=Optional[SelectorEntry])
async def get_selector_by_test_id(
    test_id: str,
    url_pattern: Optional[str] = None,
    cache: SelectorCache = Depends(get_selector_cache)
):
    return await cache.get_selector_by_test_id(test_id, url_pattern)


@router.get("/selectors/low-confidence", response_model=List[SelectorEntry])
async def get_low_confidence_selectors(
    threshold: float = Query(0.5, ge=0.0, le=1.0),
    cache: SelectorCache = Depends(get_selector_cache)
):
    return await cache.get_low_confidence_selectors(threshold)


@router.post("/selectors", response_model=CacheSelectorResponse)
async def cache_selector(
    draft: SelectorDraft,
    cache: SelectorCache = Depends(get_selector_cache)
):
    """Store a newly discovered selector"""
    entry_id = await cache.cache_selector(draft)
    return CacheSelectorResponse(id=entry_id)


@router.post("/selectors/outcome", response_model=OutcomeResponse)
async def record_outcome(
    request: OutcomeRequest,
    cache: SelectorCache = Depends(get_selector_cache)
):
    """
    Report whether a selector worked.

    confidence is that of the entry the outcome was counted against. On
    failure the response also carries the healed entry when an alternative
    locator was available.
    """
    result = await cache.record_outcome(
        request.test_id,
        request.url_pattern,
        request.success,
        request.entry_id
    )
    return OutcomeResponse(confidence=result.confidence, healed=result.healed)


@router.post("/selectors/alternatives", response_model=Optional[SelectorEntry])
async def add_alternatives(
    request: AlternativesRequest,
    cache: SelectorCache = Depends(get_selector_cache)
):
    return await cache.add_alternatives(request.test_id, request.url_pattern, request.alternatives)


@router.delete("/selectors/{entry_id}")
async def delete_selector(
    entry_id: str,
    cache: SelectorCache = Depends(get_selector_cache)
):
    if not await cache.delete_selector(entry_id):
        raise HTTPException(status_code=404, detail="Selector not found")
    return {"deleted": entry_id}


# ==================== Navigation ====================

@router.post("/navigation")
async def record_navigation(
    request: NavigationRequest,
    cache: SelectorCache = Depends(get_selector_cache)
):
    """Learn a page transition; prefetch for the destination runs in the background"""
    task = cache.record_navigation(request.from_url, request.to_url)
    return {"recorded": task is not None}


@router.get("/navigation/predictions", response_model=List[NavigationPrediction])
async def predict_navigation(
    url: str = Query(..., min_length=1),
    cache: SelectorCache = Depends(get_selector_cache)
):
    return await cache.predict_navigation(url)


@router.post("/navigation/prefetch")
async def prefetch_for_navigation(
    request: PrefetchRequest,
    cache: SelectorCache = Depends(get_selector_cache)
):
    staged = await cache.prefetch_for_navigation(request.url)
    return {"staged": staged}


@router.delete("/navigation")
async def reset_navigation(cache: SelectorCache = Depends(get_selector_cache)):
    removed = await cache.reset_navigation()
    return {"removed": removed}


# ==================== Maintenance ====================

@router.post("/cleanup")
async def cleanup(cache: SelectorCache = Depends(get_selector_cache)):
    report: CleanupReport = await cache.cleanup()
    return {**report.model_dump(), "total": report.total}


@router.get("/stats", response_model=CacheStats)
async def get_stats(cache: SelectorCache = Depends(get_selector_cache)):
    return await cache.get_stats()
