"""Verification cache API endpoints."""

from fastapi import APIRouter, Depends

from linkguard.api.deps import get_cache
from linkguard.verify.cache import VerificationCache

router = APIRouter(prefix="/api/cache", tags=["cache"])


@router.get("/stats")
async def cache_stats(cache: VerificationCache = Depends(get_cache)):
    """Entry counts and total hits for the verification cache."""
    stats = await cache.stats()
    return {**stats, "ttl_hours": cache.ttl.total_seconds() / 3600}


@router.post("/sweep")
async def sweep_cache(cache: VerificationCache = Depends(get_cache)):
    """Delete expired entries now."""
    deleted = await cache.sweep()
    return {"deleted": deleted}
