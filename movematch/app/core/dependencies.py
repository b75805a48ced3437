"""
Matching engine dependencies for FastAPI.

The routing client and distance cache live on ``app.state`` so every
request of a process shares them; tests override these providers.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from movematch.app.core.redis_client import get_redis
from movematch.app.db.session import get_db
from movematch.app.services.cache import DistanceCache, build_distance_cache
from movematch.app.services.distance import DistanceEstimator
from movematch.app.services.match_generator import MatchGenerator
from movematch.app.services.match_lifecycle import MatchLifecycleManager
from movematch.app.services.request_pairing import RequestPairingService


async def get_distance_cache(request: Request, redis=Depends(get_redis)) -> DistanceCache:
    """Process-wide distance cache, created on first use."""
    cache = getattr(request.app.state, "distance_cache", None)
    if cache is None:
        cache = build_distance_cache(redis)
        request.app.state.distance_cache = cache
    return cache


async def get_distance_estimator(
    request: Request,
    cache: DistanceCache = Depends(get_distance_cache),
) -> DistanceEstimator:
    routing_client = getattr(request.app.state, "routing_client", None)
    return DistanceEstimator(routing_client=routing_client, cache=cache)


async def get_match_generator(
    db: AsyncSession = Depends(get_db),
    estimator: DistanceEstimator = Depends(get_distance_estimator),
) -> MatchGenerator:
    return MatchGenerator(db, estimator)


async def get_lifecycle_manager(db: AsyncSession = Depends(get_db)) -> MatchLifecycleManager:
    return MatchLifecycleManager(db)


async def get_request_pairing_service(
    db: AsyncSession = Depends(get_db),
    estimator: DistanceEstimator = Depends(get_distance_estimator),
) -> RequestPairingService:
    return RequestPairingService(db, estimator)
