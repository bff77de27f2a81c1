"""
Cache Management Routes

Operational endpoints for the decision cache: health, metrics, warmup and
manual invalidation. All of them require an admin.cache.* permission.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Request, Response

from authz.auth import get_current_user_id
from authz.config import settings
from authz.dependencies import get_authorization_service
from authz.middleware.rate_limit import limiter
from authz.schemas.events import InvalidationEvent
from authz.schemas.requests import CacheWarmupRequest
from authz.services.authorization_service import AuthorizationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cache", tags=["Cache"])


async def _require_cache_permission(authorization: AuthorizationService, actor_id: UUID, action: str) -> None:
    await authorization.require_permission(actor_id, action, actor_id, "system")


# ============== Monitoring ==============


@router.get("/health")
async def get_cache_health(
    actor_id: UUID = Depends(get_current_user_id),
    authorization: AuthorizationService = Depends(get_authorization_service),
) -> dict:
    """
    Get cache health.

    Reports L1 occupancy against its high-water mark and the L2 connection
    state with its recent error rate.
    """
    await _require_cache_permission(authorization, actor_id, "admin.cache.read")
    return await authorization.get_cache_health()


@router.get("/metrics")
async def get_cache_metrics(
    actor_id: UUID = Depends(get_current_user_id),
    authorization: AuthorizationService = Depends(get_authorization_service),
) -> dict:
    await _require_cache_permission(authorization, actor_id, "admin.cache.read")
    return authorization.get_cache_metrics()


@router.get("/hit-rate")
async def get_cache_hit_rate(
    actor_id: UUID = Depends(get_current_user_id),
    authorization: AuthorizationService = Depends(get_authorization_service),
) -> dict:
    await _require_cache_permission(authorization, actor_id, "admin.cache.read")
    return authorization.get_cache_hit_rate()


# ============== Maintenance ==============


@router.post("/clear")
@limiter.limit(settings.rate_limit_admin)
async def clear_cache(
    request: Request,
    response: Response,
    actor_id: UUID = Depends(get_current_user_id),
    authorization: AuthorizationService = Depends(get_authorization_service),
) -> dict:
    await _require_cache_permission(authorization, actor_id, "admin.cache.manage")
    removed = await authorization.clear_all_cache()
    logger.info(f"Decision cache cleared by {actor_id} ({removed} entries)")
    return {"removed": removed}


@router.post("/warmup")
@limiter.limit(settings.rate_limit_admin)
async def warmup_cache(
    request: Request,
    response: Response,
    data: CacheWarmupRequest,
    actor_id: UUID = Depends(get_current_user_id),
    authorization: AuthorizationService = Depends(get_authorization_service),
) -> dict:
    """
    Pre-compute common decisions for the given users.
    """
    await _require_cache_permission(authorization, actor_id, "admin.cache.manage")
    warmed = await authorization.warmup_cache_for_users(data.user_ids)
    return {"users": len(data.user_ids), "decisions": warmed}


@router.post("/invalidate")
@limiter.limit(settings.rate_limit_admin)
async def invalidate_cache(
    request: Request,
    response: Response,
    data: InvalidationEvent,
    actor_id: UUID = Depends(get_current_user_id),
    authorization: AuthorizationService = Depends(get_authorization_service),
) -> dict:
    """
    Apply an invalidation event by hand, e.g. after a family membership
    change made outside this service.
    """
    await _require_cache_permission(authorization, actor_id, "admin.cache.manage")
    removed = await authorization.invalidate_cache(data)
    return {"event": data.type.value, "removed": removed}
