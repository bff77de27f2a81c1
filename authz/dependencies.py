"""
Service container

All long-lived components (store, cache, audit, resolver, admin service) are
constructed once, explicitly, by AuthzContainer.build() at process start and
torn down by close(). Nothing is held in module globals, so tests can build
isolated containers against their own database and cache.
"""

import logging
from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authz.config import Settings, settings as default_settings
from authz.services.admin_service import AdminService
from authz.services.audit_service import AuditService
from authz.services.authorization_service import AuthorizationService
from authz.services.cache_service import DecisionCache
from authz.services.invalidation_service import InvalidationService
from authz.services.store import AuthorizationStore
from authz.utils.cache import CacheManager
from authz.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)


@dataclass
class AuthzContainer:
    store: AuthorizationStore
    cache: DecisionCache
    l2: CacheManager
    audit: AuditService
    invalidation: InvalidationService
    authorization: AuthorizationService
    admin: AdminService

    @classmethod
    def build(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        config: Settings | None = None,
        clock: Clock = utcnow,
        l2: CacheManager | None = None,
    ) -> "AuthzContainer":
        config = config or default_settings
        store = AuthorizationStore(session_factory, clock=clock, timeout=config.store_timeout_seconds)
        l2 = l2 or CacheManager(redis_url=config.redis_url)
        cache = DecisionCache(
            l2,
            max_entries=config.rbac_l1_cache_max_entries,
            prefix=config.rbac_cache_prefix,
            high_water_ratio=config.cache_high_water_ratio,
            error_window_seconds=config.cache_error_window_seconds,
        )
        audit = AuditService(session_factory, clock=clock, enabled=config.audit_enabled)
        invalidation = InvalidationService(cache, store)
        authorization = AuthorizationService(store, cache, audit, invalidation)
        admin = AdminService(store, authorization, invalidation, audit)
        return cls(
            store=store,
            cache=cache,
            l2=l2,
            audit=audit,
            invalidation=invalidation,
            authorization=authorization,
            admin=admin,
        )

    async def start(self) -> None:
        await self.l2.connect()

    async def close(self) -> None:
        await self.audit.drain()
        await self.l2.disconnect()
        logger.info("Authorization services shut down")


def get_container(request: Request) -> AuthzContainer:
    return request.app.state.container


def get_authorization_service(request: Request) -> AuthorizationService:
    return get_container(request).authorization


def get_admin_service(request: Request) -> AdminService:
    return get_container(request).admin
