import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from authz.config import settings
from authz.database import create_engine_for, create_session_factory
from authz.dependencies import AuthzContainer
from authz.exception_handlers import register_exception_handlers
from authz.middleware.rate_limit import configure_rate_limiting
from authz.permissions_config.seed import seed_default_roles
from authz.routes import authorize, cache, delegations, emergency, permission_sets, roles
from authz.scheduler import create_scheduler, install_expiry_sweep
from authz.utils.metrics import set_app_info

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(name)s - %(message)s")
logger = logging.getLogger(__name__)


def create_app(container: AuthzContainer | None = None) -> FastAPI:
    """
    Create the FastAPI application.

    When *container* is given it is used as-is and the lifespan neither
    builds nor closes one; tests rely on this.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting up the authorization service...")
        set_app_info(settings.app_version, settings.environment)

        if container is not None:
            yield
            return

        engine = create_engine_for(settings.database_url)
        session_factory = create_session_factory(engine)
        if settings.seed_default_roles:
            await seed_default_roles(session_factory)

        built = AuthzContainer.build(session_factory)
        await built.start()
        app.state.container = built

        scheduler = create_scheduler()
        if settings.expiry_sweep_enabled:
            install_expiry_sweep(scheduler, built.admin, settings.expiry_sweep_interval_minutes)
            scheduler.start()

        try:
            yield
        finally:
            logger.info("Shutting down the authorization service...")
            if scheduler.running:
                scheduler.shutdown(wait=False)
            await built.close()
            await engine.dispose()

    app = FastAPI(
        title=settings.app_name,
        description="Role, delegation and emergency-override authorization for FamilyHub",
        debug=settings.debug,
        version=settings.app_version,
        lifespan=lifespan,
    )
    if container is not None:
        app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    configure_rate_limiting(app)

    # Include routers
    app.include_router(authorize.router, prefix="/api/v1")
    app.include_router(roles.router, prefix="/api/v1")
    app.include_router(delegations.router, prefix="/api/v1")
    app.include_router(emergency.router, prefix="/api/v1")
    app.include_router(permission_sets.router, prefix="/api/v1")
    app.include_router(cache.router, prefix="/api/v1")

    @app.get("/health", tags=["Monitoring"])
    async def health() -> dict:
        return {"status": "ok", "version": settings.app_version}

    @app.get("/metrics", tags=["Monitoring"])
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    if settings.debug:
        logger.info(f"Running in {settings.environment} mode")
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.debug)
