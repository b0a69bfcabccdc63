import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware

from origo.config import settings
from origo.database import Base, engine
from origo.exception_handlers import register_exception_handlers
from origo.middleware.tenant import TenantMiddleware
from origo.routes import domains, permissions, quotas, roles, tenants

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting up the application...")
    if settings.debug:
        # Alembic owns the schema outside of debug runs
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created (if not existing).")
    yield
    logger.info("Shutting down the application...")
    await engine.dispose()


def create_app() -> FastAPI:
    """Create the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="Tenant resolution, authorization, plan quotas and custom domains",
        debug=settings.debug,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # Middleware runs in reverse order of registration: CORS, then the
    # session, then tenant resolution (which reads the session).
    app.add_middleware(TenantMiddleware)
    app.add_middleware(SessionMiddleware, secret_key=settings.secret_key)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(tenants.router, prefix="/api/v1/tenants")
    app.include_router(roles.router, prefix="/api/v1/roles")
    app.include_router(permissions.router, prefix="/api/v1/permissions")
    app.include_router(quotas.router, prefix="/api/v1/quotas")
    app.include_router(domains.router, prefix="/api/v1/domain")

    @app.get("/", tags=["Root"])
    async def root():
        return {"message": f"Welcome to {settings.app_name}"}

    @app.get("/health", tags=["Root"])
    async def health():
        return {"status": "ok", "environment": settings.environment}

    if settings.debug:
        logger.info("Running in %s mode", settings.environment)
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.debug)
