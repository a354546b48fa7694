"""FastAPI application factory."""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlmodel import SQLModel

from screener.api.routes import screener as screener_routes, sync as sync_routes
from screener.db.engine import get_engine


def create_app() -> FastAPI:
    """Build and return the FastAPI app."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create tables on startup (idempotent)
        SQLModel.metadata.create_all(get_engine())
        yield
        from screener.services import shutdown
        await shutdown()

    app = FastAPI(
        title="Screener API",
        description="Market data sync and stock screener backend",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])
    app.include_router(screener_routes.router, prefix="/screener", tags=["screener"])

    return app


# Module-level app instance for uvicorn
app = create_app()
