"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ordinscribe.api.dependencies import get_inscription_manager
from ordinscribe.api.middleware import inscribe_error_handler
from ordinscribe.api.routes import batches, diagnostics, pipelines
from ordinscribe.models.errors import InscribeError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Only close a manager that was actually built during this process
    if get_inscription_manager.cache_info().currsize:
        get_inscription_manager().close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Ordinscribe",
        description="Supervised serve/download/inscribe pipelines against an Ordinals node",
        version=VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(InscribeError, inscribe_error_handler)

    for module in (pipelines, batches, diagnostics):
        app.include_router(module.router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": VERSION}

    return app


app = create_app()
