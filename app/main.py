from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from datastore.export_state import build_default_state_store
from logging_config import configure_logging
from storage.export_bucket import build_default_bucket


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    build_default_state_store()
    build_default_bucket()
    try:
        yield
    finally:
        # Drop cached handles so a restart picks up changed settings.
        build_default_state_store.cache_clear()
        build_default_bucket.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Radiation Map Export",
        description="Read-only access to the cluster-ordered measurement export.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app

app = create_app()
