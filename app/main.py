from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.accounts import router as accounts_router
from app.api import router
from logging_config import configure_logging
from services.history import build_default_history_service


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    history = build_default_history_service()
    try:
        yield
    finally:
        history.shutdown()
        build_default_history_service.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Wastewater History Service",
        description="Normalized realtime history and accounts for wastewater treatment devices.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    app.include_router(accounts_router)
    return app

app = create_app()
