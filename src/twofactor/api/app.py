"""FastAPI application exposing the 2FA engine over HTTP."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from twofactor import events
from twofactor.api import routes
from twofactor.config import settings
from twofactor.engine import TwoFactorEngine
from twofactor.errors import TwoFactorError
from twofactor.qr import PngDataUrlRenderer
from twofactor.store import build_store

logger = logging.getLogger(__name__)


def create_app(engine: TwoFactorEngine | None = None) -> FastAPI:
    if engine is None:
        engine = TwoFactorEngine(
            build_store(settings),
            config=settings,
            qr_renderer=PngDataUrlRenderer(),
            on_event=events.emit,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(level=settings.log_level)
        await engine.store.open()
        try:
            yield
        finally:
            await engine.store.close()

    app = FastAPI(
        title="CampusMind 2FA",
        description="TOTP two-factor authentication with backup codes",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine = engine

    @app.exception_handler(TwoFactorError)
    async def two_factor_error_handler(request: Request, exc: TwoFactorError) -> JSONResponse:
        logger.info("2FA request %s %s rejected: %s", request.method, request.url.path, exc.code)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.code, "message": exc.message},
        )

    app.include_router(routes.router)
    return app


app = create_app()
