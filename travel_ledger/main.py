# travel_ledger/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from travel_ledger.config import Settings, get_settings
from travel_ledger.db import build_engine, init_db
from travel_ledger.observability import RequestLogMiddleware, configure_logging
from travel_ledger.routers.auth import router as auth_router
from travel_ledger.routers.books import router as books_router
from travel_ledger.routers.expenses import router as expenses_router
from travel_ledger.routers.preview import router as preview_router
from travel_ledger.routers.system import router as system_router

logger = logging.getLogger("travel_ledger.app")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = build_engine(settings.database_url)
        init_db(engine)
        app.state.engine = engine
        try:
            yield
        finally:
            engine.dispose()

    app = FastAPI(title="Travel Ledger", version="0.1.0", lifespan=lifespan)
    # routers read config from here instead of the global cache
    app.state.settings = settings

    # Last added runs first: the session is decoded before the request log reads it
    app.add_middleware(RequestLogMiddleware)
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.secret_key,
        session_cookie=settings.session_cookie,
        max_age=settings.session_max_age,
        same_site="lax",
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            {"error": exc.detail}, status_code=exc.status_code, headers=exc.headers
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse({"error": "请求参数不合法"}, status_code=400)

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse({"error": "服务器内部错误"}, status_code=500)

    # Routers; the anonymous preview routes go before /books/{book_id}
    app.include_router(system_router)
    app.include_router(auth_router)
    app.include_router(preview_router)
    app.include_router(books_router)
    app.include_router(expenses_router)

    return app


app = create_app()
