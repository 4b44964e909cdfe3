# travel_ledger/observability.py
import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Root handler + format; a no-op when something (e.g. uvicorn, pytest) already configured it."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logging.getLogger("travel_ledger").setLevel(level.upper())


class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        start = time.perf_counter()

        # only read session if SessionMiddleware already attached it
        sess = request.scope.get("session")
        user_id = sess.get("user_id") if sess else None

        response = await call_next(request)
        ms = (time.perf_counter() - start) * 1000
        # preview secrets are capabilities; keep them out of the log
        path = request.url.path
        if path.startswith("/books/preview/books/"):
            path = "/books/preview/books/***"
        logging.getLogger("travel_ledger.req").info(
            "%s %s -> %s in %.1fms user=%s",
            request.method,
            path,
            response.status_code,
            ms,
            user_id,
        )
        return response
