#!/usr/bin/env python3
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from inkpipe.api import router as api_router
from inkpipe.config import settings
from inkpipe.database import init_db
from inkpipe.errors import InkpipeError, QuotaExceeded
from inkpipe.utils.logging import configure_logging

logger = logging.getLogger(__name__)

app = FastAPI(title="inkpipe")

# Respect the X-Forwarded-* headers from the reverse proxy
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")


@app.on_event("startup")
def on_startup():
    configure_logging(settings.log_level)
    init_db()  # Create tables if they don't exist
    logger.info(f"inkpipe started (auth {'enabled' if settings.auth_enabled else 'disabled'})")


@app.exception_handler(InkpipeError)
async def inkpipe_error_handler(request: Request, exc: InkpipeError):
    body = {"detail": exc.message}
    if isinstance(exc, QuotaExceeded):
        body.update({"remaining": exc.remaining, "limit": exc.limit})
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=body)


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(api_router)
