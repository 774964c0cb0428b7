from __future__ import annotations
from contextlib import asynccontextmanager
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException

from .db import init_db, engine
from .routers import attendance, meetups
from .core.config import get_settings
from .core.errors import NookError
from .core.logging import setup_logging
from .core.redis import ping_redis, close_redis
from .core.nats import nats_connect, nats_close

settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

_HTTP_ERROR_CODES = {401: "unauthorized", 403: "forbidden", 404: "not_found", 503: "unavailable"}

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    if not settings.qr_signing_secret:
        logger.error("QR_SIGNING_SECRET is not set; attendance tokens cannot be issued or verified")
    # best-effort connect to infra; service still runs if these fail
    try:
        await nats_connect()
    except Exception:
        logger.warning("nats unavailable at startup; notifications will retry on publish")
    await ping_redis()
    yield
    await nats_close()
    try:
        await close_redis()
    except Exception:
        logger.warning("redis close failed", exc_info=True)
    await engine.dispose()

app = FastAPI(title="nooks-svc", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(NookError)
async def nook_error_handler(request: Request, exc: NookError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    body = {
        "success": False,
        "message": str(exc.detail),
        "error": _HTTP_ERROR_CODES.get(exc.status_code, "http_error"),
        "detail": exc.detail,
    }
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))

app.include_router(attendance.router)
app.include_router(meetups.router)

@app.get("/health")
async def health():
    return {"status": "ok", "service": "nooks-svc"}

Instrumentator().instrument(app).expose(app)
