from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from .db import init_db, close_db
from .routers import checkins
from .core.config import get_settings
from .core.errors import CheckinError, InvalidRequest
from .core.redis import ping_redis, close_redis
from .core.nats import nats_connect, nats_close

settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("campus_checkin")

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    # best-effort connect to infra; service still runs if these fail
    if settings.use_nats_events:
        try:
            await nats_connect()
        except Exception as e:
            logger.warning("NATS unavailable at startup: %s", e)
    if settings.rl_enabled:
        await ping_redis()
    yield
    try:
        await nats_close()
    except Exception as e:
        logger.warning("NATS drain failed: %s", e)
    await close_redis()
    await close_db()

app = FastAPI(title="campus-checkin-svc", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

def _error_response(request: Request, err: CheckinError) -> JSONResponse:
    body = err.to_dict()
    # scanner clients branch on `valid` for every outcome of a scan
    if request.url.path == checkins.VALIDATE_PATH:
        body = {"valid": False, **body}
    return JSONResponse(status_code=err.status_code, content=body)

@app.exception_handler(CheckinError)
async def checkin_error_handler(request: Request, exc: CheckinError):
    return _error_response(request, exc)

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    err = InvalidRequest(details={"fields": [".".join(str(p) for p in e["loc"]) for e in exc.errors()]})
    return _error_response(request, err)

app.include_router(checkins.router)

@app.get("/health")
async def health():
    return {"status": "ok", "service": "campus-checkin-svc"}

Instrumentator().instrument(app).expose(app)
