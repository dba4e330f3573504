from __future__ import annotations

import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .configuration import RATE_LIMIT_NAMES, contest_rules, cors_origins, load_settings
from .contest_manager import ContestManager
from .database import create_store
from .errors import RequestValidationFailed, SquaresError
from .middleware import (
    FloodGuard,
    RateLimiter,
    RateLimitMiddleware,
    RequestGuardMiddleware,
    SecurityHeadersMiddleware,
    build_security_headers,
    enforce_rate_limit,
    error_response,
)
from .utils import serialize_datetime, utcnow
from .winner_registry import WinnerRegistry

settings = load_settings()

logging.basicConfig(
    level=getattr(logging, str(settings.logging.level).upper(), logging.INFO),
    format=settings.logging.format,
)
logger = logging.getLogger(__name__)

START_TIME = time.monotonic()

store = create_store(settings.store)
rules = contest_rules(settings)
contest_manager = ContestManager(store, rules)
winner_registry = WinnerRegistry(store, rules)


def get_contest_manager() -> ContestManager:
    return contest_manager


def get_winner_registry() -> WinnerRegistry:
    return winner_registry


def build_rate_limiters(config) -> Dict[str, RateLimiter]:
    if not config.rate_limits.enabled:
        return {}
    return {
        name: RateLimiter(
            limit=config.rate_limits[name].limit,
            window_seconds=config.rate_limits[name].window_seconds,
            name=name,
        )
        for name in RATE_LIMIT_NAMES
    }


def build_flood_guard(config, limiters: Dict[str, RateLimiter]) -> Optional[FloodGuard]:
    if "ddos" not in limiters:
        return None
    return FloodGuard(limiters["ddos"], block_seconds=config.rate_limits.ddos.block_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.app.name} v{settings.app.version}")
    logger.info(f"Environment: {settings.app.environment}")
    logger.info(f"CORS allowed origins: {cors_origins(settings)}")
    yield
    store.close()
    logger.info("Shutdown complete")


app = FastAPI(title=settings.app.name, version=settings.app.version, lifespan=lifespan)
app.state.rate_limiters = build_rate_limiters(settings)
app.state.flood_guard = build_flood_guard(settings, app.state.rate_limiters)

app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestGuardMiddleware, max_request_bytes=settings.security.max_request_bytes)
app.add_middleware(
    SecurityHeadersMiddleware,
    headers=build_security_headers(
        hsts_enabled=settings.security.hsts_enabled,
        hsts_max_age=settings.security.hsts_max_age,
        referrer_policy=settings.security.referrer_policy,
    ),
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(settings),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-Id"],
)


@app.exception_handler(SquaresError)
async def squares_error_handler(request: Request, exc: SquaresError) -> JSONResponse:
    return error_response(exc)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]
    error = RequestValidationFailed("Invalid input data", details=details)
    return JSONResponse(status_code=error.status_code, content=error.to_response())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        content = {
            "success": False,
            "error": "NOT_FOUND_ERROR",
            "message": "The requested endpoint does not exist",
            "path": request.url.path,
            "method": request.method,
            "timestamp": serialize_datetime(utcnow()),
        }
    else:
        content = {"success": False, "error": "HTTP_ERROR", "message": str(exc.detail)}
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    content: Dict[str, Any] = {
        "success": False,
        "error": "INTERNAL_ERROR",
        "message": "Internal server error",
    }
    if settings.app.debug:
        content["details"] = {"error": str(exc), "type": type(exc).__name__}
    return JSONResponse(status_code=500, content=content)


async def json_body(request: Request) -> Any:
    """Decoded JSON body; an empty body reads as an empty object."""
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise RequestValidationFailed("Invalid JSON payload") from exc


def rate_limit(name: str, message: str) -> Callable[[Request], None]:
    def _dependency(request: Request) -> None:
        enforce_rate_limit(request.app.state.rate_limiters.get(name), request, message)

    return _dependency


@app.get("/")
def root() -> Dict[str, Any]:
    return {
        "message": settings.app.name,
        "version": settings.app.version,
        "environment": settings.app.environment,
        "endpoints": {
            "health": "/health",
            "contests": {
                "create": "POST /contests",
                "getAll": "GET /contests",
                "getById": "GET /contests/:id",
                "update": "PUT /contests/:id",
                "start": "POST /contests/:id/start",
            },
            "bagBuilder": {
                "setWinner": "POST /bagbuilder/winner/:name",
                "getWinner": "GET /bagbuilder/winner",
            },
        },
    }


@app.get("/health")
def healthcheck(manager: ContestManager = Depends(get_contest_manager)) -> Dict[str, Any]:
    return {
        "status": "healthy",
        "uptime": round(time.monotonic() - START_TIME, 3),
        "timestamp": serialize_datetime(utcnow()),
        "version": settings.app.version,
        "environment": settings.app.environment,
        "store": "up" if manager.store.available else "unavailable",
    }


@app.post(
    "/contests",
    status_code=201,
    dependencies=[
        Depends(rate_limit("create_contest", "Too many contest creation attempts, please try again later."))
    ],
)
def create_contest(
    payload: Any = Depends(json_body),
    manager: ContestManager = Depends(get_contest_manager),
) -> Dict[str, Any]:
    contest = manager.create_contest(payload)
    return {
        "success": True,
        "message": "Contest entry created successfully",
        "documentId": contest.id,
        "data": contest.to_dict(),
    }


@app.get("/contests")
def list_contests(manager: ContestManager = Depends(get_contest_manager)) -> Dict[str, Any]:
    contests = [contest.to_dict() for contest in manager.list_contests()]
    return {"success": True, "count": len(contests), "contests": contests}


@app.get("/contests/{contest_id}")
def get_contest(contest_id: str, manager: ContestManager = Depends(get_contest_manager)) -> Dict[str, Any]:
    return {"success": True, "contest": manager.get_contest(contest_id).to_dict()}


@app.put(
    "/contests/{contest_id}",
    dependencies=[Depends(rate_limit("update_contest", "Too many contest update attempts, please try again later."))],
)
def update_contest(
    contest_id: str,
    payload: Any = Depends(json_body),
    manager: ContestManager = Depends(get_contest_manager),
) -> Dict[str, Any]:
    contest = manager.update_names(contest_id, payload)
    return {"success": True, "message": "Contest updated successfully", "data": contest.to_dict()}


@app.post(
    "/contests/{contest_id}/start",
    dependencies=[Depends(rate_limit("start_contest", "Too many contest start attempts, please try again later."))],
)
def start_contest(contest_id: str, manager: ContestManager = Depends(get_contest_manager)) -> Dict[str, Any]:
    contest = manager.start_contest(contest_id)
    return {"success": True, "message": "Contest has started successfully", "data": contest.to_dict()}


@app.post(
    "/bagbuilder/winner/{name}",
    status_code=201,
    dependencies=[Depends(rate_limit("set_winner", "Too many winner submissions, please try again later."))],
)
def set_winner(name: str, registry: WinnerRegistry = Depends(get_winner_registry)) -> Dict[str, Any]:
    winner = registry.set_winner(name)
    return {"success": True, "message": "Bag builder winner set successfully", "data": winner.to_dict()}


@app.get("/bagbuilder/winner")
def get_winner(registry: WinnerRegistry = Depends(get_winner_registry)) -> Dict[str, Any]:
    winner = registry.get_winner()
    if winner is None:
        return {"success": True, "message": "No winner yet", "data": None}
    return {"success": True, "message": "Winner retrieved successfully", "data": winner.to_dict()}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("premier_squares_backend.main:app", host="0.0.0.0", port=3001)
