from fastapi import FastAPI, Depends, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import SQLModel, Session, create_engine
from pydantic import BaseModel, Field, validator
from typing import Any, Dict, Optional
from starlette.middleware.base import BaseHTTPMiddleware

from . import completion, content, crud, leaderboard, lifecycle
from .config import Config
from .deps import current_player, get_session, optional_player, require_same_player
from .errors import NotFoundError, RouteQuestError, StorageError
from .logging_utils import setup_logging, get_logger, request_id_ctx
from .ratelimit import RateLimiter, rate_limit_dependency

import logging
import time
import uuid


setup_logging(logging.INFO)
logger = get_logger("routequest")
app = FastAPI(title="RouteQuest")
app.state.rate_limiter = RateLimiter(Config.RATE_LIMIT_MAX_REQUESTS, Config.RATE_LIMIT_WINDOW_SECONDS)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers.setdefault('Referrer-Policy', 'strict-origin-when-cross-origin')
        response.headers.setdefault('X-Content-Type-Options', 'nosniff')
        response.headers.setdefault('X-Frame-Options', 'DENY')
        response.headers.setdefault('Cross-Origin-Opener-Policy', 'same-origin')
        response.headers.setdefault('Strict-Transport-Security', 'max-age=31536000; includeSubDomains')
        return response


app.add_middleware(SecurityHeadersMiddleware)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = request_id_ctx.set(rid)
        start = time.time()
        client = request.client.host if request.client else "-"
        ua = request.headers.get("user-agent", "-")
        response = None
        try:
            response = await call_next(request)
            return response
        except Exception:
            logger.exception(
                "request_error",
                extra={"path": str(request.url), "method": request.method},
            )
            raise
        finally:
            duration_ms = int((time.time() - start) * 1000)
            status = getattr(response, "status_code", 500)
            logger.info(
                "request",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": status,
                    "duration_ms": duration_ms,
                    "client": client,
                    "user_agent": ua,
                },
            )
            if response is not None:
                response.headers["X-Request-ID"] = rid
            request_id_ctx.reset(token)


app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=[
        "Accept",
        "Accept-Language",
        "Content-Language",
        "Content-Type",
        "Authorization",
        "X-Requested-With",
        "X-Request-ID",
    ],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning("validation_error", extra={"method": request.method, "path": request.url.path, "errors": str(exc.errors())})
    return JSONResponse(
        status_code=422,
        content={
            "error": "validation_error",
            "detail": jsonable_errors(exc),
            "message": "Input validation failed",
        },
    )


def jsonable_errors(exc: RequestValidationError):
    # pydantic error contexts can hold exception instances
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in exc.errors()]


@app.exception_handler(RouteQuestError)
async def routequest_exception_handler(request: Request, exc: RouteQuestError):
    if isinstance(exc, StorageError):
        logger.error("storage_error", extra={"method": request.method, "path": request.url.path, "error": exc.message})
    else:
        logger.warning(exc.code, extra={"method": request.method, "path": request.url.path, "error": exc.message})
    return JSONResponse(status_code=exc.status_code, content=exc.payload)


@app.exception_handler(SQLAlchemyError)
async def storage_exception_handler(request: Request, exc: SQLAlchemyError):
    # driver messages are logged by type only and never rendered
    logger.error("storage_error", extra={"method": request.method, "path": request.url.path, "error": type(exc).__name__})
    err = StorageError("Storage temporarily unavailable")
    return JSONResponse(status_code=err.status_code, content=err.payload)


@app.get("/health", include_in_schema=False)
def health():
    return JSONResponse({"status": "ok"})


@app.get("/api/cache/stats", include_in_schema=False)
def cache_stats():
    """Cache statistics for monitoring"""
    from .cache import get_cache
    return JSONResponse({"cache_stats": get_cache().get_stats(), "status": "ok"})


@app.on_event("startup")
def on_startup():
    from .migrations import run_migrations

    db_path = Config.DATABASE_URL
    connect_args = {"check_same_thread": False} if db_path.startswith("sqlite") else {}
    if not db_path.startswith("sqlite"):
        engine = create_engine(
            db_path,
            echo=False,
            connect_args=connect_args,
            pool_pre_ping=True,
            pool_size=10,
            max_overflow=20,
            pool_recycle=1800,
        )
    else:
        engine = create_engine(db_path, echo=False, connect_args=connect_args)

    SQLModel.metadata.create_all(engine)
    try:
        run_migrations(engine)
    except Exception as e:
        logger.warning("migrations_failed", extra={"error": str(e)})
    crud.engine = engine


# -- serializers ---------------------------------------------------------------

def _iso(dt) -> Optional[str]:
    dt = crud.as_utc(dt)
    return dt.isoformat() if dt is not None else None


def session_payload(rs) -> Optional[Dict[str, Any]]:
    if rs is None:
        return None
    return {
        "id": rs.id,
        "player_id": rs.player_id,
        "route_id": rs.route_id,
        "state": lifecycle.session_state(rs),
        "started_at": _iso(rs.started_at),
        "completed_at": _iso(rs.completed_at),
        "total_points": rs.points,
        "is_completed": rs.completed,
        "total_time": rs.total_seconds,
    }


def progress_payload(rec, checkpoint=None) -> Dict[str, Any]:
    out = {
        "id": rec.id,
        "checkpoint_id": rec.checkpoint_id,
        "route_id": rec.route_id,
        "session_id": rec.session_id,
        "completed_at": _iso(rec.completed_at),
        "points_earned": rec.points,
    }
    if checkpoint is not None:
        out["checkpoint_name"] = checkpoint.name
        out["order"] = checkpoint.order_index
    return out


# -- routes (content) ----------------------------------------------------------

@app.get("/api/routes")
def get_routes(session: Session = Depends(get_session)):
    return content.list_routes(session)


@app.get("/api/routes/{route_id}")
def get_route_detail(
    route_id: str,
    session: Session = Depends(get_session),
    caller_id: Optional[int] = Depends(optional_player),
):
    route = content.get_route(session, route_id)
    if route is None:
        raise NotFoundError("Route not found", payload={"route_id": route_id})
    checkpoints = content.list_checkpoints(session, route_id)
    payload = {
        **content.route_payload(route),
        "total_checkpoints": len(checkpoints),
        "total_points": sum(cp.reward_points for cp in checkpoints),
        "checkpoints": [content.checkpoint_payload(cp) for cp in checkpoints],
    }
    if caller_id is not None:
        done = [rec.checkpoint_id for rec, _ in crud.list_progress(session, caller_id, route_id)]
        payload["user_progress"] = {"completed_checkpoints": done, "total_completed": len(done)}
    return payload


# -- progress ------------------------------------------------------------------

class StartSessionRequest(BaseModel):
    route_id: str = Field(..., min_length=1, max_length=255)

    @validator('route_id')
    def strip_route_id(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('route_id cannot be empty')
        return v


class LocationIn(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class PuzzleVerdictIn(BaseModel):
    passed: bool
    points: int = Field(0, ge=0, le=100000)
    payload: Dict[str, Any] = Field(default_factory=dict)


class CompleteCheckpointRequest(BaseModel):
    route_id: str = Field(..., min_length=1, max_length=255)
    checkpoint_id: str = Field(..., min_length=1, max_length=255)
    location: LocationIn
    verdict: PuzzleVerdictIn

    @validator('route_id', 'checkpoint_id')
    def strip_ids(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('identifier cannot be empty')
        return v


@app.post("/api/progress/{player_id}/start")
def start_route(
    player_id: int,
    body: StartSessionRequest,
    response: Response,
    session: Session = Depends(get_session),
    caller_id: int = Depends(current_player),
    _: None = Depends(rate_limit_dependency(max_requests=20, window_seconds=60)),
):
    require_same_player(player_id, caller_id)
    rs, created = lifecycle.start_session(session, player_id, body.route_id)
    response.status_code = 201 if created else 200
    return {
        "message": "Route session started" if created else "Session already exists",
        "session": session_payload(rs),
    }


@app.post("/api/progress/{player_id}/complete")
def complete_checkpoint(
    player_id: int,
    body: CompleteCheckpointRequest,
    session: Session = Depends(get_session),
    caller_id: int = Depends(current_player),
    _: None = Depends(rate_limit_dependency(max_requests=30, window_seconds=60)),
):
    require_same_player(player_id, caller_id)
    verdict = completion.PuzzleVerdict(
        passed=body.verdict.passed,
        points=body.verdict.points,
        payload=body.verdict.payload,
    )
    result = completion.complete_checkpoint(
        session,
        player_id,
        body.route_id,
        body.checkpoint_id,
        body.location.latitude,
        body.location.longitude,
        verdict,
    )
    return {
        "message": "Checkpoint completed successfully",
        "progress": progress_payload(result.progress),
        "reward": result.reward,
        "route_completed": result.route_completed,
        "completed_checkpoints": result.completed_count,
        "total_checkpoints": result.total_checkpoints,
        "session": session_payload(result.session),
    }


@app.get("/api/progress/{player_id}/{route_id}")
def get_progress(
    player_id: int,
    route_id: str,
    session: Session = Depends(get_session),
    caller_id: int = Depends(current_player),
):
    require_same_player(player_id, caller_id)
    if content.get_route(session, route_id, include_inactive=True) is None:
        raise NotFoundError("Route not found", payload={"route_id": route_id})
    rs = crud.get_latest_session(session, player_id, route_id)
    rows = crud.list_progress(session, player_id, route_id)
    return {
        "session": session_payload(rs),
        "completed_checkpoints": [progress_payload(rec, cp) for rec, cp in rows],
        "total_completed": len(rows),
        "total_points": sum(rec.points for rec, _ in rows),
    }


# -- leaderboard ---------------------------------------------------------------

@app.get("/api/leaderboard/{route_id}")
def get_leaderboard(
    route_id: str,
    timeframe: str = "all",
    limit: Optional[int] = None,
    session: Session = Depends(get_session),
    caller_id: Optional[int] = Depends(optional_player),
    _: None = Depends(rate_limit_dependency(max_requests=30, window_seconds=60)),
):
    if limit is not None and (limit < 1 or limit > Config.LEADERBOARD_MAX_ENTRIES):
        raise HTTPException(status_code=400, detail=f"Limit must be between 1 and {Config.LEADERBOARD_MAX_ENTRIES}")
    if content.get_route(session, route_id, include_inactive=True) is None:
        raise NotFoundError("Route not found", payload={"route_id": route_id})
    result = leaderboard.rank(session, route_id, timeframe, limit=limit, caller_id=caller_id)
    return {
        "leaderboard": [e.to_dict() for e in result.entries],
        "caller_rank": result.caller_rank,
        "timeframe": result.timeframe,
        "total_entries": result.total_entries,
    }


@app.get("/api/leaderboard/{route_id}/stats")
def get_route_stats(route_id: str, session: Session = Depends(get_session)):
    if content.get_route(session, route_id, include_inactive=True) is None:
        raise NotFoundError("Route not found", payload={"route_id": route_id})
    return leaderboard.route_stats(session, route_id)


def serve():
    """Console entry point: ``routequest`` runs the API under uvicorn."""
    import uvicorn

    uvicorn.run(app, host=Config.HOST, port=Config.PORT, log_config=None)


if __name__ == "__main__":
    serve()
