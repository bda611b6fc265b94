from __future__ import annotations

"""HTTP API surface for the local progression engine."""

from typing import Any
from uuid import uuid4

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .achievements import EffectUsage
from .catalog import QuestScope
from .errors import EngineError
from .service import WatchQuestService, parse_day
from .store import STATE_SCHEMA_VERSION
from .telemetry import SCHEMA_VERSION as TELEMETRY_SCHEMA_VERSION


TRACE_HEADER = "x-watchquest-trace-id"
MAX_TRACE_ID_CHARS = 200


class ClaimRequest(BaseModel):
    claim_key: str = Field(min_length=1, max_length=300)


class SessionRequest(BaseModel):
    """One partial viewing credit from the playback collaborator."""

    eligible_seconds: int = Field(ge=0)
    effects_active: bool = False
    session_id: str | None = Field(default=None, max_length=200)
    date: str | None = None


class EffectUsageModel(BaseModel):
    any_effects: bool = False
    max_enabled_effects: int = Field(default=0, ge=0)
    strong_blur: bool = False
    strong_red_glow: bool = False
    strong_violet_glow: bool = False
    strong_shake: bool = False
    cursed_master: bool = False


class FinishRequest(BaseModel):
    playback_seconds: int = Field(default=0, ge=0)
    watch_xp: int = Field(default=0, ge=0)
    usage: EffectUsageModel | None = None


class FavoriteRequest(BaseModel):
    is_favorite: bool = True


def _error(status_code: int, exc: EngineError, trace_id: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={**exc.to_dict(), "trace_id": trace_id})


def create_app(service: WatchQuestService) -> FastAPI:
    """Create API routes backed by `WatchQuestService`."""

    app = FastAPI(title="WatchQuest Engine API", version="0.1")

    @app.middleware("http")
    async def trace_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
        incoming = (request.headers.get(TRACE_HEADER) or "").strip()[:MAX_TRACE_ID_CHARS]
        trace_id = incoming if incoming.isprintable() and incoming else f"api:{uuid4()}"
        request.state.trace_id = trace_id
        try:
            response = await call_next(request)
        except Exception as exc:  # noqa: BLE001
            service.telemetry.log_event(
                "risk.flagged",
                source="api",
                trace_id=trace_id,
                data={
                    "reason": "api_internal_error",
                    "endpoint": request.url.path,
                    "error_type": exc.__class__.__name__,
                },
            )
            response = JSONResponse(
                status_code=500,
                content={"code": "INTERNAL_SERVER_ERROR", "message": "Internal server error", "trace_id": trace_id},
            )
        response.headers["X-WatchQuest-Trace-Id"] = trace_id
        return response

    def request_trace_id(request: Request) -> str:
        value = getattr(request.state, "trace_id", None)
        if isinstance(value, str) and value:
            return value
        return f"api:{uuid4()}"

    @app.get("/v1/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "version": "0.1",
            "catalog_version": service.catalog.catalog_version,
            "schema_versions": {"state": STATE_SCHEMA_VERSION, "telemetry": TELEMETRY_SCHEMA_VERSION},
        }

    def quests_response(scope: QuestScope, date_value: str | None, request: Request) -> Any:
        try:
            return service.quests_view(scope, parse_day(date_value))
        except EngineError as exc:
            return _error(400, exc, request_trace_id(request))

    @app.get("/v1/quests/daily")
    def daily_quests(request: Request, date: str | None = Query(default=None)) -> Any:
        return quests_response(QuestScope.DAILY, date, request)

    @app.get("/v1/quests/weekly")
    def weekly_quests(request: Request, date: str | None = Query(default=None)) -> Any:
        return quests_response(QuestScope.WEEKLY, date, request)

    @app.post("/v1/quests/claim")
    def claim_quest(payload: ClaimRequest, request: Request) -> dict[str, Any]:
        claimed = service.claim_quest(payload.claim_key, source="api", trace_id=request_trace_id(request))
        return {"claim_key": payload.claim_key, "claimed": claimed, "profile": service.get_profile()}

    @app.get("/v1/profile")
    def profile() -> dict[str, Any]:
        return service.get_profile()

    @app.post("/v1/progression/prestige")
    def prestige(request: Request) -> Any:
        trace_id = request_trace_id(request)
        try:
            return service.prestige(source="api", trace_id=trace_id)
        except EngineError as exc:
            return _error(409, exc, trace_id)

    @app.get("/v1/achievements")
    def achievements() -> list[dict[str, Any]]:
        return service.get_achievements()

    @app.post("/v1/sessions")
    def record_session(payload: SessionRequest, request: Request) -> Any:
        trace_id = request_trace_id(request)
        try:
            return service.record_session(
                payload.eligible_seconds,
                payload.effects_active,
                session_id=payload.session_id,
                day=parse_day(payload.date),
                source="api",
                trace_id=trace_id,
            )
        except EngineError as exc:
            return _error(400, exc, trace_id)

    @app.post("/v1/videos/{video_id}/open")
    def open_video(video_id: str, request: Request) -> Any:
        trace_id = request_trace_id(request)
        try:
            return service.open_video(video_id, source="api", trace_id=trace_id)
        except EngineError as exc:
            return _error(400, exc, trace_id)

    @app.post("/v1/videos/{video_id}/finish")
    def finish_video(video_id: str, payload: FinishRequest, request: Request) -> Any:
        trace_id = request_trace_id(request)
        usage = EffectUsage(**payload.usage.model_dump()) if payload.usage is not None else None
        try:
            return service.finish_video(
                video_id,
                playback_seconds=payload.playback_seconds,
                watch_xp=payload.watch_xp,
                usage=usage,
                source="api",
                trace_id=trace_id,
            )
        except EngineError as exc:
            return _error(400, exc, trace_id)

    @app.post("/v1/videos/{video_id}/favorite")
    def favorite_video(video_id: str, payload: FavoriteRequest, request: Request) -> Any:
        trace_id = request_trace_id(request)
        try:
            return service.set_favorite(video_id, payload.is_favorite, source="api", trace_id=trace_id)
        except EngineError as exc:
            return _error(400, exc, trace_id)

    @app.get("/v1/clock")
    def clock() -> dict[str, Any]:
        return {**service.clock_status(), **service.quest_countdowns()}

    @app.post("/v1/clock/sync")
    def sync_clock() -> dict[str, Any]:
        synced = service.sync_clock(source="api")
        return {"synced": synced, **service.clock_status()}

    @app.post("/v1/rollover/tick")
    def rollover_tick() -> dict[str, Any]:
        result = service.tick_rollover()
        if result is None:
            return {"rolled_over": False}
        return {
            "rolled_over": True,
            "day": result.day.isoformat(),
            "week_key": result.week_key,
            "pruned_claim_keys": list(result.pruned_claim_keys),
            "rotations_changed": result.rotations_changed,
        }

    @app.get("/v1/telemetry/summary")
    def telemetry_summary(request: Request, range_value: str = Query(default="7d", alias="range")) -> Any:
        try:
            return service.telemetry_summary(range_value)
        except EngineError as exc:
            return _error(400, exc, request_trace_id(request))

    return app
