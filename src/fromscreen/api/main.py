"""FastAPI app entrypoint for fromscreen."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from functools import partial
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import HTMLResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from fromscreen.api.streaming import QueueSink, start_worker
from fromscreen.config.settings import Settings, get_settings
from fromscreen.conversion.images import (
    DATA_URL_PATTERN,
    InvalidImagePayload,
    decode_image_data_url,
)
from fromscreen.conversion.pipeline import ConversionPipeline
from fromscreen.conversion.preview import render_preview_document
from fromscreen.conversion.upstream import CompletionClient, OpenRouterCompletionClient
from fromscreen.quota.guard import Clock, QuotaGuard, TokenBucketPolicy
from fromscreen.storage.base import ConversionStorage
from fromscreen.storage.models import ConversionRecord
from fromscreen.storage.postgres import PostgresConversionStorage

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class ConvertRequest(BaseModel):
    image: str = Field(pattern=DATA_URL_PATTERN)


class PreviewRequest(BaseModel):
    html: str = Field(min_length=1)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConversionView(CamelModel):
    id: str
    html_output: str
    created_at: datetime

    @classmethod
    def from_record(cls, record: ConversionRecord) -> ConversionView:
        return cls(
            id=record.conversion_id,
            html_output=record.markup,
            created_at=record.created_at,
        )


class ConversionResponse(BaseModel):
    conversion: ConversionView


class HistoryResponse(BaseModel):
    conversions: list[ConversionView]


class UsageResponse(CamelModel):
    count: int
    limit: int
    remaining: int
    has_reached_limit: bool


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    storage_override: ConversionStorage | None,
    client_override: CompletionClient | None,
    clock: Clock | None,
) -> None:
    if not hasattr(app.state, "storage"):
        database_url = settings.resolved_database_url()
        if storage_override is None and not database_url:
            raise RuntimeError(
                "Missing database URL. Set FROMSCREEN_DATABASE_URL "
                "or DATABASE_URL before starting the app."
            )
        app.state.storage = storage_override or PostgresConversionStorage(database_url)
        app.state.storage.migrate()

    if not hasattr(app.state, "settings"):
        app.state.settings = settings

    if not hasattr(app.state, "quota_guard"):
        app.state.quota_guard = QuotaGuard(
            app.state.storage,
            policy=TokenBucketPolicy(
                capacity=settings.quota_capacity,
                refill_rate=settings.quota_refill_rate,
                interval_s=settings.quota_interval_s,
            ),
            clock=clock,
        )

    if not hasattr(app.state, "pipeline"):
        client = client_override or _build_completion_client(settings)
        app.state.pipeline = (
            ConversionPipeline(
                client=client,
                storage=app.state.storage,
                model=settings.resolved_llm_model(),
                print_width=settings.format_print_width,
                indent_width=settings.format_indent_width,
            )
            if client is not None
            else None
        )


def _build_completion_client(settings: Settings) -> CompletionClient | None:
    api_key = settings.resolved_llm_api_key()
    if not api_key:
        logger.warning("startup event=llm_unconfigured reason=missing_api_key")
        return None
    return OpenRouterCompletionClient(
        api_key=api_key,
        base_url=settings.llm_base_url,
        timeout_s=settings.llm_timeout_s,
        max_duration_s=settings.llm_max_duration_s,
        site_url=settings.site_url,
        site_title=settings.site_title,
    )


def create_app(
    *,
    storage: ConversionStorage | None = None,
    completion_client: CompletionClient | None = None,
    settings_override: Settings | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()
    ensure_state = partial(
        _ensure_runtime_state,
        settings=settings,
        storage_override=storage,
        client_override=completion_client,
        clock=clock,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ensure_state(app)
        yield

    app_lifespan = lifespan if storage is None else None
    app = FastAPI(title=settings.app_name, lifespan=app_lifespan)

    # Keep test paths reliable when lifespan is not executed by the client.
    if storage is not None:
        ensure_state(app)

    def _state(request: Request):
        if not hasattr(request.app.state, "storage"):
            ensure_state(request.app)
        return request.app.state

    def _resolve_session(request: Request) -> tuple[str, bool]:
        session_id = request.cookies.get(settings.session_cookie_name, "").strip()
        if session_id and len(session_id) <= 128:
            return session_id, False
        return str(uuid4()), True

    def _set_session_cookie(response: Response, session_id: str) -> None:
        response.set_cookie(
            settings.session_cookie_name,
            session_id,
            max_age=settings.session_cookie_max_age_s,
            httponly=True,
            secure=settings.resolved_session_cookie_secure(),
            samesite="strict",
        )

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.post("/api/convert-stream", response_class=StreamingResponse)
    def convert_stream(payload: ConvertRequest, request: Request) -> StreamingResponse:
        state = _state(request)
        try:
            image = decode_image_data_url(payload.image)
        except InvalidImagePayload as exc:
            logger.info("convert_stream event=rejected reason=invalid_image detail=%s", exc)
            raise HTTPException(status_code=400, detail="Invalid request") from exc

        pipeline: ConversionPipeline | None = state.pipeline
        if pipeline is None:
            raise HTTPException(status_code=500, detail="API key not configured")

        session_id, is_new_session = _resolve_session(request)
        decision = state.quota_guard.check(session_id)
        if not decision.allowed:
            raise HTTPException(
                status_code=429,
                detail="Rate limit exceeded. Try again later.",
                headers={"Retry-After": str(decision.retry_after_s or 1)},
            )

        conversion_id = str(uuid4())
        sink = QueueSink(emit_timeout_s=settings.stream_emit_timeout_s)
        start_worker(
            partial(
                pipeline.run,
                conversion_id=conversion_id,
                owner=session_id,
                image=image,
                sink=sink,
            ),
            sink,
            name=f"convert-{conversion_id}",
        )
        response = StreamingResponse(
            sink.frames(),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )
        if is_new_session:
            _set_session_cookie(response, session_id)
        return response

    @app.get("/api/conversion/{conversion_id}", response_model=ConversionResponse)
    def get_conversion(conversion_id: str, request: Request) -> ConversionResponse:
        record = _state(request).storage.get_conversion(conversion_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Conversion not found")
        return ConversionResponse(conversion=ConversionView.from_record(record))

    @app.get("/api/preview/{conversion_id}", response_class=HTMLResponse)
    def preview_conversion(conversion_id: str, request: Request) -> HTMLResponse:
        record = _state(request).storage.get_conversion(conversion_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Preview not found")
        return HTMLResponse(render_preview_document(record.markup))

    @app.post("/api/preview", response_class=HTMLResponse)
    def preview_markup(payload: PreviewRequest) -> HTMLResponse:
        return HTMLResponse(render_preview_document(payload.html, adhoc=True))

    @app.get("/api/history", response_model=HistoryResponse)
    def history(request: Request) -> HistoryResponse:
        records = _state(request).storage.list_conversions(limit=settings.history_limit)
        return HistoryResponse(conversions=[ConversionView.from_record(r) for r in records])

    @app.get("/api/usage", response_model=UsageResponse)
    def usage(request: Request, response: Response) -> UsageResponse:
        session_id, is_new_session = _resolve_session(request)
        if is_new_session:
            _set_session_cookie(response, session_id)
        snapshot = _state(request).quota_guard.usage(session_id)
        return UsageResponse(
            count=snapshot.count,
            limit=snapshot.limit,
            remaining=snapshot.remaining,
            has_reached_limit=snapshot.has_reached_limit,
        )

    return app


app = create_app()
