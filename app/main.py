"""Entry point for the FastAPI-powered watch-progress service."""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .config import settings
from .database import Database
from .errors import CatalogUnavailable, InvalidInput, MigrationError, StoreUnavailable
from .identity import Identity, resolve_identity
from .models import MigrationRequest, ProgressReport, ProgressRecordView
from .services.auth import AuthClient
from .services.catalog import CatalogClient
from .services.category_cache import CategoryCache
from .services.migration import MigrationService
from .services.progress import ProgressService
from .services.series import SeriesService
from .store import ProgressStore

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    catalog_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.catalog_api_url),
            timeout=httpx.Timeout(settings.catalog_timeout_seconds, connect=5.0),
        )
    )
    auth_client: AuthClient | None = None
    if settings.auth_api_url is not None:
        auth_http_client = await exit_stack.enter_async_context(
            httpx.AsyncClient(
                base_url=str(settings.auth_api_url),
                timeout=httpx.Timeout(10.0, connect=5.0),
            )
        )
        auth_client = AuthClient(settings, auth_http_client)

    database = Database(settings.database_url)
    await database.create_all()

    store = ProgressStore(
        database.session_factory, timeout=settings.store_timeout_seconds
    )
    catalog = CatalogClient(settings, catalog_http_client)
    categories = CategoryCache(catalog, settings.sport_playlists)

    install_services(
        fastapi_app,
        progress=ProgressService(settings, store, categories),
        series=SeriesService(settings, store, catalog),
        migration=MigrationService(store),
        categories=categories,
        auth_client=auth_client,
    )
    fastapi_app.state.database = database
    warmup = asyncio.create_task(_warm_category_cache(categories))

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        warmup.cancel()
        pending = list(fastapi_app.state.pending_writes)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        await database.dispose()
        await exit_stack.aclose()


async def _warm_category_cache(categories: CategoryCache) -> None:
    try:
        await categories.init()
    except Exception as exc:  # pragma: no cover - background safety net
        logger.exception("Category cache warm-up failed: %s", exc)


def install_services(
    fastapi_app: FastAPI,
    *,
    progress: ProgressService,
    series: SeriesService,
    migration: MigrationService,
    categories: CategoryCache | None = None,
    auth_client: AuthClient | None = None,
) -> None:
    """Attach the service graph to ``fastapi_app.state``."""

    fastapi_app.state.progress_service = progress
    fastapi_app.state.series_service = series
    fastapi_app.state.migration_service = migration
    fastapi_app.state.category_cache = categories
    fastapi_app.state.auth_client = auth_client


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Watch progress, continue watching and series continuity",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    fastapi_app.state.pending_writes = set()

    register_routes(fastapi_app)
    return fastapi_app


def _require_state(fastapi_app: FastAPI, name: str, kind: type) -> Any:
    service = getattr(fastapi_app.state, name, None)
    if not isinstance(service, kind):
        raise RuntimeError(f"{kind.__name__} not initialised")
    return service


def get_progress_service(app: FastAPI) -> ProgressService:
    return _require_state(app, "progress_service", ProgressService)


def get_series_service(app: FastAPI) -> SeriesService:
    return _require_state(app, "series_service", SeriesService)


def get_migration_service(app: FastAPI) -> MigrationService:
    return _require_state(app, "migration_service", MigrationService)


def register_routes(fastapi_app: FastAPI) -> None:
    async def _identity(session_id: str | None, authorization: str | None) -> Identity:
        auth_client = getattr(fastapi_app.state, "auth_client", None)
        return await resolve_identity(session_id, authorization, auth_client)

    async def _read_json(request: Request) -> dict[str, Any]:
        try:
            payload = await request.json()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid payload") from exc
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload")
        return payload

    def _records_payload(records: list[ProgressRecordView]) -> list[dict[str, Any]]:
        return [record.to_payload() for record in records]

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, Any]:
        categories = getattr(fastapi_app.state, "category_cache", None)
        ready = bool(categories is not None and categories.is_ready())
        return {"status": "ok", "categories": ready}

    @fastapi_app.post("/api/watch-progress")
    async def record_progress(
        request: Request, authorization: str | None = Header(default=None)
    ) -> JSONResponse:
        service = get_progress_service(fastapi_app)
        try:
            report = ProgressReport.model_validate(await _read_json(request))
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=exc.errors()) from exc
        identity = await _identity(report.session_id, authorization)

        # The write keeps running if the client goes away mid-request.
        task = asyncio.create_task(
            service.record_progress(
                identity,
                report.media_id,
                report.title,
                report.poster_image,
                report.duration,
                report.watched_seconds,
                report.category,
            )
        )
        pending: set[asyncio.Task[Any]] = fastapi_app.state.pending_writes
        pending.add(task)

        def _forget(done: asyncio.Task[Any]) -> None:
            pending.discard(done)
            if not done.cancelled():
                # Failures are reported below unless the client disconnected.
                done.exception()

        task.add_done_callback(_forget)
        try:
            record = await asyncio.shield(task)
        except InvalidInput as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except StoreUnavailable as exc:
            logger.warning("Progress report for %s not stored: %s", report.media_id, exc)
            raise HTTPException(
                status_code=503, detail="Failed to update watch progress"
            ) from exc
        return JSONResponse(record.to_payload())

    @fastapi_app.get("/api/watch-progress/{media_id}")
    async def get_progress(
        media_id: str,
        x_session_id: str | None = Header(default=None),
        authorization: str | None = Header(default=None),
    ) -> JSONResponse:
        service = get_progress_service(fastapi_app)
        identity = await _identity(x_session_id, authorization)
        try:
            record = await service.get_progress(identity, media_id)
        except StoreUnavailable as exc:
            raise HTTPException(status_code=503, detail="Failed to fetch progress") from exc
        return JSONResponse(record.to_payload() if record else None)

    @fastapi_app.get("/api/continue-watching/{session_id}")
    async def continue_watching(
        session_id: str,
        limit: int | None = None,
        authorization: str | None = Header(default=None),
    ) -> JSONResponse:
        service = get_progress_service(fastapi_app)
        identity = await _identity(session_id, authorization)
        records = await service.list_continue_watching(identity, limit)
        return JSONResponse(_records_payload(records))

    @fastapi_app.delete("/api/continue-watching/{session_id}/{media_id}")
    async def remove_from_continue_watching(
        session_id: str,
        media_id: str,
        authorization: str | None = Header(default=None),
    ) -> dict[str, bool]:
        service = get_progress_service(fastapi_app)
        identity = await _identity(session_id, authorization)
        try:
            await service.remove_progress(identity, media_id)
        except InvalidInput as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except StoreUnavailable as exc:
            raise HTTPException(
                status_code=503, detail="Failed to remove from continue watching"
            ) from exc
        return {"success": True}

    @fastapi_app.get("/api/series/{series_id}/next-episode")
    async def next_episode(
        series_id: str,
        x_session_id: str | None = Header(default=None),
        authorization: str | None = Header(default=None),
    ) -> JSONResponse:
        service = get_series_service(fastapi_app)
        identity = await _identity(x_session_id, authorization)
        episode = await service.next_episode_to_watch(identity, series_id)
        return JSONResponse(episode.to_payload() if episode else None)

    @fastapi_app.get("/api/series/{series_id}/episodes")
    async def series_episodes(series_id: str) -> JSONResponse:
        service = get_series_service(fastapi_app)
        try:
            episodes = await service.list_episodes(series_id)
        except CatalogUnavailable as exc:
            raise HTTPException(status_code=502, detail="Failed to fetch episodes") from exc
        return JSONResponse([episode.to_payload() for episode in episodes])

    @fastapi_app.get("/api/series/{series_id}/progress")
    async def series_progress(
        series_id: str,
        x_session_id: str | None = Header(default=None),
        authorization: str | None = Header(default=None),
    ) -> dict[str, float]:
        service = get_series_service(fastapi_app)
        identity = await _identity(x_session_id, authorization)
        return await service.series_progress(identity, series_id)

    @fastapi_app.get("/api/recommendations/{session_id}")
    async def recommendations(
        session_id: str,
        limit: int = 3,
        authorization: str | None = Header(default=None),
    ) -> JSONResponse:
        service = get_progress_service(fastapi_app)
        identity = await _identity(session_id, authorization)
        scores = await service.recommended_categories(identity, limit)
        return JSONResponse([score.to_payload() for score in scores])

    @fastapi_app.post("/api/migrate-watch-history")
    async def migrate_watch_history(
        request: Request, authorization: str | None = Header(default=None)
    ) -> JSONResponse:
        service = get_migration_service(fastapi_app)
        try:
            body = MigrationRequest.model_validate(await _read_json(request))
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=exc.errors()) from exc
        identity = await _identity(body.session_id, authorization)
        if identity.user_id is None or identity.session_id is None:
            raise HTTPException(status_code=400, detail="Missing auth or session")
        try:
            report = await service.migrate_session_to_user(
                identity.session_id, identity.user_id
            )
        except MigrationError as exc:
            logger.warning("Watch history migration failed: %s", exc)
            raise HTTPException(
                status_code=503, detail="Failed to migrate watch history"
            ) from exc
        return JSONResponse(report.to_payload())


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
