from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api_models import ChaosStarted, ChaosStopped, ErrorReport, HealthReport, VersionReport
from .chaos import ChaosMode, ChaosState, InvalidModeError
from .settings import Settings, settings as default_settings

log = logging.getLogger(__name__)

SIMULATED_ERROR = "Chaos: Simulated error"
# nginx's code for "client closed request"; never reaches the caller.
CLIENT_CLOSED_REQUEST = 499


def utc_timestamp() -> str:
    """UTC now as ISO-8601 with milliseconds, e.g. 2024-05-01T12:00:00.123Z."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


async def get_chaos_state(request: Request) -> ChaosState:
    return request.app.state.chaos


async def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorReport(error=message).model_dump())


async def wait_unless_disconnected(request: Request, delay_s: float, poll_s: float) -> bool:
    """Suspend this request for `delay_s` seconds without blocking the loop.

    The wait is cut into `poll_s` slices so a caller hanging up is noticed
    quickly. Returns False if the caller went away before the delay elapsed.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + max(0.0, delay_s)
    poll_s = max(0.01, poll_s)
    while True:
        remaining = deadline - loop.time()
        if remaining <= 0:
            return True
        if await request.is_disconnected():
            return False
        await asyncio.sleep(min(poll_s, remaining))


async def _respond_with_chaos(
    request: Request,
    mode: ChaosMode,
    cfg: Settings,
    respond: Callable[[], Response],
) -> Response:
    # `mode` is read once by the caller; nothing below looks at the state again.
    if mode is ChaosMode.ERROR:
        return _error(500, SIMULATED_ERROR)
    if mode is ChaosMode.TIMEOUT:
        completed = await wait_unless_disconnected(request, cfg.chaos_timeout_s, cfg.disconnect_poll_s)
        if not completed:
            log.info("Caller disconnected during simulated timeout on %s; response abandoned", request.url.path)
            return Response(status_code=CLIENT_CLOSED_REQUEST)
    return respond()


def _health_response() -> Response:
    return JSONResponse(HealthReport().model_dump())


def _version_response(cfg: Settings) -> Response:
    report = VersionReport(app=cfg.app_pool, release=cfg.release_id, timestamp=utc_timestamp())
    headers = {"X-App-Pool": cfg.app_pool, "X-Release-Id": cfg.release_id}
    return JSONResponse(report.model_dump(), headers=headers)


def create_app(cfg: Settings | None = None, state: ChaosState | None = None) -> FastAPI:
    """Build the health/version/chaos API around an owned ChaosState."""
    cfg = cfg or default_settings
    app = FastAPI(
        title="Blue/Green Chaos Backend",
        # Only the documented routes exist; everything else is a 404.
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = cfg
    app.state.chaos = state or ChaosState()

    @app.exception_handler(InvalidModeError)
    async def _invalid_mode(request: Request, exc: InvalidModeError) -> JSONResponse:
        log.info("Rejected chaos mode %r", exc.mode)
        return _error(400, str(exc))

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code in (404, 405):
            return _error(404, "Not found")
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def _bad_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(400, "Invalid request")

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception) -> JSONResponse:
        log.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(500, "Internal server error")

    @app.get("/healthz", response_model=HealthReport, responses={500: {"model": ErrorReport}})
    async def healthz(
        request: Request,
        state: ChaosState = Depends(get_chaos_state),
        settings: Settings = Depends(get_settings),
    ) -> Response:
        mode = state.current_mode()
        return await _respond_with_chaos(request, mode, settings, _health_response)

    @app.get("/version", response_model=VersionReport, responses={500: {"model": ErrorReport}})
    async def version(
        request: Request,
        state: ChaosState = Depends(get_chaos_state),
        settings: Settings = Depends(get_settings),
    ) -> Response:
        mode = state.current_mode()
        # Timestamp is taken when the response is built, after any simulated delay.
        return await _respond_with_chaos(request, mode, settings, lambda: _version_response(settings))

    # Control handlers and their dependencies stay on the event loop so writes
    # reach the lock in the order the calls arrived.
    @app.post("/chaos/start", response_model=ChaosStarted, responses={400: {"model": ErrorReport}})
    async def chaos_start(mode: str | None = None, state: ChaosState = Depends(get_chaos_state)) -> ChaosStarted:
        accepted = state.set_mode(mode)
        return ChaosStarted(mode=accepted.value)

    @app.post("/chaos/stop", response_model=ChaosStopped)
    async def chaos_stop(state: ChaosState = Depends(get_chaos_state)) -> ChaosStopped:
        state.clear_mode()
        return ChaosStopped()

    return app
