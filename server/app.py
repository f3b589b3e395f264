import asyncio
import logging
import os
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Optional

from fastapi import (
    APIRouter,
    Depends,
    FastAPI,
    File,
    HTTPException,
    Request,
    UploadFile,
    WebSocket,
)
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
import uvicorn

from metrics import RelayLogger
from utils.config import load_settings

from .catalog import UploadRejected, UploadTooLarge, list_videos, store_upload, validate_extension
from .commands import manual_command, metrics_to_command
from .relay import ScrollRelay
from .schemas import DeviceCommandRequest, ScrollSample, TransmissionLog
from .scroll_metrics import ScrollAggregator
from .transport import DeviceChannel, build_channel
from .websocket_channel import WebSocketChannel


log = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).resolve().parent / "static"


class AppState:
    """Everything one server instance owns: the metrics record, channel and relay."""

    def __init__(self, settings, channel: Optional[DeviceChannel] = None) -> None:
        self.settings = settings
        self.aggregator = ScrollAggregator(window=settings.speed_window)
        self.channel = channel if channel is not None else build_channel(settings)
        self.relay = ScrollRelay(
            self.channel,
            settings.debounce_ms,
            build_command=partial(
                metrics_to_command,
                full_scale=settings.speed_full_scale,
                min_interval=settings.min_interval_ms,
                max_interval=settings.max_interval_ms,
            ),
        )
        self._open_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        os.makedirs(self.settings.uploads_dir, exist_ok=True)
        self.relay.relay_log = RelayLogger(self.settings.log_db or None)
        self.schedule_open()

    def schedule_open(self) -> None:
        """Open the channel in the background; serial retries must not delay startup."""
        if self._open_task is not None and not self._open_task.done():
            return
        self._open_task = asyncio.get_running_loop().create_task(self.channel.open())

    async def _cancel_open(self) -> None:
        task, self._open_task = self._open_task, None
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    async def reconnect(self) -> None:
        """Drop any open in progress, close the channel and start a fresh open."""
        await self._cancel_open()
        await self.channel.close()
        self.schedule_open()

    async def stop(self) -> None:
        await self.relay.cancel()
        await self._cancel_open()
        await self.channel.close()
        self.relay.relay_log.close()


def get_state(request: Request) -> AppState:
    return request.app.state.relay_state


router = APIRouter()


@router.get("/api")
def get_videos(state: AppState = Depends(get_state)):
    try:
        videos = list_videos(state.settings.uploads_dir, state.settings.uploads_limit)
    except Exception:
        log.exception("Error fetching videos")
        return JSONResponse(status_code=500, content={"error": "Error fetching videos"})
    return {"videos": videos}


@router.post("/upload-video")
async def upload_video(
    my_video: Optional[UploadFile] = File(None, alias="my-video"),
    state: AppState = Depends(get_state),
):
    if my_video is None:
        raise HTTPException(status_code=400, detail="No video uploaded")
    try:
        validate_extension(my_video.filename or "")
    except UploadRejected as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    data = await my_video.read()
    try:
        stored = store_upload(
            my_video.filename, data, state.settings.uploads_dir, state.settings.upload_max_bytes
        )
    except UploadTooLarge as e:
        raise HTTPException(status_code=413, detail=str(e)) from e
    except UploadRejected as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return {"success": True, "filename": stored}


@router.get("/api/scroll-metrics")
def get_scroll_metrics(state: AppState = Depends(get_state)):
    return state.aggregator.snapshot().model_dump(by_alias=True)


@router.post("/api/scroll-metrics")
async def post_scroll_metrics(sample: ScrollSample, state: AppState = Depends(get_state)):
    metrics = state.aggregator.update(sample)
    state.relay.submit(metrics)
    return {
        "status": "received",
        "message": "Metrics queued for processing",
        "debounceMs": state.settings.debounce_ms,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/api/device-command")
async def post_device_command(body: DeviceCommandRequest, state: AppState = Depends(get_state)):
    command = manual_command(
        body.speed,
        body.direction,
        body.angle,
        min_interval=state.settings.min_interval_ms,
        max_interval=state.settings.max_interval_ms,
    )
    result = await state.relay.deliver(command)
    if not result.ok:
        return JSONResponse(
            status_code=500,
            content={"status": "error", "message": result.error, "command": command.to_dict()},
        )
    return {"status": result.status.value, "command": command.to_dict(), "result": result.to_dict()}


@router.post("/api/reconnect-esp32")
async def reconnect_device(state: AppState = Depends(get_state)):
    log.info("Reconnect requested for %s channel", state.channel.name)
    try:
        await state.reconnect()
    except Exception as e:
        log.exception("Error during reconnection")
        return JSONResponse(status_code=500, content={"status": "error", "message": str(e)})
    return {"status": "success", "message": "Reconnection initiated"}


@router.get("/api/relay-status")
def relay_status(state: AppState = Depends(get_state)):
    channel = state.channel
    last = state.relay.last_result
    return {
        "transport": channel.name,
        "connected": channel.is_connected,
        "devices": channel.connected_devices() if isinstance(channel, WebSocketChannel) else [],
        "debounceMs": state.settings.debounce_ms,
        "relayCount": state.relay.relay_count,
        "lastCommand": state.relay.last_command.to_dict() if state.relay.last_command else None,
        "lastResult": last.to_dict() if last else None,
        "recent": state.relay.relay_log.recent(10),
    }


@router.post("/api/log-transmission")
def log_transmission(body: TransmissionLog):
    log.debug("[ESP32-LOG] %s: %s", body.type, body.data)
    return {"status": "success"}


@router.get("/scroll-speeds")
def scroll_speeds():
    return FileResponse(STATIC_DIR / "scroll_speeds.html", media_type="text/html")


@router.websocket("/esp32")
async def esp32_socket(websocket: WebSocket):
    channel = websocket.app.state.relay_state.channel
    if not isinstance(channel, WebSocketChannel):
        # devices only connect here when the websocket transport is selected
        await websocket.close(code=1008)
        return
    await channel.handle(websocket)


async def _validation_error(request: Request, exc: RequestValidationError):
    # rejected inputs may be non-finite floats, which JSON cannot carry
    errors = [{k: v for k, v in err.items() if k != "input"} for err in exc.errors()]
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(errors)})


async def _unhandled_error(request: Request, exc: Exception):
    log.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Something broke!"})


def create_app(settings=None, channel: Optional[DeviceChannel] = None) -> FastAPI:
    """Build the application; ``channel`` replaces the configured transport."""
    settings = settings or load_settings()
    state = AppState(settings, channel)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        await state.start()
        log.info(
            "Relay ready: transport=%s debounce=%dms", state.channel.name, settings.debounce_ms
        )
        try:
            yield
        finally:
            await state.stop()

    app = FastAPI(title="Scroll relay", lifespan=lifespan)
    app.state.relay_state = state
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Range"],
    )

    @app.middleware("http")
    async def _log_requests(request: Request, call_next):
        if request.method != "GET":
            log.debug("%s %s", request.method, request.url.path)
        return await call_next(request)

    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(Exception, _unhandled_error)
    app.include_router(router)

    app.mount(
        "/uploads",
        StaticFiles(directory=settings.uploads_dir, check_dir=False),
        name="uploads",
    )
    if os.path.isdir(settings.client_build_dir):
        app.mount("/", StaticFiles(directory=settings.client_build_dir, html=True), name="client")
    return app


app = create_app()


if __name__ == "__main__":
    settings = app.state.relay_state.settings
    uvicorn.run(app, host=settings.host, port=settings.port)
