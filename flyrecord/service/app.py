# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
FastAPI application for the FlyRecord service.

A thin HTTP surface over the session manager and the progress bus:

- Start, list, inspect and stop recordings
- Follow progress as server-sent events
- Download encoded recordings
- Health check

Example Usage:
    Start the service:
    ```bash
    uvicorn flyrecord.service.app:app --host 0.0.0.0 --port 8000
    ```

    Start a recording:
    ```bash
    curl -X POST http://localhost:8000/recordings \\
      -H "Content-Type: application/json" \\
      -d '{"url": "https://example.org/play/1", "playback_rate": 1.5}'
    ```

    Follow its progress:
    ```bash
    curl -N "http://localhost:8000/progress?recording_id=<id>"
    ```
"""

from __future__ import annotations

import asyncio
import json
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse

from flyrecord import __version__
from flyrecord.config import RecorderConfig
from flyrecord.core.progress import ProgressBus, Subscription
from flyrecord.exceptions import InvalidInputError
from flyrecord.service.models import (
    ErrorResponse,
    HealthResponse,
    RecordRequest,
    RecordResponse,
    SessionInfo,
    SessionListResponse,
    StopResponse,
)
from flyrecord.service.session_manager import SessionManager
from flyrecord.utils.logger import logger

KEEPALIVE_INTERVAL = 15.0

# Global state
recorder_config: RecorderConfig = None
progress_bus: ProgressBus = None
session_manager: SessionManager = None
start_time: float = 0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup and shutdown.

    Startup builds the configuration from the environment, the progress
    bus and the session manager. Shutdown stops every active session and
    closes all progress streams.
    """
    global recorder_config, progress_bus, session_manager, start_time

    # Startup
    logger.info("Starting FlyRecord service...")
    recorder_config = RecorderConfig.from_env()
    Path(recorder_config.output_dir).mkdir(parents=True, exist_ok=True)
    progress_bus = ProgressBus()
    session_manager = SessionManager(recorder_config, progress_bus)
    start_time = time.time()
    logger.info(f"FlyRecord service started (output: {recorder_config.output_dir})")

    yield

    # Shutdown
    logger.info("Shutting down FlyRecord service...")
    await session_manager.cleanup_all()
    progress_bus.close()
    logger.info("FlyRecord service shut down")


app = FastAPI(
    title="FlyRecord API",
    description="Record media playing in a web page and transcode it to MP4.",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    license_info={
        "name": "Apache 2.0",
        "url": "https://www.apache.org/licenses/LICENSE-2.0.html",
    },
    openapi_tags=[
        {"name": "Health", "description": "Service status"},
        {"name": "Recordings", "description": "Start, inspect and stop recordings"},
        {"name": "Progress", "description": "Server-sent progress events"},
        {"name": "Files", "description": "Encoded recordings"},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
@app.exception_handler(InvalidInputError)
async def invalid_input_handler(request, exc):
    """Rejected capture requests."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(error="InvalidInput", message=str(exc)).model_dump(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="InternalServerError",
            message="An unexpected error occurred",
            details={"exception": str(exc)},
        ).model_dump(),
    )


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="Health check",
)
async def health_check():
    """Service version, uptime and session counters."""
    stats = session_manager.get_stats()
    return HealthResponse(
        status="healthy",
        version=__version__,
        uptime_seconds=time.time() - start_time,
        active_sessions=session_manager.get_active_session_count(),
        system_info={
            "max_sessions": stats.get("max_sessions"),
            "completed_sessions": stats.get("completed_sessions", 0),
            "failed_sessions": stats.get("failed_sessions", 0),
            "subscribers": stats.get("subscribers", 0),
        },
    )


@app.post(
    "/recordings",
    response_model=RecordResponse,
    tags=["Recordings"],
    summary="Start a recording",
    responses={
        400: {"model": ErrorResponse, "description": "Invalid URL or playback rate"},
        503: {"model": ErrorResponse, "description": "Too many active recordings"},
    },
)
async def start_recording(request: RecordRequest):
    """
    Start recording the media on a page.

    The recording runs in the background; follow it with
    `GET /progress?recording_id=<recording_id>`.
    """
    try:
        session = await session_manager.start_session(
            request.url,
            playback_rate=request.playback_rate,
        )
    except RuntimeError as e:
        logger.warning(f"Rejected recording request: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return RecordResponse(
        recording_id=session.session_id,
        message="Recording started",
        playback_rate=session.playback_rate,
    )


@app.get(
    "/recordings",
    response_model=SessionListResponse,
    tags=["Recordings"],
    summary="List active recordings",
)
async def list_recordings():
    sessions = [SessionInfo.from_session(s) for s in session_manager.list_sessions()]
    return SessionListResponse(sessions=sessions, total=len(sessions))


@app.get(
    "/recordings/{recording_id}",
    response_model=SessionInfo,
    tags=["Recordings"],
    summary="Get an active recording",
)
async def get_recording(recording_id: str):
    session = session_manager.get(recording_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Recording not found: {recording_id}",
        )
    return SessionInfo.from_session(session)


@app.delete(
    "/recordings/{recording_id}",
    response_model=StopResponse,
    tags=["Recordings"],
    summary="Stop a recording",
)
async def stop_recording(recording_id: str):
    """
    Stop capturing. Whatever was recorded so far is still encoded, and
    the outcome arrives on the progress stream.
    """
    try:
        triggered = session_manager.stop_session(recording_id)
    except KeyError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Recording not found: {recording_id}",
        )
    return StopResponse(
        recording_id=recording_id,
        stop_requested=triggered,
        message="Stop requested" if triggered else "Stop already in progress",
    )


def _sse(data: Dict[str, Any]) -> str:
    return f"data: {json.dumps(data)}\n\n"


async def _event_stream(
    request: Request,
    subscription: Subscription,
    recording_id: Optional[str],
) -> AsyncIterator[str]:
    try:
        yield _sse({"type": "connected", "recordingId": recording_id})
        while True:
            try:
                event = await asyncio.wait_for(subscription.get(), timeout=KEEPALIVE_INTERVAL)
            except asyncio.TimeoutError:
                if await request.is_disconnected():
                    break
                yield ":keepalive\n\n"
                continue
            if event is None:
                break
            yield _sse(event.to_dict())
    finally:
        subscription.close()


@app.get(
    "/progress",
    tags=["Progress"],
    summary="Follow recording progress",
)
async def progress(request: Request, recording_id: Optional[str] = None):
    """
    Server-sent progress events.

    With `recording_id` the stream carries that recording's events only and
    ends after its `complete` or `error` event. Without it, every
    recording's events are streamed until the client disconnects.
    """
    if recording_id is not None and session_manager.get(recording_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Recording not found: {recording_id}",
        )

    # Events published before the body starts streaming are queued here
    subscription = progress_bus.subscribe(recording_id)
    return StreamingResponse(
        _event_stream(request, subscription, recording_id),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@app.get(
    "/files/{filename}",
    tags=["Files"],
    summary="Download an encoded recording",
)
async def get_file(filename: str):
    output_dir = Path(recorder_config.output_dir)
    path = output_dir / filename
    if Path(filename).name != filename or not path.is_file():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"File not found: {filename}",
        )
    return FileResponse(path, media_type="video/mp4", filename=filename)
