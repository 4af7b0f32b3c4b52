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
Session controller for FlyRecord.

One controller drives one session from request to terminal state:

    CREATED -> ACQUIRING_SURFACE -> READYING_MEDIA -> CAPTURING
            -> STOPPING -> ENCODING -> DONE

with FAILED reachable from every non-terminal state. The controller is the
only component that may declare a session done or failed, and it publishes
exactly one terminal event per session.

While capturing, three tasks cooperate:

- the run task, waiting for a stop request
- a chunk pump moving data from the capture source into the chunk sink
- a monitor polling the surface for position, end of media and connectivity

Every stop trigger (media ended, connectivity lost, external request,
capture error) goes through ``request_stop``, and a single finalize
routine closes the capture the same way whatever the trigger was.

Example:
    >>> controller = SessionController(bus, config, source_factory)
    >>> session = await controller.begin("https://example.org/play/1")
    >>> session = await controller.wait()
    >>> session.state
    <SessionState.DONE: 'done'>
"""

from __future__ import annotations

import asyncio
import math
import os
from typing import Any, Callable, Dict, Optional

from flyrecord.config import RecorderConfig
from flyrecord.core.capture_source import CaptureSource, SurfaceStatus
from flyrecord.core.chunk_sink import ChunkSink
from flyrecord.core.encoder import EncodeSupervisor
from flyrecord.core.progress import EventType, ProgressBus
from flyrecord.core.session import (
    CaptureOptions,
    EncodedArtifact,
    Session,
    SessionState,
    StopReason,
)
from flyrecord.exceptions import (
    CaptureInterrupted,
    EmptyCaptureError,
    FlyRecordError,
    PersistenceError,
    SurfaceAcquisitionError,
)
from flyrecord.utils.logger import logger
from flyrecord.validators import clamp_playback_rate, validate_source_url

SourceFactory = Callable[[Session], CaptureSource]
TerminalCallback = Callable[[Session], None]

TOTAL_STEPS = 5

STEP_FOR_STATE: Dict[SessionState, int] = {
    SessionState.ACQUIRING_SURFACE: 1,
    SessionState.READYING_MEDIA: 2,
    SessionState.CAPTURING: 3,
    SessionState.STOPPING: 4,
    SessionState.ENCODING: 5,
}


def compute_progress(current_time: float, duration: Optional[float]) -> Optional[int]:
    """Capture progress percentage, or None when the duration is unknown.

    Capped at 99: 100 belongs to the complete event.

    Example:
        >>> compute_progress(30.0, 60.0)
        50
        >>> compute_progress(60.0, 60.0)
        99
    """
    if not duration or duration <= 0 or not math.isfinite(duration):
        return None
    percent = math.floor(min(100.0, max(0.0, current_time) / duration * 100))
    return min(percent, 99)


class SessionController:
    """
    Orchestrates one capture-to-encode session.

    Attributes:
        bus: Progress bus receiving this session's events
        config: Recorder configuration
        encoder: Encode supervisor used after capture

    Example:
        >>> controller = SessionController(bus, config, lambda s: PlaywrightCaptureSource(config))
        >>> await controller.begin(url, CaptureOptions(playback_rate=1.5))
        >>> controller.request_stop()
        True
    """

    def __init__(
        self,
        bus: ProgressBus,
        config: RecorderConfig,
        source_factory: SourceFactory,
        encoder: Optional[EncodeSupervisor] = None,
        on_terminal: Optional[TerminalCallback] = None,
    ) -> None:
        self.bus = bus
        self.config = config
        self.encoder = encoder or EncodeSupervisor(config.encode)
        self._source_factory = source_factory
        self._on_terminal = on_terminal

        self._session: Optional[Session] = None
        self._source: Optional[CaptureSource] = None
        self._sink: Optional[ChunkSink] = None
        self._run_task: Optional[asyncio.Task] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._monitor_task: Optional[asyncio.Task] = None

        self._stop_requested = False
        self._stop_event = asyncio.Event()
        self._capture_error: Optional[FlyRecordError] = None
        self._finalized = False
        self._terminal_published = False
        self._progress = 0
        self._step = 0
        self._last_encoded_second = -1

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def session_id(self) -> Optional[str]:
        return self._session.session_id if self._session else None

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    @property
    def done(self) -> bool:
        return self._run_task is not None and self._run_task.done()

    async def begin(
        self,
        source_url: str,
        options: Optional[CaptureOptions] = None,
    ) -> Session:
        """
        Validate the request, create the session and schedule its run.

        Args:
            source_url: URL of the page hosting the media
            options: Capture options; defaults apply when omitted

        Returns:
            The newly created session (state CREATED)

        Raises:
            InvalidInputError: If the URL or playback rate is rejected.
                Nothing has been acquired when this is raised.
            RuntimeError: If this controller already started a session
        """
        if self._session is not None:
            raise RuntimeError("Controller already started a session")

        options = options or CaptureOptions()
        url = validate_source_url(source_url)
        rate = clamp_playback_rate(
            options.playback_rate,
            minimum=self.config.min_playback_rate,
            maximum=self.config.max_playback_rate,
            default=self.config.default_playback_rate,
        )
        if options.playback_rate is not None and rate != options.playback_rate:
            logger.warning(
                f"[CONTROLLER] Playback rate {options.playback_rate} clamped to {rate}"
            )

        self._session = Session(
            source_url=url,
            playback_rate=rate,
            playback_rate_requested=options.playback_rate,
        )
        logger.info(
            f"[CONTROLLER] Session {self._session.session_id} created "
            f"(url: {url}, rate: {rate})"
        )
        self._run_task = asyncio.create_task(
            self._run(), name=f"flyrecord-session-{self._session.session_id}"
        )
        return self._session

    def request_stop(self, reason: StopReason = StopReason.EXTERNAL_REQUEST) -> bool:
        """
        Ask the session to stop capturing.

        Only the first call has an effect; it records the reason and wakes
        the run task. Safe to call from any task on the loop.

        Returns:
            True if this call triggered the stop, False if one was already requested
        """
        if self._stop_requested:
            return False
        self._stop_requested = True
        if self._session is not None:
            self._session.stop_reason = reason
            logger.info(
                f"[CONTROLLER] Stop requested for session {self._session.session_id} "
                f"({reason.value})"
            )
        self._stop_event.set()
        return True

    async def wait(self) -> Session:
        """Wait for the session to reach a terminal state and return it."""
        if self._run_task is None:
            raise RuntimeError("Session not started. Call begin() first.")
        # A cancelled waiter must not cancel the session itself
        await asyncio.shield(self._run_task)
        return self._session

    async def cancel(self) -> None:
        """Abort the run task; the session still ends FAILED with cleanup."""
        if self._run_task is None or self._run_task.done():
            return
        self._run_task.cancel()
        try:
            await self._run_task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        session = self._session
        artifact: Optional[EncodedArtifact] = None
        error: Optional[BaseException] = None
        cancelled = False

        try:
            await self._acquire_surface()
            self._raise_if_stopped()
            await self._ready_media()
            self._raise_if_stopped()
            await self._capture()
            if self._capture_error is not None:
                raise self._capture_error
            if session.bytes_captured == 0:
                raise EmptyCaptureError("Capture stopped before any media data was recorded")
            artifact = await self._encode()
        except asyncio.CancelledError:
            cancelled = True
            error = FlyRecordError("Session cancelled")
        except FlyRecordError as e:
            error = e
        except Exception as e:
            logger.exception(f"[CONTROLLER] Unexpected error in session {session.session_id}")
            error = e

        await self._cleanup()

        if error is None:
            self._complete(artifact)
        else:
            self._fail(error)

        if self._on_terminal is not None:
            try:
                self._on_terminal(session)
            except Exception as e:
                logger.warning(f"[CONTROLLER] Terminal callback failed: {e}")

        if cancelled:
            raise asyncio.CancelledError()

    def _raise_if_stopped(self) -> None:
        if self._stop_requested:
            raise CaptureInterrupted("Session stopped before capture started")

    async def _acquire_surface(self) -> None:
        session = self._session
        session.transition(SessionState.ACQUIRING_SURFACE)
        self._publish_progress("Launching playback surface...")

        self._source = self._source_factory(session)
        try:
            await self._source.open(session.source_url)
        except FlyRecordError:
            raise
        except Exception as e:
            raise SurfaceAcquisitionError(f"Failed to open {session.source_url}: {e}") from e

        self._publish_progress("Page loaded, looking for media...")

    async def _ready_media(self) -> None:
        session = self._session
        session.transition(SessionState.READYING_MEDIA)
        self._publish_progress("Waiting for media to become playable...")

        try:
            strategy = await self._source.prepare(session.playback_rate, self.config.ready_timeout)
        except FlyRecordError:
            raise
        except Exception as e:
            raise SurfaceAcquisitionError(f"Media never became ready: {e}") from e

        session.capture_strategy = strategy
        logger.info(
            f"[CONTROLLER] Session {session.session_id} media ready "
            f"(strategy: {strategy.value}, rate: {session.playback_rate})"
        )

    async def _capture(self) -> None:
        session = self._session
        self._sink = ChunkSink(self.config.capture_path(session.session_id), fsync=self.config.fsync)
        await self._sink.open()

        try:
            await self._source.start()
        except FlyRecordError:
            raise
        except Exception as e:
            raise SurfaceAcquisitionError(f"Failed to start recording: {e}") from e

        session.transition(SessionState.CAPTURING)
        self._publish_progress("Recording started")

        self._pump_task = asyncio.create_task(self._pump_chunks())
        self._monitor_task = asyncio.create_task(self._monitor())

        await self._stop_event.wait()
        await self._finalize()

    async def _pump_chunks(self) -> None:
        """Move chunks from the source into the sink, in order."""
        session = self._session
        try:
            async for chunk in self._source.chunks():
                ack = await self._sink.accept(chunk)
                session.record_bytes(ack.total_bytes)
        except CaptureInterrupted as e:
            logger.warning(f"[CONTROLLER] Capture interrupted: {e}")
            self.request_stop(StopReason.CONNECTIVITY_LOST)
            return
        except PersistenceError as e:
            self._capture_error = e
            self.request_stop(StopReason.CAPTURE_ERROR)
            return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[CONTROLLER] Chunk stream failed: {e}")
            self._capture_error = FlyRecordError(f"Chunk stream failed: {e}")
            self.request_stop(StopReason.CAPTURE_ERROR)
            return

        self.request_stop(StopReason.MEDIA_ENDED)

    async def _monitor(self) -> None:
        """Poll the surface until a stop is requested."""
        while not self._stop_requested:
            await asyncio.sleep(self.config.poll_interval)
            if self._stop_requested:
                break

            try:
                status = await self._source.status()
            except Exception as e:
                logger.warning(f"[CONTROLLER] Status probe failed: {e}")
                status = SurfaceStatus(connected=False)

            if not status.connected:
                logger.warning("[CONTROLLER] Surface lost connectivity")
                self.request_stop(StopReason.CONNECTIVITY_LOST)
                break
            if status.ended:
                self.request_stop(StopReason.MEDIA_ENDED)
                break

            percent = compute_progress(status.current_time, status.duration)
            if percent is not None:
                self._progress = max(self._progress, percent)
            self._publish_progress(
                "Recording in progress",
                currentTime=status.current_time,
                duration=status.duration,
                bytesCaptured=self._session.bytes_captured,
            )
            logger.debug(
                f"[CONTROLLER] Session {self._session.session_id}: "
                f"{status.current_time:.1f}s / {status.duration}s ({self._progress}%)"
            )

    async def _finalize(self) -> None:
        """Close the capture. Runs once, whatever triggered the stop."""
        if self._finalized:
            return
        self._finalized = True
        session = self._session

        session.transition(SessionState.STOPPING)
        reason = session.stop_reason.value if session.stop_reason else "unknown"
        self._publish_progress(f"Stopping recording ({reason})...")

        await self._cancel_task(self._monitor_task)

        try:
            await self._source.stop()
        except Exception as e:
            logger.warning(f"[CONTROLLER] Error stopping capture source: {e}")

        if self._pump_task is not None and not self._pump_task.done():
            try:
                await asyncio.wait_for(self._pump_task, timeout=self.config.drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"[CONTROLLER] Chunk stream did not end within "
                    f"{self.config.drain_timeout}s, abandoning remaining data"
                )

        await self._sink.close()
        session.record_bytes(self._sink.bytes_written)

        try:
            await self._source.close()
        except Exception as e:
            logger.warning(f"[CONTROLLER] Error releasing capture source: {e}")

        logger.info(
            f"[CONTROLLER] Session {session.session_id} capture finalized "
            f"({session.bytes_captured} bytes, reason: {reason})"
        )

    async def _encode(self) -> EncodedArtifact:
        session = self._session
        session.transition(SessionState.ENCODING)
        self._publish_progress("Encoding video...", bytesCaptured=session.bytes_captured)

        output_path = self.config.output_path(session.session_id)
        return await self.encoder.encode(
            self.config.capture_path(session.session_id),
            output_path,
            on_progress=self._on_encode_progress,
            url=self.config.locator_for(output_path),
        )

    def _on_encode_progress(self, seconds: float) -> None:
        # ffmpeg reports several times a second; one event per encoded second
        whole = int(seconds)
        if whole <= self._last_encoded_second:
            return
        self._last_encoded_second = whole
        self._publish_progress("Encoding video...", encodedTime=seconds)

    async def _cleanup(self) -> None:
        """Release everything this session acquired. Never raises."""
        await self._cancel_task(self._monitor_task)
        await self._cancel_task(self._pump_task)

        if self._sink is not None:
            try:
                await self._sink.close()
            except Exception as e:
                logger.warning(f"[CONTROLLER] Error closing chunk sink: {e}")

        if self._source is not None:
            try:
                await self._source.close()
            except Exception as e:
                logger.warning(f"[CONTROLLER] Error releasing capture source: {e}")

        capture_path = self.config.capture_path(self._session.session_id)
        try:
            os.remove(capture_path)
            logger.debug(f"[CONTROLLER] Removed capture artifact {capture_path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"[CONTROLLER] Could not remove {capture_path}: {e}")

    @staticmethod
    async def _cancel_task(task: Optional[asyncio.Task]) -> None:
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _complete(self, artifact: EncodedArtifact) -> None:
        session = self._session
        session.output = artifact
        session.transition(SessionState.DONE)
        logger.info(
            f"[CONTROLLER] Session {session.session_id} completed: {artifact.locator}"
        )
        self._publish_terminal(
            EventType.COMPLETE,
            {
                "message": "Recording completed successfully",
                "step": TOTAL_STEPS,
                "totalSteps": TOTAL_STEPS,
                "progress": 100,
                "outputLocator": artifact.locator,
                "outputPath": artifact.path,
                "captureStrategy": (
                    session.capture_strategy.value if session.capture_strategy else None
                ),
                "playbackRate": session.playback_rate,
                "bytesCaptured": session.bytes_captured,
            },
        )

    def _fail(self, error: BaseException) -> None:
        session = self._session
        session.error = str(error) or type(error).__name__
        session.transition(SessionState.FAILED)
        logger.error(f"[CONTROLLER] Session {session.session_id} failed: {session.error}")
        self._publish_terminal(
            EventType.ERROR,
            {
                "message": session.error,
                "errorType": type(error).__name__,
                "step": self._step,
                "totalSteps": TOTAL_STEPS,
            },
        )

    def _publish_progress(self, message: str, **extra: Any) -> None:
        if self._terminal_published:
            return
        self._step = max(self._step, STEP_FOR_STATE.get(self._session.state, self._step))
        payload: Dict[str, Any] = {
            "message": message,
            "step": self._step,
            "totalSteps": TOTAL_STEPS,
            "progress": self._progress,
        }
        payload.update(extra)
        self.bus.publish(self._session.session_id, EventType.PROGRESS, payload)

    def _publish_terminal(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        if self._terminal_published:
            return
        self._terminal_published = True
        self.bus.publish(self._session.session_id, event_type, payload)
