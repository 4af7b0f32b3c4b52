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
Session manager for the FlyRecord service.

The process-wide registry of active capture sessions. It is created once
at service start-up and passed by reference; nothing else keeps global
session state. It:

- Creates one SessionController per accepted request
- Enforces the concurrent session limit
- Routes external stop requests
- Forgets a session as soon as it reaches a terminal state
- Stops and drains every session on shutdown
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List, Optional

from flyrecord.config import RecorderConfig
from flyrecord.core.capture_source import CaptureSource
from flyrecord.core.controller import SessionController, SourceFactory
from flyrecord.core.encoder import EncodeSupervisor
from flyrecord.core.playwright_source import PlaywrightCaptureSource
from flyrecord.core.progress import ProgressBus
from flyrecord.core.session import CaptureOptions, Session, SessionState, StopReason
from flyrecord.utils.logger import logger


class SessionManager:
    """
    Registry of active capture sessions.

    Attributes:
        config: Recorder configuration shared by all sessions
        bus: Progress bus every session publishes to
        max_sessions: Maximum concurrently active sessions

    Example:
        >>> manager = SessionManager(RecorderConfig(), ProgressBus())
        >>> session = await manager.start_session("https://example.org/play/1")
        >>> manager.stop_session(session.session_id)
        True
    """

    def __init__(
        self,
        config: Optional[RecorderConfig] = None,
        bus: Optional[ProgressBus] = None,
        source_factory: Optional[SourceFactory] = None,
        encoder: Optional[EncodeSupervisor] = None,
    ) -> None:
        self.config = config or RecorderConfig()
        self.bus = bus or ProgressBus()
        self.max_sessions = self.config.max_sessions
        self.encoder = encoder or EncodeSupervisor(self.config.encode)
        self._source_factory = source_factory or self._default_source_factory

        self._controllers: Dict[str, SessionController] = {}
        self._lock = asyncio.Lock()
        self._started_at = time.time()
        self._total_sessions = 0
        self._completed_sessions = 0
        self._failed_sessions = 0

        logger.info(f"[SESSION_MGR] Initialized (max sessions: {self.max_sessions})")

    def _default_source_factory(self, session: Session) -> CaptureSource:
        return PlaywrightCaptureSource(self.config)

    async def start_session(
        self,
        url: str,
        playback_rate: Optional[float] = None,
    ) -> Session:
        """
        Accept a capture request and start its session.

        Args:
            url: Page hosting the media to capture
            playback_rate: Requested playback rate, clamped to the configured range

        Returns:
            The new session

        Raises:
            InvalidInputError: If the request is rejected
            RuntimeError: If the maximum number of sessions is active
        """
        async with self._lock:
            if len(self._controllers) >= self.max_sessions:
                logger.error(f"[SESSION_MGR] Max sessions reached ({self.max_sessions})")
                raise RuntimeError(f"Maximum sessions reached ({self.max_sessions})")

            controller = SessionController(
                self.bus,
                self.config,
                self._source_factory,
                encoder=self.encoder,
                on_terminal=self._on_terminal,
            )
            session = await controller.begin(url, CaptureOptions(playback_rate=playback_rate))
            self._controllers[session.session_id] = controller
            self._total_sessions += 1

        logger.info(
            f"[SESSION_MGR] Session {session.session_id} started "
            f"(active: {len(self._controllers)})"
        )
        return session

    def get(self, session_id: str) -> Optional[Session]:
        """Get an active session, or None if unknown or already finished."""
        controller = self._controllers.get(session_id)
        return controller.session if controller else None

    def get_controller(self, session_id: str) -> Optional[SessionController]:
        return self._controllers.get(session_id)

    def list_sessions(self) -> List[Session]:
        return [controller.session for controller in self._controllers.values()]

    def stop_session(
        self,
        session_id: str,
        reason: StopReason = StopReason.EXTERNAL_REQUEST,
    ) -> bool:
        """
        Request a session stop.

        Returns:
            True if this call triggered the stop, False if one was already pending

        Raises:
            KeyError: If the session is not active
        """
        controller = self._controllers.get(session_id)
        if controller is None:
            raise KeyError(session_id)
        return controller.request_stop(reason)

    async def wait(self, session_id: str) -> Session:
        """Wait for an active session to reach its terminal state."""
        controller = self._controllers.get(session_id)
        if controller is None:
            raise KeyError(session_id)
        return await controller.wait()

    def _on_terminal(self, session: Session) -> None:
        self._controllers.pop(session.session_id, None)
        if session.state == SessionState.DONE:
            self._completed_sessions += 1
        else:
            self._failed_sessions += 1
        logger.info(
            f"[SESSION_MGR] Session {session.session_id} finished ({session.state.value}), "
            f"active: {len(self._controllers)}"
        )

    async def cleanup_all(self, timeout: float = 30.0) -> None:
        """
        Stop every active session and wait for them to finish.

        Sessions still running after ``timeout`` are cancelled; they end
        FAILED but still release their resources.
        """
        controllers = list(self._controllers.values())
        if not controllers:
            return

        logger.info(f"[SESSION_MGR] Stopping {len(controllers)} active sessions")
        for controller in controllers:
            controller.request_stop(StopReason.EXTERNAL_REQUEST)

        _, pending = await asyncio.wait(
            [asyncio.ensure_future(controller.wait()) for controller in controllers],
            timeout=timeout,
        )
        if pending:
            logger.warning(f"[SESSION_MGR] {len(pending)} sessions did not finish, cancelling")
            for waiter in pending:
                waiter.cancel()
            for controller in controllers:
                await controller.cancel()

        self._controllers.clear()
        logger.info("[SESSION_MGR] All sessions cleaned up")

    def get_active_session_count(self) -> int:
        return len(self._controllers)

    def get_stats(self) -> Dict[str, Any]:
        """Get manager statistics."""
        states: Dict[str, int] = {}
        for controller in self._controllers.values():
            state = controller.session.state.value
            states[state] = states.get(state, 0) + 1

        return {
            "active_sessions": len(self._controllers),
            "max_sessions": self.max_sessions,
            "total_sessions": self._total_sessions,
            "completed_sessions": self._completed_sessions,
            "failed_sessions": self._failed_sessions,
            "sessions_by_state": states,
            "subscribers": self.bus.subscriber_count,
            "uptime_seconds": time.time() - self._started_at,
        }
