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

"""Session data model: states, options and artifacts."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional


class SessionState(str, Enum):
    """Lifecycle state of a capture session."""

    CREATED = "created"
    ACQUIRING_SURFACE = "acquiring_surface"
    READYING_MEDIA = "readying_media"
    CAPTURING = "capturing"
    STOPPING = "stopping"
    ENCODING = "encoding"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES: FrozenSet[SessionState] = frozenset({SessionState.DONE, SessionState.FAILED})

# Forward path; FAILED is reachable from every non-terminal state
_NEXT_STATE: Dict[SessionState, SessionState] = {
    SessionState.CREATED: SessionState.ACQUIRING_SURFACE,
    SessionState.ACQUIRING_SURFACE: SessionState.READYING_MEDIA,
    SessionState.READYING_MEDIA: SessionState.CAPTURING,
    SessionState.CAPTURING: SessionState.STOPPING,
    SessionState.STOPPING: SessionState.ENCODING,
    SessionState.ENCODING: SessionState.DONE,
}


class CaptureStrategy(str, Enum):
    """How the surface produces recorded data."""

    DIRECT_STREAM = "directStream"  # MediaRecorder on the media element's own stream
    TAB_CAPTURE = "tabCapture"      # MediaRecorder on a display capture of the tab


class StopReason(str, Enum):
    """Why a session entered STOPPING."""

    MEDIA_ENDED = "media_ended"
    CONNECTIVITY_LOST = "connectivity_lost"
    EXTERNAL_REQUEST = "external_request"
    CAPTURE_ERROR = "capture_error"


@dataclass
class CaptureOptions:
    """Per-request capture options.

    Attributes:
        playback_rate: Requested rate; None uses the configured default
    """

    playback_rate: Optional[float] = None


@dataclass(frozen=True)
class EncodedArtifact:
    """The final output of a successful session."""

    path: str
    url: Optional[str] = None
    size_bytes: int = 0

    @property
    def locator(self) -> str:
        """URL when one is configured, otherwise the filesystem path."""
        return self.url or self.path

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "url": self.url,
            "size_bytes": self.size_bytes,
        }


class InvalidTransition(RuntimeError):
    """Raised when a controller attempts a transition the state machine forbids."""


@dataclass
class Session:
    """One end-to-end capture-to-encode run.

    Mutated only by the SessionController that owns it.
    """

    source_url: str
    playback_rate: float
    playback_rate_requested: Optional[float] = None
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: SessionState = SessionState.CREATED
    capture_strategy: Optional[CaptureStrategy] = None
    bytes_captured: int = 0
    created_at: float = field(default_factory=time.time)
    ended_at: Optional[float] = None
    stop_reason: Optional[StopReason] = None
    error: Optional[str] = None
    output: Optional[EncodedArtifact] = None
    history: List[SessionState] = field(default_factory=lambda: [SessionState.CREATED])

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def transition(self, new_state: SessionState) -> None:
        """Move to ``new_state``, enforcing the linear lifecycle."""
        if self.state.is_terminal:
            raise InvalidTransition(
                f"Session {self.session_id} is already {self.state.value}"
            )
        if new_state != SessionState.FAILED and _NEXT_STATE.get(self.state) != new_state:
            raise InvalidTransition(
                f"Cannot move session {self.session_id} from "
                f"{self.state.value} to {new_state.value}"
            )
        self.state = new_state
        self.history.append(new_state)
        if new_state.is_terminal:
            self.ended_at = time.time()

    def record_bytes(self, total: int) -> None:
        """Update the captured byte counter; it never decreases."""
        if total > self.bytes_captured:
            self.bytes_captured = total

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "source_url": self.source_url,
            "playback_rate": self.playback_rate,
            "playback_rate_requested": self.playback_rate_requested,
            "capture_strategy": self.capture_strategy.value if self.capture_strategy else None,
            "bytes_captured": self.bytes_captured,
            "created_at": self.created_at,
            "ended_at": self.ended_at,
            "stop_reason": self.stop_reason.value if self.stop_reason else None,
            "error": self.error,
            "output": self.output.to_dict() if self.output else None,
            "history": [state.value for state in self.history],
        }
