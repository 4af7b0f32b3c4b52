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
Pydantic models for FlyRecord REST API requests and responses.

Example:
    >>> from flyrecord.service.models import RecordRequest
    >>> request = RecordRequest(url="https://example.org/play/1", playback_rate=1.5)
    >>> print(request.model_dump_json())
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from flyrecord.core.session import Session


class RecordRequest(BaseModel):
    """Request to start a capture session.

    The URL is validated by the session controller, not here, so that
    every entry point rejects the same inputs the same way.
    """

    url: Optional[str] = Field(None, description="Page hosting the media to record")
    playback_rate: Optional[float] = Field(
        None,
        description="Playback rate; values outside [0.5, 2.0] are clamped",
    )


class RecordResponse(BaseModel):
    """Response for an accepted capture request."""

    recording_id: str = Field(..., description="Session identifier")
    message: str = Field(..., description="Human readable status")
    playback_rate: float = Field(..., description="Effective playback rate")


class OutputInfo(BaseModel):
    """Encoded artifact of a finished session."""

    path: str = Field(..., description="Filesystem path of the encoded file")
    url: Optional[str] = Field(None, description="Public URL of the encoded file")
    size_bytes: int = Field(0, description="Encoded file size in bytes")


class SessionInfo(BaseModel):
    """Snapshot of an active session."""

    recording_id: str = Field(..., description="Session identifier")
    state: str = Field(..., description="Lifecycle state")
    source_url: str = Field(..., description="Page being recorded")
    playback_rate: float = Field(..., description="Effective playback rate")
    capture_strategy: Optional[str] = Field(None, description="directStream or tabCapture")
    bytes_captured: int = Field(0, description="Bytes durably written so far")
    created_at: float = Field(..., description="Creation time (epoch seconds)")
    stop_reason: Optional[str] = Field(None, description="Why capture stopped, once it has")
    error: Optional[str] = Field(None, description="Failure message, if failed")
    output: Optional[OutputInfo] = Field(None, description="Encoded artifact, if done")

    @classmethod
    def from_session(cls, session: Session) -> "SessionInfo":
        data = session.to_dict()
        return cls(
            recording_id=data["session_id"],
            state=data["state"],
            source_url=data["source_url"],
            playback_rate=data["playback_rate"],
            capture_strategy=data["capture_strategy"],
            bytes_captured=data["bytes_captured"],
            created_at=data["created_at"],
            stop_reason=data["stop_reason"],
            error=data["error"],
            output=OutputInfo(**data["output"]) if data["output"] else None,
        )


class SessionListResponse(BaseModel):
    """Active sessions."""

    sessions: List[SessionInfo] = Field(default_factory=list, description="Active sessions")
    total: int = Field(0, description="Number of active sessions")


class StopResponse(BaseModel):
    """Response to an external stop request."""

    recording_id: str = Field(..., description="Session identifier")
    stop_requested: bool = Field(..., description="False if a stop was already pending")
    message: str = Field(..., description="Human readable status")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service status")
    version: str = Field(..., description="Service version")
    uptime_seconds: float = Field(..., description="Service uptime in seconds")
    active_sessions: int = Field(..., description="Number of active sessions")
    system_info: Dict[str, Any] = Field(default_factory=dict, description="System information")


class ErrorResponse(BaseModel):
    """Error response."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
