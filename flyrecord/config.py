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
Configuration for FlyRecord.

Two dataclasses hold every tunable:

- EncodeConfig: ffmpeg invocation and the size-based deadline heuristic
- RecorderConfig: directories, polling, surface timeouts, playback rate
  bounds and service limits

Both can be built from ``FLYRECORD_*`` environment variables via
``RecorderConfig.from_env()``.

Example:
    >>> config = RecorderConfig(output_dir="/srv/recordings", poll_interval=2.0)
    >>> config.encode.crf
    23
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from flyrecord.exceptions import ConfigurationError


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class EncodeConfig:
    """Configuration for the transcoding step.

    The deadline for one encode is
    ``max(base_timeout, input_bytes / assumed_throughput * processing_multiplier)``.
    The throughput figure is an assumption about the raw capture's bitrate,
    not a measurement, so the estimate is deliberately loose.

    Attributes:
        ffmpeg_path: Path to ffmpeg binary (looked up in PATH if None)
        video_codec: Target video encoder
        audio_codec: Target audio encoder
        crf: Constant Rate Factor (0-51, lower is better quality)
        preset: Encoding preset (ultrafast ... veryslow)
        faststart: Move the moov atom to the front of the output
        base_timeout: Deadline floor in seconds
        assumed_throughput: Assumed raw capture bytes per second of media
        processing_multiplier: Seconds of encoding allowed per second of media
        diagnostic_lines: Number of stderr lines kept for error reports
    """

    ffmpeg_path: Optional[str] = None
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    crf: int = 23
    preset: str = "veryfast"
    faststart: bool = True

    base_timeout: float = 120.0
    assumed_throughput: float = 312_500.0  # ~2.5 Mbps webm
    processing_multiplier: float = 2.0

    diagnostic_lines: int = 20

    def __post_init__(self) -> None:
        if self.base_timeout <= 0:
            raise ConfigurationError("base_timeout must be positive")
        if self.assumed_throughput <= 0:
            raise ConfigurationError("assumed_throughput must be positive")
        if self.processing_multiplier <= 0:
            raise ConfigurationError("processing_multiplier must be positive")
        if not 0 <= self.crf <= 51:
            raise ConfigurationError(f"crf must be within 0-51, got {self.crf}")

    def resolve_ffmpeg(self) -> str:
        """Return the ffmpeg binary to run, looking it up in PATH if unset."""
        if self.ffmpeg_path:
            return self.ffmpeg_path
        ffmpeg_path = shutil.which("ffmpeg")
        if not ffmpeg_path:
            raise ConfigurationError(
                "ffmpeg not found in PATH. Please install ffmpeg or set FLYRECORD_FFMPEG_PATH."
            )
        self.ffmpeg_path = ffmpeg_path
        return ffmpeg_path


@dataclass
class RecorderConfig:
    """Configuration for capture sessions.

    Attributes:
        output_dir: Directory for encoded artifacts
        capture_dir: Directory for raw capture artifacts (defaults to output_dir/.capture)
        public_base_url: Base URL the encoded artifacts are served from
        poll_interval: Seconds between surface status polls while capturing
        ready_timeout: Seconds to wait for playable media after navigation
        navigation_timeout: Seconds allowed for the initial page load
        drain_timeout: Seconds to wait for trailing chunks after a stop
        settle_delay: Seconds to let the page settle after navigation
        min_playback_rate: Lower bound for playback rate
        max_playback_rate: Upper bound for playback rate
        default_playback_rate: Rate used when the request omits one
        recorder_timeslice_ms: MediaRecorder timeslice in milliseconds
        headless: Run the browser without a visible window
        browser_type: Playwright browser to launch
        max_sessions: Maximum concurrently active sessions
        fsync: fsync each chunk before acknowledging it
        encode: Transcoding configuration
    """

    output_dir: str = "./recordings"
    capture_dir: Optional[str] = None
    public_base_url: Optional[str] = "/files"

    poll_interval: float = 5.0
    ready_timeout: float = 60.0
    navigation_timeout: float = 120.0
    drain_timeout: float = 10.0
    settle_delay: float = 5.0

    min_playback_rate: float = 0.5
    max_playback_rate: float = 2.0
    default_playback_rate: float = 1.0

    recorder_timeslice_ms: int = 1000
    headless: bool = True
    browser_type: str = "chromium"

    max_sessions: int = 10
    fsync: bool = True

    encode: EncodeConfig = field(default_factory=EncodeConfig)

    def __post_init__(self) -> None:
        if self.poll_interval <= 0:
            raise ConfigurationError("poll_interval must be positive")
        if self.min_playback_rate <= 0 or self.min_playback_rate > self.max_playback_rate:
            raise ConfigurationError(
                f"Invalid playback rate bounds: [{self.min_playback_rate}, {self.max_playback_rate}]"
            )
        if not self.min_playback_rate <= self.default_playback_rate <= self.max_playback_rate:
            raise ConfigurationError("default_playback_rate must lie within the rate bounds")
        if self.max_sessions < 1:
            raise ConfigurationError("max_sessions must be at least 1")
        if self.capture_dir is None:
            self.capture_dir = str(Path(self.output_dir) / ".capture")

    def capture_path(self, session_id: str) -> Path:
        """Raw capture artifact path for a session."""
        return Path(self.capture_dir) / f"capture_{session_id}.webm"

    def output_path(self, session_id: str) -> Path:
        """Encoded artifact path for a session."""
        return Path(self.output_dir) / f"recording_{session_id}.mp4"

    def locator_for(self, path: Path) -> Optional[str]:
        """Externally reachable URL for an encoded artifact."""
        if not self.public_base_url:
            return None
        return f"{self.public_base_url.rstrip('/')}/{path.name}"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RecorderConfig":
        """Build a configuration from FLYRECORD_* environment variables.

        Unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        kwargs = {}
        encode_kwargs = {}

        if "FLYRECORD_OUTPUT_DIR" in env:
            kwargs["output_dir"] = env["FLYRECORD_OUTPUT_DIR"]
        if "FLYRECORD_CAPTURE_DIR" in env:
            kwargs["capture_dir"] = env["FLYRECORD_CAPTURE_DIR"]
        if "FLYRECORD_PUBLIC_BASE_URL" in env:
            kwargs["public_base_url"] = env["FLYRECORD_PUBLIC_BASE_URL"] or None
        if "FLYRECORD_POLL_INTERVAL" in env:
            kwargs["poll_interval"] = float(env["FLYRECORD_POLL_INTERVAL"])
        if "FLYRECORD_READY_TIMEOUT" in env:
            kwargs["ready_timeout"] = float(env["FLYRECORD_READY_TIMEOUT"])
        if "FLYRECORD_HEADLESS" in env:
            kwargs["headless"] = _env_bool(env["FLYRECORD_HEADLESS"])
        if "FLYRECORD_MAX_SESSIONS" in env:
            kwargs["max_sessions"] = int(env["FLYRECORD_MAX_SESSIONS"])

        if "FLYRECORD_FFMPEG_PATH" in env:
            encode_kwargs["ffmpeg_path"] = env["FLYRECORD_FFMPEG_PATH"]
        if "FLYRECORD_ENCODE_BASE_TIMEOUT" in env:
            encode_kwargs["base_timeout"] = float(env["FLYRECORD_ENCODE_BASE_TIMEOUT"])
        if "FLYRECORD_ENCODE_THROUGHPUT" in env:
            encode_kwargs["assumed_throughput"] = float(env["FLYRECORD_ENCODE_THROUGHPUT"])

        return cls(encode=EncodeConfig(**encode_kwargs), **kwargs)
