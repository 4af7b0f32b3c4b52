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

"""FFmpeg encode supervisor for FlyRecord.

Transcodes a finished capture artifact into the final MP4:
- Fixed argument set (codecs, CRF quality, preset, +faststart)
- Deadline derived from input size, with a floor
- Forced termination when the deadline passes
- Progress from ffmpeg's ``time=HH:MM:SS.ms`` status lines
- Structured errors carrying the tail of ffmpeg's diagnostics

The raw capture artifact is always deleted once encoding finishes,
successfully or not.
"""

from __future__ import annotations

import asyncio
import codecs
import errno
import os
import re
import time
from collections import deque
from pathlib import Path
from typing import Callable, Deque, List, Optional, Union

from flyrecord.config import EncodeConfig
from flyrecord.core.session import EncodedArtifact
from flyrecord.exceptions import EncodeFailedError, EncodeTimeoutError
from flyrecord.utils.logger import logger

TIME_PATTERN = re.compile(r"time=\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")

FAILURE_MARKERS = (
    "error",
    "invalid data found",
    "no such file",
    "could not",
    "conversion failed",
    "permission denied",
)

ProgressCallback = Callable[[float], None]
PathLike = Union[str, Path]


def parse_time_marker(line: str) -> Optional[float]:
    """Extract the encoded position in seconds from an ffmpeg status line.

    Example:
        >>> parse_time_marker("frame=  52 fps=0.0 q=-1.0 size=256kB time=00:01:02.50 bitrate=...")
        62.5
    """
    match = TIME_PATTERN.search(line)
    if not match:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def is_failure_line(line: str) -> bool:
    lowered = line.lower()
    return any(marker in lowered for marker in FAILURE_MARKERS)


class EncodeSupervisor:
    """Runs and polices one ffmpeg transcode at a time per call.

    Example:
        >>> supervisor = EncodeSupervisor(EncodeConfig())
        >>> artifact = await supervisor.encode("capture.webm", "recording.mp4")
        >>> artifact.size_bytes
        1048576
    """

    def __init__(self, config: Optional[EncodeConfig] = None) -> None:
        self.config = config or EncodeConfig()

    def estimate_duration(self, input_bytes: int) -> float:
        """Approximate media seconds in a capture of ``input_bytes``.

        Uses a fixed throughput assumption; real duration is never probed.
        """
        return input_bytes / self.config.assumed_throughput

    def compute_deadline(self, input_bytes: int) -> float:
        """Seconds the encoder may run for an input of ``input_bytes``."""
        estimate = self.estimate_duration(input_bytes) * self.config.processing_multiplier
        return max(self.config.base_timeout, estimate)

    def build_command(self, input_path: PathLike, output_path: PathLike) -> List[str]:
        """Build the ffmpeg argument list."""
        cmd = [self.config.resolve_ffmpeg(), "-hide_banner", "-y"]

        cmd.extend(["-i", str(input_path)])

        cmd.extend([
            "-c:v", self.config.video_codec,
            "-preset", self.config.preset,
            "-crf", str(self.config.crf),
            "-c:a", self.config.audio_codec,
        ])

        if self.config.faststart:
            cmd.extend(["-movflags", "+faststart"])

        cmd.append(str(output_path))
        return cmd

    async def encode(
        self,
        input_path: PathLike,
        output_path: PathLike,
        on_progress: Optional[ProgressCallback] = None,
        url: Optional[str] = None,
    ) -> EncodedArtifact:
        """Transcode ``input_path`` into ``output_path``.

        Args:
            input_path: Finished capture artifact
            output_path: Destination for the encoded artifact
            on_progress: Called with the encoded position in seconds
            url: Externally reachable locator for the output

        Returns:
            The encoded artifact

        Raises:
            EncodeTimeoutError: ffmpeg ran past the deadline and was killed
            EncodeFailedError: ffmpeg could not start or exited non-zero
        """
        input_path = Path(input_path)
        output_path = Path(output_path)
        succeeded = False

        try:
            try:
                input_bytes = input_path.stat().st_size
            except OSError as e:
                raise EncodeFailedError(
                    f"Capture artifact unavailable: {input_path} ({e})", returncode=None
                ) from e

            deadline = self.compute_deadline(input_bytes)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            cmd = self.build_command(input_path, output_path)

            logger.info(
                f"[ENCODER] Encoding {input_path.name} ({input_bytes} bytes, "
                f"deadline {deadline:.1f}s)"
            )
            logger.debug(f"[ENCODER] FFmpeg command: {' '.join(cmd)}")

            await self._run(cmd, deadline, on_progress)

            if not output_path.exists():
                raise EncodeFailedError(
                    f"Encoder reported success but {output_path} is missing", returncode=0
                )

            artifact = EncodedArtifact(
                path=str(output_path),
                url=url,
                size_bytes=output_path.stat().st_size,
            )
            succeeded = True
            logger.info(f"[ENCODER] Encoded {output_path.name} ({artifact.size_bytes} bytes)")
            return artifact
        finally:
            self._discard(input_path)
            if not succeeded:
                self._discard(output_path)

    async def _run(
        self,
        cmd: List[str],
        deadline: float,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        diagnostics: Deque[str] = deque(maxlen=self.config.diagnostic_lines)
        start_time = time.monotonic()

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise EncodeFailedError(f"FFmpeg not found: {cmd[0]}", returncode=None) from e
        except PermissionError as e:
            raise EncodeFailedError(f"Permission denied starting FFmpeg: {e}", returncode=None) from e
        except OSError as e:
            if e.errno == errno.ENOSPC:
                raise EncodeFailedError("No space left on device", returncode=None) from e
            raise EncodeFailedError(f"Failed to start FFmpeg: {e}", returncode=None) from e

        reader = asyncio.create_task(
            self._read_diagnostics(process.stderr, diagnostics, on_progress)
        )

        try:
            await asyncio.wait_for(process.wait(), timeout=deadline)
        except asyncio.TimeoutError:
            logger.warning(f"[ENCODER] FFmpeg exceeded {deadline:.1f}s deadline, killing...")
            await self._kill(process)
            await self._finish_reader(reader)
            raise EncodeTimeoutError(
                f"Encoding exceeded its {deadline:.1f}s deadline",
                timeout=deadline,
                diagnostics="\n".join(diagnostics),
            )
        except asyncio.CancelledError:
            await self._kill(process)
            reader.cancel()
            raise

        await self._finish_reader(reader)
        elapsed = time.monotonic() - start_time

        if process.returncode != 0:
            tail = "\n".join(diagnostics)
            logger.error(
                f"[ENCODER] FFmpeg exited with code {process.returncode} after {elapsed:.1f}s"
            )
            if tail:
                logger.error(f"[ENCODER] FFmpeg stderr: {tail[-500:]}")
            raise EncodeFailedError(
                f"Encoder exited with code {process.returncode}",
                returncode=process.returncode,
                diagnostics=tail,
            )

        logger.debug(f"[ENCODER] FFmpeg finished in {elapsed:.1f}s")

    async def _read_diagnostics(
        self,
        stream: Optional[asyncio.StreamReader],
        diagnostics: Deque[str],
        on_progress: Optional[ProgressCallback],
    ) -> None:
        """Consume stderr; ffmpeg separates status updates with carriage returns."""
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        buffer = ""
        while True:
            data = await stream.read(4096)
            if not data:
                break
            buffer += decoder.decode(data)
            *lines, buffer = re.split(r"[\r\n]", buffer)
            for line in lines:
                self._handle_line(line, diagnostics, on_progress)
        buffer += decoder.decode(b"", final=True)
        if buffer:
            self._handle_line(buffer, diagnostics, on_progress)

    @staticmethod
    def _handle_line(
        line: str,
        diagnostics: Deque[str],
        on_progress: Optional[ProgressCallback],
    ) -> None:
        line = line.strip()
        if not line:
            return
        position = parse_time_marker(line)
        if position is not None:
            if on_progress:
                try:
                    on_progress(position)
                except Exception as e:
                    logger.debug(f"[ENCODER] Progress callback error: {e}")
            return
        if is_failure_line(line):
            logger.warning(f"[ENCODER] {line}")
        diagnostics.append(line)

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await process.wait()

    @staticmethod
    async def _finish_reader(reader: asyncio.Task) -> None:
        try:
            await asyncio.wait_for(reader, timeout=2.0)
        except asyncio.TimeoutError:
            logger.debug("[ENCODER] Diagnostic reader did not finish, cancelled")

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            os.remove(path)
            logger.debug(f"[ENCODER] Removed {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"[ENCODER] Could not remove {path}: {e}")
