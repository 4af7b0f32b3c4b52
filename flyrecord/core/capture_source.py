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
Capture source contract.

A capture source is the boundary between the session controller and
whatever actually plays and records the media (a browser tab in
production, an in-memory fake in tests). The controller relies on
exactly this contract:

- ``open(url)`` acquires the surface and loads the URL
- ``prepare(playback_rate, timeout)`` waits for playable media and
  applies the rate, returning the capture strategy in use
- ``start()`` begins recording
- ``chunks()`` yields recorded data strictly in order; the sequence is
  finite, ends with an explicit end signal and cannot be restarted
- ``status()`` / ``is_connected()`` report position, duration, end of
  media and connectivity
- ``stop()`` is idempotent and safe after capture has already ended
- ``close()`` releases the surface

Subclasses implement the ``_``-prefixed hooks and push data through
``_emit_chunk`` / ``_emit_end``; the base class owns the ordering queue
and the idempotency guards.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional

from flyrecord.core.session import CaptureStrategy
from flyrecord.exceptions import CaptureInterrupted
from flyrecord.utils.logger import logger

_END = object()


@dataclass
class SurfaceStatus:
    """Snapshot of the playback surface.

    Attributes:
        current_time: Media position in seconds
        duration: Media duration in seconds, None when unknown or unbounded
        ended: Media reached its natural end
        connected: The surface still has connectivity
    """

    current_time: float = 0.0
    duration: Optional[float] = None
    ended: bool = False
    connected: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_time": self.current_time,
            "duration": self.duration,
            "ended": self.ended,
            "connected": self.connected,
        }


class CaptureSource:
    """Base class for capture surfaces.

    Attributes:
        strategy: Capture strategy chosen during prepare()
    """

    def __init__(self) -> None:
        self.strategy: Optional[CaptureStrategy] = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._iterated = False
        self._ended = False
        self._stopped = False
        self._closed = False
        self._interruption: Optional[CaptureInterrupted] = None

    async def open(self, url: str) -> None:
        """Acquire the surface and load ``url``."""
        raise NotImplementedError

    async def prepare(self, playback_rate: float, timeout: float) -> CaptureStrategy:
        """Wait for playable media, apply the playback rate, pick a strategy."""
        raise NotImplementedError

    async def start(self) -> None:
        """Start recording."""
        raise NotImplementedError

    async def status(self) -> SurfaceStatus:
        """Report the current state of the surface."""
        raise NotImplementedError

    async def is_connected(self) -> bool:
        """Probe connectivity."""
        try:
            return (await self.status()).connected
        except Exception as e:
            logger.debug(f"[SOURCE] Status probe failed: {e}")
            return False

    async def stop(self) -> None:
        """Stop recording. Only the first call reaches the surface."""
        if self._stopped:
            return
        self._stopped = True
        try:
            await self._stop_recording()
        finally:
            # Whatever the surface did, the chunk stream must terminate
            self._emit_end()

    async def close(self) -> None:
        """Release the surface. Implies stop()."""
        if self._closed:
            return
        try:
            await self.stop()
        finally:
            self._closed = True
            await self._release()

    async def chunks(self) -> AsyncIterator[bytes]:
        """Yield recorded chunks in order until the end signal.

        Raises:
            RuntimeError: If the stream is iterated a second time
            CaptureInterrupted: If the source ended the stream prematurely
        """
        if self._iterated:
            raise RuntimeError("Chunk stream is not restartable")
        self._iterated = True

        while True:
            item = await self._queue.get()
            if item is _END:
                break
            yield item

        if self._interruption is not None:
            raise self._interruption

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def ended(self) -> bool:
        return self._ended

    def _emit_chunk(self, data: bytes) -> bool:
        """Push one chunk; ignored once the stream has ended."""
        if self._ended:
            logger.debug(f"[SOURCE] Dropping {len(data)} bytes received after end of stream")
            return False
        if data:
            self._queue.put_nowait(data)
        return True

    def _emit_end(self, interruption: Optional[CaptureInterrupted] = None) -> None:
        """Terminate the chunk stream, optionally flagging a premature end."""
        if self._ended:
            return
        self._ended = True
        self._interruption = interruption
        self._queue.put_nowait(_END)

    async def _stop_recording(self) -> None:
        """Hook: ask the surface to stop and flush its final data."""

    async def _release(self) -> None:
        """Hook: free the surface (browser, devices, handles)."""
