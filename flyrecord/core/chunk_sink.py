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

"""Ordered, durable chunk persistence for capture artifacts.

The sink owns one append-only file per session. Every ``accept`` call is
placed on a FIFO queue at call time and a single writer task drains it,
so the bytes on disk follow call order even when producers fire chunks
from callbacks without awaiting each acknowledgement.

Blocking file I/O runs in the default executor; only the writer task
touches the file handle.

Example:
    >>> async with ChunkSink("capture.webm") as sink:
    ...     await sink.accept(b"first")
    ...     await sink.accept(b"second")
    >>> sink.bytes_written
    11
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, Optional, Union

from flyrecord.exceptions import PersistenceError
from flyrecord.utils.logger import logger

_CLOSE = object()


@dataclass(frozen=True)
class ChunkAck:
    """Acknowledgement that a chunk is durably on disk."""

    sequence: int
    size: int
    total_bytes: int


class ChunkSink:
    """Single-writer, append-only chunk file.

    Attributes:
        path: Capture artifact path
        fsync: Whether each write is fsynced before acknowledgement
    """

    def __init__(self, path: Union[str, Path], fsync: bool = True) -> None:
        self.path = Path(path)
        self.fsync = fsync

        self._file: Optional[BinaryIO] = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._writer_task: Optional[asyncio.Task] = None
        self._next_sequence = 0
        self._bytes_written = 0
        self._chunks_written = 0
        self._failure: Optional[PersistenceError] = None
        self._closing = False
        self._closed = False

    @property
    def bytes_written(self) -> int:
        """Total bytes durably written so far."""
        return self._bytes_written

    @property
    def chunks_written(self) -> int:
        return self._chunks_written

    @property
    def is_open(self) -> bool:
        return self._writer_task is not None and not self._closing

    async def open(self) -> None:
        """Create the capture file and start the writer task."""
        if self._writer_task is not None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = await asyncio.to_thread(open, self.path, "ab")
        except OSError as e:
            raise PersistenceError(f"Cannot open capture file {self.path}: {e}") from e

        self._writer_task = asyncio.create_task(self._writer_loop())
        logger.debug(f"[SINK] Opened {self.path}")

    async def accept(self, chunk: bytes) -> ChunkAck:
        """Queue a chunk and wait until it is durably written.

        The chunk's position is fixed when this method is called, before
        the first await.

        Raises:
            PersistenceError: If the sink is closed, a previous write failed,
                or this chunk's write fails
        """
        if self._writer_task is None or self._closing:
            raise PersistenceError(f"Chunk sink for {self.path} is not open")
        if self._failure is not None:
            raise self._failure

        sequence = self._next_sequence
        self._next_sequence += 1
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((sequence, bytes(chunk), future))
        return await future

    async def close(self) -> None:
        """Drain every queued write, then release the file handle.

        Safe to call more than once and from concurrent callers; all of
        them return once the drain has finished.
        """
        if self._writer_task is None:
            self._closed = True
            return
        if not self._closing:
            self._closing = True
            self._queue.put_nowait(_CLOSE)
        await asyncio.shield(self._writer_task)

        if not self._closed:
            self._closed = True
            if self._file is not None:
                handle, self._file = self._file, None
                try:
                    await asyncio.to_thread(handle.close)
                except OSError as e:
                    logger.warning(f"[SINK] Error closing {self.path}: {e}")
            logger.info(
                f"[SINK] Closed {self.path} "
                f"({self._chunks_written} chunks, {self._bytes_written} bytes)"
            )

    async def _writer_loop(self) -> None:
        while True:
            item = await self._queue.get()
            if item is _CLOSE:
                break
            sequence, data, future = item

            if self._failure is not None:
                self._resolve(future, exc=self._failure)
                continue

            try:
                await asyncio.to_thread(self._write_sync, data)
            except OSError as e:
                self._failure = PersistenceError(
                    f"Failed to write chunk {sequence} to {self.path}: {e}"
                )
                logger.error(f"[SINK] {self._failure}")
                self._resolve(future, exc=self._failure)
                continue

            self._bytes_written += len(data)
            self._chunks_written += 1
            self._resolve(
                future,
                result=ChunkAck(sequence=sequence, size=len(data), total_bytes=self._bytes_written),
            )

    def _write_sync(self, data: bytes) -> None:
        self._file.write(data)
        self._file.flush()
        if self.fsync:
            os.fsync(self._file.fileno())

    @staticmethod
    def _resolve(
        future: asyncio.Future,
        result: Any = None,
        exc: Optional[BaseException] = None,
    ) -> None:
        # The producer may have stopped waiting (cancelled); the write still counts
        if future.done():
            return
        if exc is not None:
            future.set_exception(exc)
        else:
            future.set_result(result)

    async def __aenter__(self) -> "ChunkSink":
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
