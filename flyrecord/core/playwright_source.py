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

"""Playwright capture source.

Records the first ``<video>`` element of a page with an in-page
MediaRecorder and hands the data to Python through exposed functions:

- directStream: records ``video.captureStream()`` (preferred; no prompt)
- tabCapture: records a display capture of the current tab, for players
  whose element stream is unavailable (e.g. cross-origin media)

Chunk order is preserved on both sides: the page chains each
``ondataavailable`` hand-off behind the previous one, and the base class
queues chunks in the order the bindings fire.
"""

from __future__ import annotations

import asyncio
import base64
import time
from typing import Any, Dict, Optional

from flyrecord.config import RecorderConfig
from flyrecord.core.browser import BrowserManager
from flyrecord.core.capture_source import CaptureSource, SurfaceStatus
from flyrecord.core.session import CaptureStrategy
from flyrecord.exceptions import CaptureInterrupted, SurfaceAcquisitionError
from flyrecord.utils.logger import logger

CHUNK_BINDING = "__flyrecordChunk"
ENDED_BINDING = "__flyrecordEnded"

PLAY_BUTTON_SELECTORS = (
    'button[aria-label="Play"]',
    ".vjs-big-play-button",
    ".ytp-large-play-button",
    'button[title="Play"]',
)

_PROBE_MEDIA_JS = """
() => {
    const video = document.querySelector('video');
    if (!video) return { found: false };
    return {
        found: true,
        readyState: video.readyState,
        paused: video.paused,
        duration: Number.isFinite(video.duration) ? video.duration : null,
        canCaptureStream: typeof video.captureStream === 'function'
            || typeof video.mozCaptureStream === 'function',
    };
}
"""

_STATUS_JS = """
() => {
    const video = document.querySelector('video');
    return {
        currentTime: video ? video.currentTime : 0,
        duration: video && Number.isFinite(video.duration) ? video.duration : null,
        ended: video ? video.ended : false,
        online: navigator.onLine,
    };
}
"""

_SET_RATE_JS = """
async (rate) => {
    const video = document.querySelector('video');
    video.playbackRate = rate;
    video.defaultPlaybackRate = rate;
    if (video.paused) {
        try { await video.play(); } catch (e) { return false; }
    }
    return true;
}
"""

_START_RECORDER_JS = """
async ({ strategy, timeslice }) => {
    const video = document.querySelector('video');
    let stream;
    if (strategy === 'directStream') {
        stream = (video.captureStream || video.mozCaptureStream).call(video);
    } else {
        stream = await navigator.mediaDevices.getDisplayMedia({
            video: true, audio: true, preferCurrentTab: true,
        });
    }
    const mimeType = [
        'video/webm;codecs=vp9,opus',
        'video/webm;codecs=vp8,opus',
        'video/webm',
    ].find((type) => MediaRecorder.isTypeSupported(type));
    const recorder = new MediaRecorder(stream, mimeType ? { mimeType } : {});

    let chain = Promise.resolve();
    recorder.ondataavailable = (event) => {
        if (!event.data || event.data.size === 0) return;
        const blob = event.data;
        chain = chain.then(async () => {
            const bytes = new Uint8Array(await blob.arrayBuffer());
            let binary = '';
            for (let i = 0; i < bytes.length; i += 0x8000) {
                binary += String.fromCharCode.apply(null, bytes.subarray(i, i + 0x8000));
            }
            await window.__flyrecordChunk(btoa(binary));
        });
    };
    recorder.onstop = () => {
        stream.getTracks().forEach((track) => track.stop());
        chain = chain.then(() => window.__flyrecordEnded());
    };
    video.addEventListener('ended', () => {
        if (recorder.state !== 'inactive') recorder.stop();
    });

    window.__flyrecordRecorder = recorder;
    recorder.start(timeslice);
    if (video.paused) await video.play();
    return recorder.mimeType;
}
"""

_STOP_RECORDER_JS = """
() => {
    const recorder = window.__flyrecordRecorder;
    if (recorder && recorder.state !== 'inactive') {
        recorder.stop();
        return true;
    }
    return false;
}
"""


class PlaywrightCaptureSource(CaptureSource):
    """Capture source backed by a Playwright-driven browser tab.

    Example:
        >>> source = PlaywrightCaptureSource(RecorderConfig())
        >>> await source.open("https://example.org/play/1")
        >>> strategy = await source.prepare(playback_rate=1.5, timeout=60)
        >>> await source.start()
        >>> async for chunk in source.chunks():
        ...     ...
    """

    def __init__(
        self,
        config: RecorderConfig,
        browser: Optional[BrowserManager] = None,
    ) -> None:
        super().__init__()
        self.config = config
        self._browser = browser or BrowserManager(
            headless=config.headless,
            browser_type=config.browser_type,
        )
        self._recorder_stopped = asyncio.Event()
        self._page_closed = False
        self.mime_type: Optional[str] = None

    async def open(self, url: str) -> None:
        await self._browser.start()
        page = self._browser.page

        try:
            await page.expose_function(CHUNK_BINDING, self._on_chunk)
            await page.expose_function(ENDED_BINDING, self._on_recorder_stopped)
            page.on("close", self._on_page_closed)
            page.on("crash", self._on_page_closed)
            page.on("console", lambda msg: logger.debug(f"[SOURCE] Browser console: {msg.text}"))

            logger.info(f"[SOURCE] Loading {url}")
            await page.goto(
                url,
                wait_until="networkidle",
                timeout=self.config.navigation_timeout * 1000,
            )
        except Exception as e:
            raise SurfaceAcquisitionError(f"Failed to load {url}: {e}") from e

        if self.config.settle_delay > 0:
            await asyncio.sleep(self.config.settle_delay)

    async def prepare(self, playback_rate: float, timeout: float) -> CaptureStrategy:
        page = self._browser.page
        deadline = time.monotonic() + timeout
        probe: Dict[str, Any] = {"found": False}

        while time.monotonic() < deadline:
            try:
                probe = await page.evaluate(_PROBE_MEDIA_JS)
            except Exception as e:
                raise SurfaceAcquisitionError(f"Page became unavailable: {e}") from e

            # HAVE_CURRENT_DATA or better
            if probe.get("found") and probe.get("readyState", 0) >= 2:
                break
            await self._click_play(page)
            await asyncio.sleep(1.0)
        else:
            detail = "no video element" if not probe.get("found") else "media never became ready"
            raise SurfaceAcquisitionError(f"Playback surface not ready after {timeout:.0f}s: {detail}")

        try:
            playing = await page.evaluate(_SET_RATE_JS, playback_rate)
        except Exception as e:
            raise SurfaceAcquisitionError(f"Could not apply playback rate: {e}") from e
        if not playing:
            logger.warning("[SOURCE] Media refused to autoplay; recording will start paused")

        self.strategy = (
            CaptureStrategy.DIRECT_STREAM
            if probe.get("canCaptureStream")
            else CaptureStrategy.TAB_CAPTURE
        )
        logger.info(
            f"[SOURCE] Media ready (duration: {probe.get('duration')}, "
            f"rate: {playback_rate}, strategy: {self.strategy.value})"
        )
        return self.strategy

    async def start(self) -> None:
        page = self._browser.page
        try:
            self.mime_type = await page.evaluate(
                _START_RECORDER_JS,
                {
                    "strategy": self.strategy.value,
                    "timeslice": self.config.recorder_timeslice_ms,
                },
            )
        except Exception as e:
            raise SurfaceAcquisitionError(f"Failed to start MediaRecorder: {e}") from e
        logger.info(f"[SOURCE] MediaRecorder started ({self.mime_type})")

    async def status(self) -> SurfaceStatus:
        if self._page_closed or not self._browser.is_running:
            return SurfaceStatus(ended=self.ended, connected=False)
        try:
            raw = await self._browser.page.evaluate(_STATUS_JS)
        except Exception as e:
            logger.warning(f"[SOURCE] Status probe failed: {e}")
            return SurfaceStatus(ended=self.ended, connected=False)

        return SurfaceStatus(
            current_time=float(raw.get("currentTime") or 0.0),
            duration=raw.get("duration"),
            ended=bool(raw.get("ended")),
            connected=bool(raw.get("online", True)),
        )

    async def _stop_recording(self) -> None:
        if self._page_closed or not self._browser.is_running or self.mime_type is None:
            return
        try:
            await self._browser.page.evaluate(_STOP_RECORDER_JS)
        except Exception as e:
            logger.warning(f"[SOURCE] Could not stop MediaRecorder: {e}")
            return

        # Final dataavailable + onstop arrive asynchronously
        try:
            await asyncio.wait_for(self._recorder_stopped.wait(), timeout=self.config.drain_timeout)
        except asyncio.TimeoutError:
            logger.warning("[SOURCE] MediaRecorder did not confirm stop, ending stream")

    async def _release(self) -> None:
        await self._browser.stop()

    async def _click_play(self, page: Any) -> None:
        for selector in PLAY_BUTTON_SELECTORS:
            try:
                button = await page.query_selector(selector)
                if button:
                    await button.click(timeout=1000)
                    logger.debug(f"[SOURCE] Clicked play control {selector}")
                    return
            except Exception as e:
                logger.debug(f"[SOURCE] Play control {selector} not clickable: {e}")

    def _on_chunk(self, data: str) -> None:
        self._emit_chunk(base64.b64decode(data))

    def _on_recorder_stopped(self) -> None:
        self._recorder_stopped.set()
        self._emit_end()

    def _on_page_closed(self, *args: Any) -> None:
        if self._page_closed:
            return
        self._page_closed = True
        logger.warning("[SOURCE] Capture page closed or crashed")
        self._recorder_stopped.set()
        self._emit_end(CaptureInterrupted("Capture page closed before recording finished"))
