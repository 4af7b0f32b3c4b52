# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Shared fixtures for FlyRecord tests."""

import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from flyrecord.config import EncodeConfig, RecorderConfig
from tests.fakes import write_script


@pytest.fixture
def temp_dir():
    """Temporary directory removed after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fake_ffmpeg(temp_dir):
    """Stand-in encoder: reports progress and copies input to output."""
    return write_script(
        temp_dir / "ffmpeg-ok",
        'for last; do :; done\n'
        'echo "frame=  10 fps=0.0 size=1kB time=00:00:01.50 bitrate=1.0kbits/s" >&2\n'
        'echo "frame=  20 fps=0.0 size=2kB time=00:00:03.00 bitrate=1.0kbits/s" >&2\n'
        'cat "$4" > "$last"\n',
    )


@pytest.fixture
def failing_ffmpeg(temp_dir):
    """Stand-in encoder that rejects its input."""
    return write_script(
        temp_dir / "ffmpeg-fail",
        'echo "capture.webm: Invalid data found when processing input" >&2\n'
        'exit 1\n',
    )


@pytest.fixture
def hanging_ffmpeg(temp_dir):
    """Stand-in encoder that never finishes."""
    return write_script(temp_dir / "ffmpeg-hang", "exec sleep 30\n")


@pytest.fixture
def recorder_config(temp_dir, fake_ffmpeg):
    """Fast recorder configuration writing into temp_dir."""
    return RecorderConfig(
        output_dir=str(temp_dir / "out"),
        poll_interval=0.01,
        ready_timeout=1.0,
        drain_timeout=1.0,
        settle_delay=0,
        fsync=False,
        encode=EncodeConfig(ffmpeg_path=fake_ffmpeg, base_timeout=5.0),
    )


@pytest.fixture
def mock_playwright():
    """Mock Playwright instance with all three browser launchers."""
    playwright = MagicMock()
    page = MagicMock()
    page.close = AsyncMock()
    context = MagicMock()
    context.new_page = AsyncMock(return_value=page)
    context.close = AsyncMock()
    browser = MagicMock()
    browser.new_context = AsyncMock(return_value=context)
    browser.close = AsyncMock()
    for launcher in (playwright.chromium, playwright.firefox, playwright.webkit):
        launcher.launch = AsyncMock(return_value=browser)
    playwright.stop = AsyncMock()
    return playwright
