# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for EncodeSupervisor."""

import time
from collections import deque
from unittest.mock import AsyncMock, MagicMock

import pytest

from flyrecord.config import EncodeConfig
from flyrecord.core.encoder import EncodeSupervisor, is_failure_line, parse_time_marker
from flyrecord.exceptions import ConfigurationError, EncodeFailedError, EncodeTimeoutError


class TestTimeMarkers:
    """Tests for ffmpeg status line parsing."""

    def test_parse_time_marker(self):
        line = "frame=  52 fps=0.0 q=-1.0 size=     256kB time=00:01:02.50 bitrate=33.5kbits/s"
        assert parse_time_marker(line) == pytest.approx(62.5)

    def test_parse_time_marker_hours(self):
        assert parse_time_marker("size=1kB time=01:00:00.00 bitrate=N/A") == pytest.approx(3600.0)

    def test_parse_time_marker_absent(self):
        assert parse_time_marker("Input #0, matroska,webm, from 'capture.webm':") is None

    def test_failure_line(self):
        assert is_failure_line("capture.webm: Invalid data found when processing input")
        assert is_failure_line("Conversion failed!")
        assert not is_failure_line("Stream #0:0: Video: vp9")


class TestDeadline:
    """Tests for the size-based encode deadline."""

    def test_small_input_uses_floor(self):
        supervisor = EncodeSupervisor(EncodeConfig(base_timeout=120.0))
        assert supervisor.compute_deadline(1024) == 120.0

    def test_large_input_scales_with_size(self):
        config = EncodeConfig(
            base_timeout=120.0,
            assumed_throughput=312_500.0,
            processing_multiplier=2.0,
        )
        supervisor = EncodeSupervisor(config)

        # 10 minutes of media at the assumed throughput
        size = 312_500 * 600
        assert supervisor.estimate_duration(size) == pytest.approx(600.0)
        assert supervisor.compute_deadline(size) == pytest.approx(1200.0)

    def test_invalid_config_rejected(self):
        with pytest.raises(ConfigurationError):
            EncodeConfig(base_timeout=0)
        with pytest.raises(ConfigurationError):
            EncodeConfig(assumed_throughput=-1)
        with pytest.raises(ConfigurationError):
            EncodeConfig(crf=60)


class TestBuildCommand:
    """Tests for ffmpeg argument construction."""

    def test_default_command(self):
        supervisor = EncodeSupervisor(EncodeConfig(ffmpeg_path="/usr/bin/ffmpeg"))
        cmd = supervisor.build_command("in.webm", "out.mp4")

        assert cmd == [
            "/usr/bin/ffmpeg", "-hide_banner", "-y",
            "-i", "in.webm",
            "-c:v", "libx264",
            "-preset", "veryfast",
            "-crf", "23",
            "-c:a", "aac",
            "-movflags", "+faststart",
            "out.mp4",
        ]

    def test_without_faststart(self):
        supervisor = EncodeSupervisor(EncodeConfig(ffmpeg_path="ffmpeg", faststart=False))
        assert "-movflags" not in supervisor.build_command("in.webm", "out.mp4")

    def test_missing_ffmpeg(self, monkeypatch):
        monkeypatch.setattr("flyrecord.config.shutil.which", lambda name: None)
        supervisor = EncodeSupervisor(EncodeConfig())

        with pytest.raises(ConfigurationError, match="ffmpeg not found"):
            supervisor.build_command("in.webm", "out.mp4")


class TestEncode:
    """Tests for EncodeSupervisor.encode()."""

    @pytest.mark.asyncio
    async def test_encode_success(self, temp_dir, fake_ffmpeg):
        """Test a successful encode returns the artifact and removes the capture."""
        capture = temp_dir / "capture.webm"
        capture.write_bytes(b"webm-data")
        output = temp_dir / "out" / "recording.mp4"
        positions = []

        supervisor = EncodeSupervisor(EncodeConfig(ffmpeg_path=fake_ffmpeg))
        artifact = await supervisor.encode(
            capture, output, on_progress=positions.append, url="/files/recording.mp4"
        )

        assert artifact.path == str(output)
        assert artifact.url == "/files/recording.mp4"
        assert artifact.locator == "/files/recording.mp4"
        assert artifact.size_bytes == len(b"webm-data")
        assert output.read_bytes() == b"webm-data"
        assert positions == [pytest.approx(1.5), pytest.approx(3.0)]
        assert not capture.exists()

    @pytest.mark.asyncio
    async def test_encode_failure_carries_diagnostics(self, temp_dir, failing_ffmpeg):
        """Test a non-zero exit raises EncodeFailedError with stderr tail."""
        capture = temp_dir / "capture.webm"
        capture.write_bytes(b"garbage")
        output = temp_dir / "recording.mp4"

        supervisor = EncodeSupervisor(EncodeConfig(ffmpeg_path=failing_ffmpeg))
        with pytest.raises(EncodeFailedError) as exc_info:
            await supervisor.encode(capture, output)

        assert exc_info.value.returncode == 1
        assert "Invalid data found" in exc_info.value.diagnostics
        assert not capture.exists()
        assert not output.exists()

    @pytest.mark.asyncio
    async def test_encode_timeout_kills_process(self, temp_dir, hanging_ffmpeg):
        """Test exceeding the deadline raises EncodeTimeoutError and cleans up."""
        capture = temp_dir / "capture.webm"
        capture.write_bytes(b"x" * 100)
        output = temp_dir / "recording.mp4"

        config = EncodeConfig(ffmpeg_path=hanging_ffmpeg, base_timeout=0.3)
        supervisor = EncodeSupervisor(config)

        started = time.monotonic()
        with pytest.raises(EncodeTimeoutError) as exc_info:
            await supervisor.encode(capture, output)

        assert exc_info.value.timeout == pytest.approx(0.3)
        assert time.monotonic() - started < 10
        assert not capture.exists()
        assert not output.exists()

    @pytest.mark.asyncio
    async def test_missing_input(self, temp_dir, fake_ffmpeg):
        """Test encoding a missing capture fails without starting ffmpeg."""
        supervisor = EncodeSupervisor(EncodeConfig(ffmpeg_path=fake_ffmpeg))

        with pytest.raises(EncodeFailedError, match="unavailable"):
            await supervisor.encode(temp_dir / "missing.webm", temp_dir / "out.mp4")

    @pytest.mark.asyncio
    async def test_unstartable_binary(self, temp_dir):
        """Test a nonexistent ffmpeg binary is reported as EncodeFailedError."""
        capture = temp_dir / "capture.webm"
        capture.write_bytes(b"data")
        supervisor = EncodeSupervisor(EncodeConfig(ffmpeg_path=str(temp_dir / "no-ffmpeg")))

        with pytest.raises(EncodeFailedError, match="not found"):
            await supervisor.encode(capture, temp_dir / "out.mp4")

        assert not capture.exists()


class TestDiagnostics:
    """Tests for stderr consumption."""

    @pytest.mark.asyncio
    async def test_multibyte_character_split_across_reads(self):
        """Test a UTF-8 character split between two reads is kept intact."""
        message = "Fichier « capture.webm » introuvable\n".encode("utf-8")
        split = message.index("«".encode("utf-8")) + 1
        stream = MagicMock()
        stream.read = AsyncMock(side_effect=[message[:split], message[split:], b""])
        diagnostics = deque(maxlen=10)

        await EncodeSupervisor(EncodeConfig())._read_diagnostics(stream, diagnostics, None)

        assert list(diagnostics) == ["Fichier « capture.webm » introuvable"]

    @pytest.mark.asyncio
    async def test_progress_and_trailing_line(self):
        stream = MagicMock()
        stream.read = AsyncMock(side_effect=[
            b"size=1kB time=00:00:02.00 bitrate=N/A\rConversion ",
            b"failed!",
            b"",
        ])
        diagnostics = deque(maxlen=10)
        positions = []

        await EncodeSupervisor(EncodeConfig())._read_diagnostics(stream, diagnostics, positions.append)

        assert positions == [pytest.approx(2.0)]
        assert list(diagnostics) == ["Conversion failed!"]
