# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for request validators."""

import math

import pytest

from flyrecord.exceptions import InvalidInputError
from flyrecord.validators import clamp_playback_rate, validate_source_url


class TestValidateSourceUrl:
    """Tests for validate_source_url."""

    @pytest.mark.parametrize("url", [
        "https://example.org/play/1",
        "http://localhost:3000/video",
        "file:///tmp/media.html",
    ])
    def test_accepts_urls_with_scheme(self, url):
        assert validate_source_url(url) == url

    def test_strips_whitespace(self):
        assert validate_source_url("  https://example.org  ") == "https://example.org"

    @pytest.mark.parametrize("url", [None, "", "   ", 42])
    def test_rejects_missing_url(self, url):
        with pytest.raises(InvalidInputError, match="URL is required"):
            validate_source_url(url)

    @pytest.mark.parametrize("url", ["example.org/play/1", "//example.org", "https//example.org"])
    def test_rejects_url_without_scheme(self, url):
        with pytest.raises(InvalidInputError, match="scheme"):
            validate_source_url(url)


class TestClampPlaybackRate:
    """Tests for clamp_playback_rate."""

    @pytest.mark.parametrize("requested,expected", [
        (0.1, 0.5),
        (3.0, 2.0),
        (1.25, 1.25),
        (0.5, 0.5),
        (2.0, 2.0),
        (1, 1.0),
    ])
    def test_clamps_to_range(self, requested, expected):
        assert clamp_playback_rate(requested) == expected

    def test_none_uses_default(self):
        assert clamp_playback_rate(None) == 1.0
        assert clamp_playback_rate(None, default=1.5) == 1.5

    def test_custom_bounds(self):
        assert clamp_playback_rate(4.0, minimum=0.25, maximum=4.0) == 4.0

    @pytest.mark.parametrize("rate", [0, -1.0, math.nan, math.inf, -math.inf])
    def test_rejects_non_finite_or_non_positive(self, rate):
        with pytest.raises(InvalidInputError):
            clamp_playback_rate(rate)

    @pytest.mark.parametrize("rate", ["1.5", True, [1.0]])
    def test_rejects_non_numbers(self, rate):
        with pytest.raises(InvalidInputError, match="must be a number"):
            clamp_playback_rate(rate)
