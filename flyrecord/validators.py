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
Input validators for capture requests.

Every check here runs before a session acquires any resource, so a
rejected request never leaves a browser, file or process behind.

Usage:
    >>> from flyrecord.validators import validate_source_url, clamp_playback_rate
    >>> validate_source_url("https://example.org/play/1")
    'https://example.org/play/1'
    >>> clamp_playback_rate(3.0)
    2.0
"""

import math
import re
from numbers import Real
from typing import Any, Optional

from flyrecord.exceptions import InvalidInputError

# RFC 3986 scheme followed by "://"
_URL_SCHEME = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*://\S+")

MIN_PLAYBACK_RATE = 0.5
MAX_PLAYBACK_RATE = 2.0
DEFAULT_PLAYBACK_RATE = 1.0


def validate_source_url(url: Any) -> str:
    """
    Validate a capture source URL.

    Args:
        url: Candidate URL

    Returns:
        The URL with surrounding whitespace removed

    Raises:
        InvalidInputError: If the URL is not a non-empty string with a scheme

    Example:
        >>> validate_source_url("example.org")
        Traceback (most recent call last):
        ...
        flyrecord.exceptions.InvalidInputError: URL must start with a scheme (e.g. https://)
    """
    if not isinstance(url, str) or not url.strip():
        raise InvalidInputError("URL is required")
    url = url.strip()
    if not _URL_SCHEME.match(url):
        raise InvalidInputError("URL must start with a scheme (e.g. https://)")
    return url


def clamp_playback_rate(
    rate: Optional[Any],
    minimum: float = MIN_PLAYBACK_RATE,
    maximum: float = MAX_PLAYBACK_RATE,
    default: float = DEFAULT_PLAYBACK_RATE,
) -> float:
    """
    Resolve the effective playback rate for a request.

    Out-of-range values are clamped to the nearest bound rather than
    rejected. Values that are not finite positive numbers are rejected.

    Args:
        rate: Requested rate, or None for the default
        minimum: Lower bound
        maximum: Upper bound
        default: Rate used when none was requested

    Returns:
        The effective rate

    Raises:
        InvalidInputError: If the rate is not a finite positive number

    Example:
        >>> clamp_playback_rate(0.1)
        0.5
        >>> clamp_playback_rate(1.25)
        1.25
        >>> clamp_playback_rate(None)
        1.0
    """
    if rate is None:
        return float(default)
    if isinstance(rate, bool) or not isinstance(rate, Real):
        raise InvalidInputError(f"Playback rate must be a number, got {rate!r}")

    value = float(rate)
    if not math.isfinite(value):
        raise InvalidInputError(f"Playback rate must be finite, got {value}")
    if value <= 0:
        raise InvalidInputError(f"Playback rate must be positive, got {value}")

    return min(maximum, max(minimum, value))
