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
FlyRecord - Record media playing in a web page and transcode it to MP4.

A session loads a page in a headless browser, records its media element
while it plays, persists the recording chunk by chunk and hands the
finished capture to ffmpeg. Progress is published on a bus that any
number of observers can follow.
"""

__version__ = "0.1.0"
__author__ = "Firefly Software Solutions Inc"
__license__ = "Apache-2.0"

from flyrecord.config import EncodeConfig, RecorderConfig
from flyrecord.core.controller import SessionController
from flyrecord.core.progress import EventType, ProgressBus, ProgressEvent
from flyrecord.core.session import (
    CaptureOptions,
    CaptureStrategy,
    EncodedArtifact,
    Session,
    SessionState,
    StopReason,
)

__all__ = [
    # Config
    "EncodeConfig",
    "RecorderConfig",
    # Sessions
    "CaptureOptions",
    "CaptureStrategy",
    "EncodedArtifact",
    "Session",
    "SessionController",
    "SessionState",
    "StopReason",
    # Progress
    "EventType",
    "ProgressBus",
    "ProgressEvent",
]
