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

"""Custom exceptions for FlyRecord.

This module defines the exception hierarchy used throughout FlyRecord.
All exceptions inherit from FlyRecordError for easy catching and handling.

Exception Hierarchy:
    FlyRecordError (base)
    ├── InvalidInputError - Rejected capture request (bad URL or rate)
    ├── ConfigurationError - Invalid or incomplete configuration
    ├── SurfaceAcquisitionError - Playback surface never became ready
    ├── CaptureInterrupted - Capture ended early (connectivity loss, premature end)
    ├── PersistenceError - A chunk could not be written to the capture file
    ├── EmptyCaptureError - Capture stopped before any data arrived
    └── EncodeError - Transcoding failures
        ├── EncodeTimeoutError - Encoder exceeded its deadline
        └── EncodeFailedError - Encoder exited with a non-zero status

Example:
    try:
        session = await manager.start_session("https://example.org/play/1")
    except InvalidInputError:
        # Reject the request, nothing was acquired
        pass
    except FlyRecordError:
        # Catch all FlyRecord errors
        pass
"""

from typing import Optional


class FlyRecordError(Exception):
    """Base exception for all FlyRecord errors.

    All custom exceptions in FlyRecord inherit from this class,
    allowing callers to catch all FlyRecord-specific errors with
    a single except clause.
    """
    pass


class InvalidInputError(FlyRecordError):
    """Exception raised when a capture request is rejected.

    Raised before any resource is acquired, so nothing needs cleaning up.

    Examples:
        - Source URL is empty or has no scheme
        - Playback rate is not a finite positive number
    """
    pass


class ConfigurationError(FlyRecordError):
    """Exception raised for configuration errors.

    Examples:
        - ffmpeg binary not found
        - Playback rate bounds inverted
        - Non-positive poll interval
    """
    pass


class SurfaceAcquisitionError(FlyRecordError):
    """Exception raised when the capture surface cannot be acquired.

    Fatal for the session: no retry, the surface is released and the
    session ends FAILED.

    Examples:
        - Browser failed to launch
        - Navigation failed
        - No playable media element appeared before the ready timeout
    """
    pass


class CaptureInterrupted(FlyRecordError):
    """Raised by a capture source when capture ends before natural completion.

    The controller treats this as a stop trigger, not a failure: whatever
    was captured so far is finalized and encoded.
    """
    pass


class PersistenceError(FlyRecordError):
    """Exception raised when a chunk cannot be persisted.

    Fatal for the session. The chunk sink never retries a failed write.
    """
    pass


class EmptyCaptureError(FlyRecordError):
    """Exception raised when capture stopped before any data arrived.

    There is nothing to encode, so the session ends FAILED.
    """
    pass


class EncodeError(FlyRecordError):
    """Base exception for transcoding failures.

    Attributes:
        diagnostics: Tail of the encoder's diagnostic output, if any
    """

    def __init__(self, message: str, diagnostics: Optional[str] = None) -> None:
        super().__init__(message)
        self.diagnostics = diagnostics or ""


class EncodeTimeoutError(EncodeError):
    """Exception raised when the encoder runs past its deadline.

    Attributes:
        timeout: The deadline in seconds that was exceeded
    """

    def __init__(
        self,
        message: str,
        timeout: float,
        diagnostics: Optional[str] = None,
    ) -> None:
        super().__init__(message, diagnostics)
        self.timeout = timeout


class EncodeFailedError(EncodeError):
    """Exception raised when the encoder exits with a non-zero status.

    Attributes:
        returncode: Exit status of the encoder process
    """

    def __init__(
        self,
        message: str,
        returncode: Optional[int],
        diagnostics: Optional[str] = None,
    ) -> None:
        super().__init__(message, diagnostics)
        self.returncode = returncode
