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
FlyRecord Unified CLI.

Usage:
    flyrecord record URL [--rate R] [--output-dir D] [--headful]
    flyrecord serve [OPTIONS]
    flyrecord version
    flyrecord --help

Exit codes for ``record``:
    0  recording completed
    1  recording failed
    2  request rejected (bad URL or playback rate)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import platform
import signal
import sys
from pathlib import Path
from typing import List, Optional

from flyrecord.config import RecorderConfig
from flyrecord.core.progress import EventType, ProgressBus
from flyrecord.exceptions import ConfigurationError, InvalidInputError
from flyrecord.service.session_manager import SessionManager
from flyrecord.utils.logger import configure_logging

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID_INPUT = 2

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def get_version() -> str:
    """Get the FlyRecord version."""
    import flyrecord
    return getattr(flyrecord, "__version__", "unknown")


def cmd_version(args: argparse.Namespace) -> int:
    """Show version information."""
    version = get_version()
    if args.json:
        info = {
            "flyrecord": version,
            "python": platform.python_version(),
            "platform": platform.system(),
        }
        print(json.dumps(info, indent=2))
    else:
        print(f"FlyRecord {version}")
    return EXIT_OK


def cmd_serve(args: argparse.Namespace, remaining: List[str]) -> int:
    """Delegate to serve CLI."""
    from flyrecord.cli import serve

    serve.main(remaining)
    return EXIT_OK


def build_config(args: argparse.Namespace) -> RecorderConfig:
    """Recorder configuration from the environment plus command-line overrides."""
    config = RecorderConfig.from_env()
    if args.output_dir:
        config.output_dir = args.output_dir
        if "FLYRECORD_CAPTURE_DIR" not in os.environ:
            config.capture_dir = str(Path(args.output_dir) / ".capture")
    if args.headful:
        config.headless = False
    return config


def stop_on_signal(manager: SessionManager, session_id: str) -> None:
    """Signal handler: ask the session to stop, unless it already finished."""
    try:
        manager.stop_session(session_id)
    except KeyError:
        # Session left the registry after its terminal event
        pass


def format_event(event_dict: dict) -> str:
    """One human readable progress line."""
    kind = event_dict.get("type")
    prefix = f"[{event_dict.get('step', '?')}/{event_dict.get('totalSteps', '?')}]"
    if kind == EventType.COMPLETE.value:
        return f"{prefix} 100% {event_dict.get('message')}: {event_dict.get('outputLocator')}"
    if kind == EventType.ERROR.value:
        return f"{prefix} ERROR ({event_dict.get('errorType')}): {event_dict.get('message')}"
    return f"{prefix} {event_dict.get('progress', 0):>3}% {event_dict.get('message')}"


async def run_recording(
    url: str,
    playback_rate: Optional[float],
    config: RecorderConfig,
    manager: Optional[SessionManager] = None,
) -> int:
    """Record one URL in-process, printing progress until the session ends."""
    bus = manager.bus if manager else ProgressBus()
    manager = manager or SessionManager(config, bus)

    # Subscribe before starting so the first events are not missed
    async with bus.subscribe() as events:
        try:
            session = await manager.start_session(url, playback_rate=playback_rate)
        except InvalidInputError as e:
            print(f"Invalid request: {e}", file=sys.stderr)
            return EXIT_INVALID_INPUT

        loop = asyncio.get_running_loop()
        for signum in STOP_SIGNALS:
            try:
                loop.add_signal_handler(signum, stop_on_signal, manager, session.session_id)
            except NotImplementedError:
                # Not supported on this platform; Ctrl+C then aborts instead of stopping
                pass

        print(f"Recording {session.source_url} (id: {session.session_id}, rate: {session.playback_rate})")
        try:
            async for event in events:
                if event.session_id != session.session_id:
                    continue
                print(format_event(event.to_dict()), flush=True)
                if event.is_terminal:
                    return EXIT_OK if event.type == EventType.COMPLETE else EXIT_FAILED
        finally:
            for signum in STOP_SIGNALS:
                try:
                    loop.remove_signal_handler(signum)
                except NotImplementedError:
                    pass
            await manager.cleanup_all()

    return EXIT_FAILED


def cmd_record(args: argparse.Namespace) -> int:
    """Record one URL and exit."""
    try:
        config = build_config(args)
    except (ConfigurationError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_FAILED
    return asyncio.run(run_recording(args.url, args.rate, config))


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser."""
    parser = argparse.ArgumentParser(
        prog="flyrecord",
        description="FlyRecord - Record web media playback to MP4",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  flyrecord record https://example.org/play/1 --rate 1.5
  flyrecord serve --port 8000
  flyrecord version --json
""",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("FLYRECORD_LOG_LEVEL", "INFO").upper(),
        help="Set logging level (default: INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    version_parser = subparsers.add_parser("version", help="Show version information")
    version_parser.add_argument("--json", action="store_true", help="Output as JSON")
    version_parser.set_defaults(func=cmd_version)

    record_parser = subparsers.add_parser("record", help="Record one URL and exit")
    record_parser.add_argument("url", help="Page hosting the media to record")
    record_parser.add_argument(
        "--rate",
        type=float,
        default=None,
        help="Playback rate, clamped to [0.5, 2.0] (default: 1.0)",
    )
    record_parser.add_argument(
        "--output-dir",
        default=None,
        help="Directory for the encoded recording (default: FLYRECORD_OUTPUT_DIR or ./recordings)",
    )
    record_parser.add_argument(
        "--headful",
        action="store_true",
        help="Show the browser window",
    )
    record_parser.set_defaults(func=cmd_record)

    subparsers.add_parser(
        "serve",
        help="Start the FlyRecord API service",
        add_help=False,
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the unified CLI."""
    parser = create_parser()

    # Parse only the known args to allow pass-through for subcommands
    args, remaining = parser.parse_known_args(argv)

    configure_logging(args.log_level)

    if args.command == "serve":
        sys.exit(cmd_serve(args, remaining))
    if remaining:
        parser.error(f"unrecognized arguments: {' '.join(remaining)}")

    if hasattr(args, "func"):
        sys.exit(args.func(args))
    parser.print_help()
    sys.exit(EXIT_OK)


if __name__ == "__main__":
    main()
