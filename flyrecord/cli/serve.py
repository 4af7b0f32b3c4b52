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

"""FlyRecord Server CLI.

Command-line interface for starting the FlyRecord service.

Usage:
    flyrecord-serve [--host HOST] [--port PORT] [--reload]

    Or with Python:
    python -m flyrecord.cli.serve

Environment Variables:
    FLYRECORD_HOST, FLYRECORD_PORT, FLYRECORD_LOG_LEVEL
    FLYRECORD_OUTPUT_DIR, FLYRECORD_MAX_SESSIONS and the other
    FLYRECORD_* recorder settings are read by the service at start-up.
"""

from __future__ import annotations

import argparse
import os
from typing import List, Optional

import uvicorn

BANNER = r"""  _____.__
_/ ____\  | ___.__._______   ____   ____  ___________  __| _/
\   __\|  |<   |  |\_  __ \_/ __ \_/ ___\/  _ \_  __ \/ __ |
 |  |  |  |_\___  | |  | \/\  ___/\  \__(  <_> )  | \/ /_/ |
 |__|  |____/ ____| |__|    \___  >\___  >____/|__|  \____ |
            \/                  \/     \/                 \/"""


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flyrecord-serve",
        description="Start the FlyRecord service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  flyrecord-serve                    # Start server on 0.0.0.0:8000
  flyrecord-serve --port 8080        # Custom port
  flyrecord-serve --reload           # Development mode with auto-reload
        """,
    )
    parser.add_argument(
        "--host",
        default=os.environ.get("FLYRECORD_HOST", "0.0.0.0"),
        help="Host to bind to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("FLYRECORD_PORT", "8000")),
        help="Port to bind to (default: 8000)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("FLYRECORD_LOG_LEVEL", "info").lower(),
        choices=["debug", "info", "warning", "error", "critical"],
        help="Log level (default: info)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the serve command."""
    args = create_parser().parse_args(argv)

    # Sessions live in process memory, so the service always runs one worker
    print()
    print(BANNER)
    print()
    print("  Starting server...")
    print()
    print(f"  Host:      {args.host}")
    print(f"  Port:      {args.port}")
    print(f"  Reload:    {args.reload}")
    print(f"  Log Level: {args.log_level}")
    print(f"  Output:    {os.environ.get('FLYRECORD_OUTPUT_DIR', './recordings')}")
    print()
    print(f"  API Docs:  http://{args.host}:{args.port}/docs")
    print(f"  Health:    http://{args.host}:{args.port}/health")
    print()

    uvicorn.run(
        "flyrecord.service.app:app",
        host=args.host,
        port=args.port,
        workers=1,
        reload=args.reload,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
