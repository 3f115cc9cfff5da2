#!/usr/bin/env python3
"""
Local collector runner.

Runs the reference collector with uvicorn so a Tracker can be pointed
at it during development (MINDTRACK_API_BASE_URL=http://127.0.0.1:3000).

Usage:
    python run_local.py
    python run_local.py --port 3000
    python run_local.py --no-batch     # Emulate a collector without POST /api/events
    python run_local.py --reload       # Auto-reload on code changes
"""

import argparse
from pathlib import Path

import uvicorn

from mindtrack.collector import create_app
from mindtrack.utils.logger import configure_logging

project_root = Path(__file__).parent


def main():
    parser = argparse.ArgumentParser(
        description="Run the mindtrack reference collector locally with uvicorn"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=3000,
        help="Port to run the server on (default: 3000)"
    )
    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)"
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload on code changes"
    )
    parser.add_argument(
        "--no-batch",
        action="store_true",
        help="Leave out the batched events route"
    )
    parser.add_argument(
        "--no-results",
        action="store_true",
        help="Leave out the results routes"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="info",
        choices=["critical", "error", "warning", "info", "debug", "trace"],
        help="Log level for uvicorn and the collector (default: info)"
    )

    args = parser.parse_args()

    if args.reload and (args.no_batch or args.no_results):
        parser.error("--reload serves the default app; it cannot be combined with --no-batch/--no-results")

    configure_logging("DEBUG" if args.log_level == "trace" else args.log_level.upper())

    print("=" * 60)
    print("Starting mindtrack collector (Local Development)")
    print("=" * 60)
    print(f"Server: http://{args.host}:{args.port}")
    print(f"API Docs: http://{args.host}:{args.port}/docs")
    print(f"Health: http://{args.host}:{args.port}/health")
    print(f"Batch route: {'disabled' if args.no_batch else 'enabled'}")
    print(f"Results routes: {'disabled' if args.no_results else 'enabled'}")
    print("=" * 60)
    print()

    if args.reload:
        # Reload needs an import string
        uvicorn.run(
            "mindtrack.collector.app:app",
            host=args.host,
            port=args.port,
            reload=True,
            log_level=args.log_level,
            reload_dirs=[str(project_root / "src")]
        )
        return

    uvicorn.run(
        create_app(enable_batch=not args.no_batch, enable_results=not args.no_results),
        host=args.host,
        port=args.port,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
