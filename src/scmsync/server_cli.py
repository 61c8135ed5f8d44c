"""CLI entry point for the scmsync API server."""

import argparse
import os


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="scmsync-server",
        description="scmsync API server: incremental SCM scan-and-merge",
    )
    parser.add_argument("--host", default="0.0.0.0", help="Bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Bind port (default: 8080)")
    parser.add_argument(
        "--local",
        action="store_true",
        help="Local dev mode: SQLite database, console logs",
    )
    parser.add_argument("--connections", help="Connection registry JSON file for batch/scheduled scans")
    parser.add_argument("--schedule", action="store_true", help="Periodically scan registry connections")
    parser.add_argument("--log-level", choices=["debug", "info", "warning", "error"], help="Override SCMSYNC_LOG_LEVEL")
    args = parser.parse_args(argv)

    if args.local:
        os.environ["SCMSYNC_LOCAL_MODE"] = "1"
    if args.connections:
        os.environ["SCMSYNC_CONNECTIONS_FILE"] = args.connections
    if args.schedule:
        os.environ["SCMSYNC_SCHEDULER_ENABLED"] = "1"
    if args.log_level:
        os.environ["SCMSYNC_LOG_LEVEL"] = args.log_level

    import uvicorn

    uvicorn.run("scmsync.main:app", host=args.host, port=args.port, log_config=None)


if __name__ == "__main__":
    main()
