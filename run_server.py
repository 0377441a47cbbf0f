"""Command-line entry point for the bookrelay API server.

Usage:
    bookrelay-server
    bookrelay-server --host 0.0.0.0 --port 9000 --db-path /var/lib/bookrelay/jobs.db
"""
from __future__ import annotations

import argparse
import logging

logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description="bookrelay API server")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    parser.add_argument("--db-path", default=None, help="SQLite database file (default: BOOKRELAY_API_DB_PATH or bookrelay.db)")
    parser.add_argument("--no-background", action="store_true",
                        help="Do not start the discovery, retention and auto-discovery loops")
    parser.add_argument("--log-level", default="info", choices=["debug", "info", "warning", "error"])
    args = parser.parse_args()

    import uvicorn

    from bookrelay import config as _cfg
    from bookrelay.api.config import ApiSettings
    from bookrelay.api.main import create_app
    from bookrelay.utils.logging import configure_logging

    configure_logging(args.log_level, _cfg.LOG_FORMAT)

    overrides = {"host": args.host, "port": args.port, "log_level": args.log_level}
    if args.db_path:
        overrides["db_path"] = args.db_path
    if args.no_background:
        overrides["background_tasks"] = False
    settings = ApiSettings(**overrides)
    app = create_app(settings)

    logger.info("Serving bookrelay API at http://%s:%s", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
