"""Server entrypoint.

Objective:
    Start the web UI from the command line with logging configured.

Responsibilities:
    - Parse arguments (host, port, log level, data directory).
    - Configure logging (including suppressing noisy HTTP request logs).
    - Build the FastAPI app and serve it with uvicorn.

High-level call tree:
    - :func:`main`
        - :func:`setup_logging`
            - installs :class:`_HttpxRequestInfoToDebugFilter`
        - :func:`gmail_triage.webapp.create_app`
        - :func:`uvicorn.run`

Operational notes:
    - This module supports being run both as a package module
      (``python -m gmail_triage.cli``) and as a script
      (``python src/gmail_triage/cli.py``). The import fallback handles
      the script case.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

import uvicorn

try:
    from .config import get_config
    from .webapp import create_app
except ImportError:  # pragma: no cover
    src_root = Path(__file__).resolve().parents[1]
    if str(src_root) not in sys.path:
        sys.path.insert(0, str(src_root))

    from gmail_triage.config import get_config
    from gmail_triage.webapp import create_app


class _HttpxRequestInfoToDebugFilter(logging.Filter):
    """Filter to suppress noisy httpx "HTTP Request:" INFO logs.

    The Groq SDK logs each HTTP request at INFO level through httpx. This
    filter hides those messages unless the root logger is in DEBUG mode.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        if record.name.startswith("httpx") and msg.startswith("HTTP Request:"):
            return logging.getLogger().isEnabledFor(logging.DEBUG)
        return True


def setup_logging(level: str = "INFO") -> None:
    """
    Configure logging for the application.

    This sets the root logger level and installs the
    :class:`_HttpxRequestInfoToDebugFilter` on all root handlers.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR).
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    root_logger = logging.getLogger()
    downgrade_filter = _HttpxRequestInfoToDebugFilter()
    for handler in root_logger.handlers:
        handler.addFilter(downgrade_filter)


def main(args: Optional[list[str]] = None) -> int:
    """
    Main CLI entry point.

    Pass an explicit ``args`` list instead of relying on ``sys.argv`` to
    call this from tests.

    Args:
        args: Command line arguments (uses sys.argv if None).

    Returns:
        int: Exit code (0 for success, 1 for error).
    """
    config = get_config()

    parser = argparse.ArgumentParser(
        description="Gmail AI Triage - LLM-assisted inbox cleanup",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                          Serve on the configured host/port
  %(prog)s --port 9000              Serve on another port
  %(prog)s --data-dir ./triage-data Keep settings and the last scan here
        """,
    )

    parser.add_argument("--host", type=str, default=config.host, help="Bind address")
    parser.add_argument("--port", "-p", type=int, default=config.port, help="Port")
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Directory for settings and the last scan (file storage backend)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=config.log_level.upper(),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )

    parsed_args = parser.parse_args(args)

    setup_logging(parsed_args.log_level)
    logger = logging.getLogger(__name__)

    if parsed_args.data_dir is not None:
        config.data_dir = parsed_args.data_dir

    try:
        app = create_app(config=config)
        logger.info(f"Serving Gmail AI Triage on http://{parsed_args.host}:{parsed_args.port}")
        uvicorn.run(
            app,
            host=parsed_args.host,
            port=parsed_args.port,
            log_level=parsed_args.log_level.lower(),
            log_config=None,
        )
        return 0

    except Exception as e:
        logger.exception("Fatal error")
        print(f"\nError: {e}\n")
        return 1


if __name__ == "__main__":
    sys.exit(main())
