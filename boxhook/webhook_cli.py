"""Run the webhook receiver under uvicorn.

Run with: boxhook [--host HOST] [--port PORT] [--env-file .env]
"""
import argparse
import logging
import sys

from .config import load_settings
from .utils import setup_logging
from .verifier import ConfigurationError
from .webhook_receiver import create_app

logger = logging.getLogger("boxhook.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='boxhook', description='Verify and log Box webhook deliveries.')
    parser.add_argument("--host", help="bind address (default: WEBHOOK_HOST or 127.0.0.1)")
    parser.add_argument("--port", type=int, help="listen port (default: PORT or 8080)")
    parser.add_argument("--env-file", default=".env")
    parser.add_argument("--log-level", help="default: LOG_LEVEL or INFO")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(env_file=args.env_file)
    except ConfigurationError as e:
        setup_logging(args.log_level or "INFO")
        logger.error("Invalid configuration: %s", e)
        sys.exit(2)

    setup_logging(args.log_level or settings.log_level)
    host = args.host or settings.host
    port = args.port or settings.port
    app = create_app(settings)

    import uvicorn
    # Bind to localhost by default; for production override WEBHOOK_HOST and use TLS/reverse proxy
    logger.info("Webhook server listening on %s:%s%s", host, port, settings.webhook_path)
    uvicorn.run(app, host=host, port=port, log_level=(args.log_level or settings.log_level).lower())


if __name__ == '__main__':
    main()
