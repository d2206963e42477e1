# main.py
import argparse
import logging
import signal
import sys
from typing import List, Optional

from core import __version__
from core.config import get_config_manager
from core.logging import setup_logging
from core.service import BouncerService
from utils.errors import ErrorCode
from utils.exceptions import BouncerError

logger = logging.getLogger(f"bouncer.{__name__}")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync CrowdSec decisions to UniFi firewall groups.")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to the YAML/JSON configuration file (default: $BOUNCER_CONFIG_PATH or config/config.yaml).",
    )
    parser.add_argument("--version", action="version", version=f"cs-unifi-bouncer {__version__}")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    # 1. Configuration
    config_manager = get_config_manager(args.config)

    # 2. Logging (falls back to defaults when the configuration is unusable)
    setup_logging(config_manager)
    logger.info(f"Starting cs-unifi-bouncer with version: {__version__}")
    if not config_manager.is_loaded():
        error = BouncerError(ErrorCode.CONFIG_NOT_LOADED, details={"errors": config_manager.errors})
        logger.critical(f"Terminating bouncer process: {error}")
        for message in error.details["errors"]:
            logger.critical(f"Configuration error: {message}")
        return 1

    # 3. Service
    try:
        service = BouncerService(config_manager)
    except BouncerError as e:
        logger.critical(f"Bouncer init failed: {e}")
        return 1

    def handle_signal(signum, _frame):
        logger.info(f"Received signal {signal.Signals(signum).name}")
        service.stop()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    # 4. Run until stopped or failed
    try:
        service.run()
    except BouncerError as e:
        logger.critical(f"Terminating bouncer process: {e}")
        return 1
    logger.info("Bouncer stopped.")
    return 0


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
