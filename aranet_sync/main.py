"""Main entry point for the Aranet4 Prometheus collector."""
import argparse
import logging
import sys
import threading
import signal

from pythonjsonlogger.json import JsonFormatter

from aranet_sync.acquisition import load_acquirer
from aranet_sync.config import load_config
from aranet_sync.control_api import ControlAPI
from aranet_sync.passkey import PasskeyMediator
from aranet_sync.prom_exporter import SelfMetrics
from aranet_sync.scheduler import RefreshScheduler, run_scheduler_thread
from aranet_sync.syncer import Syncer


TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
JSON_FIELDS = "%(asctime)s %(levelname)s %(name)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def build_formatter(log_format: str) -> logging.Formatter:
    """Formatter for the configured log format."""
    if log_format == "json":
        return JsonFormatter(JSON_FIELDS, datefmt=DATE_FORMAT)
    return logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT)


def setup_logging(log_level: str, log_format: str):
    """Setup logging configuration."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(build_formatter(log_format))
    logging.basicConfig(level=level, handlers=[handler])

    # Reduce noise from some libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Sync Aranet4 history into Prometheus via remote write"
    )
    parser.add_argument(
        "--config",
        "-c",
        help="Path to configuration YAML file"
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Verbose logging"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log writes instead of sending them"
    )
    return parser.parse_args(argv)


def main(argv=None):
    """Main function."""
    args = parse_args(argv)

    # Load configuration
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    if args.dry_run:
        config.prometheus.dry_run = True
    if args.verbose:
        config.global_.log_level = "DEBUG"

    # Setup logging
    setup_logging(config.global_.log_level, config.global_.log_format)
    logger = logging.getLogger(__name__)

    logger.info(
        f"Starting Aranet4 Prometheus collector: device={config.device.address} "
        f"listen={config.server.host}:{config.server.port} prometheus={config.prometheus.url}"
    )

    passkey = PasskeyMediator(
        terminal_prompt=config.pairing.terminal_prompt and sys.stdin.isatty(),
        delivery_timeout_s=config.pairing.delivery_timeout_s,
        request_timeout_s=config.pairing.pairing_timeout_s,
    )

    try:
        metrics = SelfMetrics(prefix=config.prometheus.prefix)
        syncer = Syncer(config.prometheus, config.series_labels(), metrics=metrics)
        acquirer = load_acquirer(config.device, passkey)
    except Exception as e:
        logger.error(f"Failed to initialize collector: {e}", exc_info=True)
        sys.exit(1)

    scheduler = RefreshScheduler(config, acquirer, syncer, metrics=metrics)
    control_api = ControlAPI(scheduler, passkey)

    # Start refresh loop in separate thread
    scheduler_thread = threading.Thread(
        target=run_scheduler_thread,
        args=(scheduler,),
        name="refresh",
        daemon=True
    )
    scheduler_thread.start()
    logger.info("Refresh loop started")

    def shutdown():
        scheduler.stop()
        syncer.close()

    # Setup signal handlers
    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        shutdown()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    # Run status server (blocking)
    try:
        control_api.run(host=config.server.host, port=config.server.port)
    except Exception as e:
        logger.error(f"Status server error: {e}", exc_info=True)
        shutdown()
        sys.exit(1)
    shutdown()


if __name__ == "__main__":
    main()
