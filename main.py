"""Entry point for the log-store extension."""

import logging
import signal
import sys

from log_store_extension.config import load_config
from log_store_extension.errors import ConfigError
from log_store_extension.lifecycle import LifecycleDriver


def _interrupt(signum, frame):
    raise KeyboardInterrupt(f"signal {signum}")


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    logger = logging.getLogger(__name__)

    try:
        config = load_config()
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return exc.exit_code

    logging.getLogger().setLevel(config.log_level.upper())

    signal.signal(signal.SIGINT, _interrupt)
    signal.signal(signal.SIGTERM, _interrupt)

    logger.info(
        "Starting extension %r, log-store=%s:%d, runtime-api=%s",
        config.extension_name, config.log_store_host, config.log_store_port,
        config.runtime_api,
    )
    return LifecycleDriver(config).run()


if __name__ == "__main__":
    sys.exit(main())
