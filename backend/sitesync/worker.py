import logging
import signal
import threading

from sitesync.core.config import settings
from sitesync.core.logging_config import configure_logging
from sitesync.core.prod_check import validate_production_config
from sitesync.db.bootstrap import bootstrap_database
from sitesync.jobs.runtime import build_scheduler


logger = logging.getLogger(__name__)


def main() -> None:
    configure_logging()
    validate_production_config()
    stop = threading.Event()

    def _shutdown_handler(signum, _frame):  # type: ignore[no-untyped-def]
        logger.info("scheduler worker received signal %s, stopping after the current tick...", signum)
        stop.set()

    signal.signal(signal.SIGTERM, _shutdown_handler)
    signal.signal(signal.SIGINT, _shutdown_handler)

    if settings.db_bootstrap_on_start:
        bootstrap_database()

    scheduler = build_scheduler()
    logger.info("scheduler worker started: %s", ", ".join(j.name for j in scheduler.jobs))
    scheduler.run_forever(stop)
    logger.info("scheduler worker stopped")


if __name__ == "__main__":
    main()
