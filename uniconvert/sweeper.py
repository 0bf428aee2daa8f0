"""
Dedicated entry point for the cleanup sweeper.
This runs as its own process and deletes expired uploads and outputs once at
start and then every CLEANUP_INTERVAL_HOURS.
"""
import logging
import sys

from uniconvert.core.config import settings
from uniconvert.core.logging_config import configure_logging
from uniconvert.services.storage_manager import CleanupSweeper

logger = logging.getLogger(__name__)


def main() -> int:
    configure_logging(settings.LOG_LEVEL, settings.LOG_DIR, process_name="sweeper")
    sweeper = CleanupSweeper(
        [settings.UPLOADS_DIR, settings.OUTPUTS_DIR],
        retention_hours=settings.FILE_RETENTION_HOURS,
    )
    logger.info(
        f"cleanup sweeper starting: retention {settings.FILE_RETENTION_HOURS}h, "
        f"interval {settings.CLEANUP_INTERVAL_HOURS}h"
    )
    try:
        sweeper.run_forever(settings.CLEANUP_INTERVAL_HOURS)
    except KeyboardInterrupt:
        logger.info("cleanup sweeper stopped by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())
