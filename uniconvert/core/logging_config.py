import logging
import os
import sys
from datetime import datetime

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: str = "INFO", log_dir: str = "", process_name: str = "app"):
    """configure structured logging to stdout and, optionally, a dated file"""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_dir:
        # create logs directory if it doesn't exist
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            logging.FileHandler(
                os.path.join(log_dir, f'{process_name}_{datetime.now().strftime("%Y%m%d")}.log'),
                mode='a',
            )
        )

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )

