import logging
import time
from functools import wraps
from typing import Callable

logger = logging.getLogger(__name__)


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    exceptions: tuple = (Exception,),
):
    """
    retry a call up to max_retries times, sleeping initial_delay and then
    backoff_factor times longer between tries

    only the listed exception types are retried; anything else propagates at
    once. when every try failed the last error is re-raised.

        @retry_with_backoff(max_retries=5, initial_delay=0.5, exceptions=(ConnectionError,))
        def push(job):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(1, max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_retries:
                        logger.error(f"{func.__name__} gave up after {attempt} tries: {e}")
                        raise
                    wait = initial_delay * backoff_factor ** (attempt - 1)
                    logger.warning(f"{func.__name__} try {attempt}/{max_retries} failed: {e}; next in {wait}s")
                    time.sleep(wait)

        return wrapper
    return decorator


def handle_worker_error(job_id: str, error: Exception, final_attempt: bool):
    """one place to log failed conversion attempts"""
    if final_attempt:
        logger.error(f"conversion {job_id} gave up: {error}", exc_info=True)
    else:
        logger.warning(f"conversion {job_id} attempt failed, rq will retry: {error}")


class UniConvertError(Exception):
    """base exception for uniconvert-specific errors"""
    pass


class ValidationError(UniConvertError):
    """raised when a request is missing fields or asks for something unsupported"""
    pass


class NotFoundError(UniConvertError):
    """raised when a job id is unknown"""
    pass


class ConversionError(UniConvertError):
    """raised when an external conversion tool fails"""
    pass


class TransientInfraError(UniConvertError):
    """raised when the broker cannot accept work"""
    pass


class NotificationError(UniConvertError):
    """raised when webhook delivery fails"""
    pass


class JobCancelledError(UniConvertError):
    """raised inside a worker when its job was cancelled mid-conversion"""
    pass
