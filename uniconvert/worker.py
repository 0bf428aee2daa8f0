"""
rq task and worker pools

`python -m uniconvert.worker` starts one rq WorkerPool process per media
type, each sized by that type's concurrency setting. every worker executes
`run_conversion` for the jobs it claims.
"""
import argparse
import logging
import multiprocessing
import sys
from typing import Optional

from redis import Redis
from rq import Queue, get_current_job
from rq.worker_pool import WorkerPool

from uniconvert.converters import default_converters
from uniconvert.core.config import settings
from uniconvert.core.db import create_db_engine, init_db
from uniconvert.core.logging_config import configure_logging
from uniconvert.core.media import MediaType
from uniconvert.services.job_tracker import JobTracker
from uniconvert.services.notifier import WebhookNotifier
from uniconvert.services.pipeline import ConversionPipeline

logger = logging.getLogger(__name__)

# Lazy initialize the pipeline, one per worker process
_pipeline: Optional[ConversionPipeline] = None


def build_pipeline(config=settings) -> ConversionPipeline:
    engine = create_db_engine(config.DATABASE_URL)
    init_db(engine)
    return ConversionPipeline(
        tracker=JobTracker(engine),
        converters=default_converters(),
        notifier=WebhookNotifier(config.WEBHOOK_TIMEOUT_SECONDS, config.PUBLIC_BASE_URL),
        outputs_dir=config.OUTPUTS_DIR,
    )


def get_pipeline() -> ConversionPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline()
    return _pipeline


def bind_pipeline(pipeline: Optional[ConversionPipeline]):
    """install the pipeline this process runs jobs with (None resets to lazy)"""
    global _pipeline
    _pipeline = pipeline


def run_conversion(job_id: str):
    """rq entry point for one attempt of a conversion job"""
    current_job = get_current_job()
    # retries_left still counts this attempt's retry until rq handles the failure
    final_attempt = current_job is None or not current_job.retries_left
    return get_pipeline().run(job_id, final_attempt=final_attempt)


def run_pool(media_type: str, burst: bool = False):
    """run a worker pool for one media type (blocks until the pool stops)"""
    configure_logging(settings.LOG_LEVEL, settings.LOG_DIR, process_name=f"worker_{media_type}")
    media_type = MediaType(media_type)
    redis_conn = Redis.from_url(settings.REDIS_URL)
    queue = Queue(media_type.queue_name, connection=redis_conn)
    num_workers = settings.concurrency_for(media_type)

    logger.info(f"starting {num_workers} workers, listening on queue: {queue.name}")
    pool = WorkerPool([queue], connection=redis_conn, num_workers=num_workers)
    pool.start(burst=burst, logging_level=settings.LOG_LEVEL.upper())


def start_worker_pools(media_types: list, burst: bool = False) -> list:
    processes = []
    for media_type in media_types:
        process = multiprocessing.Process(
            target=run_pool,
            args=(MediaType(media_type).value, burst),
            name=f"pool-{MediaType(media_type).value}",
        )
        process.start()
        processes.append(process)
    return processes


def main(argv=None):
    parser = argparse.ArgumentParser(description="run conversion worker pools")
    parser.add_argument(
        "--types",
        nargs="+",
        choices=[media_type.value for media_type in MediaType],
        default=[media_type.value for media_type in MediaType],
        help="media types to serve (default: all)",
    )
    parser.add_argument("--burst", action="store_true", help="exit once the queues are empty")
    args = parser.parse_args(argv)

    configure_logging(settings.LOG_LEVEL, settings.LOG_DIR, process_name="worker")
    processes = start_worker_pools(args.types, burst=args.burst)
    try:
        for process in processes:
            process.join()
    except KeyboardInterrupt:
        logger.info("worker pools stopped by user")
        for process in processes:
            process.terminate()
        for process in processes:
            process.join()
    return 0 if all(process.exitcode == 0 for process in processes) else 1


if __name__ == "__main__":
    sys.exit(main())
