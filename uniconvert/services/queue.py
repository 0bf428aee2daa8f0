import logging
from typing import Iterable, Optional

from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError
from rq import Queue, Retry
from rq.command import send_stop_job_command
from rq.exceptions import InvalidJobOperation, NoSuchJobError
from rq.job import Job, JobStatus as RQJobStatus
from rq.registry import (
    DeferredJobRegistry,
    FailedJobRegistry,
    FinishedJobRegistry,
    ScheduledJobRegistry,
    StartedJobRegistry,
)

from uniconvert.core.errors import TransientInfraError, retry_with_backoff
from uniconvert.core.media import MediaType
from uniconvert.models import ConversionJob

logger = logging.getLogger(__name__)

BROKER_ERRORS = (RedisConnectionError, RedisTimeoutError)

# the import path rq workers resolve for every conversion job
TASK_PATH = "uniconvert.worker.run_conversion"

QUEUE_STATES = ("queued", "delayed", "processing", "completed", "failed")

_STATE_BY_RQ_STATUS = {
    RQJobStatus.QUEUED: "queued",
    RQJobStatus.SCHEDULED: "delayed",
    RQJobStatus.DEFERRED: "delayed",
    RQJobStatus.STARTED: "processing",
    RQJobStatus.FINISHED: "completed",
    RQJobStatus.FAILED: "failed",
    RQJobStatus.STOPPED: "failed",
    RQJobStatus.CANCELED: "failed",
}


class ConversionQueue:
    """
    durable per-media-type work queue backed by rq

    dequeue, ack and fail are carried out by the rq worker itself: a blocking
    pop hands a job to exactly one worker, a normal return acknowledges it and
    a raised exception fails the attempt, which rq re-schedules with the
    configured backoff until the attempts are used up.
    """

    def __init__(
        self,
        media_type,
        connection,
        job_timeout: int = 3600,
        attempts: int = 3,
        retry_intervals: Optional[list] = None,
        result_ttl: int = 7 * 24 * 3600,
    ):
        self.media_type = MediaType(media_type)
        self.connection = connection
        self.job_timeout = job_timeout
        self.attempts = max(attempts, 1)
        self.retry_intervals = retry_intervals if retry_intervals is not None else [1, 2]
        self.result_ttl = result_ttl
        self.rq_queue = Queue(self.media_type.queue_name, connection=connection)

    @property
    def name(self) -> str:
        return self.rq_queue.name

    def _retry_policy(self) -> Optional[Retry]:
        if self.attempts <= 1:
            return None
        return Retry(max=self.attempts - 1, interval=self.retry_intervals or 0)

    def enqueue(self, job: ConversionJob) -> Job:
        """push a job onto the queue; broker outages surface as TransientInfraError"""
        try:
            return self._push(job)
        except BROKER_ERRORS as e:
            raise TransientInfraError(f"could not enqueue job {job.id}: {e}") from e

    @retry_with_backoff(max_retries=3, initial_delay=0.5, exceptions=BROKER_ERRORS)
    def _push(self, job: ConversionJob) -> Job:
        rq_job = self.rq_queue.enqueue(
            TASK_PATH,
            job.id,
            job_id=job.id,
            retry=self._retry_policy(),
            job_timeout=self.job_timeout,
            result_ttl=self.result_ttl,
            failure_ttl=self.result_ttl,
            description=f"{self.media_type.value}: {job.original_filename} -> {job.target_format}",
        )
        logger.info(f"queued job {job.id} on {self.name}")
        return rq_job

    def get_by_id(self, job_id: str) -> Optional[Job]:
        try:
            return Job.fetch(job_id, connection=self.connection)
        except NoSuchJobError:
            return None

    def state_of(self, job_id: str) -> Optional[str]:
        """scheduler-side state of a job, or None when the broker no longer knows it"""
        rq_job = self.get_by_id(job_id)
        if rq_job is None or rq_job.origin != self.name:
            return None
        status = rq_job.get_status(refresh=True)
        if status is None:
            return None
        return _STATE_BY_RQ_STATUS.get(RQJobStatus(status))

    def failure_reason(self, job_id: str) -> Optional[str]:
        rq_job = self.get_by_id(job_id)
        if rq_job is None or not rq_job.exc_info:
            return None
        # last line of the traceback carries the exception message
        return rq_job.exc_info.strip().splitlines()[-1][:500]

    def list_by_states(self, states: Iterable[str]) -> list[str]:
        """job ids currently held in any of the given scheduler states"""
        sources = {
            "queued": lambda: self.rq_queue.get_job_ids(),
            "delayed": lambda: (
                ScheduledJobRegistry(queue=self.rq_queue).get_job_ids()
                + DeferredJobRegistry(queue=self.rq_queue).get_job_ids()
            ),
            "processing": lambda: StartedJobRegistry(queue=self.rq_queue).get_job_ids(),
            "completed": lambda: FinishedJobRegistry(queue=self.rq_queue).get_job_ids(),
            "failed": lambda: FailedJobRegistry(queue=self.rq_queue).get_job_ids(),
        }
        job_ids = []
        for state in states:
            if state not in sources:
                raise ValueError(f"unknown queue state: {state}")
            job_ids.extend(sources[state]())
        return job_ids

    def counts(self) -> dict:
        return {state: len(self.list_by_states([state])) for state in QUEUE_STATES}

    def remove(self, job_id: str) -> bool:
        """drop a queued or delayed job from the broker"""
        rq_job = self.get_by_id(job_id)
        if rq_job is None:
            return False
        rq_job.delete()
        logger.info(f"removed job {job_id} from {self.name}")
        return True

    def abort(self, job_id: str) -> bool:
        """ask the worker executing the job to kill its work horse (best effort)"""
        try:
            send_stop_job_command(self.connection, job_id)
        except (NoSuchJobError, InvalidJobOperation) as e:
            logger.info(f"could not stop job {job_id}: {e}")
            return False
        logger.info(f"sent stop command for job {job_id}")
        return True


def build_queues(connection, settings) -> dict:
    """one queue per media type, keyed by MediaType"""
    return {
        media_type: ConversionQueue(
            media_type,
            connection,
            job_timeout=settings.JOB_TIMEOUT_SECONDS,
            attempts=settings.JOB_ATTEMPTS,
            retry_intervals=settings.retry_intervals(),
            result_ttl=settings.QUEUE_RESULT_TTL_SECONDS,
        )
        for media_type in MediaType
    }
