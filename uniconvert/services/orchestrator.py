import logging
import os
import threading
from dataclasses import dataclass
from typing import Optional

from redis import Redis

from uniconvert.core.db import create_db_engine, init_db
from uniconvert.core.errors import NotFoundError, ValidationError
from uniconvert.core.media import MediaType
from uniconvert.models import ConversionJob, JobStatus
from uniconvert.services.job_router import JobRouter
from uniconvert.services.filenames import output_filename
from uniconvert.services.job_tracker import JobTracker
from uniconvert.services.notifier import WebhookNotifier
from uniconvert.services.queue import build_queues
from uniconvert.services.storage_manager import CleanupSweeper, remove_file

logger = logging.getLogger(__name__)

CANCEL_REASON = "cancelled by user"


@dataclass
class CancelOutcome:
    job_id: str
    removed: bool  # the job never ran and its record is gone
    cancelled: bool  # this call moved the job out of the pipeline
    job: Optional[ConversionJob] = None

    @property
    def message(self) -> str:
        return "Job cancelled" if self.cancelled else "Job already finished"

    @property
    def needs_notification(self) -> bool:
        """a running job was forced to failed here, so its webhook is ours to send"""
        return self.cancelled and not self.removed and self.job is not None


class Orchestrator:
    """
    owns the queues, the job tracker and the notifier for one process

    constructed explicitly at startup and handed to the api layer, so nothing
    reaches for module-level queue or database singletons.
    """

    def __init__(
        self,
        tracker: JobTracker,
        queues: dict,
        notifier: WebhookNotifier,
        uploads_dir: str,
        outputs_dir: str,
        sweeper: Optional[CleanupSweeper] = None,
        connection=None,
        kill_on_cancel: bool = True,
    ):
        self.tracker = tracker
        self.queues = queues
        self.notifier = notifier
        self.uploads_dir = uploads_dir
        self.outputs_dir = outputs_dir
        self.sweeper = sweeper or CleanupSweeper([uploads_dir, outputs_dir])
        self.connection = connection
        self.kill_on_cancel = kill_on_cancel
        self.router = JobRouter(tracker, queues)

    @classmethod
    def from_settings(cls, settings) -> "Orchestrator":
        engine = create_db_engine(settings.DATABASE_URL)
        init_db(engine)
        connection = Redis.from_url(settings.REDIS_URL)
        return cls(
            tracker=JobTracker(engine),
            queues=build_queues(connection, settings),
            notifier=WebhookNotifier(settings.WEBHOOK_TIMEOUT_SECONDS, settings.PUBLIC_BASE_URL),
            uploads_dir=settings.UPLOADS_DIR,
            outputs_dir=settings.OUTPUTS_DIR,
            sweeper=CleanupSweeper([settings.UPLOADS_DIR, settings.OUTPUTS_DIR], settings.FILE_RETENTION_HOURS),
            connection=connection,
            kill_on_cancel=settings.CANCEL_KILLS_PROCESS,
        )

    def ensure_directories(self):
        os.makedirs(self.uploads_dir, exist_ok=True)
        os.makedirs(self.outputs_dir, exist_ok=True)

    def submit(self, input_path, original_filename, target_format, options=None, webhook_url=None, media_type=None):
        return self.router.submit(
            input_path,
            original_filename,
            target_format,
            options=options,
            webhook_url=webhook_url,
            media_type=media_type,
        )

    def get_job(self, job_id: str) -> ConversionJob:
        job = self.tracker.get(job_id)
        if job is None:
            raise NotFoundError(job_id)
        return job

    def list_jobs(self, page: int = 1, limit: int = 20, status: Optional[str] = None, media_type: Optional[str] = None):
        if status and status not in JobStatus.ALL:
            raise ValidationError(f"unknown status: {status}")
        return self.tracker.list_page(page=page, limit=limit, status=status, media_type=media_type)

    def cancel_job(self, job_id: str) -> CancelOutcome:
        """
        cancel a job

        a job still waiting in its queue (queued or delayed for a retry) is
        removed entirely. a running job is marked failed; the converter may
        keep running, but whatever it produces afterwards is discarded.
        """
        job = self.get_job(job_id)
        if job.is_terminal:
            return CancelOutcome(job_id, removed=False, cancelled=False, job=job)

        queue = self.queues[MediaType(job.media_type)]
        state = queue.state_of(job_id)
        if state in ("queued", "delayed") or (state is None and job.status == JobStatus.QUEUED):
            queue.remove(job_id)
            self.tracker.delete(job_id)
            remove_file(job.input_path)
            logger.info(f"cancelled waiting job {job_id}")
            return CancelOutcome(job_id, removed=True, cancelled=True)

        cancelled = self.tracker.fail(job_id, CANCEL_REASON)
        if cancelled:
            logger.info(f"cancelled running job {job_id}")
            if self.kill_on_cancel:
                queue.abort(job_id)
            # a killed work horse never gets to clean up after itself
            self.discard_artifacts(job)
        return CancelOutcome(job_id, removed=False, cancelled=cancelled, job=self.tracker.get(job_id))

    def discard_artifacts(self, job: ConversionJob):
        """remove the upload and any partial output of a job that was forced to failed"""
        remove_file(job.input_path)
        remove_file(os.path.join(self.outputs_dir, output_filename(job.id, job.original_filename, job.target_format)))

    def reconcile(self) -> list[str]:
        failed = self.tracker.reconcile(self.queues)
        for job_id in failed:
            job = self.tracker.get(job_id)
            self.discard_artifacts(job)
            self.notifier.notify_job(job)
        return failed

    def run_reconciler(self, interval_seconds: float, stop_event: Optional[threading.Event] = None):
        """reconcile now, then once per interval until the stop event is set"""
        stop_event = stop_event or threading.Event()
        while not stop_event.is_set():
            try:
                failed = self.reconcile()
                if failed:
                    logger.info(f"reconciler failed {len(failed)} stranded jobs")
            except Exception as e:
                logger.error(f"reconcile error: {e}", exc_info=True)
            stop_event.wait(interval_seconds)

    def start_reconciler(self, interval_seconds: float) -> threading.Event:
        """run the reconciler on a daemon thread; set the returned event to stop it"""
        stop_event = threading.Event()
        thread = threading.Thread(
            target=self.run_reconciler,
            args=(interval_seconds, stop_event),
            name="job-reconciler",
            daemon=True,
        )
        thread.start()
        return stop_event

    def queue_counts(self) -> dict:
        return {media_type.value: queue.counts() for media_type, queue in self.queues.items()}

    def ping(self) -> bool:
        if self.connection is None:
            return False
        return bool(self.connection.ping())

    def close(self):
        if self.connection is not None:
            self.connection.close()
        self.tracker.engine.dispose()
