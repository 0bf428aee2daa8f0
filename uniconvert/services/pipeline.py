"""
execution of a single conversion attempt

the pipeline is what a worker runs for every job it claims. it drives the
job through processing to a terminal state in the job tracker, cleans up
artifacts and fires the webhook once the terminal state is committed.
"""
import logging
import os
from typing import Optional

from rq.timeouts import JobTimeoutException

from uniconvert.core.errors import ConversionError, JobCancelledError, handle_worker_error
from uniconvert.core.media import MediaType
from uniconvert.services.filenames import output_filename
from uniconvert.services.job_tracker import JobTracker
from uniconvert.services.notifier import WebhookNotifier
from uniconvert.services.storage_manager import remove_file

logger = logging.getLogger(__name__)

# 100 is reserved for the completed state
MAX_ACTIVE_PROGRESS = 99


def clamp_progress(reported, last: int) -> int:
    """coerce a converter-reported value into the monotonic 0..99 range"""
    try:
        value = int(reported)
    except (TypeError, ValueError):
        return last
    return max(last, min(MAX_ACTIVE_PROGRESS, max(0, value)))


class ConversionPipeline:
    def __init__(
        self,
        tracker: JobTracker,
        converters: dict,
        notifier: WebhookNotifier,
        outputs_dir: str,
    ):
        self.tracker = tracker
        self.converters = converters
        self.notifier = notifier
        self.outputs_dir = outputs_dir

    def run(self, job_id: str, final_attempt: bool = True) -> Optional[dict]:
        """
        run one attempt of a job

        returns the result descriptor on success, None when there was nothing
        to do (job cancelled or already finished). raises ConversionError when
        the attempt failed so the queue can retry it; only the final attempt
        records the failure.
        """
        job = self.tracker.get(job_id)
        if job is None:
            logger.info(f"job {job_id} no longer tracked (cancelled), skipping")
            return None
        if job.is_terminal:
            logger.info(f"job {job_id} already {job.status}, skipping redelivery")
            return job.result()
        if not self.tracker.start(job_id):
            logger.info(f"job {job_id} was finalized before it started, skipping")
            return None

        converter = self.converters[MediaType(job.media_type)]
        filename = output_filename(job.id, job.original_filename, job.target_format)
        output_path = os.path.join(self.outputs_dir, filename)
        os.makedirs(self.outputs_dir, exist_ok=True)
        logger.info(f"converting job {job_id}: {job.original_filename} -> {job.target_format}")

        try:
            self._convert(job, converter, output_path)
        except JobCancelledError:
            logger.info(f"job {job_id} was cancelled, discarding its output")
            remove_file(output_path)
            remove_file(job.input_path)
            return None
        except Exception as e:
            remove_file(output_path)
            timed_out = isinstance(e, JobTimeoutException)
            message = "job timeout exceeded" if timed_out else (str(e) or e.__class__.__name__)
            handle_worker_error(job_id, e, final_attempt or timed_out)
            if final_attempt or timed_out:
                remove_file(job.input_path)
                if self.tracker.fail(job_id, message):
                    self.notifier.notify_job(self.tracker.get(job_id))
            if isinstance(e, ConversionError):
                raise
            raise ConversionError(message) from e

        if not self.tracker.complete(job_id, filename, output_path):
            # cancelled while the converter was finishing up
            remove_file(output_path)
            remove_file(job.input_path)
            return None

        remove_file(job.input_path)
        completed = self.tracker.get(job_id)
        logger.info(f"job {job_id} completed: {filename}")
        self.notifier.notify_job(completed)
        return completed.result() if completed else None

    def _convert(self, job, converter, output_path: str):
        last = 0
        self.tracker.update_progress(job.id, 0)
        updates = converter.convert(job.input_path, output_path, job.target_format, job.options or {})
        try:
            for reported in updates:
                progress = clamp_progress(reported, last)
                if progress == last:
                    continue
                last = progress
                if not self.tracker.update_progress(job.id, progress):
                    raise JobCancelledError(job.id)
        finally:
            # stops the external tool if we bail out early
            updates.close()

        current = self.tracker.get(job.id)
        if current is None or current.is_terminal:
            raise JobCancelledError(job.id)
        if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
            raise ConversionError("conversion produced no output")
