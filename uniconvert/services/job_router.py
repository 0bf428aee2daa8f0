import logging
from typing import Optional

from uniconvert.core.errors import TransientInfraError, ValidationError
from uniconvert.core.media import MediaType, detect_media_type, get_profile
from uniconvert.models import ConversionJob, JobStatus
from uniconvert.services.job_tracker import JobTracker

logger = logging.getLogger(__name__)


class JobRouter:
    """classifies uploads, records the job and hands it to its media type's queue"""

    def __init__(self, tracker: JobTracker, queues: dict):
        self.tracker = tracker
        self.queues = queues

    def classify(self, original_filename: str, media_type: Optional[str] = None) -> MediaType:
        if media_type:
            try:
                return MediaType(media_type)
            except ValueError:
                raise ValidationError(f"Unsupported file type: {media_type}")
        detected = detect_media_type(original_filename)
        if detected is None:
            raise ValidationError(f"Unsupported file type: {original_filename}")
        return detected

    def submit(
        self,
        input_path: str,
        original_filename: str,
        target_format: Optional[str],
        options: Optional[dict] = None,
        webhook_url: Optional[str] = None,
        media_type: Optional[str] = None,
    ) -> ConversionJob:
        """
        create and enqueue a conversion job, returning as soon as it is queued

        raises ValidationError for requests that can never succeed and
        TransientInfraError when the broker would not take the job.
        """
        if not target_format:
            raise ValidationError("target_format is required")
        if webhook_url and not webhook_url.startswith(("http://", "https://")):
            raise ValidationError("webhook_url must be an http(s) URL")
        resolved_type = self.classify(original_filename, media_type)
        profile = get_profile(resolved_type)
        target_format = target_format.strip().lower()
        if not profile.accepts_output(target_format):
            raise ValidationError(
                f"target_format '{target_format}' is not supported for {resolved_type.value} "
                f"(expected one of: {', '.join(profile.output_formats)})"
            )

        job = ConversionJob(
            media_type=resolved_type.value,
            input_path=input_path,
            original_filename=original_filename,
            target_format=target_format,
            options=profile.clean_options(options),
            status=JobStatus.QUEUED,
            webhook_url=webhook_url or None,
        )
        job = self.tracker.create(job)

        try:
            self.queues[resolved_type].enqueue(job)
        except TransientInfraError:
            # the job never reached the broker, so it must not look queued
            self.tracker.delete(job.id)
            raise

        logger.info(f"routed job {job.id} ({original_filename}) to {resolved_type.value} queue")
        return job
