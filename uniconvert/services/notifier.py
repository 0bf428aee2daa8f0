import logging
from datetime import datetime, timezone
from typing import Optional

import requests

from uniconvert.core.errors import NotificationError
from uniconvert.models import ConversionJob, JobStatus

logger = logging.getLogger(__name__)

USER_AGENT = "UniConvert/1.0"


def build_payload(job: ConversionJob, base_url: str = "") -> dict:
    """webhook body describing a job's terminal outcome"""
    payload = {"job_id": job.id, "status": job.status}
    if job.status == JobStatus.COMPLETED:
        payload.update(job.result(base_url) or {})
    elif job.error_message:
        payload["error"] = job.error_message
    return payload


class WebhookNotifier:
    """
    fire-and-forget webhook delivery

    one POST per call, bounded by a timeout. delivery problems are logged and
    swallowed: a webhook never changes a job's committed state and is never
    retried.
    """

    def __init__(self, timeout: float = 10.0, base_url: str = ""):
        self.timeout = timeout
        self.base_url = base_url

    def _post(self, url: str, payload: dict):
        try:
            response = requests.post(
                url,
                json=payload,
                timeout=self.timeout,
                headers={"User-Agent": USER_AGENT},
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise NotificationError(str(e)) from e

    def notify(self, url: str, payload: dict) -> bool:
        body = {**payload, "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")}
        try:
            self._post(url, body)
        except NotificationError as e:
            logger.error(f"webhook failed for {url} (job {payload.get('job_id')}): {e}")
            return False
        logger.info(f"webhook sent to {url} for job {payload.get('job_id')}")
        return True

    def notify_job(self, job: Optional[ConversionJob]) -> bool:
        if job is None or not job.webhook_url or not job.is_terminal:
            return False
        return self.notify(job.webhook_url, build_payload(job, self.base_url))
