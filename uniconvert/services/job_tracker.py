import logging
from typing import Optional

from sqlalchemy import func, update
from sqlmodel import Session, select

from uniconvert.core.media import MediaType
from uniconvert.models import ConversionJob, JobStatus, utcnow

logger = logging.getLogger(__name__)


class JobTracker:
    """
    authoritative record of every conversion job

    state changes are single conditional UPDATE statements so that concurrent
    writers (workers, the cancel endpoint) are serialised by the database:
    progress can only grow while a job is active, and exactly one terminal
    write succeeds per job.
    """

    def __init__(self, engine):
        self.engine = engine

    def create(self, job: ConversionJob) -> ConversionJob:
        """create a job record when a job is queued"""
        return self.upsert(job)

    def upsert(self, job: ConversionJob) -> ConversionJob:
        with Session(self.engine) as session:
            job.updated_at = utcnow()
            job = session.merge(job)
            session.commit()
            session.refresh(job)
            return job

    def get(self, job_id: str) -> Optional[ConversionJob]:
        with Session(self.engine) as session:
            return session.get(ConversionJob, job_id)

    def delete(self, job_id: str) -> bool:
        with Session(self.engine) as session:
            job = session.get(ConversionJob, job_id)
            if not job:
                return False
            session.delete(job)
            session.commit()
            return True

    def list_page(
        self,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        media_type: Optional[str] = None,
    ) -> tuple[list[ConversionJob], int]:
        """newest-first page over jobs of every media type, plus the total match count"""
        query = select(ConversionJob)
        count_query = select(func.count()).select_from(ConversionJob)
        if status:
            query = query.where(ConversionJob.status == status)
            count_query = count_query.where(ConversionJob.status == status)
        if media_type:
            query = query.where(ConversionJob.media_type == media_type)
            count_query = count_query.where(ConversionJob.media_type == media_type)

        query = (
            query.order_by(ConversionJob.created_at.desc(), ConversionJob.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        with Session(self.engine) as session:
            jobs = session.exec(query).all()
            total = session.exec(count_query).one()
            return list(jobs), total

    def count_by_status(self) -> dict:
        with Session(self.engine) as session:
            rows = session.exec(
                select(ConversionJob.status, func.count()).group_by(ConversionJob.status)
            ).all()
        counts = {status: 0 for status in JobStatus.ALL}
        counts.update({status: total for status, total in rows})
        return counts

    def _update_active(self, job_id: str, *conditions, **values) -> bool:
        values["updated_at"] = utcnow()
        statement = (
            update(ConversionJob)
            .where(ConversionJob.id == job_id)
            .where(ConversionJob.status.in_(JobStatus.ACTIVE))
            .values(**values)
        )
        for condition in conditions:
            statement = statement.where(condition)
        with Session(self.engine) as session:
            result = session.exec(statement)
            session.commit()
            return result.rowcount == 1

    def start(self, job_id: str) -> bool:
        """mark a job as picked up by a worker; False if it is no longer active"""
        # started_at keeps the first pickup across retries
        return self._update_active(
            job_id,
            status=JobStatus.PROCESSING,
            started_at=func.coalesce(ConversionJob.started_at, utcnow()),
            attempts=ConversionJob.attempts + 1,
        )

    def update_progress(self, job_id: str, progress_percent: int) -> bool:
        """
        raise the job's progress, never lowering it

        returns whether the job is still active, so the caller can stop
        trusting a conversion whose job was cancelled underneath it
        """
        self._update_active(
            job_id,
            ConversionJob.progress_percent < progress_percent,
            progress_percent=progress_percent,
        )
        job = self.get(job_id)
        return job is not None and job.status in JobStatus.ACTIVE

    def complete(self, job_id: str, output_filename: str, output_path: str) -> bool:
        """mark a job as completed; only the first terminal write wins"""
        now = utcnow()
        won = self._update_active(
            job_id,
            status=JobStatus.COMPLETED,
            progress_percent=100,
            output_filename=output_filename,
            output_path=output_path,
            error_message=None,
            completed_at=now,
        )
        if not won:
            logger.info(f"job {job_id} already finalized, completion discarded")
        return won

    def fail(self, job_id: str, error_message: str) -> bool:
        """mark a job as failed; only the first terminal write wins"""
        won = self._update_active(
            job_id,
            status=JobStatus.FAILED,
            error_message=error_message[:2000],
            output_filename=None,
            output_path=None,
            completed_at=utcnow(),
        )
        if not won:
            logger.info(f"job {job_id} already finalized, failure discarded")
        return won

    def reconcile(self, queues) -> list[str]:
        """
        sync processing jobs with the broker's view

        this catches jobs whose work horse was killed (hard timeout, oom, lost
        worker) without the pipeline getting a chance to record the failure.
        returns the ids that were marked failed.
        """
        with Session(self.engine) as session:
            processing = session.exec(
                select(ConversionJob).where(ConversionJob.status == JobStatus.PROCESSING)
            ).all()

        marked = []
        for job in processing:
            queue = queues.get(MediaType(job.media_type))
            if queue is None:
                continue
            state = queue.state_of(job.id)
            if state == "failed":
                reason = queue.failure_reason(job.id) or "job failed unexpectedly"
            elif state is None:
                reason = "job lost (not found in queue)"
            else:
                continue
            if self.fail(job.id, reason):
                logger.warning(f"reconciled job {job.id} as failed: {reason}")
                marked.append(job.id)
        return marked
