from datetime import datetime, timezone
from uuid import uuid4
from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field
from typing import Optional


class JobStatus:
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    ACTIVE = (QUEUED, PROCESSING)
    TERMINAL = (COMPLETED, FAILED)
    ALL = (QUEUED, PROCESSING, COMPLETED, FAILED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    return str(uuid4())


class ConversionJob(SQLModel, table=True):
    __tablename__ = "conversion_jobs"
    id: str = Field(default_factory=new_job_id, primary_key=True)  # also the rq job id
    media_type: str = Field(index=True)  # "video", "audio", "image", "document"
    input_path: str
    original_filename: str
    target_format: str
    options: dict = Field(default_factory=dict, sa_column=Column(JSON))
    status: str = Field(default=JobStatus.QUEUED, index=True)  # "queued", "processing", "completed", "failed"
    progress_percent: int = Field(default=0)
    output_filename: Optional[str] = Field(default=None, nullable=True)
    output_path: Optional[str] = Field(default=None, nullable=True)
    error_message: Optional[str] = Field(default=None, nullable=True)
    webhook_url: Optional[str] = Field(default=None, nullable=True)
    attempts: int = Field(default=0)
    started_at: Optional[datetime] = Field(default=None, nullable=True)
    completed_at: Optional[datetime] = Field(default=None, nullable=True)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in JobStatus.TERMINAL

    def result(self, base_url: str = "") -> Optional[dict]:
        """download descriptor, only present once the job completed"""
        if self.status != JobStatus.COMPLETED or not self.output_filename:
            return None
        return {
            "download_url": f"{base_url}/downloads/{self.output_filename}",
            "filename": self.output_filename,
            "original_filename": self.original_filename,
        }

    def to_status_dict(self) -> dict:
        data = {
            "id": self.id,
            "type": self.media_type,
            "status": self.status,
            "progress": self.progress_percent,
            "original_filename": self.original_filename,
            "target_format": self.target_format,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if self.completed_at:
            data["completed_at"] = self.completed_at.isoformat()
        result = self.result()
        if result:
            data["result"] = result
        if self.status == JobStatus.FAILED and self.error_message:
            data["error"] = self.error_message
        return data
