from uniconvert.models.jobs import ConversionJob, JobStatus, utcnow

__all__ = ["ConversionJob", "JobStatus", "utcnow"]
