import os
import re

SIZE_UNITS = {
    "B": 1,
    "KB": 1024,
    "MB": 1024 * 1024,
    "GB": 1024 * 1024 * 1024,
}


def parse_size(size: str, default: int = 500 * 1024 * 1024) -> int:
    """parse a human size like '500MB' into bytes, falling back to the default"""
    match = re.match(r"^(\d+)(B|KB|MB|GB)$", size.strip(), re.IGNORECASE)
    if not match:
        return default
    return int(match.group(1)) * SIZE_UNITS[match.group(2).upper()]


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


class Settings:
    def __init__(self):
        self.PROJECT_NAME: str = "UniConvert"
        self.REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

        # storage paths
        self.DATA_DIR: str = os.getenv("DATA_DIR", "./data")
        self.UPLOADS_DIR: str = os.getenv("UPLOADS_DIR", os.path.join(self.DATA_DIR, "uploads"))
        self.OUTPUTS_DIR: str = os.getenv("OUTPUTS_DIR", os.path.join(self.DATA_DIR, "outputs"))
        self.DATABASE_URL: str = os.getenv(
            "DATABASE_URL", f"sqlite:///{os.path.join(self.DATA_DIR, 'uniconvert.db')}"
        )
        self.MAX_FILE_SIZE: int = parse_size(os.getenv("MAX_FILE_SIZE", "500MB"))
        self.PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "").rstrip("/")

        # cleanup
        self.CLEANUP_INTERVAL_HOURS: float = float(os.getenv("CLEANUP_INTERVAL_HOURS", "24"))
        self.FILE_RETENTION_HOURS: float = float(os.getenv("FILE_RETENTION_HOURS", "168"))  # 7 days
        self.EMBEDDED_SWEEPER: bool = _flag("EMBEDDED_SWEEPER", "true")

        # jobs
        self.JOB_TIMEOUT_SECONDS: int = int(os.getenv("JOB_TIMEOUT_SECONDS", "3600"))
        self.JOB_ATTEMPTS: int = int(os.getenv("JOB_ATTEMPTS", "3"))
        self.RETRY_BACKOFF_SECONDS: int = int(os.getenv("RETRY_BACKOFF_SECONDS", "1"))
        self.QUEUE_RESULT_TTL_SECONDS: int = int(os.getenv("QUEUE_RESULT_TTL_SECONDS", str(7 * 24 * 3600)))
        self.CANCEL_KILLS_PROCESS: bool = _flag("CANCEL_KILLS_PROCESS", "true")
        # fails processing jobs whose work horse died on its last attempt
        self.RECONCILE_INTERVAL_SECONDS: float = float(os.getenv("RECONCILE_INTERVAL_SECONDS", "60"))
        self.EMBEDDED_RECONCILER: bool = _flag("EMBEDDED_RECONCILER", "true")

        # per-queue worker concurrency
        self.VIDEO_CONCURRENCY: int = int(os.getenv("VIDEO_CONCURRENCY", "3"))
        self.AUDIO_CONCURRENCY: int = int(os.getenv("AUDIO_CONCURRENCY", "3"))
        self.IMAGE_CONCURRENCY: int = int(os.getenv("IMAGE_CONCURRENCY", "6"))
        self.DOCUMENT_CONCURRENCY: int = int(os.getenv("DOCUMENT_CONCURRENCY", "2"))

        # webhooks
        self.WEBHOOK_TIMEOUT_SECONDS: float = float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "10"))

        # logging
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
        self.LOG_DIR: str = os.getenv("LOG_DIR", "")

    def concurrency_for(self, media_type) -> int:
        """worker count for the pool serving the given media type"""
        return getattr(self, f"{media_type.value.upper()}_CONCURRENCY")

    def retry_intervals(self) -> list[int]:
        """exponential delays between attempts, e.g. [1, 2] for 3 attempts"""
        return [self.RETRY_BACKOFF_SECONDS * (2 ** i) for i in range(max(self.JOB_ATTEMPTS - 1, 0))]


settings = Settings()
