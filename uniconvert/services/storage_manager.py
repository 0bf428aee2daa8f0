import logging
import os
import threading
import time
from typing import Optional

logger = logging.getLogger(__name__)


def remove_file(path: Optional[str]) -> bool:
    """delete a file if it exists; a missing file is not an error"""
    if not path:
        return False
    try:
        os.remove(path)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"could not delete {path}: {e}")
        return False


class CleanupSweeper:
    """
    deletes uploads and outputs older than the retention horizon

    retention is purely time based: the sweeper looks at file modification
    times only and knows nothing about job records, so it may remove files of
    jobs that are still listed.
    """

    def __init__(self, directories: list[str], retention_hours: float = 168):
        self.directories = list(directories)
        self.retention_seconds = retention_hours * 3600

    def get_disk_usage(self) -> dict:
        """get current disk usage statistics"""
        usage = {}
        total = 0
        for directory in self.directories:
            size = self._get_directory_size(directory)
            usage[os.path.basename(os.path.normpath(directory)) + "_mb"] = size / (1024**2)
            total += size
        usage["total_mb"] = total / (1024**2)
        return usage

    def _get_directory_size(self, path: str) -> int:
        """bytes used by every file below path"""
        size = 0
        for root, _dirs, files in os.walk(path, onerror=lambda e: logger.warning(f"cannot scan {e.filename}: {e}")):
            for name in files:
                try:
                    size += os.lstat(os.path.join(root, name)).st_size
                except OSError:
                    # vanished between listing and stat
                    continue
        return size

    def _clean_directory(self, directory: str, cutoff: float) -> tuple[int, int]:
        """
        delete regular files modified before the cutoff
        returns: (files_deleted, bytes_freed)
        """
        try:
            entries = list(os.scandir(directory))
        except FileNotFoundError:
            os.makedirs(directory, exist_ok=True)
            logger.info(f"recreated missing directory {directory}")
            return 0, 0

        files_deleted = 0
        bytes_freed = 0
        for entry in entries:
            try:
                if not entry.is_file(follow_symlinks=False):
                    continue
                stat = entry.stat(follow_symlinks=False)
                if stat.st_mtime >= cutoff:
                    continue
                os.remove(entry.path)
                files_deleted += 1
                bytes_freed += stat.st_size
                logger.info(f"deleted old file: {entry.path}")
            except FileNotFoundError:
                # removed by someone else in the meantime
                continue
            except OSError as e:
                logger.warning(f"error deleting {entry.path}: {e}")
        return files_deleted, bytes_freed

    def sweep(self, now: Optional[float] = None) -> dict:
        """
        run one cleanup pass over every directory
        returns: summary of actions taken
        """
        cutoff = (now if now is not None else time.time()) - self.retention_seconds
        files_deleted = 0
        bytes_freed = 0
        for directory in self.directories:
            deleted, freed = self._clean_directory(directory, cutoff)
            files_deleted += deleted
            bytes_freed += freed

        summary = {
            "files_deleted": files_deleted,
            "bytes_freed": bytes_freed,
            "directories": self.directories,
        }
        logger.info(f"cleanup complete: deleted {files_deleted} files, freed {bytes_freed / (1024**2):.2f} MB")
        return summary

    def run_forever(self, interval_hours: float, stop_event: Optional[threading.Event] = None):
        """sweep now, then once per interval until the stop event is set"""
        stop_event = stop_event or threading.Event()
        interval = interval_hours * 3600
        while not stop_event.is_set():
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"cleanup error: {e}", exc_info=True)
            stop_event.wait(interval)

    def start_background(self, interval_hours: float) -> threading.Event:
        """run the sweeper on a daemon thread; set the returned event to stop it"""
        stop_event = threading.Event()
        thread = threading.Thread(
            target=self.run_forever,
            args=(interval_hours, stop_event),
            name="cleanup-sweeper",
            daemon=True,
        )
        thread.start()
        return stop_event
