"""Database snapshots and the periodic maintenance thread.

Nothing in here raises into request handling: a failed backup or sweep is
logged and the next scheduled run carries on as usual.
"""
import logging
import os
import shutil
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from .auth import sweep_expired_tokens

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "backup-"
BACKUP_SUFFIX = ".db"


def snapshot_stamp(moment: Optional[datetime] = None) -> str:
    """ISO timestamp with ':' and '.' replaced, safe for file names and sortable."""
    moment = moment or datetime.now(timezone.utc)
    iso = moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
    return iso.replace(":", "-").replace(".", "-")


class BackupManager:
    IDLE = "idle"
    COPYING = "copying"
    PRUNING = "pruning"

    def __init__(self, db_path: str, backup_dir: str, retention: int = 10):
        self.db_path = db_path
        self.backup_dir = backup_dir
        self.retention = retention
        self.state = self.IDLE
        self._lock = threading.Lock()

    def _snapshots(self) -> List[str]:
        if not os.path.isdir(self.backup_dir):
            return []
        names = [
            f for f in os.listdir(self.backup_dir)
            if f.startswith(BACKUP_PREFIX) and f.endswith(BACKUP_SUFFIX)
        ]
        return sorted(names, reverse=True)

    def create_backup(self) -> Optional[str]:
        with self._lock:
            try:
                self.state = self.COPYING
                os.makedirs(self.backup_dir, exist_ok=True)
                dest = os.path.join(self.backup_dir, f"{BACKUP_PREFIX}{snapshot_stamp()}{BACKUP_SUFFIX}")
                # same-millisecond runs would overwrite each other
                while os.path.exists(dest):
                    time.sleep(0.001)
                    dest = os.path.join(self.backup_dir, f"{BACKUP_PREFIX}{snapshot_stamp()}{BACKUP_SUFFIX}")
                shutil.copy2(self.db_path, dest)
                logger.info("Backup created: %s", dest)

                self.state = self.PRUNING
                self.prune()
                return dest
            except Exception:
                logger.exception("Backup of %s failed", self.db_path)
                return None
            finally:
                self.state = self.IDLE

    def prune(self) -> List[str]:
        removed = []
        for name in self._snapshots()[self.retention:]:
            os.remove(os.path.join(self.backup_dir, name))
            removed.append(name)
        if removed:
            logger.info("Pruned %d old backups", len(removed))
        return removed

    def list_backups(self) -> List[Dict]:
        return [
            {
                "filename": name,
                "date": name[len(BACKUP_PREFIX):-len(BACKUP_SUFFIX)],
                "size": os.path.getsize(os.path.join(self.backup_dir, name)),
            }
            for name in self._snapshots()
        ]


def sweep_tokens_job(session_factory: sessionmaker) -> Callable[[], None]:
    def job():
        db = session_factory()
        try:
            removed = sweep_expired_tokens(db)
            logger.info("Swept %d expired refresh tokens", removed)
        finally:
            db.close()
    return job


class _Job:
    def __init__(self, name: str, interval: float, func: Callable[[], None]):
        self.name = name
        self.interval = interval
        self.func = func
        self.next_run = time.monotonic() + interval


class Scheduler:
    """Runs registered jobs on fixed intervals in a daemon thread."""

    def __init__(self, tick: float = 1.0):
        self.tick = tick
        self._jobs: List[_Job] = []
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def every(self, seconds: float, name: str, func: Callable[[], None]) -> None:
        self._jobs.append(_Job(name, seconds, func))

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        for job in self._jobs:
            job.next_run = time.monotonic() + job.interval
        self._thread = threading.Thread(target=self._run, name="fintrack-maintenance", daemon=True)
        self._thread.start()
        logger.info("Maintenance scheduler started with %d jobs", len(self._jobs))

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Maintenance scheduler stopped")

    def run_pending(self) -> None:
        now = time.monotonic()
        for job in self._jobs:
            if now < job.next_run:
                continue
            job.next_run = now + job.interval
            try:
                job.func()
            except Exception:
                logger.exception("Maintenance job %s failed", job.name)

    def _run(self) -> None:
        while not self._stop.wait(self.tick):
            self.run_pending()
