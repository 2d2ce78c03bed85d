import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from mediadl.core.entities import RetentionPolicy
from mediadl.core.repositories import ArtifactRepository
from mediadl.core.workspace import TempArea

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "retention_sweep"


@dataclass
class SweepReport:
    deleted_count: int = 0
    freed_bytes: int = 0

    def to_dict(self) -> dict:
        return {"deletedCount": self.deleted_count, "freedBytes": self.freed_bytes}


class RetentionSweeper:
    """
    Age-based eviction of files in the temp area.

    Runs on a background interval and on demand. Independent of the
    per-identity history cap.
    """

    def __init__(self, temp_area: TempArea, repository: ArtifactRepository,
                 policy: Optional[RetentionPolicy] = None):
        self.temp_area = temp_area
        self.repository = repository
        self.policy = policy or RetentionPolicy()
        self.scheduler: Optional[BackgroundScheduler] = None
        self._sweep_lock = threading.Lock()

    def sweep(self, now: Optional[float] = None) -> SweepReport:
        now = time.time() if now is None else now
        cutoff = now - self.policy.max_artifact_age.total_seconds()
        report = SweepReport()

        with self._sweep_lock:
            for path in list(self.temp_area.files()):
                try:
                    mtime = path.stat().st_mtime
                except FileNotFoundError:
                    continue
                if mtime >= cutoff:
                    continue

                freed = self.temp_area.remove(path)
                demoted = self.repository.mark_deleted_by_filename(path.name)
                report.deleted_count += 1
                report.freed_bytes += freed
                logger.info("swept file=%s age=%.1fh bytes=%d records=%d",
                            path.name, (now - mtime) / 3600, freed, demoted)

        if report.deleted_count:
            logger.info("sweep done deleted=%d freed=%.1fMB",
                        report.deleted_count, report.freed_bytes / 1024 ** 2)
        return report

    def _scheduled_sweep(self):
        try:
            self.sweep()
        except OSError:
            logger.exception("scheduled sweep failed")

    def start(self):
        if self.scheduler is not None:
            return
        self.scheduler = BackgroundScheduler(timezone="UTC")
        self.scheduler.add_job(
            self._scheduled_sweep,
            trigger=IntervalTrigger(seconds=self.policy.sweep_interval.total_seconds()),
            id=SWEEP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info("retention sweeper started interval=%s max_age=%s",
                    self.policy.sweep_interval, self.policy.max_artifact_age)

    def shutdown(self):
        if self.scheduler is None:
            return
        self.scheduler.shutdown(wait=False)
        self.scheduler = None
        logger.info("retention sweeper stopped")
