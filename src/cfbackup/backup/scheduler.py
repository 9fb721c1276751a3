"""Scheduled backups

Registers one cron job per configured service schedule on an
``AsyncIOScheduler``. Each firing goes through the orchestrator like any
API request, so a scheduled run that finds the service busy is skipped.
"""

from typing import Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from cfbackup.backup.service import BackupOrchestrator
from cfbackup.exceptions import BackupError, BusyError, ConfigurationError
from cfbackup.logger import Logger, get_logger
from cfbackup.models import ServiceInstance

_CRON_FIELDS = ("minute", "hour", "day", "month", "day_of_week")


def parse_schedule(schedule: str) -> CronTrigger:
    """
    Build a trigger from a 5-field cron expression, or a 6-field one with
    a leading seconds field.

    Raises:
        ConfigurationError: If the expression is malformed
    """
    parts = schedule.split()
    if len(parts) == 5:
        fields = dict(zip(_CRON_FIELDS, parts))
    elif len(parts) == 6:
        fields = dict(zip(("second",) + _CRON_FIELDS, parts))
    else:
        raise ConfigurationError(
            f"schedule must have 5 or 6 fields: {schedule!r}",
            details={"schedule": schedule},
        )

    try:
        return CronTrigger(timezone="UTC", **fields)
    except ValueError as e:
        raise ConfigurationError(f"invalid schedule {schedule!r}: {e}", details={"schedule": schedule}) from e


class BackupScheduler:
    """Fires scheduled backups for every service with a schedule."""

    def __init__(
        self,
        orchestrator: BackupOrchestrator,
        logger: Optional[Logger] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.orchestrator = orchestrator
        self.logger = logger or get_logger("cfbackup")
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")

    def setup(self) -> List[str]:
        """Register jobs for all scheduled services and return their job ids."""
        job_ids = []
        for service in self.orchestrator.services():
            schedule = self.orchestrator.options(service).schedule
            if not schedule:
                continue

            job_id = f"backup:{service.key}"
            self.scheduler.add_job(
                self.run_backup_job,
                trigger=parse_schedule(schedule),
                args=[service],
                id=job_id,
                name=f"Scheduled backup of {service.key}",
                replace_existing=True,
                coalesce=True,
                max_instances=1,
                misfire_grace_time=3600,
            )
            job_ids.append(job_id)
            self.logger.info(
                "Backup scheduled",
                service_type=service.type,
                service_name=service.name,
                schedule=schedule,
            )

        if not job_ids:
            self.logger.warning("No service has a backup schedule")
        return job_ids

    async def run_backup_job(self, service: ServiceInstance) -> None:
        """Scheduled entry point; never raises into the scheduler."""
        try:
            await self.orchestrator.create_backup(service)
        except BusyError as e:
            self.logger.warning(
                "Skipping scheduled backup, service is busy",
                service_type=service.type,
                service_name=service.name,
                error=str(e),
            )
        except BackupError as e:
            self.logger.error(
                "Could not start scheduled backup",
                service_type=service.type,
                service_name=service.name,
                error=str(e),
                error_code=e.code,
            )

    def next_runs(self) -> Dict[str, Optional[str]]:
        return {
            job.id: job.next_run_time.isoformat() if getattr(job, "next_run_time", None) else None
            for job in self.scheduler.get_jobs()
        }

    def start(self) -> None:
        self.setup()
        self.scheduler.start()
        self.logger.info("Scheduler started", jobs=len(self.scheduler.get_jobs()))

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.logger.info("Scheduler stopped")
