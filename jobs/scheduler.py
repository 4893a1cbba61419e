"""Background job scheduler for escrow automation"""

import logging
from typing import Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import Config
from services.auto_release_service import AutoReleaseService
from services.balance_audit_service import BalanceAuditService
from utils.background_task_runner import run_io_task

logger = logging.getLogger(__name__)


class EscrowScheduler:
    """Runs the auto-release sweep and the daily balance reconciliation"""

    def __init__(self, auto_release_service: AutoReleaseService, balance_audit_service: BalanceAuditService):
        self.auto_release_service = auto_release_service
        self.balance_audit_service = balance_audit_service

        jobstores = {"default": MemoryJobStore()}
        executors = {"default": AsyncIOExecutor()}
        job_defaults = {
            "coalesce": True,  # Collapse missed runs into one
            "max_instances": 1,
            "misfire_grace_time": 120,
        }
        self.scheduler = AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone="UTC",
        )

    def setup_jobs(self):
        """Register jobs; re-registration replaces existing ones"""
        if Config.AUTO_RELEASE_ENABLED:
            self.scheduler.add_job(
                self.run_auto_release_sweep,
                trigger=IntervalTrigger(minutes=Config.AUTO_RELEASE_SWEEP_MINUTES),
                id="auto_release_sweep",
                name="Auto-Release Overdue Deliveries",
                replace_existing=True,
            )
        else:
            logger.warning("⚠️ Auto-release sweep DISABLED by configuration")

        self.scheduler.add_job(
            self.run_balance_audit,
            trigger=CronTrigger(hour=Config.BALANCE_AUDIT_HOUR_UTC, minute=0),
            id="balance_audit",
            name="Daily Balance Reconciliation",
            replace_existing=True,
        )
        logger.info(f"📅 Scheduled jobs: {[job.id for job in self.scheduler.get_jobs()]}")

    async def run_auto_release_sweep(self) -> Optional[dict]:
        try:
            return await run_io_task(self.auto_release_service.run_full_check)
        except Exception as e:
            logger.error(f"❌ Auto-release sweep failed: {e}", exc_info=True)
            return None

    async def run_balance_audit(self) -> Optional[dict]:
        try:
            return await run_io_task(self.balance_audit_service.audit_all_wallets)
        except Exception as e:
            logger.error(f"❌ Balance audit failed: {e}", exc_info=True)
            return None

    def start(self):
        self.setup_jobs()
        self.scheduler.start()
        logger.info("✅ Escrow scheduler started")

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("✅ Escrow scheduler stopped")
