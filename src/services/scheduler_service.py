"""Scheduler service that keeps an eye on the prediction models."""
from datetime import datetime
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger
from ..configurations.config import Config
from ..models.errors import Unavailable
from ..models.prediction import ModelsHealthReport
from .prediction_service import PredictionService


class SchedulerService:
    JOB_ID = 'model_health_check'

    def __init__(self, prediction_service: PredictionService, interval_minutes: int = None):
        self.scheduler = AsyncIOScheduler()
        self.prediction_service = prediction_service
        self.interval_minutes = interval_minutes or Config.HEALTH_POLL_MINUTES
        self.is_running = False
        self.last_report: Optional[ModelsHealthReport] = None
        self.last_checked_at: Optional[datetime] = None
        self.last_error: Optional[str] = None

    async def check_models_health_job(self):
        """Scheduled job polling the prediction service for model health."""
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        try:
            report = await self.prediction_service.get_models_health()
        except Unavailable as e:
            self.last_error = str(e)
            self.last_checked_at = datetime.now()
            logger.error(f"[SCHEDULED] Prediction service unreachable at {timestamp}: {e}")
            return

        self.last_report = report
        self.last_error = None
        self.last_checked_at = datetime.now()
        if report.all_healthy:
            logger.info(f"[SCHEDULED] All prediction models healthy at {timestamp}")
        else:
            logger.warning(f"[SCHEDULED] Prediction models degraded at {timestamp}")

    def start_scheduler(self):
        """Start the scheduler with the periodic health job."""
        if self.is_running:
            logger.warning("Scheduler is already running")
            return

        self.scheduler.add_job(
            self.check_models_health_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=self.JOB_ID,
            name='Prediction Model Health Check',
            replace_existing=True
        )
        self.scheduler.start()
        self.is_running = True

        logger.success(f"Scheduler started - model health checked every {self.interval_minutes} minutes")

    def stop_scheduler(self):
        """Stop the scheduler."""
        if not self.is_running:
            logger.warning("Scheduler is not running")
            return

        self.scheduler.shutdown()
        self.is_running = False
        logger.info("Scheduler stopped")

    def get_scheduler_status(self):
        """Get current scheduler status and the latest health report."""
        status = {
            "status": "running" if self.is_running else "stopped",
            "interval_minutes": self.interval_minutes,
            "last_checked_at": self.last_checked_at.isoformat() if self.last_checked_at else None,
            "last_error": self.last_error,
            "last_report": self.last_report.to_dict() if self.last_report else None,
        }
        if self.is_running:
            job = self.scheduler.get_job(self.JOB_ID)
            status["next_run_time"] = str(job.next_run_time) if job else None
        return status

    async def trigger_manual_check(self):
        """Manually run the model health check."""
        logger.info("Manual model health check triggered")
        await self.check_models_health_job()
        return self.get_scheduler_status()
