"""Tests for the model health monitor."""
from conftest import run
from src.models.errors import Unavailable
from src.models.prediction import ModelHealth, ModelsHealthReport
from src.services.scheduler_service import SchedulerService


class StubPredictionService:
    def __init__(self, report=None, error=None):
        self.report = report
        self.error = error
        self.calls = 0

    async def get_models_health(self):
        self.calls += 1
        if self.error:
            raise self.error
        return self.report


def report(status="healthy"):
    models = [ModelHealth(key="eta", name="ETA Model", loaded=status == "healthy")]
    return ModelsHealthReport(models=models, status=status)


def test_status_before_any_check():
    scheduler = SchedulerService(StubPredictionService(report()), interval_minutes=2)
    status = scheduler.get_scheduler_status()
    assert status["status"] == "stopped"
    assert status["interval_minutes"] == 2
    assert status["last_report"] is None


def test_manual_check_stores_report():
    service = StubPredictionService(report("degraded"))
    scheduler = SchedulerService(service)
    status = run(scheduler.trigger_manual_check())
    assert service.calls == 1
    assert status["last_report"]["status"] == "degraded"
    assert status["last_error"] is None
    assert status["last_checked_at"] is not None


def test_unreachable_prediction_service_is_recorded_not_raised():
    scheduler = SchedulerService(StubPredictionService(error=Unavailable("connection refused")))
    run(scheduler.check_models_health_job())
    assert "connection refused" in scheduler.last_error
    assert scheduler.last_report is None


def test_recovery_clears_last_error():
    service = StubPredictionService(error=Unavailable("down"))
    scheduler = SchedulerService(service)
    run(scheduler.check_models_health_job())
    service.error = None
    service.report = report()
    run(scheduler.check_models_health_job())
    assert scheduler.last_error is None
    assert scheduler.last_report.all_healthy


def test_start_and_stop():
    async def lifecycle():
        scheduler = SchedulerService(StubPredictionService(report()), interval_minutes=5)
        scheduler.start_scheduler()
        running = scheduler.get_scheduler_status()
        scheduler.start_scheduler()
        scheduler.stop_scheduler()
        return running, scheduler.get_scheduler_status()

    running, stopped = run(lifecycle())
    assert running["status"] == "running"
    assert running["next_run_time"] is not None
    assert stopped["status"] == "stopped"
