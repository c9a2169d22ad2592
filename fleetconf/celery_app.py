from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging

from fleetconf.config import settings
from fleetconf.logging import configure_logging


def build_beat_schedule() -> dict:
    minute, hour, day_of_month, month_of_year, day_of_week = settings.fleet_report_cron.split()
    return {
        "detect-fleet-drift": {
            "task": "fleetconf.tasks.drift.detect_fleet_drift",
            "schedule": crontab(
                minute=minute,
                hour=hour,
                day_of_month=day_of_month,
                month_of_year=month_of_year,
                day_of_week=day_of_week,
            ),
        }
    }


def get_celery_config() -> dict:
    return {
        "broker_url": settings.celery_broker_url,
        "result_backend": settings.celery_result_backend,
        "task_serializer": "json",
        "result_serializer": "json",
        "accept_content": ["json"],
        "timezone": "UTC",
        "enable_utc": True,
        "task_always_eager": settings.testing,
    }


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    configure_logging()


celery_app = Celery("fleetconf")
celery_app.conf.update(get_celery_config())
celery_app.conf.beat_schedule = build_beat_schedule()
celery_app.autodiscover_tasks(["fleetconf.tasks"], related_name="drift")
