import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, model_validator

load_dotenv()


_TRUTHY_VALUES = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: str = "") -> bool:
    return os.getenv(name, default).lower() in _TRUTHY_VALUES


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    database_url: str | None = os.getenv("DATABASE_URL")
    db_pool_size: int = int(os.getenv("DB_POOL_SIZE", "5"))
    db_max_overflow: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    db_pool_timeout: int = int(os.getenv("DB_POOL_TIMEOUT", "30"))
    db_pool_recycle: int = int(os.getenv("DB_POOL_RECYCLE", "1800"))

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_json: bool = _env_bool("LOG_JSON")

    # Runtime flags
    testing: bool = _env_bool("TESTING")

    # Drift detection scheduler
    scheduler_enabled: bool = _env_bool("SCHEDULER_ENABLED", "true")
    scheduler_stop_timeout_seconds: float = float(os.getenv("SCHEDULER_STOP_TIMEOUT", "30"))
    scheduler_workers: int = int(os.getenv("SCHEDULER_WORKERS", "4"))
    scheduler_generate_reports: bool = _env_bool("SCHEDULER_GENERATE_REPORTS", "true")

    # Device access
    device_http_timeout_seconds: float = float(os.getenv("DEVICE_HTTP_TIMEOUT", "10"))
    device_username: str | None = os.getenv("DEVICE_USERNAME") or None
    device_password: str | None = os.getenv("DEVICE_PASSWORD") or None
    reboot_grace_seconds: float = float(os.getenv("REBOOT_GRACE_SECONDS", "2"))
    reboot_poll_interval_seconds: float = float(os.getenv("REBOOT_POLL_INTERVAL", "3"))
    reboot_timeout_seconds: float = float(os.getenv("REBOOT_TIMEOUT", "60"))

    # Reporting
    report_top_drifts: int = int(os.getenv("REPORT_TOP_DRIFTS", "10"))

    # Celery
    celery_broker_url: str = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
    celery_result_backend: str = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")
    fleet_report_cron: str = os.getenv("FLEET_REPORT_CRON", "0 3 * * *")

    @model_validator(mode="after")
    def require_database_url_when_not_testing(self) -> "Settings":
        if not self.testing and not (self.database_url and self.database_url.strip()):
            raise ValueError("DATABASE_URL must be set when TESTING is false")
        return self


settings = Settings()
