from fleetconf.models.device import Device, DeviceConfig, SyncStatus  # noqa: F401
from fleetconf.models.drift_report import DriftReport, DriftTrend  # noqa: F401
from fleetconf.models.drift_schedule import (  # noqa: F401
    DriftDetectionRun,
    DriftDetectionSchedule,
    RunStatus,
)
