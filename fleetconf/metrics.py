from prometheus_client import Counter, Gauge, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path", "status"],
)

JOB_DURATION = Histogram(
    "job_duration_seconds",
    "Background job duration",
    ["task", "status"],
)

DRIFT_CHECKS_TOTAL = Counter(
    "fleetconf_drift_checks_total",
    "Device drift checks by outcome",
    ["status"],
)
DRIFT_DIFFERENCES_TOTAL = Counter(
    "fleetconf_drift_differences_total",
    "Configuration differences found in generated reports",
    ["severity"],
)
CONFIG_APPLY_TOTAL = Counter(
    "fleetconf_config_apply_total",
    "Configuration apply calls by outcome",
    ["result"],
)
FLEET_HEALTH_SCORE = Gauge(
    "fleetconf_fleet_health_score",
    "Average device health score of the latest drift report",
)
SCHEDULER_RUNNING = Gauge(
    "fleetconf_scheduler_running",
    "1 when the drift detection scheduler is running",
)
