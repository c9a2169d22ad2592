from contextlib import asynccontextmanager
from time import monotonic

from fastapi import FastAPI, Request
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from starlette.responses import JSONResponse, Response

from fleetconf.api.devices import router as devices_router
from fleetconf.api.drift import router as drift_router
from fleetconf.config import settings
from fleetconf.db import SessionLocal
from fleetconf.errors import register_error_handlers
from fleetconf.logging import configure_logging
from fleetconf.metrics import REQUEST_COUNT, REQUEST_LATENCY
from fleetconf.services.scheduler import DriftScheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = DriftScheduler()
    app.state.scheduler = scheduler
    if settings.scheduler_enabled and not settings.testing:
        scheduler.start()
    try:
        yield
    finally:
        scheduler.stop()


app = FastAPI(title="Fleet Configuration Drift API", lifespan=lifespan)

configure_logging()
register_error_handlers(app)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start = monotonic()
    response = await call_next(request)
    route = request.scope.get("route")
    path = getattr(route, "path", request.url.path)
    labels = {"method": request.method, "path": path, "status": str(response.status_code)}
    REQUEST_COUNT.labels(**labels).inc()
    REQUEST_LATENCY.labels(**labels).observe(monotonic() - start)
    return response


app.include_router(drift_router)
app.include_router(devices_router)


@app.get("/health")
def health_check():
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except Exception:
        return JSONResponse(status_code=503, content={"status": "degraded", "database": "unavailable"})
    scheduler = getattr(app.state, "scheduler", None)
    return {"status": "ok", "scheduler_running": bool(scheduler and scheduler.is_running())}


@app.get("/metrics")
def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
