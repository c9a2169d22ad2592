import logging

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class FleetConfError(Exception):
    """Base class for fleetconf errors."""


class CronValidationError(FleetConfError, ValueError):
    """A cron expression could not be parsed."""


class ScheduleNotFoundError(FleetConfError, LookupError):
    def __init__(self, schedule_id: int):
        super().__init__(f"Drift detection schedule {schedule_id} not found")
        self.schedule_id = schedule_id


class SchedulerError(FleetConfError, RuntimeError):
    """Invalid scheduler lifecycle transition or schedule load failure."""


class DeviceError(FleetConfError):
    """A call to a device failed."""


class ConfigConversionError(FleetConfError):
    """A configuration document could not be converted to or from the wire format."""


class RebootTimeoutError(FleetConfError, TimeoutError):
    pass


class RebootCancelledError(FleetConfError):
    pass


def _error_payload(code: str, message: str, details):
    return {"code": code, "message": message, "details": details}


def register_error_handlers(app) -> None:
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        detail = exc.detail
        code = f"http_{exc.status_code}"
        message = "Request failed"
        details = None
        if isinstance(detail, dict):
            code = detail.get("code", code)
            message = detail.get("message", message)
            details = detail.get("details")
        elif isinstance(detail, str):
            message = detail
        else:
            details = detail
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(code, message, details),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content=_error_payload("validation_error", "Validation error", jsonable_encoder(exc.errors())),
        )

    @app.exception_handler(ScheduleNotFoundError)
    async def schedule_not_found_handler(request: Request, exc: ScheduleNotFoundError):
        return JSONResponse(
            status_code=404,
            content=_error_payload("schedule_not_found", str(exc), {"schedule_id": exc.schedule_id}),
        )

    @app.exception_handler(CronValidationError)
    async def cron_validation_handler(request: Request, exc: CronValidationError):
        return JSONResponse(
            status_code=400,
            content=_error_payload("invalid_cron", str(exc), None),
        )

    @app.exception_handler(DeviceError)
    async def device_error_handler(request: Request, exc: DeviceError):
        return JSONResponse(
            status_code=502,
            content=_error_payload("device_error", str(exc), None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content=_error_payload("internal_error", "Internal server error", None),
        )
