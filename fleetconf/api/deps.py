from fastapi import Depends, Request
from sqlalchemy.orm import Session

from fleetconf.db import SessionLocal
from fleetconf.services.drift_service import ClientFactory, default_client_factory
from fleetconf.services.scheduler import DriftScheduler


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_scheduler(request: Request) -> DriftScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        # lifespan did not run (e.g. under test clients); keep one idle instance
        scheduler = DriftScheduler()
        request.app.state.scheduler = scheduler
    return scheduler


def get_client_factory(db: Session = Depends(get_db)) -> ClientFactory:
    return default_client_factory(db)


__all__ = ["get_db", "get_scheduler", "get_client_factory"]
