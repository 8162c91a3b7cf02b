from fastapi import Depends
from sqlalchemy.orm import Session

from app.core.db import get_db
from app.repositories.store import SqlStore
from app.services.event_service import EventService
from app.services.experiment_service import ExperimentService
from app.services.flag_service import FlagService


def get_store(db: Session = Depends(get_db)) -> SqlStore:
    return SqlStore(db)


def get_flag_service(store: SqlStore = Depends(get_store)) -> FlagService:
    return FlagService(config=store)


def get_experiment_service(store: SqlStore = Depends(get_store)) -> ExperimentService:
    return ExperimentService(config=store, store=store, writer=store)


def get_event_service(store: SqlStore = Depends(get_store)) -> EventService:
    return EventService(config=store, store=store)
