"""
Shared FastAPI dependencies.

The tracking channel and the notification dispatcher live for the whole
process and are created in main.create_app(); each request gets its own
LifecycleCoordinator bound to its own database session.
"""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .db import get_db
from .services.coordinator import LifecycleCoordinator


def get_coordinator(request: Request, db: Session = Depends(get_db)) -> LifecycleCoordinator:
    return LifecycleCoordinator(
        db,
        channel=request.app.state.tracking_channel,
        notifier=request.app.state.notifier,
    )
