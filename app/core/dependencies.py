"""FastAPI dependencies."""
from fastapi import Depends
from starlette.requests import HTTPConnection

from app.services.call_session.console import CallConsole
from app.services.inbound.router import InboundCallRouter
from app.services.notifications import NotificationHub
from app.services.persistence.store import CallStore


def get_store(connection: HTTPConnection) -> CallStore:
    """Get the shared call store."""
    return connection.app.state.store


def get_notification_hub(connection: HTTPConnection) -> NotificationHub:
    """Get the notification hub."""
    return connection.app.state.notifications


def get_console(connection: HTTPConnection) -> CallConsole:
    """Get the operator console."""
    return connection.app.state.console


def get_inbound_router(
    store: CallStore = Depends(get_store),
    notifications: NotificationHub = Depends(get_notification_hub),
) -> InboundCallRouter:
    """Get an inbound call router."""
    return InboundCallRouter(store, notifications)
