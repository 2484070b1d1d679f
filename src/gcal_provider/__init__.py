"""Two-way synchronization between a host calendar store and Google Calendar/Tasks."""

from gcal_provider.calendar import GoogleCalendar
from gcal_provider.config import ProviderConfig, load_config
from gcal_provider.registry import CalendarRegistry
from gcal_provider.sync import SyncOrchestrator, SyncReport
from gcal_provider.transport import GoogleSession, RefreshTokenProvider

__version__ = "0.1.0"

__all__ = [
    "CalendarRegistry",
    "GoogleCalendar",
    "GoogleSession",
    "ProviderConfig",
    "RefreshTokenProvider",
    "SyncOrchestrator",
    "SyncReport",
    "load_config",
]
