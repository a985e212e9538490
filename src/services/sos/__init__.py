"""
SOS Escalation Service Module

Provides the SOS emergency alert lifecycle:
- Escalation engine with activation, escalation, expiry and cancel
- Notification fan-out to emergency contacts by call and text
- Alert and notification log persistence
- Contact directory, notification channel and location provider adapters
"""

from .alert_store import AlertStore, SQLiteAlertStore
from .contact_directory import ContactDirectory, InMemoryContactDirectory, SQLiteContactDirectory
from .errors import (
    InvalidTransition, LocationUnavailable, NotificationDispatchFailure,
    PersistenceFailure, SOSError
)
from .escalation_engine import ScheduledTimer, SOSEscalationEngine, TransitionResult
from .fanout import FanOutCoordinator
from .location_provider import LocationProvider, ReverseGeocodingLocationProvider, StaticLocationProvider
from .notification_channel import (
    LoggingNotificationChannel, NotificationChannel, WebhookNotificationChannel
)

__all__ = [
    'AlertStore',
    'SQLiteAlertStore',
    'ContactDirectory',
    'InMemoryContactDirectory',
    'SQLiteContactDirectory',
    'InvalidTransition',
    'LocationUnavailable',
    'NotificationDispatchFailure',
    'PersistenceFailure',
    'SOSError',
    'ScheduledTimer',
    'SOSEscalationEngine',
    'TransitionResult',
    'FanOutCoordinator',
    'LocationProvider',
    'ReverseGeocodingLocationProvider',
    'StaticLocationProvider',
    'LoggingNotificationChannel',
    'NotificationChannel',
    'WebhookNotificationChannel'
]
