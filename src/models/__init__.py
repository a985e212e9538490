"""
Data models for SecureNow SOS

Contains the alert, contact, location and notification log data classes.
"""

from .alert import (
    Alert, AlertStatus, EngineState, EmergencyContact, FanOutKind,
    FanOutReport, LocationSnapshot, NotificationChannelType,
    NotificationLogEntry, NotificationOutcome, utcnow
)

__all__ = [
    'Alert', 'AlertStatus', 'EngineState', 'EmergencyContact', 'FanOutKind',
    'FanOutReport', 'LocationSnapshot', 'NotificationChannelType',
    'NotificationLogEntry', 'NotificationOutcome', 'utcnow'
]
