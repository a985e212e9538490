"""
SOS error taxonomy

Errors raised at the boundaries of the escalation engine and its
collaborators.
"""

from typing import Optional


class SOSError(Exception):
    """Base class for SOS errors"""
    pass


class LocationUnavailable(SOSError):
    """No current location could be obtained; activation is refused"""

    def __init__(self, message: str = "Location services are required to send an SOS alert"):
        super().__init__(message)


class PersistenceFailure(SOSError):
    """The alert store could not record a write"""

    def __init__(self, message: str, alert_id: Optional[str] = None):
        super().__init__(message)
        self.alert_id = alert_id


class NotificationDispatchFailure(SOSError):
    """A call or text could not be handed to the notification channel"""

    def __init__(self, message: str, contact_id: Optional[str] = None, channel: Optional[str] = None):
        super().__init__(message)
        self.contact_id = contact_id
        self.channel = channel


class InvalidTransition(SOSError):
    """The requested transition is not allowed from the engine's current state"""
    pass
