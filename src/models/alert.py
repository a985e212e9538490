"""
SOS alert data models for SecureNow

Defines alerts, emergency contacts, location snapshots and the
notification audit log used by the escalation engine.
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


class AlertStatus(Enum):
    """Persisted alert status"""
    ACTIVE = "active"
    ESCALATED = "escalated"
    EXPIRED = "expired"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def can_transition_to(self, target: 'AlertStatus') -> bool:
        """Check if moving from this status to target is allowed"""
        return target in ALLOWED_TRANSITIONS.get(self, ())


TERMINAL_STATUSES = (AlertStatus.EXPIRED, AlertStatus.RESOLVED, AlertStatus.CANCELLED)

ALLOWED_TRANSITIONS = {
    AlertStatus.ACTIVE: (
        AlertStatus.ESCALATED, AlertStatus.EXPIRED,
        AlertStatus.RESOLVED, AlertStatus.CANCELLED
    ),
    AlertStatus.ESCALATED: (
        AlertStatus.EXPIRED, AlertStatus.RESOLVED, AlertStatus.CANCELLED
    ),
}


class EngineState(Enum):
    """Escalation engine state for one user session"""
    IDLE = "idle"
    ACTIVE = "active"
    ESCALATED = "escalated"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class NotificationChannelType(Enum):
    """Ways a contact can be reached"""
    CALL = "call"
    SMS = "sms"


class NotificationOutcome(Enum):
    """Result of handing a notification to the channel.

    Delivery is never confirmed, so a successful hand-off is only ever
    recorded as attempted.
    """
    ATTEMPTED = "attempted"
    FAILED = "failed"


class FanOutKind(Enum):
    """Which notification wave a fan-out pass belongs to"""
    ACTIVATION = "activation"
    ESCALATION = "escalation"
    EXPIRY = "expiry"


@dataclass(frozen=True)
class LocationSnapshot:
    """Point-in-time position of the user"""
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    address: Optional[str] = None
    captured_at: datetime = field(default_factory=utcnow)

    def coordinates_string(self) -> str:
        return f"{self.latitude}, {self.longitude}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'latitude': self.latitude,
            'longitude': self.longitude,
            'accuracy': self.accuracy,
            'address': self.address,
            'captured_at': self.captured_at.isoformat()
        }


_PHONE_STRIP = re.compile(r"[\s\-()]")


@dataclass
class EmergencyContact:
    """A person to notify when the user raises an SOS"""
    name: str
    phone: str
    relationship: str = "Contact"
    is_primary: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def dialable_phone(self) -> str:
        """Phone number with spaces, dashes and parentheses removed"""
        return _PHONE_STRIP.sub("", self.phone or "")

    def is_dialable(self) -> bool:
        return bool(self.dialable_phone())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'phone': self.phone,
            'relationship': self.relationship,
            'is_primary': self.is_primary
        }


@dataclass(frozen=True)
class NotificationLogEntry:
    """Audit record of one notification attempt to one contact"""
    alert_id: str
    contact_id: str
    channel: NotificationChannelType
    outcome: NotificationOutcome
    pass_kind: FanOutKind
    message: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'alert_id': self.alert_id,
            'contact_id': self.contact_id,
            'channel': self.channel.value,
            'outcome': self.outcome.value,
            'pass_kind': self.pass_kind.value,
            'message': self.message,
            'error': self.error,
            'timestamp': self.timestamp.isoformat()
        }


@dataclass
class Alert:
    """One SOS emergency episode"""
    user_id: str
    status: AlertStatus = AlertStatus.ACTIVE
    location: Optional[LocationSnapshot] = None
    description: str = "SOS Emergency Activated"
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None
    is_escalated: bool = False
    sequence: int = 0

    def is_open(self) -> bool:
        """Check if the alert still accepts transitions"""
        return not self.status.is_terminal

    def apply_status(self, status: AlertStatus, timestamp: Optional[datetime] = None) -> None:
        """
        Move the alert to a new status

        Args:
            status: Target status
            timestamp: Time of the transition, defaults to now

        Raises:
            ValueError: If the transition is not allowed from the current status
        """
        if not self.status.can_transition_to(status):
            raise ValueError(
                f"Alert {self.id} cannot move from {self.status.value} to {status.value}"
            )

        timestamp = timestamp or utcnow()
        self.status = status
        self.updated_at = timestamp
        if status == AlertStatus.ESCALATED:
            self.is_escalated = True
        if status.is_terminal:
            self.resolved_at = timestamp

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'status': self.status.value,
            'location': self.location.to_dict() if self.location else None,
            'description': self.description,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'resolved_at': self.resolved_at.isoformat() if self.resolved_at else None,
            'is_escalated': self.is_escalated,
            'sequence': self.sequence
        }


@dataclass
class FanOutReport:
    """Summary of one fan-out pass"""
    alert_id: str
    pass_kind: FanOutKind
    message: str
    entries: List[NotificationLogEntry] = field(default_factory=list)
    recipients: List[EmergencyContact] = field(default_factory=list)
    contacts_notified: int = 0
    skipped_duplicates: int = 0

    def count(self, channel: NotificationChannelType,
              outcome: Optional[NotificationOutcome] = None) -> int:
        return sum(
            1 for entry in self.entries
            if entry.channel == channel and (outcome is None or entry.outcome == outcome)
        )

    @property
    def failures(self) -> List[NotificationLogEntry]:
        return [e for e in self.entries if e.outcome == NotificationOutcome.FAILED]
