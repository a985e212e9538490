"""
SOS Alert persistence

The engine talks to an AlertStore; SQLiteAlertStore keeps alerts and the
notification audit trail in the application database.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from src.core.database import DatabaseManager, DatabaseError
from src.models.alert import (
    ALLOWED_TRANSITIONS, Alert, AlertStatus, FanOutKind, LocationSnapshot,
    NotificationChannelType, NotificationLogEntry, NotificationOutcome
)
from .errors import PersistenceFailure


class AlertStore(ABC):
    """Persistence contract required by the escalation engine"""

    @abstractmethod
    def create(self, alert: Alert) -> str:
        """Persist a new alert and return its id"""
        pass

    @abstractmethod
    def update_status(self, alert_id: str, status: AlertStatus, timestamp: datetime) -> None:
        """Record a status transition"""
        pass

    @abstractmethod
    def list(self, user_id: str) -> List[Alert]:
        """Alerts of a user, newest first"""
        pass

    @abstractmethod
    def get(self, alert_id: str) -> Optional[Alert]:
        pass

    @abstractmethod
    def append_notifications(self, entries: List[NotificationLogEntry]) -> None:
        pass

    @abstractmethod
    def get_notifications(self, alert_id: str) -> List[NotificationLogEntry]:
        pass


def allowed_predecessors(status: AlertStatus) -> List[AlertStatus]:
    """Statuses from which a transition to status is allowed"""
    return [source for source, targets in ALLOWED_TRANSITIONS.items() if status in targets]


class SQLiteAlertStore(AlertStore):
    """Alert store backed by the sos_alerts and notification_log tables"""

    def __init__(self, db: DatabaseManager):
        self.logger = logging.getLogger(__name__)
        self.db = db

    def create(self, alert: Alert) -> str:
        """
        Insert a new alert row

        Args:
            alert: Alert to persist

        Returns:
            The alert id

        Raises:
            PersistenceFailure: If the insert fails
        """
        location = alert.location
        try:
            self.db.execute_update(
                """INSERT INTO sos_alerts
                   (id, user_id, status, latitude, longitude, address, location_accuracy,
                    location_captured_at, description, escalated, sequence,
                    created_at, updated_at, resolved_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    alert.id,
                    alert.user_id,
                    alert.status.value,
                    location.latitude if location else None,
                    location.longitude if location else None,
                    location.address if location else None,
                    location.accuracy if location else None,
                    location.captured_at.isoformat() if location else None,
                    alert.description,
                    alert.is_escalated,
                    alert.sequence,
                    alert.created_at.isoformat(),
                    alert.updated_at.isoformat(),
                    alert.resolved_at.isoformat() if alert.resolved_at else None,
                )
            )
        except DatabaseError as e:
            self.logger.error(f"Failed to create alert {alert.id}: {e}")
            raise PersistenceFailure(f"Could not create alert: {e}", alert_id=alert.id) from e

        self.logger.info(f"Stored alert {alert.id} for user {alert.user_id}")
        return alert.id

    def update_status(self, alert_id: str, status: AlertStatus, timestamp: datetime) -> None:
        """
        Move a stored alert to a new status

        The write only applies when the stored status is an allowed
        predecessor, so a stale or out-of-order write never lands.

        Raises:
            PersistenceFailure: If the write fails or is refused
        """
        predecessors = allowed_predecessors(status)
        if not predecessors:
            raise PersistenceFailure(f"No transition leads to {status.value}", alert_id=alert_id)

        placeholders = ", ".join("?" for _ in predecessors)
        resolved_at = timestamp.isoformat() if status.is_terminal else None
        query = f"""UPDATE sos_alerts
                    SET status = ?, updated_at = ?,
                        escalated = CASE WHEN ? THEN 1 ELSE escalated END,
                        resolved_at = COALESCE(?, resolved_at)
                    WHERE id = ? AND status IN ({placeholders})"""
        params = (
            status.value,
            timestamp.isoformat(),
            status == AlertStatus.ESCALATED,
            resolved_at,
            alert_id,
            *[p.value for p in predecessors],
        )

        try:
            rows_affected = self.db.execute_update(query, params)
        except DatabaseError as e:
            self.logger.error(f"Failed to update alert {alert_id} to {status.value}: {e}")
            raise PersistenceFailure(f"Could not update alert status: {e}", alert_id=alert_id) from e

        if rows_affected == 0:
            self.logger.error(f"Refused status write {status.value} for alert {alert_id}")
            raise PersistenceFailure(
                f"Alert {alert_id} is missing or cannot move to {status.value}",
                alert_id=alert_id
            )

        self.logger.debug(f"Alert {alert_id} stored as {status.value}")

    def list(self, user_id: str) -> List[Alert]:
        try:
            rows = self.db.execute_query(
                "SELECT * FROM sos_alerts WHERE user_id = ? ORDER BY created_at DESC, sequence DESC",
                (user_id,)
            )
        except DatabaseError as e:
            self.logger.error(f"Failed to list alerts for {user_id}: {e}")
            raise PersistenceFailure(f"Could not list alerts: {e}") from e

        return [self._row_to_alert(row) for row in rows]

    def get(self, alert_id: str) -> Optional[Alert]:
        try:
            rows = self.db.execute_query("SELECT * FROM sos_alerts WHERE id = ?", (alert_id,))
        except DatabaseError as e:
            raise PersistenceFailure(f"Could not load alert: {e}", alert_id=alert_id) from e

        return self._row_to_alert(rows[0]) if rows else None

    def append_notifications(self, entries: List[NotificationLogEntry]) -> None:
        if not entries:
            return

        params = [
            (
                entry.alert_id,
                entry.contact_id,
                entry.channel.value,
                entry.pass_kind.value,
                entry.message,
                entry.outcome.value,
                entry.error,
                entry.timestamp.isoformat(),
            )
            for entry in entries
        ]
        try:
            self.db.execute_many(
                """INSERT INTO notification_log
                   (alert_id, contact_id, channel, pass_kind, message, outcome, error, timestamp)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                params
            )
        except DatabaseError as e:
            alert_id = entries[0].alert_id
            self.logger.error(f"Failed to store {len(entries)} notification entries for {alert_id}: {e}")
            raise PersistenceFailure(f"Could not store notification log: {e}", alert_id=alert_id) from e

    def get_notifications(self, alert_id: str) -> List[NotificationLogEntry]:
        try:
            rows = self.db.execute_query(
                "SELECT * FROM notification_log WHERE alert_id = ? ORDER BY id ASC",
                (alert_id,)
            )
        except DatabaseError as e:
            raise PersistenceFailure(f"Could not load notification log: {e}", alert_id=alert_id) from e

        return [
            NotificationLogEntry(
                alert_id=row['alert_id'],
                contact_id=row['contact_id'],
                channel=NotificationChannelType(row['channel']),
                outcome=NotificationOutcome(row['outcome']),
                pass_kind=FanOutKind(row['pass_kind']),
                message=row['message'],
                error=row['error'],
                timestamp=datetime.fromisoformat(row['timestamp'])
            )
            for row in rows
        ]

    def _row_to_alert(self, row) -> Alert:
        location = None
        if row['latitude'] is not None and row['longitude'] is not None:
            location = LocationSnapshot(
                latitude=row['latitude'],
                longitude=row['longitude'],
                accuracy=row['location_accuracy'],
                address=row['address'],
                captured_at=datetime.fromisoformat(row['location_captured_at'])
            )

        return Alert(
            id=row['id'],
            user_id=row['user_id'],
            status=AlertStatus(row['status']),
            location=location,
            description=row['description'],
            created_at=datetime.fromisoformat(row['created_at']),
            updated_at=datetime.fromisoformat(row['updated_at']),
            resolved_at=datetime.fromisoformat(row['resolved_at']) if row['resolved_at'] else None,
            is_escalated=bool(row['escalated']),
            sequence=row['sequence']
        )
