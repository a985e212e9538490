"""
Fan-out pass over the emergency contact list

One pass reads a contact snapshot, renders the message for the pass and
hands a call and/or text per contact to the notification channel.
"""

import logging
from datetime import datetime, tzinfo
from typing import Dict, List, Optional, Sequence

from src.models.alert import (
    Alert, EmergencyContact, FanOutKind, FanOutReport, NotificationChannelType,
    NotificationLogEntry, NotificationOutcome, utcnow
)
from .contact_directory import ContactDirectory
from .notification_channel import NotificationChannel
from .templates import render_emergency_message


DEFAULT_CHANNELS = (NotificationChannelType.CALL, NotificationChannelType.SMS)


class FanOutCoordinator:
    """Runs notification passes for the escalation engine"""

    def __init__(
        self,
        contacts: ContactDirectory,
        channel: NotificationChannel,
        pass_channels: Optional[Dict[FanOutKind, Sequence[NotificationChannelType]]] = None,
        deduplicate: bool = True,
        display_tz: Optional[tzinfo] = None
    ):
        self.logger = logging.getLogger(__name__)
        self.contacts = contacts
        self.channel = channel
        self.pass_channels = pass_channels or {}
        self.deduplicate = deduplicate
        self.display_tz = display_tz

    def channels_for(self, kind: FanOutKind) -> Sequence[NotificationChannelType]:
        return self.pass_channels.get(kind, DEFAULT_CHANNELS)

    def snapshot(self) -> List[EmergencyContact]:
        """Read the directory once; a failing directory yields no contacts"""
        try:
            return list(self.contacts.get_contacts())
        except Exception as e:
            self.logger.error(f"Failed to read emergency contacts: {e}")
            return []

    def run_pass(self, alert: Alert, kind: FanOutKind,
                 timestamp: Optional[datetime] = None) -> FanOutReport:
        """
        Notify every contact once for this pass

        Args:
            alert: Alert being fanned out, location taken from it
            kind: Pass kind, selects headline and channels
            timestamp: Time shown in the message, defaults to now

        Returns:
            FanOutReport with one log entry per contact per channel
        """
        timestamp = timestamp or utcnow()
        message = render_emergency_message(kind, alert.location, timestamp, self.display_tz)
        report = FanOutReport(alert_id=alert.id, pass_kind=kind, message=message)

        contacts = self.snapshot()
        if not contacts:
            self.logger.warning(f"No emergency contacts to notify for alert {alert.id} ({kind.value})")
            return report

        seen_phones = set()
        for contact in contacts:
            phone = contact.dialable_phone()
            if self.deduplicate and phone in seen_phones:
                report.skipped_duplicates += 1
                continue
            seen_phones.add(phone)

            for channel_type in self.channels_for(kind):
                report.entries.append(self._dispatch(alert, contact, channel_type, kind, message))
            report.recipients.append(contact)
            report.contacts_notified += 1

        failures = len(report.failures)
        self.logger.info(
            f"Fan-out {kind.value} for alert {alert.id}: {report.contacts_notified} contacts, "
            f"{len(report.entries)} dispatches, {failures} failed"
        )
        return report

    def present_composer(self, alert: Alert, contacts: List[EmergencyContact], message: str) -> None:
        """Offer the final message for manual sending; errors are logged only"""
        if not contacts:
            return
        try:
            self.channel.present_composer(contacts, message, alert)
        except Exception as e:
            self.logger.error(f"Failed to present message composer for alert {alert.id}: {e}")

    def _dispatch(self, alert: Alert, contact: EmergencyContact,
                  channel_type: NotificationChannelType, kind: FanOutKind,
                  message: str) -> NotificationLogEntry:
        try:
            if channel_type == NotificationChannelType.CALL:
                self.channel.place_call(contact, alert)
            else:
                self.channel.send_text(contact, message, alert)
        except Exception as e:
            # A failed hand-off never halts the pass
            self.logger.error(
                f"{channel_type.value} dispatch to contact {contact.id} failed for alert {alert.id}: {e}"
            )
            return NotificationLogEntry(
                alert_id=alert.id,
                contact_id=contact.id,
                channel=channel_type,
                outcome=NotificationOutcome.FAILED,
                pass_kind=kind,
                message=message,
                error=str(e)
            )

        return NotificationLogEntry(
            alert_id=alert.id,
            contact_id=contact.id,
            channel=channel_type,
            outcome=NotificationOutcome.ATTEMPTED,
            pass_kind=kind,
            message=message
        )
