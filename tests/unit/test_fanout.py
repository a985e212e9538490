"""
Unit tests for the fan-out coordinator
"""

from datetime import datetime
from unittest.mock import Mock

from src.models.alert import (
    Alert, EmergencyContact, FanOutKind, LocationSnapshot, NotificationChannelType,
    NotificationOutcome
)
from src.services.sos.contact_directory import InMemoryContactDirectory
from src.services.sos.fanout import FanOutCoordinator
from src.services.sos.notification_channel import LoggingNotificationChannel


def make_alert():
    return Alert(user_id="user-1", location=LocationSnapshot(37.7749, -122.4194))


class TestFanOutCoordinator:
    """One notification pass"""

    def test_one_entry_per_contact_per_channel(self, contacts):
        channel = LoggingNotificationChannel()
        coordinator = FanOutCoordinator(contacts, channel)

        report = coordinator.run_pass(make_alert(), FanOutKind.ACTIVATION, datetime(2026, 10, 17, 15, 4))

        assert report.contacts_notified == 2
        assert report.count(NotificationChannelType.CALL) == 2
        assert report.count(NotificationChannelType.SMS) == 2
        assert report.message.endswith("Time: Oct 17, 2026 at 3:04 PM")
        # Directory order, call before text
        assert [e.channel for e in report.entries] == [
            NotificationChannelType.CALL, NotificationChannelType.SMS,
            NotificationChannelType.CALL, NotificationChannelType.SMS,
        ]
        call_entries = [e for e in report.entries if e.channel == NotificationChannelType.CALL]
        assert len(call_entries) == 2
        assert all(e.message == report.message for e in report.entries)

    def test_duplicate_phones_notified_once(self):
        directory = InMemoryContactDirectory([
            EmergencyContact(name="Mom", phone="555-010-0001"),
            EmergencyContact(name="Mom (work)", phone="(555) 0100001"),
            EmergencyContact(name="Dad", phone="555-010-0002"),
        ])
        coordinator = FanOutCoordinator(directory, LoggingNotificationChannel())

        report = coordinator.run_pass(make_alert(), FanOutKind.ESCALATION)

        assert report.contacts_notified == 2
        assert report.skipped_duplicates == 1
        assert len(report.entries) == 4

    def test_duplicates_kept_when_deduplication_disabled(self):
        directory = InMemoryContactDirectory([
            EmergencyContact(name="Mom", phone="555-010-0001"),
            EmergencyContact(name="Mom again", phone="555-010-0001"),
        ])
        coordinator = FanOutCoordinator(directory, LoggingNotificationChannel(), deduplicate=False)

        report = coordinator.run_pass(make_alert(), FanOutKind.ACTIVATION)

        assert len(report.entries) == 4

    def test_pass_channels_are_configurable(self, contacts):
        coordinator = FanOutCoordinator(
            contacts, LoggingNotificationChannel(),
            pass_channels={FanOutKind.EXPIRY: [NotificationChannelType.SMS]}
        )

        expiry = coordinator.run_pass(make_alert(), FanOutKind.EXPIRY)
        activation = coordinator.run_pass(make_alert(), FanOutKind.ACTIVATION)

        assert expiry.count(NotificationChannelType.CALL) == 0
        assert expiry.count(NotificationChannelType.SMS) == 2
        assert len(activation.entries) == 4

    def test_channel_error_recorded_as_failed(self, contacts):
        channel = Mock()
        channel.send_text.side_effect = RuntimeError("sms gateway down")
        coordinator = FanOutCoordinator(contacts, channel)

        report = coordinator.run_pass(make_alert(), FanOutKind.ACTIVATION)

        assert channel.place_call.call_count == 2
        assert report.count(NotificationChannelType.SMS, NotificationOutcome.FAILED) == 2
        assert report.count(NotificationChannelType.CALL, NotificationOutcome.ATTEMPTED) == 2
        assert all(e.error == "sms gateway down" for e in report.failures)

    def test_directory_snapshot_read_once(self, sample_contacts):
        directory = Mock()
        directory.get_contacts.return_value = sample_contacts
        coordinator = FanOutCoordinator(directory, LoggingNotificationChannel())

        coordinator.run_pass(make_alert(), FanOutKind.ACTIVATION)

        directory.get_contacts.assert_called_once()

    def test_failing_directory_gives_empty_pass(self):
        directory = Mock()
        directory.get_contacts.side_effect = RuntimeError("profile unavailable")
        coordinator = FanOutCoordinator(directory, LoggingNotificationChannel())

        report = coordinator.run_pass(make_alert(), FanOutKind.ACTIVATION)

        assert report.entries == []

    def test_composer_errors_are_swallowed(self, sample_contacts):
        channel = Mock()
        channel.present_composer.side_effect = RuntimeError("no UI")
        coordinator = FanOutCoordinator(InMemoryContactDirectory(), channel)

        coordinator.present_composer(make_alert(), sample_contacts, "msg")

        channel.present_composer.assert_called_once()
