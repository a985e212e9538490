"""
Unit tests for the application composition root
"""

from datetime import datetime, timezone

import pytest
import yaml

from src.main import SecureNowApplication, parse_args
from src.models.alert import Alert, EngineState, FanOutKind, LocationSnapshot, NotificationChannelType
from src.services.sos.location_provider import ReverseGeocodingLocationProvider, StaticLocationProvider
from src.services.sos.notification_channel import LoggingNotificationChannel, WebhookNotificationChannel


@pytest.fixture
def config_dir(temp_dir):
    def write(extra=None):
        config = {
            "database": {"path": str(temp_dir / "data" / "app.db")},
            "logging": {"level": "DEBUG", "file": None, "console": False},
            "sos": {"user_id": "user-9", "channels": {"expiry": ["sms"]}},
            "location": {"latitude": 37.7749, "longitude": -122.4194},
        }
        for section, values in (extra or {}).items():
            config.setdefault(section, {}).update(values)
        path = temp_dir / "config"
        path.mkdir(exist_ok=True)
        (path / "config.yaml").write_text(yaml.safe_dump(config))
        return str(path)

    return write


class TestSecureNowApplication:
    """Wiring from configuration"""

    async def test_initialize_builds_engine(self, config_dir):
        app = SecureNowApplication(config_dir=config_dir(), web_enabled=False)

        await app.initialize()
        try:
            assert app.engine.user_id == "user-9"
            assert app.engine.escalation_delay == 10
            assert app.engine.state == EngineState.IDLE
            assert isinstance(app.channel, LoggingNotificationChannel)
            assert isinstance(app.location_provider, StaticLocationProvider)
            assert app.engine.fanout.channels_for(FanOutKind.EXPIRY) == [NotificationChannelType.SMS]
            assert app.web_enabled() is False

            status = app.get_system_status()
            assert status['engine']['state'] == "idle"
            assert status['database']['sos_alerts'] == 0
        finally:
            app.db_manager.close()

    async def test_webhook_and_geocoding_from_config(self, config_dir):
        app = SecureNowApplication(config_dir=config_dir({
            "notifications": {"backend": "webhook", "sms_url": "http://gateway/sms"},
            "location": {"reverse_geocode": True},
        }))

        await app.initialize()
        try:
            assert isinstance(app.channel, WebhookNotificationChannel)
            assert app.channel.sms_url == "http://gateway/sms"
            assert isinstance(app.location_provider, ReverseGeocodingLocationProvider)
            assert app.web_enabled() is True
        finally:
            app.db_manager.close()

    async def test_engine_activates_with_configured_location(self, config_dir):
        app = SecureNowApplication(config_dir=config_dir(), web_enabled=False)
        await app.initialize()
        try:
            await app.engine.start()
            result = await app.engine.activate()

            assert result.alert.location.latitude == 37.7749
            assert app.engine.history()[0].id == result.alert.id
            await app.engine.cancel()
        finally:
            await app.engine.stop()
            app.db_manager.close()

    async def test_message_time_uses_configured_timezone(self, config_dir):
        app = SecureNowApplication(config_dir=config_dir({
            "sos": {"display_timezone": "America/Los_Angeles"},
        }), web_enabled=False)
        await app.initialize()
        try:
            alert = Alert(user_id="user-9", location=LocationSnapshot(37.7749, -122.4194))
            sent_at = datetime(2026, 10, 17, 22, 4, tzinfo=timezone.utc)

            report = app.engine.fanout.run_pass(alert, FanOutKind.ACTIVATION, sent_at)

            assert report.message.endswith("Time: Oct 17, 2026 at 3:04 PM")
        finally:
            app.db_manager.close()

    async def test_each_application_owns_its_database(self, config_dir, temp_dir):
        first = SecureNowApplication(config_dir=config_dir(), web_enabled=False)
        await first.initialize()
        second = SecureNowApplication(config_dir=config_dir({
            "database": {"path": str(temp_dir / "data" / "other.db")},
        }), web_enabled=False)
        await second.initialize()
        try:
            assert first.db_manager is not second.db_manager
            assert first.engine.store.db is first.db_manager
            assert second.contacts.db is second.db_manager
        finally:
            first.db_manager.close()
            second.db_manager.close()


class TestParseArgs:
    """Command line options"""

    def test_defaults(self):
        args = parse_args([])

        assert args.config_dir == "config"
        assert args.no_web is False

    def test_no_web(self):
        args = parse_args(["--config-dir", "/etc/securenow", "--no-web"])

        assert args.config_dir == "/etc/securenow"
        assert args.no_web is True
