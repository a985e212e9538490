"""
Global pytest configuration and fixtures for SecureNow SOS testing.
"""
import tempfile
from pathlib import Path
from typing import List

import pytest

from src.core.database import DatabaseManager
from src.models.alert import EmergencyContact
from src.services.sos.alert_store import SQLiteAlertStore
from src.services.sos.contact_directory import InMemoryContactDirectory
from src.services.sos.escalation_engine import SOSEscalationEngine
from src.services.sos.location_provider import StaticLocationProvider
from src.services.sos.notification_channel import LoggingNotificationChannel


SF_LATITUDE = 37.7749
SF_LONGITUDE = -122.4194


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_config(temp_dir):
    """Provide test configuration."""
    return {
        "app": {"name": "SecureNow SOS", "debug": True, "log_level": "DEBUG"},
        "database": {"path": str(temp_dir / "test.db"), "max_connections": 2},
        "sos": {
            "user_id": "user-1",
            "escalation_delay_seconds": 10,
            "countdown_seconds": 300,
            "deduplicate_contacts": True,
            "channels": {
                "activation": ["call", "sms"],
                "escalation": ["call", "sms"],
                "expiry": ["call", "sms"]
            }
        },
        "logging": {"level": "DEBUG", "file": None, "console": False}
    }


@pytest.fixture
def db(temp_dir):
    """Create a migrated test SQLite database."""
    manager = DatabaseManager(str(temp_dir / "test.db"), max_connections=2)
    yield manager
    manager.close()


@pytest.fixture
def alert_store(db):
    return SQLiteAlertStore(db)


@pytest.fixture
def sample_contacts() -> List[EmergencyContact]:
    return [
        EmergencyContact(name="Mom", phone="+1 (555) 010-0001", relationship="Mother", is_primary=True),
        EmergencyContact(name="Alex Rivera", phone="555-010-0002", relationship="Friend"),
    ]


@pytest.fixture
def contacts(sample_contacts):
    return InMemoryContactDirectory(sample_contacts)


@pytest.fixture
def location():
    return StaticLocationProvider(SF_LATITUDE, SF_LONGITUDE, accuracy=5.0)


@pytest.fixture
def channel():
    return LoggingNotificationChannel()


@pytest.fixture
async def engine_factory(alert_store, contacts, channel, location):
    """Build started engines with long timers unless overridden; stops them on teardown."""
    engines = []

    async def factory(**overrides) -> SOSEscalationEngine:
        kwargs = {
            "store": alert_store,
            "contacts": contacts,
            "channel": channel,
            "location_provider": location,
            "user_id": "user-1",
            "escalation_delay": 60,
            "countdown": 120,
        }
        kwargs.update(overrides)
        engine = SOSEscalationEngine(**kwargs)
        await engine.start()
        engines.append(engine)
        return engine

    yield factory

    for engine in engines:
        await engine.stop()


@pytest.fixture
async def engine(engine_factory):
    return await engine_factory()
