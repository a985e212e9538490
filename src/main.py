"""
SecureNow SOS Main Application Entry Point

Loads configuration, builds the SOS escalation engine and its collaborators,
and serves the HTTP API until shutdown.
"""

import argparse
import asyncio
import signal
import sys
import traceback
from typing import Any, Dict, Optional

import uvicorn

from src.core.config import ConfigurationManager
from src.core.database import DatabaseManager
from src.core.logging import SecureNowLogger, get_logger, initialize_logging
from src.models.alert import Alert, AlertStatus, FanOutKind, NotificationChannelType
from src.services.sos.alert_store import SQLiteAlertStore
from src.services.sos.contact_directory import SQLiteContactDirectory
from src.services.sos.escalation_engine import SOSEscalationEngine
from src.services.sos.location_provider import (
    LocationProvider, ReverseGeocodingLocationProvider, StaticLocationProvider
)
from src.services.sos.notification_channel import (
    LoggingNotificationChannel, NotificationChannel, WebhookNotificationChannel
)
from src.services.web.sos_api import create_sos_app


class SecureNowApplication:
    """Composition root wiring the SOS engine to its collaborators"""

    def __init__(self, config_dir: str = "config", web_enabled: Optional[bool] = None):
        self.config_dir = config_dir
        self.web_override = web_enabled

        self.config_manager: Optional[ConfigurationManager] = None
        self.db_manager: Optional[DatabaseManager] = None
        self.contacts: Optional[SQLiteContactDirectory] = None
        self.channel: Optional[NotificationChannel] = None
        self.location_provider: Optional[LocationProvider] = None
        self.engine: Optional[SOSEscalationEngine] = None
        self.web_server: Optional[uvicorn.Server] = None
        self.logger = None
        self.log_setup: Optional[SecureNowLogger] = None

        self.running = False
        self.shutdown_event = asyncio.Event()
        self._server_task: Optional[asyncio.Task] = None

    async def initialize(self):
        """Initialize all application components"""
        print("Initializing SecureNow SOS...")

        try:
            self.config_manager = ConfigurationManager(self.config_dir)
            self.config_manager.load_config()

            self.log_setup = initialize_logging(self.config_manager.config)
            self.logger = get_logger('main')

            self.logger.info("SecureNow SOS starting up...")
            self.logger.info(f"Version: {self.config_manager.get('app.version', '1.0.0')}")
            self.logger.info(f"Debug mode: {self.config_manager.get('app.debug', False)}")

            self._initialize_database()
            self.build_engine()

            self.logger.info("Core systems initialized successfully")

        except Exception as e:
            if self.logger:
                self.logger.error(f"Failed to initialize application: {e}", exc_info=True)
            else:
                print(f"Failed to initialize application: {e}")
                traceback.print_exc()
            raise

    def _initialize_database(self):
        db_path = self.config_manager.get('database.path', 'data/securenow.db')
        max_connections = self.config_manager.get('database.max_connections', 10)
        self.logger.info(f"Initializing database at {db_path}")
        self.db_manager = DatabaseManager(db_path, max_connections)

    def build_location_provider(self) -> LocationProvider:
        """Location provider from the location.* settings"""
        location = self.config_manager.get_section('location')
        provider: LocationProvider = StaticLocationProvider(
            latitude=location.get('latitude'),
            longitude=location.get('longitude'),
            accuracy=location.get('accuracy'),
            address=location.get('address')
        )
        if location.get('reverse_geocode'):
            provider = ReverseGeocodingLocationProvider(
                provider,
                geocoder_url=location.get('geocoder_url'),
                user_agent=f"SecureNow-SOS/{self.config_manager.get('app.version', '1.0.0')}"
            )
        return provider

    def build_notification_channel(self) -> NotificationChannel:
        """Notification channel from the notifications.* settings"""
        notifications = self.config_manager.get_section('notifications')
        backend = notifications.get('backend', 'log')
        if backend == 'webhook':
            self.logger.info("Using webhook notification channel")
            return WebhookNotificationChannel(
                call_url=notifications.get('call_url'),
                sms_url=notifications.get('sms_url'),
                timeout_seconds=notifications.get('timeout_seconds', 10)
            )
        self.logger.info("Using logging notification channel")
        return LoggingNotificationChannel()

    def build_engine(self) -> SOSEscalationEngine:
        """Construct the engine with its collaborators injected"""
        user_id = self.config_manager.get('sos.user_id', 'guest')

        self.contacts = SQLiteContactDirectory(self.db_manager, user_id)
        self.channel = self.build_notification_channel()
        self.location_provider = self.build_location_provider()

        pass_channels = {
            kind: [NotificationChannelType(name) for name in self.config_manager.get_pass_channels(kind.value)]
            for kind in FanOutKind
        }

        self.engine = SOSEscalationEngine(
            store=SQLiteAlertStore(self.db_manager),
            contacts=self.contacts,
            channel=self.channel,
            location_provider=self.location_provider,
            user_id=user_id,
            escalation_delay=self.config_manager.get_escalation_delay(),
            countdown=self.config_manager.get_countdown(),
            pass_channels=pass_channels,
            deduplicate_contacts=self.config_manager.get('sos.deduplicate_contacts', True),
            display_tz=self.config_manager.get_display_timezone()
        )
        self.engine.on_status_changed(self._handle_status_change)
        return self.engine

    def _handle_status_change(self, alert: Alert, previous: Optional[AlertStatus], status: AlertStatus):
        previous_name = previous.value if previous else "none"
        self.logger.info(f"Alert {alert.id} moved from {previous_name} to {status.value}")

    def web_enabled(self) -> bool:
        if self.web_override is not None:
            return self.web_override
        return self.config_manager.is_web_enabled()

    async def start_services(self):
        """Start the engine and, if enabled, the HTTP API"""
        await self.engine.start()

        if self.web_enabled():
            app = create_sos_app(self.engine, self.contacts)
            config = uvicorn.Config(
                app,
                host=self.config_manager.get('web.host', '0.0.0.0'),
                port=self.config_manager.get('web.port', 8080),
                log_level=self.config_manager.get('logging.level', 'INFO').lower()
            )
            self.web_server = uvicorn.Server(config)
            self._server_task = asyncio.create_task(self.web_server.serve())
            self.logger.info(f"SOS API listening on {config.host}:{config.port}")

    async def start(self):
        """Start the application"""
        await self.initialize()

        self.running = True
        self.logger.info("SecureNow SOS is now running")

        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

        try:
            await self.start_services()
            await self._main_loop()
        except Exception as e:
            self.logger.error(f"Application error: {e}", exc_info=True)
            raise
        finally:
            await self.shutdown()

    async def _main_loop(self):
        """Wait until a shutdown signal arrives or the API server exits"""
        waiters = [asyncio.create_task(self.shutdown_event.wait())]
        if self._server_task:
            waiters.append(self._server_task)

        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        self.logger.info("Shutdown signal received")
        waiters[0].cancel()

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals"""
        self.logger.info(f"Received signal {signum}")
        self.shutdown_event.set()

    async def shutdown(self):
        """Shutdown the application gracefully"""
        if not self.running:
            return

        self.logger.info("Shutting down SecureNow SOS...")
        self.running = False

        try:
            if self.web_server:
                self.web_server.should_exit = True
            if self._server_task:
                await asyncio.gather(self._server_task, return_exceptions=True)

            if self.engine:
                await self.engine.stop()
            if self.channel:
                await self.channel.close()
            if self.db_manager:
                self.db_manager.close()

            self.logger.info("SecureNow SOS shutdown complete")
            if self.log_setup:
                self.log_setup.close()

        except Exception as e:
            self.logger.error(f"Error during shutdown: {e}")

    def get_system_status(self) -> Dict[str, Any]:
        """Summary of engine and database state"""
        status: Dict[str, Any] = {'running': self.running}
        if self.engine:
            alert = self.engine.current_alert()
            status['engine'] = {
                'state': self.engine.state.value,
                'alert_id': alert.id if alert else None,
                'time_remaining_seconds': self.engine.time_remaining().total_seconds(),
                'pending_timers': self.engine.pending_timers()
            }
        if self.db_manager:
            status['database'] = self.db_manager.get_stats()
        return status


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="SecureNow SOS escalation service")
    parser.add_argument('--config-dir', default='config', help="Directory holding default.yaml / config.yaml")
    parser.add_argument('--no-web', action='store_true', help="Run without the HTTP API")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace):
    app = SecureNowApplication(
        config_dir=args.config_dir,
        web_enabled=False if args.no_web else None
    )
    await app.start()


def main(argv=None):
    """Console entry point"""
    args = parse_args(argv)
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\nApplication interrupted")
        sys.exit(0)
    except Exception as e:
        print(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
