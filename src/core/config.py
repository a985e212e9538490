"""
Configuration Management System for SecureNow SOS

Handles loading configuration from environment variables, config files,
and provides validation and runtime updates.
"""

import os
import json
import yaml
import logging
from typing import Any, Dict, List, Optional, Callable
from pathlib import Path
from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


VALID_CHANNELS = ('call', 'sms')
VALID_BACKENDS = ('log', 'webhook')


@dataclass
class ConfigSource:
    """Configuration source definition"""
    name: str
    priority: int
    loader: Callable
    path: Optional[str] = None


class ConfigurationError(Exception):
    """Configuration-related errors"""
    pass


class ConfigurationManager:
    """
    Manages system configuration with support for multiple sources,
    validation, and runtime updates.
    """

    def __init__(self, config_dir: str = "config"):
        self.config_dir = Path(config_dir)
        self.config: Dict[str, Any] = {}
        self.watchers: Dict[str, List[Callable]] = {}
        self.sources: List[ConfigSource] = []
        self.logger = logging.getLogger(__name__)

        # Default configuration values
        self.defaults = {
            "app": {
                "name": "SecureNow SOS",
                "version": "1.0.0",
                "debug": False,
                "log_level": "INFO"
            },
            "database": {
                "path": "data/securenow.db",
                "max_connections": 10
            },
            "sos": {
                "user_id": "guest",
                "escalation_delay_seconds": 10,
                "countdown_seconds": 300,
                "deduplicate_contacts": True,
                "display_timezone": "UTC",
                "channels": {
                    "activation": ["call", "sms"],
                    "escalation": ["call", "sms"],
                    "expiry": ["call", "sms"]
                }
            },
            "location": {
                "latitude": None,
                "longitude": None,
                "accuracy": None,
                "address": None,
                "reverse_geocode": False,
                "geocoder_url": "https://nominatim.openstreetmap.org/reverse"
            },
            "notifications": {
                "backend": "log",
                "call_url": None,
                "sms_url": None,
                "timeout_seconds": 10
            },
            "web": {
                "enabled": True,
                "host": "0.0.0.0",
                "port": 8080
            },
            "logging": {
                "level": "INFO",
                "file": "logs/securenow.log",
                "max_size": "10MB",
                "backup_count": 5,
                "console": True,
                "console_level": "INFO",
                "audit_level": "INFO",
                "audit_file": None
            }
        }

        self._setup_sources()

    def _setup_sources(self):
        """Set up configuration sources in priority order"""
        # Environment variables (highest priority = lowest number)
        self.sources.append(ConfigSource(
            name="environment",
            priority=4,
            loader=self._load_from_env
        ))

        # Local config file
        local_config_path = str(self.config_dir / "config.yaml")
        self.sources.append(ConfigSource(
            name="local_config",
            priority=3,
            loader=lambda: self._load_from_file(local_config_path),
            path=local_config_path
        ))

        # Default config file
        default_config_path = str(self.config_dir / "default.yaml")
        self.sources.append(ConfigSource(
            name="default_config",
            priority=2,
            loader=lambda: self._load_from_file(default_config_path),
            path=default_config_path
        ))

        # Built-in defaults (lowest priority = highest number)
        self.sources.append(ConfigSource(
            name="defaults",
            priority=1,
            loader=lambda: self.defaults
        ))

    def load_config(self) -> None:
        """Load configuration from all sources"""
        self.logger.info("Loading configuration from all sources")

        # Sort sources by priority
        sorted_sources = sorted(self.sources, key=lambda x: x.priority, reverse=True)

        merged_config = {}

        # Load from each source (lowest priority first)
        for source in reversed(sorted_sources):
            try:
                source_config = source.loader()
                if source_config:
                    merged_config = self._deep_merge(merged_config, source_config)
                    self.logger.debug(f"Loaded configuration from {source.name}")
            except Exception as e:
                self.logger.warning(f"Failed to load config from {source.name}: {e}")

        self.config = merged_config
        self._validate_config()
        self.logger.info("Configuration loaded successfully")

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment variables"""
        config = {}

        # Map environment variables to config keys
        env_mappings = {
            "SECURENOW_DEBUG": "app.debug",
            "SECURENOW_LOG_LEVEL": "logging.level",
            "SECURENOW_DB_PATH": "database.path",
            "SECURENOW_WEB_PORT": "web.port",
            "SECURENOW_ESCALATION_DELAY": "sos.escalation_delay_seconds",
            "SECURENOW_COUNTDOWN": "sos.countdown_seconds",
            "SECURENOW_DISPLAY_TIMEZONE": "sos.display_timezone",
            "SECURENOW_NOTIFICATION_BACKEND": "notifications.backend",
            "SECURENOW_CHANNELS": "sos.channels"
        }

        for env_var, config_key in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                # Convert string values to appropriate types
                if value.lower() in ('true', 'false'):
                    value = value.lower() == 'true'
                elif value.isdigit():
                    value = int(value)
                elif config_key.endswith("_seconds"):
                    try:
                        value = float(value)
                    except ValueError:
                        self.logger.warning(f"Invalid number in {env_var}: {value}")
                        continue
                elif config_key == "sos.channels":
                    # JSON object of pass -> channel list
                    try:
                        value = json.loads(value)
                    except json.JSONDecodeError:
                        self.logger.warning(f"Invalid JSON in {env_var}: {value}")
                        continue

                self._set_nested_value(config, config_key, value)

        return config

    def _load_from_file(self, file_path: str) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file"""
        path = Path(file_path)

        if not path.exists():
            return {}

        try:
            with open(path, 'r') as f:
                if path.suffix.lower() in ['.yaml', '.yml']:
                    return yaml.safe_load(f) or {}
                elif path.suffix.lower() == '.json':
                    return json.load(f)
                else:
                    self.logger.warning(f"Unsupported config file format: {path}")
                    return {}
        except Exception as e:
            self.logger.error(f"Error loading config file {path}: {e}")
            return {}

    def _deep_merge(self, base: Dict, override: Dict) -> Dict:
        """Deep merge two dictionaries"""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _set_nested_value(self, config: Dict, key_path: str, value: Any) -> None:
        """Set a nested configuration value using dot notation"""
        keys = key_path.split('.')
        current = config

        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def _validate_config(self) -> None:
        """Validate configuration values"""
        errors = []

        # Validate required sections
        required_sections = ['app', 'database', 'sos']
        for section in required_sections:
            if section not in self.config:
                errors.append(f"Missing required configuration section: {section}")

        # Validate database path
        db_path = self.get('database.path')
        if db_path and db_path != ':memory:':
            db_dir = Path(db_path).parent
            if not db_dir.exists():
                try:
                    db_dir.mkdir(parents=True, exist_ok=True)
                except Exception as e:
                    errors.append(f"Cannot create database directory {db_dir}: {e}")

        # Validate SOS timers
        for key in ('sos.escalation_delay_seconds', 'sos.countdown_seconds'):
            value = self.get(key)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
                errors.append(f"Invalid timer value for {key}: {value}")

        # Validate per-pass channel sets
        channels = self.get('sos.channels', {})
        if not isinstance(channels, dict):
            errors.append(f"Invalid sos.channels: {channels}")
        else:
            for pass_kind, names in channels.items():
                if pass_kind not in ('activation', 'escalation', 'expiry'):
                    errors.append(f"Unknown fan-out pass in sos.channels: {pass_kind}")
                    continue
                unknown = [name for name in (names or []) if name not in VALID_CHANNELS]
                if unknown:
                    errors.append(f"Unknown channels for {pass_kind}: {', '.join(unknown)}")

        # Validate the timezone used for message timestamps
        tz_name = self.get('sos.display_timezone', 'UTC')
        try:
            ZoneInfo(str(tz_name))
        except (ZoneInfoNotFoundError, ValueError):
            errors.append(f"Unknown display timezone: {tz_name}")

        # Validate notification backend
        backend = self.get('notifications.backend', 'log')
        if backend not in VALID_BACKENDS:
            errors.append(f"Invalid notification backend: {backend}")

        # Validate web port
        web_port = self.get('web.port')
        if web_port and (not isinstance(web_port, int) or web_port < 1 or web_port > 65535):
            errors.append(f"Invalid web port: {web_port}")

        # Validate log levels
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        for key in ('app.log_level', 'logging.level', 'logging.console_level', 'logging.audit_level'):
            log_level = self.get(key, 'INFO')
            if str(log_level).upper() not in valid_levels:
                errors.append(f"Invalid log level for {key}: {log_level}")

        if errors:
            raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation"""
        keys = key.split('.')
        current = self.config

        try:
            for k in keys:
                current = current[k]
            return current
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation"""
        self._set_nested_value(self.config, key, value)

        # Notify watchers
        if key in self.watchers:
            for callback in self.watchers[key]:
                try:
                    callback(key, value)
                except Exception as e:
                    self.logger.error(f"Error in config watcher for {key}: {e}")

    def watch(self, key: str, callback: Callable[[str, Any], None]) -> None:
        """Watch for configuration changes"""
        if key not in self.watchers:
            self.watchers[key] = []
        self.watchers[key].append(callback)

    def get_section(self, section: str) -> Dict[str, Any]:
        """Get entire configuration section"""
        return self.get(section, {})

    def get_escalation_delay(self) -> float:
        """Get delay before the escalation wave, in seconds"""
        return self.get('sos.escalation_delay_seconds', 10)

    def get_countdown(self) -> float:
        """Get total SOS countdown before the final alert, in seconds"""
        return self.get('sos.countdown_seconds', 300)

    def get_display_timezone(self) -> ZoneInfo:
        """Get the timezone message timestamps are shown in"""
        return ZoneInfo(self.get('sos.display_timezone', 'UTC'))

    def get_pass_channels(self, pass_kind: str) -> List[str]:
        """Get channel names used for one fan-out pass"""
        return self.get(f'sos.channels.{pass_kind}', list(VALID_CHANNELS))

    def is_web_enabled(self) -> bool:
        """Check if the HTTP API is enabled"""
        return self.get('web.enabled', False)

    def export_config(self, file_path: str) -> None:
        """Export current configuration to file"""
        path = Path(file_path)

        try:
            with open(path, 'w') as f:
                if path.suffix.lower() in ['.yaml', '.yml']:
                    yaml.dump(self.config, f, default_flow_style=False, indent=2)
                elif path.suffix.lower() == '.json':
                    json.dump(self.config, f, indent=2)
                else:
                    raise ValueError(f"Unsupported file format: {path.suffix}")

            self.logger.info(f"Configuration exported to {path}")
        except Exception as e:
            self.logger.error(f"Failed to export configuration: {e}")
            raise ConfigurationError(f"Export failed: {e}")
