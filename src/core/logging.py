"""
Logging Configuration for SecureNow SOS

Sets up the application log (console and rotating file) and the SOS audit
trail. Audit records are structlog JSON events emitted on the
'securenow.sos.audit' logger, one per alert transition; they can be given
their own level and written to a separate JSON-lines file.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Dict, List, Optional
import structlog


AUDIT_LOGGER = 'securenow.sos.audit'

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

NOISY_LOGGERS = ('asyncio', 'aiohttp.access', 'aiohttp.client', 'uvicorn.access')


def parse_size(size_str) -> int:
    """Parse a size such as '10MB' or '512KB' to bytes"""
    size_str = str(size_str).strip().upper()
    for suffix, factor in (('GB', 1024 ** 3), ('MB', 1024 ** 2), ('KB', 1024)):
        if size_str.endswith(suffix):
            return int(size_str[:-len(suffix)]) * factor
    return int(size_str)


def _level(name: Optional[str], default: str = 'INFO') -> int:
    return getattr(logging, str(name or default).upper())


class SecureNowLogger:
    """
    Logging setup for one application run

    Owns the handlers it installs so close() can release the log files.
    """

    def __init__(self, config: Dict):
        self.config = config
        self.handlers: List[logging.Handler] = []
        self._setup_logging()

    def _setup_logging(self):
        log_config = self.config.get('logging', {}) or {}
        log_level = _level(log_config.get('level'))

        self._configure_structlog()

        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)
        root_logger.handlers.clear()

        log_file = log_config.get('file')
        if log_file:
            root_logger.addHandler(self._file_handler(
                log_file, log_config, logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'), log_level
            ))

        if log_config.get('console', True):
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt='%H:%M:%S'))
            console_handler.setLevel(_level(log_config.get('console_level')))
            root_logger.addHandler(console_handler)
            self.handlers.append(console_handler)

        self._setup_audit_logger(log_config)

        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    def _configure_structlog(self):
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="ISO"),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer()
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    def _setup_audit_logger(self, log_config: Dict):
        """Level and optional JSON-lines file for SOS transition records"""
        audit_logger = logging.getLogger(AUDIT_LOGGER)
        for handler in list(audit_logger.handlers):
            audit_logger.removeHandler(handler)
            handler.close()
        audit_logger.setLevel(_level(log_config.get('audit_level')))

        audit_file = log_config.get('audit_file')
        if audit_file:
            # Records are already rendered JSON; write them as-is
            audit_logger.addHandler(self._file_handler(
                audit_file, log_config, logging.Formatter('%(message)s'), audit_logger.level
            ))

    def _file_handler(self, path: str, log_config: Dict, formatter: logging.Formatter,
                      level: int) -> logging.Handler:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            path,
            maxBytes=parse_size(log_config.get('max_size', '10MB')),
            backupCount=log_config.get('backup_count', 5),
            encoding='utf-8'
        )
        handler.setFormatter(formatter)
        handler.setLevel(level)
        self.handlers.append(handler)
        return handler

    def get_logger(self, name: str) -> logging.Logger:
        full_name = name if name.startswith('securenow') else f'securenow.{name}'
        return logging.getLogger(full_name)

    def close(self):
        """Detach and close every handler this instance installed"""
        for handler in self.handlers:
            for logger in (logging.getLogger(), logging.getLogger(AUDIT_LOGGER)):
                if handler in logger.handlers:
                    logger.removeHandler(handler)
            handler.close()
        self.handlers = []


_logger_instance: Optional[SecureNowLogger] = None


def initialize_logging(config: Dict) -> SecureNowLogger:
    """Configure logging for the application from its config dict"""
    global _logger_instance
    if _logger_instance is not None:
        _logger_instance.close()
    _logger_instance = SecureNowLogger(config)
    return _logger_instance


def get_logger(name: str) -> logging.Logger:
    """Logger under the 'securenow' namespace"""
    if _logger_instance is None:
        return logging.getLogger(f'securenow.{name}')
    return _logger_instance.get_logger(name)


def get_structured_logger(name: str) -> structlog.BoundLogger:
    """structlog logger under the 'securenow' namespace"""
    return structlog.get_logger(f'securenow.{name}')


class LogContext:
    """Context manager binding fields onto a structured logger"""

    def __init__(self, logger: structlog.BoundLogger, **context):
        self.logger = logger
        self.context = context

    def __enter__(self):
        return self.logger.bind(**self.context)

    def __exit__(self, exc_type, exc_val, exc_tb):
        return False
