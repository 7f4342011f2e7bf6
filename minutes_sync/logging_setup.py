"""
Logging setup for Minutes Sync.

Configures the root logger with a (optionally rotating) log file and a console
handler, both passing through a filter that masks credentials.
"""

import os
import re
import logging
import logging.handlers
from typing import Dict, Any, Optional


class SensitiveDataFilter(logging.Filter):
    """Filter to scrub sensitive data from log messages."""

    SENSITIVE_KEYWORDS = [
        'password', 'bind_password', 'smtp_password', 'token', 'secret',
        'credential', 'pwd', 'api_key', 'access_token'
    ]

    _ASSIGNMENT = re.compile(
        rf"\b({'|'.join(SENSITIVE_KEYWORDS)})(\s*=\s*)[^\s,}}\]]+", re.IGNORECASE)
    _JSON_QUOTED = re.compile(
        rf"(\"(?:{'|'.join(SENSITIVE_KEYWORDS)})\"\s*:\s*\")[^\"]*(\")", re.IGNORECASE)
    _JSON_BARE = re.compile(
        rf"(\"(?:{'|'.join(SENSITIVE_KEYWORDS)})\"\s*:\s*)[^\",}}\s]+", re.IGNORECASE)
    _DICT_REPR = re.compile(
        rf"('(?:{'|'.join(SENSITIVE_KEYWORDS)})'\s*:\s*')[^']*(')", re.IGNORECASE)

    def filter(self, record):
        """Mask sensitive values in the formatted message."""
        msg = record.getMessage()
        masked = self._ASSIGNMENT.sub(r'\1\2****', msg)
        masked = self._JSON_QUOTED.sub(r'\1****\2', masked)
        masked = self._JSON_BARE.sub(r'\1****', masked)
        masked = self._DICT_REPR.sub(r'\1****\2', masked)

        if masked != msg:
            record.msg = masked
            record.args = None
        return True


class LoggingManager:
    """
    Configures logging once per process.

    Log files go to ``<log_dir>/app.log``; rotation ``daily``/``midnight``
    rotates at midnight and keeps ``retention_days`` backups.
    """

    def __init__(self):
        self.configured = False
        self.log_dir = None
        self.retention_days = 7

    def setup_logging(self, config: Optional[Dict[str, Any]]) -> None:
        """
        Set up logging based on configuration.

        Args:
            config: Logging configuration dictionary
        """
        if self.configured:
            return

        logging_config = config or {}

        log_level = str(logging_config.get('level', 'INFO')).upper()
        self.log_dir = logging_config.get('log_dir', 'logs')
        rotation = str(logging_config.get('rotation', 'daily'))
        self.retention_days = logging_config.get('retention_days', 7)
        console_enabled = logging_config.get('console_output', True)
        console_level = str(logging_config.get('console_level', 'WARNING')).upper()

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, log_level, logging.INFO))
        root_logger.handlers.clear()

        sensitive_filter = SensitiveDataFilter()

        if self.log_dir:
            os.makedirs(self.log_dir, exist_ok=True)
            file_handler = self._create_file_handler(rotation)
            file_handler.setLevel(getattr(logging, log_level, logging.INFO))
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            ))
            file_handler.addFilter(sensitive_filter)
            root_logger.addHandler(file_handler)

        if console_enabled:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(getattr(logging, console_level, logging.WARNING))
            console_handler.setFormatter(logging.Formatter(
                '%(asctime)s [%(levelname)s] %(message)s',
                datefmt='%H:%M:%S'
            ))
            console_handler.addFilter(sensitive_filter)
            root_logger.addHandler(console_handler)

        self.configured = True

        logger = logging.getLogger(__name__)
        logger.info(f"Logging configured: level={log_level}, dir={self.log_dir}, "
                    f"retention={self.retention_days} days, console={console_enabled}")

    def _create_file_handler(self, rotation: str) -> logging.Handler:
        log_file = os.path.join(self.log_dir, 'app.log')

        if rotation.lower() in ['daily', 'midnight']:
            handler = logging.handlers.TimedRotatingFileHandler(
                filename=log_file,
                when='midnight',
                interval=1,
                backupCount=self.retention_days,
                encoding='utf-8'
            )
            handler.suffix = '%Y-%m-%d'
        else:
            handler = logging.FileHandler(log_file, encoding='utf-8')

        return handler


# Global logging manager instance
_logging_manager = LoggingManager()


def setup_logging(config: Optional[Dict[str, Any]]) -> None:
    """
    Convenience function to set up logging.

    Args:
        config: Logging configuration dictionary
    """
    _logging_manager.setup_logging(config)
