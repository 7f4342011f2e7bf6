"""
Configuration loading and management for Minutes Sync.

This module handles loading configuration from YAML files and environment variables,
with validation and defaults.
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'ldap.bind_password': 'LDAP_BIND_PASSWORD',
        'notifications.smtp_password': 'SMTP_PASSWORD',
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file. If None, uses CONFIG_PATH env var or 'config.yaml'
        """
        self.config_path = config_path or os.getenv('CONFIG_PATH', 'config.yaml')
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file and apply environment overrides.

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If config file not found or validation fails
        """
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self.config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self.config_path}")

        self._apply_env_overrides()
        self._validate()
        self._apply_defaults()

        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def _apply_env_overrides(self):
        """Apply environment variable overrides for sensitive fields."""
        for config_key, env_var in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied environment override for {config_key}")

    def _set_nested_value(self, config: Dict, key_path: str, value: Any):
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        ldap_config = self.config.get('ldap') or {}
        for field in ('server_url', 'server_dn'):
            if not ldap_config.get(field):
                errors.append(f"Missing required LDAP field: {field}")

        whitelisted_fields = ldap_config.get('whitelisted_fields')
        if whitelisted_fields is not None and not isinstance(whitelisted_fields, list):
            errors.append("ldap.whitelisted_fields must be a list")

        property_map = ldap_config.get('property_map')
        if property_map is not None and not isinstance(property_map, dict):
            errors.append("ldap.property_map must be a mapping")

        inactive_users = ldap_config.get('inactive_users')
        if inactive_users is not None:
            if not isinstance(inactive_users, dict):
                errors.append("ldap.inactive_users must be a mapping")
            else:
                strategy = inactive_users.get('strategy')
                if strategy is not None and not isinstance(strategy, str):
                    errors.append("ldap.inactive_users.strategy must be a string")
                properties = inactive_users.get('properties')
                if strategy == 'property' and not isinstance(properties, dict):
                    errors.append("ldap.inactive_users.properties must be a mapping "
                                  "when strategy is 'property'")

        notifications = self.config.get('notifications')
        if notifications is not None and not isinstance(notifications, dict):
            errors.append("notifications must be a mapping")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        ldap_defaults = {
            'search_filter': '',
            'property_map': {'username': 'cn'},
            'whitelisted_fields': [],
            'inactive_users': {'strategy': 'none'},
            'page_size': 1000
        }
        ldap_config = self.config['ldap'] = self.config.get('ldap') or {}
        for key, value in ldap_defaults.items():
            # Empty YAML keys load as None
            if ldap_config.get(key) is None:
                ldap_config[key] = value
        ldap_config['property_map'].setdefault('username', 'cn')

        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7
        }
        logging_config = self.config['logging'] = self.config.get('logging') or {}
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        notification_defaults = {
            'enable_email': True,
            'email_on_failure': True,
            'smtp_port': 587,
            'smtp_tls': True
        }
        notification_config = self.config['notifications'] = self.config.get('notifications') or {}
        for key, value in notification_defaults.items():
            notification_config.setdefault(key, value)

        minutes_config = self.config['minutes'] = self.config.get('minutes') or {}
        minutes_config.setdefault('store_dir', 'minutes')


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file

    Returns:
        Loaded configuration dictionary
    """
    loader = ConfigLoader(config_path)
    return loader.load()
