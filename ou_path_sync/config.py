"""
Configuration loading and management for OU Path Sync.

This module handles loading configuration from YAML files and environment variables,
with validation and defaults.
"""

import os
import re
import yaml
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

# Downstream cloud attribute limit for extensionAttributeN values
DEFAULT_MAX_PATH_LENGTH = 448


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

    TARGET_ATTRIBUTE_PATTERN = re.compile(r'^extensionAttribute([1-9]|1[0-5])$', re.IGNORECASE)

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
            if current.get(key) is None:
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        ldap_config = self.config.get('ldap') or {}
        for field in ['server_url', 'bind_dn', 'bind_password']:
            if not ldap_config.get(field):
                errors.append(f"Missing required LDAP field: {field}")

        sync_config = self.config.get('sync') or {}

        target_attribute = sync_config.get('target_attribute')
        if target_attribute and not self.TARGET_ATTRIBUTE_PATTERN.match(str(target_attribute)):
            errors.append(f"sync.target_attribute must be extensionAttribute1-15, got: {target_attribute}")

        domains = sync_config.get('domains')
        if domains is not None and not isinstance(domains, list):
            errors.append("sync.domains must be a list of domain names")

        domain_controllers = sync_config.get('domain_controllers')
        if domain_controllers is not None:
            if not isinstance(domain_controllers, dict):
                errors.append("sync.domain_controllers must map domain names to lists of hosts")
            else:
                for domain, hosts in domain_controllers.items():
                    if not isinstance(hosts, list) or not hosts:
                        errors.append(f"sync.domain_controllers.{domain} must be a non-empty list of hosts")

        max_length = sync_config.get('max_path_length')
        if max_length is not None and (not isinstance(max_length, int) or max_length <= 0):
            errors.append(f"sync.max_path_length must be a positive integer, got: {max_length}")

        notifications = self.config.get('notifications') or {}
        if notifications.get('enable_email'):
            for field in ['smtp_server', 'email_from', 'email_to']:
                if not notifications.get(field):
                    errors.append(f"Missing notification field: {field}")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        # LDAP defaults
        ldap_defaults = {
            'base_dn': '',
            'start_tls': False,
            'verify_ssl': True,
            'connection_timeout': 10,
            'receive_timeout': 30,
            'page_size': 1000
        }
        ldap_config = self.config.setdefault('ldap', {})
        for key, value in ldap_defaults.items():
            ldap_config.setdefault(key, value)

        # Sync defaults
        sync_defaults = {
            'target_attribute': 'extensionAttribute15',
            'domains': [],
            'domain_controllers': {},
            'excluded_user_pattern': 'SystemMailbox*',
            'excluded_group_type': '2147483648',
            'truncate_path': False,
            'max_path_length': DEFAULT_MAX_PATH_LENGTH
        }
        if self.config.get('sync') is None:
            self.config['sync'] = {}
        sync_config = self.config['sync']
        for key, value in sync_defaults.items():
            if sync_config.get(key) is None:
                sync_config[key] = value

        # Logging defaults
        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7,
            'console_output': True,
            'console_level': 'INFO'
        }
        logging_config = self.config.setdefault('logging', {})
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        # Error handling defaults
        error_defaults = {
            'max_retries': 3,
            'retry_wait_seconds': 5
        }
        error_config = self.config.setdefault('error_handling', {})
        for key, value in error_defaults.items():
            error_config.setdefault(key, value)

        # Notification defaults
        notification_defaults = {
            'enable_email': False,
            'email_on_failure': True,
            'email_on_success': False,
            'smtp_port': 587,
            'smtp_tls': True
        }
        notification_config = self.config.setdefault('notifications', {})
        for key, value in notification_defaults.items():
            notification_config.setdefault(key, value)


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
