#!/usr/bin/env python3
"""
Unit tests for configuration module.

Covers loading, validation, environment variable overrides and defaults.
"""

import os
import sys
import shutil
import tempfile
import yaml
import unittest
from unittest.mock import patch

# Add the project directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ou_path_sync.config import ConfigLoader, ConfigurationError, load_config


class TestConfigLoader(unittest.TestCase):
    """Test cases for ConfigLoader class."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = os.path.join(self.temp_dir, 'config.yaml')
        self.valid_config = {
            'ldap': {
                'server_url': 'ldaps://dc01.contoso.com',
                'bind_dn': 'CN=svc,OU=Service,DC=contoso,DC=com',
                'bind_password': 'password'
            },
            'sync': {
                'target_attribute': 'extensionAttribute10',
                'domains': ['contoso.com']
            }
        }

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write(self, config):
        with open(self.config_path, 'w') as f:
            yaml.dump(config, f)

    def test_load_valid_config(self):
        """Test loading a valid configuration applies defaults."""
        self._write(self.valid_config)

        config = load_config(self.config_path)

        self.assertEqual(config['sync']['target_attribute'], 'extensionAttribute10')
        self.assertEqual(config['sync']['domains'], ['contoso.com'])
        self.assertEqual(config['sync']['excluded_user_pattern'], 'SystemMailbox*')
        self.assertEqual(config['sync']['excluded_group_type'], '2147483648')
        self.assertFalse(config['sync']['truncate_path'])
        self.assertEqual(config['sync']['max_path_length'], 448)
        self.assertEqual(config['ldap']['page_size'], 1000)
        self.assertEqual(config['logging']['level'], 'INFO')
        self.assertEqual(config['error_handling']['max_retries'], 3)
        self.assertFalse(config['notifications']['enable_email'])

    def test_default_target_attribute(self):
        """Test the target attribute defaults when sync section is missing."""
        del self.valid_config['sync']
        self._write(self.valid_config)

        config = load_config(self.config_path)

        self.assertEqual(config['sync']['target_attribute'], 'extensionAttribute15')
        self.assertEqual(config['sync']['domains'], [])

    def test_missing_file(self):
        """Test error when config file does not exist."""
        with self.assertRaises(ConfigurationError) as cm:
            load_config(os.path.join(self.temp_dir, 'missing.yaml'))
        self.assertIn('not found', str(cm.exception))

    def test_invalid_yaml(self):
        """Test error on malformed YAML."""
        with open(self.config_path, 'w') as f:
            f.write("ldap: [unclosed\n")

        with self.assertRaises(ConfigurationError) as cm:
            load_config(self.config_path)
        self.assertIn('Invalid YAML', str(cm.exception))

    def test_missing_ldap_fields(self):
        """Test validation of required LDAP fields."""
        self._write({'ldap': {'server_url': 'ldap://dc01'}})

        with self.assertRaises(ConfigurationError) as cm:
            load_config(self.config_path)
        message = str(cm.exception)
        self.assertIn('bind_dn', message)
        self.assertIn('bind_password', message)

    def test_invalid_target_attribute(self):
        """Test that only extensionAttribute1-15 are accepted."""
        self.valid_config['sync']['target_attribute'] = 'description'
        self._write(self.valid_config)

        with self.assertRaises(ConfigurationError) as cm:
            load_config(self.config_path)
        self.assertIn('target_attribute', str(cm.exception))

    def test_target_attribute_out_of_range(self):
        self.valid_config['sync']['target_attribute'] = 'extensionAttribute16'
        self._write(self.valid_config)

        with self.assertRaises(ConfigurationError):
            load_config(self.config_path)

    def test_domains_must_be_list(self):
        self.valid_config['sync']['domains'] = 'contoso.com'
        self._write(self.valid_config)

        with self.assertRaises(ConfigurationError) as cm:
            load_config(self.config_path)
        self.assertIn('sync.domains', str(cm.exception))

    def test_domain_controllers_validation(self):
        self.valid_config['sync']['domain_controllers'] = {'contoso.com': []}
        self._write(self.valid_config)

        with self.assertRaises(ConfigurationError) as cm:
            load_config(self.config_path)
        self.assertIn('domain_controllers', str(cm.exception))

    def test_invalid_max_path_length(self):
        self.valid_config['sync']['max_path_length'] = 0
        self._write(self.valid_config)

        with self.assertRaises(ConfigurationError):
            load_config(self.config_path)

    def test_email_requires_smtp_settings(self):
        self.valid_config['notifications'] = {'enable_email': True}
        self._write(self.valid_config)

        with self.assertRaises(ConfigurationError) as cm:
            load_config(self.config_path)
        self.assertIn('smtp_server', str(cm.exception))

    def test_bind_password_env_override(self):
        """Test LDAP_BIND_PASSWORD overrides the file and satisfies validation."""
        del self.valid_config['ldap']['bind_password']
        self._write(self.valid_config)

        with patch.dict(os.environ, {'LDAP_BIND_PASSWORD': 'from-env'}):
            config = load_config(self.config_path)

        self.assertEqual(config['ldap']['bind_password'], 'from-env')

    def test_config_path_from_env(self):
        """Test CONFIG_PATH is used when no path is given."""
        self._write(self.valid_config)

        with patch.dict(os.environ, {'CONFIG_PATH': self.config_path}):
            loader = ConfigLoader()

        self.assertEqual(loader.config_path, self.config_path)

    def test_empty_file(self):
        with open(self.config_path, 'w') as f:
            f.write("")

        with self.assertRaises(ConfigurationError):
            load_config(self.config_path)


if __name__ == '__main__':
    unittest.main()
