"""Tests for configuration loading and endpoint resolution."""

import os
import tempfile
import unittest
from dataclasses import FrozenInstanceError
from unittest.mock import Mock, patch

from pbi_local_mcp.config import ConfigManager, ServerConfig, parse_port
from pbi_local_mcp.exceptions import ConfigurationError
from pbi_local_mcp.models import EngineEndpoint


class TestEngineEndpoint(unittest.TestCase):
    """Endpoint validation."""

    def test_valid_endpoint(self):
        endpoint = EngineEndpoint(52184, "Model")
        self.assertEqual(endpoint.data_source, "localhost:52184")

    def test_port_range(self):
        for port in (0, -1, 65536, 70000):
            with self.assertRaises(ConfigurationError):
                EngineEndpoint(port, "Model")
        EngineEndpoint(1, "Model")
        EngineEndpoint(65535, "Model")

    def test_catalog_rules(self):
        for catalog in ("", "   ", "x" * 101, None):
            with self.assertRaises(ConfigurationError):
                EngineEndpoint(52184, catalog)
        EngineEndpoint(52184, "x" * 100)

    def test_endpoint_is_immutable(self):
        endpoint = EngineEndpoint(52184, "Model")
        with self.assertRaises(FrozenInstanceError):
            endpoint.port = 1


class TestResolveEndpoint(unittest.TestCase):
    """Precedence: arguments, then environment, then settings file."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.env_file = os.path.join(self.tmp.name, ".env")
        with open(self.env_file, "w", encoding="utf-8") as f:
            f.write("PBI_PORT=50000\nPBI_DB_ID=file-catalog\n")
        self.manager = ConfigManager(env_file=self.env_file)

    def tearDown(self):
        self.tmp.cleanup()

    def test_settings_file_only(self):
        endpoint = self.manager.resolve_endpoint(environ={})
        self.assertEqual(endpoint, EngineEndpoint(50000, "file-catalog"))

    def test_environment_beats_file(self):
        endpoint = self.manager.resolve_endpoint(environ={"PBI_PORT": "51000", "PBI_DB_ID": "env-catalog"})
        self.assertEqual(endpoint, EngineEndpoint(51000, "env-catalog"))

    def test_arguments_beat_environment(self):
        endpoint = self.manager.resolve_endpoint(
            port=52000, catalog="arg-catalog",
            environ={"PBI_PORT": "51000", "PBI_DB_ID": "env-catalog"},
        )
        self.assertEqual(endpoint, EngineEndpoint(52000, "arg-catalog"))

    def test_fields_resolve_independently(self):
        endpoint = self.manager.resolve_endpoint(port=52000, environ={})
        self.assertEqual(endpoint, EngineEndpoint(52000, "file-catalog"))

    def test_blank_values_are_ignored(self):
        endpoint = self.manager.resolve_endpoint(environ={"PBI_PORT": "  ", "PBI_DB_ID": ""})
        self.assertEqual(endpoint.port, 50000)

    def test_missing_values(self):
        manager = ConfigManager(env_file=os.path.join(self.tmp.name, "missing.env"))

        with self.assertRaisesRegex(ConfigurationError, "PBI_PORT not set"):
            manager.resolve_endpoint(environ={})
        with self.assertRaisesRegex(ConfigurationError, "PBI_DB_ID not set"):
            manager.resolve_endpoint(environ={"PBI_PORT": "50000"})

    def test_invalid_port(self):
        with self.assertRaises(ConfigurationError):
            self.manager.resolve_endpoint(environ={"PBI_PORT": "abc"})
        with self.assertRaises(ConfigurationError):
            self.manager.resolve_endpoint(port=70000, environ={})

    def test_catalog_resolver_used_only_without_catalog(self):
        resolver = Mock(return_value="discovered")
        manager = ConfigManager(env_file=os.path.join(self.tmp.name, "missing.env"))

        endpoint = manager.resolve_endpoint(port=52000, environ={}, catalog_resolver=resolver)
        self.assertEqual(endpoint.catalog, "discovered")
        resolver.assert_called_once_with(52000)

        resolver.reset_mock()
        self.manager.resolve_endpoint(environ={}, catalog_resolver=resolver)
        resolver.assert_not_called()

    def test_catalog_resolver_not_called_for_invalid_port(self):
        resolver = Mock(return_value="discovered")
        manager = ConfigManager(env_file=os.path.join(self.tmp.name, "missing.env"))

        with self.assertRaises(ConfigurationError):
            manager.resolve_endpoint(port=0, environ={}, catalog_resolver=resolver)
        resolver.assert_not_called()

    def test_parse_port(self):
        self.assertEqual(parse_port(" 123 "), 123)
        with self.assertRaises(ConfigurationError):
            parse_port(True)


class TestServerConfig(unittest.TestCase):

    def test_invalid_transport_defaults_to_stdio(self):
        config = ServerConfig(log_level="INFO", mcp_transport="carrier-pigeon")
        self.assertEqual(config.mcp_transport, "stdio")

    def test_invalid_timeout_defaults(self):
        config = ServerConfig(log_level="INFO", query_timeout=0)
        self.assertEqual(config.query_timeout, 60)

    def test_server_config_from_environment(self):
        env = {
            "LOG_LEVEL": "debug",
            "MCP_TRANSPORT": "HTTP",
            "MCP_SERVER_PORT": "9100",
            "QUERY_TIMEOUT": "15",
            "ADOMD_LIBRARY_PATH": "/opt/adomd",
        }
        with tempfile.TemporaryDirectory() as tmp, patch.dict(os.environ, env, clear=True):
            config = ConfigManager(env_file=os.path.join(tmp, "none.env")).get_server_config()

        self.assertEqual(config.log_level, "DEBUG")
        self.assertEqual(config.mcp_transport, "http")
        self.assertEqual(config.mcp_server_port, 9100)
        self.assertEqual(config.query_timeout, 15)
        self.assertEqual(config.adomd_library_path, "/opt/adomd")

    def test_non_numeric_setting(self):
        with tempfile.TemporaryDirectory() as tmp, patch.dict(os.environ, {"QUERY_TIMEOUT": "soon"}, clear=True):
            with self.assertRaises(ConfigurationError):
                ConfigManager(env_file=os.path.join(tmp, "none.env")).get_server_config()


if __name__ == "__main__":
    unittest.main()
