#!/usr/bin/env python3
"""
Unit tests for configuration loading, validation and command line overrides.

Usage:
    python test_plugins/test_core_config.py
"""

import argparse
import io
import sys
import os
import shutil
import tempfile
import textwrap
import unittest
from unittest.mock import MagicMock, patch

# Add the project root to the Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.app_state import AppState
from core.config_loader import build_plugin_config, load_configuration, validate_core_config
from main import apply_cli_overrides, build_arg_parser, poll_once, split_host_port
from utils.lock import acquire_lock, cleanup_lock_file, lock_file_path_for
from test_plugins.seplos_v2_frames import make_snapshot

CONFIG_KEYS = (
    "POLL_INTERVAL", "OUTPUT_FORMAT", "LONGER_REPORT", "LOG_LEVEL", "LOG_TO_FILE",
    "CONNECTION_TYPE", "SERIAL_PORT", "BAUD_RATE", "TCP_HOST", "TCP_PORT", "TIMEOUT",
    "CONTROLLER_ADDRESS", "PACK_NUMBER", "MAX_RETRIES", "INTER_COMMAND_DELAY_MS",
)

SAMPLE_CONFIG = textwrap.dedent("""\
    [GENERAL]
    POLL_INTERVAL = 10
    OUTPUT_FORMAT = HTML
    LONGER_REPORT = yes

    [LOGGING]
    LOG_LEVEL = debug

    [SEPLOS]
    CONNECTION_TYPE = serial
    SERIAL_PORT = /dev/ttyUSB1 ; RS-485 adapter
    BAUD_RATE = 9600
    CONTROLLER_ADDRESS = 0x03
    PACK_NUMBER = 2
    MAX_RETRIES = not-a-number
    seplos_manufacturer = Acme Batteries
""")


class ConfigTestCase(unittest.TestCase):

    def setUp(self):
        env_patcher = patch.dict(os.environ)
        env_patcher.start()
        self.addCleanup(env_patcher.stop)
        for key in CONFIG_KEYS:
            os.environ.pop(key, None)

        self.temp_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.temp_dir, True)
        self.config_path = os.path.join(self.temp_dir, "config.ini")
        with open(self.config_path, "w", encoding="utf-8") as f:
            f.write(SAMPLE_CONFIG)
        self.app_state = AppState()


class TestLoadConfiguration(ConfigTestCase):

    def test_values_from_file(self):
        load_configuration(self.config_path, self.app_state)
        self.assertEqual(self.app_state.poll_interval, 10.0)
        self.assertEqual(self.app_state.output_format, "html")
        self.assertTrue(self.app_state.longer_report)
        self.assertEqual(self.app_state.log_level, "DEBUG")
        self.assertEqual(self.app_state.serial_port, "/dev/ttyUSB1")
        self.assertEqual(self.app_state.baud_rate, 9600)
        self.assertEqual(self.app_state.controller_address, 3)
        self.assertEqual(self.app_state.pack_number, 2)

    def test_bad_value_falls_back_to_default(self):
        load_configuration(self.config_path, self.app_state)
        self.assertEqual(self.app_state.max_retries, 2)

    def test_environment_overrides_file(self):
        os.environ["SERIAL_PORT"] = "/dev/ttyS9"
        os.environ["CONTROLLER_ADDRESS"] = "0x10"
        load_configuration(self.config_path, self.app_state)
        self.assertEqual(self.app_state.serial_port, "/dev/ttyS9")
        self.assertEqual(self.app_state.controller_address, 16)

    def test_missing_file_uses_defaults(self):
        load_configuration(os.path.join(self.temp_dir, "absent.ini"), self.app_state)
        self.assertEqual(self.app_state.serial_port, "/dev/ttyUSB0")
        self.assertEqual(self.app_state.baud_rate, 19200)
        self.assertEqual(self.app_state.output_format, "text")
        self.assertEqual(self.app_state.poll_interval, 0)

    def test_invalid_log_level(self):
        os.environ["LOG_LEVEL"] = "chatty"
        load_configuration(self.config_path, self.app_state)
        self.assertEqual(self.app_state.log_level, "INFO")

    def test_build_plugin_config(self):
        load_configuration(self.config_path, self.app_state)
        plugin_config = build_plugin_config(self.app_state)
        self.assertEqual(plugin_config["seplos_serial_port"], "/dev/ttyUSB1")
        self.assertEqual(plugin_config["seplos_controller_address"], 3)
        self.assertEqual(plugin_config["seplos_manufacturer"], "Acme Batteries")
        self.assertNotIn("seplos_tcp_host", plugin_config)


class TestValidateCoreConfig(ConfigTestCase):

    def test_valid_defaults(self):
        validate_core_config(self.app_state)

    def test_address_out_of_range(self):
        self.app_state.controller_address = 0x100
        with self.assertRaises(SystemExit):
            validate_core_config(self.app_state)

    def test_tcp_requires_host(self):
        self.app_state.connection_type = "tcp"
        with self.assertRaises(SystemExit):
            validate_core_config(self.app_state)

    def test_unknown_output_format(self):
        self.app_state.output_format = "xml"
        with self.assertRaises(SystemExit):
            validate_core_config(self.app_state)

    def test_timeout_must_be_positive(self):
        for timeout in (0, -1.5):
            self.app_state.timeout = timeout
            with self.assertRaises(SystemExit):
                validate_core_config(self.app_state)

    def test_timeout_from_file_is_validated(self):
        os.environ["TIMEOUT"] = "0"
        load_configuration(self.config_path, self.app_state)
        self.assertEqual(self.app_state.timeout, 0.0)
        with self.assertRaises(SystemExit):
            validate_core_config(self.app_state)


class TestCommandLine(ConfigTestCase):

    def test_split_host_port(self):
        self.assertEqual(split_host_port("10.0.0.5"), ("10.0.0.5", 8888))
        self.assertEqual(split_host_port("10.0.0.5:4196"), ("10.0.0.5", 4196))
        self.assertEqual(split_host_port("[fe80::1]:4196"), ("fe80::1", 4196))
        self.assertEqual(split_host_port("[::1]"), ("::1", 8888))
        self.assertEqual(split_host_port("::1"), ("::1", 8888))

    def test_split_host_port_rejects_bad_values(self):
        for value in ("bms.local:abc", "bms.local:0", "bms.local:70000", ":23", "[::1", "[::1]x"):
            with self.assertRaises(argparse.ArgumentTypeError):
                split_host_port(value)

    def test_bad_tcp_port_is_a_usage_error(self):
        with self.assertRaises(SystemExit) as cm, patch("sys.stderr"):
            build_arg_parser().parse_args(["--tcp", "bms.local:abc"])
        self.assertEqual(cm.exception.code, 2)

    def test_overrides(self):
        load_configuration(self.config_path, self.app_state)
        args = build_arg_parser().parse_args(["--tcp", "bms.local:23", "-a", "0x01", "-p", "4", "-f", "json", "-q"])
        apply_cli_overrides(args, self.app_state)
        self.assertEqual(self.app_state.connection_type, "tcp")
        self.assertEqual((self.app_state.tcp_host, self.app_state.tcp_port), ("bms.local", 23))
        self.assertEqual(self.app_state.controller_address, 1)
        self.assertEqual(self.app_state.pack_number, 4)
        self.assertEqual(self.app_state.output_format, "json")
        self.assertEqual(self.app_state.log_level, "ERROR")
        self.assertTrue(self.app_state.longer_report)

    def test_device_and_tcp_are_exclusive(self):
        with self.assertRaises(SystemExit), patch("sys.stderr"):
            build_arg_parser().parse_args(["-d", "/dev/ttyUSB0", "--tcp", "bms.local"])


class TestPollOnce(ConfigTestCase):

    def test_successful_read_prints_report(self):
        plugin = MagicMock()
        plugin.read_dynamic_data.return_value = {}
        plugin.latest_snapshot = make_snapshot(address=0x0A, pack=0x02)
        self.app_state.consecutive_failures = 3
        with patch("sys.stdout", new_callable=io.StringIO) as stdout:
            self.assertTrue(poll_once(plugin, self.app_state))
        self.assertTrue(stdout.getvalue().startswith("Controller a, battery pack 2:"))
        self.assertEqual(self.app_state.consecutive_failures, 0)

    def test_failed_read_counts_failure(self):
        plugin = MagicMock()
        plugin.read_dynamic_data.return_value = None
        plugin.last_error_message = "Timed out reading /dev/ttyUSB0"
        with patch("sys.stderr", new_callable=io.StringIO) as stderr:
            self.assertFalse(poll_once(plugin, self.app_state))
        self.assertIn("Timed out reading /dev/ttyUSB0", stderr.getvalue())
        self.assertEqual(self.app_state.consecutive_failures, 1)


class TestBusLock(ConfigTestCase):

    def test_lock_path_is_per_bus(self):
        path = lock_file_path_for("/dev/ttyUSB0", "seplos_monitor", self.temp_dir)
        self.assertEqual(path, os.path.join(self.temp_dir, "seplos_monitor_dev_ttyUSB0.lock"))
        self.assertNotEqual(path, lock_file_path_for("10.0.0.5:8888", "seplos_monitor", self.temp_dir))

    def test_acquire_and_cleanup(self):
        path = lock_file_path_for("/dev/ttyUSB0", "seplos_monitor", self.temp_dir)
        self.assertTrue(acquire_lock(path))
        with open(path, encoding="utf-8") as f:
            self.assertEqual(f.read(), str(os.getpid()))
        cleanup_lock_file()
        self.assertFalse(os.path.exists(path))

    def test_unwritable_location(self):
        self.assertFalse(acquire_lock(os.path.join(self.temp_dir, "missing", "x.lock")))


if __name__ == "__main__":
    unittest.main()
