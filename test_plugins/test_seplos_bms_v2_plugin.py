#!/usr/bin/env python3
"""
Standalone test suite for the Seplos BMS V2 Plugin.

This test file validates the plugin functionality including:
- Plugin initialization and configuration
- Connection handling for serial and TCP
- Retry behaviour on communication and frame errors
- Data standardization and sign conventions
- Alert categorization

Usage:
    python test_plugins/test_seplos_bms_v2_plugin.py
"""

import sys
import os
import unittest
import logging
from unittest.mock import Mock, patch

from serial.serialutil import SerialException

# Add the project root to the Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from plugins.battery.seplos_bms_v2_plugin import SeplosBMSV2, system_state_text
from plugins.battery.seplos_v2_errors import (
    FrameChecksumMismatchError,
    NonNormalStatusError,
    TransportReadError,
)
from plugins.battery.seplos_v2_transport import SerialChannel, TcpChannel
from plugins.plugin_interface import StandardDataKeys
from test_plugins.seplos_v2_frames import make_snapshot, telecommand_payload, telemetry_payload

PLUGIN_MODULE = "plugins.battery.seplos_bms_v2_plugin"


class TestSeplosBMSV2Config(unittest.TestCase):
    """Configuration parsing and validation."""

    def setUp(self):
        self.logger = logging.getLogger("test_seplos_bms_v2")

    def test_serial_defaults(self):
        plugin = SeplosBMSV2("bms", {"seplos_serial_port": "/dev/ttyUSB3"}, self.logger)
        self.assertEqual(plugin.connection_type, "serial")
        self.assertEqual(plugin.baud_rate, 19200)
        self.assertEqual(plugin.controller_address, 0)
        self.assertEqual(plugin.pack_number, 1)
        self.assertEqual(plugin.max_retries, 2)
        self.assertEqual(plugin.name, "seplos_bms_v2")
        self.assertEqual(plugin.pretty_name, "Seplos BMS V2 (Serial)")
        self.assertEqual(plugin.bus_name, "/dev/ttyUSB3")
        self.assertIsInstance(plugin._create_channel(), SerialChannel)

    def test_hex_address_and_inline_comments(self):
        config = {
            "seplos_serial_port": "/dev/ttyUSB0 ; adapter",
            "seplos_controller_address": "0x02",
            "seplos_pack_number": "3 ; third pack",
            "seplos_timeout": "1.5",
        }
        plugin = SeplosBMSV2("bms", config, self.logger)
        self.assertEqual(plugin.serial_port_name, "/dev/ttyUSB0")
        self.assertEqual(plugin.controller_address, 2)
        self.assertEqual(plugin.pack_number, 3)
        self.assertEqual(plugin.timeout, 1.5)

    def test_tcp(self):
        config = {"seplos_connection_type": "TCP", "seplos_tcp_host": "10.0.0.5", "seplos_tcp_port": 4196}
        plugin = SeplosBMSV2("bms", config, self.logger)
        self.assertEqual(plugin.connection_type, "tcp")
        self.assertEqual(plugin.bus_name, "10.0.0.5:4196")
        self.assertIsInstance(plugin._create_channel(), TcpChannel)

    def test_tcp_without_host_disables_plugin(self):
        plugin = SeplosBMSV2("bms", {"seplos_connection_type": "tcp"}, self.logger)
        self.assertEqual(plugin.connection_type, "disabled")
        self.assertEqual(plugin.pretty_name, "Seplos BMS V2 (Config Error)")
        self.assertFalse(plugin.connect())
        self.assertIn("config error", plugin.last_error_message)

    def test_unknown_connection_type_disables_plugin(self):
        plugin = SeplosBMSV2("bms", {"seplos_connection_type": "modbus"}, self.logger)
        self.assertEqual(plugin.connection_type, "disabled")

    def test_configurable_params(self):
        names = [p["name"] for p in SeplosBMSV2.get_configurable_params()]
        self.assertIn("seplos_controller_address", names)
        self.assertIn("seplos_pack_number", names)
        self.assertIn("seplos_inter_command_delay_ms", names)
        self.assertEqual(len(names), len(set(names)))


class TestSeplosBMSV2Connection(unittest.TestCase):

    def setUp(self):
        self.logger = logging.getLogger("test_seplos_bms_v2")
        self.plugin = SeplosBMSV2("bms", {"seplos_serial_port": "/dev/ttyUSB0"}, self.logger)

    @patch(f"{PLUGIN_MODULE}.SerialChannel.open", side_effect=SerialException("could not open port"))
    def test_serial_open_failure(self, mock_open):
        self.assertFalse(self.plugin.connect())
        self.assertFalse(self.plugin.is_connected)
        self.assertIn("could not open port", self.plugin.last_error_message)

    @patch(f"{PLUGIN_MODULE}.SerialChannel.open")
    def test_connect_and_disconnect(self, mock_open):
        self.assertTrue(self.plugin.connect())
        self.assertTrue(self.plugin.is_connected)
        self.assertTrue(self.plugin.connect())
        mock_open.assert_called_once()
        self.plugin.disconnect()
        self.assertFalse(self.plugin.is_connected)
        self.assertIsNone(self.plugin.client)

    @patch(f"{PLUGIN_MODULE}.check_tcp_port", return_value=(False, None, "Connection refused"))
    def test_tcp_precheck_failure(self, mock_check):
        plugin = SeplosBMSV2("bms", {"seplos_connection_type": "tcp", "seplos_tcp_host": "10.0.0.5"}, self.logger)
        self.assertFalse(plugin.connect())
        self.assertIn("unreachable", plugin.last_error_message)
        mock_check.assert_called_once()


class TestSeplosBMSV2Reads(unittest.TestCase):
    """Retry behaviour and data standardization, with the monitor mocked out."""

    def setUp(self):
        self.logger = logging.getLogger("test_seplos_bms_v2")
        self.plugin = SeplosBMSV2("bms", {"seplos_serial_port": "/dev/ttyUSB0", "seplos_max_retries": "2"}, self.logger)
        self.plugin.client = Mock()
        self.plugin._is_connected_flag = True
        self.snapshot = make_snapshot(telemetry=telemetry_payload(current_raw=0x8064, total_voltage=52.00))

        sleep_patcher = patch(f"{PLUGIN_MODULE}.time.sleep")
        self.mock_sleep = sleep_patcher.start()
        self.addCleanup(sleep_patcher.stop)

    @patch(f"{PLUGIN_MODULE}.get_monitor_snapshot")
    def test_retry_after_frame_error(self, mock_get):
        mock_get.side_effect = [FrameChecksumMismatchError("Checksum mismatch"), self.snapshot]
        self.assertIs(self.plugin.read_snapshot(), self.snapshot)
        self.assertEqual(mock_get.call_count, 2)
        self.assertIsNone(self.plugin.last_error_message)
        self.assertIs(self.plugin.latest_snapshot, self.snapshot)
        self.mock_sleep.assert_called_once()

    @patch(f"{PLUGIN_MODULE}.get_monitor_snapshot")
    def test_transport_error_reconnects(self, mock_get):
        mock_get.side_effect = [TransportReadError("Timed out"), self.snapshot]
        channel = self.plugin.client
        with patch.object(self.plugin, "_create_channel") as mock_create:
            self.assertIs(self.plugin.read_snapshot(), self.snapshot)
        channel.close.assert_called_once()
        mock_create.return_value.open.assert_called_once()

    @patch(f"{PLUGIN_MODULE}.get_monitor_snapshot")
    def test_all_attempts_fail(self, mock_get):
        mock_get.side_effect = NonNormalStatusError(0x02, 0x42)
        self.assertIsNone(self.plugin.read_snapshot())
        self.assertEqual(mock_get.call_count, 3)
        self.assertIn("Checksum error", self.plugin.last_error_message)
        self.assertIsNone(self.plugin.read_dynamic_data())

    def test_standardize_flips_current_sign(self):
        data = self.plugin.standardize_snapshot(self.snapshot)
        # BMS: -1 A (discharging); application: +1 A
        self.assertEqual(data[StandardDataKeys.BATTERY_CURRENT_AMPS], 1.0)
        self.assertEqual(data[StandardDataKeys.BATTERY_POWER_WATTS], 52.0)
        self.assertEqual(data[StandardDataKeys.BATTERY_VOLTAGE_VOLTS], 52.0)
        self.assertEqual(data[StandardDataKeys.BATTERY_STATE_OF_CHARGE_PERCENT], 80.0)
        self.assertEqual(data[StandardDataKeys.BMS_CELL_COUNT], 16)
        self.assertEqual(data[StandardDataKeys.BMS_CELL_VOLTAGE_DELTA_VOLTS], 0.0)
        self.assertEqual(data[StandardDataKeys.BMS_CELLS_BALANCING_TEXT], "None")
        self.assertEqual(data[StandardDataKeys.BMS_FAULT_SUMMARY_TEXT], "Normal")
        self.assertEqual(data[StandardDataKeys.BATTERY_STATUS_TEXT], "Charging")
        self.assertTrue(data[StandardDataKeys.BMS_CHARGE_FET_ON])
        self.assertFalse(data[StandardDataKeys.BMS_HEATING_ON])

    def test_standardize_cells(self):
        cells = [3.300, 3.280, 3.350, 3.300] + [0.0] * 12
        snapshot = make_snapshot(
            telemetry=telemetry_payload(cells=cells, number_of_cells=4),
            telecommand=telecommand_payload(equalization_state=0x0004, disconnection_state=0x0008),
        )
        data = self.plugin.standardize_snapshot(snapshot)
        self.assertEqual(data[StandardDataKeys.BMS_CELL_VOLTAGES_LIST], [3.3, 3.28, 3.35, 3.3])
        self.assertEqual(data[StandardDataKeys.BMS_CELL_WITH_MIN_VOLTAGE_NUMBER], 2)
        self.assertEqual(data[StandardDataKeys.BMS_CELL_WITH_MAX_VOLTAGE_NUMBER], 3)
        self.assertEqual(data[StandardDataKeys.BMS_CELL_VOLTAGE_DELTA_VOLTS], 0.07)
        self.assertEqual(data[StandardDataKeys.BMS_CELLS_BALANCING_TEXT], "3")
        self.assertEqual(data[StandardDataKeys.BMS_CELLS_DISCONNECTED_TEXT], "4")

    def test_alarms_and_warnings(self):
        # Event 2: cell overvoltage protection; event 6: SOC low alarm; event 7: auto charging wait
        snapshot = make_snapshot(telecommand=telecommand_payload(
            alarm_events=(0, 0x02, 0, 0, 0, 0x04, 0x10, 0), voltage_alarm=0x02))
        data = self.plugin.standardize_snapshot(snapshot)
        self.assertEqual(data[StandardDataKeys.BMS_ACTIVE_ALARMS_LIST], [
            "Cell overvoltage protection",
            "Total battery voltage: overcharged: voltage has exceeded the upper limit.",
        ])
        self.assertEqual(data[StandardDataKeys.BMS_ACTIVE_WARNINGS_LIST], ["SOC low alarm"])
        self.assertEqual(data[StandardDataKeys.BMS_FAULT_SUMMARY_TEXT], "Cell overvoltage protection")
        self.assertTrue(data[StandardDataKeys.BMS_HAS_ALARM])

        alerts = self.plugin.build_categorized_alerts(data)
        self.assertIn("ALARM: Cell overvoltage protection", alerts)
        self.assertIn("WARN: SOC low alarm", alerts)

    @patch(f"{PLUGIN_MODULE}.get_monitor_snapshot")
    def test_read_dynamic_data(self, mock_get):
        mock_get.return_value = self.snapshot
        data = self.plugin.read_dynamic_data()
        self.assertEqual(data[StandardDataKeys.OPERATIONAL_CATEGORIZED_ALERTS_DICT], {"bms": ["OK"]})
        self.assertIsInstance(data[StandardDataKeys.PLUGIN_DATA_TIMESTAMP_MS_UTC], int)
        self.assertEqual(data[StandardDataKeys.CORE_PLUGIN_CONNECTION_STATUS], "connected")

    @patch(f"{PLUGIN_MODULE}.get_protocol_version", return_value=2.3)
    def test_static_data(self, mock_version):
        data = self.plugin.read_static_data()
        self.assertEqual(data[StandardDataKeys.STATIC_DEVICE_CATEGORY], "bms")
        self.assertEqual(data[StandardDataKeys.STATIC_COMMUNICATION_PROTOCOL_VERSION], "2.3")
        self.assertEqual(data[StandardDataKeys.STATIC_BATTERY_MANUFACTURER], "Seplos")
        self.assertEqual(data[StandardDataKeys.STATIC_BATTERY_SERIAL_NUMBER], "address-0x00-pack-1")
        self.plugin.read_static_data()
        mock_version.assert_called_once()

    @patch(f"{PLUGIN_MODULE}.get_protocol_version", side_effect=TransportReadError("Timed out"))
    def test_protocol_version_failure(self, mock_version):
        self.assertIsNone(self.plugin.read_protocol_version())
        self.assertIn("Timed out", self.plugin.last_error_message)
        self.assertFalse(self.plugin.is_connected)


class TestSystemStateText(unittest.TestCase):

    def test_states(self):
        self.assertEqual(system_state_text(make_snapshot(telecommand=telecommand_payload(system_state=0x00))), "Idle")
        self.assertEqual(system_state_text(make_snapshot(telecommand=telecommand_payload(system_state=0x05))),
                         "Discharging, Floating charge")


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING)
    unittest.main()
