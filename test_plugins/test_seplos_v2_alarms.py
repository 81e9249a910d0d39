#!/usr/bin/env python3
"""
Unit tests for Seplos V2 alarm classification and alarm text.

Usage:
    python test_plugins/test_seplos_v2_alarms.py
"""

import sys
import os
import unittest
from dataclasses import replace

# Add the project root to the Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from plugins.battery.seplos_bms_v2_constants import BIT_ALARMS, NUMBER_OF_BIT_ALARMS, bit_alarm_name
from plugins.battery.seplos_v2_alarms import (
    AlarmLevel,
    active_bit_alarm_names,
    classify_alarm_code,
    classify_alarms,
    classify_cells,
    explain_byte_alarms,
)
from plugins.battery.seplos_v2_decoder import TelecommandRecord


def clean_record(**overrides) -> TelecommandRecord:
    record = TelecommandRecord(
        number_of_cells=16,
        cell_alarm=(0,) * 16,
        number_of_temperatures=6,
        temperature_alarm=(0,) * 6,
        charge_discharge_current_alarm=0,
        total_battery_voltage_alarm=0,
        bit_alarm=0,
        on_off_state=0x03,
        equalization_state=0,
        system_state=0x02,
        disconnection_state=0,
    )
    return replace(record, **overrides)


def cells_with(**codes) -> tuple:
    """cells_with(c3=2) -> 16 cell codes with cell index 3 set to 2."""
    cells = [0] * 16
    for key, code in codes.items():
        cells[int(key[1:])] = code
    return tuple(cells)


class TestClassifyAlarmCode(unittest.TestCase):

    def test_levels(self):
        self.assertIs(classify_alarm_code(0x00), AlarmLevel.NORMAL)
        self.assertIs(classify_alarm_code(0x01), AlarmLevel.LOW)
        self.assertIs(classify_alarm_code(0x02), AlarmLevel.HIGH)
        self.assertIs(classify_alarm_code(0xF0), AlarmLevel.OTHER)
        self.assertIs(classify_alarm_code(0x07), AlarmLevel.OTHER)

    def test_classify_cells_is_per_cell(self):
        levels = classify_cells(cells_with(c0=1, c5=2))
        self.assertIs(levels[0], AlarmLevel.LOW)
        self.assertIs(levels[5], AlarmLevel.HIGH)
        self.assertEqual(levels.count(AlarmLevel.NORMAL), 14)


class TestClassifyAlarms(unittest.TestCase):

    def test_no_alarm(self):
        summary = classify_alarms(clean_record())
        self.assertFalse(summary.has_alarm)
        self.assertIsNone(summary.first_alarming_cell)

    def test_voltage_low_means_depleted(self):
        summary = classify_alarms(clean_record(total_battery_voltage_alarm=1))
        self.assertTrue(summary.has_alarm)
        self.assertTrue(summary.has_voltage_or_current_alarm)
        self.assertTrue(summary.depleted)
        self.assertFalse(summary.overcharge)

    def test_voltage_high_means_overcharge(self):
        summary = classify_alarms(clean_record(total_battery_voltage_alarm=2))
        self.assertTrue(summary.overcharge)
        self.assertFalse(summary.depleted)

    def test_undocumented_voltage_code(self):
        summary = classify_alarms(clean_record(total_battery_voltage_alarm=0x05))
        self.assertTrue(summary.other_or_undocumented_alarm_state)
        self.assertFalse(summary.depleted)

    def test_current_alarm_has_no_category(self):
        for code in (1, 2):
            summary = classify_alarms(clean_record(charge_discharge_current_alarm=code))
            self.assertTrue(summary.has_alarm)
            self.assertTrue(summary.has_voltage_or_current_alarm)
            self.assertFalse(summary.depleted)
            self.assertFalse(summary.overcharge)
            self.assertFalse(summary.other_or_undocumented_alarm_state)

    def test_other_current_alarm(self):
        summary = classify_alarms(clean_record(charge_discharge_current_alarm=0xF0))
        self.assertTrue(summary.other_or_undocumented_alarm_state)

    def test_cell_scan_stops_at_first_alarming_cell(self):
        summary = classify_alarms(clean_record(cell_alarm=cells_with(c1=2, c4=1)))
        self.assertTrue(summary.has_cell_alarm)
        self.assertEqual(summary.first_alarming_cell, 1)
        self.assertTrue(summary.overcharge)
        self.assertFalse(summary.depleted)

    def test_every_temperature_is_scanned(self):
        summary = classify_alarms(clean_record(temperature_alarm=(1, 0, 0, 0, 0, 2)))
        self.assertTrue(summary.has_temperature_alarm)
        self.assertTrue(summary.cold)
        self.assertTrue(summary.hot)

    def test_any_bit_is_a_bit_alarm(self):
        # Auto charging wait is a status bit but still counts
        summary = classify_alarms(clean_record(bit_alarm=1 << 52))
        self.assertTrue(summary.has_bit_alarm)
        self.assertTrue(summary.has_alarm)
        self.assertFalse(summary.has_cell_alarm)


class TestBitAlarms(unittest.TestCase):

    def test_table(self):
        self.assertEqual(bit_alarm_name(0), "Voltage sensing failure")
        self.assertEqual(bit_alarm_name(9), "Cell overvoltage protection")
        self.assertEqual(bit_alarm_name(52), "Auto charging wait")
        self.assertIsNone(bit_alarm_name(48))
        self.assertIsNone(bit_alarm_name(63))
        self.assertTrue(all(0 <= index < NUMBER_OF_BIT_ALARMS for index in BIT_ALARMS))
        self.assertEqual({entry.kind for entry in BIT_ALARMS.values()}, {"fault", "warning", "protection", "status"})

    def test_active_names_include_reserved_bits(self):
        names = active_bit_alarm_names((1 << 0) | (1 << 55))
        self.assertEqual(names, ["Voltage sensing failure", "Undocumented alarm bit 55"])


class TestExplainByteAlarms(unittest.TestCase):

    def test_clean_record_has_no_lines(self):
        self.assertEqual(explain_byte_alarms(clean_record()), [])

    def test_lines(self):
        record = clean_record(
            total_battery_voltage_alarm=2,
            charge_discharge_current_alarm=1,
            cell_alarm=cells_with(c2=1, c7=0xF0),
            temperature_alarm=(0, 0, 0, 0, 2, 0x33),
        )
        self.assertEqual(explain_byte_alarms(record), [
            "Total battery voltage: overcharged: voltage has exceeded the upper limit.",
            "Current: discharge current exceeded the battery's limit.",
            "Cell 3: exhausted: voltage was depleted below the lower limit.",
            "Cell 8: controller reports \"other\" cell alarm state.",
            "Ambient temperature: too hot: above the upper limit.",
            "Power electronics temperature: undefined temperature alarm state (0x33).",
        ])


if __name__ == "__main__":
    unittest.main()
