# plugins/battery/seplos_v2_alarms.py
"""
Aggregates the telecommand alarm fields into a few coarse status flags.

Byte alarms are 0 normal, 1 low limit hit, 2 high limit hit and 0xF0
"other"; every other non-zero value is treated as undocumented. Any set bit
in the 64-bit alarm word counts as a bit alarm, including the status-type
positions (heating, charging wait).
"""
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from .seplos_bms_v2_constants import NUMBER_OF_BIT_ALARMS, TEMPERATURE_NAMES, AlarmCode, BitAlarm, BIT_ALARMS
from .seplos_v2_decoder import TelecommandRecord


class AlarmLevel(Enum):
    NORMAL = "normal"
    LOW = "low"
    HIGH = "high"
    OTHER = "other"


def classify_alarm_code(code: int) -> AlarmLevel:
    if code == AlarmCode.NORMAL:
        return AlarmLevel.NORMAL
    if code == AlarmCode.LOW_LIMIT_HIT:
        return AlarmLevel.LOW
    if code == AlarmCode.HIGH_LIMIT_HIT:
        return AlarmLevel.HIGH
    return AlarmLevel.OTHER


def classify_cells(cell_alarm: Sequence[int]) -> Tuple[AlarmLevel, ...]:
    """Per-cell classification, independent of the aggregate first-match scan."""
    return tuple(classify_alarm_code(code) for code in cell_alarm)


@dataclass(frozen=True)
class AlarmSummary:
    has_alarm: bool = False
    has_cell_alarm: bool = False
    has_temperature_alarm: bool = False
    has_voltage_or_current_alarm: bool = False
    has_bit_alarm: bool = False
    other_or_undocumented_alarm_state: bool = False
    depleted: bool = False
    overcharge: bool = False
    cold: bool = False
    hot: bool = False
    first_alarming_cell: Optional[int] = None  # 0-based


def classify_alarms(telecommand: TelecommandRecord) -> AlarmSummary:
    """
    Derive the aggregate alarm flags from one telecommand record.

    The cell scan stops at the first alarming cell, so only that cell's code
    affects depleted/overcharge/other. Temperature sensors and the bit word
    are examined in full. Current alarm codes 1 and 2 flag a voltage/current
    alarm without a category.
    """
    flags = dict(
        has_cell_alarm=False,
        has_temperature_alarm=False,
        has_voltage_or_current_alarm=False,
        has_bit_alarm=False,
        other_or_undocumented_alarm_state=False,
        depleted=False,
        overcharge=False,
        cold=False,
        hot=False,
    )
    first_alarming_cell = None

    voltage_level = classify_alarm_code(telecommand.total_battery_voltage_alarm)
    if voltage_level is not AlarmLevel.NORMAL:
        flags["has_voltage_or_current_alarm"] = True
        if voltage_level is AlarmLevel.LOW:
            flags["depleted"] = True
        elif voltage_level is AlarmLevel.HIGH:
            flags["overcharge"] = True
        else:
            flags["other_or_undocumented_alarm_state"] = True

    current_level = classify_alarm_code(telecommand.charge_discharge_current_alarm)
    if current_level is not AlarmLevel.NORMAL:
        flags["has_voltage_or_current_alarm"] = True
        if current_level is AlarmLevel.OTHER:
            flags["other_or_undocumented_alarm_state"] = True

    for index, code in enumerate(telecommand.cell_alarm):
        level = classify_alarm_code(code)
        if level is AlarmLevel.NORMAL:
            continue
        flags["has_cell_alarm"] = True
        first_alarming_cell = index
        if level is AlarmLevel.LOW:
            flags["depleted"] = True
        elif level is AlarmLevel.HIGH:
            flags["overcharge"] = True
        else:
            flags["other_or_undocumented_alarm_state"] = True
        break

    for code in telecommand.temperature_alarm:
        level = classify_alarm_code(code)
        if level is AlarmLevel.NORMAL:
            continue
        flags["has_temperature_alarm"] = True
        if level is AlarmLevel.LOW:
            flags["cold"] = True
        elif level is AlarmLevel.HIGH:
            flags["hot"] = True
        else:
            flags["other_or_undocumented_alarm_state"] = True

    if telecommand.bit_alarm:
        flags["has_bit_alarm"] = True

    has_alarm = any(flags.values())
    return AlarmSummary(has_alarm=has_alarm, first_alarming_cell=first_alarming_cell, **flags)


def active_bit_alarms(bit_alarm: int) -> List[Tuple[int, Optional[BitAlarm]]]:
    """(index, entry) for every set bit; entry is None for reserved positions."""
    return [(index, BIT_ALARMS.get(index))
            for index in range(NUMBER_OF_BIT_ALARMS) if bit_alarm & (1 << index)]


def active_bit_alarm_names(bit_alarm: int) -> List[str]:
    return [entry.name if entry else f"Undocumented alarm bit {index}"
            for index, entry in active_bit_alarms(bit_alarm)]


def _explain(code: int, low: str, high: str, subject: str) -> str:
    if code == AlarmCode.LOW_LIMIT_HIT:
        return low
    if code == AlarmCode.HIGH_LIMIT_HIT:
        return high
    if code == AlarmCode.OTHER:
        return f"controller reports \"other\" {subject} alarm state."
    return f"undefined {subject} alarm state (0x{code:02X})."


def explain_byte_alarms(record) -> List[str]:
    """
    Human-readable line for every non-normal byte alarm of a telecommand
    record or snapshot, e.g. "Cell 3: overcharged: voltage has exceeded the
    upper limit.". Cells are numbered from 1.
    """
    lines = []
    if record.total_battery_voltage_alarm:
        lines.append("Total battery voltage: " + _explain(
            record.total_battery_voltage_alarm,
            "exhausted: voltage was depleted below the lower limit.",
            "overcharged: voltage has exceeded the upper limit.",
            "voltage"))
    if record.charge_discharge_current_alarm:
        lines.append("Current: " + _explain(
            record.charge_discharge_current_alarm,
            "discharge current exceeded the battery's limit.",
            "charge current exceeded the battery's limit.",
            "charge or discharge current"))
    for index, code in enumerate(record.cell_alarm):
        if code:
            lines.append(f"Cell {index + 1}: " + _explain(
                code,
                "exhausted: voltage was depleted below the lower limit.",
                "overcharged: voltage has exceeded the upper limit.",
                "cell"))
    for index, code in enumerate(record.temperature_alarm):
        if code:
            lines.append(f"{TEMPERATURE_NAMES[index]}: " + _explain(
                code, "too cold: below the lower limit.", "too hot: above the upper limit.", "temperature"))
    return lines
