"""
Seplos BMS V2 Protocol Constants

This module contains the constant tables for the Seplos "protocol 2.0"
ASCII-over-RS485 interface: command (CID2) codes, response status codes,
byte-alarm codes, the 64 named bit-alarm positions, temperature sensor names
and the fixed hex-character layouts of the telemetry (0x42) and
telecommand (0x44) payloads.

All tables are process-wide constant data; mappings are exposed read-only.
"""
from enum import IntEnum
from types import MappingProxyType
from typing import Dict, Mapping, NamedTuple, Optional

# --- Frame Constants ---
FRAME_START = 0x7E  # '~'
FRAME_END = 0x0D  # '\r'
PROTOCOL_VERSION = 0x20  # Sent as 2.0; any 2.x reply is accepted
PROTOCOL_MAJOR_VERSION = 0x2
DEVICE_TYPE_BATTERY = 0x46
HEADER_LENGTH = 18  # '~' + 12 header chars + 4 checksum chars + '\r'
CHECKSUM_START = 1  # Checksum covers version..end of payload
PAYLOAD_START = 13
MAX_PAYLOAD_LENGTH = 0x0FFF

DEFAULT_BAUD_RATE = 19200
DEFAULT_SERIAL_PORT = "/dev/ttyUSB0"
DEFAULT_TCP_PORT = 8888
DEFAULT_TIMEOUT_SECONDS = 2.5

NUMBER_OF_CELLS = 16
NUMBER_OF_TEMPERATURES = 6
NUMBER_OF_BIT_ALARMS = 64


class Command(IntEnum):
    """Function codes sent in the request frame, as Seplos documents them."""
    TELEMETRY_GET = 0x42  # Acquisition of telemetering information
    TELECOMMAND_GET = 0x44  # Acquisition of telecommand information
    TELECONTROL = 0x45  # Telecontrol command
    TELEREGULATION_GET = 0x47  # Acquisition of teleregulation information
    TELEREGULATION_SET = 0x49  # Setting of teleregulation information
    HISTORY_GET = 0x4B  # Acquisition of historical data
    TIME_GET = 0x4D  # Acquisition time
    TIME_SET = 0x4E  # Synchronization time
    PROTOCOL_VERSION_GET = 0x4F  # Acquisition of the communication protocol version number
    VENDOR_GET = 0x51  # Acquisition of device vendor information
    PRODUCTION_CALIBRATION = 0xA0
    PRODUCTION_SET = 0xA1
    REGULAR_RECORDING = 0xA2


class ResponseStatus(IntEnum):
    """Function codes returned in the response frame."""
    NORMAL = 0x00
    VERSION_ERROR = 0x01
    CHECKSUM_ERROR = 0x02
    LENGTH_CHECKSUM_ERROR = 0x03
    CID2_ERROR = 0x04
    COMMAND_FORMAT_ERROR = 0x05
    DATA_INVALID = 0x06
    NO_HISTORY = 0x07
    CID1_ERROR = 0xE1
    EXECUTION_FAILURE = 0xE2
    DEVICE_FAULT = 0xE3
    PERMISSION_ERROR = 0xE4


RESPONSE_STATUS_DESCRIPTIONS: Mapping[int, str] = MappingProxyType({
    ResponseStatus.NORMAL: "Normal response",
    ResponseStatus.VERSION_ERROR: "Protocol version error",
    ResponseStatus.CHECKSUM_ERROR: "Checksum error",
    ResponseStatus.LENGTH_CHECKSUM_ERROR: "Checksum value in length field error",
    ResponseStatus.CID2_ERROR: "Second byte or field is incorrect",
    ResponseStatus.COMMAND_FORMAT_ERROR: "Command format error",
    ResponseStatus.DATA_INVALID: "Data invalid",
    ResponseStatus.NO_HISTORY: "No historical data",
    ResponseStatus.CID1_ERROR: "First byte or field is incorrect",
    ResponseStatus.EXECUTION_FAILURE: "Command execution failure",
    ResponseStatus.DEVICE_FAULT: "Device fault",
    ResponseStatus.PERMISSION_ERROR: "Permission error",
})


def describe_status(code: int) -> str:
    return RESPONSE_STATUS_DESCRIPTIONS.get(code, f"Undocumented status 0x{code:02X}")


class AlarmCode(IntEnum):
    """Byte-alarm values. Any other non-zero value is undocumented."""
    NORMAL = 0x00
    LOW_LIMIT_HIT = 0x01
    HIGH_LIMIT_HIT = 0x02
    OTHER = 0xF0


# --- On/off state and system state bits (telecommand) ---
SWITCH_DISCHARGE = 0x01
SWITCH_CHARGE = 0x02
SWITCH_CURRENT_LIMIT = 0x04
SWITCH_HEATING = 0x08

STATE_DISCHARGE = 0x01
STATE_CHARGE = 0x02
STATE_FLOATING_CHARGE = 0x04
STATE_STANDBY = 0x10
STATE_SHUTDOWN = 0x20


class BitAlarm(NamedTuple):
    name: str
    kind: str  # "fault", "warning", "protection" or "status"


def _event(event_number: int, entries: Dict[int, BitAlarm]) -> Dict[int, BitAlarm]:
    return {(event_number - 1) * 8 + bit: entry for bit, entry in entries.items()}


_BIT_ALARMS: Dict[int, BitAlarm] = {}
_BIT_ALARMS.update(_event(1, {
    0: BitAlarm("Voltage sensing failure", "fault"),
    1: BitAlarm("Temperature sensing failure", "fault"),
    2: BitAlarm("Current sensing failure", "fault"),
    3: BitAlarm("Power switch failure", "fault"),
    4: BitAlarm("Cell voltage difference sensing failure", "fault"),
    5: BitAlarm("Charging switch failure", "fault"),
    6: BitAlarm("Discharging switch failure", "fault"),
    7: BitAlarm("Current limit switch failure", "fault"),
}))
_BIT_ALARMS.update(_event(2, {
    0: BitAlarm("Cell overvoltage alarm", "warning"),
    1: BitAlarm("Cell overvoltage protection", "protection"),
    2: BitAlarm("Cell low voltage alarm", "warning"),
    3: BitAlarm("Cell low voltage protection", "protection"),
    4: BitAlarm("Pack overvoltage alarm", "warning"),
    5: BitAlarm("Pack overvoltage protection", "protection"),
    6: BitAlarm("Pack low voltage alarm", "warning"),
    7: BitAlarm("Pack low voltage protection", "protection"),
}))
_BIT_ALARMS.update(_event(3, {
    0: BitAlarm("Charging temperature high alarm", "warning"),
    1: BitAlarm("Charging temperature high protection", "protection"),
    2: BitAlarm("Charging temperature low alarm", "warning"),
    3: BitAlarm("Charging temperature low protection", "protection"),
    4: BitAlarm("Discharging temperature high alarm", "warning"),
    5: BitAlarm("Discharging temperature high protection", "protection"),
    6: BitAlarm("Discharging temperature low alarm", "warning"),
    7: BitAlarm("Discharging temperature low protection", "protection"),
}))
_BIT_ALARMS.update(_event(4, {
    0: BitAlarm("Ambient temperature high alarm", "warning"),
    1: BitAlarm("Ambient temperature high protection", "protection"),
    2: BitAlarm("Ambient temperature low alarm", "warning"),
    3: BitAlarm("Ambient temperature low protection", "protection"),
    4: BitAlarm("Component temperature high protection", "protection"),
    5: BitAlarm("Component temperature high alarm", "warning"),
    6: BitAlarm("Cell low temperature heating", "status"),
    7: BitAlarm("Over temperature air cooling", "status"),
}))
_BIT_ALARMS.update(_event(5, {
    0: BitAlarm("Charging overcurrent alarm", "warning"),
    1: BitAlarm("Charging overcurrent protection", "protection"),
    2: BitAlarm("Discharging overcurrent alarm", "warning"),
    3: BitAlarm("Discharging overcurrent protection", "protection"),
    4: BitAlarm("Transient overcurrent protection", "protection"),
    5: BitAlarm("Output short circuit protection", "protection"),
    6: BitAlarm("Transient overcurrent lockout", "protection"),
    7: BitAlarm("Output short circuit lockout", "protection"),
}))
_BIT_ALARMS.update(_event(6, {
    0: BitAlarm("Charging high voltage protection", "protection"),
    1: BitAlarm("Intermittent power supplement", "status"),
    2: BitAlarm("SOC low alarm", "warning"),
    3: BitAlarm("SOC low protection", "protection"),
    4: BitAlarm("Cell low voltage charging forbidden", "protection"),
    5: BitAlarm("Output reverse polarity protection", "protection"),
    6: BitAlarm("Output connection failure", "fault"),
}))
_BIT_ALARMS.update(_event(7, {
    4: BitAlarm("Auto charging wait", "status"),
    5: BitAlarm("Manual charging wait", "status"),
}))
_BIT_ALARMS.update(_event(8, {
    0: BitAlarm("EEPROM storage failure", "fault"),
    1: BitAlarm("RTC clock failure", "fault"),
    2: BitAlarm("Voltage not calibrated", "warning"),
    3: BitAlarm("Current not calibrated", "warning"),
    4: BitAlarm("Zero point not calibrated", "warning"),
    5: BitAlarm("Perpetual calendar not synchronized", "warning"),
}))

# Bit index = (alarm event - 1) * 8 + bit. Reserved positions are absent.
BIT_ALARMS: Mapping[int, BitAlarm] = MappingProxyType(_BIT_ALARMS)
del _BIT_ALARMS


def bit_alarm_name(index: int) -> Optional[str]:
    """Name of the alarm at bit `index`, or None for reserved positions."""
    entry = BIT_ALARMS.get(index)
    return entry.name if entry else None


TEMPERATURE_NAMES = (
    "Cell temperature 1",
    "Cell temperature 2",
    "Cell temperature 3",
    "Cell temperature 4",
    "Ambient temperature",
    "Power electronics temperature",
)
AMBIENT_TEMPERATURE_INDEX = 4
POWER_TEMPERATURE_INDEX = 5

# --- Telemetry payload layout (offsets in hex characters) ---
TEL_NUM_CELLS_OFFSET = 4
TEL_CELL_VOLTAGE_OFFSET = 6
TEL_NUM_TEMPS_OFFSET = 70
TEL_TEMPERATURE_OFFSET = 72
TEL_CURRENT_OFFSET = 96
TEL_TOTAL_VOLTAGE_OFFSET = 100
TEL_RESIDUAL_CAPACITY_OFFSET = 104
TEL_CUSTOM_COUNT_OFFSET = 108
TEL_BATTERY_CAPACITY_OFFSET = 110
TEL_SOC_OFFSET = 114
TEL_RATED_CAPACITY_OFFSET = 118
TEL_CYCLES_OFFSET = 122
TEL_SOH_OFFSET = 126
TEL_PORT_VOLTAGE_OFFSET = 130
TEL_REQUIRED_LENGTH = 134  # Reserved fields follow
TEL_FULL_LENGTH = 150

# --- Telecommand payload layout (offsets in hex characters) ---
TC_NUM_CELLS_OFFSET = 4
TC_CELL_ALARM_OFFSET = 6
TC_NUM_TEMPS_OFFSET = 38
TC_TEMPERATURE_ALARM_OFFSET = 40
TC_CURRENT_ALARM_OFFSET = 52
TC_VOLTAGE_ALARM_OFFSET = 54
TC_CUSTOM_COUNT_OFFSET = 56
TC_ALARM_EVENT_OFFSET = 58  # Alarm events 1..6
TC_ON_OFF_STATE_OFFSET = 70
TC_EQUALIZATION_OFFSET = 72
TC_SYSTEM_STATE_OFFSET = 76
TC_DISCONNECTION_OFFSET = 78
TC_ALARM_7_8_OFFSET = 82
TC_REQUIRED_LENGTH = 86  # Reserved fields follow
TC_FULL_LENGTH = 98

# Current is sign-magnitude: bit 15 marks discharge
CURRENT_SIGN_BIT = 0x8000
KELVIN_OFFSET_TENTHS = 2731
