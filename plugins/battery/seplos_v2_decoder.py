# plugins/battery/seplos_v2_decoder.py
"""
Decoders for the telemetry (0x42) and telecommand (0x44) payloads.

Both payloads are fixed layouts of 2- and 4-character hex fields. The
records returned here hold values already converted to engineering units
and are built by parsing a copy of the validated payload.
"""
import logging
from dataclasses import dataclass
from typing import Tuple

from .seplos_bms_v2_constants import (
    CURRENT_SIGN_BIT,
    KELVIN_OFFSET_TENTHS,
    NUMBER_OF_CELLS,
    NUMBER_OF_TEMPERATURES,
    STATE_CHARGE,
    STATE_DISCHARGE,
    STATE_FLOATING_CHARGE,
    STATE_SHUTDOWN,
    STATE_STANDBY,
    SWITCH_CHARGE,
    SWITCH_CURRENT_LIMIT,
    SWITCH_DISCHARGE,
    SWITCH_HEATING,
    TC_ALARM_7_8_OFFSET,
    TC_ALARM_EVENT_OFFSET,
    TC_CELL_ALARM_OFFSET,
    TC_CURRENT_ALARM_OFFSET,
    TC_DISCONNECTION_OFFSET,
    TC_EQUALIZATION_OFFSET,
    TC_FULL_LENGTH,
    TC_NUM_CELLS_OFFSET,
    TC_NUM_TEMPS_OFFSET,
    TC_ON_OFF_STATE_OFFSET,
    TC_REQUIRED_LENGTH,
    TC_SYSTEM_STATE_OFFSET,
    TC_TEMPERATURE_ALARM_OFFSET,
    TC_VOLTAGE_ALARM_OFFSET,
    TEL_BATTERY_CAPACITY_OFFSET,
    TEL_CELL_VOLTAGE_OFFSET,
    TEL_CURRENT_OFFSET,
    TEL_CYCLES_OFFSET,
    TEL_FULL_LENGTH,
    TEL_NUM_CELLS_OFFSET,
    TEL_NUM_TEMPS_OFFSET,
    TEL_PORT_VOLTAGE_OFFSET,
    TEL_RATED_CAPACITY_OFFSET,
    TEL_REQUIRED_LENGTH,
    TEL_RESIDUAL_CAPACITY_OFFSET,
    TEL_SOC_OFFSET,
    TEL_SOH_OFFSET,
    TEL_TEMPERATURE_OFFSET,
    TEL_TOTAL_VOLTAGE_OFFSET,
)
from .seplos_v2_codec import HexDecoder
from .seplos_v2_errors import InvalidHexCharacterError, PayloadLayoutError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TelemetryRecord:
    number_of_cells: int
    cell_voltage: Tuple[float, ...]  # V
    number_of_temperatures: int
    temperature: Tuple[float, ...]  # deg C
    charge_discharge_current: float  # A, negative while discharging
    total_battery_voltage: float  # V
    residual_capacity: float  # Ah
    battery_capacity: float  # Ah
    state_of_charge: float  # %
    rated_capacity: float  # Ah
    number_of_cycles: int
    state_of_health: float  # %
    port_voltage: float  # V


@dataclass(frozen=True)
class TelecommandRecord:
    number_of_cells: int
    cell_alarm: Tuple[int, ...]
    number_of_temperatures: int
    temperature_alarm: Tuple[int, ...]
    charge_discharge_current_alarm: int
    total_battery_voltage_alarm: int
    bit_alarm: int  # 64 bits, alarm event 1 in the low byte
    on_off_state: int
    equalization_state: int  # bit n = cell n+1
    system_state: int
    disconnection_state: int  # bit n = cell n+1

    @property
    def discharge_switch(self) -> bool:
        return bool(self.on_off_state & SWITCH_DISCHARGE)

    @property
    def charge_switch(self) -> bool:
        return bool(self.on_off_state & SWITCH_CHARGE)

    @property
    def current_limit_switch(self) -> bool:
        return bool(self.on_off_state & SWITCH_CURRENT_LIMIT)

    @property
    def heating_switch(self) -> bool:
        return bool(self.on_off_state & SWITCH_HEATING)

    @property
    def discharge(self) -> bool:
        return bool(self.system_state & STATE_DISCHARGE)

    @property
    def charge(self) -> bool:
        return bool(self.system_state & STATE_CHARGE)

    @property
    def floating_charge(self) -> bool:
        return bool(self.system_state & STATE_FLOATING_CHARGE)

    @property
    def standby(self) -> bool:
        return bool(self.system_state & STATE_STANDBY)

    @property
    def shutdown(self) -> bool:
        return bool(self.system_state & STATE_SHUTDOWN)


def decode_current(raw: int) -> float:
    """
    Charge/discharge current in amps.

    Bit 15 flags discharge and the low 15 bits carry the magnitude in
    hundredths of an amp, so 0x8064 is -1.00 A and 0x0064 is +1.00 A.
    """
    if raw & CURRENT_SIGN_BIT:
        return -(raw & 0x7FFF) / 100.0
    return raw / 100.0


def decode_temperature(raw: int) -> float:
    """Tenths of a kelvin to degrees Celsius."""
    return (raw - KELVIN_OFFSET_TENTHS) / 10.0


def _check_layout(payload: bytes, required: int, full: int, what: str) -> None:
    if len(payload) < required:
        raise PayloadLayoutError(f"{what} payload has {len(payload)} characters, need at least {required}")
    if len(payload) != full:
        logger.warning(f"{what} payload length {len(payload)}, expected {full}. Reserved fields ignored.")


def _check_hex(decoder: HexDecoder, what: str) -> None:
    if decoder.invalid:
        raise InvalidHexCharacterError(f"Non-hexadecimal character in {what} payload")


def decode_telemetry(payload: bytes) -> TelemetryRecord:
    payload = bytes(payload)
    _check_layout(payload, TEL_REQUIRED_LENGTH, TEL_FULL_LENGTH, "Telemetry")
    d = HexDecoder()

    cell_voltage = tuple(
        d.word(payload, TEL_CELL_VOLTAGE_OFFSET + i * 4) / 1000.0 for i in range(NUMBER_OF_CELLS))
    temperature = tuple(
        decode_temperature(d.word(payload, TEL_TEMPERATURE_OFFSET + i * 4)) for i in range(NUMBER_OF_TEMPERATURES))

    record = TelemetryRecord(
        number_of_cells=d.byte(payload, TEL_NUM_CELLS_OFFSET),
        cell_voltage=cell_voltage,
        number_of_temperatures=d.byte(payload, TEL_NUM_TEMPS_OFFSET),
        temperature=temperature,
        charge_discharge_current=decode_current(d.word(payload, TEL_CURRENT_OFFSET)),
        total_battery_voltage=d.word(payload, TEL_TOTAL_VOLTAGE_OFFSET) / 100.0,
        residual_capacity=d.word(payload, TEL_RESIDUAL_CAPACITY_OFFSET) / 100.0,
        battery_capacity=d.word(payload, TEL_BATTERY_CAPACITY_OFFSET) / 100.0,
        state_of_charge=d.word(payload, TEL_SOC_OFFSET) / 10.0,
        rated_capacity=d.word(payload, TEL_RATED_CAPACITY_OFFSET) / 100.0,
        number_of_cycles=d.word(payload, TEL_CYCLES_OFFSET),
        state_of_health=d.word(payload, TEL_SOH_OFFSET) / 10.0,
        port_voltage=d.word(payload, TEL_PORT_VOLTAGE_OFFSET) / 100.0,
    )
    _check_hex(d, "telemetry")
    return record


def decode_telecommand(payload: bytes) -> TelecommandRecord:
    payload = bytes(payload)
    _check_layout(payload, TC_REQUIRED_LENGTH, TC_FULL_LENGTH, "Telecommand")
    d = HexDecoder()

    alarm_events = [d.byte(payload, TC_ALARM_EVENT_OFFSET + i * 2) for i in range(6)]
    alarm_events += [d.byte(payload, TC_ALARM_7_8_OFFSET + i * 2) for i in range(2)]
    bit_alarm = 0
    for i, event in enumerate(alarm_events):
        bit_alarm |= event << (i * 8)

    record = TelecommandRecord(
        number_of_cells=d.byte(payload, TC_NUM_CELLS_OFFSET),
        cell_alarm=tuple(d.byte(payload, TC_CELL_ALARM_OFFSET + i * 2) for i in range(NUMBER_OF_CELLS)),
        number_of_temperatures=d.byte(payload, TC_NUM_TEMPS_OFFSET),
        temperature_alarm=tuple(
            d.byte(payload, TC_TEMPERATURE_ALARM_OFFSET + i * 2) for i in range(NUMBER_OF_TEMPERATURES)),
        charge_discharge_current_alarm=d.byte(payload, TC_CURRENT_ALARM_OFFSET),
        total_battery_voltage_alarm=d.byte(payload, TC_VOLTAGE_ALARM_OFFSET),
        bit_alarm=bit_alarm,
        on_off_state=d.byte(payload, TC_ON_OFF_STATE_OFFSET),
        equalization_state=d.byte(payload, TC_EQUALIZATION_OFFSET) | (d.byte(payload, TC_EQUALIZATION_OFFSET + 2) << 8),
        system_state=d.byte(payload, TC_SYSTEM_STATE_OFFSET),
        disconnection_state=d.byte(payload, TC_DISCONNECTION_OFFSET) | (d.byte(payload, TC_DISCONNECTION_OFFSET + 2) << 8),
    )
    _check_hex(d, "telecommand")
    return record
