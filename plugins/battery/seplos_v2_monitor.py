# plugins/battery/seplos_v2_monitor.py
"""
Monitor facade: one telemetry and one telecommand exchange merged into a
single immutable `SeplosData` snapshot.
"""
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Tuple

from .seplos_bms_v2_constants import NUMBER_OF_CELLS, Command
from .seplos_v2_alarms import AlarmLevel, AlarmSummary, active_bit_alarm_names, classify_alarms, classify_cells
from .seplos_v2_codec import hex2
from .seplos_v2_decoder import TelecommandRecord, TelemetryRecord, decode_telecommand, decode_telemetry
from .seplos_v2_errors import NonNormalStatusError
from .seplos_v2_protocol import Frame, exchange
from .seplos_v2_transport import ByteChannel

logger = logging.getLogger(__name__)

# The BMS parses the address but ignores the pack number for this command
PROTOCOL_VERSION_PAYLOAD = b"00"


@dataclass(frozen=True)
class SeplosData:
    """Decoded, alarm-annotated state of one battery pack."""
    controller_address: int
    battery_pack_number: int

    # Aggregate alarm state
    has_alarm: bool
    other_or_undocumented_alarm_state: bool
    has_cell_alarm: bool
    has_temperature_alarm: bool
    has_voltage_or_current_alarm: bool
    has_bit_alarm: bool
    depleted: bool
    overcharge: bool
    cold: bool
    hot: bool
    first_alarming_cell: Optional[int]

    # Derived
    lowest_temperature: float
    highest_temperature: float
    lowest_cell_voltage: float
    highest_cell_voltage: float

    # Telemetry
    number_of_cells: int
    number_of_temperatures: int
    charge_discharge_current: float
    total_battery_voltage: float
    residual_capacity: float
    battery_capacity: float
    state_of_charge: float
    rated_capacity: float
    number_of_cycles: int
    state_of_health: float
    port_voltage: float
    cell_voltage: Tuple[float, ...]
    temperature: Tuple[float, ...]

    # Telecommand
    discharge: bool
    charge: bool
    floating_charge: bool
    standby: bool
    shutdown: bool
    discharge_switch: bool
    charge_switch: bool
    current_limit_switch: bool
    heating_switch: bool
    equalization_state: int
    disconnection_state: int
    cell_alarm: Tuple[int, ...]
    temperature_alarm: Tuple[int, ...]
    charge_discharge_current_alarm: int
    total_battery_voltage_alarm: int
    bit_alarm: int

    @property
    def active_cell_count(self) -> int:
        """Cells actually fitted; falls back to all 16 when the count is out of range."""
        if 1 <= self.number_of_cells <= NUMBER_OF_CELLS:
            return self.number_of_cells
        return NUMBER_OF_CELLS

    @property
    def cell_voltage_unbalance(self) -> float:
        return self.highest_cell_voltage - self.lowest_cell_voltage

    def is_cell_balancing(self, index: int) -> bool:
        return bool(self.equalization_state & (1 << index))

    def is_cell_disconnected(self, index: int) -> bool:
        return bool(self.disconnection_state & (1 << index))

    def cell_alarm_levels(self) -> Tuple[AlarmLevel, ...]:
        return classify_cells(self.cell_alarm)

    def active_bit_alarm_names(self) -> List[str]:
        return active_bit_alarm_names(self.bit_alarm)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["cell_voltage"] = list(self.cell_voltage)
        data["temperature"] = list(self.temperature)
        data["cell_alarm"] = list(self.cell_alarm)
        data["temperature_alarm"] = list(self.temperature_alarm)
        data["active_bit_alarms"] = self.active_bit_alarm_names()
        return data


def build_snapshot(address: int, pack: int, telemetry: TelemetryRecord,
                   telecommand: TelecommandRecord, alarms: AlarmSummary) -> SeplosData:
    cell_count = telemetry.number_of_cells if 1 <= telemetry.number_of_cells <= NUMBER_OF_CELLS else NUMBER_OF_CELLS
    cells = telemetry.cell_voltage[:cell_count]

    return SeplosData(
        controller_address=address,
        battery_pack_number=pack,
        has_alarm=alarms.has_alarm,
        other_or_undocumented_alarm_state=alarms.other_or_undocumented_alarm_state,
        has_cell_alarm=alarms.has_cell_alarm,
        has_temperature_alarm=alarms.has_temperature_alarm,
        has_voltage_or_current_alarm=alarms.has_voltage_or_current_alarm,
        has_bit_alarm=alarms.has_bit_alarm,
        depleted=alarms.depleted,
        overcharge=alarms.overcharge,
        cold=alarms.cold,
        hot=alarms.hot,
        first_alarming_cell=alarms.first_alarming_cell,
        lowest_temperature=min(telemetry.temperature),
        highest_temperature=max(telemetry.temperature),
        lowest_cell_voltage=min(cells),
        highest_cell_voltage=max(cells),
        number_of_cells=telemetry.number_of_cells,
        number_of_temperatures=telemetry.number_of_temperatures,
        charge_discharge_current=telemetry.charge_discharge_current,
        total_battery_voltage=telemetry.total_battery_voltage,
        residual_capacity=telemetry.residual_capacity,
        battery_capacity=telemetry.battery_capacity,
        state_of_charge=telemetry.state_of_charge,
        rated_capacity=telemetry.rated_capacity,
        number_of_cycles=telemetry.number_of_cycles,
        state_of_health=telemetry.state_of_health,
        port_voltage=telemetry.port_voltage,
        cell_voltage=telemetry.cell_voltage,
        temperature=telemetry.temperature,
        discharge=telecommand.discharge,
        charge=telecommand.charge,
        floating_charge=telecommand.floating_charge,
        standby=telecommand.standby,
        shutdown=telecommand.shutdown,
        discharge_switch=telecommand.discharge_switch,
        charge_switch=telecommand.charge_switch,
        current_limit_switch=telecommand.current_limit_switch,
        heating_switch=telecommand.heating_switch,
        equalization_state=telecommand.equalization_state,
        disconnection_state=telecommand.disconnection_state,
        cell_alarm=telecommand.cell_alarm,
        temperature_alarm=telecommand.temperature_alarm,
        charge_discharge_current_alarm=telecommand.charge_discharge_current_alarm,
        total_battery_voltage_alarm=telecommand.total_battery_voltage_alarm,
        bit_alarm=telecommand.bit_alarm,
    )


def _require_normal(frame: Frame, command: int) -> Frame:
    if not frame.is_normal:
        raise NonNormalStatusError(frame.status, command)
    return frame


def get_monitor_snapshot(channel: ByteChannel, address: int, pack: int,
                         inter_command_delay: float = 0.0) -> SeplosData:
    """
    Read telemetry and telecommand data for one pack and merge them.

    Both responses must carry a NORMAL status; nothing is decoded until both
    frames have been received and validated.
    """
    pack_info = hex2(pack)

    telemetry_frame = _require_normal(
        exchange(channel, address, Command.TELEMETRY_GET, pack_info), Command.TELEMETRY_GET)
    if inter_command_delay > 0:
        time.sleep(inter_command_delay)
    telecommand_frame = _require_normal(
        exchange(channel, address, Command.TELECOMMAND_GET, pack_info), Command.TELECOMMAND_GET)

    telemetry = decode_telemetry(telemetry_frame.payload)
    telecommand = decode_telecommand(telecommand_frame.payload)
    alarms = classify_alarms(telecommand)
    if alarms.has_alarm:
        logger.warning(f"Controller {address:X}, pack {pack:X} reports an alarm state.")
    return build_snapshot(address, pack, telemetry, telecommand, alarms)


def get_protocol_version(channel: ByteChannel, address: int) -> float:
    """Protocol version the controller reports in its response header, e.g. 2.3."""
    frame = _require_normal(
        exchange(channel, address, Command.PROTOCOL_VERSION_GET, PROTOCOL_VERSION_PAYLOAD),
        Command.PROTOCOL_VERSION_GET)
    return round(((frame.version >> 4) & 0xF) + (frame.version & 0xF) / 10.0, 1)
