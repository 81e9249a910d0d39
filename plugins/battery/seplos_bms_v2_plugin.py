# plugins/battery/seplos_bms_v2_plugin.py
import time
import logging
from typing import Any, Dict, List, Optional, TYPE_CHECKING
if TYPE_CHECKING:
    from core.app_state import AppState

from serial.serialutil import SerialException

from ..plugin_utils import check_tcp_port
from ..plugin_interface import parse_config_int, parse_config_float, parse_config_str
from .bms_plugin_base import (
    BMSPluginBase, StandardDataKeys,
    BMS_KEY_SOC, BMS_KEY_SOH, BMS_KEY_VOLTAGE, BMS_KEY_CURRENT, BMS_KEY_POWER,
    BMS_KEY_STATUS_TEXT, BMS_KEY_FAULT_SUMMARY, BMS_KEY_ACTIVE_ALARMS_LIST, BMS_KEY_ACTIVE_WARNINGS_LIST,
    BMS_KEY_MANUFACTURER, BMS_KEY_MODEL, BMS_KEY_SERIAL_NUMBER, BMS_KEY_PROTOCOL_VERSION,
)
from .seplos_bms_v2_constants import (
    AMBIENT_TEMPERATURE_INDEX, DEFAULT_BAUD_RATE, DEFAULT_SERIAL_PORT, DEFAULT_TCP_PORT,
    DEFAULT_TIMEOUT_SECONDS, POWER_TEMPERATURE_INDEX,
)
from .seplos_v2_alarms import active_bit_alarms, explain_byte_alarms
from .seplos_v2_errors import NonNormalStatusError, SeplosError, TransportReadError, TransportWriteError
from .seplos_v2_monitor import SeplosData, get_monitor_snapshot, get_protocol_version
from .seplos_v2_transport import ByteChannel, SerialChannel, TcpChannel

DEFAULT_MAX_RETRIES = 2
DEFAULT_INTER_COMMAND_DELAY_MS = 0
RETRY_BACKOFF_SECONDS = 0.5


def system_state_text(snapshot: SeplosData) -> str:
    states = []
    if snapshot.shutdown: states.append("Shutdown")
    if snapshot.discharge: states.append("Discharging")
    if snapshot.charge: states.append("Charging")
    if snapshot.floating_charge: states.append("Floating charge")
    if snapshot.standby: states.append("Standby")
    return ", ".join(states) if states else "Idle"


class SeplosBMSV2(BMSPluginBase):
    """
    Plugin for Seplos BMS controllers speaking the ASCII "protocol 2.0".

    Talks to one controller over an RS-485 serial adapter or an RS-485 to
    Ethernet converter. Each read performs a telemetry and a telecommand
    exchange and merges them into a `SeplosData` snapshot; `read_bms_data`
    translates that snapshot into `StandardDataKeys`.
    """

    def __init__(self, instance_name: str, plugin_specific_config: Dict[str, Any], main_logger: logging.Logger, app_state: Optional['AppState'] = None):
        super().__init__(instance_name, plugin_specific_config, main_logger, app_state)

        self.connection_type = (parse_config_str(self.plugin_config, "seplos_connection_type", "serial") or "serial").lower()
        self.serial_port_name = parse_config_str(self.plugin_config, "seplos_serial_port", DEFAULT_SERIAL_PORT)
        self.baud_rate = parse_config_int(self.plugin_config, "seplos_baud_rate", DEFAULT_BAUD_RATE)
        self.tcp_host = parse_config_str(self.plugin_config, "seplos_tcp_host")
        self.tcp_port = parse_config_int(self.plugin_config, "seplos_tcp_port", DEFAULT_TCP_PORT)
        self.timeout = parse_config_float(self.plugin_config, "seplos_timeout", DEFAULT_TIMEOUT_SECONDS)
        self.controller_address = parse_config_int(self.plugin_config, "seplos_controller_address", 0)
        self.pack_number = parse_config_int(self.plugin_config, "seplos_pack_number", 1)
        self.max_retries = max(0, parse_config_int(self.plugin_config, "seplos_max_retries", DEFAULT_MAX_RETRIES))
        self.inter_command_delay_ms = parse_config_int(self.plugin_config, "seplos_inter_command_delay_ms", DEFAULT_INTER_COMMAND_DELAY_MS)

        self.client: Optional[ByteChannel] = None
        self.latest_snapshot: Optional[SeplosData] = None
        self.protocol_version: Optional[float] = None

        log_conn_params = f"Instance: '{self.instance_name}', Type: {self.connection_type}, Address: 0x{self.controller_address:02X}, Pack: {self.pack_number}"
        valid_config = True
        if self.connection_type == "serial":
            log_conn_params += f", Port: {self.serial_port_name}, Baud: {self.baud_rate}, Timeout: {self.timeout}s"
            if not self.serial_port_name:
                self.logger.error(f"SeplosBMSV2 {log_conn_params} - ERROR: 'seplos_serial_port' not configured.")
                valid_config = False
        elif self.connection_type == "tcp":
            log_conn_params += f", Host: {self.tcp_host}, Port: {self.tcp_port}, Timeout: {self.timeout}s"
            if not self.tcp_host:
                self.logger.error(f"SeplosBMSV2 {log_conn_params} - ERROR: 'seplos_tcp_host' not configured.")
                valid_config = False
        else:
            self.logger.error(f"SeplosBMSV2 '{self.instance_name}': Invalid 'seplos_connection_type' ('{self.connection_type}'). Must be 'serial' or 'tcp'.")
            valid_config = False

        if not valid_config:
            self.connection_type = "disabled"
            self.last_error_message = "Plugin configuration error (see logs)"

        self.logger.info(f"SeplosBMSV2 Plugin Initialized: {log_conn_params}")

    @property
    def name(self) -> str:
        return "seplos_bms_v2"

    @property
    def pretty_name(self) -> str:
        if self.connection_type == "disabled":
            return "Seplos BMS V2 (Config Error)"
        return f"Seplos BMS V2 ({self.connection_type.capitalize()})"

    @property
    def bus_name(self) -> str:
        """Identifies the physical bus, used to name the lock file."""
        if self.connection_type == "tcp":
            return f"{self.tcp_host}:{self.tcp_port}"
        return str(self.serial_port_name)

    @staticmethod
    def get_configurable_params() -> List[Dict[str, Any]]:
        return [
            {"name": "seplos_connection_type", "type": str, "default": "serial", "description": "Connection type: 'serial' or 'tcp'.", "options": ["serial", "tcp"]},
            {"name": "seplos_serial_port", "type": str, "default": DEFAULT_SERIAL_PORT, "description": "Serial device of the RS-485 adapter."},
            {"name": "seplos_baud_rate", "type": int, "default": DEFAULT_BAUD_RATE, "description": "Baud rate (the controller uses 19200, 8N1)."},
            {"name": "seplos_tcp_host", "type": str, "default": None, "description": "Host of the RS-485 to Ethernet converter (if type is 'tcp')."},
            {"name": "seplos_tcp_port", "type": int, "default": DEFAULT_TCP_PORT, "description": "TCP port of the converter."},
            {"name": "seplos_timeout", "type": float, "default": DEFAULT_TIMEOUT_SECONDS, "description": "Deadline in seconds for each response read."},
            {"name": "seplos_controller_address", "type": int, "default": 0, "description": "Controller address on the bus (0-255, hex accepted)."},
            {"name": "seplos_pack_number", "type": int, "default": 1, "description": "Battery pack number queried (0-255)."},
            {"name": "seplos_max_retries", "type": int, "default": DEFAULT_MAX_RETRIES, "description": "Extra attempts after a failed read."},
            {"name": "seplos_inter_command_delay_ms", "type": int, "default": DEFAULT_INTER_COMMAND_DELAY_MS, "description": "Pause between the telemetry and telecommand requests."},
            {"name": "seplos_manufacturer", "type": str, "default": "Seplos", "description": "Static: Manufacturer name."},
            {"name": "seplos_model", "type": str, "default": "Seplos BMS V2", "description": "Static: Model name."},
        ]

    def _create_channel(self) -> ByteChannel:
        if self.connection_type == "tcp":
            return TcpChannel(self.tcp_host, self.tcp_port, self.timeout)
        return SerialChannel(self.serial_port_name, self.baud_rate, self.timeout)

    def connect(self) -> bool:
        if self._is_connected_flag and self.client:
            return True
        if self.client:
            self.disconnect()
        if self.connection_type == "disabled":
            self.last_error_message = "Plugin disabled (config error)"
            return False
        self.last_error_message = None

        if self.connection_type == "tcp":
            self.logger.info(f"SeplosBMSV2 '{self.instance_name}': Performing pre-connection network check for {self.tcp_host}:{self.tcp_port}...")
            port_open, _, err_msg = check_tcp_port(self.tcp_host, self.tcp_port, timeout=self.timeout, logger_instance=self.logger)
            if not port_open:
                self.last_error_message = f"Pre-check failed: TCP port {self.tcp_port} on {self.tcp_host} unreachable. Error: {err_msg}"
                self.logger.error(self.last_error_message)
                return False

        channel = self._create_channel()
        try:
            self.logger.info(f"SeplosBMSV2 '{self.instance_name}': Connecting via {channel!r}...")
            channel.open()
        except (SerialException, OSError) as e:
            self.last_error_message = f"Connection failed: {e}"
            self.logger.error(f"SeplosBMSV2 '{self.instance_name}': {self.last_error_message}")
            channel.close()
            self.client = None
            self._is_connected_flag = False
            return False

        self.client = channel
        self._is_connected_flag = True
        self.logger.info(f"SeplosBMSV2 '{self.instance_name}': Successfully connected.")
        return True

    def disconnect(self) -> None:
        if self.client:
            self.logger.info(f"SeplosBMSV2 '{self.instance_name}': Disconnecting...")
            try:
                self.client.close()
            except (SerialException, OSError) as e:
                self.logger.error(f"SeplosBMSV2 '{self.instance_name}': Error during disconnect: {e}")
        self._is_connected_flag = False
        self.client = None

    def read_snapshot(self) -> Optional[SeplosData]:
        """
        Reads one telemetry/telecommand pair, retrying up to `max_retries` times.

        Transport failures drop the connection so the next attempt reopens
        it. Frame and status errors keep the connection: the bus works, the
        reply was just unusable.

        Returns:
            The snapshot, or None when every attempt failed. `last_error_message`
            holds the last failure.
        """
        delay = self.inter_command_delay_ms / 1000.0
        for attempt in range(1, self.max_retries + 2):
            if not self.connect():
                self.logger.error(f"SeplosBMSV2 '{self.instance_name}': Connection failed. Cannot read data.")
                return None
            try:
                snapshot = get_monitor_snapshot(self.client, self.controller_address, self.pack_number, delay)
            except (TransportReadError, TransportWriteError) as e:
                self.last_error_message = f"Communication error: {e}"
                self.disconnect()
            except NonNormalStatusError as e:
                self.last_error_message = str(e)
            except SeplosError as e:
                self.last_error_message = f"Invalid response: {e}"
            else:
                self.last_error_message = None
                self.latest_snapshot = snapshot
                return snapshot

            self.logger.error(f"SeplosBMSV2 '{self.instance_name}': Read attempt {attempt}/{self.max_retries + 1} failed. {self.last_error_message}")
            if attempt <= self.max_retries:
                time.sleep(RETRY_BACKOFF_SECONDS)
        return None

    def read_protocol_version(self) -> Optional[float]:
        """Asks the controller for its protocol version, e.g. 2.0 or 2.3."""
        if not self.connect():
            return None
        try:
            self.protocol_version = get_protocol_version(self.client, self.controller_address)
        except SeplosError as e:
            self.last_error_message = f"Protocol version query failed: {e}"
            self.logger.error(f"SeplosBMSV2 '{self.instance_name}': {self.last_error_message}")
            if isinstance(e, (TransportReadError, TransportWriteError)):
                self.disconnect()
            return None
        self.logger.info(f"SeplosBMSV2 '{self.instance_name}': Controller reports protocol version {self.protocol_version:.1f}")
        return self.protocol_version

    def standardize_snapshot(self, snapshot: SeplosData) -> Dict[str, Any]:
        """
        Translates a snapshot into StandardDataKeys.

        The BMS reports discharge current as negative while the application
        counts discharge as positive, so current and power are negated here.
        """
        cell_count = snapshot.active_cell_count
        cells = list(snapshot.cell_voltage[:cell_count])
        min_v, max_v = snapshot.lowest_cell_voltage, snapshot.highest_cell_voltage

        current = round(-snapshot.charge_discharge_current, 2)
        power = round(snapshot.total_battery_voltage * current, 2)

        balancing = [str(i + 1) for i in range(cell_count) if snapshot.is_cell_balancing(i)]
        disconnected = [str(i + 1) for i in range(cell_count) if snapshot.is_cell_disconnected(i)]

        alarms: List[str] = []
        warnings: List[str] = []
        for index, entry in active_bit_alarms(snapshot.bit_alarm):
            if entry is None:
                alarms.append(f"Undocumented alarm bit {index}")
            elif entry.kind in ("protection", "fault"):
                alarms.append(entry.name)
            elif entry.kind == "warning":
                warnings.append(entry.name)
        alarms.extend(explain_byte_alarms(snapshot))

        if alarms:
            fault_summary = alarms[0]
        elif warnings:
            fault_summary = warnings[0]
        else:
            fault_summary = "Normal"

        return {
            BMS_KEY_SOC: snapshot.state_of_charge,
            BMS_KEY_SOH: snapshot.state_of_health,
            BMS_KEY_VOLTAGE: snapshot.total_battery_voltage,
            BMS_KEY_CURRENT: current,
            BMS_KEY_POWER: power,
            BMS_KEY_STATUS_TEXT: system_state_text(snapshot),
            BMS_KEY_FAULT_SUMMARY: fault_summary,
            BMS_KEY_ACTIVE_ALARMS_LIST: alarms,
            BMS_KEY_ACTIVE_WARNINGS_LIST: warnings,
            StandardDataKeys.BATTERY_CYCLES_COUNT: snapshot.number_of_cycles,
            StandardDataKeys.BATTERY_TEMPERATURE_CELSIUS: snapshot.highest_temperature,
            StandardDataKeys.BMS_HAS_ALARM: snapshot.has_alarm,
            StandardDataKeys.BMS_CELL_COUNT: cell_count,
            StandardDataKeys.BMS_CELL_VOLTAGES_LIST: cells,
            StandardDataKeys.BMS_CELL_VOLTAGE_MIN_VOLTS: min_v,
            StandardDataKeys.BMS_CELL_VOLTAGE_MAX_VOLTS: max_v,
            StandardDataKeys.BMS_CELL_VOLTAGE_AVERAGE_VOLTS: round(sum(cells) / len(cells), 3),
            StandardDataKeys.BMS_CELL_VOLTAGE_DELTA_VOLTS: round(max_v - min_v, 3),
            StandardDataKeys.BMS_CELL_WITH_MIN_VOLTAGE_NUMBER: cells.index(min_v) + 1,
            StandardDataKeys.BMS_CELL_WITH_MAX_VOLTAGE_NUMBER: cells.index(max_v) + 1,
            StandardDataKeys.BMS_TEMPERATURES_LIST: list(snapshot.temperature),
            StandardDataKeys.BMS_TEMP_MIN_CELSIUS: snapshot.lowest_temperature,
            StandardDataKeys.BMS_TEMP_MAX_CELSIUS: snapshot.highest_temperature,
            StandardDataKeys.BMS_AMBIENT_TEMPERATURE_CELSIUS: snapshot.temperature[AMBIENT_TEMPERATURE_INDEX],
            StandardDataKeys.BMS_POWER_TEMPERATURE_CELSIUS: snapshot.temperature[POWER_TEMPERATURE_INDEX],
            StandardDataKeys.BMS_CELLS_BALANCING_TEXT: ", ".join(balancing) if balancing else "None",
            StandardDataKeys.BMS_CELLS_DISCONNECTED_TEXT: ", ".join(disconnected) if disconnected else "None",
            StandardDataKeys.BMS_CHARGE_FET_ON: snapshot.charge_switch,
            StandardDataKeys.BMS_DISCHARGE_FET_ON: snapshot.discharge_switch,
            StandardDataKeys.BMS_CURRENT_LIMIT_ON: snapshot.current_limit_switch,
            StandardDataKeys.BMS_HEATING_ON: snapshot.heating_switch,
            StandardDataKeys.BMS_REMAINING_CAPACITY_AH: snapshot.residual_capacity,
            StandardDataKeys.BMS_FULL_CAPACITY_AH: snapshot.battery_capacity,
            StandardDataKeys.BMS_NOMINAL_CAPACITY_AH: snapshot.rated_capacity,
            StandardDataKeys.BMS_PORT_VOLTAGE_VOLTS: snapshot.port_voltage,
            StandardDataKeys.CORE_PLUGIN_CONNECTION_STATUS: "connected" if self._is_connected_flag else "disconnected",
        }

    def read_bms_data(self) -> Optional[Dict[str, Any]]:
        snapshot = self.read_snapshot()
        if snapshot is None:
            return None
        self.latest_data_cache = self.standardize_snapshot(snapshot)
        return self.latest_data_cache.copy()

    def get_bms_static_info(self) -> Optional[Dict[str, Any]]:
        """
        Static identification. Manufacturer and model come from configuration
        because the protocol 2.0 command set has no query for them. The
        protocol version is read from the controller once and then cached.
        """
        if self.protocol_version is None:
            self.read_protocol_version()
        return {
            BMS_KEY_MANUFACTURER: parse_config_str(self.plugin_config, "seplos_manufacturer", "Seplos"),
            BMS_KEY_MODEL: parse_config_str(self.plugin_config, "seplos_model", "Seplos BMS V2"),
            BMS_KEY_SERIAL_NUMBER: f"address-0x{self.controller_address:02X}-pack-{self.pack_number}",
            BMS_KEY_PROTOCOL_VERSION: f"{self.protocol_version:.1f}" if self.protocol_version is not None else "Unknown",
            StandardDataKeys.STATIC_BMS_CONTROLLER_ADDRESS: self.controller_address,
            StandardDataKeys.STATIC_BMS_PACK_NUMBER: self.pack_number,
        }
