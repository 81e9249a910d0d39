# plugins/plugin_interface.py
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, TYPE_CHECKING
import logging

if TYPE_CHECKING:
    from core.app_state import AppState

def _clean_config_text(config_dict: Dict[str, Any], key: str, default: Any) -> str:
    # Inline comments ("19200 ; baud") are tolerated
    return str(config_dict.get(key, default)).split(';')[0].strip()

def parse_config_int(config_dict: Dict[str, Any], key: str, default: int) -> int:
    """
    Parse an integer configuration value.

    Accepts decimal or 0x-prefixed hex so bus addresses can be written
    either way, e.g. "seplos_controller_address = 0x01 ; first pack".

    Raises:
        ValueError: if the value is not a valid integer.
    """
    text = _clean_config_text(config_dict, key, default)
    return int(text, 16) if text.lower().startswith("0x") else int(text)

def parse_config_float(config_dict: Dict[str, Any], key: str, default: float) -> float:
    """Parse a float configuration value, ignoring inline comments."""
    return float(_clean_config_text(config_dict, key, default))

def parse_config_str(config_dict: Dict[str, Any], key: str, default: Optional[str] = None) -> Optional[str]:
    """
    Parse a string configuration value, handling comments and whitespace.

    Returns:
        The cleaned string, or None if it is missing or empty.
    """
    value = config_dict.get(key, default)
    if value is None:
        return None
    clean_value = str(value).split(';')[0].strip()
    return clean_value if clean_value else None

# --- Standardized Data Keys ---
class StandardDataKeys:
    """
    Keys of the flat dictionaries a plugin hands to the rest of the application.

    Plugins translate their device-specific fields into these names so the
    reporting side never needs to know which BMS produced the data.
    """
    # === TIMESTAMPS & STATUS ===
    PLUGIN_DATA_TIMESTAMP_MS_UTC = "plugin_data_timestamp_ms_utc"
    CORE_PLUGIN_CONNECTION_STATUS = "core_plugin_connection_status"

    # === DEVICE IDENTIFICATION & STATIC INFO ===
    STATIC_DEVICE_CATEGORY = "static_device_category" # str: "bms"
    STATIC_COMMUNICATION_PROTOCOL_VERSION = "static_communication_protocol_version"
    STATIC_BATTERY_MODEL_NAME = "static_battery_model_name"
    STATIC_BATTERY_SERIAL_NUMBER = "static_battery_serial_number"
    STATIC_BATTERY_MANUFACTURER = "static_battery_manufacturer"
    STATIC_BMS_CONTROLLER_ADDRESS = "static_bms_controller_address"
    STATIC_BMS_PACK_NUMBER = "static_bms_pack_number"

    # === BATTERY OPERATIONAL (Dynamic) ===
    BATTERY_STATE_OF_CHARGE_PERCENT = "battery_state_of_charge_percent"
    BATTERY_STATE_OF_HEALTH_PERCENT = "battery_state_of_health_percent"
    BATTERY_VOLTAGE_VOLTS = "battery_voltage_volts"
    BATTERY_CURRENT_AMPS = "battery_current_amps" # Convention: +ve DISCHARGING, -ve CHARGING.
    BATTERY_POWER_WATTS = "battery_power_watts"   # Convention: +ve DISCHARGING, -ve CHARGING.
    BATTERY_TEMPERATURE_CELSIUS = "battery_temperature_celsius"
    BATTERY_STATUS_TEXT = "battery_status_text"
    BATTERY_CYCLES_COUNT = "battery_cycles_count"

    # === BMS DETAIL (Dynamic) ===
    BMS_CELL_COUNT = "bms_cell_count" # int
    BMS_CELL_VOLTAGE_MIN_VOLTS = "bms_cell_voltage_min_volts"
    BMS_CELL_VOLTAGE_MAX_VOLTS = "bms_cell_voltage_max_volts"
    BMS_CELL_VOLTAGE_AVERAGE_VOLTS = "bms_cell_voltage_average_volts"
    BMS_CELL_VOLTAGE_DELTA_VOLTS = "bms_cell_voltage_delta_volts" # Max - Min
    BMS_CELL_WITH_MIN_VOLTAGE_NUMBER = "bms_cell_with_min_voltage_number" # 1-based
    BMS_CELL_WITH_MAX_VOLTAGE_NUMBER = "bms_cell_with_max_voltage_number" # 1-based
    BMS_CELL_VOLTAGES_LIST = "bms_cell_voltages_list" # List[float]
    BMS_TEMP_MAX_CELSIUS = "bms_temp_max_celsius"
    BMS_TEMP_MIN_CELSIUS = "bms_temp_min_celsius"
    BMS_TEMPERATURES_LIST = "bms_temperatures_list" # List[float], sensor order
    BMS_AMBIENT_TEMPERATURE_CELSIUS = "bms_ambient_temperature_celsius"
    BMS_POWER_TEMPERATURE_CELSIUS = "bms_power_temperature_celsius"
    BMS_CELLS_BALANCING_TEXT = "bms_cells_balancing_text" # e.g. "1, 5, 8" or "None"
    BMS_CELLS_DISCONNECTED_TEXT = "bms_cells_disconnected_text"
    BMS_CHARGE_FET_ON = "bms_charge_fet_on" # bool
    BMS_DISCHARGE_FET_ON = "bms_discharge_fet_on" # bool
    BMS_CURRENT_LIMIT_ON = "bms_current_limit_on" # bool
    BMS_HEATING_ON = "bms_heating_on" # bool
    BMS_REMAINING_CAPACITY_AH = "bms_remaining_capacity_ah"
    BMS_FULL_CAPACITY_AH = "bms_full_capacity_ah"
    BMS_NOMINAL_CAPACITY_AH = "bms_nominal_capacity_ah"
    BMS_PORT_VOLTAGE_VOLTS = "bms_port_voltage_volts"
    BMS_FAULT_SUMMARY_TEXT = "bms_fault_summary_text"
    BMS_ACTIVE_ALARMS_LIST = "bms_active_alarms_list"
    BMS_ACTIVE_WARNINGS_LIST = "bms_active_warnings_list"
    BMS_HAS_ALARM = "bms_has_alarm" # bool

    OPERATIONAL_CATEGORIZED_ALERTS_DICT = "operational_categorized_alerts_dict" # {"bms": [...]}


class DevicePlugin(ABC):
    """
    Abstract Base Class for device plugins.

    Defines the contract the application relies on: connect, disconnect, and
    read static and dynamic data as flat dictionaries keyed by
    `StandardDataKeys`.
    """
    def __init__(self, instance_name: str, plugin_specific_config: Dict[str, Any], main_logger: logging.Logger, app_state: Optional['AppState'] = None):
        """
        'instance_name' identifies this plugin instance in logs (e.g. "battery_bms").
        'plugin_specific_config' holds the plugin's keys, as built by
        core.config_loader.build_plugin_config().
        """
        self.instance_name = instance_name
        self.plugin_config = plugin_specific_config
        self.logger = main_logger
        self.app_state = app_state
        self.client: Optional[Any] = None # Plugin-specific channel or connection
        self._is_connected_flag: bool = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the unique type name of this plugin (e.g., 'seplos_bms_v2')."""
        pass

    @property
    @abstractmethod
    def pretty_name(self) -> str:
        """Return a human-friendly name for the plugin type."""
        pass

    @property
    def is_connected(self) -> bool:
        return self._is_connected_flag

    @abstractmethod
    def connect(self) -> bool:
        """
        Establish connection to the device.
        MUST set self._is_connected_flag = True on success.
        Returns True on success, False on failure.
        """
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """
        Disconnect from the device.
        MUST set self._is_connected_flag = False.
        """
        pass

    @abstractmethod
    def read_static_data(self) -> Dict[str, Any]:
        """
        Read identifying data once after connecting. MUST include
        StandardDataKeys.STATIC_DEVICE_CATEGORY.
        """
        pass

    @abstractmethod
    def read_dynamic_data(self) -> Optional[Dict[str, Any]]:
        """
        Read operational data. Returns a flat dictionary keyed by
        StandardDataKeys, or None when the read failed.
        """
        pass
