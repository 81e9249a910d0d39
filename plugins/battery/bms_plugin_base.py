# plugins/battery/bms_plugin_base.py
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, TYPE_CHECKING
if TYPE_CHECKING:
    from core.app_state import AppState
import logging
from datetime import datetime, timezone

try:
    from ..plugin_interface import DevicePlugin, StandardDataKeys
except ImportError:
    from plugin_interface import DevicePlugin, StandardDataKeys # type: ignore

# Standardized BMS Keys
BMS_KEY_SOC = StandardDataKeys.BATTERY_STATE_OF_CHARGE_PERCENT
BMS_KEY_SOH = StandardDataKeys.BATTERY_STATE_OF_HEALTH_PERCENT
BMS_KEY_VOLTAGE = StandardDataKeys.BATTERY_VOLTAGE_VOLTS
BMS_KEY_CURRENT = StandardDataKeys.BATTERY_CURRENT_AMPS
BMS_KEY_POWER = StandardDataKeys.BATTERY_POWER_WATTS
BMS_KEY_STATUS_TEXT = StandardDataKeys.BATTERY_STATUS_TEXT
BMS_KEY_FAULT_SUMMARY = StandardDataKeys.BMS_FAULT_SUMMARY_TEXT
BMS_KEY_ACTIVE_ALARMS_LIST = StandardDataKeys.BMS_ACTIVE_ALARMS_LIST
BMS_KEY_ACTIVE_WARNINGS_LIST = StandardDataKeys.BMS_ACTIVE_WARNINGS_LIST
BMS_KEY_MANUFACTURER = StandardDataKeys.STATIC_BATTERY_MANUFACTURER
BMS_KEY_MODEL = StandardDataKeys.STATIC_BATTERY_MODEL_NAME
BMS_KEY_SERIAL_NUMBER = StandardDataKeys.STATIC_BATTERY_SERIAL_NUMBER
BMS_KEY_PROTOCOL_VERSION = StandardDataKeys.STATIC_COMMUNICATION_PROTOCOL_VERSION

# Status values that do not deserve their own alert line
QUIET_STATUS_TEXTS = ("normal", "ok", "idle", "standby", "unknown", "charging", "discharging", "floating charge")

class BMSPluginBase(DevicePlugin, ABC):
    """
    Abstract Base Class for Battery Management System (BMS) plugins.

    Concrete plugins talk to the hardware and return flat dictionaries keyed
    by `StandardDataKeys` from `read_bms_data` and `get_bms_static_info`.
    This base turns those into the shape the reporting side expects: the
    device category is stamped on static data, and dynamic data gains a
    categorized alert list and a UTC timestamp.
    """
    def __init__(self, instance_name: str, plugin_specific_config: Dict[str, Any], main_logger: logging.Logger, app_state: Optional['AppState'] = None):
        super().__init__(instance_name, plugin_specific_config, main_logger, app_state)
        self.latest_data_cache: Dict[str, Any] = {}
        self.last_error_message: Optional[str] = None

    @staticmethod
    @abstractmethod
    def get_configurable_params() -> List[Dict[str, Any]]:
        """
        Describes the configuration keys this plugin understands.

        Returns:
            List[Dict[str, Any]]: One entry per key with "name", "type",
                                  "default" and "description".
        """
        pass

    @abstractmethod
    def read_bms_data(self) -> Optional[Dict[str, Any]]:
        """
        Reads dynamic data from the BMS.

        Returns:
            Optional[Dict[str, Any]]: A flat dictionary keyed by StandardDataKeys,
                                      or None if the read failed. On failure
                                      `last_error_message` says why.
        """
        pass

    @abstractmethod
    def get_bms_static_info(self) -> Optional[Dict[str, Any]]:
        """Static identification of the BMS, or None on failure."""
        pass

    def read_static_data(self) -> Dict[str, Any]:
        static_info = self.get_bms_static_info()
        standardized_data: Dict[str, Any] = dict(static_info) if static_info else {}
        standardized_data[StandardDataKeys.STATIC_DEVICE_CATEGORY] = "bms"
        return standardized_data

    def build_categorized_alerts(self, data: Dict[str, Any]) -> List[str]:
        """
        Flattens alarm, warning, fault and status information into one list
        of display lines, e.g. ["ALARM: Cell Overvoltage Protection", "WARN: Soc Low"].
        Returns ["OK"] when nothing is active.
        """
        alerts: List[str] = []

        alarms_val = data.get(BMS_KEY_ACTIVE_ALARMS_LIST, [])
        warnings_val = data.get(BMS_KEY_ACTIVE_WARNINGS_LIST, [])
        alarms = alarms_val if isinstance(alarms_val, list) else ([alarms_val] if alarms_val else [])
        warnings = warnings_val if isinstance(warnings_val, list) else ([warnings_val] if warnings_val else [])

        alerts.extend(f"ALARM: {a}" for a in alarms)
        alerts.extend(f"WARN: {w}" for w in warnings)

        fault_summary = data.get(BMS_KEY_FAULT_SUMMARY)
        if isinstance(fault_summary, str) and fault_summary.lower() not in ("normal", "ok", ""):
            if not any(fault_summary in line for line in alerts):
                alerts.append(f"Summary: {fault_summary}")

        bms_status = data.get(BMS_KEY_STATUS_TEXT)
        if isinstance(bms_status, str) and bms_status.lower() not in QUIET_STATUS_TEXTS and \
           not any(bms_status in line for line in alerts):
            alerts.append(f"State: {bms_status}")

        return alerts if alerts else ["OK"]

    def read_dynamic_data(self) -> Optional[Dict[str, Any]]:
        """
        Main entry point for the polling loop.

        Wraps `read_bms_data`, adding OPERATIONAL_CATEGORIZED_ALERTS_DICT and
        PLUGIN_DATA_TIMESTAMP_MS_UTC. Returns None if the read failed.
        """
        processed_dynamic_data = self.read_bms_data()

        if not processed_dynamic_data:
            self.logger.warning(f"BMS Plugin '{self.instance_name}': read_bms_data returned None. Propagating as a read failure.")
            return None

        processed_dynamic_data[StandardDataKeys.OPERATIONAL_CATEGORIZED_ALERTS_DICT] = {
            "bms": self.build_categorized_alerts(processed_dynamic_data)
        }
        if StandardDataKeys.PLUGIN_DATA_TIMESTAMP_MS_UTC not in processed_dynamic_data:
            processed_dynamic_data[StandardDataKeys.PLUGIN_DATA_TIMESTAMP_MS_UTC] = int(datetime.now(timezone.utc).timestamp() * 1000)

        return processed_dynamic_data
