# core/app_state.py
import threading
from typing import Optional, TYPE_CHECKING

from core.constants import (
    APP_VERSION, DEFAULT_CONTROLLER_ADDRESS, DEFAULT_INTER_COMMAND_DELAY_MS, DEFAULT_LOG_LEVEL,
    DEFAULT_MAX_RETRIES, DEFAULT_OUTPUT_FORMAT, DEFAULT_PACK_NUMBER, DEFAULT_POLL_INTERVAL,
)
from plugins.battery.seplos_bms_v2_constants import (
    DEFAULT_BAUD_RATE, DEFAULT_SERIAL_PORT, DEFAULT_TCP_PORT, DEFAULT_TIMEOUT_SECONDS,
)

if TYPE_CHECKING:
    from plugins.battery.seplos_bms_v2_plugin import SeplosBMSV2

class AppState:
    """
    Centralized application state.

    Holds the loaded configuration, the plugin instance and the stop event
    the poll loop waits on. `core.config_loader` fills it, command line
    options then override individual fields.
    """
    def __init__(self, version: str = APP_VERSION):
        # Version and Lifecycle
        self.version = version
        self.running = True
        self.stop_event = threading.Event()

        # Configuration (will be populated by config_loader)
        self.config = None
        self.config_path: Optional[str] = None
        self.poll_interval: float = DEFAULT_POLL_INTERVAL
        self.output_format: str = DEFAULT_OUTPUT_FORMAT
        self.longer_report: bool = False

        # Logging
        self.log_level: str = DEFAULT_LOG_LEVEL
        self.log_to_file: bool = False

        # Seplos bus
        self.connection_type: str = "serial"
        self.serial_port: str = DEFAULT_SERIAL_PORT
        self.baud_rate: int = DEFAULT_BAUD_RATE
        self.tcp_host: Optional[str] = None
        self.tcp_port: int = DEFAULT_TCP_PORT
        self.timeout: float = DEFAULT_TIMEOUT_SECONDS
        self.controller_address: int = DEFAULT_CONTROLLER_ADDRESS
        self.pack_number: int = DEFAULT_PACK_NUMBER
        self.max_retries: int = DEFAULT_MAX_RETRIES
        self.inter_command_delay_ms: int = DEFAULT_INTER_COMMAND_DELAY_MS

        # Plugin & polling
        self.bms_plugin: Optional['SeplosBMSV2'] = None
        self.consecutive_failures = 0

    def request_stop(self) -> None:
        self.running = False
        self.stop_event.set()
