"""
Centralized constants for the Seplos BMS Monitor application.

Values shared by main.py, the config loader and the plugin, kept here so the
defaults live in one place.
"""

# Application Details
APP_NAME = "Seplos BMS Monitor"
APP_VERSION = "1.0.0"
LOG_FILE_NAME = "seplos_monitor.log"
CONFIG_FILE_NAME = "config.ini"
LOCK_FILE_PREFIX = "seplos_monitor"

# Logger Names
CORE_LOGGER_NAME = "SeplosMonitorCore"

# Plugin instance used for the single configured controller
BMS_INSTANCE_NAME = "seplos_bms"

# Logging
LOG_FORMAT = '%(asctime)s %(levelname)-8s [%(threadName)s] %(name)s: %(message)s'
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUP_COUNT = 3
DEFAULT_LOG_LEVEL = "INFO"

# Polling (seconds); 0 means read once and exit
DEFAULT_POLL_INTERVAL = 0

# Output
DEFAULT_OUTPUT_FORMAT = "text"

# Bus defaults
DEFAULT_CONTROLLER_ADDRESS = 0
DEFAULT_PACK_NUMBER = 1
DEFAULT_MAX_RETRIES = 2
DEFAULT_INTER_COMMAND_DELAY_MS = 0
