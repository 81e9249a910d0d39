# core/config_loader.py
import configparser
import logging
import os
import sys
from typing import Any, Callable, Dict

from core.app_state import AppState
from core.constants import (
    DEFAULT_CONTROLLER_ADDRESS, DEFAULT_INTER_COMMAND_DELAY_MS, DEFAULT_LOG_LEVEL, DEFAULT_MAX_RETRIES,
    DEFAULT_OUTPUT_FORMAT, DEFAULT_PACK_NUMBER, DEFAULT_POLL_INTERVAL,
)
from plugins.battery.seplos_bms_v2_constants import (
    DEFAULT_BAUD_RATE, DEFAULT_SERIAL_PORT, DEFAULT_TCP_PORT, DEFAULT_TIMEOUT_SECONDS,
)
from services.report_service import OUTPUT_FORMATS
from utils.helpers import parse_int

logger = logging.getLogger(__name__)

CONNECTION_TYPES = ("serial", "tcp")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

def load_configuration(config_path: str, app_state: AppState) -> None:
    """
    Loads configuration from a .ini file and environment variables, populating the AppState object.

    The precedence is:
    1. Environment variable (e.g., `SERIAL_PORT`)
    2. Value from config file (e.g., `SERIAL_PORT` in `[SEPLOS]`)
    3. Default value specified in the code.

    A missing file is not an error; the defaults describe a controller at
    address 0 on /dev/ttyUSB0.

    Args:
        config_path (str): The path to the configuration file.
        app_state (AppState): The central application state object to populate.
    """
    config = configparser.ConfigParser(interpolation=None)
    if config_path and os.path.exists(config_path):
        config.read(config_path, encoding='utf-8')
        logger.info(f"Successfully read configuration from {config_path}")
    else:
        logger.warning(f"Config file not found at {config_path}. Using defaults and environment variables.")

    app_state.config = config
    app_state.config_path = config_path

    def get_config_value(var_name: str, return_type: Callable = str, default: Any = None, section: str = 'DEFAULT') -> Any:
        """
        Retrieves and converts one value: environment first, then the file, then `default`.
        A value that does not convert logs a warning and yields `default`.
        """
        env_value = os.environ.get(var_name.upper())
        config_value = config.get(section, var_name, fallback=None) if config.has_option(section, var_name) else None

        value_to_cast = env_value if env_value is not None else config_value
        if value_to_cast is None:
            return default

        if isinstance(value_to_cast, str):
            value_to_cast = value_to_cast.split(';')[0].strip().strip("'\"")

        try:
            if return_type == bool:
                return value_to_cast.lower() in ['true', '1', 'yes', 'on']
            return return_type(value_to_cast)
        except (ValueError, TypeError):
            logger.warning(f"Could not cast '{value_to_cast}' for '{var_name}' to {return_type.__name__}. Using default: {default}")
            return default

    # General
    app_state.poll_interval = get_config_value("POLL_INTERVAL", float, DEFAULT_POLL_INTERVAL, section='GENERAL')
    app_state.output_format = get_config_value("OUTPUT_FORMAT", str, DEFAULT_OUTPUT_FORMAT, section='GENERAL').lower()
    app_state.longer_report = get_config_value("LONGER_REPORT", bool, False, section='GENERAL')

    # Logging
    app_state.log_level = get_config_value("LOG_LEVEL", str, DEFAULT_LOG_LEVEL, section='LOGGING').upper()
    if app_state.log_level not in LOG_LEVELS:
        logger.warning(f"Invalid LOG_LEVEL '{app_state.log_level}'. Defaulting to '{DEFAULT_LOG_LEVEL}'.")
        app_state.log_level = DEFAULT_LOG_LEVEL
    app_state.log_to_file = get_config_value("LOG_TO_FILE", bool, False, section='LOGGING')

    # Seplos bus
    app_state.connection_type = get_config_value("CONNECTION_TYPE", str, "serial", section='SEPLOS').lower()
    app_state.serial_port = get_config_value("SERIAL_PORT", str, DEFAULT_SERIAL_PORT, section='SEPLOS')
    app_state.baud_rate = get_config_value("BAUD_RATE", int, DEFAULT_BAUD_RATE, section='SEPLOS')
    app_state.tcp_host = get_config_value("TCP_HOST", str, None, section='SEPLOS')
    app_state.tcp_port = get_config_value("TCP_PORT", int, DEFAULT_TCP_PORT, section='SEPLOS')
    app_state.timeout = get_config_value("TIMEOUT", float, DEFAULT_TIMEOUT_SECONDS, section='SEPLOS')
    app_state.controller_address = get_config_value("CONTROLLER_ADDRESS", parse_int, DEFAULT_CONTROLLER_ADDRESS, section='SEPLOS')
    app_state.pack_number = get_config_value("PACK_NUMBER", parse_int, DEFAULT_PACK_NUMBER, section='SEPLOS')
    app_state.max_retries = get_config_value("MAX_RETRIES", int, DEFAULT_MAX_RETRIES, section='SEPLOS')
    app_state.inter_command_delay_ms = get_config_value("INTER_COMMAND_DELAY_MS", int, DEFAULT_INTER_COMMAND_DELAY_MS, section='SEPLOS')

    logger.info("Configuration loading complete.")

def validate_core_config(app_state: AppState) -> None:
    """
    Validates settings after the config file and command line have been applied.

    Checks that the address and pack number fit in one byte, that the output
    format and connection type are known, that a TCP connection has a host,
    that the poll interval, retry count and inter-command delay are not
    negative, and that the read timeout is positive.

    If any check fails, it logs a critical error listing every problem and
    terminates the application with `sys.exit(1)`.
    """
    errors = []
    if not 0 <= app_state.controller_address <= 0xFF:
        errors.append(f"CONTROLLER_ADDRESS must be 0-255 (got {app_state.controller_address}).")
    if not 0 <= app_state.pack_number <= 0xFF:
        errors.append(f"PACK_NUMBER must be 0-255 (got {app_state.pack_number}).")
    if app_state.output_format not in OUTPUT_FORMATS:
        errors.append(f"OUTPUT_FORMAT must be one of {', '.join(OUTPUT_FORMATS)} (got '{app_state.output_format}').")
    if app_state.connection_type not in CONNECTION_TYPES:
        errors.append(f"CONNECTION_TYPE must be 'serial' or 'tcp' (got '{app_state.connection_type}').")
    elif app_state.connection_type == "tcp" and not app_state.tcp_host:
        errors.append("TCP_HOST must be set when CONNECTION_TYPE is 'tcp'.")
    if app_state.poll_interval < 0:
        errors.append("POLL_INTERVAL must be >= 0.")
    if app_state.max_retries < 0:
        errors.append("MAX_RETRIES must be >= 0.")
    if app_state.timeout <= 0:
        errors.append(f"TIMEOUT must be greater than 0 seconds (got {app_state.timeout}).")
    if app_state.inter_command_delay_ms < 0:
        errors.append("INTER_COMMAND_DELAY_MS must be >= 0.")

    if errors:
        logger.critical("Core Configuration Errors: " + "; ".join(errors) + " Exiting.")
        sys.exit(1)

    logger.info("Core configuration validated successfully.")

def build_plugin_config(app_state: AppState) -> Dict[str, Any]:
    """The `seplos_*` dictionary SeplosBMSV2 is constructed with."""
    plugin_config: Dict[str, Any] = {
        "seplos_connection_type": app_state.connection_type,
        "seplos_serial_port": app_state.serial_port,
        "seplos_baud_rate": app_state.baud_rate,
        "seplos_tcp_port": app_state.tcp_port,
        "seplos_timeout": app_state.timeout,
        "seplos_controller_address": app_state.controller_address,
        "seplos_pack_number": app_state.pack_number,
        "seplos_max_retries": app_state.max_retries,
        "seplos_inter_command_delay_ms": app_state.inter_command_delay_ms,
    }
    if app_state.tcp_host:
        plugin_config["seplos_tcp_host"] = app_state.tcp_host
    if app_state.config is not None:
        for key in ("seplos_manufacturer", "seplos_model"):
            value = app_state.config.get("SEPLOS", key, fallback=None) if app_state.config.has_section("SEPLOS") else None
            if value:
                plugin_config[key] = value
    return plugin_config
