# bms_stand_alone_test_seplos_v2.py
"""
A standalone hardware check for plugins/battery/seplos_bms_v2_plugin.
This script loads configuration from config.ini (and the environment) and
talks to a real controller without running the monitor loop.

Instructions:
1. Configure the [SEPLOS] section of config.ini (see config.ini.example).
2. Connect the RS-485 adapter or converter to the controller.
3. Run the script from your terminal: python test_plugins/bms_stand_alone_test_seplos_v2.py

Optional: override the bus settings through the environment, e.g.
   SERIAL_PORT=/dev/ttyUSB1 CONTROLLER_ADDRESS=0x01 python test_plugins/bms_stand_alone_test_seplos_v2.py
"""
import logging
import time
import sys
import os

# --- Setup Project Path ---
# This allows the script to find project modules (like the plugin itself).
current_script_dir = os.path.dirname(os.path.abspath(__file__))
project_root_dir = os.path.dirname(current_script_dir)
if project_root_dir not in sys.path:
    sys.path.insert(0, project_root_dir)

# Now, project-level imports will work
from core.app_state import AppState
from core.config_loader import build_plugin_config, load_configuration
from plugins.battery.seplos_bms_v2_plugin import SeplosBMSV2
from services.report_service import render_text

READ_CYCLES = 3


def log_data(logger, data_dict):
    """Logs a flat data dictionary one key per line."""
    for key, value in data_dict.items():
        # Truncate long lists for cleaner logging
        if isinstance(value, list) and len(value) > 10:
            log_val = f"{str(value[:5])[:-1]} ... {str(value[-5:])[1:]} (Total: {len(value)})"
        else:
            log_val = str(value)
        logger.info(f"  {key:<40}: {log_val}")


if __name__ == "__main__":
    # Configure basic logging to the console
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)-8s [%(threadName)s] %(message)s')
    logger = logging.getLogger("SeplosV2StandaloneTest")

    # --- Load Configuration from config.ini ---
    config_file_path = os.path.join(project_root_dir, "config.ini")
    app_state = AppState()
    load_configuration(config_file_path, app_state)
    seplos_config = build_plugin_config(app_state)
    logger.info(f"Plugin configuration: {seplos_config}")

    seplos_plugin = SeplosBMSV2(instance_name="TestBMS", plugin_specific_config=seplos_config, main_logger=logger)
    if seplos_plugin.connection_type == "disabled":
        logger.error(f"Configuration error: {seplos_plugin.last_error_message}")
        sys.exit(1)

    logger.info(f"SeplosBMSV2 instantiated on {seplos_plugin.bus_name}. Attempting to connect...")
    if not seplos_plugin.connect():
        logger.error(f"Failed to connect to BMS. Last error: {seplos_plugin.last_error_message}")
        sys.exit(1)

    logger.info("Successfully connected to BMS.")
    try:
        logger.info("\n--- Static Data ---")
        log_data(logger, seplos_plugin.read_static_data())

        for i in range(READ_CYCLES):
            logger.info(f"\n--- Read Cycle {i+1} ---")
            data = seplos_plugin.read_dynamic_data()
            if data:
                log_data(logger, data)
                print(render_text(seplos_plugin.latest_snapshot, longer=True))
            else:
                logger.error(f"Failed to read data. Last error: {seplos_plugin.last_error_message}")
            time.sleep(3)
    except KeyboardInterrupt:
        logger.info("Test interrupted by user.")
    finally:
        seplos_plugin.disconnect()
        logger.info("Disconnected from BMS.")
