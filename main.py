"""
Main entry point for the Seplos BMS Monitor.

This script orchestrates one monitoring session:
- Loads configuration and applies command line overrides.
- Sets up logging.
- Validates the configuration.
- Locks the bus so no other process talks to the same controller.
- Reads the controller once, or repeatedly with --poll, and prints a report.
- Handles graceful shutdown on SIGINT/SIGTERM signals.
"""
import argparse
import logging
from logging.handlers import RotatingFileHandler
import pathlib
import signal
import sys
from typing import Callable, List, Optional

from core.app_state import AppState
from core.config_loader import build_plugin_config, load_configuration, validate_core_config
from core.constants import (
    APP_NAME, APP_VERSION, BMS_INSTANCE_NAME, CONFIG_FILE_NAME, CORE_LOGGER_NAME, LOCK_FILE_PREFIX,
    LOG_FILE_BACKUP_COUNT, LOG_FILE_MAX_BYTES, LOG_FILE_NAME, LOG_FORMAT,
)
from plugins.battery.seplos_bms_v2_constants import DEFAULT_TCP_PORT
from plugins.battery.seplos_bms_v2_plugin import SeplosBMSV2
from plugins.plugin_interface import StandardDataKeys
from services.report_service import OUTPUT_FORMATS, render
from utils.helpers import parse_int
from utils.lock import acquire_lock, cleanup_lock_file, lock_file_path_for

__version__ = APP_VERSION


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="seplos-monitor",
        description="Read and report the state of a Seplos BMS over its RS-485 protocol 2.0 interface.",
    )
    parser.add_argument("-c", "--config", help=f"Configuration file (default: {CONFIG_FILE_NAME} beside main.py).")
    bus = parser.add_mutually_exclusive_group()
    bus.add_argument("-d", "--device", help="Serial device of the RS-485 adapter, e.g. /dev/ttyUSB0.")
    bus.add_argument("--tcp", metavar="HOST[:PORT]", type=split_host_port, help=f"RS-485 to Ethernet converter (default port {DEFAULT_TCP_PORT}).")
    parser.add_argument("-a", "--address", type=parse_int, help="Controller address, decimal or 0x-hex.")
    parser.add_argument("-p", "--pack", type=parse_int, help="Battery pack number, decimal or 0x-hex.")
    parser.add_argument("-f", "--format", choices=OUTPUT_FORMATS, help="Output format.")
    parser.add_argument("-l", "--longer", action="store_true", default=None, help="Include per-cell detail.")
    parser.add_argument("--protocol-version", action="store_true", help="Print the controller's protocol version and exit.")
    parser.add_argument("--poll", type=float, metavar="SECONDS", help="Repeat every SECONDS until interrupted (0 = once).")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level.")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Log errors only.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def split_host_port(value: str) -> tuple:
    """
    argparse type for --tcp: "host", "host:port", "[v6addr]:port" or a bare IPv6 literal.
    The port defaults to the converter's usual 8888.
    """
    if value.startswith("["):
        host, sep, rest = value[1:].partition("]")
        if not sep or (rest and not rest.startswith(":")):
            raise argparse.ArgumentTypeError(f"invalid host '{value}'")
        port = rest[1:] if rest else ""
    elif value.count(":") > 1:
        host, port = value, ""
    else:
        host, _, port = value.partition(":")
    if not host:
        raise argparse.ArgumentTypeError(f"missing host in '{value}'")
    if not port:
        return host, DEFAULT_TCP_PORT
    try:
        port_number = int(port)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port '{port}'")
    if not 0 < port_number < 65536:
        raise argparse.ArgumentTypeError(f"port {port_number} out of range")
    return host, port_number


def apply_cli_overrides(args: argparse.Namespace, app_state: AppState) -> None:
    """Command line options win over the config file and environment."""
    if args.device:
        app_state.connection_type = "serial"
        app_state.serial_port = args.device
    if args.tcp:
        app_state.connection_type = "tcp"
        app_state.tcp_host, app_state.tcp_port = args.tcp
    if args.address is not None:
        app_state.controller_address = args.address
    if args.pack is not None:
        app_state.pack_number = args.pack
    if args.format:
        app_state.output_format = args.format
    if args.longer:
        app_state.longer_report = True
    if args.poll is not None:
        app_state.poll_interval = args.poll
    if args.verbose:
        app_state.log_level = "DEBUG"
    elif args.quiet:
        app_state.log_level = "ERROR"


def setup_logging(app_state: AppState):
    """
    Sets up logging to stderr and, optionally, a rotating file.

    Reports go to stdout, so logging stays on stderr to keep piped output clean.
    """
    effective_log_level = getattr(logging, app_state.log_level, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(effective_log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if app_state.log_to_file:
        log_file_path = pathlib.Path(__file__).parent / LOG_FILE_NAME
        file_handler = RotatingFileHandler(
            log_file_path, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUP_COUNT, encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
        logging.info(f"Logging to file: {log_file_path}")

    logging.debug(f"Logging level set to {app_state.log_level}.")


def graceful_exit(app_state: AppState) -> Callable[[int, Optional[object]], None]:
    """Signal handler factory: the first SIGINT/SIGTERM stops the poll loop."""
    def handler(signum, frame):
        if not app_state.running:
            return
        logger = logging.getLogger(CORE_LOGGER_NAME)
        logger.warning(f"Shutdown signal ({signal.Signals(signum).name}) received. Stopping after the current read...")
        app_state.request_stop()
    return handler


def poll_once(plugin: SeplosBMSV2, app_state: AppState) -> bool:
    """Reads the controller and prints one report. Returns False on a failed read."""
    logger = logging.getLogger(CORE_LOGGER_NAME)
    data = plugin.read_dynamic_data()
    if data is None or plugin.latest_snapshot is None:
        app_state.consecutive_failures += 1
        print(f"Error: {plugin.last_error_message or 'read failed'}", file=sys.stderr)
        return False

    app_state.consecutive_failures = 0

    alerts = data.get(StandardDataKeys.OPERATIONAL_CATEGORIZED_ALERTS_DICT, {}).get("bms", [])
    if alerts and alerts != ["OK"]:
        logger.warning(f"BMS alerts: {'; '.join(alerts)}")

    sys.stdout.write(render(plugin.latest_snapshot, app_state.output_format, app_state.longer_report))
    sys.stdout.flush()
    return True


def run(plugin: SeplosBMSV2, app_state: AppState, protocol_version_only: bool) -> int:
    logger = logging.getLogger(CORE_LOGGER_NAME)
    if protocol_version_only:
        version = plugin.read_protocol_version()
        if version is None:
            print(f"Error: {plugin.last_error_message}", file=sys.stderr)
            return 1
        print(f"{version:.1f}")
        return 0

    if app_state.poll_interval <= 0:
        return 0 if poll_once(plugin, app_state) else 1

    logger.info(f"Polling every {app_state.poll_interval}s. Press Ctrl+C to stop.")
    while app_state.running:
        if not poll_once(plugin, app_state):
            logger.error(f"Read failed ({app_state.consecutive_failures} in a row). Retrying next interval.")
        app_state.stop_event.wait(app_state.poll_interval)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)

    # --- 1. Configuration ---
    script_dir = pathlib.Path(__file__).parent.resolve()
    app_state = AppState(version=__version__)
    config_file = args.config or str(script_dir / CONFIG_FILE_NAME)
    load_configuration(config_file, app_state)
    apply_cli_overrides(args, app_state)

    setup_logging(app_state)
    logger = logging.getLogger(CORE_LOGGER_NAME)
    logger.info(f"--- Starting {APP_NAME} v{__version__} ---")

    # Exits if the configuration is invalid
    validate_core_config(app_state)

    # --- 2. Plugin and bus lock ---
    plugin = SeplosBMSV2(BMS_INSTANCE_NAME, build_plugin_config(app_state),
                         logging.getLogger(f"plugins.{BMS_INSTANCE_NAME}"), app_state)
    app_state.bms_plugin = plugin

    if not acquire_lock(lock_file_path_for(plugin.bus_name, LOCK_FILE_PREFIX)):
        logger.critical(f"Bus {plugin.bus_name} is in use by another process. Exiting.")
        return 1

    # --- 3. Graceful shutdown ---
    signal.signal(signal.SIGINT, graceful_exit(app_state))
    signal.signal(signal.SIGTERM, graceful_exit(app_state))

    # --- 4. Read ---
    try:
        return run(plugin, app_state, args.protocol_version)
    finally:
        plugin.disconnect()
        cleanup_lock_file()
        logger.info(f"--- {APP_NAME} v{__version__} Finished ---")


if __name__ == "__main__":
    sys.exit(main())
