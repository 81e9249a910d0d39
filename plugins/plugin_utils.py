# plugins/plugin_utils.py
import time
import socket
import logging
from typing import Tuple, Optional

def check_tcp_port(host: str, port: int, timeout: float = 2.0, logger_instance: Optional[logging.Logger] = None) -> Tuple[bool, float, Optional[str]]:
    """
    Probes a TCP endpoint before the plugin commits to a full connection.

    Used for RS485-to-Ethernet converters: a refused or silent port is
    reported quickly and distinctly from a BMS that does not answer.

    Args:
        host (str): Hostname or IP address of the converter.
        port (int): TCP port of the converter.
        timeout (float): Connect timeout in seconds.
        logger_instance (Optional[logging.Logger]): Logger for debug output.

    Returns:
        A tuple of (reachable, connect latency in ms or -1.0, error text or None).
    """
    log = logger_instance if logger_instance else logging.getLogger(__name__)
    log.debug(f"TCP probe: {host}:{port} (timeout {timeout}s)")
    started = time.monotonic()
    try:
        with socket.create_connection((host, port), timeout=timeout):
            latency_ms = (time.monotonic() - started) * 1000
    except socket.timeout:
        log.debug(f"TCP probe: {host}:{port} timed out.")
        return False, -1.0, "Timeout"
    except OSError as e:
        log.debug(f"TCP probe: {host}:{port} failed: {e}")
        return False, -1.0, str(e)
    log.debug(f"TCP probe: {host}:{port} reachable in {latency_ms:.2f} ms")
    return True, latency_ms, None
