# plugins/battery/seplos_v2_transport.py
"""
Byte channels the Seplos V2 protocol runs over.

The protocol needs a half-duplex channel with four operations: discard
unread input, write, wait until written bytes have left the port, and a
read that returns exactly the requested number of bytes or fails. Every
read here is bounded by a deadline, so an unplugged or hibernating BMS
raises `TransportReadError` instead of blocking forever.
"""
import logging
import socket
import threading
import time
from abc import ABC, abstractmethod
from typing import Optional

import serial
from serial.serialutil import SerialException, SerialTimeoutException

from .seplos_bms_v2_constants import DEFAULT_BAUD_RATE, DEFAULT_TCP_PORT, DEFAULT_TIMEOUT_SECONDS
from .seplos_v2_errors import TransportReadError, TransportWriteError

logger = logging.getLogger(__name__)


class ByteChannel(ABC):
    """
    Abstract half-duplex byte channel.

    `exchange_lock` is held by the frame protocol for one complete
    request/response cycle; exchanges on one channel never overlap.
    """

    def __init__(self):
        self.exchange_lock = threading.Lock()

    @abstractmethod
    def discard_pending_input(self) -> None:
        pass

    @abstractmethod
    def write(self, data: bytes) -> int:
        pass

    @abstractmethod
    def wait_until_transmitted(self) -> None:
        pass

    @abstractmethod
    def blocking_read(self, count: int) -> bytes:
        """Return exactly `count` bytes or raise `TransportReadError`."""
        pass

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()


class SerialChannel(ByteChannel):
    """RS-485 adapter on a local serial port, 8N1 raw."""

    def __init__(self, port: str, baud_rate: int = DEFAULT_BAUD_RATE, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        super().__init__()
        self.port = port
        self.baud_rate = baud_rate
        self.timeout = timeout
        self.serial: Optional[serial.Serial] = None

    def __repr__(self) -> str:
        return f"SerialChannel({self.port!r}, {self.baud_rate})"

    def open(self) -> "SerialChannel":
        """Open the port. SerialException propagates to the caller."""
        self.serial = serial.Serial(
            port=self.port,
            baudrate=self.baud_rate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=self.timeout,
            write_timeout=self.timeout,
        )
        self.serial.reset_input_buffer()
        self.serial.reset_output_buffer()
        logger.info(f"Opened {self.port} at {self.baud_rate} baud.")
        return self

    def close(self) -> None:
        if self.serial is not None and self.serial.is_open:
            self.serial.close()
            logger.info(f"Closed {self.port}.")
        self.serial = None

    def _port(self) -> serial.Serial:
        if self.serial is None or not self.serial.is_open:
            raise TransportWriteError(f"Serial port {self.port} is not open")
        return self.serial

    def discard_pending_input(self) -> None:
        port = self._port()
        port.reset_input_buffer()
        port.reset_output_buffer()

    def write(self, data: bytes) -> int:
        try:
            written = self._port().write(data)
        except (SerialTimeoutException, SerialException) as e:
            raise TransportWriteError(f"Write to {self.port} failed: {e}") from e
        return written if written is not None else 0

    def wait_until_transmitted(self) -> None:
        try:
            self._port().flush()
        except SerialException as e:
            raise TransportWriteError(f"Drain of {self.port} failed: {e}") from e

    def blocking_read(self, count: int) -> bytes:
        if self.serial is None or not self.serial.is_open:
            raise TransportReadError(f"Serial port {self.port} is not open")
        received = bytearray()
        deadline = time.monotonic() + self.timeout
        try:
            while len(received) < count:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TransportReadError(
                        f"Timed out reading {self.port}: got {len(received)} of {count} bytes")
                self.serial.timeout = remaining
                chunk = self.serial.read(count - len(received))
                if chunk:
                    received.extend(chunk)
        except SerialException as e:
            raise TransportReadError(f"Read from {self.port} failed: {e}") from e
        finally:
            if self.serial is not None:
                self.serial.timeout = self.timeout
        return bytes(received)


class TcpChannel(ByteChannel):
    """RS-485 to Ethernet converter in transparent TCP mode."""

    def __init__(self, host: str, port: int = DEFAULT_TCP_PORT, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        super().__init__()
        self.host = host
        self.port = port
        self.timeout = timeout
        self.sock: Optional[socket.socket] = None

    def __repr__(self) -> str:
        return f"TcpChannel({self.host!r}, {self.port})"

    def open(self) -> "TcpChannel":
        """Connect to the converter. OSError propagates to the caller."""
        self.sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        logger.info(f"Connected to {self.host}:{self.port}.")
        return self

    def close(self) -> None:
        if self.sock is not None:
            try:
                self.sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass  # Peer already gone
            self.sock.close()
            logger.info(f"Disconnected from {self.host}:{self.port}.")
        self.sock = None

    def _socket(self, error_type) -> socket.socket:
        if self.sock is None:
            raise error_type(f"TCP connection to {self.host}:{self.port} is not open")
        return self.sock

    def discard_pending_input(self) -> None:
        sock = self._socket(TransportWriteError)
        sock.setblocking(False)
        try:
            while True:
                stale = sock.recv(4096)
                if not stale:
                    break
                logger.debug(f"Discarded {len(stale)} stale bytes from {self.host}:{self.port}")
        except (BlockingIOError, InterruptedError):
            pass
        except OSError as e:
            raise TransportReadError(f"Flush of {self.host}:{self.port} failed: {e}") from e
        finally:
            sock.settimeout(self.timeout)

    def write(self, data: bytes) -> int:
        try:
            self._socket(TransportWriteError).sendall(data)
        except OSError as e:
            raise TransportWriteError(f"Send to {self.host}:{self.port} failed: {e}") from e
        return len(data)

    def wait_until_transmitted(self) -> None:
        # sendall() returns once the kernel owns the data
        pass

    def blocking_read(self, count: int) -> bytes:
        sock = self._socket(TransportReadError)
        received = bytearray()
        deadline = time.monotonic() + self.timeout
        try:
            while len(received) < count:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TransportReadError(
                        f"Timed out reading {self.host}:{self.port}: got {len(received)} of {count} bytes")
                sock.settimeout(remaining)
                chunk = sock.recv(count - len(received))
                if not chunk:
                    raise TransportReadError(f"Connection closed by {self.host}:{self.port} during read")
                received.extend(chunk)
        except socket.timeout as e:
            raise TransportReadError(
                f"Timed out reading {self.host}:{self.port}: got {len(received)} of {count} bytes") from e
        except OSError as e:
            raise TransportReadError(f"Read from {self.host}:{self.port} failed: {e}") from e
        finally:
            sock.settimeout(self.timeout)
        return bytes(received)
