#!/usr/bin/env python3
"""
Frame and payload builders shared by the Seplos V2 test modules.

Builds telemetry and telecommand payloads field by field, wraps them in
response frames with correct length and frame checksums, and provides a
scripted in-memory ByteChannel so the protocol can be exercised without an
RS-485 adapter.
"""

import os
import sys
from typing import List, Optional, Sequence

# Add the project root to the Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from plugins.battery.seplos_v2_alarms import classify_alarms
from plugins.battery.seplos_v2_codec import encode_length_field, hex2, hex4, overall_checksum
from plugins.battery.seplos_v2_decoder import decode_telecommand, decode_telemetry
from plugins.battery.seplos_v2_monitor import SeplosData, build_snapshot
from plugins.battery.seplos_v2_transport import ByteChannel


def telemetry_payload(cells: Sequence[float] = (3.300,) * 16, number_of_cells: int = 16,
                      temperatures: Sequence[float] = (25.0,) * 6, current_raw: int = 0,
                      total_voltage: float = 52.80, residual_capacity: float = 80.00,
                      battery_capacity: float = 100.00, soc: float = 80.0, rated_capacity: float = 100.00,
                      cycles: int = 12, soh: float = 100.0, port_voltage: float = 52.75) -> bytes:
    """A 150-character telemetry (0x42) payload."""
    return (
        b"0001"
        + hex2(number_of_cells)
        + b"".join(hex4(round(v * 1000)) for v in cells)
        + hex2(len(temperatures))
        + b"".join(hex4(round(t * 10) + 2731) for t in temperatures)
        + hex4(current_raw)
        + hex4(round(total_voltage * 100))
        + hex4(round(residual_capacity * 100))
        + hex2(10)
        + hex4(round(battery_capacity * 100))
        + hex4(round(soc * 10))
        + hex4(round(rated_capacity * 100))
        + hex4(cycles)
        + hex4(round(soh * 10))
        + hex4(round(port_voltage * 100))
        + b"0" * 16
    )


def telecommand_payload(cell_alarm: Sequence[int] = (0,) * 16, number_of_cells: int = 16,
                        temperature_alarm: Sequence[int] = (0,) * 6, current_alarm: int = 0,
                        voltage_alarm: int = 0, alarm_events: Sequence[int] = (0,) * 8,
                        on_off_state: int = 0x03, equalization_state: int = 0, system_state: int = 0x02,
                        disconnection_state: int = 0) -> bytes:
    """A 98-character telecommand (0x44) payload. `alarm_events` holds events 1..8."""
    return (
        b"0001"
        + hex2(number_of_cells)
        + b"".join(hex2(code) for code in cell_alarm)
        + hex2(len(temperature_alarm))
        + b"".join(hex2(code) for code in temperature_alarm)
        + hex2(current_alarm)
        + hex2(voltage_alarm)
        + hex2(20)
        + b"".join(hex2(event) for event in alarm_events[:6])
        + hex2(on_off_state)
        + hex2(equalization_state & 0xFF) + hex2(equalization_state >> 8)
        + hex2(system_state)
        + hex2(disconnection_state & 0xFF) + hex2(disconnection_state >> 8)
        + b"".join(hex2(event) for event in alarm_events[6:8])
        + b"0" * 12
    )


def build_response(payload: bytes = b"", status: int = 0x00, version: int = 0x20, address: int = 0x00) -> bytes:
    """A response frame as a BMS would send it."""
    body = (hex2(version) + hex2(address) + hex2(0x46) + hex2(status)
            + hex4(encode_length_field(len(payload))) + payload)
    return b"~" + body + hex4(overall_checksum(body)) + b"\r"


def make_snapshot(address: int = 0, pack: int = 1, telemetry: Optional[bytes] = None,
                  telecommand: Optional[bytes] = None) -> SeplosData:
    """Snapshot decoded from payloads, without any channel."""
    tel = decode_telemetry(telemetry if telemetry is not None else telemetry_payload())
    tc = decode_telecommand(telecommand if telecommand is not None else telecommand_payload())
    return build_snapshot(address, pack, tel, tc, classify_alarms(tc))


class ScriptedChannel(ByteChannel):
    """
    In-memory channel that answers each written request with the next
    scripted response. A short script makes reads come back short, which
    the protocol reports as a read failure.
    """

    def __init__(self, responses: List[bytes], short_write: bool = False):
        super().__init__()
        self.responses = list(responses)
        self.short_write = short_write
        self.written: List[bytes] = []
        self.discards = 0
        self.pending = bytearray()

    def discard_pending_input(self) -> None:
        self.discards += 1
        self.pending.clear()

    def write(self, data: bytes) -> int:
        self.written.append(bytes(data))
        if self.responses:
            self.pending.extend(self.responses.pop(0))
        return len(data) - 1 if self.short_write else len(data)

    def wait_until_transmitted(self) -> None:
        pass

    def blocking_read(self, count: int) -> bytes:
        data = bytes(self.pending[:count])
        del self.pending[:count]
        return data
