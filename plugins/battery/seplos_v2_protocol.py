# plugins/battery/seplos_v2_protocol.py
"""
Frame construction and response validation for Seplos protocol 2.0.

Wire format (all ASCII)::

    '~' VV AA DD FF LLLL <payload> CCCC '\\r'

VV version, AA address, DD device type (0x46 = battery), FF command on a
request and status on a response, LLLL the 12-bit payload length with a
4-bit length checksum on top, CCCC the frame checksum over VV..payload.
The payload is itself hex-ASCII and its length is counted in characters.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .seplos_bms_v2_constants import (
    CHECKSUM_START,
    DEVICE_TYPE_BATTERY,
    FRAME_END,
    FRAME_START,
    HEADER_LENGTH,
    MAX_PAYLOAD_LENGTH,
    PAYLOAD_START,
    PROTOCOL_MAJOR_VERSION,
    PROTOCOL_VERSION,
    ResponseStatus,
)
from .seplos_v2_codec import (
    HexDecoder,
    encode_length_field,
    hex2,
    hex4,
    is_hex_digit,
    length_checksum,
    overall_checksum,
)
from .seplos_v2_errors import (
    FrameChecksumMismatchError,
    InvalidHexCharacterError,
    LengthChecksumMismatchError,
    PayloadTooLargeError,
    SeplosError,
    TransportReadError,
    TransportWriteError,
    UnsupportedProtocolVersionError,
)
from .seplos_v2_transport import ByteChannel

logger = logging.getLogger(__name__)


class ExchangeState(Enum):
    IDLE = "idle"
    SENT = "sent"
    AWAITING_HEADER = "awaiting_header"
    AWAITING_BODY = "awaiting_body"
    VALIDATING = "validating"
    DECODED = "decoded"
    REJECTED = "rejected"


@dataclass(frozen=True)
class FrameHeader:
    version: int
    address: int
    device_type: int
    function: int
    length: int  # Payload length in hex characters, checksum nibble removed


@dataclass(frozen=True)
class Frame:
    """A validated response frame. `payload` is still hex-ASCII."""
    version: int
    address: int
    device_type: int
    function: int
    payload: bytes

    @property
    def length(self) -> int:
        return len(self.payload)

    @property
    def status(self) -> int:
        return self.function

    @property
    def is_normal(self) -> bool:
        return self.function == ResponseStatus.NORMAL


def build_request(address: int, command: int, payload: bytes = b"") -> bytes:
    """
    Build a complete request frame.

    `payload` must already be hex-ASCII (for example the pack number as two
    hex digits); it is copied verbatim.
    """
    payload = bytes(payload)
    if len(payload) > MAX_PAYLOAD_LENGTH:
        raise PayloadTooLargeError(f"Payload of {len(payload)} characters exceeds {MAX_PAYLOAD_LENGTH}")

    body = (
        hex2(PROTOCOL_VERSION)
        + hex2(address)
        + hex2(DEVICE_TYPE_BATTERY)
        + hex2(command)
        + hex4(encode_length_field(len(payload)))
        + payload
    )
    return bytes((FRAME_START,)) + body + hex4(overall_checksum(body)) + bytes((FRAME_END,))


def decode_header(raw: bytes) -> FrameHeader:
    """
    Validate the first 18 bytes of a response.

    A bad start marker or a non-hex digit does not stop decoding of the other
    fields; the version check runs first, then any accumulated hex problem
    is reported.
    """
    if len(raw) < HEADER_LENGTH:
        raise TransportReadError(f"Short response header: {len(raw)} of {HEADER_LENGTH} bytes")

    decoder = HexDecoder()
    if raw[0] != FRAME_START:
        logger.debug(f"Response does not start with '~': {raw[:1]!r}")
        decoder.invalid = True

    version_decoder = HexDecoder()
    version = version_decoder.byte(raw, 1)
    address = decoder.byte(raw, 3)
    device_type = decoder.byte(raw, 5)
    function = decoder.byte(raw, 7)
    length_field = decoder.word(raw, 9)

    if version_decoder.invalid:
        decoder.invalid = True
    elif (version >> 4) != PROTOCOL_MAJOR_VERSION:
        raise UnsupportedProtocolVersionError(version)

    if decoder.invalid:
        raise InvalidHexCharacterError(
            f"Non-hexadecimal character where only hexadecimal was expected: {bytes(raw[:PAYLOAD_START])!r}")

    length = length_field & 0x0FFF
    if length_checksum(length) != (length_field & 0xF000):
        raise LengthChecksumMismatchError(f"Length code incorrect: 0x{length_field:04X}")

    return FrameHeader(version, address, device_type, function, length)


def validate_body(raw: bytes, header: FrameHeader) -> Frame:
    """Check payload and checksum of a complete response whose header passed `decode_header`."""
    end = PAYLOAD_START + header.length
    if len(raw) < end + 5:
        raise TransportReadError(f"Short response: {len(raw)} of {end + 5} bytes")

    for offset in range(PAYLOAD_START, end + 4):
        if not is_hex_digit(raw[offset]):
            raise InvalidHexCharacterError(
                f"Non-hexadecimal character {bytes(raw[offset:offset + 1])!r} at offset {offset}")

    received = HexDecoder().word(raw, end)
    expected = overall_checksum(raw[CHECKSUM_START:end])
    if received != expected:
        raise FrameChecksumMismatchError(
            f"Checksum mismatch: received 0x{received:04X}, computed 0x{expected:04X}")

    if raw[end + 4] != FRAME_END:
        logger.warning(f"Response terminator is {bytes(raw[end + 4:end + 5])!r}, expected '\\r'")

    return Frame(header.version, header.address, header.device_type, header.function,
                 bytes(raw[PAYLOAD_START:end]))


def parse_response(raw: bytes) -> Frame:
    """Validate an already-complete response held in memory."""
    return validate_body(raw, decode_header(raw[:HEADER_LENGTH]))


class FrameExchange:
    """
    One request/response cycle on a channel.

    Idle -> Sent -> AwaitingHeader -> [AwaitingBody] -> Validating ->
    Decoded | Rejected. The channel's exchange lock is held from the input
    flush until a terminal state is reached. No retries happen here.
    """

    def __init__(self, channel: ByteChannel, address: int, command: int, payload: bytes = b""):
        self.channel = channel
        self.address = address
        self.command = command
        self.request = build_request(address, command, payload)
        self.state = ExchangeState.IDLE
        self.rejection: Optional[SeplosError] = None

    def _enter(self, state: ExchangeState) -> None:
        logger.debug(f"Exchange 0x{self.command:02X}@{self.address:02X}: {self.state.value} -> {state.value}")
        self.state = state

    def run(self) -> Frame:
        with self.channel.exchange_lock:
            try:
                frame = self._run()
            except SeplosError as e:
                self.rejection = e
                self._enter(ExchangeState.REJECTED)
                raise
            self._enter(ExchangeState.DECODED)
            return frame

    def _run(self) -> Frame:
        self.channel.discard_pending_input()

        logger.debug(f"TX {self.request!r}")
        written = self.channel.write(self.request)
        if written != len(self.request):
            raise TransportWriteError(f"Wrote {written} of {len(self.request)} bytes")
        self.channel.wait_until_transmitted()
        self._enter(ExchangeState.SENT)

        self._enter(ExchangeState.AWAITING_HEADER)
        raw = self._read(HEADER_LENGTH)
        header = decode_header(raw)

        if header.length > 0:
            self._enter(ExchangeState.AWAITING_BODY)
            raw += self._read(header.length)
        logger.debug(f"RX {raw!r}")

        self._enter(ExchangeState.VALIDATING)
        frame = validate_body(raw, header)
        if not frame.is_normal:
            logger.error(f"Return code 0x{frame.function:02X} for command 0x{self.command:02X}.")
        return frame

    def _read(self, count: int) -> bytes:
        data = self.channel.blocking_read(count)
        if len(data) != count:
            raise TransportReadError(f"Read {len(data)} of {count} bytes")
        return bytes(data)


def exchange(channel: ByteChannel, address: int, command: int, payload: bytes = b"") -> Frame:
    """Send one command and return the validated response frame."""
    return FrameExchange(channel, address, command, payload).run()
