# plugins/battery/seplos_v2_errors.py
"""Exceptions raised by the Seplos V2 protocol layer."""
from .seplos_bms_v2_constants import describe_status


class SeplosError(Exception):
    """Base class for every Seplos V2 protocol failure."""


class TransportWriteError(SeplosError):
    """The request frame could not be written completely."""


class TransportReadError(SeplosError):
    """A read failed, timed out or hit end-of-stream before the expected count."""


class InvalidHexCharacterError(SeplosError):
    """A byte that must be an ASCII hex digit was not."""


class UnsupportedProtocolVersionError(SeplosError):
    def __init__(self, version: int):
        self.version = version
        super().__init__(f"Seplos protocol {version >> 4}.{version & 0xF} (0x{version:02X}) not implemented")


class LengthChecksumMismatchError(SeplosError):
    """The 4-bit checksum in the length field does not match the 12-bit length."""


class FrameChecksumMismatchError(SeplosError):
    """The trailing frame checksum does not match the received bytes."""


class NonNormalStatusError(SeplosError):
    """The BMS answered with a status other than NORMAL."""

    def __init__(self, status: int, command: int = None):
        self.status = status
        self.command = command
        message = f"Bad response 0x{status:02X} from Seplos BMS: {describe_status(status)}"
        if command is not None:
            message += f" (command 0x{command:02X})"
        super().__init__(message)


class PayloadTooLargeError(SeplosError):
    """Request payloads are limited to 4095 hex characters."""


class PayloadLayoutError(SeplosError):
    """A validated payload is too short for the record layout of its command."""
