# plugins/battery/seplos_v2_codec.py
"""
ASCII-hex codec and the two checksums of the Seplos V2 frame format.

Every numeric field on the wire is written as fixed-width uppercase hex
digits, most significant nibble first. Decoding is case-insensitive and
never raises on a bad digit; it records the problem on the decoder so an
entire frame can be checked in one pass.
"""
from typing import Union

HEX_DIGITS = b"0123456789ABCDEF"

_HEX_VALUES = {c: i for i, c in enumerate(HEX_DIGITS)}
_HEX_VALUES.update({c: i + 10 for i, c in enumerate(b"abcdef")})

ByteString = Union[bytes, bytearray, memoryview]


def hex1(value: int) -> bytes:
    return HEX_DIGITS[value & 0xF:(value & 0xF) + 1]


def hex2(value: int) -> bytes:
    return bytes((HEX_DIGITS[(value >> 4) & 0xF], HEX_DIGITS[value & 0xF]))


def hex4(value: int) -> bytes:
    return bytes((
        HEX_DIGITS[(value >> 12) & 0xF],
        HEX_DIGITS[(value >> 8) & 0xF],
        HEX_DIGITS[(value >> 4) & 0xF],
        HEX_DIGITS[value & 0xF],
    ))


def is_hex_digit(c: int) -> bool:
    return c in _HEX_VALUES


class HexDecoder:
    """
    Decodes fixed-width hex fields while accumulating an `invalid` flag.

    A non-hex character decodes as 0 and sets `invalid`; the caller decides
    when to act on it.
    """

    def __init__(self):
        self.invalid = False

    def nibble(self, c: int) -> int:
        value = _HEX_VALUES.get(c)
        if value is None:
            self.invalid = True
            return 0
        return value

    def byte(self, chars: ByteString, offset: int = 0) -> int:
        return (self.nibble(chars[offset]) << 4) | self.nibble(chars[offset + 1])

    def word(self, chars: ByteString, offset: int = 0) -> int:
        return (
            (self.nibble(chars[offset]) << 12)
            | (self.nibble(chars[offset + 1]) << 8)
            | (self.nibble(chars[offset + 2]) << 4)
            | self.nibble(chars[offset + 3])
        )


def length_checksum(length: int) -> int:
    """
    Checksum of a 12-bit payload length, positioned in the high nibble.

    The three nibbles are summed, the low byte of the sum is negated as an
    8-bit two's-complement value and the low 4 bits of that end up in bits
    12..15. A length of 2 gives 0xE000; a length of 0 gives 0x0000.
    """
    total = ((length >> 8) & 0xF) + ((length >> 4) & 0xF) + (length & 0xF)
    return (((~(total & 0xFF)) + 1) << 12) & 0xF000


def encode_length_field(length: int) -> int:
    return length_checksum(length) | (length & 0x0FFF)


def overall_checksum(data: ByteString) -> int:
    """
    16-bit two's-complement negation of the byte sum of `data`.

    Callers pass the frame bytes from the version field through the end of
    the payload; the start marker and the checksum itself are excluded.
    """
    return (((~sum(data)) & 0xFFFF) + 1) & 0xFFFF
