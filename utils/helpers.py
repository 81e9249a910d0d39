# utils/helpers.py
from typing import Any

# --- Status Constants ---
STATUS_NA = "N/A"

# --- Formatting Functions ---
def format_value(value: Any, precision: int = 2) -> str:
    """
    Formats a numeric value to a string with specified precision.

    Args:
        value: The value to format (int, float, or other type)
        precision: Number of decimal places for floating point values

    Returns:
        Formatted string representation of the value, or "N/A" if None
    """
    if isinstance(value, bool):
        return "ON" if value else "off"
    if isinstance(value, (int, float)):
        return f"{float(value):.{precision}f}"
    if value is None:
        return STATUS_NA
    return str(value)

def celsius_to_fahrenheit(celsius: float) -> float:
    return (celsius * 1.8) + 32

def parse_int(text: str) -> int:
    """
    Parses decimal or 0x-prefixed hex, e.g. a bus address given on the command line.
    Leading zeros are decimal ("01" is 1).
    """
    text = str(text).strip()
    if text.lower().startswith(("0x", "-0x")):
        return int(text, 16)
    return int(text, 10)
