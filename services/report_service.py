# services/report_service.py
"""
Renders a SeplosData snapshot for people and programs.

Text is meant for a terminal, HTML for embedding in a status page (it is a
fragment, not a full document), and JSON for scripts.
"""
import html
import json
import logging
from typing import List

from plugins.battery.seplos_bms_v2_constants import (
    AMBIENT_TEMPERATURE_INDEX, POWER_TEMPERATURE_INDEX, TEMPERATURE_NAMES,
)
from plugins.battery.seplos_v2_alarms import explain_byte_alarms
from plugins.battery.seplos_v2_monitor import SeplosData
from utils.helpers import celsius_to_fahrenheit, format_value

logger = logging.getLogger(__name__)

OUTPUT_FORMATS = ("text", "html", "json")
CELLS_PER_ROW = 8


def _temp(celsius: float) -> str:
    return f"{celsius:.0f} C, {celsius_to_fahrenheit(celsius):.0f} F"


def alarm_lines(data: SeplosData) -> List[str]:
    """Alarm section shared by the text and HTML reports; empty when there is no alarm."""
    if not data.has_alarm:
        return []
    lines = [
        "!!! ALARM !!! - The battery indicates an alarm state.",
        "Resolve this issue ASAP, or the battery may be damaged.",
    ]
    if data.depleted:
        lines.append("!!! THE BATTERY IS DEPLETED OF CHARGE !!!")
    if data.overcharge:
        lines.append("!!! THE BATTERY IS OVERCHARGED !!!")
    if data.hot:
        lines.append("!!! THE BATTERY IS TOO HOT !!!")
    if data.cold:
        lines.append("!!! THE BATTERY IS TOO COLD !!!")
    if data.other_or_undocumented_alarm_state:
        lines.append("!!! The battery indicates an \"other\" or undocumented alarm state. !!!")
    lines.extend(explain_byte_alarms(data))
    lines.extend(f"Alarm: {name}." for name in data.active_bit_alarm_names())
    return lines


def summary_rows(data: SeplosData) -> List[tuple]:
    """(label, value) pairs of the summary table."""
    return [
        ("Voltage", f"{data.total_battery_voltage:.2f} V"),
        ("Current", f"{data.charge_discharge_current:.2f} A"),
        ("State of charge", f"{data.state_of_charge:.0f}%"),
        ("Temperatures", f"{data.lowest_temperature:.0f} - {data.highest_temperature:.0f} C, "
                         f"{celsius_to_fahrenheit(data.lowest_temperature):.0f} - "
                         f"{celsius_to_fahrenheit(data.highest_temperature):.0f} F "
                         f"(internal heating: {format_value(data.heating_switch)})"),
        ("Cell voltages", f"{data.lowest_cell_voltage:.3f} - {data.highest_cell_voltage:.3f} V "
                          f"(unbalance: {data.cell_voltage_unbalance:.3f} V)"),
        ("Port voltage", f"{data.port_voltage:.2f} V"),
        ("Residual capacity", f"{data.residual_capacity:.2f} AH"),
        ("Battery capacity", f"{data.battery_capacity:.2f} AH"),
        ("Rated capacity", f"{data.rated_capacity:.2f} AH"),
        ("State of health", f"{data.state_of_health:.0f}%"),
        ("Cycles", f"{data.number_of_cycles}"),
    ]


def _cell_rows(data: SeplosData, first: int, count: int) -> List[tuple]:
    cells = range(first, first + count)
    return [
        ("Cell", [f"{i + 1}" for i in cells]),
        ("Voltage", [f"{data.cell_voltage[i]:.3f}" for i in cells]),
        ("Equalization", ["*" if data.is_cell_balancing(i) else "-" for i in cells]),
        ("Disconnected", ["*" if data.is_cell_disconnected(i) else "-" for i in cells]),
    ]


def _group_temperatures(first: int, count: int) -> range:
    # Sensors 1-4 each cover four consecutive cells; a partial group keeps its sensor
    return range(first // 4, min(4, -(-(first + count) // 4)))


def render_text(data: SeplosData, longer: bool = False) -> str:
    out = [f"Controller {data.controller_address:x}, battery pack {data.battery_pack_number:x}:"]
    alarms = alarm_lines(data)
    out.extend(alarms if alarms else ["No Alarms."])
    out.append("")

    rows = summary_rows(data)
    width = max(len(label) for label, _ in rows) + 2
    out.extend(f"{label + ':':<{width}}{value}" for label, value in rows)

    if longer:
        out.extend(["", "Battery Cell State:", ""])
        for first in range(0, data.active_cell_count, CELLS_PER_ROW):
            count = min(CELLS_PER_ROW, data.active_cell_count - first)
            for label, values in _cell_rows(data, first, count):
                out.append(f"{label + ':':<14}" + "".join(f"{v:>6}" for v in values))
            sensors = ", ".join(f"{TEMPERATURE_NAMES[t]}: {_temp(data.temperature[t])}"
                                for t in _group_temperatures(first, count))
            if sensors:
                out.append(f"{'Temperature:':<14}{sensors}")
            out.append("")
        out.append(f"Ambient temperature:           {_temp(data.temperature[AMBIENT_TEMPERATURE_INDEX])}")
        out.append(f"Power electronics temperature: {_temp(data.temperature[POWER_TEMPERATURE_INDEX])}")
    return "\n".join(out) + "\n"


def render_html(data: SeplosData, longer: bool = False) -> str:
    out = [f"<h2>Controller {data.controller_address:x}, battery pack {data.battery_pack_number:x}:</h2>", "<p>"]
    alarms = alarm_lines(data)
    if alarms:
        out.extend(f"<strong>{html.escape(line)}</strong><br/>" for line in alarms)
    else:
        out.append("&#x263a;&nbsp;No Alarms.")
    out.append("</p>")

    out.append("<table>")
    for label, value in summary_rows(data):
        out.append(f'<tr><th style="text-align: right;">{html.escape(label)}</th><td>{html.escape(value)}</td></tr>')
    out.append("</table>")

    if longer:
        out.extend(["<h3>Battery Cell State</h3>", "<table>"])
        count = data.active_cell_count
        for label, values in _cell_rows(data, 0, count):
            tag = "th" if label == "Cell" else "td"
            cells = "".join(f'<{tag} style="text-align: center;">{html.escape(v)}</{tag}>' for v in values)
            out.append(f'<tr><th style="text-align: right;">{label}</th>{cells}</tr>')
        sensors = "".join(f'<td colspan="4" style="text-align: center;">{_temp(data.temperature[t])}</td>'
                          for t in _group_temperatures(0, count))
        out.append(f'<tr><th style="text-align: right;">Temperature</th>{sensors}</tr>')
        out.append("</table>")
        out.append("<table>")
        out.append(f'<tr><th style="text-align: right;">Ambient Temperature</th>'
                   f'<td>{_temp(data.temperature[AMBIENT_TEMPERATURE_INDEX])}</td></tr>')
        out.append(f'<tr><th style="text-align: right;">Power Electronics Temperature</th>'
                   f'<td>{_temp(data.temperature[POWER_TEMPERATURE_INDEX])}</td></tr>')
        out.append("</table>")
    return "\n".join(out) + "\n"


def render_json(data: SeplosData) -> str:
    return json.dumps(data.to_dict(), indent=2) + "\n"


def render(data: SeplosData, fmt: str = "text", longer: bool = False) -> str:
    """Dispatch on the output format name. Raises ValueError for unknown formats."""
    fmt = fmt.lower()
    logger.debug(f"Rendering {fmt} report for controller {data.controller_address:X}, pack {data.battery_pack_number:X}")
    if fmt == "text":
        return render_text(data, longer)
    if fmt == "html":
        return render_html(data, longer)
    if fmt == "json":
        return render_json(data)
    raise ValueError(f"Unknown output format '{fmt}'. Expected one of: {', '.join(OUTPUT_FORMATS)}")
