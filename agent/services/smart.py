"""Drive identity via smartctl.

Only the identity block is read here (serial, model, WWN); attribute
parsing and health scoring live in the SMART collector.
"""

import json
import logging
from typing import Any

from exceptions import ZFSError
from services.cmd import run_cmd

logger = logging.getLogger(__name__)

_TEXT_KEYS = {
    "Serial Number:": "serial_number",
    "Serial number:": "serial_number",
    "Device Model:": "model",
    "Model Number:": "model",
    "Product:": "model",
    "LU WWN Device Id:": "wwn",
}


def parse_smartctl_identity_json(data: dict[str, Any]) -> dict[str, str]:
    """Pull serial/model/WWN out of `smartctl --json --info` output."""
    result = {"serial_number": "", "model": "", "wwn": ""}

    result["serial_number"] = str(data.get("serial_number") or "").strip()
    result["model"] = str(data.get("model_name") or data.get("scsi_model_name") or "").strip()

    wwn = data.get("wwn")
    if isinstance(wwn, dict) and "naa" in wwn:
        try:
            result["wwn"] = f"{wwn['naa']:x}{wwn.get('oui', 0):06x}{wwn.get('id', 0):09x}"
        except (TypeError, ValueError):
            pass
    return result


def parse_smartctl_identity_text(output: str) -> dict[str, str]:
    """Same as the JSON variant, for smartctl builds older than 7.0."""
    result = {"serial_number": "", "model": "", "wwn": ""}
    for line in output.splitlines():
        for prefix, key in _TEXT_KEYS.items():
            if line.startswith(prefix) and not result[key]:
                value = line[len(prefix):].strip()
                if key == "wwn":
                    value = value.replace(" ", "")
                result[key] = value
    return result


async def get_smart_identity(device: str) -> dict[str, str]:
    """Return serial_number/model/wwn for a device ("" when unknown).

    Tries the JSON interface first and falls back to the text report.
    Unsupported or missing devices simply yield empty values.
    """
    empty = {"serial_number": "", "model": "", "wwn": ""}
    try:
        stdout, _, rc = await run_cmd(["smartctl", "--json=c", "--info", "--", device])
    except ZFSError as e:
        logger.debug("smartctl failed for %s: %s", device, e.message)
        return empty

    # Bits 0/1 of the exit status: command line error / device open failed
    if rc == 127 or (rc & 0x03 and not stdout.strip()):
        return empty

    try:
        data = json.loads(stdout)
    except json.JSONDecodeError:
        data = None

    if isinstance(data, dict):
        identity = parse_smartctl_identity_json(data)
        if identity["serial_number"]:
            return identity

    try:
        stdout, _, rc = await run_cmd(["smartctl", "-i", device])
    except ZFSError as e:
        logger.debug("smartctl -i failed for %s: %s", device, e.message)
        return empty
    if rc & 0x03:
        return empty
    return parse_smartctl_identity_text(stdout)


async def get_smart_serial(device: str) -> str:
    return (await get_smart_identity(device))["serial_number"]
