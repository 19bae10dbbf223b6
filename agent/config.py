"""Agent settings, read once from the environment.

Every value has a default so the agent runs unconfigured on a storage host.
"""

import logging
import os
import platform

logger = logging.getLogger(__name__)


def _env_int(key: str, default: int) -> int:
    raw = os.environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer for %s: %r, using %d", key, raw, default)
        return default


HOSTNAME = os.environ.get("VIGIL_HOSTNAME") or platform.node()

# Seconds between background collections (0 = collect on request only)
INTERVAL = _env_int("VIGIL_INTERVAL", 60)

# Deadlines for external tool invocations. zpool status can block
# indefinitely on a pool with stalled I/O.
COMMAND_TIMEOUT = _env_int("VIGIL_COMMAND_TIMEOUT", 30)
STATUS_TIMEOUT = _env_int("VIGIL_STATUS_TIMEOUT", 60)

LOG_LEVEL = os.environ.get("VIGIL_LOG_LEVEL", "INFO").upper()

DEV_ROOT = os.environ.get("VIGIL_DEV_ROOT", "/dev")
SYS_ROOT = os.environ.get("VIGIL_SYS_ROOT", "/sys")
