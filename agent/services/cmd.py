"""Shared command runner and input validation for the zpool/drive-probe wrappers.

All subprocess calls go through run_cmd(). Every call is bound by a
deadline: a pool with stalled I/O can make `zpool status` hang forever,
and one hung pool must not stall the whole reporting cycle.
A semaphore limits concurrent subprocess calls.
"""

import asyncio
import logging
import re

import config
from exceptions import CommandTimeoutError

logger = logging.getLogger(__name__)

# Limit concurrent subprocess calls (an HTTP-triggered collection may
# overlap the background loop)
_cmd_semaphore = asyncio.Semaphore(4)

# ZFS pool names: start with letter, contain alphanumeric, underscore, dash, dot
_POOL_NAME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9_.\-:]*$")


class ValidationError(ValueError):
    """Raised when a pool name or argument fails validation."""


def validate_pool_name(name: str) -> str:
    """Validate and return a ZFS pool name."""
    if not name or not _POOL_NAME_RE.match(name):
        raise ValidationError(
            f"Invalid pool name: {name!r}. "
            "Must start with a letter and contain only [a-zA-Z0-9_.:-]"
        )
    return name


async def _kill(proc: asyncio.subprocess.Process) -> None:
    try:
        proc.kill()  # SIGKILL; a hung zpool ignores SIGTERM
    except ProcessLookupError:
        pass
    await proc.wait()


async def run_cmd(cmd: list[str], timeout: float | None = None) -> tuple[str, str, int]:
    """Run a command with concurrency limiting and a deadline.

    Returns (stdout, stderr, returncode). A missing binary is reported as
    returncode 127 rather than raised. Raises CommandTimeoutError when the
    deadline passes; on cancellation the child is killed before the
    CancelledError propagates.
    """
    if timeout is None:
        timeout = config.COMMAND_TIMEOUT

    async with _cmd_semaphore:
        logger.debug("Running command: %s", " ".join(cmd))
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            binary = cmd[0] if cmd else "(empty)"
            logger.debug("Command not found: %s", binary)
            return "", f"{binary}: command not found", 127
        except PermissionError:
            binary = cmd[0] if cmd else "(empty)"
            logger.error("Permission denied executing %s", binary)
            return "", f"{binary}: permission denied", 126

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await _kill(proc)
            logger.warning("Command timed out after %ss: %s", timeout, " ".join(cmd))
            raise CommandTimeoutError(cmd, timeout)
        except asyncio.CancelledError:
            await _kill(proc)
            raise

        return (
            stdout.decode(errors="replace"),
            stderr.decode(errors="replace"),
            proc.returncode,
        )
