"""ZFS exception hierarchy.

Maps zpool CLI error patterns to structured exceptions with HTTP status codes.
The collector catches these per pool; route handlers turn them into
JSON error responses.
"""

import re


class ZFSError(Exception):
    """Base exception for all zpool/zfs command failures."""

    status_code: int = 500

    def __init__(self, message: str, stderr: str = "", returncode: int = 1) -> None:
        self.message = message
        self.stderr = stderr
        self.returncode = returncode
        super().__init__(message)


class ZFSNotFoundError(ZFSError):
    """Pool or vdev does not exist."""

    status_code = 404


class ZFSPermissionError(ZFSError):
    """Insufficient permissions for the operation."""

    status_code = 403


class ZFSInvalidArgumentError(ZFSError):
    """The tool rejected a flag or argument (older zpool builds lack -L/-P)."""

    status_code = 400


class ZFSUnavailableError(ZFSError):
    """The zpool binary is not installed on this host."""

    status_code = 503


class CommandTimeoutError(ZFSError):
    """A tool invocation exceeded its deadline and was killed."""

    status_code = 504

    def __init__(self, cmd: list[str], timeout: float) -> None:
        self.cmd = cmd
        self.timeout = timeout
        binary = cmd[0] if cmd else "(empty)"
        super().__init__(
            message=f"{binary} timed out after {timeout:g}s",
            returncode=-9,
        )


# --- Stderr pattern matching ---
# Ordered by specificity, first match wins.
_ERROR_PATTERNS: list[tuple[re.Pattern[str], type[ZFSError]]] = [
    (re.compile(r"no such pool", re.IGNORECASE), ZFSNotFoundError),
    (re.compile(r"no such device", re.IGNORECASE), ZFSNotFoundError),
    (re.compile(r"could not find", re.IGNORECASE), ZFSNotFoundError),
    (re.compile(r"does not exist", re.IGNORECASE), ZFSNotFoundError),
    (re.compile(r"command not found", re.IGNORECASE), ZFSUnavailableError),
    (re.compile(r"permission denied", re.IGNORECASE), ZFSPermissionError),
    (re.compile(r"operation not permitted", re.IGNORECASE), ZFSPermissionError),
    (re.compile(r"must be run as root", re.IGNORECASE), ZFSPermissionError),
    (re.compile(r"invalid option", re.IGNORECASE), ZFSInvalidArgumentError),
    (re.compile(r"unrecognized option", re.IGNORECASE), ZFSInvalidArgumentError),
    (re.compile(r"illegal option", re.IGNORECASE), ZFSInvalidArgumentError),
    (re.compile(r"invalid argument", re.IGNORECASE), ZFSInvalidArgumentError),
]


def parse_zfs_error(stderr: str, returncode: int = 1) -> ZFSError:
    """Parse zpool stderr output and return the appropriate exception.

    Scans stderr for known error patterns and returns a specific exception
    type. Falls back to base ZFSError if no pattern matches.
    """
    first_line = stderr.strip().split("\n")[0] if stderr.strip() else "Unknown ZFS error"
    for pattern, exc_class in _ERROR_PATTERNS:
        if pattern.search(stderr):
            return exc_class(message=first_line, stderr=stderr, returncode=returncode)

    return ZFSError(message=first_line, stderr=stderr, returncode=returncode)
