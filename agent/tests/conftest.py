"""Shared fixtures for the Vigil ZFS agent test suite.

Provides:
- sys.path setup so imports work like the agent does (from services.cmd, etc.)
- Mock subprocess fixture (prevents real zpool/smartctl calls)
- Fake /dev and /sys trees built under tmp_path
- FastAPI TestClient with a stubbed collector and no background loop
"""

import sys
import os
from contextlib import ExitStack
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

# --- Path setup: agent/ must be on sys.path so bare imports work ---
AGENT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if AGENT_DIR not in sys.path:
    sys.path.insert(0, AGENT_DIR)


# ---------------------------------------------------------------------------
# Mock subprocess fixture -- prevents real commands
# ---------------------------------------------------------------------------

def make_run_cmd_mock(stdout: str = "", stderr: str = "", returncode: int = 0):
    """Factory: create an AsyncMock for run_cmd with preset output."""
    mock = AsyncMock(return_value=(stdout, stderr, returncode))
    return mock


def route_commands(responses: dict[str, tuple[str, str, int]], default=("", "", 1)):
    """side_effect for run_cmd that answers by the command's first arguments.

    Keys are matched against " ".join(cmd) as prefixes, longest first.
    """
    keys = sorted(responses, key=len, reverse=True)

    async def _run(cmd, timeout=None):
        line = " ".join(cmd)
        for key in keys:
            if line.startswith(key):
                return responses[key]
        return default

    return _run


# Every module that does `from services.cmd import run_cmd`
RUN_CMD_LOOKUPS = (
    "services.zpool.run_cmd",
    "services.identity.run_cmd",
    "services.smart.run_cmd",
    "services.serials.run_cmd",
)


@pytest.fixture
def mock_run_cmd():
    """Patch run_cmd where each service looks it up, so no subprocess is created.

    Returns the AsyncMock so tests can configure return_value / side_effect.
    Default return is ("", "", 1) -- every probe fails quietly.
    """
    mock = AsyncMock(return_value=("", "", 1))
    with ExitStack() as stack:
        for target in RUN_CMD_LOOKUPS:
            stack.enter_context(patch(target, mock))
        yield mock


# ---------------------------------------------------------------------------
# Fake device trees
# ---------------------------------------------------------------------------

def make_symlink(directory, name: str, target: str) -> None:
    """Create directory/name -> target, creating directory if needed."""
    directory.mkdir(parents=True, exist_ok=True)
    os.symlink(target, directory / name)


@pytest.fixture
def dev_root(tmp_path):
    """A fake /dev with sda, sdb, nvme0n1 and their partitions."""
    root = tmp_path / "dev"
    root.mkdir()
    for name in ("sda", "sda1", "sdb", "sdb1", "nvme0n1", "nvme0n1p1"):
        (root / name).touch()
    return root


@pytest.fixture
def sys_root(tmp_path):
    """A fake /sys with a block/ directory and nothing in it."""
    root = tmp_path / "sys"
    (root / "block").mkdir(parents=True)
    return root


# ---------------------------------------------------------------------------
# FastAPI TestClient with a stubbed collector
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_collector():
    """A collector stand-in: collect() is an AsyncMock, tools is a MagicMock."""
    from models import ZFSReport

    collector = MagicMock()
    collector.hostname = "testhost"
    collector.tools.zpool.return_value = "/sbin/zpool"
    collector.tools.zfs.return_value = "/sbin/zfs"
    collector.collect = AsyncMock(
        return_value=ZFSReport(hostname="testhost", available=True, pools=[])
    )
    return collector


@pytest.fixture
def client(fake_collector):
    """Provide a synchronous httpx TestClient for the FastAPI app.

    - The background collection loop is disabled (INTERVAL = 0).
    - app.state.collector is swapped for fake_collector and restored after.
    - Import happens inside the fixture so sys.path is already configured.
    """
    from fastapi.testclient import TestClient
    from main import app

    original_collector = app.state.collector
    app.state.collector = fake_collector
    app.state.last_report = None

    with patch("config.INTERVAL", 0):
        with TestClient(app, raise_server_exceptions=False) as c:
            yield c

    app.state.collector = original_collector
    app.state.last_report = None
