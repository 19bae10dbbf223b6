"""System information API routes."""

import platform

from fastapi import APIRouter, Request

import config

router = APIRouter()


@router.get("/tools")
async def get_tools(request: Request):
    """Where the ZFS binaries were found on this host (null when missing)."""
    tools = request.app.state.collector.tools
    zpool_path = tools.zpool()
    return {
        "hostname": config.HOSTNAME,
        "os": platform.system(),
        "zpool": zpool_path,
        "zfs": tools.zfs(),
        "zfs_available": zpool_path is not None,
    }
