"""
Utility functions for the relay client.

Includes id/time helpers, host process information and git commit detection.
"""

import asyncio
import os
import platform
import socket
import time
from datetime import datetime, timezone
from typing import Optional

from loguru import logger

from error_relay.models import ServerData

_PROCESS_START = time.monotonic()


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def server_data() -> ServerData:
    return ServerData(
        python_version=platform.python_version(),
        platform=platform.system().lower(),
        arch=platform.machine(),
        hostname=socket.gethostname(),
        pid=os.getpid(),
        uptime=round(time.monotonic() - _PROCESS_START, 3),
    )


async def detect_commit_hash(timeout_sec: float = 1.0, cwd: Optional[str] = None) -> Optional[str]:
    """``git rev-parse HEAD`` of the working directory, or None."""
    try:
        proc = await asyncio.create_subprocess_exec(
            "git",
            "rev-parse",
            "HEAD",
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError:
        return None

    try:
        out, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout_sec)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        logger.debug("git rev-parse timed out")
        return None

    if proc.returncode != 0:
        return None
    return out.decode().strip() or None
