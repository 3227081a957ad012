"""Host information and metrics reported by the service."""

from __future__ import annotations

import logging
import os
import platform
import shutil
import socket
import time

from devcontrol import __version__
from devcontrol.gateway.gateway import CommandGateway

logger = logging.getLogger(__name__)


async def collect_system_info(gateway: CommandGateway) -> dict:
    """Docker availability plus basic host metadata."""
    version = await gateway.docker_version()
    return {
        "success": True,
        "docker_available": version.success,
        "docker_version": version.output if version.success else "",
        "docker_error": "" if version.success else version.output,
        "hostname": socket.gethostname(),
        "platform": platform.platform(),
        "python_version": platform.python_version(),
        "app_version": __version__,
        "timestamp": int(time.time()),
    }


async def collect_metrics(gateway: CommandGateway) -> dict:
    """Load average, backup storage and container counts.

    Each metric is best-effort: a value that cannot be read is reported
    as None and ``success`` turns false.
    """
    metrics: dict[str, float | int | None] = {}
    success = True

    try:
        load_1m, load_5m, load_15m = os.getloadavg()
    except OSError:
        load_1m = load_5m = load_15m = None
        success = False
    metrics.update(load_1m=load_1m, load_5m=load_5m, load_15m=load_15m)

    backups = gateway.list_backups()
    metrics["backup_count"] = len(backups)
    metrics["backup_total_bytes"] = sum(b.size_bytes for b in backups)
    try:
        metrics["backup_dir_free_bytes"] = shutil.disk_usage(
            _existing_parent(gateway.backup_dir)
        ).free
    except OSError as e:
        logger.debug("disk_usage failed for %s: %s", gateway.backup_dir, e)
        metrics["backup_dir_free_bytes"] = None
        success = False

    result, containers = await gateway.list_containers()
    if result.success:
        metrics["containers_total"] = len(containers)
        metrics["containers_running"] = sum(1 for c in containers if c.is_running)
    else:
        metrics["containers_total"] = None
        metrics["containers_running"] = None
        success = False

    return {"success": success, "metrics": metrics}


def _existing_parent(path: os.PathLike | str) -> str:
    """Closest existing ancestor, since the backup dir may not exist yet."""
    p = os.path.abspath(path)
    while not os.path.exists(p):
        parent = os.path.dirname(p)
        if parent == p:
            break
        p = parent
    return p
