import os
from typing import List

import psutil

from disk_search.utils.logger import get_logger

logger = get_logger("SystemUtils")

# Pseudo and virtual filesystems that never hold user documents
_SKIPPED_FSTYPES = {
    "autofs", "binfmt_misc", "cgroup", "cgroup2", "configfs", "debugfs",
    "devpts", "devtmpfs", "fusectl", "hugetlbfs", "mqueue", "overlay",
    "proc", "pstore", "securityfs", "squashfs", "sysfs", "tracefs",
}


def list_storage_volumes(all_partitions: bool = False) -> List[str]:
    """
    Enumerate mounted storage volumes usable as index roots.

    Args:
        all_partitions: Pass ``all=True`` to psutil and include pseudo mounts

    Returns:
        Sorted, de-duplicated list of mount points that exist and are directories
    """
    volumes = set()
    try:
        partitions = psutil.disk_partitions(all=all_partitions)
    except OSError as e:
        logger.error(f"Error enumerating disk partitions: {e}")
        return []

    for partition in partitions:
        if not all_partitions and partition.fstype.lower() in _SKIPPED_FSTYPES:
            continue
        # Empty optical/removable drives report a mount point but are not readable
        if "cdrom" in partition.opts or not partition.fstype:
            continue
        mountpoint = partition.mountpoint
        if os.path.isdir(mountpoint):
            volumes.add(mountpoint)
        else:
            logger.debug(f"Skipping unavailable volume {partition.device} at {mountpoint}")

    return sorted(volumes)
