"""
Filesystem mount management functions.
"""

import logging
import subprocess
from abc import ABC, abstractmethod
from typing import List

from rbd_volume.exceptions import MountFailed, UnmountFailed

logger = logging.getLogger(__name__)


class MountExecutor(ABC):
    """Mounts and unmounts filesystems on existing directories."""

    @abstractmethod
    def mount(self, device: str, mount_point: str) -> None:
        """
        Mount a device on an existing directory.

        Raises:
            MountFailed: If mounting fails
        """

    @abstractmethod
    def unmount(self, mount_point: str) -> None:
        """
        Unmount whatever is mounted on a directory.

        Raises:
            UnmountFailed: If unmounting fails
        """

    @abstractmethod
    def is_mounted(self, mount_point: str) -> bool:
        """Whether a filesystem is mounted on the directory."""


class SubprocessMountExecutor(MountExecutor):
    """
    Mount executor shelling out to mount(8), umount(8) and mountpoint(1).

    Args:
        fs_type: Filesystem type passed with `-t`; empty lets mount probe it
        options: Comma separated mount options passed with `-o`
    """

    def __init__(self, fs_type: str = "", options: str = ""):
        self.fs_type = fs_type
        self.options = options

    def is_mounted(self, mount_point: str) -> bool:
        result = subprocess.run(
            ["mountpoint", "-q", mount_point],
            capture_output=True,
            text=True,
            check=False
        )
        return result.returncode == 0

    def mount(self, device: str, mount_point: str) -> None:
        """
        Mount a filesystem.

        Args:
            device: Device path (e.g., "/dev/rbd0")
            mount_point: Mount point directory, which must already exist

        Raises:
            MountFailed: If mounting fails
        """
        if self.is_mounted(mount_point):
            # Already mounted, skip
            logger.debug("%s is already mounted", mount_point)
            return

        cmd: List[str] = ["mount"]
        if self.fs_type:
            cmd.extend(["-t", self.fs_type])
        if self.options:
            cmd.extend(["-o", self.options])
        cmd.extend([device, mount_point])
        logger.debug("Running %s", cmd)

        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=False
        )

        if result.returncode != 0:
            raise MountFailed(f"Failed to mount {device} on {mount_point}: {_stderr(result)}")

    def unmount(self, mount_point: str) -> None:
        """
        Unmount a filesystem.

        Args:
            mount_point: Mount point directory

        Raises:
            UnmountFailed: If unmounting fails
        """
        if not self.is_mounted(mount_point):
            # Not mounted, skip
            logger.debug("%s is not mounted", mount_point)
            return

        logger.debug("Running umount %s", mount_point)
        result = subprocess.run(
            ["umount", mount_point],
            capture_output=True,
            text=True,
            check=False
        )

        if result.returncode != 0:
            raise UnmountFailed(f"Failed to unmount {mount_point}: {_stderr(result)}")


def _stderr(result: subprocess.CompletedProcess) -> str:
    text = (result.stderr or "").strip()
    return text or f"exit status {result.returncode}"
