"""
Kernel RBD device mapping.

Images are mapped by writing to the rbd bus control files in sysfs and the
resulting device is found by scanning `devices/rbd/<N>/{pool,name}`.
"""

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from rbd_volume.exceptions import AttachFailed, DetachFailed, DeviceAmbiguous, DeviceNotFound

logger = logging.getLogger(__name__)


class DeviceAttacher(ABC):
    """Maps RBD images onto local block devices and back."""

    @abstractmethod
    def attach(self, pool: str, image: str, hosts: str, user: str, secret: str) -> int:
        """
        Map an image and return its device number.

        Raises:
            AttachFailed: The map request was rejected
            DeviceNotFound: No matching device appeared
            DeviceAmbiguous: More than one new device matches the image
        """

    @abstractmethod
    def detach(self, device_number: int) -> None:
        """
        Unmap a device.

        Raises:
            DetachFailed: The unmap request was rejected
        """

    @abstractmethod
    def find_device(self, pool: str, image: str) -> Optional[int]:
        """Lowest-numbered device currently mapping pool/image, if any."""

    @abstractmethod
    def is_attached(self, device_number: int, pool: str, image: str) -> bool:
        """Whether the given device number still maps pool/image."""

    @abstractmethod
    def device_path(self, device_number: int) -> str:
        """Block device path for a device number."""


def _read_attr(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError:
        return None


class RbdDeviceAttacher(DeviceAttacher):
    """Device attacher using the kernel rbd sysfs interface."""

    def __init__(self, sysfs_root: str = "/host/sys", dev_root: str = "/dev"):
        self.sysfs_root = Path(sysfs_root)
        self.dev_root = Path(dev_root)

    @property
    def add_path(self) -> Path:
        return self.sysfs_root / "bus" / "rbd" / "add"

    @property
    def remove_path(self) -> Path:
        return self.sysfs_root / "bus" / "rbd" / "remove"

    @property
    def devices_dir(self) -> Path:
        return self.sysfs_root / "devices" / "rbd"

    def list_devices(self) -> Dict[int, Tuple[Optional[str], Optional[str]]]:
        """
        Scan the device registry.

        Returns:
            Mapping of device number to (pool, image) as reported by the kernel
        """
        devices: Dict[int, Tuple[Optional[str], Optional[str]]] = {}
        if not self.devices_dir.is_dir():
            return devices

        for entry in self.devices_dir.iterdir():
            if not entry.name.isdigit():
                continue
            devices[int(entry.name)] = (_read_attr(entry / "pool"), _read_attr(entry / "name"))
        return devices

    def _matches(self, pool: str, image: str) -> List[int]:
        # Kernels without a pool attribute can only be matched on the name.
        return sorted(
            number
            for number, (dev_pool, dev_image) in self.list_devices().items()
            if dev_image == image and (dev_pool is None or dev_pool == pool)
        )

    def attach(self, pool: str, image: str, hosts: str, user: str, secret: str) -> int:
        before = set(self._matches(pool, image))
        directive = f"{hosts} name={user},secret={secret} {pool} {image}"
        logger.debug("Mapping rbd image %s/%s via %s", pool, image, self.add_path)

        try:
            self._write_control(self.add_path, directive)
        except OSError as e:
            logger.error("Failed to map rbd image %s/%s: %s", pool, image, e)
            raise AttachFailed(f"Failed to map rbd image {pool}/{image}: {e}")

        matches = self._matches(pool, image)
        new = [number for number in matches if number not in before]
        if len(new) == 1:
            return new[0]
        if len(new) > 1:
            devices = ", ".join(f"rbd{n}" for n in new)
            raise DeviceAmbiguous(f"Several new rbd devices match {pool}/{image}: {devices}")
        if matches:
            # Mapped outside the plugin before this call.
            logger.warning("rbd image %s/%s was already mapped, using rbd%d", pool, image, matches[0])
            return matches[0]
        raise DeviceNotFound(f"No rbd device found for {pool}/{image} after mapping")

    def detach(self, device_number: int) -> None:
        logger.debug("Unmapping rbd%d via %s", device_number, self.remove_path)
        try:
            self._write_control(self.remove_path, str(device_number))
        except OSError as e:
            logger.error("Failed to unmap rbd%d: %s", device_number, e)
            raise DetachFailed(f"Failed to unmap rbd{device_number}: {e}")

    def _write_control(self, path: Path, value: str) -> None:
        with open(path, "w", encoding="utf-8") as control:
            control.write(value)

    def find_device(self, pool: str, image: str) -> Optional[int]:
        matches = self._matches(pool, image)
        return matches[0] if matches else None

    def is_attached(self, device_number: int, pool: str, image: str) -> bool:
        return device_number in self._matches(pool, image)

    def device_path(self, device_number: int) -> str:
        return os.path.join(str(self.dev_root), f"rbd{device_number}")
