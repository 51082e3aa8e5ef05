"""Custom exceptions for the Ceph RBD volume plugin.

Every error raised by the lifecycle manager derives from ``RbdVolumeError``;
its message is what Docker shows to the user.
"""

from typing import Optional


class RbdVolumeError(Exception):
    """Base exception for volume plugin errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


# Request errors


class InvalidVolumeName(RbdVolumeError):
    """Volume name does not satisfy the naming rules."""

    pass


class InvalidOption(RbdVolumeError):
    """Create was called with an option key the driver does not know."""

    def __init__(self, option: str, message: Optional[str] = None):
        super().__init__(message or f"unknown option {option!r}")
        self.option = option


class MissingRequiredOption(RbdVolumeError):
    """Create was called without a required option."""

    def __init__(self, option: str):
        super().__init__(f"'{option}' option required")
        self.option = option


# State consistency errors


class VolumeNotFound(RbdVolumeError):
    """Volume does not exist."""

    def __init__(self, name: str):
        super().__init__(f"volume {name} not found")
        self.name = name


class VolumeInUse(RbdVolumeError):
    """Volume is mounted by at least one container."""

    def __init__(self, name: str, reason: str = "is currently used by a container"):
        super().__init__(f"volume {name} {reason}")
        self.name = name


class MountpointConflict(RbdVolumeError):
    """Mountpoint path exists and is not a directory."""

    def __init__(self, path: str):
        super().__init__(f"{path} already exists and it's not a directory")
        self.path = path


class MountpointInUse(RbdVolumeError):
    """Another volume is already defined on the same mountpoint."""

    def __init__(self, path: str, owner: str):
        super().__init__(f"mountpoint {path} is already used by volume {owner}")
        self.path = path
        self.owner = owner


class RemoveFailed(RbdVolumeError):
    """Mountpoint directory could not be deleted."""

    pass


# External operation errors


class AttachFailed(RbdVolumeError):
    """Kernel refused the RBD map request."""

    pass


class DeviceNotFound(RbdVolumeError):
    """No RBD device matching the image showed up after mapping."""

    pass


class DeviceAmbiguous(RbdVolumeError):
    """More than one new RBD device matches the image."""

    pass


class DetachFailed(RbdVolumeError):
    """Kernel refused the RBD unmap request."""

    pass


class MountFailed(RbdVolumeError):
    """Filesystem mount failed."""

    pass


class UnmountFailed(RbdVolumeError):
    """Filesystem unmount failed."""

    pass


# Persistence errors


class CorruptState(RbdVolumeError):
    """State file exists but cannot be parsed."""

    pass


class StateSaveFailed(RbdVolumeError):
    """State file could not be written."""

    pass
