"""
Pytest configuration and fixtures.
"""

import shutil
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from unittest.mock import patch

import pytest

from rbd_volume.api.services.volume_service import VolumeService
from rbd_volume.cli.lib.mount import MountExecutor
from rbd_volume.cli.lib.rbd import DeviceAttacher
from rbd_volume.cli.lib.state import JsonStateStore
from rbd_volume.exceptions import AttachFailed, DetachFailed, MountFailed, UnmountFailed

VOLUME_OPTIONS = {
    "pool": "rbd",
    "image": "img1",
    "hosts": "10.0.0.1",
    "user": "admin",
    "secret": "AQAsecretsecretsecret==",
}


class FakeAttacher(DeviceAttacher):
    """In-memory stand-in for the kernel rbd interface."""

    def __init__(self):
        self.devices: Dict[int, Tuple[str, str]] = {}
        self.next_number = 0
        self.attach_calls: List[Tuple[str, str]] = []
        self.detach_calls: List[int] = []
        self.fail_attach = False
        self.fail_detach = False

    def attach(self, pool, image, hosts, user, secret):
        self.attach_calls.append((pool, image))
        if self.fail_attach:
            raise AttachFailed(f"Failed to map rbd image {pool}/{image}: injected")
        number = self.next_number
        self.next_number += 1
        self.devices[number] = (pool, image)
        return number

    def detach(self, device_number):
        self.detach_calls.append(device_number)
        if self.fail_detach:
            raise DetachFailed(f"Failed to unmap rbd{device_number}: injected")
        self.devices.pop(device_number, None)

    def find_device(self, pool, image) -> Optional[int]:
        matches = sorted(n for n, backing in self.devices.items() if backing == (pool, image))
        return matches[0] if matches else None

    def is_attached(self, device_number, pool, image):
        return self.devices.get(device_number) == (pool, image)

    def device_path(self, device_number):
        return f"/dev/rbd{device_number}"


class FakeMounter(MountExecutor):
    """In-memory stand-in for mount(8)."""

    def __init__(self):
        self.mounted: Dict[str, str] = {}
        self.mount_calls: List[Tuple[str, str]] = []
        self.unmount_calls: List[str] = []
        self.fail_mount = False
        self.fail_unmount = False

    def mount(self, device, mount_point):
        self.mount_calls.append((device, mount_point))
        if self.fail_mount:
            raise MountFailed(f"Failed to mount {device} on {mount_point}: injected")
        self.mounted[mount_point] = device

    def unmount(self, mount_point):
        self.unmount_calls.append(mount_point)
        if self.fail_unmount:
            raise UnmountFailed(f"Failed to unmount {mount_point}: injected")
        self.mounted.pop(mount_point, None)

    def is_mounted(self, mount_point):
        return mount_point in self.mounted


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path)


@pytest.fixture
def mock_subprocess():
    """Mock subprocess.run for testing."""
    with patch("subprocess.run") as mock:
        yield mock


@pytest.fixture
def volume_options():
    return dict(VOLUME_OPTIONS)


@pytest.fixture
def attacher():
    return FakeAttacher()


@pytest.fixture
def mounter():
    return FakeMounter()


@pytest.fixture
def state_path(temp_dir):
    return temp_dir / "state" / "ceph-rbd-state.json"


@pytest.fixture
def make_service(temp_dir, state_path, attacher, mounter):
    """
    Factory for services sharing one state file and fake host.

    Calling it twice simulates a plugin restart on the same host.
    """

    def _make(**kwargs) -> VolumeService:
        service = VolumeService(
            volumes_dir=temp_dir / "volumes",
            store=kwargs.pop("store", JsonStateStore(state_path)),
            attacher=kwargs.pop("attacher", attacher),
            mounter=kwargs.pop("mounter", mounter),
            **kwargs,
        )
        service.load()
        return service

    return _make


@pytest.fixture
def service(make_service):
    return make_service()
