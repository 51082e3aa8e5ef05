"""
Unit tests for the kernel rbd device attacher.

A fake sysfs tree under a temporary directory stands in for /host/sys.
"""

import pytest

from rbd_volume.cli.lib.rbd import RbdDeviceAttacher
from rbd_volume.exceptions import AttachFailed, DetachFailed, DeviceAmbiguous, DeviceNotFound


def _add_device(sysfs, number, pool, image):
    device_dir = sysfs / "devices" / "rbd" / str(number)
    device_dir.mkdir(parents=True)
    (device_dir / "pool").write_text(f"{pool}\n", encoding="utf-8")
    (device_dir / "name").write_text(f"{image}\n", encoding="utf-8")


@pytest.fixture
def sysfs(temp_dir):
    root = temp_dir / "sys"
    (root / "bus" / "rbd").mkdir(parents=True)
    (root / "devices" / "rbd").mkdir(parents=True)
    return root


class KernelSim(RbdDeviceAttacher):
    """Attacher whose control-file writes create device entries, like the kernel."""

    def __init__(self, sysfs, devices_per_map=1):
        super().__init__(sysfs_root=str(sysfs), dev_root="/dev")
        self.devices_per_map = devices_per_map

    def _write_control(self, path, value):
        super()._write_control(path, value)
        if path == self.add_path:
            _, _, pool, image = value.split(" ")
            existing = [int(p.name) for p in self.devices_dir.iterdir()]
            start = max(existing) + 1 if existing else 0
            for offset in range(self.devices_per_map):
                _add_device(self.sysfs_root, start + offset, pool, image)


class TestAttach:
    """Tests for RbdDeviceAttacher.attach."""

    @pytest.mark.unit
    def test_attach_writes_directive_and_returns_new_device(self, sysfs):
        _add_device(sysfs, 0, "rbd", "other")
        attacher = KernelSim(sysfs)

        number = attacher.attach("rbd", "img1", "10.0.0.1", "admin", "AQAsecret==")

        assert number == 1
        directive = (sysfs / "bus" / "rbd" / "add").read_text(encoding="utf-8")
        assert directive == "10.0.0.1 name=admin,secret=AQAsecret== rbd img1"

    @pytest.mark.unit
    def test_attach_ignores_same_image_in_other_pool(self, sysfs):
        _add_device(sysfs, 0, "other", "img1")
        attacher = KernelSim(sysfs)

        assert attacher.attach("rbd", "img1", "10.0.0.1", "admin", "s") == 1

    @pytest.mark.unit
    def test_attach_control_file_missing(self, temp_dir):
        attacher = RbdDeviceAttacher(sysfs_root=str(temp_dir / "nosys"))

        with pytest.raises(AttachFailed, match="rbd/img1"):
            attacher.attach("rbd", "img1", "10.0.0.1", "admin", "s")

    @pytest.mark.unit
    def test_attach_no_device_appears(self, sysfs):
        attacher = RbdDeviceAttacher(sysfs_root=str(sysfs))

        with pytest.raises(DeviceNotFound):
            attacher.attach("rbd", "img1", "10.0.0.1", "admin", "s")

    @pytest.mark.unit
    def test_attach_ambiguous(self, sysfs):
        attacher = KernelSim(sysfs, devices_per_map=2)

        with pytest.raises(DeviceAmbiguous, match="rbd0, rbd1"):
            attacher.attach("rbd", "img1", "10.0.0.1", "admin", "s")

    @pytest.mark.unit
    def test_attach_falls_back_to_existing_mapping(self, sysfs):
        _add_device(sysfs, 2, "rbd", "img1")
        _add_device(sysfs, 5, "rbd", "img1")
        attacher = RbdDeviceAttacher(sysfs_root=str(sysfs))

        assert attacher.attach("rbd", "img1", "10.0.0.1", "admin", "s") == 2


class TestDetach:
    """Tests for RbdDeviceAttacher.detach."""

    @pytest.mark.unit
    def test_detach_writes_device_number(self, sysfs):
        attacher = RbdDeviceAttacher(sysfs_root=str(sysfs))

        attacher.detach(3)

        assert (sysfs / "bus" / "rbd" / "remove").read_text(encoding="utf-8") == "3"

    @pytest.mark.unit
    def test_detach_fails(self, temp_dir):
        attacher = RbdDeviceAttacher(sysfs_root=str(temp_dir / "nosys"))

        with pytest.raises(DetachFailed, match="rbd3"):
            attacher.detach(3)


class TestRegistry:
    """Tests for device lookups."""

    @pytest.mark.unit
    def test_find_device_lowest_number(self, sysfs):
        _add_device(sysfs, 10, "rbd", "img1")
        _add_device(sysfs, 2, "rbd", "img1")
        _add_device(sysfs, 1, "rbd", "img2")
        attacher = RbdDeviceAttacher(sysfs_root=str(sysfs))

        assert attacher.find_device("rbd", "img1") == 2
        assert attacher.find_device("rbd", "missing") is None

    @pytest.mark.unit
    def test_is_attached(self, sysfs):
        _add_device(sysfs, 0, "rbd", "img1")
        attacher = RbdDeviceAttacher(sysfs_root=str(sysfs))

        assert attacher.is_attached(0, "rbd", "img1") is True
        assert attacher.is_attached(0, "rbd", "img2") is False
        assert attacher.is_attached(1, "rbd", "img1") is False

    @pytest.mark.unit
    def test_list_devices_without_registry(self, temp_dir):
        attacher = RbdDeviceAttacher(sysfs_root=str(temp_dir))

        assert attacher.list_devices() == {}

    @pytest.mark.unit
    def test_device_path(self):
        assert RbdDeviceAttacher(dev_root="/dev").device_path(4) == "/dev/rbd4"
