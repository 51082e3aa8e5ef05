"""
Volume service layer.

`VolumeService` owns the volume table and drives the create/mount/unmount/
remove lifecycle. A single readers-writer lock guards the whole table;
mutations hold it across the external attach/mount calls and until the table
has been persisted.
"""

import copy
import hashlib
import logging
import os
import shutil
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from rbd_volume.cli.lib.mount import MountExecutor
from rbd_volume.cli.lib.rbd import DeviceAttacher
from rbd_volume.cli.lib.rwlock import RWLock
from rbd_volume.cli.lib.state import StateStore, VolumeRecord
from rbd_volume.cli.lib.validators import (
    first_missing_option,
    normalize_hosts,
    normalize_options,
    validate_name,
)
from rbd_volume.exceptions import (
    DetachFailed,
    InvalidOption,
    InvalidVolumeName,
    MissingRequiredOption,
    MountFailed,
    MountpointConflict,
    MountpointInUse,
    RemoveFailed,
    StateSaveFailed,
    UnmountFailed,
    VolumeInUse,
    VolumeNotFound,
)

logger = logging.getLogger(__name__)

SCOPE_LOCAL = "local"


def mountpoint_for(volumes_dir: Path, pool: str, image: str, hosts: str, legacy: bool = False) -> str:
    """
    Deterministic mountpoint for a backing image.

    Args:
        volumes_dir: Directory holding all mountpoints
        pool: RBD pool
        image: RBD image
        hosts: Monitor endpoints of the cluster
        legacy: Hash the image name only, as the first plugin release did

    Returns:
        Absolute mountpoint path
    """
    if legacy:
        key = image
    else:
        key = "|".join([normalize_hosts(hosts), pool, image])
    digest = hashlib.md5(key.encode("utf-8")).hexdigest()
    return str(Path(volumes_dir) / digest)


class VolumeService:
    """
    Reference counted volume lifecycle manager.

    Args:
        volumes_dir: Parent directory of all mountpoints
        store: Persistence for the volume table
        attacher: Maps images onto local block devices
        mounter: Mounts filesystems
        legacy_mountpoints: Derive mountpoints from the image name only
    """

    def __init__(
        self,
        volumes_dir: Path,
        store: StateStore,
        attacher: DeviceAttacher,
        mounter: MountExecutor,
        legacy_mountpoints: bool = False,
    ):
        self.volumes_dir = Path(volumes_dir)
        self._store = store
        self._attacher = attacher
        self._mounter = mounter
        self._legacy_mountpoints = legacy_mountpoints
        self._volumes: Dict[str, VolumeRecord] = {}
        self._lock = RWLock()

    # Startup

    def load(self) -> List[str]:
        """
        Load the persisted table and reconcile it with the host.

        Returns:
            Names of volumes whose reference count was reset

        Raises:
            CorruptState: If the state file cannot be parsed
        """
        volumes = self._store.load()
        with self._lock.write_locked():
            self._volumes = volumes
        logger.info("Loaded %d volume(s) from state", len(volumes))
        return self.reconcile()

    def reconcile(self) -> List[str]:
        """
        Check in-use volumes against mapped devices and mounted filesystems.

        Volumes whose device and mount are both gone (e.g. after a host
        reboot) are reset to unused. Half-present volumes are left alone and
        reported for the operator.

        Returns:
            Names of volumes whose reference count was reset
        """
        reset: List[str] = []
        with self._lock.write_locked():
            changed = False
            for name, record in sorted(self._volumes.items()):
                if record.reference_count == 0:
                    continue

                device = record.device_number
                if device is None:
                    device = self._attacher.find_device(record.pool, record.image)
                    if device is not None:
                        record.device_number = device
                        changed = True

                attached = device is not None and self._attacher.is_attached(device, record.pool, record.image)
                mounted = self._mounter.is_mounted(record.mountpoint)

                if attached and mounted:
                    continue
                if not attached and not mounted:
                    logger.warning(
                        "Volume %s had %d reference(s) but is neither mapped nor mounted; resetting",
                        name,
                        record.reference_count,
                    )
                    record.reference_count = 0
                    record.device_number = None
                    reset.append(name)
                    changed = True
                    continue
                logger.error(
                    "Volume %s is inconsistent (mapped=%s, mounted=%s, references=%d); operator action needed",
                    name,
                    attached,
                    mounted,
                    record.reference_count,
                )

            if changed:
                self._commit()
        return reset

    # Lifecycle operations

    def create(self, name: str, options: Optional[Mapping[str, str]] = None) -> VolumeRecord:
        """
        Register a new volume.

        Nothing is mapped or mounted until the first mount.

        Args:
            name: Volume name
            options: Create options: pool, image, hosts, user, secret

        Returns:
            Copy of the stored record

        Raises:
            InvalidVolumeName: Name is not acceptable
            InvalidOption: Unknown option key, or an alias given with its canonical key
            MissingRequiredOption: A required option is absent
            VolumeInUse: Name exists with other parameters and is mounted
            MountpointInUse: Another volume already resolves to the same mountpoint
            StateSaveFailed: Table could not be persisted; nothing is changed
        """
        try:
            validate_name(name)
        except ValueError as e:
            raise InvalidVolumeName(f"Invalid volume name {name!r}: {e}")

        try:
            opts = normalize_options(options)
        except KeyError as e:
            raise InvalidOption(e.args[0])
        except ValueError as e:
            key, other = e.args
            raise InvalidOption(key, f"option {key!r} conflicts with option {other!r}")

        missing = first_missing_option(opts)
        if missing:
            raise MissingRequiredOption(missing)

        record = VolumeRecord(
            name=name,
            pool=opts["pool"],
            image=opts["image"],
            hosts=opts["hosts"],
            user=opts["user"],
            secret=opts["secret"],
            mountpoint=mountpoint_for(
                self.volumes_dir, opts["pool"], opts["image"], opts["hosts"], legacy=self._legacy_mountpoints
            ),
        )

        with self._lock.write_locked():
            existing = self._volumes.get(name)
            if existing is not None:
                if existing.same_backing(record):
                    logger.debug("Volume %s already exists with the same parameters", name)
                    return copy.copy(existing)
                if existing.reference_count > 0:
                    raise VolumeInUse(name, "is currently used by a container and cannot be redefined")
                logger.warning("Overwriting definition of unused volume %s", name)

            # Reference counts are per name, so two names must never share a mountpoint.
            for other in self._volumes.values():
                if other.name != name and other.mountpoint == record.mountpoint:
                    raise MountpointInUse(record.mountpoint, other.name)

            self._volumes[name] = record
            try:
                self._commit()
            except StateSaveFailed:
                if existing is None:
                    del self._volumes[name]
                else:
                    self._volumes[name] = existing
                raise

        logger.info("Created volume %s (%s/%s) at %s", name, record.pool, record.image, record.mountpoint)
        return copy.copy(record)

    def remove(self, name: str) -> None:
        """
        Forget a volume and delete its mountpoint directory.

        Raises:
            VolumeNotFound: No such volume
            VolumeInUse: Volume is still referenced or mounted
            RemoveFailed: Mountpoint directory could not be deleted
        """
        with self._lock.write_locked():
            record = self._get(name)
            if record.reference_count != 0:
                raise VolumeInUse(name)
            if self._mounter.is_mounted(record.mountpoint):
                raise VolumeInUse(name, f"is still mounted at {record.mountpoint}")

            try:
                shutil.rmtree(record.mountpoint)
            except FileNotFoundError:
                pass
            except OSError as e:
                raise RemoveFailed(f"Failed to remove {record.mountpoint}: {e}")

            del self._volumes[name]
            try:
                self._commit()
            except StateSaveFailed:
                self._volumes[name] = record
                raise

        logger.info("Removed volume %s", name)

    def path(self, name: str) -> str:
        """
        Mountpoint of a volume.

        Raises:
            VolumeNotFound: No such volume
        """
        with self._lock.read_locked():
            return self._get(name).mountpoint

    def mount(self, name: str, mount_id: Optional[str] = None) -> str:
        """
        Take a reference on a volume, mapping and mounting it on first use.

        Args:
            name: Volume name
            mount_id: Caller supplied identifier, only used for logging

        Returns:
            Mountpoint path

        Raises:
            VolumeNotFound: No such volume
            MountpointConflict: Mountpoint exists and is not a directory
            AttachFailed, DeviceNotFound, DeviceAmbiguous: Mapping failed
            MountFailed: Filesystem could not be mounted
            StateSaveFailed: Reference could not be persisted; a fresh
                mapping is undone and the count is left unchanged
        """
        with self._lock.write_locked():
            record = self._get(name)
            first = record.reference_count == 0

            if first:
                self._prepare_mountpoint(record.mountpoint)
                device = self._attacher.attach(
                    record.pool, record.image, record.hosts, record.user, record.secret
                )
                try:
                    self._mounter.mount(self._attacher.device_path(device), record.mountpoint)
                except MountFailed:
                    self._release_device(name, device)
                    raise
                record.device_number = device
                logger.info("Mapped %s/%s as rbd%d for volume %s", record.pool, record.image, device, name)

            record.reference_count += 1
            try:
                self._commit()
            except StateSaveFailed:
                record.reference_count -= 1
                if first:
                    self._undo_mount(name, record)
                raise
            logger.debug("Volume %s mounted (id=%s, references=%d)", name, mount_id, record.reference_count)
            return record.mountpoint

    def unmount(self, name: str, mount_id: Optional[str] = None) -> None:
        """
        Drop a reference on a volume, unmounting and unmapping on the last one.

        The reference is only released once both steps succeed, so a failed
        call leaves the volume in use and can be retried.

        Raises:
            VolumeNotFound: No such volume
            UnmountFailed: Filesystem could not be unmounted
            DetachFailed: Device could not be unmapped
        """
        with self._lock.write_locked():
            record = self._get(name)

            if record.reference_count == 0:
                logger.warning("Unmount of volume %s which is not mounted (id=%s)", name, mount_id)
                return

            if record.reference_count == 1:
                self._mounter.unmount(record.mountpoint)
                device = record.device_number
                if device is None:
                    device = self._attacher.find_device(record.pool, record.image)
                if device is not None:
                    self._attacher.detach(device)
                    logger.info("Unmapped rbd%d for volume %s", device, name)
                record.device_number = None

            record.reference_count -= 1
            self._commit()
            logger.debug("Volume %s unmounted (id=%s, references=%d)", name, mount_id, record.reference_count)

    # Read-only projections

    def get(self, name: str) -> Dict[str, Any]:
        """
        Public view of a volume.

        Raises:
            VolumeNotFound: No such volume
        """
        with self._lock.read_locked():
            return self._describe(self._get(name))

    def list(self) -> List[Dict[str, Any]]:
        """Public view of all volumes, sorted by name."""
        with self._lock.read_locked():
            return [self._describe(self._volumes[name]) for name in sorted(self._volumes)]

    def capabilities(self) -> Dict[str, str]:
        return {"scope": SCOPE_LOCAL}

    def record(self, name: str) -> VolumeRecord:
        """
        Copy of the stored record, including credentials.

        Raises:
            VolumeNotFound: No such volume
        """
        with self._lock.read_locked():
            return copy.copy(self._get(name))

    # Helpers; callers hold the lock

    def _get(self, name: str) -> VolumeRecord:
        record = self._volumes.get(name)
        if record is None:
            raise VolumeNotFound(name)
        return record

    def _commit(self) -> None:
        self._store.save(self._volumes)

    def _describe(self, record: VolumeRecord) -> Dict[str, Any]:
        status = record.public_status()
        if record.device_number is not None:
            status["device"] = self._attacher.device_path(record.device_number)
        return {"name": record.name, "mountpoint": record.mountpoint, "status": status}

    def _prepare_mountpoint(self, mountpoint: str) -> None:
        if os.path.lexists(mountpoint):
            if not os.path.isdir(mountpoint) or os.path.islink(mountpoint):
                raise MountpointConflict(mountpoint)
            return
        try:
            os.makedirs(mountpoint, mode=0o755, exist_ok=True)
        except OSError as e:
            raise MountFailed(f"Failed to create mountpoint {mountpoint}: {e}")

    def _undo_mount(self, name: str, record: VolumeRecord) -> None:
        device = record.device_number
        record.device_number = None
        try:
            self._mounter.unmount(record.mountpoint)
        except UnmountFailed:
            logger.exception("Failed to unmount %s while undoing mount of volume %s", record.mountpoint, name)
            return
        if device is not None:
            self._release_device(name, device)

    def _release_device(self, name: str, device: int) -> None:
        try:
            self._attacher.detach(device)
        except DetachFailed:
            logger.exception("Failed to unmap rbd%d while undoing mount of volume %s", device, name)
