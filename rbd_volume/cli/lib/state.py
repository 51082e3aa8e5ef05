"""
Persistent state store for the RBD volume plugin.

The whole volume table is kept in a single JSON file that is rewritten after
every mutation. It is read once at startup.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from rbd_volume.exceptions import CorruptState, StateSaveFailed

logger = logging.getLogger(__name__)

STATE_VERSION = 1

# Field names of the unversioned layout written by earlier releases.
_LEGACY_FIELDS = {
    "Pool": "pool",
    "Rbd": "image",
    "Hosts": "hosts",
    "Username": "user",
    "Secret": "secret",
    "Mountpoint": "mountpoint",
}


@dataclass
class VolumeRecord:
    """
    One named volume.

    `device_number` is only meaningful while `reference_count > 0`.
    """

    name: str
    pool: str
    image: str
    hosts: str
    user: str
    secret: str
    mountpoint: str
    device_number: Optional[int] = None
    reference_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def public_status(self) -> Dict[str, Any]:
        """Status details safe to hand to Docker and operators."""
        return {
            "pool": self.pool,
            "image": self.image,
            "hosts": self.hosts,
            "user": self.user,
            "reference_count": self.reference_count,
            "device_number": self.device_number,
        }

    def same_backing(self, other: "VolumeRecord") -> bool:
        return (
            self.pool == other.pool
            and self.image == other.image
            and self.hosts == other.hosts
            and self.user == other.user
            and self.secret == other.secret
        )

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "VolumeRecord":
        """
        Build a record from its persisted form.

        Raises:
            ValueError: If a required field is missing or malformed
        """
        if not isinstance(data, dict):
            raise ValueError(f"record for {name} is not an object")

        values: Dict[str, Any] = {"name": name}
        for key in ("pool", "image", "hosts", "user", "secret", "mountpoint"):
            value = data.get(key)
            if not isinstance(value, str) or not value:
                raise ValueError(f"record for {name} is missing '{key}'")
            values[key] = value

        device_number = data.get("device_number")
        if device_number is not None and (not isinstance(device_number, int) or device_number < 0):
            raise ValueError(f"record for {name} has invalid device_number {device_number!r}")

        reference_count = data.get("reference_count", 0)
        if not isinstance(reference_count, int) or reference_count < 0:
            raise ValueError(f"record for {name} has invalid reference_count {reference_count!r}")

        values["device_number"] = device_number if reference_count > 0 else None
        values["reference_count"] = reference_count
        return cls(**values)


class StateStore(ABC):
    """Durable storage for the volume table."""

    @abstractmethod
    def load(self) -> Dict[str, VolumeRecord]:
        """
        Read the persisted table.

        Returns:
            Mapping of volume name to record; empty if nothing was saved yet

        Raises:
            CorruptState: If saved state exists but cannot be parsed
        """

    @abstractmethod
    def save(self, volumes: Dict[str, VolumeRecord]) -> None:
        """
        Overwrite the persisted table.

        Raises:
            StateSaveFailed: If the table could not be written
        """


def _atomic_write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        # mkstemp creates the file 0600, which is what we want for secrets
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as file:
            json.dump(data, file, indent=2, ensure_ascii=False, sort_keys=True)
            file.write("\n")
            file.flush()
            os.fsync(file.fileno())
        os.replace(tmp_path, path)
    finally:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass


def _from_legacy(data: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    # Earlier releases never persisted reference counts.
    converted: Dict[str, Dict[str, Any]] = {}
    for name, item in data.items():
        if not isinstance(item, dict):
            raise ValueError(f"record for {name} is not an object")
        record = {new: item.get(old) for old, new in _LEGACY_FIELDS.items()}
        record["reference_count"] = 0
        record["device_number"] = None
        converted[name] = record
    return converted


class JsonStateStore(StateStore):
    """State store backed by a JSON file, written atomically."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Dict[str, VolumeRecord]:
        if not self.path.exists():
            logger.debug("No state found at %s", self.path)
            return {}

        try:
            with open(self.path, "r", encoding="utf-8") as file:
                data = json.load(file)
        except (OSError, ValueError) as e:
            raise CorruptState(f"Failed to read state file {self.path}: {e}")

        if not isinstance(data, dict):
            raise CorruptState(f"State file {self.path} does not contain an object")

        try:
            if "volumes" in data:
                raw = data["volumes"]
                if not isinstance(raw, dict):
                    raise ValueError("'volumes' is not an object")
            else:
                logger.info("Migrating state file %s from the legacy layout", self.path)
                raw = _from_legacy(data)
            volumes = {name: VolumeRecord.from_dict(name, item) for name, item in raw.items()}
        except ValueError as e:
            raise CorruptState(f"Invalid state file {self.path}: {e}")

        logger.debug("Loaded %d volume(s) from %s", len(volumes), self.path)
        return volumes

    def save(self, volumes: Dict[str, VolumeRecord]) -> None:
        payload = {
            "version": STATE_VERSION,
            "volumes": {name: _persisted(record) for name, record in volumes.items()},
        }
        try:
            _atomic_write_json(self.path, payload)
        except OSError as e:
            logger.error("Failed to save state to %s: %s", self.path, e)
            raise StateSaveFailed(f"Failed to save state to {self.path}: {e}")


def _persisted(record: VolumeRecord) -> Dict[str, Any]:
    # The name is the mapping key.
    data = record.to_dict()
    del data["name"]
    return data
