"""
Configuration loader for the RBD volume plugin.

Defaults match a plugin container that has the host's sysfs bound at
`/host/sys` and keeps its data under `/mnt`.
"""

from __future__ import annotations

import configparser
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


DEFAULT_CONFIG_PATH = Path("/etc/rbd-volume/plugin.conf")
DEFAULT_SOCKET_PATH = "/run/docker/plugins/ceph-rbd.sock"
STATE_FILE_NAME = "ceph-rbd-state.json"

_TRUE_VALUES = {"1", "t", "T", "true", "TRUE", "True"}
_FALSE_VALUES = {"0", "f", "F", "false", "FALSE", "False"}


@dataclass(frozen=True)
class PluginConfig:
    root_dir: Path = Path("/mnt")
    state_path: Optional[Path] = None
    socket_path: str = DEFAULT_SOCKET_PATH
    sysfs_root: str = "/host/sys"
    dev_root: str = "/dev"
    fs_type: str = ""  # empty lets mount(8) probe the filesystem
    mount_options: str = ""
    legacy_mountpoints: bool = False
    debug: bool = False

    @property
    def volumes_dir(self) -> Path:
        return self.root_dir / "volumes"

    @property
    def resolved_state_path(self) -> Path:
        if self.state_path is not None:
            return self.state_path
        return self.root_dir / "state" / STATE_FILE_NAME


def parse_bool(raw: str) -> Optional[bool]:
    """
    Parse a boolean the way Go's strconv.ParseBool does.

    Returns None for anything it does not recognise.
    """
    value = raw.strip()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return None


def _config_path() -> Path:
    env = os.environ.get("RBD_VOLUME_CONFIG_PATH")
    if env:
        return Path(env)
    return DEFAULT_CONFIG_PATH


def _read_ini(path: Path) -> configparser.ConfigParser:
    parser = configparser.ConfigParser()
    if path.exists():
        parser.read(path, encoding="utf-8")
    return parser


def load_config() -> PluginConfig:
    """
    Load config from `RBD_VOLUME_CONFIG_PATH` or `/etc/rbd-volume/plugin.conf`.

    Missing files are not an error; defaults are returned. The `DEBUG`
    environment variable overrides the `debug` key.
    """
    parser = _read_ini(_config_path())
    section = parser["plugin"] if parser.has_section("plugin") else {}

    def _get(key: str, default: str) -> str:
        if isinstance(section, dict):
            return str(section.get(key, default)).strip()
        return str(section.get(key, fallback=default)).strip()

    def _get_bool(key: str, default: bool) -> bool:
        parsed = parse_bool(_get(key, str(default)))
        return default if parsed is None else parsed

    state_path_raw = _get("state_path", "")
    state_path = Path(state_path_raw) if state_path_raw else None

    debug = _get_bool("debug", False)
    env_debug = parse_bool(os.environ.get("DEBUG", ""))
    if env_debug is not None:
        debug = env_debug

    return PluginConfig(
        root_dir=Path(_get("root_dir", "/mnt") or "/mnt"),
        state_path=state_path,
        socket_path=_get("socket_path", DEFAULT_SOCKET_PATH) or DEFAULT_SOCKET_PATH,
        sysfs_root=_get("sysfs_root", "/host/sys") or "/host/sys",
        dev_root=_get("dev_root", "/dev") or "/dev",
        fs_type=_get("fs_type", ""),
        mount_options=_get("mount_options", ""),
        legacy_mountpoints=_get_bool("legacy_mountpoints", False),
        debug=debug,
    )
