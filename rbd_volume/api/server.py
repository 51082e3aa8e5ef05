"""
Uvicorn server entrypoint for the RBD volume plugin.

Serves the plugin protocol on the unix socket Docker discovers plugins on.
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import os
import sys
from pathlib import Path

import uvicorn

from rbd_volume.api.main import create_app
from rbd_volume.api.services.volume_service import VolumeService
from rbd_volume.cli.lib.config import PluginConfig, load_config
from rbd_volume.cli.lib.mount import SubprocessMountExecutor
from rbd_volume.cli.lib.rbd import RbdDeviceAttacher
from rbd_volume.cli.lib.state import JsonStateStore
from rbd_volume.exceptions import CorruptState, StateSaveFailed

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rbd-volume-plugin", description="Ceph RBD Docker volume plugin")
    parser.add_argument("--socket", default=None, help="Unix socket path (default: from config)")
    parser.add_argument("--root", default=None, help="Data directory for mountpoints and state (default: /mnt)")
    parser.add_argument("--log-level", default=None, help="Log level (default: debug if DEBUG is set, else info)")
    return parser


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def build_service(cfg: PluginConfig) -> VolumeService:
    """
    Wire the volume service to the real kernel and mount facilities.
    """
    return VolumeService(
        volumes_dir=cfg.volumes_dir,
        store=JsonStateStore(cfg.resolved_state_path),
        attacher=RbdDeviceAttacher(sysfs_root=cfg.sysfs_root, dev_root=cfg.dev_root),
        mounter=SubprocessMountExecutor(fs_type=cfg.fs_type, options=cfg.mount_options),
        legacy_mountpoints=cfg.legacy_mountpoints,
    )


def _prepare_socket(path: str) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    if os.path.exists(path):
        # Left behind by a previous run.
        os.unlink(path)


def main(argv: list[str] | None = None) -> int:
    cfg = load_config()
    args = build_parser().parse_args(argv)
    if args.socket:
        cfg = dataclasses.replace(cfg, socket_path=args.socket)
    if args.root:
        cfg = dataclasses.replace(cfg, root_dir=Path(args.root))

    log_level = args.log_level or ("debug" if cfg.debug else "info")
    configure_logging(log_level)

    service = build_service(cfg)
    try:
        service.load()
    except (CorruptState, StateSaveFailed) as e:
        logger.critical("Refusing to start: %s", e)
        return 1

    _prepare_socket(cfg.socket_path)
    logger.info("Listening on %s", cfg.socket_path)
    uvicorn.run(create_app(service), uds=cfg.socket_path, log_level=log_level.lower())
    return 0


if __name__ == "__main__":
    sys.exit(main())
