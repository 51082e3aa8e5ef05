"""
Volume inspection commands.

These read the plugin's state file directly. The running plugin owns every
change to it, so nothing here writes.
"""

from pathlib import Path
from typing import Optional

import typer

from rbd_volume.cli.lib.config import load_config
from rbd_volume.cli.lib.state import JsonStateStore

app = typer.Typer(help="Inspect plugin volumes")


def _store(state: Optional[Path]) -> JsonStateStore:
    if state is None:
        state = load_config().resolved_state_path
    return JsonStateStore(state)


@app.command("list")
def list_volumes(
    state: Optional[Path] = typer.Option(None, "--state", help="State file (default: from config)"),
):
    """
    List volumes known to the plugin.
    """
    try:
        volumes = _store(state).load()
        if not volumes:
            typer.echo("No volumes found")
            return
        for name in sorted(volumes):
            vol = volumes[name]
            device = f"rbd{vol.device_number}" if vol.device_number is not None else "-"
            typer.echo(
                f"{name} image={vol.pool}/{vol.image} refs={vol.reference_count} device={device} mount={vol.mountpoint}"
            )
    except Exception as e:
        typer.echo(f"Error listing volumes: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def inspect(
    name: str = typer.Argument(..., help="Volume name"),
    state: Optional[Path] = typer.Option(None, "--state", help="State file (default: from config)"),
):
    """
    Show one volume. The cephx secret is never printed.
    """
    try:
        volumes = _store(state).load()
        vol = volumes.get(name)
        if vol is None:
            typer.echo(f"Error: volume {name} not found", err=True)
            raise typer.Exit(1)

        typer.echo(f"name: {vol.name}")
        typer.echo(f"mountpoint: {vol.mountpoint}")
        for key, value in vol.public_status().items():
            typer.echo(f"{key}: {'-' if value is None else value}")
    except typer.Exit:
        raise
    except Exception as e:
        typer.echo(f"Error inspecting volume: {e}", err=True)
        raise typer.Exit(1)
