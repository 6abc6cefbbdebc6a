from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from .config import configure_logging, get_settings, load_settings
from .errors import RemoteError
from .models import ConnectionTarget, OSFamily, ProvisionPhase, StepStatus, StepUpdate
from .provisioner import provision

app = typer.Typer()

_MARKS = {
    StepStatus.IN_PROGRESS: "..",
    StepStatus.DONE: "ok",
    StepStatus.WARNING: "!!",
    StepStatus.ERROR: "xx",
}


@app.command()
def serve(host: str = "0.0.0.0", port: Optional[int] = None, reload: bool = False) -> None:
    """
    Run the control panel API.

    Example:
        vm-manager serve --port 3000
    """
    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run("vm_manager.api.app:app", host=host, port=port or settings.port, reload=reload)


@app.command("provision")
def provision_host(
    host: str,
    password: str = typer.Option(..., prompt=True, hide_input=True),
    windows: bool = typer.Option(False, "--windows", help="Use WinRM instead of SSH"),
    admin_password: Optional[str] = typer.Option(None, help="Windows: set this Administrator password last"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="YAML settings file"),
) -> None:
    """
    Bootstrap an existing machine without going through the provider.

    Example:
        vm-manager provision 203.0.113.7 --password hunter2
        vm-manager provision 203.0.113.8 --windows --password P@ss --admin-password N3w!
    """
    settings = load_settings(config_path) if config_path else get_settings()
    configure_logging(settings.log_level)
    target = ConnectionTarget(
        host=host,
        password=password,
        os_family=OSFamily.WINDOWS if windows else OSFamily.LINUX,
    )

    def on_status(phase: ProvisionPhase, message: str) -> None:
        typer.echo(f"[{phase.value}] {message}")

    def on_step(update: StepUpdate) -> None:
        if update.status != StepStatus.IN_PROGRESS:
            typer.echo(f"  [{_MARKS.get(update.status, '  ')}] {update.index + 1}/{update.total} {update.label}: {update.detail}")

    try:
        results = asyncio.run(
            provision(
                target,
                admin_password=admin_password,
                on_step=on_step,
                on_status=on_status,
                settings=settings,
            )
        )
    except RemoteError as e:
        typer.echo(f"Connection failed: {e}", err=True)
        raise typer.Exit(code=1)

    unclean = [r.label for r in results if not r.succeeded]
    if unclean:
        typer.echo(f"Finished with issues in: {', '.join(unclean)}")
    else:
        typer.echo("All steps completed")


if __name__ == "__main__":
    app()
