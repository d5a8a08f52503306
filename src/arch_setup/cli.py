import signal
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from arch_setup import APP_NAME, __version__, ui
from arch_setup.core.config import Settings
from arch_setup.core.logging_config import setup_logging
from arch_setup.dotfiles import Strategy, materialize
from arch_setup.errors import FatalError
from arch_setup.provision import STEPS, Provisioner

app = typer.Typer(help=f"{APP_NAME}: provision Arch Linux and materialize dotfiles.")


def _settings(**overrides: Any) -> Settings:
    """Settings from the environment, with non-None CLI options applied."""
    settings = Settings()
    update: Dict[str, Any] = {k: v for k, v in overrides.items() if v is not None}
    return settings.model_copy(update=update) if update else settings


def signal_handler(signum: int, frame: Any) -> None:
    sig_name = signal.Signals(signum).name
    ui.print_warning(f"Process interrupted by {sig_name}.")
    sys.exit(128 + signum)


@app.command()
def run(
    strategy: Optional[Strategy] = typer.Option(None, help="Dotfiles strategy."),
    dots_dir: Optional[Path] = typer.Option(None, help="Dotfiles source directory."),
    username: Optional[str] = typer.Option(None, help="Account to create and configure."),
) -> None:
    """Run every provisioning step in order."""
    signal.signal(signal.SIGTERM, signal_handler)
    settings = _settings(strategy=strategy, dots_dir=dots_dir, username=username)
    logger = setup_logging(settings.log_file, settings.log_level, console=ui.console)
    ui.print_header("Arch Setup")
    logger.info(f"Starting {APP_NAME} v{__version__} for user {settings.username}")

    provisioner = Provisioner(settings)
    try:
        report = provisioner.run()
    except FatalError as e:
        ui.print_status_report(provisioner.report)
        ui.print_error(f"Fatal: {e}")
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        ui.print_warning("Operation cancelled by user.")
        raise typer.Exit(code=130)

    ui.print_status_report(report)
    if report.ok:
        ui.print_success("Done. Reboot to start your Hyprland session.")
    else:
        ui.print_warning("Finished with failed steps. Please review the log.")


@app.command()
def dotfiles(
    strategy: Optional[Strategy] = typer.Option(None, help="link or copy."),
    source: Optional[Path] = typer.Option(None, help="Dotfiles source directory."),
    home: Optional[Path] = typer.Option(None, help="Target home directory."),
    user: Optional[str] = typer.Option(None, help="Owner of the materialized files."),
) -> None:
    """Materialize the dotfiles tree only."""
    settings = _settings(strategy=strategy, dots_dir=source, username=user)
    setup_logging(settings.log_file, settings.log_level, console=ui.console)
    config = settings.dotfiles_config()
    if home is not None:
        config = replace(config, target_home=home)
    try:
        report = materialize(config)
    except FatalError as e:
        ui.print_error(str(e))
        raise typer.Exit(code=1)
    ui.print_status_report(report, title="Dotfiles Report")


@app.command()
def plan() -> None:
    """Show the ordered provisioning steps without running them."""
    ui.print_plan(STEPS)


@app.command()
def version() -> None:
    ui.console.print(f"{APP_NAME} v{__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
