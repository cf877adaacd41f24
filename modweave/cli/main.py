"""Main CLI application for modweave."""

import logging
import time
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from modweave import __version__
from modweave.config.parser import ConfigError
from modweave.config.schemas import ConflictRecord
from modweave.core.errors import ModweaveError, RestoreFailure
from modweave.core.installation import Installation
from modweave.core.manager import ModManager
from modweave.core.orchestrator import OperationResult, UpdateOrchestrator
from modweave.core.scheduler import UpdateScheduler
from modweave.registry.factory import create_release_lookup, is_local_source

# Create the main Typer app
app = typer.Typer(
    name="modweave",
    help="Mod manager for games running a plugin loader",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)

# Set up logger for the modweave package
logger = logging.getLogger("modweave")

PathOption = Annotated[
    Path | None,
    typer.Option(
        "--path",
        "-p",
        help="Game directory (defaults to current directory)",
    ),
]

AcknowledgeOption = Annotated[
    bool,
    typer.Option(
        "--acknowledge",
        help="Proceed despite declared or dependency conflicts (file conflicts still block)",
    ),
]


def setup_logging(verbosity: int) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbosity: 0=WARNING, 1=INFO, 2=DEBUG, 3+=DEBUG with source locations
    """
    if verbosity == 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logger.setLevel(level)

    # Only add handler if not already configured
    if not logger.handlers:
        handler = RichHandler(
            console=error_console,
            show_time=verbosity >= 2,
            show_path=verbosity >= 3,
            rich_tracebacks=True,
        )
        handler.setLevel(level)
        logger.addHandler(handler)
    else:
        for h in logger.handlers:
            h.setLevel(level)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    error_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]⚠[/yellow] {message}")


def get_installation(path: Path | None = None) -> Installation:
    """Load the game installation, exiting with an error if it is unusable."""
    root = Path.cwd() if path is None else path
    try:
        return Installation.load(root)
    except FileNotFoundError as e:
        print_error(str(e))
        raise typer.Exit(1) from e
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(1) from e


def get_orchestrator(
    installation: Installation, catalog: str | None = None
) -> UpdateOrchestrator:
    """Create an orchestrator, optionally overriding the configured catalog."""
    try:
        lookup = None
        if catalog:
            lookup = create_release_lookup(catalog, cache_dir=installation.cache_dir)
        return UpdateOrchestrator(installation, lookup=lookup)
    except ModweaveError as e:
        print_error(str(e))
        raise typer.Exit(1) from e


def print_conflicts(records: list[ConflictRecord], blocking: bool) -> None:
    for record in records:
        line = f"{record.severity.upper()}: {record.description}"
        if blocking:
            print_error(line)
        else:
            print_warning(line)
        for option in record.resolution_options:
            auto = " (automatic)" if option.can_auto_resolve else ""
            console.print(f"    - {option.strategy}: {option.description}{auto}")


def report_result(result: OperationResult) -> None:
    """Print an operation result, exiting with status 1 on failure."""
    warning = result.conflict_warning
    if warning is not None:
        print_warning(str(warning))
        print_conflicts(warning.records, blocking=False)
    for report in result.merge_reports:
        if report.written:
            console.print(
                f"  Merged {report.path.name}: kept {len(report.kept_user_keys)} "
                f"user value(s), {len(report.new_keys)} new key(s)"
            )
        for key in report.dropped_keys:
            print_warning(f"  {report.path.name}: dropped {key}")

    if result.success:
        print_success(result.message)
        if result.restore_point_id:
            console.print(f"  [dim]Restore point: {result.restore_point_id}[/dim]")
        return

    print_conflicts(result.conflicts, blocking=True)
    print_error(result.message)
    if result.live_files_touched and result.restore_point_id:
        console.print(f"  Restored from restore point {result.restore_point_id}")
    raise typer.Exit(1)


def run_guarded(operation, *args, **kwargs) -> OperationResult:
    """Run an operation, reporting a failed restore as a fatal error."""
    try:
        return operation(*args, **kwargs)
    except RestoreFailure as e:
        print_error(str(e))
        print_error("The installation may be inconsistent; restore it manually")
        raise typer.Exit(1) from e


@app.callback()
def callback(
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose",
            "-v",
            count=True,
            help="Increase verbosity (-v info, -vv debug, -vvv debug with source)",
        ),
    ] = 0,
) -> None:
    """modweave - install, update and roll back game mods."""
    setup_logging(verbose)


@app.command()
def version() -> None:
    """Show the modweave version."""
    console.print(f"modweave {__version__}")


@app.command()
def init(
    game_name: Annotated[
        str | None,
        typer.Option(
            "--name",
            "-n",
            help="Game name (defaults to directory name)",
        ),
    ] = None,
    catalog: Annotated[
        str | None,
        typer.Option(
            "--catalog",
            "-c",
            help="Release catalog (directory, file:// URL or https:// URL)",
        ),
    ] = None,
    path: PathOption = None,
) -> None:
    """Start managing mods of a game installation.

    Creates modweave.yaml in the game directory.
    """
    path = Path.cwd() if path is None else path.resolve()

    if not path.is_dir():
        print_error(f"Directory does not exist: {path}")
        raise typer.Exit(1)

    try:
        installation = Installation.init(path, game_name, catalog)
    except FileExistsError as e:
        print_error(str(e))
        print_error("To reinitialize, delete modweave.yaml first")
        raise typer.Exit(1) from e
    except OSError as e:
        print_error(f"Failed to initialize: {e}")
        raise typer.Exit(1) from e

    print_success(f"Initialized modweave for {installation.config.game_name}")
    console.print(f"  Created: {path / 'modweave.yaml'}")
    console.print(f"  Plugins: {installation.plugin_root}")


@app.command()
def install(
    mods: Annotated[
        list[str],
        typer.Argument(
            help="Mods to install (e.g. 'better-ui', 'better-ui@1.2.0', "
            "'better-ui@~1.2.0', 'better-ui@>=1.0.0,<2.0.0', or a payload path)",
        ),
    ],
    catalog: Annotated[
        str | None,
        typer.Option(
            "--catalog",
            "-c",
            help="Release catalog to use (overrides modweave.yaml)",
        ),
    ] = None,
    acknowledge: AcknowledgeOption = False,
    path: PathOption = None,
) -> None:
    """Install mods and their dependencies.

    Payload directories and archives given as paths (./mod.zip, /tmp/mod)
    are installed directly without a catalog.
    """
    installation = get_installation(path)
    orchestrator = get_orchestrator(installation, catalog)

    local = [m for m in mods if is_local_source(m)]
    published = [m for m in mods if not is_local_source(m)]

    if published:
        if orchestrator.lookup is None:
            print_error("No release catalog configured; use --catalog or set it in modweave.yaml")
            raise typer.Exit(1)
        console.print(f"Installing {len(published)} mod(s)...")
        report_result(run_guarded(orchestrator.install, published, acknowledge=acknowledge))
    if local:
        console.print(f"Installing {len(local)} local payload(s)...")
        report_result(run_guarded(orchestrator.install_local, local, acknowledge=acknowledge))


@app.command()
def uninstall(
    mods: Annotated[
        list[str],
        typer.Argument(help="Mods to uninstall"),
    ],
    force: Annotated[
        bool,
        typer.Option(
            "--force",
            "-f",
            help="Uninstall even if enabled mods depend on it",
        ),
    ] = False,
    path: PathOption = None,
) -> None:
    """Uninstall mods, removing their files and settings."""
    manager = ModManager(get_installation(path))
    failed = False
    for mod_id in mods:
        try:
            report_result(run_guarded(manager.uninstall, mod_id, force=force))
        except typer.Exit:
            failed = True
    if failed:
        raise typer.Exit(1)


def _toggle(mods: list[str], enabled: bool, path: Path | None) -> None:
    manager = ModManager(get_installation(path))
    failed = False
    for mod_id in mods:
        operation = manager.enable if enabled else manager.disable
        try:
            report_result(operation(mod_id))
        except typer.Exit:
            failed = True
    if failed:
        raise typer.Exit(1)


@app.command()
def enable(
    mods: Annotated[list[str], typer.Argument(help="Mods to enable")],
    path: PathOption = None,
) -> None:
    """Enable disabled mods."""
    _toggle(mods, True, path)


@app.command()
def disable(
    mods: Annotated[list[str], typer.Argument(help="Mods to disable")],
    path: PathOption = None,
) -> None:
    """Disable mods without uninstalling them."""
    _toggle(mods, False, path)


@app.command("list")
def list_mods(path: PathOption = None) -> None:
    """List installed mods."""
    manager = ModManager(get_installation(path))
    mods = manager.list_mods()

    if not mods:
        console.print("No mods installed")
        return

    table = Table(title="Installed Mods")
    table.add_column("Mod", style="cyan")
    table.add_column("Version", style="green")
    table.add_column("Enabled")
    table.add_column("Compatibility")
    table.add_column("Directory", style="dim")

    for mod in mods:
        status = mod.compatibility_status
        if status == "incompatible":
            status = f"[red]{status}[/red]"
        elif status == "compatible_with_issues":
            status = f"[yellow]{status}[/yellow]"
        table.add_row(
            mod.mod_id,
            mod.installed_version,
            "yes" if mod.enabled else "[dim]no[/dim]",
            status,
            mod.install_directory,
        )

    console.print(table)


@app.command()
def check(
    mods: Annotated[
        list[str] | None,
        typer.Argument(help="Mods to check (defaults to every installed mod)"),
    ] = None,
    catalog: Annotated[
        str | None,
        typer.Option("--catalog", "-c", help="Release catalog to use"),
    ] = None,
    path: PathOption = None,
) -> None:
    """Check for available updates."""
    installation = get_installation(path)
    orchestrator = get_orchestrator(installation, catalog)
    if orchestrator.lookup is None:
        print_error("No release catalog configured; use --catalog or set it in modweave.yaml")
        raise typer.Exit(1)

    if not mods:
        mods = [m.mod_id for m in ModManager(installation).list_mods()]
    candidates = orchestrator.check_for_updates(mods)

    if not candidates:
        print_success("All mods are up to date")
        return

    table = Table(title="Available Updates")
    table.add_column("Mod", style="cyan")
    table.add_column("Installed")
    table.add_column("Available", style="green")
    table.add_column("Change")
    table.add_column("Channel", style="dim")
    for candidate in candidates:
        delta = candidate.delta
        if delta == "major":
            delta = f"[red]{delta}[/red]"
        table.add_row(
            candidate.mod_id,
            candidate.current_version,
            candidate.available_version,
            delta,
            candidate.release.channel,
        )
    console.print(table)


@app.command()
def update(
    mods: Annotated[
        list[str] | None,
        typer.Argument(help="Mods to update (defaults to every installed mod)"),
    ] = None,
    no_major: Annotated[
        bool,
        typer.Option("--no-major", help="Skip updates that change the major version"),
    ] = False,
    catalog: Annotated[
        str | None,
        typer.Option("--catalog", "-c", help="Release catalog to use"),
    ] = None,
    acknowledge: AcknowledgeOption = False,
    path: PathOption = None,
) -> None:
    """Update mods to their newest release as one batch.

    A restore point is taken first; if anything fails after files were
    changed, the installation is restored.
    """
    installation = get_installation(path)
    orchestrator = get_orchestrator(installation, catalog)
    if orchestrator.lookup is None:
        print_error("No release catalog configured; use --catalog or set it in modweave.yaml")
        raise typer.Exit(1)

    report_result(
        run_guarded(
            orchestrator.apply_updates,
            mods or None,
            allow_major=not no_major,
            acknowledge=acknowledge,
        )
    )


@app.command()
def settings(
    mod: Annotated[str, typer.Argument(help="Mod id")],
    auto_update: Annotated[
        bool | None,
        typer.Option("--auto/--no-auto", help="Apply updates automatically"),
    ] = None,
    channel: Annotated[
        str | None,
        typer.Option("--channel", help="Release channel (stable, beta, alpha)"),
    ] = None,
    preserve_configs: Annotated[
        bool | None,
        typer.Option(
            "--preserve-configs/--replace-configs",
            help="Merge user config changes into new defaults on update",
        ),
    ] = None,
    backup: Annotated[
        bool | None,
        typer.Option("--backup/--no-backup", help="Take a restore point before updating"),
    ] = None,
    path: PathOption = None,
) -> None:
    """Show or change the update settings of a mod."""
    manager = ModManager(get_installation(path))
    changes: dict[str, object] = {}
    if auto_update is not None:
        changes["auto_update_enabled"] = auto_update
    if channel is not None:
        changes["channel"] = channel
    if preserve_configs is not None:
        changes["preserve_configs"] = preserve_configs
    if backup is not None:
        changes["backup_before_update"] = backup

    try:
        if changes:
            current = manager.set_settings(mod, **changes)
            print_success(f"Updated settings of {mod}")
        else:
            current = manager.get_settings(mod)
    except (ModweaveError, ValueError) as e:
        print_error(str(e))
        raise typer.Exit(1) from e

    console.print(f"[bold]{mod}[/bold]")
    console.print(f"  Auto update: {'yes' if current.auto_update_enabled else 'no'}")
    console.print(f"  Channel: {current.channel}")
    console.print(f"  Preserve configs: {'yes' if current.preserve_configs else 'no'}")
    console.print(f"  Backup before update: {'yes' if current.backup_before_update else 'no'}")
    if current.last_update_check:
        console.print(f"  Last checked: {current.last_update_check:%Y-%m-%d %H:%M}")


@app.command("restore-points")
def restore_points(
    restore: Annotated[
        str | None,
        typer.Option("--restore", "-r", help="Restore this restore point"),
    ] = None,
    path: PathOption = None,
) -> None:
    """List restore points, or restore one."""
    manager = ModManager(get_installation(path))

    if restore:
        report_result(run_guarded(manager.restore, restore))
        return

    infos = manager.restore_points()
    if not infos:
        console.print("No restore points")
        return

    table = Table(title="Restore Points")
    table.add_column("Id", style="cyan")
    table.add_column("Created")
    table.add_column("Label", style="dim")
    for info in infos:
        table.add_row(info.id, f"{info.created_at:%Y-%m-%d %H:%M:%S}", info.label)
    console.print(table)


@app.command()
def watch(
    interval: Annotated[
        float | None,
        typer.Option("--interval", help="Hours between checks (defaults to modweave.yaml)"),
    ] = None,
    allow_major: Annotated[
        bool,
        typer.Option("--allow-major", help="Also apply major updates automatically"),
    ] = False,
    path: PathOption = None,
) -> None:
    """Check for updates periodically and apply automatic ones."""
    installation = get_installation(path)
    orchestrator = get_orchestrator(installation)
    if orchestrator.lookup is None:
        print_error("No release catalog configured in modweave.yaml")
        raise typer.Exit(1)

    try:
        scheduler = UpdateScheduler(orchestrator, interval, allow_major=allow_major)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1) from e

    scheduler.start()
    console.print(f"Watching for updates every {scheduler.interval_seconds / 3600:g} hour(s)")
    try:
        while scheduler.running:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("Stopping...")
    finally:
        scheduler.stop()
        orchestrator.shutdown()


if __name__ == "__main__":
    app()
