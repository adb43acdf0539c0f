"""
maphp — CLI entrypoint.

Usage:
    maphp --help
    maphp install 8.3
    maphp use 8.3.1
    maphp list --fetch
"""

from __future__ import annotations

import functools
import json
import os
import sys
from pathlib import Path

import click

from maphp import __version__
from maphp.core.errors import BuildError, CorruptionError, MaphpError, UserCancelled
from maphp.core.observability.logging_config import setup_logging


def _handle_errors(func):
    """Render a MaphpError as one message and exit 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except UserCancelled as e:
            click.secho(f"⚠️  {e}", fg="yellow")
            sys.exit(1)
        except MaphpError as e:
            click.secho(f"❌ {e}", fg="red")
            if isinstance(e, BuildError) and e.output:
                click.echo("   Last build output:")
                for line in e.output.splitlines()[-30:]:
                    click.echo(f"   │ {line}")
            if isinstance(e, CorruptionError):
                click.echo(
                    "   Inspect or reset the work directory; "
                    "maphp does not repair it automatically."
                )
            sys.exit(1)

    return wrapper


def _manager(ctx: click.Context):
    """Build a VersionManager from the global options.

    Collaborators placed in ``ctx.obj`` (transport, chooser, progress,
    runner) take precedence over the defaults, which is how tests
    drive the CLI.
    """
    from maphp.adapters.transport import UrllibTransport
    from maphp.core.config.loader import load_settings, resolve_work_dir
    from maphp.core.services.php_install import VersionManager
    from maphp.core.services.php_install.execution.subprocess_runner import _run_subprocess
    from maphp.ui.cli.prompts import ClickChooser, EchoProgress

    obj = ctx.obj
    work_dir = resolve_work_dir(obj.get("work_dir")).ensure()
    settings = load_settings(work_dir)

    return VersionManager(
        work_dir,
        transport=obj.get("transport") or UrllibTransport(timeout=settings.fetch_timeout),
        chooser=obj.get("chooser") or ClickChooser(),
        progress=obj.get("progress") or EchoProgress(),
        settings=settings,
        runner=obj.get("runner") or _run_subprocess,
    )


def _print_path_hint(bin_path: Path) -> None:
    """Tell the user how to put ``bin`` on PATH, unless it already is."""
    entries = os.environ.get("PATH", "").split(os.pathsep)
    if str(bin_path) in entries or f"{bin_path}/" in entries:
        return
    click.echo()
    click.echo("# Add the following to your shell profile:")
    click.echo(f'export PATH="{bin_path}:$PATH"')


@click.group()
@click.version_option(version=__version__, prog_name="maphp")
@click.option(
    "--work-dir",
    "work_dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Root managed directory (default: $MAPHP_WORK_DIR or ~/.maphp).",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.pass_context
def cli(
    ctx: click.Context,
    work_dir: str | None,
    verbose: bool,
    quiet: bool,
    debug: bool,
) -> None:
    """maphp — build, install and switch PHP versions."""
    ctx.ensure_object(dict)
    ctx.obj["work_dir"] = work_dir
    ctx.obj["quiet"] = quiet

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("MAPHP_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("MAPHP_LOG_FILE"),
        log_file_level=os.environ.get("MAPHP_LOG_FILE_LEVEL"),
        quiet_per_file=not debug,
    )


@cli.command()
@click.argument("version")
@click.option("--dev", is_flag=True, help="Debug build with php.ini-development.")
@click.option("--verbose", "show_output", is_flag=True, help="Stream build output.")
@click.option("--force", is_flag=True, help="Rebuild even if already installed.")
@click.option(
    "--use/--no-use",
    "use_after",
    default=None,
    help="Activate after installing (default: ask).",
)
@click.pass_context
@_handle_errors
def install(
    ctx: click.Context,
    version: str,
    dev: bool,
    show_output: bool,
    force: bool,
    use_after: bool | None,
) -> None:
    """Install a PHP version (e.g. 8.3, 8.3.1, php-8.4.0RC1)."""
    manager = _manager(ctx)
    outcome = manager.install(
        version, dev=dev, verbose=show_output, force=force, activate=bool(use_after)
    )

    for warning in outcome.warnings:
        click.secho(f"⚠️  {warning}", fg="yellow")

    name = outcome.tag.name
    if outcome.built:
        click.secho(f"✅ PHP {name} installed", fg="green", bold=True)
    else:
        click.echo(f"PHP {name} is already installed (use --force to rebuild)")

    activated = outcome.activated
    if use_after is None and manager.current() != outcome.tag.version:
        if click.confirm("Use it now?", default=True):
            manager.use(name)
            activated = True

    if activated:
        click.secho(f"✅ Now using PHP {name}", fg="green")
        _print_path_hint(manager.work_dir.bin)


@cli.command()
@click.argument("version", required=False)
@click.pass_context
@_handle_errors
def use(ctx: click.Context, version: str | None) -> None:
    """Switch the active PHP version (asks when VERSION is omitted)."""
    manager = _manager(ctx)
    active, changed = manager.use(version)

    if changed:
        click.secho(f"✅ Now using PHP {active}", fg="green")
    else:
        click.echo(f"PHP {active} is already active")
    _print_path_hint(manager.work_dir.bin)


@cli.command()
@click.argument("version", required=False)
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
@_handle_errors
def remove(ctx: click.Context, version: str | None, yes: bool) -> None:
    """Remove an installed PHP version (asks when VERSION is omitted)."""
    manager = _manager(ctx)

    def _confirm(v) -> bool:
        return click.confirm(f"Are you sure you want to remove PHP {v}?", default=False)

    removed = manager.remove(version, confirm=None if yes else _confirm)
    click.secho(f"PHP {removed.version} successfully deleted", fg="green")


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
@_handle_errors
def current(ctx: click.Context, as_json: bool) -> None:
    """Show the active PHP version."""
    manager = _manager(ctx)
    active = manager.current()

    if as_json:
        click.echo(json.dumps({
            "current": str(active) if active else None,
            "bin": str(manager.work_dir.bin),
        }, indent=2))
        return

    if active is None:
        click.echo("No active PHP version")
        return
    click.echo(str(active))


@cli.command("list")
@click.option("--installed", "only_installed", is_flag=True, help="List only installed versions.")
@click.option("--fetch", is_flag=True, help="Fetch and update known tags first.")
@click.option("--all", "show_all", is_flag=True, help="Include every prerelease.")
@click.option("--alpha", is_flag=True, help="Include alpha versions.")
@click.option("--beta", is_flag=True, help="Include beta versions.")
@click.option("--rc", is_flag=True, help="Include RC versions.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
@_handle_errors
def list_versions(
    ctx: click.Context,
    only_installed: bool,
    fetch: bool,
    show_all: bool,
    alpha: bool,
    beta: bool,
    rc: bool,
    as_json: bool,
) -> None:
    """List available or installed PHP versions."""
    manager = _manager(ctx)

    if only_installed:
        entries = manager.installed()
        active = manager.current()
        if as_json:
            click.echo(json.dumps([
                {
                    "version": str(e.version),
                    "install_path": e.install_path,
                    "installed_at": e.installed_at,
                    "dev_build": e.dev_build,
                    "active": e.version == active,
                }
                for e in entries
            ], indent=2))
            return

        if not entries:
            click.echo("No installed versions")
            return
        click.secho("Installed versions:", fg="cyan", bold=True)
        for e in entries:
            marker = " ← active" if e.version == active else ""
            dev = " (dev)" if e.dev_build else ""
            click.echo(f"  - {e.version}{dev}{marker}")
        return

    tags = manager.available(
        refresh=fetch,
        alpha=show_all or alpha,
        beta=show_all or beta,
        rc=show_all or rc,
    )
    if manager.catalog_warning:
        click.secho(f"⚠️  {manager.catalog_warning}", fg="yellow", err=True)

    installed = {e.version for e in manager.installed()}

    if as_json:
        click.echo(json.dumps([
            {"version": t.name, "channel": t.channel, "installed": t.version in installed}
            for t in tags
        ], indent=2))
        return

    if not tags:
        click.secho("❌ Couldn't find any matching version", fg="red")
        sys.exit(1)

    click.secho("Available versions:", fg="cyan", bold=True)
    for t in tags:
        marker = " (installed)" if t.version in installed else ""
        click.echo(f"    - {t.name}{marker}")


@cli.command()
@click.option("--limit", "-n", default=20, show_default=True, help="Number of entries.")
@click.pass_context
@_handle_errors
def history(ctx: click.Context, limit: int) -> None:
    """Show recent install/use/remove operations."""
    manager = _manager(ctx)
    entries = manager.history.read_recent(limit)

    if not entries:
        click.echo("No history yet")
        return

    status_color = {"ok": "green", "noop": "white", "failed": "red"}
    for e in entries:
        click.echo(f"{e.timestamp[:19]}  {e.operation:<8} {e.version or e.query or '-':<12} ", nl=False)
        click.secho(e.status, fg=status_color.get(e.status, "white"))
        if e.error:
            click.echo(f"    {e.error}")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
