"""
hostconverge — CLI entrypoint.

Usage:
    hostconverge --help
    hostconverge install [--bind 0.0.0.0] [--port 5000] [--dry-run]
    hostconverge status
    python -m hostconverge.main uninstall --dry-run
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from hostconverge import __version__
from hostconverge.core.observability.logging_config import DEFAULT_LEVEL, setup_logging

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130


@click.group()
@click.version_option(version=__version__, prog_name="hostconverge")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Only log errors.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to hostconverge.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """Converge this host to a WGDashboard install, or tear it down."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("HCV_LOG_LEVEL", DEFAULT_LEVEL)

    setup_logging(
        level=level,
        log_file=os.environ.get("HCV_LOG_FILE"),
        log_file_level=os.environ.get("HCV_LOG_FILE_LEVEL"),
    )


def _load_config(ctx: click.Context, bind: str | None = None, port: int | None = None):
    """Load config or exit 1 with the error."""
    from hostconverge.core.config.loader import ConfigError, load_config

    try:
        config = load_config(ctx.obj.get("config_path"))
        if bind is not None or port is not None:
            config = config.with_app_overrides(bind_address=bind, port=port)
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(EXIT_FAILED)
    except ValueError as e:
        click.secho(f"❌ Invalid option: {e}", fg="red", err=True)
        sys.exit(EXIT_FAILED)
    return config


def _converge(ctx: click.Context, target_name: str, as_json: bool, dry_run: bool, config) -> None:
    from hostconverge.adapters.shell.filesystem import cleanup_pending, install_signal_handlers
    from hostconverge.core.models.resource import TargetState
    from hostconverge.core.use_cases.converge import converge

    target = TargetState(target_name)
    install_signal_handlers()

    try:
        result = converge(target, config, dry_run=dry_run)
    except KeyboardInterrupt:
        cleanup_pending()
        click.secho("\n⚠️  Interrupted — re-run to finish converging.", fg="yellow", err=True)
        sys.exit(EXIT_INTERRUPTED)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(EXIT_OK if result.ok else EXIT_FAILED)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(EXIT_FAILED)

    report = result.report
    assert report is not None

    mode_label = "[dry-run] " if dry_run else ""
    click.secho(f"\n⚡ {mode_label}{target.value} — {config.app.name}", fg="cyan", bold=True)
    current = result.current.value if result.current else "partial"
    click.echo(f"   Current: {current} | Steps: {report.total}")
    click.echo()

    if report.total == 0:
        click.secho(f"   ✓ Already {target.value}, nothing to do", fg="green")

    for r in report.results:
        timing = f" ({r.duration_ms}ms)" if r.duration_ms else ""
        if r.ok:
            click.secho(f"   ✓ {r.step_id}", fg="green", nl=False)
            click.echo(timing)
            if ctx.obj.get("verbose") and r.output:
                for line in r.output.split("\n")[:10]:
                    click.echo(f"     │ {line}")
        elif r.failed:
            click.secho(f"   ✗ {r.step_id}", fg="red", nl=False)
            click.echo(f"{timing} [{r.error_kind}]")
            if r.error:
                for line in r.error.split("\n")[:5]:
                    click.echo(f"     │ {line}")
        else:
            click.secho(f"   ⊘ {r.step_id} ", fg="yellow", nl=False)
            click.echo(f"({r.output})")

    # Summary
    click.echo()
    status_color = {"noop": "green", "ok": "green", "partial": "yellow", "failed": "red"}.get(
        report.status, "white"
    )
    click.secho(
        f"   Result: {report.succeeded}/{report.total} succeeded",
        fg=status_color,
        bold=True,
    )
    if report.divergent:
        label = "Would change" if dry_run else "Still divergent"
        click.secho(f"   {label}: {', '.join(report.divergent)}", fg="yellow")
    if result.access_url:
        click.secho(f"   Access: {result.access_url}", fg="cyan", bold=True)
    click.echo()

    if not result.ok:
        sys.exit(EXIT_FAILED)


@cli.command()
@click.option("--bind", "bind", default=None, help="Dashboard bind address.")
@click.option("--port", "port", type=int, default=None, help="Dashboard port.")
@click.option("--dry-run", is_flag=True, help="Plan and log, change nothing.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def install(
    ctx: click.Context,
    bind: str | None,
    port: int | None,
    dry_run: bool,
    as_json: bool,
) -> None:
    """Install, configure and start the dashboard."""
    config = _load_config(ctx, bind=bind, port=port)
    _converge(ctx, "installed", as_json, dry_run, config)


@cli.command()
@click.option("--dry-run", is_flag=True, help="Plan and log, change nothing.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def uninstall(ctx: click.Context, dry_run: bool, as_json: bool) -> None:
    """Stop the service and remove the unit and application files.

    OS packages, the WireGuard file, kernel settings and firewall rules
    are left in place.
    """
    _converge(ctx, "absent", as_json, dry_run, _load_config(ctx))


@cli.command()
@click.option("--dry-run", is_flag=True, help="Plan and log, change nothing.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def start(ctx: click.Context, dry_run: bool, as_json: bool) -> None:
    """Start the installed service."""
    _converge(ctx, "running", as_json, dry_run, _load_config(ctx))


@cli.command()
@click.option("--dry-run", is_flag=True, help="Plan and log, change nothing.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def stop(ctx: click.Context, dry_run: bool, as_json: bool) -> None:
    """Stop the installed service."""
    _converge(ctx, "stopped", as_json, dry_run, _load_config(ctx))


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show how the host differs from a full install. Changes nothing."""
    from hostconverge.core.use_cases.status import get_status

    config = _load_config(ctx)
    result = get_status(config)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(EXIT_FAILED if result.error else EXIT_OK)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(EXIT_FAILED)

    current = result.current.value if result.current else "partial"
    click.secho(f"\n📋 {config.app.name} — {current}", fg="cyan", bold=True)
    click.echo()

    for key, obs in result.observations.items():
        if key not in result.divergent:
            click.secho(f"   ✓ {key}", fg="green", nl=False)
        elif obs.is_unknown:
            click.secho(f"   ? {key}", fg="yellow", nl=False)
        else:
            click.secho(f"   ✗ {key}", fg="red", nl=False)
        click.echo(f"  {obs.detail}" if obs.detail else "")

    click.echo()
    if result.divergent:
        click.secho(f"   Divergent: {', '.join(result.divergent)}", fg="yellow", bold=True)
    else:
        click.secho("   Converged", fg="green", bold=True)

    if result.public_key:
        click.echo(f"   WireGuard public key: {result.public_key}")

    missing = sorted(name for name, available in result.tools.items() if not available)
    if missing:
        click.secho(f"   Tools not found for: {', '.join(missing)}", fg="yellow")

    if result.last_run:
        run = result.last_run
        click.echo()
        click.secho("   Last run:", fg="white", bold=True)
        status_color = {"ok": "green", "noop": "green", "partial": "yellow", "failed": "red"}.get(
            run.status, "white"
        )
        click.echo(f"     {run.target} — ", nl=False)
        click.secho(run.status, fg=status_color)
        click.echo(f"     at {run.timestamp}")

    click.echo()


if __name__ == "__main__":
    cli()
