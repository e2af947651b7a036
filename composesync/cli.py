"""CLI interface for composesync"""

import asyncio
import sys

import click

from composesync.config import Config
from composesync.engine import Engine
from composesync.errors import ConfigError, LockError, StateTransitionError
from composesync.logging_setup import setup_logging
from composesync.state_manager import SnapshotStore

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_CONFIG = 2
EXIT_LOCKED = 3


def build_config(ctx, **overrides) -> Config:
    """Merge config file, environment and command-line options; exit on error."""
    try:
        config_file = ctx.obj.get('config_file')
        config = Config.load(config_file) if config_file else Config()
        config = Config.from_env(config)
        config = config.merged({'state_dir': ctx.obj.get('state_dir'), **overrides})
    except (ConfigError, FileNotFoundError) as e:
        click.echo(f"✗ Configuration error: {e}", err=True)
        sys.exit(EXIT_CONFIG)
    return config


@click.group()
@click.version_option(version='0.1.0')
@click.option('--config', 'config_file', type=click.Path(dir_okay=False),
              envvar='COMPOSESYNC_CONFIG', help='Path to YAML configuration file')
@click.option('--state-dir', help='Directory holding snapshots and source clones')
@click.option('--debug', is_flag=True, envvar='COMPOSESYNC_DEBUG',
              help='Debug logging with stack traces of failures')
@click.pass_context
def cli(ctx, config_file, state_dir, debug):
    """Reconcile docker compose units on this host with their git sources.

    Environment Variables:
        SOURCE_REPOS: Comma separated list of source repositories
        COMPOSESYNC_STATE_DIR: State directory
        COMPOSESYNC_BRANCH: Branch to deploy from
        COMPOSESYNC_TIMEOUT: Timeout in seconds of each compose command

    Examples:
        SOURCE_REPOS=https://git.example.com/ops/fleet.git composesync run
        composesync --config /etc/composesync.yml status
    """
    ctx.ensure_object(dict)
    ctx.obj['config_file'] = config_file
    ctx.obj['state_dir'] = state_dir
    ctx.obj['debug'] = debug


@cli.command()
@click.option('--source', 'sources', multiple=True, help='Source repository (repeatable)')
@click.option('--branch', help='Branch to deploy from')
@click.option('--timeout', type=float, help='Timeout in seconds of each compose command')
@click.option('--no-pull', is_flag=True, help='Skip docker compose pull')
@click.pass_context
def run(ctx, sources, branch, timeout, no_pull):
    """Run one reconciliation."""
    debug = ctx.obj['debug']
    config = build_config(
        ctx,
        sources=list(sources) or None,
        branch=branch,
        command_timeout=timeout,
        pull=False if no_pull else None,
    )
    try:
        config.validate()
    except ConfigError as e:
        click.echo(f"✗ Configuration error: {e}", err=True)
        sys.exit(EXIT_CONFIG)

    logger = setup_logging(debug=debug, log_file=config.log_file)
    engine = Engine(config, debug=debug)

    try:
        report = asyncio.run(engine.run())
    except LockError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(EXIT_LOCKED)
    except StateTransitionError as e:
        logger.critical(f"Run aborted, current state left unchanged: {e}",
                        exc_info=e if debug else None)
        sys.exit(EXIT_RUN_FAILED)

    for outcome in report.failed_sources:
        click.echo(f"✗ Source {outcome.address} failed", err=True)
    for uid in report.pinned:
        click.echo(f"! {uid} could not be torn down, will retry on next run", err=True)

    sys.exit(EXIT_OK if report.success else EXIT_RUN_FAILED)


@cli.command()
@click.pass_context
def status(ctx):
    """Show the recorded state of the host."""
    config = build_config(ctx)
    store = SnapshotStore(config)

    current = sorted(store.current_units())
    click.echo(f"Current state ({config.current_path}): {len(current)} unit(s)")
    for uid in current:
        click.echo(f"  {uid}")

    pinned = sorted(store.pinned_units())
    if pinned:
        click.echo(f"Pending teardown: {len(pinned)} unit(s)")
        for uid in pinned:
            click.echo(f"  {uid}")

    for label, path in (('staging', config.staging_path), ('previous', config.previous_path)):
        if path.exists():
            click.echo(f"Leftover {label} snapshot from an interrupted run: {path}")


@cli.command()
@click.option('--source', 'sources', multiple=True, help='Source repository (repeatable)')
@click.pass_context
def units(ctx, sources):
    """List the units each source declares, without changing state."""
    debug = ctx.obj['debug']
    config = build_config(ctx, sources=list(sources) or None)
    try:
        config.validate()
    except ConfigError as e:
        click.echo(f"✗ Configuration error: {e}", err=True)
        sys.exit(EXIT_CONFIG)

    setup_logging(debug=debug, log_file=config.log_file)
    try:
        outcomes = asyncio.run(Engine(config, debug=debug).list_units())
    except LockError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(EXIT_LOCKED)

    failed = False
    for outcome in outcomes:
        click.echo(f"{outcome.address} ({outcome.source_id})")
        for uid in outcome.units:
            click.echo(f"  {uid}")
        for error in outcome.errors:
            failed = True
            click.echo(f"  ✗ {error}", err=True)

    sys.exit(EXIT_RUN_FAILED if failed else EXIT_OK)


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
