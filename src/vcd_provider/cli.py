"""vCD provider CLI (vcdp).

Drives the lifecycle reconciler for the resources declared in one spec
file, acting as the orchestrator: it owns the state file and turns
"replacement required" into delete followed by create.

Usage:
    vcdp plan resources.yaml       # Show what apply would do
    vcdp apply resources.yaml      # Create, update or replace resources
    vcdp refresh resources.yaml    # Re-read remote state, drop drifted entries
    vcdp destroy resources.yaml    # Delete every declared resource

Exit codes:
    0  success
    1  provider error (rejected request, failed task, timeout, transport)
    2  configuration, spec or state file error
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path

import click

from .config import Config, ConfigurationError
from .context import ProviderContext
from .errors import ProviderError
from .kinds import get_kind
from .main import setup_logging
from .reconciler import LifecycleReconciler
from .spec_loader import ResourceDefinition, SpecLoadError, load_resources
from .state import StateStore, StateStoreError

logger = logging.getLogger(__name__)

EXIT_PROVIDER_ERROR = 1
EXIT_USAGE_ERROR = 2

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class ProviderCommandError(click.ClickException):
    """A provider failure, reported with exit code 1."""

    exit_code = EXIT_PROVIDER_ERROR


class UsageError(click.ClickException):
    """A configuration, spec or state problem, reported with exit code 2."""

    exit_code = EXIT_USAGE_ERROR


def build_context(config: Config) -> ProviderContext:
    """Create the provider context for a CLI run."""
    return ProviderContext.from_config(config)


class Session:
    """Everything one command needs: context, resources and state."""

    def __init__(
        self,
        context: ProviderContext,
        resources: list[ResourceDefinition],
        store: StateStore,
    ) -> None:
        self.context = context
        self.resources = resources
        self.store = store
        self._reconcilers: dict[str, LifecycleReconciler] = {}

    def reconciler(self, kind: str) -> LifecycleReconciler:
        if kind not in self._reconcilers:
            self._reconcilers[kind] = LifecycleReconciler(get_kind(kind), self.context)
        return self._reconcilers[kind]


def _open_session(spec_file: Path, state_path: Path | None) -> Session:
    try:
        config = Config.from_env()
        resources = load_resources(spec_file)
        store = StateStore(state_path or config.state_file).load()
    except (ConfigurationError, SpecLoadError, StateStoreError) as e:
        raise UsageError(str(e)) from e
    return Session(build_context(config), resources, store)


def _run(session: Session, action: Callable[[Session], Awaitable[None]]) -> None:
    """Run an async action, saving state whatever the outcome."""
    try:
        asyncio.run(action(session))
    except ProviderError as e:
        logger.error("Command failed", extra={"error": str(e), "error_type": type(e).__name__})
        raise ProviderCommandError(str(e)) from e
    finally:
        try:
            session.store.save()
        except StateStoreError as e:
            raise UsageError(str(e)) from e
        close = getattr(session.context.client, "close", None)
        if close is not None:
            close()


# =============================================================================
# Actions
# =============================================================================


async def _plan(session: Session) -> None:
    declared = {resource.address for resource in session.resources}
    for resource in session.resources:
        reconciler = session.reconciler(resource.kind)
        # Plan never persists: work on a copy of the state
        state = session.store.get(resource.address).snapshot()

        if not state.exists:
            click.echo(f"+ {resource.address} (create)")
            continue

        read = await reconciler.read(resource.spec, state)
        if not read.found:
            click.echo(f"+ {resource.address} (create, remote object is gone)")
            continue

        result = reconciler.plan_update(resource.spec, state)
        if result.requires_replacement:
            attributes = ", ".join(result.requires_replacement)
            click.echo(f"-/+ {resource.address} (replace: {attributes})")
        elif not result.no_op:
            click.echo(f"~ {resource.address} (update: {', '.join(result.changed)})")
        else:
            click.echo(f"  {resource.address} (no changes)")

    for address in session.store.addresses():
        if address not in declared:
            click.echo(f"? {address} (in state but not declared; not managed by this file)")


async def _apply(session: Session) -> None:
    for resource in session.resources:
        reconciler = session.reconciler(resource.kind)
        state = session.store.get(resource.address)

        if state.exists:
            read = await reconciler.read(resource.spec, state)
            if read.found:
                result = await reconciler.update(resource.spec, state)
                if not result.requires_replacement:
                    if result.found:
                        status = "updated" if result.changed else "unchanged"
                        click.echo(f"{resource.address}: {status}")
                        continue
                    # Vanished between read and update; recreate below
                else:
                    await reconciler.delete(resource.spec, state)
                    click.echo(f"{resource.address}: deleted for replacement")

        created = await reconciler.create(resource.spec, state)
        session.store.save()
        click.echo(f"{resource.address}: created {created.href}")


async def _refresh(session: Session) -> None:
    for resource in session.resources:
        state = session.store.get(resource.address)
        if not state.exists:
            click.echo(f"{resource.address}: not in state")
            continue
        read = await session.reconciler(resource.kind).read(resource.spec, state)
        if not read.found:
            click.echo(f"{resource.address}: gone, removed from state")
        elif read.drift:
            click.echo(f"{resource.address}: drifted ({', '.join(sorted(read.drift))})")
        else:
            click.echo(f"{resource.address}: in sync")


async def _destroy(session: Session) -> None:
    # Reverse declaration order tears dependents down first
    for resource in reversed(session.resources):
        state = session.store.get(resource.address)
        if not state.exists:
            click.echo(f"{resource.address}: not in state")
            continue
        result = await session.reconciler(resource.kind).delete(resource.spec, state)
        session.store.save()
        click.echo(f"{resource.address}: {'deleted' if result.deleted else 'already gone'}")


# =============================================================================
# Main CLI Group
# =============================================================================


spec_file_argument = click.argument(
    "spec_file", type=click.Path(dir_okay=False, path_type=Path)
)
state_option = click.option(
    "--state",
    "state_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="State file (default: $VCD_STATE_FILE or vcd-state.json)",
)


@click.group()
@click.version_option(version="0.1.0", prog_name="vcdp")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Log level of the JSON logs written to stderr",
)
def cli(log_level: str) -> None:
    """vCD provider CLI (vcdp).

    Provisions independent disks and VDCs on VMware Cloud Director from a
    YAML resource file. Connection settings come from VCD_* environment
    variables.
    """
    setup_logging(log_level.upper(), stream=sys.stderr)


@cli.command()
@spec_file_argument
@state_option
def plan(spec_file: Path, state_path: Path | None) -> None:
    """Show what apply would change, without changing anything."""
    _run(_open_session(spec_file, state_path), _plan)


@cli.command()
@spec_file_argument
@state_option
def apply(spec_file: Path, state_path: Path | None) -> None:
    """Create, update or replace the declared resources."""
    _run(_open_session(spec_file, state_path), _apply)


@cli.command()
@spec_file_argument
@state_option
def refresh(spec_file: Path, state_path: Path | None) -> None:
    """Re-read every declared resource; forget those deleted remotely."""
    _run(_open_session(spec_file, state_path), _refresh)


@cli.command()
@spec_file_argument
@state_option
def destroy(spec_file: Path, state_path: Path | None) -> None:
    """Delete every declared resource."""
    _run(_open_session(spec_file, state_path), _destroy)


if __name__ == "__main__":
    cli()
