"""Directory controller CLI (dirctl).

Usage:
    dirctl plan alice.yaml                       # Offline: compile and print requests
    dirctl plan alice.yaml --from-state ACTIVATED
    dirctl apply alice.yaml --state-file alice.state.json
    dirctl read --state-file alice.state.json
    dirctl import 5f1b... --state-file alice.state.json
    dirctl delete --state-file alice.state.json

The state file is the caller-owned persistence of one user: its id and the
last merged state. It may hold the password, so it is written owner-only.
"""

from __future__ import annotations

import json
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import click

from .config import ConfigurationError, ControllerConfig, LogFormat
from .deletion import DeletionBlockedError
from .desired import DesiredState
from .executor import SecondaryWriteError, WriteError, redact
from .lifecycle import PlanValidationError
from .main import setup_logging
from .reconciler import UserPlan, UserReconciler, plan_user
from .spec_loader import SpecLoadError, load_user, load_users
from .transport import HttpTransport, TransportError

STATE_FILE_MODE = 0o600

# Errors reported as a one-line CLI failure instead of a traceback
_USER_FACING_ERRORS = (
    ConfigurationError,
    SpecLoadError,
    PlanValidationError,
    TransportError,
    WriteError,
    DeletionBlockedError,
)


# =============================================================================
# State File
# =============================================================================


def read_state_file(path: Path) -> tuple[str | None, DesiredState | None]:
    """Read ``{id, state}`` from a state file.

    Returns:
        (user id, last merged state); (None, None) if the file does not exist.

    Raises:
        click.ClickException: If the file is not a valid state file.
    """
    if not path.exists():
        return None, None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Invalid state file {path}: {e}") from e
    if not isinstance(data, dict) or not isinstance(data.get("state", {}), dict):
        raise click.ClickException(f"Invalid state file {path}: expected {{id, state}}")
    return data.get("id") or None, DesiredState(data.get("state") or {})


def write_state_file(path: Path, user_id: str | None, state: DesiredState | None) -> None:
    payload = {"id": user_id, "state": state.to_dict() if state is not None else {}}
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, STATE_FILE_MODE)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True)
        f.write("\n")


def plan_to_dict(plan: UserPlan) -> dict[str, Any]:
    return {
        "operation": plan.operation.value,
        "user_id": plan.user_id,
        "changed_fields": list(plan.changed_fields),
        "target_state": plan.request.target_state.value if plan.request.target_state else None,
        "primary": redact(plan.request.primary),
        "secondary": plan.request.secondary,
    }


@contextmanager
def open_reconciler(ctx: click.Context) -> Iterator[UserReconciler]:
    """Build a reconciler, from injected collaborators or the environment.

    Tests inject ``transport`` (and optionally ``today`` and ``sleep``)
    through the context object.
    """
    options: dict[str, Any] = {k: ctx.obj[k] for k in ("today", "sleep") if k in ctx.obj}
    transport = ctx.obj.get("transport")
    if transport is not None:
        yield UserReconciler(transport, **options)
        return

    config = ControllerConfig.from_env()
    with HttpTransport(config) as http_transport:
        yield UserReconciler(http_transport, **options)


@contextmanager
def user_facing_errors() -> Iterator[None]:
    try:
        yield
    except _USER_FACING_ERRORS as e:
        raise click.ClickException(str(e)) from e


# =============================================================================
# Commands
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="dirctl")
@click.option(
    "--log-format",
    type=click.Choice([f.value for f in LogFormat]),
    envvar="LOG_FORMAT",
    default=LogFormat.TEXT.value,
    show_default=True,
    help="Log output format",
)
@click.option("--log-level", envvar="LOG_LEVEL", default="WARNING", show_default=True)
@click.pass_context
def cli(ctx: click.Context, log_format: str, log_level: str) -> None:
    """Directory controller CLI (dirctl).

    Reconciles directory users against YAML specs.

    \b
    Environment:
        DIRECTORY_API_URL, DIRECTORY_API_KEY   (required for remote commands)
        DIRECTORY_ORG_ID, DIRECTORY_REQUEST_TIMEOUT
    """
    ctx.ensure_object(dict)
    setup_logging(LogFormat(log_format), log_level)


@cli.command()
@click.argument("spec", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--from-state", help="Last-known lifecycle state of an existing user")
@click.option("--user-id", help="Id of the existing user (plans an update)")
@click.pass_context
def plan(ctx: click.Context, spec: Path, from_state: str | None, user_id: str | None) -> None:
    """Validate a spec and print the requests it compiles to. Sends nothing."""
    with user_facing_errors():
        prior = DesiredState({"state": from_state}) if from_state else None
        options = {"today": ctx.obj["today"]} if "today" in ctx.obj else {}
        plans = [plan_user(desired, prior, user_id, **options) for desired in load_users(spec)]
    output: Any = plan_to_dict(plans[0]) if len(plans) == 1 else [plan_to_dict(p) for p in plans]
    click.echo(json.dumps(output, indent=2, sort_keys=True))


@cli.command()
@click.argument("spec", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--state-file",
    required=True,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Where the user's id and merged state are kept",
)
@click.pass_context
def apply(ctx: click.Context, spec: Path, state_file: Path) -> None:
    """Create or update the user described by SPEC.

    If the recorded user was deleted out of band, the state file is removed
    and the next apply creates the user again.
    """
    with user_facing_errors():
        desired = load_user(spec)
        user_id, prior = read_state_file(state_file)
        with open_reconciler(ctx) as reconciler:
            try:
                result = reconciler.apply(desired, prior if user_id else None, user_id)
            except SecondaryWriteError as e:
                # Keep the id but not the new state, so the next apply resends everything
                write_state_file(state_file, e.user_id, prior if user_id else None)
                raise

    if result.absent:
        state_file.unlink()
        click.echo(f"User {user_id} no longer exists; removed {state_file}")
        return
    write_state_file(state_file, result.user_id, result.state)
    click.echo(f"{result.operation.value}: {desired['username']} ({result.user_id})")


@cli.command()
@click.option(
    "--state-file", required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
@click.pass_context
def read(ctx: click.Context, state_file: Path) -> None:
    """Refresh a state file from the server."""
    with user_facing_errors():
        user_id, prior = read_state_file(state_file)
        if not user_id:
            raise click.ClickException(f"No user id in {state_file}")
        with open_reconciler(ctx) as reconciler:
            state = reconciler.read(user_id, prior)

    if state is None:
        state_file.unlink()
        click.echo(f"User {user_id} no longer exists; removed {state_file}")
        return
    write_state_file(state_file, user_id, state)
    click.echo(json.dumps(state.without("password").to_dict(), indent=2, sort_keys=True))


@cli.command("import")
@click.argument("user_id")
@click.option("--state-file", required=True, type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
def import_user(ctx: click.Context, user_id: str, state_file: Path) -> None:
    """Adopt an existing user by id into a new state file."""
    if state_file.exists():
        raise click.ClickException(f"State file already exists: {state_file}")
    with user_facing_errors():
        with open_reconciler(ctx) as reconciler:
            state = reconciler.import_user(user_id)

    write_state_file(state_file, user_id, state)
    click.echo(f"Imported {state.get('username')} ({user_id})")


@cli.command()
@click.option(
    "--state-file", required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
@click.pass_context
def delete(ctx: click.Context, state_file: Path) -> None:
    """Delete the user recorded in a state file."""
    with user_facing_errors():
        user_id, prior = read_state_file(state_file)
        if not user_id:
            raise click.ClickException(f"No user id in {state_file}")
        with open_reconciler(ctx) as reconciler:
            deleted = reconciler.delete(user_id, prior)

    state_file.unlink()
    if deleted:
        click.echo(f"Deleted user {user_id}")
    else:
        click.echo(f"User {user_id} was already gone")
