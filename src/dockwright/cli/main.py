"""Cyclopts CLI entry point for dockwright."""

from __future__ import annotations

import json
import sys
from contextvars import ContextVar
from dataclasses import dataclass
from typing import TYPE_CHECKING, Annotated, Any, cast

from cyclopts import App, Parameter

from dockwright import __version__
from dockwright.lib.config.settings import load_config, resolve_config_path
from dockwright.lib.exec.errors import CommandFailed, DockerError, InvalidConfiguration
from dockwright.lib.lifecycle.session import get_session
from dockwright.lib.logging import configure_logging
from dockwright.lib.serialization import to_jsonable

if TYPE_CHECKING:
    from collections.abc import Sequence


@dataclass(frozen=True, slots=True)
class GlobalOptions:
    """Top-level options that apply to all commands."""

    json_mode: bool = False
    verbosity: int = 0


_GLOBAL_OPTIONS: ContextVar[GlobalOptions | None] = ContextVar("_GLOBAL_OPTIONS", default=None)


def get_global_options() -> GlobalOptions:
    return _GLOBAL_OPTIONS.get() or GlobalOptions()


def _extract_global_options(argv: Sequence[str]) -> tuple[list[str], GlobalOptions]:
    json_mode = False
    verbosity = 0
    cleaned: list[str] = []

    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg == "--":
            # Everything after `--` belongs to the runtime command.
            cleaned.extend(argv[i:])
            break
        if arg == "--json":
            json_mode = True
        elif arg in {"-v", "--verbose"}:
            verbosity += 1
        elif arg.startswith("-v") and set(arg[1:]) == {"v"}:
            verbosity += len(arg) - 1
        else:
            cleaned.append(arg)
        i += 1

    return cleaned, GlobalOptions(json_mode=json_mode, verbosity=verbosity)


def _emit_text(payload: Any) -> None:
    if isinstance(payload, dict):
        for key, value in cast("dict[str, Any]", payload).items():
            if isinstance(value, (dict, list)):
                value = json.dumps(value, sort_keys=True)
            print(f"{key}: {value}")
        return
    if isinstance(payload, list):
        for item in cast("list[Any]", payload):
            if isinstance(item, dict):
                typed_item = cast("dict[str, Any]", item)
                print("\t".join(str(typed_item[key]) for key in typed_item))
            else:
                print(item)
        return
    print(payload)


def emit(payload: object) -> None:
    """Write command output using the current output mode."""

    converted = to_jsonable(payload)
    if get_global_options().json_mode:
        print(json.dumps(converted, indent=2, sort_keys=True))
        return
    _emit_text(converted)


app = App(
    name="dockwright",
    help="Typed driver for docker-compatible container runtimes",
    version=__version__,
    help_formatter="plain",
)
cleanup_app = App(name="cleanup", help="Managed resource cleanup", help_formatter="plain")
config_app = App(name="config", help="Configuration commands", help_formatter="plain")

app.command(cleanup_app, name="cleanup")
app.command(config_app, name="config")


@app.default
def root() -> None:
    """Print help."""

    app.help_print()


@app.command(name="exec")
def exec_command(
    *args: str,
    timeout: Annotated[
        float | None,
        Parameter(name="--timeout", help="Seconds before the runtime process is terminated."),
    ] = None,
) -> None:
    """Run one runtime command (pass its arguments after `--`) and print its stdout."""

    session = get_session()
    result = session.executor.run(*args, timeout_seconds=timeout)
    if get_global_options().json_mode:
        emit(result)
        return
    sys.stdout.write(result.stdout)
    sys.stdout.flush()


@app.command(name="session")
def session_command() -> None:
    """Show the session id and the labels applied to managed resources."""

    session = get_session()
    emit(
        {
            "session_id": session.session_id,
            "labels": session.managed_labels(),
            "tracked": session.tracked_resources(),
        }
    )


@app.command(name="managed")
def managed_command() -> None:
    """List containers carrying the managed label, from any session."""

    emit(get_session().list_managed_containers())


@cleanup_app.command(name="orphans")
def cleanup_orphans_command(
    force: Annotated[
        bool,
        Parameter(
            name="--force",
            help="Pass `--force` to `rm` after the graceful stop.",
        ),
    ] = True,
) -> None:
    """Remove managed containers that belong to other sessions."""

    emit({"removed": get_session().cleanup_orphans(force=force)})


@config_app.command(name="show")
def config_show_command() -> None:
    """Show the resolved configuration and where it was loaded from."""

    path = resolve_config_path()
    emit(
        {
            "path": path.as_posix(),
            "exists": path.is_file(),
            "config": load_config(path),
        }
    )


def _report_error(error: DockerError) -> int:
    if get_global_options().json_mode:
        payload = {
            "error": type(error).__name__,
            "message": error.message,
            "retryable": error.retryable,
        }
        print(json.dumps(payload, sort_keys=True), file=sys.stderr)
    else:
        print(f"error: {error.message}", file=sys.stderr)
        if error.retryable:
            print("hint: this failure looks transient and may succeed on retry", file=sys.stderr)
    if isinstance(error, CommandFailed) and 0 < error.exit_code < 256:
        return error.exit_code
    if isinstance(error, InvalidConfiguration):
        return 2
    return 1


def main(argv: Sequence[str] | None = None) -> None:
    raw_args = list(sys.argv[1:] if argv is None else argv)
    cleaned, options = _extract_global_options(raw_args)
    configure_logging(json_mode=options.json_mode, verbosity=options.verbosity)

    token = _GLOBAL_OPTIONS.set(options)
    try:
        app(cleaned)
    except DockerError as error:
        raise SystemExit(_report_error(error)) from None
    except ValueError as error:
        print(f"error: {error}", file=sys.stderr)
        raise SystemExit(2) from None
    finally:
        _GLOBAL_OPTIONS.reset(token)
