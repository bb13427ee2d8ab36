"""Scriptable stand-in for the docker CLI used by integration tests.

Invoked as `fake_docker.py <subcommand> [args...]`. Every invocation is
appended as a JSON line to `$FAKE_DOCKER_LOG` when that variable is set.
"""

from __future__ import annotations

import argparse
import json
import os
import signal
import subprocess
import sys
import time
from pathlib import Path


def _log_invocation(argv: list[str]) -> None:
    log_path = os.environ.get("FAKE_DOCKER_LOG")
    if not log_path:
        return
    with Path(log_path).open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(argv) + "\n")


def _missing_ids() -> set[str]:
    raw = os.environ.get("FAKE_DOCKER_MISSING", "")
    return {item.strip() for item in raw.split(",") if item.strip()}


def _cmd_rm(args: list[str]) -> int:
    parser = argparse.ArgumentParser(prog="rm")
    parser.add_argument("--force", action="store_true")
    parser.add_argument("--volumes", action="store_true")
    parser.add_argument("resource_id")
    parsed = parser.parse_args(args)
    if parsed.resource_id in _missing_ids():
        print(f"Error response from daemon: No such container: {parsed.resource_id}", file=sys.stderr)
        return 1
    print(parsed.resource_id)
    return 0


def _cmd_stop(args: list[str]) -> int:
    parser = argparse.ArgumentParser(prog="stop")
    parser.add_argument("--time", type=int, default=10)
    parser.add_argument("resource_id")
    parsed = parser.parse_args(args)
    if parsed.resource_id in _missing_ids():
        print(f"Error response from daemon: No such container: {parsed.resource_id}", file=sys.stderr)
        return 1
    print(parsed.resource_id)
    return 0


def _cmd_ps(args: list[str]) -> int:
    _ = args
    output_file = os.environ.get("FAKE_DOCKER_PS_OUTPUT")
    if output_file:
        sys.stdout.write(Path(output_file).read_text(encoding="utf-8"))
    return 0


def _cmd_emit(args: list[str]) -> int:
    parser = argparse.ArgumentParser(prog="emit")
    parser.add_argument("--stdout", default="")
    parser.add_argument("--stderr", default="")
    parser.add_argument("--exit-code", type=int, default=0)
    parsed = parser.parse_args(args)
    if parsed.stdout:
        sys.stdout.write(parsed.stdout)
    if parsed.stderr:
        sys.stderr.write(parsed.stderr)
    sys.stdout.flush()
    sys.stderr.flush()
    return parsed.exit_code


def _cmd_sleep(args: list[str]) -> int:
    parser = argparse.ArgumentParser(prog="sleep")
    parser.add_argument("seconds", type=float)
    parser.add_argument("--ignore-term", action="store_true")
    parser.add_argument("--partial", default="")
    parsed = parser.parse_args(args)
    if parsed.ignore_term:
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
    if parsed.partial:
        print(parsed.partial, flush=True)
    time.sleep(parsed.seconds)
    return 0


def _cmd_spawn_orphan(args: list[str]) -> int:
    parser = argparse.ArgumentParser(prog="spawn-orphan")
    parser.add_argument("seconds", type=float)
    parser.add_argument("--ignore-term", action="store_true")
    parsed = parser.parse_args(args)
    body = "import signal, time\n"
    if parsed.ignore_term:
        body += "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
    body += f"time.sleep({parsed.seconds!r})\n"
    # The background child inherits stdout/stderr and outlives this process.
    subprocess.Popen([sys.executable, "-c", body])
    print("spawned", flush=True)
    return 0


def _cmd_flood(args: list[str]) -> int:
    parser = argparse.ArgumentParser(prog="flood")
    parser.add_argument("size", type=int)
    parsed = parser.parse_args(args)
    # Write to stderr first: a reader that only drains stdout would deadlock here.
    sys.stderr.write("e" * parsed.size)
    sys.stderr.flush()
    sys.stdout.write("o" * parsed.size)
    sys.stdout.flush()
    return 0


def _cmd_env(args: list[str]) -> int:
    print(os.environ.get(args[0], ""))
    return 0


def _cmd_pwd(args: list[str]) -> int:
    _ = args
    print(Path.cwd())
    return 0


def _cmd_version(args: list[str]) -> int:
    _ = args
    print("Docker version 27.0.0-fake")
    return 0


_COMMANDS = {
    "emit": _cmd_emit,
    "env": _cmd_env,
    "flood": _cmd_flood,
    "ps": _cmd_ps,
    "pwd": _cmd_pwd,
    "rm": _cmd_rm,
    "sleep": _cmd_sleep,
    "spawn-orphan": _cmd_spawn_orphan,
    "stop": _cmd_stop,
    "version": _cmd_version,
}


def main(argv: list[str]) -> int:
    _log_invocation(argv)
    if not argv:
        print("Usage: fake_docker COMMAND", file=sys.stderr)
        return 2
    handler = _COMMANDS.get(argv[0])
    if handler is None:
        print(f"unknown command: {argv[0]}", file=sys.stderr)
        return 125
    return handler(argv[1:])


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
