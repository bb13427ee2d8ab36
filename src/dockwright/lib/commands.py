"""Argument-vector builders for the few subcommands the lifecycle layer issues."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

# Tab-separated so container names and label values survive splitting.
PS_LABEL_FORMAT = "{{.ID}}\t{{.Names}}\t{{.Labels}}"


def rm_args(resource_id: str, *, force: bool = False, volumes: bool = False) -> tuple[str, ...]:
    args = ["rm"]
    if force:
        args.append("--force")
    if volumes:
        args.append("--volumes")
    args.append(resource_id)
    return tuple(args)


def stop_args(resource_id: str, *, time_seconds: int | None = None) -> tuple[str, ...]:
    args = ["stop"]
    if time_seconds is not None:
        args.extend(("--time", str(time_seconds)))
    args.append(resource_id)
    return tuple(args)


def ps_args(
    *,
    all_containers: bool = False,
    filters: Iterable[str] = (),
    format_template: str | None = None,
    quiet: bool = False,
) -> tuple[str, ...]:
    args = ["ps"]
    if all_containers:
        args.append("--all")
    for item in filters:
        args.extend(("--filter", item))
    if format_template is not None:
        args.extend(("--format", format_template))
    if quiet:
        args.append("--quiet")
    return tuple(args)


def version_args(*, format_template: str | None = None) -> tuple[str, ...]:
    if format_template is None:
        return ("version",)
    return ("version", "--format", format_template)


def label_args(labels: Mapping[str, str]) -> tuple[str, ...]:
    """Render labels as repeated `--label key=value` flags for create/run builders."""

    args: list[str] = []
    for key, value in labels.items():
        args.extend(("--label", f"{key}={value}"))
    return tuple(args)


def parse_label_string(raw: str) -> dict[str, str]:
    """Parse the comma-separated `key=value` list emitted by `{{.Labels}}`."""

    labels: dict[str, str] = {}
    for item in raw.split(","):
        key, sep, value = item.strip().partition("=")
        if not sep or not key:
            continue
        labels[key] = value
    return labels
