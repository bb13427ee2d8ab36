from __future__ import annotations

from collections.abc import Sequence

import pytest

from dockwright.lib.exec.runtime import ContainerRuntime, detect_runtime


@pytest.mark.parametrize(
    "args,supported",
    [
        pytest.param(("run", "--rm", "alpine"), True, id="run"),
        pytest.param(("builder", "prune"), True, id="builder-prune"),
        pytest.param(("builder", "create", "--name", "x"), False, id="builder-create"),
        pytest.param(("--debug", "swarm", "init"), False, id="swarm-after-flag"),
        pytest.param(("service", "ls"), False, id="service"),
        pytest.param(("stack", "deploy"), False, id="stack"),
        pytest.param(("node", "ls"), False, id="node"),
    ],
)
def test_podman_command_support(args: tuple[str, ...], supported: bool) -> None:
    assert ContainerRuntime.PODMAN.supports(args) is supported


def test_docker_supports_everything() -> None:
    assert ContainerRuntime.DOCKER.supports(("swarm", "init")) is True
    assert ContainerRuntime.DOCKER.command == "docker"


def test_detect_prefers_working_podman() -> None:
    checked: list[Sequence[str]] = []

    def _responds(command: Sequence[str]) -> bool:
        checked.append(command)
        return True

    runtime = detect_runtime(which=lambda name: f"/usr/bin/{name}", check=_responds)

    assert runtime is ContainerRuntime.PODMAN
    assert checked == [("podman", "version")]


def test_detect_falls_back_to_docker_when_podman_is_broken() -> None:
    runtime = detect_runtime(which=lambda name: f"/usr/bin/{name}", check=lambda _: False)

    assert runtime is ContainerRuntime.DOCKER


def test_detect_falls_back_to_docker_when_podman_is_missing() -> None:
    def _responds(command: Sequence[str]) -> bool:
        raise AssertionError(f"unexpected check {command}")

    runtime = detect_runtime(which=lambda _: None, check=_responds)

    assert runtime is ContainerRuntime.DOCKER
