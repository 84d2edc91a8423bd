from __future__ import annotations

from pathlib import Path

import pytest

from dxregress.errors import EngineError, PatchError, ValidationError
from dxregress.runtime.codebase import (
    GenesisPatcher,
    docker_preflight,
    require_cli_binary,
    validate_codebase,
)
from tests.fixtures.fakes import RecordingRunner, completed


@pytest.fixture
def patch_file(tmp_path: Path) -> Path:
    patch = tmp_path / "genesis.patch"
    patch.write_text("diff --git a/src/chainparams.cpp b/src/chainparams.cpp\n", encoding="utf-8")
    return patch


def test_validate_codebase(tmp_path: Path) -> None:
    assert validate_codebase(tmp_path) == tmp_path.resolve()
    with pytest.raises(ValidationError, match="invalid codebase directory"):
        validate_codebase(tmp_path / "missing")


def test_require_cli_binary(tmp_path: Path) -> None:
    with pytest.raises(ValidationError, match="did you build first"):
        require_cli_binary(tmp_path)

    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "blocknetdx-cli").write_bytes(b"\x7fELF")
    assert require_cli_binary(tmp_path) == tmp_path / "src" / "blocknetdx-cli"


def test_apply_on_clean_codebase(tmp_path: Path, patch_file: Path) -> None:
    runner = RecordingRunner()

    GenesisPatcher(command_runner=runner).apply(patch_file, tmp_path)

    assert [args for args, _ in runner.commands] == [
        ["git", "apply", "--check", str(patch_file)],
        ["git", "apply", str(patch_file)],
    ]
    assert runner.commands[0][1]["cwd"] == str(tmp_path)
    assert runner.commands[0][1]["check"] is False


def test_apply_reverts_previously_applied_patch(tmp_path: Path, patch_file: Path) -> None:
    runner = RecordingRunner(
        [
            completed([], "", returncode=1, stderr="patch does not apply"),
            completed([], ""),
            completed([], ""),
        ]
    )

    GenesisPatcher(command_runner=runner).apply(patch_file, tmp_path)

    assert [args[2] for args, _ in runner.commands] == ["--check", "-R", str(patch_file)]


def test_apply_conflict_raises(tmp_path: Path, patch_file: Path) -> None:
    runner = RecordingRunner([completed([], ""), completed([], "", returncode=1, stderr="error: patch failed")])

    with pytest.raises(PatchError, match="possible conflict: error: patch failed"):
        GenesisPatcher(command_runner=runner).apply(patch_file, tmp_path)


def test_failed_revert_raises(tmp_path: Path, patch_file: Path) -> None:
    runner = RecordingRunner(
        [completed([], "", returncode=1), completed([], "", returncode=1, stderr="cannot reverse")]
    )

    with pytest.raises(PatchError, match="reverting patch failed"):
        GenesisPatcher(command_runner=runner).remove(patch_file, tmp_path)


def test_missing_patch_file(tmp_path: Path) -> None:
    runner = RecordingRunner()

    with pytest.raises(PatchError, match="not found"):
        GenesisPatcher(command_runner=runner).apply(tmp_path / "nope.patch", tmp_path)
    assert runner.commands == []


def test_docker_preflight_missing_binary() -> None:
    with pytest.raises(EngineError, match="is docker installed"):
        docker_preflight(which=lambda _: None, command_runner=RecordingRunner())


def test_docker_preflight_daemon_down() -> None:
    runner = RecordingRunner([completed([], "", returncode=1, stderr="Cannot connect to the Docker daemon")])

    with pytest.raises(EngineError, match="is docker running"):
        docker_preflight(which=lambda name: f"/usr/bin/{name}", command_runner=runner)


def test_docker_preflight_ok() -> None:
    runner = RecordingRunner([completed([], "24.0.7\n")])

    docker_preflight("podman", which=lambda name: f"/usr/bin/{name}", command_runner=runner)

    assert runner.commands[0][0] == ["podman", "info", "--format", "{{.ServerVersion}}"]
