from __future__ import annotations

import io
import tarfile
from pathlib import Path

from dxregress.sandbox.archive import build_context_archive, create_tar
from tests.fixtures.fakes import read_tar


def _modes(archive: bytes) -> dict[str, int]:
    with tarfile.open(fileobj=io.BytesIO(archive)) as tar:
        return {member.name: member.mode for member in tar.getmembers()}


def test_create_tar_holds_files_with_mode() -> None:
    archive = create_tar({"blocknetdx.conf": b"rpcuser=localenv\n", "xbridge.conf": b"[Main]\n"}, mode=0o600)

    assert read_tar(archive) == {"blocknetdx.conf": b"rpcuser=localenv\n", "xbridge.conf": b"[Main]\n"}
    assert set(_modes(archive).values()) == {0o600}


def test_build_context_skips_hidden_git_and_objects(tmp_path: Path) -> None:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "main.cpp").write_text("int main() {}\n")
    (tmp_path / "src" / "main.o").write_bytes(b"\x7fELF")
    (tmp_path / "src" / "libbitcoin.a").write_bytes(b"!<arch>")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "HEAD").write_text("ref: refs/heads/master\n")
    (tmp_path / ".gitignore").write_text("*.o\n")
    (tmp_path / ".env").write_text("SECRET=1\n")
    (tmp_path / ".dockerignore").write_text("depends/\n")

    files = read_tar(build_context_archive(tmp_path))

    assert sorted(files) == [".dockerignore", "src/main.cpp"]


def test_build_context_extras_override_codebase_files(tmp_path: Path) -> None:
    (tmp_path / "blocknetdx.conf").write_text("old\n")
    (tmp_path / "configure.ac").write_text("AC_INIT\n")

    archive = build_context_archive(
        tmp_path,
        extra_files={"blocknetdx.conf": b"new\n", "Dockerfile-dxregress": b"FROM x\n", "wallet.dat": b"\x00"},
    )

    files = read_tar(archive)
    assert files["blocknetdx.conf"] == b"new\n"
    assert files["configure.ac"] == b"AC_INIT\n"
    with tarfile.open(fileobj=io.BytesIO(archive)) as tar:
        assert tar.getnames().count("blocknetdx.conf") == 1
    assert _modes(archive)["wallet.dat"] == 0o600
    assert _modes(archive)["Dockerfile-dxregress"] == 0o644
