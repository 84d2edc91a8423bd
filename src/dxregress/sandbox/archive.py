"""In-memory tar archives for sandbox uploads and image build contexts."""

from __future__ import annotations

import io
import logging
import tarfile
from collections.abc import Mapping
from pathlib import Path

logger = logging.getLogger(__name__)

_SKIPPED_SUFFIXES = (".o", ".a")


def create_tar(files: Mapping[str, bytes], *, mode: int = 0o644) -> bytes:
    """Return a tar archive holding ``files`` (relative path -> content)."""

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as archive:
        for name, content in files.items():
            info = tarfile.TarInfo(name=name)
            info.size = len(content)
            info.mode = mode
            archive.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


def _include_in_context(path: Path, root: Path) -> bool:
    relative = path.relative_to(root)
    if any(part == ".git" or part.startswith(".git") for part in relative.parts):
        return False
    name = path.name
    if name.startswith(".") and name != ".dockerignore":
        return False
    return not name.endswith(_SKIPPED_SUFFIXES)


def build_context_archive(
    codebase: Path,
    *,
    extra_files: Mapping[str, bytes] | None = None,
) -> bytes:
    """Pack a codebase into a docker build context.

    Hidden files (except ``.dockerignore``), git metadata and object/archive
    build artifacts are left out. ``extra_files`` are added at the context
    root and win over codebase files with the same name.
    """

    root = codebase.resolve()
    extras = dict(extra_files or {})
    buffer = io.BytesIO()
    skipped = 0
    with tarfile.open(fileobj=buffer, mode="w") as archive:
        for path in sorted(root.rglob("*")):
            if not path.is_file() or path.is_symlink():
                continue
            if not _include_in_context(path, root):
                skipped += 1
                continue
            name = path.relative_to(root).as_posix()
            if name in extras:
                continue
            archive.add(str(path), arcname=name, recursive=False)
        for name, content in extras.items():
            info = tarfile.TarInfo(name=name)
            info.size = len(content)
            info.mode = 0o600 if name == "wallet.dat" else 0o644
            archive.addfile(info, io.BytesIO(content))
    logger.debug(
        "built docker context archive",
        extra={"data": {"codebase": str(root), "bytes": buffer.tell(), "skipped": skipped}},
    )
    return buffer.getvalue()


__all__ = ["build_context_archive", "create_tar"]
