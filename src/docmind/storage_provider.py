"""
File storage abstraction for knowledge-base artifacts.
Default implementation uses the local filesystem; the interface allows other
backends later. Every write is all-or-nothing from a reader's point of view:
data lands in a temporary sibling, is fsynced, and is then renamed into place.
"""
from __future__ import annotations

import os
import shutil
import uuid
from pathlib import Path
from typing import Protocol


class ArtifactStorageProvider(Protocol):
    @property
    def root(self) -> Path:
        ...

    def ensure_ready(self):
        ...

    def write_bytes(self, path: Path, data: bytes):
        ...

    def read_bytes(self, path: Path) -> bytes:
        ...

    def exists(self, path: Path) -> bool:
        ...

    def promote_directory(self, staged: Path, destination: Path, trash: Path):
        ...

    def remove_tree(self, path: Path):
        ...

    def rename(self, source: Path, destination: Path):
        ...

    def list_dir(self, path: Path) -> list[Path]:
        ...


def _fsync_directory(path: Path):
    if os.name == "nt":
        return
    fd = os.open(str(path), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class LocalArtifactStorageProvider:
    def __init__(self, root: Path):
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def ensure_ready(self):
        self._root.mkdir(parents=True, exist_ok=True)

    def write_bytes(self, path: Path, data: bytes):
        """Atomically replaces path with data; readers see the old or the new file, never a mix."""
        destination = Path(path)
        destination.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = destination.with_name(f".{destination.name}.{uuid.uuid4().hex}.tmp")
        try:
            with tmp_path.open("wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            tmp_path.replace(destination)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        _fsync_directory(destination.parent)

    def read_bytes(self, path: Path) -> bytes:
        return Path(path).read_bytes()

    def exists(self, path: Path) -> bool:
        return Path(path).exists()

    def promote_directory(self, staged: Path, destination: Path, trash: Path):
        """
        Moves a fully written staging directory into place.
        An existing destination is first renamed into trash, so at every instant
        the destination holds either the complete old or the complete new tree.
        """
        staged = Path(staged)
        destination = Path(destination)
        trash = Path(trash)
        destination.parent.mkdir(parents=True, exist_ok=True)
        if destination.exists():
            trash.parent.mkdir(parents=True, exist_ok=True)
            destination.rename(trash)
        try:
            staged.rename(destination)
        except BaseException:
            if trash.exists() and not destination.exists():
                trash.rename(destination)
            raise
        _fsync_directory(destination.parent)
        if trash.exists():
            shutil.rmtree(trash, ignore_errors=True)

    def remove_tree(self, path: Path):
        target = Path(path)
        if target.is_dir():
            shutil.rmtree(target)
        elif target.exists():
            target.unlink()

    def rename(self, source: Path, destination: Path):
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        Path(source).rename(destination)

    def list_dir(self, path: Path) -> list[Path]:
        """Sorted entries of a directory; a missing directory lists as empty."""
        directory = Path(path)
        if not directory.is_dir():
            return []
        return sorted(directory.iterdir())
