from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Optional

from .filters import FileFilter, accept_all
from .logs import get_logger, log_action


def _mtime_millis(st: os.stat_result) -> int:
    return st.st_mtime_ns // 1_000_000


def needs_update(source: Path, target: Path) -> bool:
    """
    CopyDecision: the target must be rewritten when it is missing, when the
    sizes differ, or when the source is strictly newer (millisecond
    resolution). Raises FileNotFoundError when the source is gone.
    """
    src_stat = source.stat()
    try:
        dst_stat = target.stat()
    except FileNotFoundError:
        return True
    if src_stat.st_size != dst_stat.st_size:
        return True
    return _mtime_millis(src_stat) > _mtime_millis(dst_stat)


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def delete_path(path: Path) -> bool:
    """Remove a file or a whole directory tree. Missing paths are fine."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path, ignore_errors=True)
        if path.exists():
            raise OSError(f"Cannot delete directory: {path}")
        return True
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False


class PathMirror:
    """Copies stale files from a source tree into a target tree."""

    def __init__(self, file_filter: Optional[FileFilter] = None, logger: Optional[logging.Logger] = None):
        self.file_filter = file_filter or accept_all
        self.logger = logger or get_logger()

    def accepts(self, path: Path) -> bool:
        return self.file_filter(path)

    def copy_file(self, source: Path, target: Path, reason: str = "sync") -> bool:
        """
        Copy ``source`` over ``target`` when the CopyDecision says so.
        Returns True when the target was written. A source that vanished
        before the copy is a skip.
        """
        try:
            if not needs_update(source, target):
                return False
            ensure_parent(target)
            shutil.copy2(source, target)
        except FileNotFoundError:
            if source.exists():
                raise
            log_action(self.logger, "COPY", f"SKIP ({reason}) source vanished: {source}", path=source, is_dir=False, level=logging.DEBUG)
            return False
        return True

    def sync_directory(self, source: Path, target: Path, recursive: bool = True) -> int:
        """
        Mirror the immediate children of ``source`` into ``target``, recursing
        into every subdirectory. The filter only applies to files. Returns the
        number of files written.
        """
        copied = 0
        try:
            children = sorted(source.iterdir())
        except FileNotFoundError:
            log_action(self.logger, "COPY", f"SKIP source directory vanished: {source}", path=source, is_dir=True, level=logging.DEBUG)
            return 0

        target.mkdir(parents=True, exist_ok=True)
        for child in children:
            target_child = target / child.name
            if child.is_dir():
                if recursive:
                    copied += self.sync_directory(child, target_child)
            elif child.is_file() and self.accepts(child):
                if self.copy_file(child, target_child):
                    copied += 1
        return copied
