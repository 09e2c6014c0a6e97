from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable, Optional

from pathspec import GitIgnoreSpec

FileFilter = Callable[[Path], bool]


def accept_all(path: Path) -> bool:
    return True


class IgnoreMatcher:
    """gitignore-style exclusion rules evaluated relative to one source root."""

    def __init__(self, source_root: Path, patterns: Iterable[str]):
        self.source_root = source_root.resolve()
        self.patterns = list(patterns)
        self.spec = GitIgnoreSpec.from_lines(self.patterns)

    def is_ignored(self, path: Path, is_dir: Optional[bool] = None) -> bool:
        try:
            rel = path.resolve().relative_to(self.source_root)
        except ValueError:
            return True
        rel_posix = rel.as_posix()
        if is_dir is None:
            is_dir = path.is_dir()
        if is_dir and not rel_posix.endswith("/"):
            rel_posix += "/"
        return self.spec.match_file(rel_posix)

    def __call__(self, path: Path) -> bool:
        return not self.is_ignored(path)


def exclude_filter(source_root: Path, patterns: Optional[Iterable[str]]) -> FileFilter:
    """File filter accepting everything not matched by ``patterns``."""
    patterns = list(patterns or [])
    if not patterns:
        return accept_all
    return IgnoreMatcher(source_root, patterns)
