from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional

from pathspec import PathSpec


def read_patterns(path: Path) -> list[str]:
    """Read a gitignore-style file, skipping blanks and comments."""
    lines = path.read_text(encoding="utf-8").splitlines()
    return [ln for ln in (raw.strip() for raw in lines) if ln and not ln.startswith("#")]


class IgnoreMatcher:
    def __init__(self, patterns: Iterable[str] = ()):
        self.patterns = list(patterns)
        self.spec = PathSpec.from_lines("gitwildmatch", self.patterns)

    def __bool__(self) -> bool:
        return bool(self.patterns)

    def is_ignored(self, rel_path: str, is_dir: Optional[bool] = None) -> bool:
        if not self.patterns:
            return False
        if is_dir and not rel_path.endswith("/"):
            rel_path += "/"
        return self.spec.match_file(rel_path)
