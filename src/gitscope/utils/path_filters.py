"""Path exclusion rules for statistics.

A project excludes files by suffix (``.md``) and by folder prefix
(``vendor/``). Values are normalized when stored so matching is a plain
string comparison on the forward-slash path reported by git.
"""

import fnmatch
from collections.abc import Iterable
from typing import Optional


def normalize_extension(value: str) -> str:
    """Normalize an excluded extension to lower-case ``.ext`` form.

    ``md``, ``.md`` and ``.MD`` all become ``.md``. Multi-part suffixes such as
    ``.min.js`` are kept whole.

    Raises:
        ValueError: If the value is empty after trimming
    """
    ext = value.strip().lower()
    if not ext or ext == ".":
        raise ValueError("extension must not be empty")
    if not ext.startswith("."):
        ext = f".{ext}"
    return ext


def normalize_folder(value: str) -> str:
    """Normalize an excluded folder to a slash-free relative prefix.

    ``vendor/``, ``/vendor`` and ``./vendor`` all become ``vendor``.

    Raises:
        ValueError: If the value is empty after trimming
    """
    folder = value.strip().replace("\\", "/")
    while folder.startswith("./"):
        folder = folder[2:]
    folder = folder.strip("/")
    if not folder:
        raise ValueError("folder must not be empty")
    return folder


def matches_folder(filepath: str, folder: str) -> bool:
    """Check whether ``filepath`` lies under ``folder``.

    The folder matches as a path prefix on component boundaries, so
    ``vendor`` matches ``vendor/lib.go`` but not ``vendored/lib.go``. Folders
    containing glob wildcards are matched with fnmatch against each prefix of
    the path.
    """
    if any(ch in folder for ch in "*?["):
        parts = filepath.split("/")
        return any(
            fnmatch.fnmatchcase("/".join(parts[:depth]), folder) for depth in range(1, len(parts))
        )
    return filepath == folder or filepath.startswith(f"{folder}/")


class PathFilter:
    """Combined extension and folder exclusion for one project."""

    def __init__(
        self,
        extensions: Optional[Iterable[str]] = None,
        folders: Optional[Iterable[str]] = None,
    ):
        self.extensions = tuple(sorted({normalize_extension(e) for e in extensions or ()}))
        self.folders = tuple(sorted({normalize_folder(f) for f in folders or ()}))

    def __bool__(self) -> bool:
        return bool(self.extensions or self.folders)

    def excludes(self, filepath: str) -> bool:
        """Return True when the file must not contribute to statistics."""
        if not filepath:
            return False

        path = filepath.replace("\\", "/")
        lowered = path.lower()
        if any(lowered.endswith(ext) for ext in self.extensions):
            return True
        return any(matches_folder(path, folder) for folder in self.folders)
