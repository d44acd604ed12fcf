from __future__ import annotations

import re
import threading
from pathlib import PurePosixPath

_WIN_DRIVE_RE = re.compile(r"^[A-Za-z]:")
# NUL, C0/C1 controls and characters that are not portable in file names.
_UNSAFE_CHARS_RE = re.compile(r'[\x00-\x1f\x7f-\x9f<>:"|?*\ufffd]')
_MAX_COMPONENT_BYTES = 255


def _split_components(raw: bytes) -> list[str]:
    text = raw.decode("utf-8", errors="replace").replace("\\", "/")
    return text.split("/")


def _clean_component(comp: str) -> str:
    s = _UNSAFE_CHARS_RE.sub("_", comp).strip()
    s = s.rstrip(". ")
    encoded = s.encode("utf-8")
    if len(encoded) > _MAX_COMPONENT_BYTES:
        s = encoded[:_MAX_COMPONENT_BYTES].decode("utf-8", errors="ignore")
    return s


def sanitize_entry_path(path: bytes, name: bytes, index: int) -> PurePosixPath:
    """Turn an entry's raw directory and file name into a safe relative path.

    Traversal (`..`), current-dir and empty components are dropped, as is
    any drive prefix, so the result never leaves the destination directory.
    Undecodable bytes and characters not allowed in file names become `_`.
    """
    dirs: list[str] = []
    for comp in _split_components(path):
        if _WIN_DRIVE_RE.match(comp):
            comp = comp[2:]
        if comp in ("", ".", ".."):
            continue
        cleaned = _clean_component(comp)
        if cleaned and cleaned not in (".", ".."):
            dirs.append(cleaned)

    name_parts = [
        c for c in _split_components(name) if c not in ("", ".", "..")
    ]
    file_name = ""
    if name_parts:
        # A separator inside the file name becomes part of the directory path.
        for comp in name_parts[:-1]:
            cleaned = _clean_component(comp)
            if cleaned:
                dirs.append(cleaned)
        file_name = _clean_component(name_parts[-1])
    if not file_name:
        file_name = f"entry_{index:04d}"

    return PurePosixPath(*dirs, file_name)


class PathReserver:
    """Hands out unique relative paths within one destination tree.

    A path already taken by a file or used as a directory is disambiguated
    with an ordinal suffix (`name_1.ext`, `name_2.ext`, ...). The first
    request keeps its name, so results depend only on request order.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._files: set[PurePosixPath] = set()
        self._dirs: set[PurePosixPath] = set()

    def _free_variant(self, p: PurePosixPath, *, dirs_ok: bool) -> PurePosixPath:
        def usable(q: PurePosixPath) -> bool:
            if q in self._files:
                return False
            return dirs_ok or q not in self._dirs

        if usable(p):
            return p
        for i in range(1, 1_000_000):
            alt = p.with_name(f"{p.stem}_{i}{p.suffix}")
            if usable(alt):
                return alt
        raise RuntimeError(f"no free name for {p}")

    def reserve(self, rel: PurePosixPath) -> PurePosixPath:
        with self._lock:
            # Parent directories may be shared but must not coincide with a file.
            prefix = PurePosixPath()
            for comp in rel.parts[:-1]:
                prefix = self._free_variant(prefix / comp, dirs_ok=True)
            final = self._free_variant(prefix / rel.name, dirs_ok=False)
            self._files.add(final)
            for parent in final.parents:
                if parent != PurePosixPath("."):
                    self._dirs.add(parent)
            return final
