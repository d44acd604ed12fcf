from __future__ import annotations


class PathEscapeError(Exception):
    """A write target resolved outside its destination directory."""
