from __future__ import annotations

from collections.abc import Iterator

from .layout import MINIFS_MAGIC


def iter_candidates(
    image: bytes | bytearray | memoryview, magic: bytes = MINIFS_MAGIC
) -> Iterator[int]:
    """Yield every offset where `magic` starts, in ascending order.

    The search resumes one byte after each hit, so overlapping and adjacent
    occurrences are all reported.
    """
    if not magic:
        raise ValueError("empty magic")
    hay = image if isinstance(image, (bytes, bytearray)) else bytes(image)
    i = 0
    while True:
        j = hay.find(magic, i)
        if j < 0:
            return
        yield int(j)
        i = j + 1
