from __future__ import annotations

import hashlib
import logging
import lzma
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Literal

from .cursor import ByteCursor, OutOfBounds
from .entries import ChunkEntry, FileEntry
from .paths import PathReserver, sanitize_entry_path
from .schema import JsonValue

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHUNK_BYTES = 64 * 1024 * 1024
# Caps the dictionary a forged LZMA header can make the decoder allocate.
LZMA_MEMLIMIT = 256 * 1024 * 1024

ExtractErrorKind = Literal["truncated", "declared_size_too_large", "decompress_failed"]


@dataclass(frozen=True, slots=True)
class ExtractError:
    kind: ExtractErrorKind
    index: int
    offset: int
    name: str
    detail: str

    def to_json(self) -> dict[str, JsonValue]:
        return {
            "kind": self.kind,
            "index": self.index,
            "offset": self.offset,
            "name": self.name,
            "detail": self.detail,
        }


@dataclass(frozen=True, slots=True)
class ExtractedFile:
    index: int
    path: PurePosixPath
    data: bytes
    name: str

    @property
    def size(self) -> int:
        return len(self.data)

    def to_json(self) -> dict[str, JsonValue]:
        return {
            "index": self.index,
            "path": self.path.as_posix(),
            "name": self.name,
            "size": self.size,
            "sha256": hashlib.sha256(self.data).hexdigest(),
        }


@dataclass
class ChunkCache:
    """Decompressed chunks of one instance, keyed by chunk index.

    Failures are cached too so a broken chunk is only attempted once.
    """

    chunks: dict[int, bytes | tuple[ExtractErrorKind, str]] = field(
        default_factory=dict
    )


def decompress_chunk(
    cursor: ByteCursor, chunk: ChunkEntry, *, max_chunk_bytes: int
) -> bytes | tuple[ExtractErrorKind, str]:
    if chunk.decompressed_size > int(max_chunk_bytes):
        return (
            "declared_size_too_large",
            f"chunk {chunk.index} declares {chunk.decompressed_size} bytes, "
            f"limit is {int(max_chunk_bytes)}",
        )
    try:
        raw = cursor.view(chunk.offset, chunk.compressed_size)
    except OutOfBounds as exc:
        return ("truncated", f"chunk {chunk.index}: {exc}")

    dec = lzma.LZMADecompressor(format=lzma.FORMAT_ALONE, memlimit=LZMA_MEMLIMIT)
    try:
        out = dec.decompress(raw, max_length=chunk.decompressed_size)
    except lzma.LZMAError as exc:
        return ("decompress_failed", f"chunk {chunk.index}: {exc}")

    if len(out) != chunk.decompressed_size:
        logger.warning(
            "chunk %d at 0x%x decompressed to %d bytes, expected %d",
            chunk.index,
            chunk.offset,
            len(out),
            chunk.decompressed_size,
        )
    return out


def extract(
    image: bytes | bytearray | memoryview | ByteCursor,
    entry: FileEntry,
    *,
    max_chunk_bytes: int = DEFAULT_MAX_CHUNK_BYTES,
    chunk_cache: ChunkCache | None = None,
    reserver: PathReserver | None = None,
) -> ExtractedFile | ExtractError:
    """Materialize one file entry.

    The chunk holding the entry is sliced through the cursor and
    decompressed (once per cache); the entry's bytes are copied out of it.
    A failure only affects this entry.
    """
    cursor = image if isinstance(image, ByteCursor) else ByteCursor(image)
    chunk = entry.chunk

    cached = chunk_cache.chunks.get(chunk.index) if chunk_cache is not None else None
    if cached is None:
        cached = decompress_chunk(cursor, chunk, max_chunk_bytes=max_chunk_bytes)
        if chunk_cache is not None:
            chunk_cache.chunks[chunk.index] = cached

    if isinstance(cached, tuple):
        kind, detail = cached
        return ExtractError(
            kind=kind,
            index=entry.index,
            offset=chunk.offset,
            name=entry.display_name,
            detail=detail,
        )

    end = entry.offset_in_chunk + entry.size
    if end > len(cached):
        return ExtractError(
            kind="truncated",
            index=entry.index,
            offset=chunk.offset,
            name=entry.display_name,
            detail=f"needs bytes [{entry.offset_in_chunk}, {end}) of chunk "
            f"{chunk.index}, only {len(cached)} decompressed",
        )

    rel = sanitize_entry_path(entry.path, entry.name, entry.index)
    if reserver is not None:
        rel = reserver.reserve(rel)
    return ExtractedFile(
        index=entry.index,
        path=rel,
        data=bytes(cached[entry.offset_in_chunk : end]),
        name=entry.display_name,
    )
