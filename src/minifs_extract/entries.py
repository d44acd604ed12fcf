"""Lazy, restartable walk over the file table of a validated superblock."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Literal

from .cursor import ByteCursor, OutOfBounds
from .layout import CHUNK_RECORD, FILE_RECORD
from .schema import JsonValue
from .superblock import Superblock

logger = logging.getLogger(__name__)

StopKind = Literal[
    "end_of_table",
    "terminator",
    "header_unreadable",
    "name_out_of_table",
    "name_unterminated",
    "chunk_out_of_table",
    "chunk_table_unreadable",
    "payload_outside_chunk",
]

CLEAN_STOPS: frozenset[str] = frozenset({"end_of_table", "terminator"})


@dataclass(frozen=True, slots=True)
class ChunkEntry:
    index: int
    offset: int
    compressed_size: int
    decompressed_size: int

    def to_json(self) -> dict[str, JsonValue]:
        return {
            "index": self.index,
            "offset": self.offset,
            "compressed_size": self.compressed_size,
            "decompressed_size": self.decompressed_size,
        }


@dataclass(frozen=True, slots=True)
class FileEntry:
    index: int
    record_offset: int
    path: bytes
    name: bytes
    chunk: ChunkEntry
    offset_in_chunk: int
    size: int

    @property
    def display_name(self) -> str:
        joined = self.path.rstrip(b"/") + b"/" + self.name if self.path else self.name
        return joined.decode("utf-8", errors="backslashreplace")


@dataclass(frozen=True, slots=True)
class DecodeStop:
    kind: StopKind
    index: int
    offset: int
    detail: str = ""

    @property
    def clean(self) -> bool:
        return self.kind in CLEAN_STOPS

    def to_json(self) -> dict[str, JsonValue]:
        return {
            "kind": self.kind,
            "index": self.index,
            "offset": self.offset,
            "detail": self.detail,
        }


@dataclass(frozen=True, slots=True)
class EntryWalk:
    entries: tuple[FileEntry, ...]
    stop: DecodeStop


class EntryTable:
    """File entries of one superblock, decoded on demand.

    Iterating twice reproduces the same sequence; nothing is cached and the
    image is never modified. Iteration ends at the first terminator or
    structurally invalid record; `walk()` also reports why it ended.
    """

    def __init__(
        self, image: bytes | bytearray | memoryview | ByteCursor, superblock: Superblock
    ) -> None:
        self._cursor = image if isinstance(image, ByteCursor) else ByteCursor(image)
        self.superblock = superblock

    def __iter__(self) -> Iterator[FileEntry]:
        for i in range(self.superblock.file_count):
            res = self.decode_at(i)
            if isinstance(res, DecodeStop):
                return
            yield res

    def walk(self) -> EntryWalk:
        entries: list[FileEntry] = []
        for i in range(self.superblock.file_count):
            res = self.decode_at(i)
            if isinstance(res, DecodeStop):
                logger.debug(
                    "entry walk at 0x%x stopped: %s (%s)",
                    self.superblock.offset,
                    res.kind,
                    res.detail,
                )
                return EntryWalk(entries=tuple(entries), stop=res)
            entries.append(res)
        end = self.superblock.chunk_table_offset
        return EntryWalk(
            entries=tuple(entries),
            stop=DecodeStop(kind="end_of_table", index=len(entries), offset=end),
        )

    def _name(self, rel: int) -> bytes | StopKind:
        sb = self.superblock
        if rel >= sb.ton_size:
            return "name_out_of_table"
        raw = self._cursor.read_cstring(sb.name_table_offset + rel, sb.name_table_end)
        if raw is None:
            return "name_unterminated"
        return raw

    def decode_at(self, index: int) -> FileEntry | DecodeStop:
        sb = self.superblock
        rec_off = sb.file_table_offset + index * FILE_RECORD.size
        try:
            rec = FILE_RECORD.unpack(
                self._cursor.read(rec_off, FILE_RECORD.size), sb.byteorder
            )
        except OutOfBounds as exc:
            return DecodeStop("header_unreadable", index, rec_off, str(exc))

        path = self._name(rec["path_offset"])
        if isinstance(path, str):
            return DecodeStop(
                path, index, rec_off, f"path offset {rec['path_offset']} in name table"
            )
        name = self._name(rec["name_offset"])
        if isinstance(name, str):
            return DecodeStop(
                name, index, rec_off, f"name offset {rec['name_offset']} in name table"
            )
        if not name:
            return DecodeStop("terminator", index, rec_off, "empty file name")

        chunk_index = rec["chunk_index"]
        if chunk_index >= sb.chunk_count:
            return DecodeStop(
                "chunk_out_of_table",
                index,
                rec_off,
                f"chunk {chunk_index} of {sb.chunk_count}",
            )
        chunk_rec_off = sb.chunk_table_offset + chunk_index * CHUNK_RECORD.size
        try:
            crec = CHUNK_RECORD.unpack(
                self._cursor.read(chunk_rec_off, CHUNK_RECORD.size), sb.byteorder
            )
        except OutOfBounds as exc:
            return DecodeStop("chunk_table_unreadable", index, rec_off, str(exc))

        offset_in_chunk = rec["offset_in_chunk"]
        size = rec["file_size"]
        if offset_in_chunk + size > crec["decompressed_size"]:
            return DecodeStop(
                "payload_outside_chunk",
                index,
                rec_off,
                f"bytes [{offset_in_chunk}, {offset_in_chunk + size}) of a "
                f"{crec['decompressed_size']} byte chunk",
            )

        return FileEntry(
            index=index,
            record_offset=rec_off,
            path=path,
            name=name,
            chunk=ChunkEntry(
                index=chunk_index,
                offset=sb.data_offset + crec["chunk_offset"],
                compressed_size=crec["compressed_size"],
                decompressed_size=crec["decompressed_size"],
            ),
            offset_in_chunk=offset_in_chunk,
            size=size,
        )
