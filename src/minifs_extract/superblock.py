from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from .cursor import ByteCursor, OutOfBounds
from .layout import (
    CHUNK_RECORD,
    FILE_RECORD,
    HEADER,
    LZMA_CONFIGURATION_WORD,
    MINIFS_MAGIC,
    ByteOrder,
)
from .schema import JsonValue

logger = logging.getLogger(__name__)

RejectCode = Literal[
    "truncated_header",
    "bad_magic",
    "empty_file_table",
    "empty_name_table",
    "region_out_of_bounds",
    "chunk_table_out_of_bounds",
    "unsupported_version",
]


@dataclass(frozen=True, slots=True)
class RejectReason:
    code: RejectCode
    offset: int
    detail: str

    def to_json(self) -> dict[str, JsonValue]:
        return {"code": self.code, "offset": self.offset, "detail": self.detail}


@dataclass(frozen=True, slots=True)
class Superblock:
    """A validated minifs header and the absolute offsets derived from it."""

    offset: int
    byteorder: ByteOrder
    file_count: int
    ton_size: int
    chunk_count: int
    name_table_offset: int
    file_table_offset: int
    chunk_table_offset: int
    data_offset: int
    extent_end: int

    @property
    def name_table_end(self) -> int:
        return self.file_table_offset

    @property
    def metadata_end(self) -> int:
        return self.data_offset + 4

    def claims(self, offset: int) -> bool:
        return self.offset <= offset < self.extent_end

    def to_json(self) -> dict[str, JsonValue]:
        return {
            "offset": self.offset,
            "byteorder": self.byteorder,
            "file_count": self.file_count,
            "ton_size": self.ton_size,
            "chunk_count": self.chunk_count,
            "name_table_offset": self.name_table_offset,
            "file_table_offset": self.file_table_offset,
            "chunk_table_offset": self.chunk_table_offset,
            "data_offset": self.data_offset,
            "extent_end": self.extent_end,
        }


def _reject(code: RejectCode, offset: int, detail: str) -> RejectReason:
    logger.debug("reject candidate at 0x%x: %s (%s)", offset, code, detail)
    return RejectReason(code=code, offset=int(offset), detail=detail)


def _chunk_indices(
    cursor: ByteCursor, file_table_offset: int, file_count: int, byteorder: ByteOrder
) -> list[int]:
    field = FILE_RECORD.field("chunk_index")
    return [
        cursor.read_u32(file_table_offset + i * FILE_RECORD.size + field.offset, byteorder)
        for i in range(file_count)
    ]


def _word_at(cursor: ByteCursor, offset: int) -> int | None:
    try:
        return cursor.read_u32(offset, "big")
    except OutOfBounds:
        return None


def _find_chunk_area(
    cursor: ByteCursor, chunk_table_offset: int, limit: int
) -> int | None:
    """Smallest record count in [1, limit] whose end holds the LZMA word."""
    for n in range(1, limit + 1):
        end = chunk_table_offset + n * CHUNK_RECORD.size
        if not cursor.contains(end, 4):
            return None
        if _word_at(cursor, end) == LZMA_CONFIGURATION_WORD:
            return n
    return None


def _extent_end(
    cursor: ByteCursor,
    chunk_table_offset: int,
    chunk_count: int,
    data_offset: int,
    byteorder: ByteOrder,
) -> int:
    end = data_offset + 4
    for i in range(chunk_count):
        raw = cursor.read(chunk_table_offset + i * CHUNK_RECORD.size, CHUNK_RECORD.size)
        rec = CHUNK_RECORD.unpack(raw, byteorder)
        end = max(end, data_offset + rec["chunk_offset"] + rec["compressed_size"])
    return end


def validate(
    image: bytes | bytearray | memoryview | ByteCursor,
    offset: int,
    *,
    byteorder: ByteOrder = "big",
    magic: bytes = MINIFS_MAGIC,
) -> Superblock | RejectReason:
    """Parse and sanity-check the superblock at `offset`.

    Checks run in order and the first failure is returned:
    header fits and carries the magic; the name and file tables are
    non-empty and fit; a chunk table derived from the file table fits;
    the raw chunk area behind it starts with the LZMA configuration word.

    The chunk count is the last file record's chunk index plus one when
    that lands on the raw chunk area. Otherwise the chunk table is walked
    record by record up to the first LZMA configuration word; records
    naming chunks past it stop the entry walk later.
    """
    cursor = image if isinstance(image, ByteCursor) else ByteCursor(image)

    if not cursor.contains(offset, HEADER.size):
        return _reject(
            "truncated_header",
            offset,
            f"need {HEADER.size} header bytes, image has {max(0, cursor.size - offset)}",
        )
    if not cursor.read_fixed_magic(offset, magic):
        return _reject("bad_magic", offset, f"no {magic!r} at offset")

    hdr = HEADER.unpack(cursor.read(offset, HEADER.size), byteorder)
    file_count = hdr["file_count"]
    ton_size = hdr["ton_size"]

    if file_count == 0:
        return _reject("empty_file_table", offset, "file_count is 0")
    if ton_size == 0:
        return _reject("empty_name_table", offset, "ton_size is 0")

    name_table_offset = offset + HEADER.size
    file_table_offset = name_table_offset + ton_size
    file_table_size = file_count * FILE_RECORD.size
    if not cursor.contains(name_table_offset, ton_size + file_table_size):
        return _reject(
            "region_out_of_bounds",
            offset,
            f"name table ({ton_size} bytes) and file table ({file_count} records) "
            f"exceed image of {cursor.size} bytes",
        )

    chunk_table_offset = file_table_offset + file_table_size
    indices = _chunk_indices(cursor, file_table_offset, file_count, byteorder)
    declared = indices[-1] + 1
    declared_fits = cursor.contains(chunk_table_offset, declared * CHUNK_RECORD.size)
    declared_end = chunk_table_offset + declared * CHUNK_RECORD.size
    word = _word_at(cursor, declared_end) if declared_fits else None

    if word == LZMA_CONFIGURATION_WORD:
        chunk_count = declared
    else:
        fitting = [
            i + 1
            for i in indices
            if cursor.contains(chunk_table_offset, (i + 1) * CHUNK_RECORD.size)
        ]
        found = _find_chunk_area(
            cursor, chunk_table_offset, max([file_count, *fitting])
        )
        if found is None:
            if not declared_fits:
                return _reject(
                    "chunk_table_out_of_bounds",
                    offset,
                    f"chunk table of {declared} records at 0x{chunk_table_offset:x} "
                    f"exceeds image of {cursor.size} bytes",
                )
            if word is None:
                return _reject(
                    "region_out_of_bounds",
                    offset,
                    f"raw chunk area at 0x{declared_end:x} lies past the end "
                    "of the image",
                )
            return _reject(
                "unsupported_version",
                offset,
                f"expected LZMA configuration word 0x{LZMA_CONFIGURATION_WORD:08x} "
                f"at 0x{declared_end:x}, found 0x{word:08x}",
            )
        logger.warning(
            "superblock at 0x%x: last file record names %d chunk(s), "
            "chunk table holds %d",
            offset,
            declared,
            found,
        )
        chunk_count = found

    data_offset = chunk_table_offset + chunk_count * CHUNK_RECORD.size
    return Superblock(
        offset=int(offset),
        byteorder=byteorder,
        file_count=file_count,
        ton_size=ton_size,
        chunk_count=chunk_count,
        name_table_offset=name_table_offset,
        file_table_offset=file_table_offset,
        chunk_table_offset=chunk_table_offset,
        data_offset=data_offset,
        extent_end=_extent_end(
            cursor, chunk_table_offset, chunk_count, data_offset, byteorder
        ),
    )
