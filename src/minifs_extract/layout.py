"""Fixed on-disk layout of a minifs instance.

```
==== lower addresses ====
Header        32 bytes, magic b"MINIFS"
Name table    NUL-terminated strings, ton_size bytes
File table    file_count records of 20 bytes
Chunk table   chunk_count records of 12 bytes
Raw chunks    LZMA streams, first word 0x5D000080
==== higher addresses ====
```
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

ByteOrder = Literal["big", "little"]

MINIFS_MAGIC = b"MINIFS"
LZMA_CONFIGURATION_WORD = 0x5D000080


@dataclass(frozen=True, slots=True)
class Field:
    name: str
    offset: int
    width: int

    @property
    def end(self) -> int:
        return self.offset + self.width


@dataclass(frozen=True, slots=True)
class RecordLayout:
    name: str
    size: int
    fields: tuple[Field, ...]

    def field(self, name: str) -> Field:
        for f in self.fields:
            if f.name == name:
                return f
        raise KeyError(f"{self.name} has no field {name!r}")

    def unpack(self, raw: bytes, byteorder: ByteOrder) -> dict[str, int]:
        """Decode every integer field of one record.

        `raw` must be exactly `size` bytes long.
        """
        if len(raw) != self.size:
            raise ValueError(
                f"{self.name} record needs {self.size} bytes, got {len(raw)}"
            )
        return {
            f.name: int.from_bytes(raw[f.offset : f.end], byteorder, signed=False)
            for f in self.fields
            if f.name != "magic"
        }


HEADER = RecordLayout(
    name="header",
    size=0x20,
    fields=(
        Field("magic", 0x00, len(MINIFS_MAGIC)),
        Field("file_count", 0x14, 4),
        Field("ton_size", 0x1C, 4),
    ),
)

FILE_RECORD = RecordLayout(
    name="file_record",
    size=20,
    fields=(
        Field("path_offset", 0, 4),
        Field("name_offset", 4, 4),
        Field("chunk_index", 8, 4),
        Field("offset_in_chunk", 12, 4),
        Field("file_size", 16, 4),
    ),
)

CHUNK_RECORD = RecordLayout(
    name="chunk_record",
    size=12,
    fields=(
        Field("chunk_offset", 0, 4),
        Field("compressed_size", 4, 4),
        Field("decompressed_size", 8, 4),
    ),
)
