from __future__ import annotations

from .layout import ByteOrder

# Largest offset/length sum a 64-bit reader could address.
MAX_ADDRESSABLE = (1 << 64) - 1


class OutOfBounds(Exception):
    """A read would leave the image or overflow the addressable range."""

    def __init__(self, offset: int, length: int, size: int) -> None:
        self.offset = int(offset)
        self.length = int(length)
        self.size = int(size)
        super().__init__(
            f"read of {self.length} bytes at 0x{self.offset:x} outside image of {self.size} bytes"
        )


class ByteCursor:
    """Bounds-checked reads over an immutable image buffer."""

    __slots__ = ("_view",)

    def __init__(self, image: bytes | bytearray | memoryview) -> None:
        self._view = memoryview(image).cast("B")

    @property
    def size(self) -> int:
        return len(self._view)

    def check(self, offset: int, length: int) -> int:
        """Return `offset + length` once it is known to fit in the image."""
        if offset < 0 or length < 0:
            raise OutOfBounds(offset, length, self.size)
        end = int(offset) + int(length)
        if end > MAX_ADDRESSABLE or end > self.size:
            raise OutOfBounds(offset, length, self.size)
        return end

    def contains(self, offset: int, length: int) -> bool:
        try:
            _ = self.check(offset, length)
        except OutOfBounds:
            return False
        return True

    def read(self, offset: int, length: int) -> bytes:
        end = self.check(offset, length)
        return bytes(self._view[offset:end])

    def view(self, offset: int, length: int) -> memoryview:
        end = self.check(offset, length)
        return self._view[offset:end]

    def read_fixed_magic(self, offset: int, expected: bytes) -> bool:
        if not self.contains(offset, len(expected)):
            return False
        return self._view[offset : offset + len(expected)] == expected

    def read_u32(self, offset: int, byteorder: ByteOrder = "big") -> int:
        return int.from_bytes(self.view(offset, 4), byteorder, signed=False)

    def read_cstring(self, offset: int, limit: int) -> bytes | None:
        """Read a NUL-terminated string that must end before `limit`.

        Returns None when no NUL occurs in `[offset, limit)`.
        """
        limit = min(int(limit), self.size)
        if offset < 0 or offset >= limit:
            raise OutOfBounds(offset, 1, self.size)
        end = bytes(self._view[offset:limit]).find(b"\x00")
        if end < 0:
            return None
        return bytes(self._view[offset : offset + end])
