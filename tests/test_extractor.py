from __future__ import annotations

from pathlib import PurePosixPath

import pytest
from minifs_builder import SpecFile, build_image, patch_u32, three_files

from minifs_extract.entries import EntryTable, FileEntry
from minifs_extract.extractor import ChunkCache, ExtractedFile, ExtractError, extract
from minifs_extract.paths import PathReserver, sanitize_entry_path
from minifs_extract.superblock import Superblock, validate


def _entries(data: bytes) -> list[FileEntry]:
    sb = validate(data, 0)
    assert isinstance(sb, Superblock)
    return list(EntryTable(data, sb))


@pytest.mark.parametrize(
    ("path", "name", "expected"),
    [
        (b"/web", b"index.htm", "web/index.htm"),
        (b"/", b"a.bin", "a.bin"),
        (b"", b"a.bin", "a.bin"),
        (b"../../etc", b"passwd", "etc/passwd"),
        (b"", b"../../etc/passwd", "etc/passwd"),
        (b"/abs/../dir/./x", b"f", "abs/dir/x/f"),
        (b"C:\\Windows\\system32", b"evil.dll", "Windows/system32/evil.dll"),
        (b"web", b"a:b?c*.txt", "web/a_b_c_.txt"),
        (b"web", b"tab\tname", "web/tab_name"),
        (b"\xff\xfe", b"n\xc3\xa4me", "__/n\u00e4me"),
    ],
)
def test_sanitize_entry_path(path: bytes, name: bytes, expected: str) -> None:
    rel = sanitize_entry_path(path, name, 0)
    assert rel == PurePosixPath(expected)
    assert not rel.is_absolute()
    assert ".." not in rel.parts


@pytest.mark.parametrize("name", [b"", b"..", b"/", b"...", b"\\"])
def test_sanitize_falls_back_to_entry_index(name: bytes) -> None:
    assert sanitize_entry_path(b"/x", name, 7) == PurePosixPath("x/entry_0007")


def test_sanitize_limits_component_length() -> None:
    rel = sanitize_entry_path(b"", b"a" * 400, 0)
    assert len(rel.name.encode("utf-8")) == 255


def test_reserver_suffixes_duplicates_in_request_order() -> None:
    r = PathReserver()
    assert r.reserve(PurePosixPath("web/a.txt")) == PurePosixPath("web/a.txt")
    assert r.reserve(PurePosixPath("web/a.txt")) == PurePosixPath("web/a_1.txt")
    assert r.reserve(PurePosixPath("web/a.txt")) == PurePosixPath("web/a_2.txt")
    assert r.reserve(PurePosixPath("web/a_1.txt")) == PurePosixPath("web/a_1_1.txt")


def test_reserver_separates_files_and_directories() -> None:
    r = PathReserver()
    assert r.reserve(PurePosixPath("web/x")) == PurePosixPath("web/x")
    # A file may not take the name of an existing directory.
    assert r.reserve(PurePosixPath("web")) == PurePosixPath("web_1")
    # A directory may not take the name of an existing file.
    assert r.reserve(PurePosixPath("web/x/y")) == PurePosixPath("web/x_1/y")
    assert r.reserve(PurePosixPath("web/x/z")) == PurePosixPath("web/x_1/z")


def test_extract_materializes_named_copies() -> None:
    files = three_files()
    img = build_image(files)
    cache = ChunkCache()
    out = [extract(img.data, e, chunk_cache=cache) for e in _entries(img.data)]
    assert all(isinstance(x, ExtractedFile) for x in out)
    got = [x for x in out if isinstance(x, ExtractedFile)]
    assert [str(x.path) for x in got] == [
        "web/index.htm",
        "web/img/logo.gif",
        "config.bin",
    ]
    assert [x.data for x in got] == [f.data for f in files]
    assert sorted(cache.chunks) == [0, 1, 2]


def test_extract_from_shared_chunk() -> None:
    img = build_image(
        [
            SpecFile(b"", b"a.txt", b"AAAA", chunk=0),
            SpecFile(b"", b"b.txt", b"BBBBBB", chunk=0),
        ]
    )
    a, b = (extract(img.data, e) for e in _entries(img.data))
    assert isinstance(a, ExtractedFile) and a.data == b"AAAA"
    assert isinstance(b, ExtractedFile) and b.data == b"BBBBBB"


def test_extract_with_reserver_disambiguates() -> None:
    img = build_image(
        [
            SpecFile(b"/d", b"same.txt", b"one", chunk=0),
            SpecFile(b"d", b"same.txt", b"two", chunk=1),
        ]
    )
    reserver = PathReserver()
    out = [extract(img.data, e, reserver=reserver) for e in _entries(img.data)]
    assert isinstance(out[0], ExtractedFile) and isinstance(out[1], ExtractedFile)
    assert out[0].path == PurePosixPath("d/same.txt")
    assert out[1].path == PurePosixPath("d/same_1.txt")
    assert (out[0].data, out[1].data) == (b"one", b"two")


def test_truncated_chunk_is_reported() -> None:
    img = build_image(three_files())
    cut = img.data[: img.chunk_offsets[2] + 8]
    entries = _entries(cut)
    res = extract(cut, entries[2])
    assert isinstance(res, ExtractError)
    assert res.kind == "truncated"
    assert res.index == 2
    assert res.offset == img.chunk_offsets[2]
    assert isinstance(extract(cut, entries[1]), ExtractedFile)


def test_huge_compressed_size_is_truncated() -> None:
    img = build_image(three_files())
    data = patch_u32(img.data, img.chunk_record(0) + 4, 0xFFFFFFFF)
    res = extract(data, _entries(data)[0])
    assert isinstance(res, ExtractError)
    assert res.kind == "truncated"


def test_declared_size_above_limit_fails_before_decompression() -> None:
    img = build_image(three_files())
    data = patch_u32(img.data, img.chunk_record(1) + 8, 0xFFFFFFFF)
    entries = _entries(data)
    res = extract(data, entries[1])
    assert isinstance(res, ExtractError)
    assert res.kind == "declared_size_too_large"

    res = extract(img.data, _entries(img.data)[0], max_chunk_bytes=4)
    assert isinstance(res, ExtractError)
    assert res.kind == "declared_size_too_large"


def test_corrupt_lzma_stream() -> None:
    img = build_image(three_files())
    data = bytearray(img.data)
    # First range-coder byte after the 13 byte LZMA header must be zero.
    data[img.chunk_offsets[0] + 13] = 0xFF
    entries = _entries(bytes(data))
    cache = ChunkCache()
    res = extract(bytes(data), entries[0], chunk_cache=cache)
    assert isinstance(res, ExtractError)
    assert res.kind == "decompress_failed"
    assert isinstance(cache.chunks[0], tuple)
    assert isinstance(extract(bytes(data), entries[1], chunk_cache=cache), ExtractedFile)


def test_short_decompressed_chunk_is_truncated() -> None:
    img = build_image(three_files())
    # Claim more plain bytes than the stream holds and point the file past them.
    rec = img.chunk_record(0)
    data = patch_u32(img.data, rec + 8, 1000)
    data = patch_u32(data, img.file_record(0) + 12, 900)
    res = extract(data, _entries(data)[0])
    assert isinstance(res, ExtractError)
    assert res.kind == "truncated"
