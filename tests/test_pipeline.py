from __future__ import annotations

import dataclasses
import json
import random

import pytest
from minifs_builder import SpecFile, build_image, patch_u32, three_files

from minifs_extract.entries import EntryTable
from minifs_extract.pipeline import (
    RecoverOptions,
    apply_overlap_policy,
    find_superblocks,
    recover,
)
from minifs_extract.schema import validate_report
from minifs_extract.superblock import Superblock, validate


def test_image_without_magic_reports_zero_instances() -> None:
    rep = recover(bytes(range(256)) * 64)
    assert rep.candidates == 0
    assert rep.instances == ()
    assert rep.status == "failed"
    assert rep.files_extracted == 0
    assert any("No valid minifs superblock" in x for x in rep.limitations)


def test_end_to_end_junk_superblock_entries_junk() -> None:
    files = three_files()
    img = build_image(files)
    image = b"\x13\x37" * 500 + img.data + b"\xee" * 333

    rep = recover(image)
    assert rep.candidates == 1
    assert len(rep.instances) == 1
    inst = rep.instances[0]
    assert inst.offset == 1000
    assert inst.files_extracted == 3
    assert inst.entries_skipped == 0
    assert inst.stop.kind == "end_of_table"
    assert [str(f.path) for f in inst.files] == [
        "web/index.htm",
        "web/img/logo.gif",
        "config.bin",
    ]
    assert [f.data for f in inst.files] == [f.data for f in files]
    assert rep.status == "ok"
    assert rep.limitations == []


def test_false_positive_magic_is_rejected_and_scan_continues() -> None:
    img = build_image(three_files())
    image = b"MINIFS garbage" + b"\x00" * 40 + img.data
    count, valid, rejected = find_superblocks(image)
    assert count == 2
    assert [sb.offset for sb in valid] == [54]
    assert len(rejected) == 1 and rejected[0].offset == 0

    rep = recover(image)
    assert len(rep.instances) == 1
    assert rep.status == "ok"


def test_truncation_inside_last_chunk_keeps_earlier_entries() -> None:
    img = build_image(three_files())
    cut = img.data[: img.chunk_offsets[2] + img.chunk_sizes[2] // 2]

    rep = recover(cut)
    inst = rep.instances[0]
    assert [f.index for f in inst.files] == [0, 1]
    assert [(e.index, e.kind) for e in inst.errors] == [(2, "truncated")]
    assert inst.entries_decoded == 3
    assert rep.status == "partial"
    assert any("entry 2" in x and "truncated" in x for x in rep.limitations)


def test_skipped_entry_does_not_stop_later_entries() -> None:
    img = build_image(three_files())
    data = bytearray(img.data)
    data[img.chunk_offsets[1] + 13] = 0xFF

    inst = recover(bytes(data)).instances[0]
    assert [f.index for f in inst.files] == [0, 2]
    assert [e.kind for e in inst.errors] == ["decompress_failed"]


def test_duplicate_names_get_distinct_paths_without_data_loss() -> None:
    img = build_image(
        [
            SpecFile(b"/etc", b"passwd", b"first", chunk=0),
            SpecFile(b"/etc/", b"passwd", b"second", chunk=0),
            SpecFile(b"etc", b"passwd", b"third", chunk=1),
        ]
    )
    inst = recover(img.data).instances[0]
    assert [(str(f.path), f.data) for f in inst.files] == [
        ("etc/passwd", b"first"),
        ("etc/passwd_1", b"second"),
        ("etc/passwd_2", b"third"),
    ]


def test_two_instances_are_processed_independently() -> None:
    a = build_image(three_files())
    b = build_image([SpecFile(b"/", b"index.htm", b"other instance")])
    image = b"\x00" * 16 + a.data + b"\xff" * 7 + b.data

    rep = recover(image, RecoverOptions(workers=4))
    assert [i.index for i in rep.instances] == [0, 1]
    assert [i.offset for i in rep.instances] == [16, 16 + len(a.data) + 7]
    assert [i.files_extracted for i in rep.instances] == [3, 1]
    assert rep.instances[1].files[0].data == b"other instance"
    assert rep == recover(image, RecoverOptions(workers=1))


def test_superblock_inside_claimed_extent_is_flagged() -> None:
    a = build_image(three_files())
    b = build_image([SpecFile(b"", b"nested", b"nested payload")])
    # Stretch the last chunk of the first instance over the second one.
    data = patch_u32(
        a.data, a.chunk_record(2) + 4, a.chunk_sizes[2] + len(b.data)
    )
    image = data + b.data

    rep = recover(image)
    assert [i.offset for i in rep.instances] == [0]
    assert rep.instances[0].files_extracted == 3
    assert len(rep.overlapping) == 1
    assert rep.overlapping[0].offset == len(a.data)
    assert rep.overlapping[0].claimed_by == 0
    assert any("overlaps instance at 0x0" in x for x in rep.limitations)


def test_overlap_policy_keeps_first_in_offset_order() -> None:
    a = build_image(three_files())
    sb = validate(a.data, 0)
    assert isinstance(sb, Superblock)
    later = dataclasses.replace(sb, offset=40)
    accepted, flagged = apply_overlap_policy([later, sb])
    assert [s.offset for s in accepted] == [0]
    assert [(f.offset, f.claimed_by) for f in flagged] == [(40, 0)]


def test_recover_is_deterministic() -> None:
    img = build_image(three_files())
    image = b"junk" + img.data
    assert recover(image) == recover(image)
    assert recover(image).to_json() == recover(image).to_json()


def test_report_json_passes_schema() -> None:
    img = build_image(three_files())
    doc = recover(img.data[: img.chunk_offsets[2] + 4]).to_json()
    assert validate_report(json.loads(json.dumps(doc))) == []
    assert doc["status"] == "partial"
    assert doc["files_extracted"] == 2


_ADVERSARIAL = [0, 1, 2, 0x7FFFFFFF, 0x80000000, 0xFFFFFFFE, 0xFFFFFFFF]


@pytest.mark.parametrize("seed", range(40))
def test_adversarial_fields_never_read_outside_image(seed: int) -> None:
    rng = random.Random(seed)
    img = build_image(three_files())
    data = img.data
    fields = [0x14, 0x1C]
    fields += [img.file_record(i) + k for i in range(3) for k in range(0, 20, 4)]
    fields += [img.chunk_record(i) + k for i in range(3) for k in range(0, 12, 4)]
    for _ in range(rng.randint(1, 4)):
        value = rng.choice(_ADVERSARIAL + [rng.randrange(0, 1 << 32)])
        data = patch_u32(data, rng.choice(fields), value)
    if rng.random() < 0.5:
        data = data[: rng.randrange(0, len(data) + 1)]

    rep = recover(data, RecoverOptions(max_chunk_bytes=1 << 20))
    for inst in rep.instances:
        entries = {e.index: e for e in EntryTable(data, inst.superblock)}
        for f in inst.files:
            entry = entries[f.index]
            assert entry.chunk.offset + entry.chunk.compressed_size <= len(data)
            assert len(f.data) == entry.size
        for e in inst.errors:
            assert e.kind in ("truncated", "declared_size_too_large", "decompress_failed")


def _five_files() -> list[SpecFile]:
    return three_files() + [
        SpecFile(b"/bin", b"busybox", b"\x7fELF" * 8, chunk=3),
        SpecFile(b"/etc", b"passwd", b"root::0:0\n", chunk=4),
    ]


def test_corrupt_last_chunk_index_keeps_earlier_files() -> None:
    files = _five_files()
    img = build_image(files)
    data = patch_u32(img.data, img.file_record(4) + 8, 0x00FFFFFF)

    rep = recover(data)
    assert rep.rejected == ()
    inst = rep.instances[0]
    assert [f.data for f in inst.files] == [f.data for f in files[:4]]
    assert inst.stop.kind == "chunk_out_of_table"
    assert inst.stop.index == 4
    assert inst.entries_lost == 1
    assert inst.entries_skipped == 1
    assert rep.status == "partial"


_FILE_RECORD_FIELDS = {
    "path_offset": 0,
    "name_offset": 4,
    "chunk_index": 8,
    "offset_in_chunk": 12,
    "file_size": 16,
}


@pytest.mark.parametrize("value", [0xFFFFFFFF, 0x7FFFFFFF])
@pytest.mark.parametrize("field", sorted(_FILE_RECORD_FIELDS))
def test_corrupt_last_record_recovers_all_earlier_entries(
    field: str, value: int
) -> None:
    files = _five_files()
    img = build_image(files)
    data = patch_u32(img.data, img.file_record(4) + _FILE_RECORD_FIELDS[field], value)

    rep = recover(data)
    assert len(rep.instances) == 1
    inst = rep.instances[0]
    assert [f.index for f in inst.files] == [0, 1, 2, 3]
    assert [f.data for f in inst.files] == [f.data for f in files[:4]]
    assert not inst.stop.clean
    assert inst.stop.index == 4
    assert rep.status == "partial"


def test_entries_lost_after_unclean_stop_are_counted() -> None:
    img = build_image(_five_files())
    data = patch_u32(img.data, img.file_record(1) + 4, img.ton_size)

    rep = recover(data)
    inst = rep.instances[0]
    assert inst.stop.kind == "name_out_of_table"
    assert inst.files_extracted == 1
    assert inst.errors == ()
    assert inst.entries_lost == 4
    assert inst.entries_skipped == 4
    assert rep.entries_skipped == 4
    doc = rep.to_json()
    assert validate_report(json.loads(json.dumps(doc))) == []
    assert doc["entries_skipped"] == 4
    assert any("4 declared entries not decoded" in x for x in rep.limitations)


def test_terminator_does_not_count_as_lost() -> None:
    img = build_image(
        [SpecFile(b"", b"a", b"1"), SpecFile(b"", b"", b""), SpecFile(b"", b"", b"")]
    )
    inst = recover(img.data).instances[0]
    assert inst.stop.kind == "terminator"
    assert inst.entries_lost == 0
    assert inst.entries_skipped == 0


def test_custom_magic_reaches_validation() -> None:
    img = build_image(three_files())
    data = b"\x00" * 8 + b"FSMINI" + img.data[6:]

    assert recover(data).instances == ()
    rep = recover(data, RecoverOptions(magic=b"FSMINI"))
    assert [i.offset for i in rep.instances] == [8]
    assert rep.files_extracted == 3
