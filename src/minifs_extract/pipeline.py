"""Scan, validate, decode and extract every minifs instance of one image."""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Literal, cast

from .cursor import ByteCursor
from .entries import DecodeStop, EntryTable
from .extractor import (
    DEFAULT_MAX_CHUNK_BYTES,
    ChunkCache,
    ExtractError,
    ExtractedFile,
    extract,
)
from .layout import MINIFS_MAGIC, ByteOrder
from .paths import PathReserver
from .scanner import iter_candidates
from .schema import REPORT_SCHEMA_VERSION, JsonValue
from .superblock import RejectReason, Superblock, validate

logger = logging.getLogger(__name__)

ReportStatus = Literal["ok", "partial", "failed"]


@dataclass(frozen=True)
class RecoverOptions:
    byteorder: ByteOrder = "big"
    max_chunk_bytes: int = DEFAULT_MAX_CHUNK_BYTES
    workers: int = 1
    magic: bytes = MINIFS_MAGIC


@dataclass(frozen=True)
class OverlapFlag:
    offset: int
    claimed_by: int
    superblock: Superblock

    def to_json(self) -> dict[str, JsonValue]:
        return {
            "offset": self.offset,
            "claimed_by": self.claimed_by,
            "superblock": self.superblock.to_json(),
        }


@dataclass(frozen=True)
class InstanceReport:
    index: int
    superblock: Superblock
    stop: DecodeStop
    entries_decoded: int
    files: tuple[ExtractedFile, ...]
    errors: tuple[ExtractError, ...]

    @property
    def offset(self) -> int:
        return self.superblock.offset

    @property
    def files_extracted(self) -> int:
        return len(self.files)

    @property
    def entries_lost(self) -> int:
        """Declared entries never decoded because the walk stopped on corruption."""
        if self.stop.clean:
            return 0
        return max(0, self.superblock.file_count - self.entries_decoded)

    @property
    def entries_skipped(self) -> int:
        return len(self.errors) + self.entries_lost

    @property
    def intact(self) -> bool:
        return self.stop.clean and not self.errors

    def to_json(self) -> dict[str, JsonValue]:
        return {
            "index": self.index,
            "offset": self.offset,
            "superblock": self.superblock.to_json(),
            "stop": self.stop.to_json(),
            "entries_decoded": self.entries_decoded,
            "files_extracted": self.files_extracted,
            "entries_skipped": self.entries_skipped,
            "entries_lost": self.entries_lost,
            "files": cast(list[JsonValue], [f.to_json() for f in self.files]),
            "errors": cast(list[JsonValue], [e.to_json() for e in self.errors]),
        }


@dataclass(frozen=True)
class ImageReport:
    size_bytes: int
    sha256: str
    candidates: int
    rejected: tuple[RejectReason, ...]
    overlapping: tuple[OverlapFlag, ...]
    instances: tuple[InstanceReport, ...]

    @property
    def files_extracted(self) -> int:
        return sum(i.files_extracted for i in self.instances)

    @property
    def entries_skipped(self) -> int:
        return sum(i.entries_skipped for i in self.instances)

    @property
    def status(self) -> ReportStatus:
        if self.files_extracted == 0:
            return "failed"
        if all(i.intact for i in self.instances):
            return "ok"
        return "partial"

    @property
    def limitations(self) -> list[str]:
        out: list[str] = []
        if not self.instances:
            out.append("No valid minifs superblock found in image")
        for ov in self.overlapping:
            out.append(
                f"Superblock at 0x{ov.offset:x} overlaps instance at "
                f"0x{ov.claimed_by:x}; not extracted"
            )
        for inst in self.instances:
            if not inst.stop.clean:
                out.append(
                    f"Instance at 0x{inst.offset:x}: entry table stopped at entry "
                    f"{inst.stop.index} ({inst.stop.kind}: {inst.stop.detail}); "
                    f"{inst.entries_lost} declared entries not decoded"
                )
            for err in inst.errors:
                out.append(
                    f"Instance at 0x{inst.offset:x}: entry {err.index} "
                    f"({err.name}) skipped, {err.kind}: {err.detail}"
                )
        return out

    def to_json(self) -> dict[str, JsonValue]:
        return {
            "schema_version": REPORT_SCHEMA_VERSION,
            "status": self.status,
            "image": {"size_bytes": self.size_bytes, "sha256": self.sha256},
            "candidates": self.candidates,
            "rejected": cast(list[JsonValue], [r.to_json() for r in self.rejected]),
            "overlapping": cast(
                list[JsonValue], [o.to_json() for o in self.overlapping]
            ),
            "instances": cast(
                list[JsonValue], [i.to_json() for i in self.instances]
            ),
            "files_extracted": self.files_extracted,
            "entries_skipped": self.entries_skipped,
            "limitations": cast(list[JsonValue], list(self.limitations)),
        }


def find_superblocks(
    image: bytes | bytearray | memoryview, options: RecoverOptions | None = None
) -> tuple[int, list[Superblock], list[RejectReason]]:
    """Validate every magic occurrence; returns (candidate count, valid, rejected)."""
    opts = options or RecoverOptions()
    cursor = ByteCursor(image)
    count = 0
    valid: list[Superblock] = []
    rejected: list[RejectReason] = []
    for off in iter_candidates(image, opts.magic):
        count += 1
        res = validate(cursor, off, byteorder=opts.byteorder, magic=opts.magic)
        if isinstance(res, RejectReason):
            rejected.append(res)
        else:
            logger.info("minifs superblock at 0x%x (%d files)", off, res.file_count)
            valid.append(res)
    return count, valid, rejected


def apply_overlap_policy(
    superblocks: Sequence[Superblock],
) -> tuple[list[Superblock], list[OverlapFlag]]:
    """Accept superblocks in offset order unless an accepted one claims them."""
    accepted: list[Superblock] = []
    flagged: list[OverlapFlag] = []
    for sb in sorted(superblocks, key=lambda s: s.offset):
        owner = next((a for a in accepted if a.claims(sb.offset)), None)
        if owner is not None:
            logger.warning(
                "superblock at 0x%x lies inside instance at 0x%x",
                sb.offset,
                owner.offset,
            )
            flagged.append(
                OverlapFlag(offset=sb.offset, claimed_by=owner.offset, superblock=sb)
            )
            continue
        accepted.append(sb)
    return accepted, flagged


def recover_instance(
    image: bytes | bytearray | memoryview | ByteCursor,
    superblock: Superblock,
    *,
    index: int = 0,
    options: RecoverOptions | None = None,
) -> InstanceReport:
    opts = options or RecoverOptions()
    cursor = image if isinstance(image, ByteCursor) else ByteCursor(image)
    walk = EntryTable(cursor, superblock).walk()
    cache = ChunkCache()
    reserver = PathReserver()

    files: list[ExtractedFile] = []
    errors: list[ExtractError] = []
    for entry in walk.entries:
        res = extract(
            cursor,
            entry,
            max_chunk_bytes=opts.max_chunk_bytes,
            chunk_cache=cache,
            reserver=reserver,
        )
        if isinstance(res, ExtractError):
            logger.warning(
                "entry %d (%s) at 0x%x skipped: %s",
                res.index,
                res.name,
                superblock.offset,
                res.kind,
            )
            errors.append(res)
        else:
            files.append(res)

    return InstanceReport(
        index=index,
        superblock=superblock,
        stop=walk.stop,
        entries_decoded=len(walk.entries),
        files=tuple(files),
        errors=tuple(errors),
    )


def recover(
    image: bytes | bytearray | memoryview, options: RecoverOptions | None = None
) -> ImageReport:
    opts = options or RecoverOptions()
    count, valid, rejected = find_superblocks(image, opts)
    accepted, flagged = apply_overlap_policy(valid)
    cursor = ByteCursor(image)

    def run_one(item: tuple[int, Superblock]) -> InstanceReport:
        idx, sb = item
        return recover_instance(cursor, sb, index=idx, options=opts)

    items = list(enumerate(accepted))
    if int(opts.workers) > 1 and len(items) > 1:
        with ThreadPoolExecutor(max_workers=int(opts.workers)) as pool:
            instances = list(pool.map(run_one, items))
    else:
        instances = [run_one(it) for it in items]

    return ImageReport(
        size_bytes=cursor.size,
        sha256=hashlib.sha256(image).hexdigest(),
        candidates=count,
        rejected=tuple(rejected),
        overlapping=tuple(flagged),
        instances=tuple(instances),
    )
