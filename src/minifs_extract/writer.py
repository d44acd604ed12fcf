from __future__ import annotations

import json
import logging
from pathlib import Path

from .extractor import ExtractedFile
from .pipeline import ImageReport, InstanceReport
from .policy import PathEscapeError
from .schema import JsonValue

logger = logging.getLogger(__name__)


def _assert_under_dir(base_dir: Path, target: Path) -> None:
    base = base_dir.resolve()
    resolved = target.resolve()
    if not resolved.is_relative_to(base):
        raise PathEscapeError(
            f"Refusing to write outside output dir: target={resolved} base={base}"
        )


def default_output_dir(input_path: Path) -> Path:
    return Path(f"_{input_path.name}.extracted")


def instance_dir(out_dir: Path, report: ImageReport, inst: InstanceReport) -> Path:
    """Destination of one instance; numbered only when the image holds several."""
    if len(report.instances) <= 1:
        return out_dir
    return out_dir / f"minifs_{inst.index}_0x{inst.offset:x}"


def _write_file(base: Path, f: ExtractedFile) -> Path:
    target = base.joinpath(*f.path.parts)
    _assert_under_dir(base, target)
    target.parent.mkdir(parents=True, exist_ok=True)
    _ = target.write_bytes(f.data)
    return target


def write_report(report: ImageReport, out_dir: Path) -> list[Path]:
    """Write every extracted file of `report` below `out_dir`."""
    written: list[Path] = []
    if not report.instances:
        return written
    out_dir.mkdir(parents=True, exist_ok=True)
    for inst in report.instances:
        base = instance_dir(out_dir, report, inst)
        _assert_under_dir(out_dir, base)
        base.mkdir(parents=True, exist_ok=True)
        for f in inst.files:
            path = _write_file(base, f)
            logger.debug("wrote %s (%d bytes)", path, f.size)
            written.append(path)
    return written


def write_report_json(
    report: ImageReport, path: Path, *, input_path: Path | None = None
) -> None:
    doc: dict[str, JsonValue] = report.to_json()
    if input_path is not None:
        doc["input"] = {"path": str(input_path), "name": input_path.name}
    path.parent.mkdir(parents=True, exist_ok=True)
    _ = path.write_text(
        json.dumps(doc, indent=2, sort_keys=True) + "\n", encoding="utf-8"
    )
