"""Module entrypoint.

Allows: python -m minifs_extract
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import textwrap
from collections.abc import Sequence
from pathlib import Path
from typing import cast

from . import __version__
from .entries import EntryTable
from .layout import ByteOrder
from .pipeline import (
    ImageReport,
    RecoverOptions,
    apply_overlap_policy,
    find_superblocks,
    recover,
)
from .policy import PathEscapeError
from .schema import JsonValue
from .writer import default_output_dir, instance_dir, write_report, write_report_json

EXIT_OK = 0
EXIT_PARTIAL = 10
EXIT_FATAL = 20

_STATUS_EXIT = {"ok": EXIT_OK, "partial": EXIT_PARTIAL, "failed": EXIT_FATAL}


def _configure_logging(*, verbose: bool, log_file: str | None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


def _positive_int(raw: str) -> int:
    try:
        value = int(raw, 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {raw!r}") from None
    if value <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {raw!r}")
    return value


def _build_parser() -> argparse.ArgumentParser:
    epilog = textwrap.dedent(
        """\
        Exit codes:
          0   Every entry recovered
          10  Partial recovery (entries skipped or entry table cut short)
          20  Nothing recovered or fatal I/O error
        """
    )

    parser = argparse.ArgumentParser(
        prog="minifs-extract",
        description="Extract files from minifs filesystems embedded in firmware images.",
        epilog=epilog,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    _ = parser.add_argument(
        "--version",
        action="version",
        version=f"minifs-extract {__version__}",
        help="Print version and exit.",
    )
    _ = parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging."
    )
    _ = parser.add_argument(
        "--log-file", default=None, help="Also write log records to this file."
    )
    sub = parser.add_subparsers(dest="command")

    def add_layout_args(p: argparse.ArgumentParser) -> None:
        _ = p.add_argument(
            "input_firmware", help="Firmware image containing minifs data."
        )
        _ = p.add_argument(
            "--byteorder",
            choices=("big", "little"),
            default="big",
            help="Byte order of the minifs tables (default: big).",
        )

    extract_p = sub.add_parser("extract", help="Extract every minifs instance.")
    add_layout_args(extract_p)
    _ = extract_p.add_argument(
        "-o",
        "--output",
        default=None,
        help="Output directory (default: _<input name>.extracted).",
    )
    _ = extract_p.add_argument(
        "--workers",
        type=_positive_int,
        default=1,
        help="Instances processed in parallel.",
    )
    _ = extract_p.add_argument(
        "--max-chunk-bytes",
        type=_positive_int,
        default=RecoverOptions().max_chunk_bytes,
        help="Largest decompressed chunk accepted.",
    )
    _ = extract_p.add_argument(
        "--report", default=None, help="Write a JSON extraction report here."
    )
    _ = extract_p.add_argument(
        "--dry-run",
        action="store_true",
        help="Decode and decompress but do not write files.",
    )

    scan_p = sub.add_parser("scan", help="List minifs instances without extracting.")
    add_layout_args(scan_p)
    _ = scan_p.add_argument(
        "--json", action="store_true", help="Print the scan result as JSON."
    )

    view_p = sub.add_parser("view", help="Browse a JSON extraction report.")
    _ = view_p.add_argument("report", help="Report written by 'extract --report'.")

    return parser


def _read_input(raw: str) -> bytes | None:
    try:
        return Path(raw).read_bytes()
    except OSError as exc:
        print(f"[-] Cannot read {raw}: {exc}", file=sys.stderr)
        return None


def _print_summary(report: ImageReport, out_dir: Path | None) -> None:
    for inst in report.instances:
        print(f"[+] Found minifs header at {inst.offset:#x}")
        print(
            f"[+] {inst.entries_decoded} of {inst.superblock.file_count} entries decoded, "
            f"{inst.files_extracted} extracted, {inst.entries_skipped} skipped"
        )
        if out_dir is not None:
            base = instance_dir(out_dir, report, inst)
            for f in inst.files:
                print(f"[+] {base.joinpath(*f.path.parts)}")
    for lim in report.limitations:
        print(f"[!] {lim}")


def _cmd_extract(args: argparse.Namespace) -> int:
    input_raw = cast(str, args.input_firmware)
    data = _read_input(input_raw)
    if data is None:
        return EXIT_FATAL

    opts = RecoverOptions(
        byteorder=cast(ByteOrder, args.byteorder),
        max_chunk_bytes=int(args.max_chunk_bytes),
        workers=int(args.workers),
    )
    report = recover(data, opts)
    input_path = Path(input_raw)

    if not report.instances:
        print("[-] Invalid minifs header", file=sys.stderr)
        print(
            f"[-] {report.candidates} candidate(s), none validated", file=sys.stderr
        )
        for rej in report.rejected:
            print(f"[-]   0x{rej.offset:x}: {rej.code} ({rej.detail})", file=sys.stderr)

    out_dir: Path | None = None
    if not bool(args.dry_run) and report.instances:
        out_dir = Path(args.output) if args.output else default_output_dir(input_path)
        try:
            _ = write_report(report, out_dir)
        except (OSError, PathEscapeError) as exc:
            print(f"[-] Cannot write output into {out_dir}: {exc}", file=sys.stderr)
            return EXIT_FATAL

    _print_summary(report, out_dir)

    report_raw = cast(str | None, args.report)
    if report_raw:
        try:
            write_report_json(report, Path(report_raw), input_path=input_path)
        except OSError as exc:
            print(f"[-] Cannot write report {report_raw}: {exc}", file=sys.stderr)
            return EXIT_FATAL

    if out_dir is not None:
        print(f"[+] Extracted into {out_dir}")
    return _STATUS_EXIT[report.status]


def _cmd_scan(args: argparse.Namespace) -> int:
    data = _read_input(cast(str, args.input_firmware))
    if data is None:
        return EXIT_FATAL

    opts = RecoverOptions(byteorder=cast(ByteOrder, args.byteorder))
    count, valid, rejected = find_superblocks(data, opts)
    accepted, flagged = apply_overlap_policy(valid)

    instances: list[JsonValue] = []
    for idx, sb in enumerate(accepted):
        walk = EntryTable(data, sb).walk()
        instances.append(
            {
                "index": idx,
                "superblock": sb.to_json(),
                "entries_decoded": len(walk.entries),
                "stop": walk.stop.to_json(),
                "entries": [e.display_name for e in walk.entries],
            }
        )

    doc: dict[str, JsonValue] = {
        "candidates": count,
        "rejected": cast(list[JsonValue], [r.to_json() for r in rejected]),
        "overlapping": cast(list[JsonValue], [o.to_json() for o in flagged]),
        "instances": instances,
    }
    if bool(args.json):
        print(json.dumps(doc, indent=2, sort_keys=True))
    else:
        print(f"[+] {count} magic occurrence(s), {len(accepted)} instance(s)")
        for rej in rejected:
            print(f"[-] 0x{rej.offset:x}: {rej.code} ({rej.detail})")
        for ov in flagged:
            print(f"[!] 0x{ov.offset:x}: inside instance at 0x{ov.claimed_by:x}")
        for inst_any in instances:
            inst = cast(dict[str, JsonValue], inst_any)
            sb_doc = cast(dict[str, JsonValue], inst["superblock"])
            stop = cast(dict[str, JsonValue], inst["stop"])
            print(
                f"[+] 0x{cast(int, sb_doc['offset']):x}: "
                f"{inst['entries_decoded']}/{sb_doc['file_count']} entries, "
                f"{sb_doc['chunk_count']} chunk(s), stop={stop['kind']}"
            )
    return EXIT_OK if accepted else EXIT_FATAL


def _cmd_view(args: argparse.Namespace) -> int:
    from .tui import ReportViewerApp, load_report_doc

    try:
        doc = load_report_doc(Path(cast(str, args.report)))
    except (OSError, ValueError) as exc:
        print(f"[-] Cannot load report: {exc}", file=sys.stderr)
        return EXIT_FATAL
    ReportViewerApp(doc).run()
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = _build_parser()
    try:
        args = parser.parse_args(list(argv))
    except SystemExit as e:
        return int(e.code) if isinstance(e.code, int) else EXIT_FATAL

    command = cast(str | None, getattr(args, "command", None))
    if command is None:
        parser.print_help()
        return EXIT_OK

    try:
        _configure_logging(
            verbose=bool(args.verbose), log_file=cast(str | None, args.log_file)
        )
    except OSError as exc:
        print(f"[-] Cannot open log file: {exc}", file=sys.stderr)
        return EXIT_FATAL

    if command == "extract":
        return _cmd_extract(args)
    if command == "scan":
        return _cmd_scan(args)
    if command == "view":
        return _cmd_view(args)

    parser.print_help()
    return EXIT_FATAL


if __name__ == "__main__":
    raise SystemExit(main())
