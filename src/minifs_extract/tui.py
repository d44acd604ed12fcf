"""Terminal viewer for JSON extraction reports."""

from __future__ import annotations

import json
from pathlib import Path
from typing import cast

from rich.text import Text
from textual.app import App, ComposeResult
from textual.widgets import DataTable, Footer, Header, Static, TabbedContent, TabPane

from .schema import validate_report

INSTANCE_COLUMNS = ("#", "Offset", "Files", "Extracted", "Skipped", "Stop")
FILE_COLUMNS = ("Instance", "Entry", "Path", "Size", "SHA-256")
PROBLEM_COLUMNS = ("Instance", "Entry", "Kind", "Name", "Detail")


def load_report_doc(path: Path) -> dict[str, object]:
    doc = cast(object, json.loads(path.read_text(encoding="utf-8")))
    errors = validate_report(doc)
    if errors:
        raise ValueError(f"invalid report {path}: " + "; ".join(errors))
    return cast(dict[str, object], doc)


def _instances(doc: dict[str, object]) -> list[dict[str, object]]:
    return [
        cast(dict[str, object], x)
        for x in cast(list[object], doc.get("instances") or [])
        if isinstance(x, dict)
    ]


def _items(inst: dict[str, object], key: str) -> list[dict[str, object]]:
    return [
        cast(dict[str, object], x)
        for x in cast(list[object], inst.get(key) or [])
        if isinstance(x, dict)
    ]


def instance_rows(doc: dict[str, object]) -> list[tuple[str, ...]]:
    rows: list[tuple[str, ...]] = []
    for inst in _instances(doc):
        sb = cast(dict[str, object], inst.get("superblock") or {})
        stop = cast(dict[str, object], inst.get("stop") or {})
        rows.append(
            (
                str(inst.get("index")),
                f"0x{cast(int, inst.get('offset', 0)):x}",
                str(sb.get("file_count", "?")),
                str(inst.get("files_extracted")),
                str(inst.get("entries_skipped")),
                str(stop.get("kind", "?")),
            )
        )
    return rows


def file_rows(doc: dict[str, object]) -> list[tuple[str, ...]]:
    rows: list[tuple[str, ...]] = []
    for inst in _instances(doc):
        for f in _items(inst, "files"):
            rows.append(
                (
                    str(inst.get("index")),
                    str(f.get("index")),
                    str(f.get("path")),
                    str(f.get("size")),
                    str(f.get("sha256", ""))[:16],
                )
            )
    return rows


def problem_rows(doc: dict[str, object]) -> list[tuple[str, ...]]:
    rows: list[tuple[str, ...]] = []
    for inst in _instances(doc):
        for e in _items(inst, "errors"):
            rows.append(
                (
                    str(inst.get("index")),
                    str(e.get("index")),
                    str(e.get("kind")),
                    str(e.get("name")),
                    str(e.get("detail")),
                )
            )
    return rows


def summary_text(doc: dict[str, object]) -> str:
    image = cast(dict[str, object], doc.get("image") or {})
    lines = [
        f"Status: {doc.get('status')}",
        f"Image: {image.get('size_bytes')} bytes, sha256 {image.get('sha256', '')}",
        f"Magic candidates: {doc.get('candidates')}, "
        f"instances: {len(_instances(doc))}, "
        f"rejected: {len(cast(list[object], doc.get('rejected') or []))}",
        f"Files extracted: {doc.get('files_extracted')}, "
        f"entries skipped: {doc.get('entries_skipped')}",
    ]
    for lim in cast(list[object], doc.get("limitations") or []):
        lines.append(f"! {lim}")
    return "\n".join(lines)


class ReportViewerApp(App[None]):
    CSS = """
    Screen {
        layout: vertical;
    }
    #summary {
        padding: 1;
    }
    """

    BINDINGS = [("q", "quit", "Quit")]

    def __init__(self, doc: dict[str, object]) -> None:
        super().__init__()
        self.doc = doc

    def compose(self) -> ComposeResult:
        yield Header(show_clock=False)
        yield Footer()
        with TabbedContent(initial="summary-tab"):
            with TabPane("Summary", id="summary-tab"):
                yield Static(Text(summary_text(self.doc)), id="summary")
            with TabPane("Instances", id="instances-tab"):
                yield DataTable(id="instances")
            with TabPane("Files", id="files-tab"):
                yield DataTable(id="files")
            with TabPane("Skipped", id="skipped-tab"):
                yield DataTable(id="skipped")

    def on_mount(self) -> None:
        for table_id, columns, rows in (
            ("#instances", INSTANCE_COLUMNS, instance_rows(self.doc)),
            ("#files", FILE_COLUMNS, file_rows(self.doc)),
            ("#skipped", PROBLEM_COLUMNS, problem_rows(self.doc)),
        ):
            table = self.query_one(table_id, DataTable)
            table.cursor_type = "row"
            table.add_columns(*columns)
            # Report text comes from the image; cells are plain text, never markup.
            table.add_rows([tuple(Text(cell) for cell in row) for row in rows])
