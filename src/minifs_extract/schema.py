from __future__ import annotations

from typing import TypeAlias, cast

JsonPrimitive: TypeAlias = str | int | float | bool | None
JsonValue: TypeAlias = JsonPrimitive | list["JsonValue"] | dict[str, "JsonValue"]

REPORT_SCHEMA_VERSION = "1.0"

_REPORT_STATUSES = {"ok", "partial", "failed"}


def _is_nonneg_int(v: object) -> bool:
    return isinstance(v, int) and not isinstance(v, bool) and v >= 0


def validate_report(report: object) -> list[str]:
    """Check the shape of an extraction report document.

    Returns a list of human readable errors; empty means valid.
    """
    errors: list[str] = []
    if not isinstance(report, dict):
        return ["report must be an object"]

    r = cast(dict[str, object], report)

    def req_key(key: str, typ: type) -> object | None:
        if key not in r:
            errors.append(f"missing top-level key: {key}")
            return None
        v = r.get(key)
        if not isinstance(v, typ):
            errors.append(f"top-level '{key}' must be {typ.__name__}")
            return None
        return v

    schema_version = req_key("schema_version", str)
    if isinstance(schema_version, str) and not schema_version:
        errors.append("schema_version must be non-empty")

    status = req_key("status", str)
    if isinstance(status, str) and status not in _REPORT_STATUSES:
        errors.append(f"status must be one of {sorted(_REPORT_STATUSES)}")

    image_any = req_key("image", dict)
    if isinstance(image_any, dict):
        image = cast(dict[str, object], image_any)
        if not _is_nonneg_int(image.get("size_bytes")):
            errors.append("image.size_bytes must be a non-negative int")

    if not _is_nonneg_int(r.get("candidates")):
        errors.append("candidates must be a non-negative int")

    for key in ("rejected", "overlapping", "limitations"):
        _ = req_key(key, list)

    instances_any = req_key("instances", list)
    if isinstance(instances_any, list):
        for i, inst_any in enumerate(cast(list[object], instances_any)):
            if not isinstance(inst_any, dict):
                errors.append(f"instances[{i}] must be an object")
                continue
            inst = cast(dict[str, object], inst_any)
            for k in (
                "index",
                "offset",
                "files_extracted",
                "entries_skipped",
                "entries_lost",
            ):
                if not _is_nonneg_int(inst.get(k)):
                    errors.append(f"instances[{i}].{k} must be a non-negative int")
            files_any = inst.get("files")
            if not isinstance(files_any, list):
                errors.append(f"instances[{i}].files must be a list")
                continue
            for j, f_any in enumerate(cast(list[object], files_any)):
                if not isinstance(f_any, dict):
                    errors.append(f"instances[{i}].files[{j}] must be an object")
                    continue
                f = cast(dict[str, object], f_any)
                path = f.get("path")
                if not isinstance(path, str) or not path or path.startswith("/"):
                    errors.append(
                        f"instances[{i}].files[{j}].path must be a relative path"
                    )
                if not _is_nonneg_int(f.get("size")):
                    errors.append(f"instances[{i}].files[{j}].size must be an int")

    return errors
