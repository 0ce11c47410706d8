"""ngup output helpers: colored statuses, checkpoint tables, JSON mode."""
import json
import os
import sys
from typing import Any

NO_COLOR = bool(os.environ.get("NO_COLOR"))

_CODES = {"bold": "1", "dim": "2", "red": "31", "green": "32", "yellow": "33"}

# Snapshot build/test statuses, risk levels and rollback outcomes
_GOOD = {"success", "valid", "true", "low", "completed"}
_BAD = {"failed", "invalid", "false", "high", "critical", "rollback_failed"}
_PENDING = {"unknown", "medium", "rolled_back", "manual"}

STATUS_KEYS = ("build", "test", "valid", "risk", "success", "state", "rollback_succeeded")


def paint(text: str, style: str) -> str:
    if NO_COLOR:
        return text
    return f"\033[{_CODES[style]}m{text}\033[0m"


def bold(text: str) -> str:
    return paint(text, "bold")


def dim(text: str) -> str:
    return paint(text, "dim")


def status(value: Any) -> str:
    """Green for passing statuses, red for failures, yellow for undecided."""
    text = str(value)
    key = text.lower()
    if key in _GOOD:
        return paint(text, "green")
    if key in _BAD:
        return paint(text, "red")
    if key in _PENDING:
        return paint(text, "yellow")
    return text


def human_size(num_bytes: int) -> str:
    size = float(num_bytes)
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def _cell(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value) or "-"
    return str(value)


def table(rows: list[dict], columns: list[str] | None = None) -> str:
    """Aligned columns; status columns are colored after padding."""
    if not rows:
        return dim("(no entries)")
    columns = columns or list(rows[0])
    cells = [{col: _cell(row.get(col)) for col in columns} for row in rows]
    widths = {col: max(len(col), *(len(r[col]) for r in cells)) for col in columns}

    lines = [
        "  ".join(bold(col.upper().ljust(widths[col])) for col in columns),
        "  ".join("─" * widths[col] for col in columns),
    ]
    for r in cells:
        parts = []
        for col in columns:
            padded = r[col].ljust(widths[col])
            parts.append(padded.replace(r[col], status(r[col]), 1) if col in STATUS_KEYS else padded)
        lines.append("  ".join(parts).rstrip())
    return "\n".join(lines)


def kv(data: dict, keys: list[str] | None = None) -> str:
    keys = keys or list(data)
    width = max((len(k) for k in keys), default=0)
    lines = []
    for k in keys:
        value = data.get(k)
        text = _cell(value)
        if text == "-":
            text = dim(text)
        elif k in STATUS_KEYS:
            text = status(text)
        lines.append(f"  {bold(k.ljust(width))}  {text}")
    return "\n".join(lines)


def step_line(label: str, outcome: str) -> str:
    """One upgrade step, e.g. '  ✓ 14 -> 15'."""
    marks = {"completed": paint("✓", "green"), "failed": paint("✗", "red"), "skipped": dim("·")}
    return f"  {marks.get(outcome, '?')} {label}"


def out_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str, ensure_ascii=False))


def info(msg: str) -> None:
    print(f"{paint('✓', 'green')} {msg}", file=sys.stderr)


def warn(msg: str) -> None:
    print(f"{paint('⚠', 'yellow')} {msg}", file=sys.stderr)


def error(msg: str) -> None:
    print(f"{paint('✗', 'red')} {msg}", file=sys.stderr)
