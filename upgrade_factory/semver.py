"""
npm-style version range matching.

Supports space-separated comparators (>=, >, <=, <, =), caret (^), tilde (~),
x/* wildcards and || alternatives:

    satisfies("18.19.1", ">=18.13.0")          → True
    satisfies("5.2.2", ">=5.2.0 <5.3.0")       → True
    satisfies("17.3.0", "^17.0.0")             → True
"""

from __future__ import annotations

import re

_PART_RE = re.compile(r"^v?(\d+|[xX*])(?:\.(\d+|[xX*]))?(?:\.(\d+|[xX*]))?(?:[-+].*)?$")
_COMPARATOR_RE = re.compile(r"^(>=|<=|>|<|=|\^|~)?\s*(.+)$")


def parse(version: str) -> tuple[int, int, int]:
    """'v18.19.1' → (18, 19, 1); missing parts are 0."""
    m = _PART_RE.match(version.strip())
    if not m:
        raise ValueError(f"Invalid version: {version!r}")
    return tuple(int(p) if p and p.isdigit() else 0 for p in m.groups())  # type: ignore[return-value]


def _wild(version: str) -> tuple[list[int], int]:
    """Return numeric parts and how many are concrete (stop at first wildcard)."""
    m = _PART_RE.match(version.strip())
    if not m:
        raise ValueError(f"Invalid version: {version!r}")
    parts: list[int] = []
    for p in m.groups():
        if p is None or not p.isdigit():
            break
        parts.append(int(p))
    precision = len(parts)
    return parts + [0] * (3 - len(parts)), precision


def _bump(parts: list[int], index: int) -> tuple[int, int, int]:
    bumped = parts[:index] + [parts[index] + 1] + [0] * (2 - index)
    return tuple(bumped)  # type: ignore[return-value]


def _comparator_ok(v: tuple[int, int, int], token: str) -> bool:
    m = _COMPARATOR_RE.match(token)
    if not m:
        raise ValueError(f"Invalid comparator: {token!r}")
    op, target = m.group(1) or "=", m.group(2)
    parts, precision = _wild(target)
    base = tuple(parts)

    if op == "^":
        # ^1.2.3 → <2.0.0, ^0.2.3 → <0.3.0, ^0.0.3 → <0.0.4
        idx = next((i for i, p in enumerate(parts) if p != 0), min(precision, 3) - 1)
        idx = max(0, min(idx, max(precision - 1, 0)))
        return base <= v < _bump(parts, idx)
    if op == "~":
        idx = 0 if precision <= 1 else 1
        return base <= v < _bump(parts, idx)
    if op == "=" and precision < 3:
        if precision == 0:
            return True
        return base <= v < _bump(parts, precision - 1)
    if op == ">=":
        return v >= base
    if op == ">":
        if precision < 3 and precision > 0:
            return v >= _bump(parts, precision - 1)
        return v > base
    if op == "<=":
        if precision < 3 and precision > 0:
            return v < _bump(parts, precision - 1)
        return v <= base
    if op == "<":
        return v < base
    return v == base


def satisfies(version: str, spec: str) -> bool:
    """True when version matches the npm range spec. Invalid input → False."""
    if not spec or not spec.strip() or spec.strip() in ("*", "latest"):
        return True
    try:
        v = parse(version)
        for alternative in spec.split("||"):
            # ">= 5.2.0" → ">=5.2.0"
            tokens = re.sub(r"(>=|<=|>|<|=|\^|~)\s+", r"\1", alternative.strip()).split()
            if tokens and all(_comparator_ok(v, t) for t in tokens):
                return True
    except ValueError:
        return False
    return False
