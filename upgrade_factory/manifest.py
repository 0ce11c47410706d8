"""package.json / angular.json helpers shared by the store, analyzer and handlers."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

PACKAGE_JSON = "package.json"
ANGULAR_JSON = "angular.json"
TSCONFIG_JSON = "tsconfig.json"
CORE_PACKAGE = "@angular/core"


def read_json(path: Path) -> Optional[Any]:
    """Parsed JSON or None when missing/unreadable."""
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None


def write_json(path: Path, data: Any) -> None:
    """Write JSON atomically (temp file + rename), 2-space indent like npm."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.write("\n")
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def read_package_json(project_path: Path) -> dict:
    data = read_json(Path(project_path) / PACKAGE_JSON)
    return data if isinstance(data, dict) else {}


def all_dependencies(package_json: dict) -> dict[str, str]:
    """dependencies + devDependencies (dev wins on clash, like npm display)."""
    deps: dict[str, str] = {}
    for section in ("dependencies", "devDependencies"):
        block = package_json.get(section)
        if isinstance(block, dict):
            deps.update({str(k): str(v) for k, v in block.items()})
    return deps


def angular_core_spec(package_json: dict) -> Optional[str]:
    """Raw version spec of @angular/core, or None."""
    for section in ("dependencies", "devDependencies"):
        block = package_json.get(section) or {}
        if isinstance(block, dict) and block.get(CORE_PACKAGE):
            return str(block[CORE_PACKAGE])
    return None


def current_angular_version(project_path: Path) -> str:
    """'17.3.0' style string from @angular/core, or 'unknown'."""
    spec = angular_core_spec(read_package_json(project_path))
    if not spec:
        return "unknown"
    return spec.lstrip("^~").strip() or "unknown"
