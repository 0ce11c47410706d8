"""
Version Handlers
================
One handler per supported target major. Every major shares the same
workflow; per-version behaviour is data (a VersionSpec row) plus an
optional transform callback.

    package.json (@angular/*, typescript, zone.js, rxjs)
        → transform callback
        → tsconfig / angular.json updates
        → ng update schematics (optional, non-fatal)

Usage:
    registry = build_handler_registry()
    registry["17"].execute(project_path, step, options)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Mapping, Optional, Protocol

from . import breaking_changes
from .breaking_changes import BreakingChange
from .commands import CommandResult, run_command
from .config import UpgradeOptions
from .errors import StepExecutionError
from .manifest import (
    ANGULAR_JSON,
    CORE_PACKAGE,
    PACKAGE_JSON,
    TSCONFIG_JSON,
    angular_core_spec,
    read_json,
    read_package_json,
    write_json,
)
from .models import UpgradeStep
from .semver import satisfies

logger = logging.getLogger(__name__)

ANGULAR_PACKAGES = (
    "@angular/animations",
    "@angular/common",
    "@angular/compiler",
    "@angular/core",
    "@angular/forms",
    "@angular/platform-browser",
    "@angular/platform-browser-dynamic",
    "@angular/router",
    "@angular/material",
    "@angular/cdk",
    "@angular/ssr",
)
ANGULAR_DEV_PACKAGES = (
    "@angular/cli",
    "@angular/compiler-cli",
    "@angular-devkit/build-angular",
)

Transform = Callable[[Path, UpgradeOptions], None]
Runner = Callable[..., CommandResult]


class VersionHandler(Protocol):
    version: str

    def execute(self, project_path: Path, step: UpgradeStep, options: UpgradeOptions) -> None: ...

    def validate_prerequisites(self, project_path: Path) -> bool: ...

    def get_breaking_changes(self) -> list[BreakingChange]: ...


# ── Transform callbacks ──


def _drop_view_engine_flags(project_path: Path, options: UpgradeOptions) -> None:
    """View Engine is gone in 13: enableIvy is meaningless."""
    path = project_path / TSCONFIG_JSON
    tsconfig = read_json(path)
    if not isinstance(tsconfig, dict):
        return
    compiler = tsconfig.get("angularCompilerOptions")
    if isinstance(compiler, dict) and "enableIvy" in compiler:
        del compiler["enableIvy"]
        write_json(path, tsconfig)
        logger.info("Removed angularCompilerOptions.enableIvy")


def _drop_ngcc_postinstall(project_path: Path, options: UpgradeOptions) -> None:
    """ngcc no longer ships with 16."""
    path = project_path / PACKAGE_JSON
    pkg = read_package_json(project_path)
    scripts = pkg.get("scripts")
    if not isinstance(scripts, dict):
        return
    postinstall = scripts.get("postinstall", "")
    if "ngcc" not in postinstall:
        return
    parts = [p.strip() for p in postinstall.split("&&") if "ngcc" not in p]
    if parts:
        scripts["postinstall"] = " && ".join(parts)
    else:
        del scripts["postinstall"]
    write_json(path, pkg)
    logger.info("Removed ngcc from postinstall script")


# ── Data rows ──


@dataclass(frozen=True)
class VersionSpec:
    version: str
    node: str
    typescript: str
    companions: dict = field(default_factory=dict)  # pinned only when already present
    breaking_changes: tuple = ()
    transform: Optional[Transform] = None
    es_target: Optional[str] = None  # tsconfig compilerOptions.target floor

    @property
    def typescript_pin(self) -> str:
        """'>=5.2.0 <5.3.0' → '~5.2.0'"""
        lower = self.typescript.split()[0].lstrip(">=")
        return f"~{lower}"


def _row(version, node, typescript, zone, rxjs, transform=None, es_target=None) -> VersionSpec:
    return VersionSpec(
        version=version,
        node=node,
        typescript=typescript,
        companions={"zone.js": zone, "rxjs": rxjs},
        breaking_changes=tuple(breaking_changes.changes_for(version)),
        transform=transform,
        es_target=es_target,
    )


VERSION_SPECS: Mapping[str, VersionSpec] = MappingProxyType({
    "12": _row("12", ">=12.20.0", ">=4.2.3 <4.4.0", "~0.11.4", "~6.6.0"),
    "13": _row("13", ">=12.20.0", ">=4.4.2 <4.6.0", "~0.11.4", "~7.4.0", _drop_view_engine_flags),
    "14": _row("14", ">=14.15.0", ">=4.7.2 <4.8.0", "~0.11.4", "~7.5.0"),
    "15": _row("15", ">=14.20.0", ">=4.8.2 <4.10.0", "~0.12.0", "~7.5.0", es_target="ES2022"),
    "16": _row("16", ">=16.14.0", ">=4.9.3 <5.1.0", "~0.13.0", "~7.8.0", _drop_ngcc_postinstall, "ES2022"),
    "17": _row("17", ">=18.13.0", ">=5.2.0 <5.3.0", "~0.14.2", "~7.8.0", es_target="ES2022"),
    "18": _row("18", ">=18.19.1", ">=5.4.0 <5.5.0", "~0.14.3", "~7.8.0", es_target="ES2022"),
    "19": _row("19", ">=18.19.1", ">=5.5.0 <5.6.0", "~0.15.0", "~7.8.0", es_target="ES2022"),
    "20": _row("20", ">=18.19.1", ">=5.6.0 <5.7.0", "~0.15.0", "~7.8.0", es_target="ES2022"),
})

SUPPORTED_VERSIONS = tuple(int(v) for v in VERSION_SPECS)


def _es_year(target: str) -> int:
    """'ES2017' → 2017, 'esnext' → 9999, 'es5' → 2009."""
    t = target.lower()
    if t == "esnext":
        return 9999
    if t in ("es5", "es3"):
        return 2009
    if t == "es6":
        return 2015
    m = re.match(r"es(\d{4})$", t)
    return int(m.group(1)) if m else 0


# ── Handler ──


class DataDrivenHandler:
    """Common upgrade workflow driven by one VersionSpec row."""

    def __init__(
        self,
        spec: VersionSpec,
        *,
        runner: Runner = run_command,
        node_version_command: str = "node --version",
        schematics_timeout: int = 900,
    ):
        self.spec = spec
        self.version = spec.version
        self.runner = runner
        self.node_version_command = node_version_command
        self.schematics_timeout = schematics_timeout

    def __repr__(self) -> str:
        return f"<DataDrivenHandler angular@{self.version}>"

    def execute(self, project_path: Path, step: UpgradeStep, options: UpgradeOptions) -> None:
        project_path = Path(project_path)
        logger.info(f"Starting Angular {self.version} upgrade ({step.label})")
        try:
            self._update_package_json(project_path)
            if self.spec.transform is not None:
                self.spec.transform(project_path, options)
            self._update_configuration(project_path, options)
        except StepExecutionError:
            raise
        except (OSError, ValueError) as e:
            raise StepExecutionError(f"Angular {self.version} transformation failed: {e}", step, e) from e

        if options.run_schematics:
            self._run_schematics(project_path)
        logger.info(f"Angular {self.version} upgrade applied")

    def validate_prerequisites(self, project_path: Path) -> bool:
        node = self.runner(self.node_version_command, cwd=project_path, timeout=30)
        if not node.ok:
            logger.error("Node.js not found")
            return False
        found = node.stdout.strip()
        if not satisfies(found, self.spec.node):
            logger.error(f"Node.js {self.spec.node} required, found {found}")
            return False
        if not angular_core_spec(read_package_json(project_path)):
            logger.error("Not an Angular project")
            return False
        return True

    def get_breaking_changes(self) -> list[BreakingChange]:
        return list(self.spec.breaking_changes)

    # ── Workflow pieces ──

    def _update_package_json(self, project_path: Path) -> None:
        path = project_path / PACKAGE_JSON
        pkg = read_json(path)
        if not isinstance(pkg, dict):
            raise StepExecutionError(f"{PACKAGE_JSON} missing or unreadable")

        target = f"^{self.version}.0.0"
        deps = pkg.get("dependencies") or {}
        dev = pkg.get("devDependencies") or {}
        for section in (deps, dev):
            for name in ANGULAR_PACKAGES + ANGULAR_DEV_PACKAGES:
                if name in section:
                    section[name] = target
        if CORE_PACKAGE not in deps and CORE_PACKAGE not in dev:
            deps[CORE_PACKAGE] = target

        if "typescript" in deps:
            deps["typescript"] = self.spec.typescript_pin
        else:
            dev["typescript"] = self.spec.typescript_pin

        for name, version in self.spec.companions.items():
            for section in (deps, dev):
                if name in section:
                    section[name] = version

        pkg["dependencies"] = deps
        if dev:
            pkg["devDependencies"] = dev
        write_json(path, pkg)
        logger.debug(f"package.json updated to Angular {target}")

    def _update_configuration(self, project_path: Path, options: UpgradeOptions) -> None:
        if self.spec.es_target:
            self._raise_es_target(project_path / TSCONFIG_JSON, self.spec.es_target)
        if options.strategy != "conservative":
            self._drop_default_project(project_path / ANGULAR_JSON)

    def _raise_es_target(self, path: Path, floor: str) -> None:
        if not path.exists():
            return
        tsconfig = read_json(path)
        if not isinstance(tsconfig, dict):
            # tsconfig with comments; ng update handles it
            logger.warning(f"{path.name} is not plain JSON, target left unchanged")
            return
        compiler = tsconfig.setdefault("compilerOptions", {})
        current = str(compiler.get("target", ""))
        if _es_year(current) < _es_year(floor):
            compiler["target"] = floor
            write_json(path, tsconfig)
            logger.info(f"tsconfig target {current or '(unset)'} → {floor}")

    def _drop_default_project(self, path: Path) -> None:
        """defaultProject is deprecated from 14 on."""
        if int(self.version) < 14 or not path.exists():
            return
        workspace = read_json(path)
        if isinstance(workspace, dict) and "defaultProject" in workspace:
            del workspace["defaultProject"]
            write_json(path, workspace)

    def _run_schematics(self, project_path: Path) -> None:
        cmd = (
            f"npx ng update @angular/core@{self.version} @angular/cli@{self.version} "
            "--allow-dirty --force"
        )
        result = self.runner(cmd, cwd=project_path, timeout=self.schematics_timeout)
        if not result.ok:
            logger.warning(f"ng update schematics failed for {self.version}: {result.output[-500:]}")


def build_handler_registry(
    specs: Optional[Mapping[str, VersionSpec]] = None,
    **handler_kwargs,
) -> Mapping[str, VersionHandler]:
    """Immutable major-version → handler mapping, built once per orchestrator."""
    specs = specs if specs is not None else VERSION_SPECS
    return MappingProxyType({
        version: DataDrivenHandler(spec, **handler_kwargs) for version, spec in specs.items()
    })
