"""
Angular Project Analyzer

Read-only scan of an Angular project before an upgrade:
- current @angular/core version
- project type (application / library / workspace) and build system
- third-party dependencies (deprecated libraries, known conflicts)
- code metrics under src/ (files, components, services, modules, LOC)
- overall upgrade risk

Usage:
    analysis = ProjectAnalyzer('/path/to/project', parallel=True).analyze()
    print(analysis.current_version, analysis.risk.overall)
"""

from __future__ import annotations

import logging
import os
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .errors import AnalysisError, InvalidUpgradePathError
from .manifest import ANGULAR_JSON, PACKAGE_JSON, all_dependencies, angular_core_spec, read_json
from .models import Version

logger = logging.getLogger(__name__)

SKIP_DIRS = {"node_modules", "dist", ".angular", "coverage", ".nyc_output", ".git"}
SCAN_SUFFIXES = (".ts", ".js", ".html")
WEBPACK_CONFIGS = (
    "webpack.config.js",
    "webpack.config.ts",
    "webpack.common.js",
    "webpack.dev.js",
    "webpack.prod.js",
)
LARGE_CODEBASE_LOC = 50000

DEPRECATED_LIBRARIES = {
    "@angular/flex-layout": "deprecated",
    "tslint": "discontinued",
    "protractor": "discontinued",
    "codelyzer": "deprecated",
}
ALTERNATIVES = {
    "@angular/flex-layout": ["@angular/cdk/layout", "tailwindcss", "bootstrap"],
    "tslint": ["eslint", "@typescript-eslint/eslint-plugin"],
    "protractor": ["cypress", "@playwright/test", "webdriver-io"],
    "karma": ["jest", "vitest"],
    "codelyzer": ["@typescript-eslint/eslint-plugin"],
}
CONFLICT_PAIRS = (
    ("@angular/flex-layout", "@angular/cdk"),
    ("tslint", "eslint"),
    ("karma", "jest"),
)

_NGMODULE_RE = re.compile(r"@NgModule\s*\(")
_STANDALONE_RE = re.compile(r"standalone\s*:\s*true")


@dataclass
class CodeMetrics:
    total_files: int = 0
    component_count: int = 0
    service_count: int = 0
    module_count: int = 0
    lines_of_code: int = 0
    ngmodules: int = 0
    standalone_components: int = 0


@dataclass
class DeprecatedLibrary:
    name: str
    version: str
    status: str  # deprecated|discontinued
    alternatives: List[str] = field(default_factory=list)


@dataclass
class RiskFactor:
    type: str  # dependency|code
    severity: str  # low|medium|high|critical
    description: str
    impact: str


@dataclass
class RiskAssessment:
    overall: str = "low"
    factors: List[RiskFactor] = field(default_factory=list)
    mitigations: List[str] = field(default_factory=list)


@dataclass
class ProjectAnalysis:
    """Complete project analysis result"""
    current_version: Version
    project_type: str
    build_system: str
    dependencies: Dict[str, str]
    deprecated: List[DeprecatedLibrary]
    conflicts: List[str]
    code_metrics: CodeMetrics
    risk: RiskAssessment

    def to_dict(self) -> dict:
        d = asdict(self)
        d["current_version"] = self.current_version.full
        return d


class ProjectAnalyzer:
    """Read-only. With parallel=True the file scan fans out to a thread pool."""

    def __init__(self, project_path: Path | str, parallel: bool = False, max_workers: Optional[int] = None):
        self.project_path = Path(project_path)
        self.parallel = parallel
        self.max_workers = max_workers

    def analyze(self) -> ProjectAnalysis:
        logger.info(f"Analyzing {self.project_path}")
        package_json = read_json(self.project_path / PACKAGE_JSON)
        if not isinstance(package_json, dict):
            raise AnalysisError(f"{PACKAGE_JSON} missing or unreadable in {self.project_path}")

        current = self._detect_version(package_json)
        dependencies = all_dependencies(package_json)
        deprecated = self._deprecated(dependencies)
        conflicts = self._conflicts(dependencies)
        metrics = self._code_metrics()

        analysis = ProjectAnalysis(
            current_version=current,
            project_type=self._project_type(),
            build_system=self._build_system(),
            dependencies=dependencies,
            deprecated=deprecated,
            conflicts=conflicts,
            code_metrics=metrics,
            risk=self._assess_risks(deprecated, conflicts, metrics),
        )
        logger.info(
            f"Angular {current.full}, {metrics.total_files} files, risk={analysis.risk.overall}"
        )
        return analysis

    # ── Manifest ──

    def _detect_version(self, package_json: dict) -> Version:
        spec = angular_core_spec(package_json)
        if not spec:
            raise AnalysisError("Angular core dependency not found")
        try:
            return Version.parse(spec)
        except InvalidUpgradePathError as e:
            raise AnalysisError(f"Failed to detect Angular version: {e}") from e

    def _project_type(self) -> str:
        workspace = read_json(self.project_path / ANGULAR_JSON)
        projects = workspace.get("projects") if isinstance(workspace, dict) else None
        if not isinstance(projects, dict) or not projects:
            return "application"
        if len(projects) > 1:
            return "workspace"
        config = next(iter(projects.values())) or {}
        return "library" if config.get("projectType") == "library" else "application"

    def _build_system(self) -> str:
        if (self.project_path / "nx.json").exists():
            return "nx"
        if (self.project_path / ANGULAR_JSON).exists():
            return "angular-cli"
        if any((self.project_path / name).exists() for name in WEBPACK_CONFIGS):
            return "webpack"
        return "other"

    def _deprecated(self, dependencies: Dict[str, str]) -> List[DeprecatedLibrary]:
        return [
            DeprecatedLibrary(name, dependencies[name], status, ALTERNATIVES.get(name, []))
            for name, status in DEPRECATED_LIBRARIES.items()
            if name in dependencies
        ]

    def _conflicts(self, dependencies: Dict[str, str]) -> List[str]:
        return [
            f"{a} / {b}: consider migrating from {a} to {b}"
            for a, b in CONFLICT_PAIRS
            if a in dependencies and b in dependencies
        ]

    # ── Code scan ──

    def _source_files(self) -> List[Path]:
        src = self.project_path / "src"
        files: List[Path] = []
        for dirpath, dirnames, filenames in os.walk(src):
            dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
            files.extend(Path(dirpath) / f for f in sorted(filenames) if f.endswith(SCAN_SUFFIXES))
        return files

    @staticmethod
    def _scan_file(path: Path) -> CodeMetrics:
        m = CodeMetrics(total_files=1)
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning(f"Cannot read {path}: {e}")
            return m
        m.lines_of_code = len(content.split("\n"))
        name = path.name
        if ".component.ts" in name:
            m.component_count = 1
            if _STANDALONE_RE.search(content):
                m.standalone_components = 1
        elif ".service.ts" in name:
            m.service_count = 1
        elif ".module.ts" in name:
            m.module_count = 1
        if name.endswith(".ts") and _NGMODULE_RE.search(content):
            m.ngmodules = 1
        return m

    def _code_metrics(self) -> CodeMetrics:
        files = self._source_files()
        if self.parallel and len(files) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                per_file = list(pool.map(self._scan_file, files))
        else:
            per_file = [self._scan_file(f) for f in files]

        total = CodeMetrics()
        for m in per_file:
            total.total_files += m.total_files
            total.component_count += m.component_count
            total.service_count += m.service_count
            total.module_count += m.module_count
            total.lines_of_code += m.lines_of_code
            total.ngmodules += m.ngmodules
            total.standalone_components += m.standalone_components
        return total

    # ── Risk ──

    def _assess_risks(
        self,
        deprecated: List[DeprecatedLibrary],
        conflicts: List[str],
        metrics: CodeMetrics,
    ) -> RiskAssessment:
        factors: List[RiskFactor] = []
        mitigations: List[str] = []

        if deprecated:
            factors.append(RiskFactor(
                "dependency", "high",
                f"{len(deprecated)} deprecated or discontinued dependencies",
                "May require manual migration or replacement",
            ))
            mitigations.append("Replace deprecated dependencies before upgrading")
        if conflicts:
            factors.append(RiskFactor(
                "dependency", "medium",
                f"{len(conflicts)} dependency conflicts",
                "May cause build or runtime issues",
            ))
            mitigations.append("Resolve dependency conflicts to prevent build issues")
        if metrics.lines_of_code > LARGE_CODEBASE_LOC:
            factors.append(RiskFactor(
                "code", "medium", "Large codebase",
                "Increased upgrade time and potential for issues",
            ))
            mitigations.append("Upgrade in smaller increments with extensive testing")

        return RiskAssessment(overall_risk(factors), factors, mitigations)


def overall_risk(factors: List[RiskFactor]) -> str:
    severities = [f.severity for f in factors]
    if "critical" in severities:
        return "critical"
    if "high" in severities or severities.count("medium") > 2:
        return "high"
    if "medium" in severities:
        return "medium"
    return "low"
