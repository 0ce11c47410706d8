"""
Breaking Changes Catalog

Per-major-version Angular breaking changes with severity and migration mode.

    automatic  applied by the version handler / ng update schematics
    manual     needs a developer; raises a manual-intervention event
    bridge     compatibility shim applied, follow-up recommended

Supported: Angular 12 → 20
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Dict, List, Optional


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ChangeType(Enum):
    API = "api"
    TEMPLATE = "template"
    CONFIG = "config"
    DEPENDENCY = "dependency"
    BUILD = "build"


MIGRATION_AUTOMATIC = "automatic"
MIGRATION_MANUAL = "manual"
MIGRATION_BRIDGE = "bridge"


@dataclass(frozen=True)
class BreakingChange:
    id: str
    version: str
    type: ChangeType
    severity: Severity
    description: str
    impact: str
    migration: str = MIGRATION_AUTOMATIC
    instructions: Optional[str] = None

    @property
    def manual(self) -> bool:
        return self.migration == MIGRATION_MANUAL

    def to_dict(self) -> dict:
        d = asdict(self)
        d["type"] = self.type.value
        d["severity"] = self.severity.value
        return d


def _bc(version, id, type, severity, description, impact, migration=MIGRATION_AUTOMATIC, instructions=None):
    return BreakingChange(
        id=id,
        version=version,
        type=type,
        severity=severity,
        description=description,
        impact=impact,
        migration=migration,
        instructions=instructions,
    )


# ===== ANGULAR 12 =====

ANGULAR_12 = [
    _bc("12", "ng12-ivy-default", ChangeType.BUILD, Severity.HIGH,
        "Ivy renderer is now the default and only renderer",
        "Libraries still shipping View Engine metadata need ngcc"),
    _bc("12", "ng12-webpack5", ChangeType.BUILD, Severity.MEDIUM,
        "Webpack 5 support enabled",
        "Custom webpack configurations may need updates"),
    _bc("12", "ng12-strict-mode", ChangeType.CONFIG, Severity.MEDIUM,
        "Strict mode enabled by default for new projects",
        "Existing projects keep their settings"),
    _bc("12", "ng12-ie11-deprecation", ChangeType.BUILD, Severity.LOW,
        "Internet Explorer 11 support deprecated",
        "IE11 users see a deprecation warning"),
]

# ===== ANGULAR 13 =====

ANGULAR_13 = [
    _bc("13", "ng13-view-engine-removal", ChangeType.BUILD, Severity.CRITICAL,
        "View Engine completely removed",
        "Libraries compiled for View Engine no longer work",
        MIGRATION_MANUAL,
        "Upgrade or replace every dependency that is not Ivy-compatible"),
    _bc("13", "ng13-angular-package-format", ChangeType.BUILD, Severity.HIGH,
        "Angular Package Format v13 changes",
        "UMD bundles dropped from published packages"),
    _bc("13", "ng13-typescript-version", ChangeType.DEPENDENCY, Severity.MEDIUM,
        "TypeScript 4.4+ required",
        "Older TypeScript versions fail to compile"),
    _bc("13", "ng13-ie11-removal", ChangeType.CONFIG, Severity.MEDIUM,
        "IE11 support removed",
        "Polyfills for IE11 can be dropped"),
    _bc("13", "ng13-dynamic-imports", ChangeType.API, Severity.LOW,
        "Dynamic imports for lazy routes",
        "String-based loadChildren is no longer supported"),
]

# ===== ANGULAR 14 =====

ANGULAR_14 = [
    _bc("14", "ng14-standalone-components", ChangeType.API, Severity.LOW,
        "Standalone components introduced (developer preview)",
        "Optional; NgModules keep working"),
    _bc("14", "ng14-typescript-version", ChangeType.DEPENDENCY, Severity.MEDIUM,
        "TypeScript 4.7+ required",
        "Older TypeScript versions fail to compile"),
    _bc("14", "ng14-nodejs-version", ChangeType.DEPENDENCY, Severity.MEDIUM,
        "Node.js 14.15+ required",
        "CI images may need an update"),
    _bc("14", "ng14-typed-forms", ChangeType.API, Severity.MEDIUM,
        "Strictly typed reactive forms",
        "Existing forms are migrated to Untyped* classes",
        MIGRATION_BRIDGE,
        "Replace UntypedFormControl/UntypedFormGroup with typed variants over time"),
]

# ===== ANGULAR 15 =====

ANGULAR_15 = [
    _bc("15", "ng15-standalone-stable", ChangeType.API, Severity.LOW,
        "Standalone APIs are stable",
        "No action required"),
    _bc("15", "ng15-router-guards-deprecated", ChangeType.API, Severity.MEDIUM,
        "Class-based router guards and resolvers deprecated",
        "CanActivate/Resolve interfaces still work but emit deprecation warnings",
        MIGRATION_MANUAL,
        "Convert class guards to functional guards using inject()"),
    _bc("15", "ng15-mdc-material", ChangeType.DEPENDENCY, Severity.HIGH,
        "Angular Material migrated to MDC-based components",
        "Component DOM and styles change; legacy components kept under legacy-*",
        MIGRATION_BRIDGE,
        "Move from legacy-* imports to MDC components and review custom styles"),
    _bc("15", "ng15-es2022-target", ChangeType.CONFIG, Severity.LOW,
        "TypeScript target raised to ES2022",
        "tsconfig target updated by the handler"),
]

# ===== ANGULAR 16 =====

ANGULAR_16 = [
    _bc("16", "ng16-signals", ChangeType.API, Severity.LOW,
        "Signals introduced (developer preview)",
        "Optional reactive primitive"),
    _bc("16", "ng16-ngcc-removed", ChangeType.BUILD, Severity.HIGH,
        "ngcc removed",
        "View Engine libraries cannot be used at all",
        MIGRATION_MANUAL,
        "Remove ngcc from postinstall scripts and replace View Engine libraries"),
    _bc("16", "ng16-required-inputs", ChangeType.TEMPLATE, Severity.LOW,
        "Required component inputs",
        "Optional feature"),
    _bc("16", "ng16-esbuild-preview", ChangeType.BUILD, Severity.LOW,
        "esbuild builder available (developer preview)",
        "Webpack builder remains the default"),
]

# ===== ANGULAR 17 =====

ANGULAR_17 = [
    _bc("17", "ng17-new-application-bootstrap", ChangeType.API, Severity.MEDIUM,
        "New application bootstrap API",
        "Applications can optionally migrate to bootstrapApplication",
        MIGRATION_MANUAL,
        "Consider migrating to bootstrapApplication for better tree-shaking"),
    _bc("17", "ng17-new-control-flow", ChangeType.TEMPLATE, Severity.LOW,
        "New control flow syntax available",
        "@if, @for and @switch available alongside *ngIf, *ngFor and *ngSwitch"),
    _bc("17", "ng17-application-builder", ChangeType.BUILD, Severity.MEDIUM,
        "esbuild-based application builder",
        "New projects use @angular-devkit/build-angular:application"),
    _bc("17", "ng17-material-m3", ChangeType.DEPENDENCY, Severity.MEDIUM,
        "Angular Material 17 with Material Design 3 tokens",
        "Review Material component designs for visual changes"),
]

# ===== ANGULAR 18 =====

ANGULAR_18 = [
    _bc("18", "ng18-zoneless-experimental", ChangeType.API, Severity.LOW,
        "Experimental zoneless change detection",
        "Opt-in only"),
    _bc("18", "ng18-http-client-modules", ChangeType.API, Severity.MEDIUM,
        "HttpClientModule deprecated in favour of provideHttpClient",
        "Migrated by ng update schematics"),
    _bc("18", "ng18-material3-stable", ChangeType.DEPENDENCY, Severity.MEDIUM,
        "Material 3 stable",
        "Themes may need regeneration"),
]

# ===== ANGULAR 19 =====

ANGULAR_19 = [
    _bc("19", "ng19-standalone-default", ChangeType.API, Severity.HIGH,
        "Components are standalone by default",
        "NgModule-declared components need standalone: false",
        MIGRATION_AUTOMATIC,
        "ng update adds standalone: false where required"),
    _bc("19", "ng19-typescript-version", ChangeType.DEPENDENCY, Severity.MEDIUM,
        "TypeScript 5.5+ required",
        "Older TypeScript versions fail to compile"),
    _bc("19", "ng19-nodejs-version", ChangeType.DEPENDENCY, Severity.MEDIUM,
        "Node.js 18.19.1+ required",
        "CI images may need an update"),
    _bc("19", "ng19-incremental-hydration", ChangeType.API, Severity.LOW,
        "Incremental hydration (developer preview)",
        "SSR applications may opt in"),
]

# ===== ANGULAR 20 =====

ANGULAR_20 = [
    _bc("20", "ng20-structural-directives-deprecated", ChangeType.TEMPLATE, Severity.MEDIUM,
        "*ngIf, *ngFor and *ngSwitch deprecated",
        "Templates should move to built-in control flow",
        MIGRATION_MANUAL,
        "Run `ng generate @angular/core:control-flow` and review the result"),
    _bc("20", "ng20-typescript-version", ChangeType.DEPENDENCY, Severity.MEDIUM,
        "TypeScript 5.6+ required",
        "Older TypeScript versions fail to compile"),
    _bc("20", "ng20-zoneless-stable", ChangeType.API, Severity.LOW,
        "Zoneless change detection promoted to stable",
        "Opt-in only"),
]


CATALOG: Dict[str, List[BreakingChange]] = {
    "12": ANGULAR_12,
    "13": ANGULAR_13,
    "14": ANGULAR_14,
    "15": ANGULAR_15,
    "16": ANGULAR_16,
    "17": ANGULAR_17,
    "18": ANGULAR_18,
    "19": ANGULAR_19,
    "20": ANGULAR_20,
}


def changes_for(version: str) -> List[BreakingChange]:
    """Breaking changes introduced by a target major version."""
    return list(CATALOG.get(str(version), []))


def count_by_severity(changes: List[BreakingChange], severity: Severity) -> int:
    return sum(1 for c in changes if c.severity == severity)
