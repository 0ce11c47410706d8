"""Tests for the read-only project analyzer."""
import json

import pytest

from conftest import write_package_json
from upgrade_factory.analyzer import ProjectAnalyzer, RiskFactor, overall_risk
from upgrade_factory.errors import AnalysisError


class TestAnalyze:
    def test_basic(self, project):
        analysis = ProjectAnalyzer(project).analyze()
        assert analysis.current_version.full == "14.2.0"
        assert analysis.project_type == "application"
        assert analysis.build_system == "angular-cli"
        assert analysis.deprecated == []
        assert analysis.risk.overall == "low"

    def test_code_metrics(self, project):
        metrics = ProjectAnalyzer(project).analyze().code_metrics
        assert metrics.total_files == 3
        assert metrics.component_count == 1
        assert metrics.module_count == 1
        assert metrics.ngmodules == 1
        assert metrics.lines_of_code > 0

    def test_parallel_scan_matches(self, project):
        serial = ProjectAnalyzer(project).analyze().code_metrics
        parallel = ProjectAnalyzer(project, parallel=True, max_workers=2).analyze().code_metrics
        assert serial == parallel

    def test_deprecated_and_conflicts(self, project):
        write_package_json(project, devDependencies={
            "@angular/cli": "^14.2.0",
            "tslint": "~6.1.0",
            "eslint": "^8.0.0",
            "protractor": "~7.0.0",
        })
        analysis = ProjectAnalyzer(project).analyze()
        names = {d.name: d.status for d in analysis.deprecated}
        assert names == {"tslint": "discontinued", "protractor": "discontinued"}
        assert analysis.conflicts == ["tslint / eslint: consider migrating from tslint to eslint"]
        assert analysis.risk.overall == "high"
        assert analysis.risk.mitigations

    def test_workspace(self, project):
        (project / "angular.json").write_text(json.dumps({
            "projects": {"app": {"projectType": "application"}, "lib": {"projectType": "library"}},
        }))
        assert ProjectAnalyzer(project).analyze().project_type == "workspace"

    def test_library(self, project):
        (project / "angular.json").write_text(json.dumps({
            "projects": {"lib": {"projectType": "library"}},
        }))
        assert ProjectAnalyzer(project).analyze().project_type == "library"

    def test_nx(self, project):
        (project / "nx.json").write_text("{}")
        assert ProjectAnalyzer(project).analyze().build_system == "nx"

    def test_missing_package_json(self, tmp_path):
        with pytest.raises(AnalysisError):
            ProjectAnalyzer(tmp_path).analyze()

    def test_not_angular(self, project):
        write_package_json(project, dependencies={"vue": "^3.0.0"}, devDependencies={})
        with pytest.raises(AnalysisError, match="Angular core dependency not found"):
            ProjectAnalyzer(project).analyze()

    def test_to_dict(self, project):
        data = ProjectAnalyzer(project).analyze().to_dict()
        assert data["current_version"] == "14.2.0"
        assert data["risk"]["overall"] == "low"


class TestOverallRisk:
    def test_levels(self):
        medium = RiskFactor("code", "medium", "", "")
        assert overall_risk([]) == "low"
        assert overall_risk([medium]) == "medium"
        assert overall_risk([medium] * 3) == "high"
        assert overall_risk([RiskFactor("code", "critical", "", "")]) == "critical"
