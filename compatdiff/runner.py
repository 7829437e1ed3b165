"""Fixture runner: replays recorded compatibility scenarios."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from .engine import CompatibilityEngine
from .events import EventSink
from .jsonpath_utils import JSONPathMatcher
from .models import EngineConfig, utc_timestamp

logger = logging.getLogger(__name__)

FIXTURE_PATTERNS = ("*.yaml", "*.yml", "*.json")


@dataclass
class ExpectationResult:
    """Outcome of one JSONPath expectation."""
    path: str
    expected: Any
    actual: Any
    passed: bool
    error: Optional[str] = None

    def to_dict(self) -> dict:
        result = {
            "path": self.path,
            "expected": self.expected,
            "actual": self.actual,
            "passed": self.passed,
        }
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class ScenarioResult:
    """Result of a single fixture scenario."""
    name: str
    fixture_path: str
    passed: bool
    verdict: Optional[str] = None
    expectations: list[ExpectationResult] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        result = {
            "name": self.name,
            "fixture_path": self.fixture_path,
            "passed": self.passed,
            "verdict": self.verdict,
            "expectations": [e.to_dict() for e in self.expectations],
        }
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class GlobalReport:
    """Report across all replayed scenarios."""
    total: int = 0
    passed: int = 0
    failed: int = 0
    scenarios: list[ScenarioResult] = field(default_factory=list)
    by_verdict: dict[str, list[str]] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_timestamp)

    @property
    def pass_rate(self) -> str:
        return f"{(self.passed / self.total * 100):.1f}%" if self.total > 0 else "0.0%"

    def add(self, result: ScenarioResult):
        self.scenarios.append(result)
        self.total += 1
        if result.passed:
            self.passed += 1
        else:
            self.failed += 1
        self.by_verdict.setdefault(result.verdict or "error", []).append(result.name)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "summary": {
                "total_scenarios": self.total,
                "passed": self.passed,
                "failed": self.failed,
                "pass_rate": self.pass_rate,
            },
            "by_verdict": {k: sorted(v) for k, v in sorted(self.by_verdict.items())},
            "scenarios": [s.to_dict() for s in self.scenarios],
        }

    def print_summary(self):
        print(f"\nScenario Results: {self.passed}/{self.total} passed ({self.pass_rate})")
        if self.failed > 0:
            print(f"  Failed: {self.failed}")
        for verdict, names in sorted(self.by_verdict.items()):
            print(f"  {verdict}: {len(names)} scenarios")


class FixtureRunner:
    """
    Replays fixture files through the engine.

    A fixture is a YAML or JSON document::

        name: property removed
        source: {...}            # canonical schema, or a path relative to the fixture
        target: {...}
        options: {...}           # optional, wire-form analysis options
        expect:
          $.verdict: breaking
          $.summary.breakingChanges: 1

    Each ``expect`` key is a JSONPath evaluated against the response dict.
    A path with one match is compared to the expected value directly; a path
    with several matches is compared as a list.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        event_sink: Optional[EventSink] = None
    ):
        self.engine = CompatibilityEngine(config, event_sink)

    def run_fixture(self, fixture: dict, fixture_path: str = "<inline>") -> ScenarioResult:
        """Run a single fixture."""
        name = fixture.get("name") or Path(fixture_path).stem
        base_dir = Path(fixture_path).parent

        try:
            request = {
                "requestId": fixture.get("requestId") or str(uuid.uuid5(uuid.NAMESPACE_URL, name)),
                "sourceSchema": self._resolve_schema(fixture.get("source"), base_dir),
                "targetSchema": self._resolve_schema(fixture.get("target"), base_dir),
                "options": fixture.get("options"),
            }
            expect = fixture.get("expect") or {}
            if not isinstance(expect, dict):
                raise ValueError("'expect' must be a mapping of JSONPath to value")

            response = self.engine.analyze(request).to_dict()
            expectations = [
                self._check_expectation(response, path, expected)
                for path, expected in expect.items()
            ]
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.warning("Fixture %s could not be run: %s", name, e)
            return ScenarioResult(
                name=name,
                fixture_path=fixture_path,
                passed=False,
                error=str(e),
            )

        return ScenarioResult(
            name=name,
            fixture_path=fixture_path,
            passed=all(e.passed for e in expectations),
            verdict=response["verdict"] if response["success"] else None,
            expectations=expectations,
        )

    def run_folder(
        self,
        folder: str | Path,
        print_report: bool = True
    ) -> GlobalReport:
        """Run every fixture file in a folder."""
        report = GlobalReport()
        folder_path = Path(folder)

        fixture_files = sorted(
            {p for pattern in FIXTURE_PATTERNS for p in folder_path.glob(pattern)}
        )
        for fixture_file in fixture_files:
            try:
                fixture = load_fixture(fixture_file)
            except (OSError, ValueError, yaml.YAMLError) as e:
                result = ScenarioResult(
                    name=fixture_file.stem,
                    fixture_path=str(fixture_file),
                    passed=False,
                    error=str(e),
                )
            else:
                result = self.run_fixture(fixture, str(fixture_file))

            report.add(result)
            if print_report:
                print(f"{'PASS' if result.passed else 'FAIL'}: {result.name}")
                if not result.passed:
                    self._print_failure(result)

        return report

    @staticmethod
    def _print_failure(result: ScenarioResult):
        if result.error:
            print(f"  error: {result.error}")
        for expectation in result.expectations:
            if not expectation.passed:
                print(
                    f"  {expectation.path}: expected {expectation.expected!r}, "
                    f"got {expectation.actual!r}"
                )

    @staticmethod
    def _resolve_schema(value: Any, base_dir: Path) -> Any:
        """Inline schemas pass through; strings are loaded as files."""
        if isinstance(value, str):
            with open(base_dir / value, 'r', encoding='utf-8') as f:
                return yaml.safe_load(f)
        return value

    @staticmethod
    def _check_expectation(response: dict, path: str, expected: Any) -> ExpectationResult:
        try:
            matches = JSONPathMatcher.find_values(response, path)
        except ValueError as e:
            return ExpectationResult(path, expected, None, False, error=str(e))

        if not matches:
            return ExpectationResult(path, expected, None, False, error="no match")

        actual = matches[0] if len(matches) == 1 else matches
        return ExpectationResult(path, expected, actual, actual == expected)


def load_fixture(path: str | Path) -> dict:
    """Load one fixture file (YAML or JSON)."""
    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Fixture must be a mapping: {path}")
    return data
