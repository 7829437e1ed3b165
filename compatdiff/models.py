"""Data models for the compatdiff engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

AGENT_ID = "compatdiff"
AGENT_VERSION = "1.0.0"


class LogLevel(Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class Strictness(Enum):
    STRICT = "strict"
    STANDARD = "standard"
    LENIENT = "lenient"


class Severity(Enum):
    BREAKING = "breaking"
    NON_BREAKING = "non-breaking"
    PATCH = "patch"
    INFORMATIONAL = "informational"


class ChangeCategory(Enum):
    TYPE_ADDED = "type-added"
    TYPE_REMOVED = "type-removed"
    TYPE_MODIFIED = "type-modified"
    PROPERTY_ADDED = "property-added"
    PROPERTY_REMOVED = "property-removed"
    PROPERTY_MODIFIED = "property-modified"
    ENDPOINT_ADDED = "endpoint-added"
    ENDPOINT_REMOVED = "endpoint-removed"
    ENDPOINT_MODIFIED = "endpoint-modified"
    PARAMETER_ADDED = "parameter-added"
    PARAMETER_REMOVED = "parameter-removed"
    PARAMETER_MODIFIED = "parameter-modified"
    RESPONSE_ADDED = "response-added"
    RESPONSE_REMOVED = "response-removed"
    RESPONSE_MODIFIED = "response-modified"
    AUTH_ADDED = "auth-added"
    AUTH_REMOVED = "auth-removed"
    AUTH_MODIFIED = "auth-modified"
    ERROR_ADDED = "error-added"
    ERROR_REMOVED = "error-removed"
    ERROR_MODIFIED = "error-modified"
    METADATA_CHANGED = "metadata-changed"


class Verdict(Enum):
    FULLY_COMPATIBLE = "fully-compatible"
    BACKWARDS_COMPATIBLE = "backwards-compatible"
    BREAKING = "breaking"
    INCOMPATIBLE = "incompatible"


class BumpType(Enum):
    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"
    NONE = "none"


class AnalysisCategory(Enum):
    TYPES = "types"
    ENDPOINTS = "endpoints"
    AUTHENTICATION = "authentication"
    ERRORS = "errors"


class FailureMode(Enum):
    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_SOURCE_SCHEMA = "INVALID_SOURCE_SCHEMA"
    INVALID_TARGET_SCHEMA = "INVALID_TARGET_SCHEMA"
    SCHEMA_VERSION_MISMATCH = "SCHEMA_VERSION_MISMATCH"
    INCOMPATIBLE_PROVIDERS = "INCOMPATIBLE_PROVIDERS"
    RESOURCE_EXHAUSTION = "RESOURCE_EXHAUSTION"
    TYPE_RESOLUTION_FAILURE = "TYPE_RESOLUTION_FAILURE"
    CIRCULAR_REFERENCE = "CIRCULAR_REFERENCE"
    ANALYSIS_FAILURE = "ANALYSIS_FAILURE"


# Comparison order is fixed so the change list never depends on request order.
CATEGORY_ORDER = [
    AnalysisCategory.TYPES,
    AnalysisCategory.ENDPOINTS,
    AnalysisCategory.AUTHENTICATION,
    AnalysisCategory.ERRORS,
]

DEFAULT_INCOMPATIBLE_THRESHOLDS = {
    Strictness.STRICT: 0,
    Strictness.STANDARD: 10,
    Strictness.LENIENT: 5,
}

DEFAULT_AFFECTED_LANGUAGES = ["typescript", "python", "rust", "go", "java", "csharp"]


def format_issue(mode: FailureMode, message: str) -> str:
    """Render a failure mode and message the way warnings/errors are reported."""
    return f"{mode.value}: {message}"


def utc_timestamp() -> str:
    """Current UTC time as an ISO-8601 string with a Z suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class EngineConfig:
    """Global configuration for the analysis engine."""
    agent_version: str = AGENT_VERSION
    # Breaking-change count above which the verdict becomes "incompatible".
    incompatible_thresholds: dict = field(
        default_factory=lambda: dict(DEFAULT_INCOMPATIBLE_THRESHOLDS)
    )
    affected_languages: list = field(
        default_factory=lambda: list(DEFAULT_AFFECTED_LANGUAGES)
    )
    max_schema_elements: int = 50000
    log_level: LogLevel = LogLevel.WARNING

    def threshold_for(self, strictness: Strictness) -> int:
        return self.incompatible_thresholds[strictness]

    @classmethod
    def from_dict(cls, data: dict) -> EngineConfig:
        """
        Build a configuration from a plain mapping (e.g. a parsed YAML file).

        Threshold keys may be given as strictness names ("strict", "standard",
        "lenient"); missing strictness levels keep their defaults.
        """
        from .exceptions import ValidationError

        if not isinstance(data, dict):
            raise ValidationError(
                "Configuration must be a mapping",
                {"type": type(data).__name__}
            )

        known = {
            'agent_version', 'incompatible_thresholds', 'affected_languages',
            'max_schema_elements', 'log_level',
        }
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValidationError("Unknown configuration keys", {"keys": unknown})

        config = cls()

        if 'agent_version' in data:
            config.agent_version = str(data['agent_version'])

        thresholds = data.get('incompatible_thresholds') or {}
        if not isinstance(thresholds, dict):
            raise ValidationError("incompatible_thresholds must be a mapping")
        for key, value in thresholds.items():
            try:
                strictness = Strictness(key)
            except ValueError:
                raise ValidationError(
                    f"Unknown strictness in incompatible_thresholds: {key}"
                )
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValidationError(
                    f"Threshold for {key} must be a non-negative integer",
                    {"value": value}
                )
            config.incompatible_thresholds[strictness] = value

        if 'affected_languages' in data:
            languages = data['affected_languages']
            if not isinstance(languages, list):
                raise ValidationError("affected_languages must be a list")
            config.affected_languages = [str(lang) for lang in languages]

        if 'max_schema_elements' in data:
            limit = data['max_schema_elements']
            if not isinstance(limit, int) or isinstance(limit, bool) or limit <= 0:
                raise ValidationError(
                    "max_schema_elements must be a positive integer",
                    {"value": limit}
                )
            config.max_schema_elements = limit

        if 'log_level' in data:
            try:
                config.log_level = LogLevel(str(data['log_level']).upper())
            except ValueError:
                raise ValidationError(f"Unknown log_level: {data['log_level']}")

        return config

    @classmethod
    def from_file(cls, path: str | Path) -> EngineConfig:
        """Load configuration from a YAML (or JSON) file."""
        import yaml
        from .exceptions import ValidationError

        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            content = f.read()

        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ValidationError(f"Failed to parse config file: {e}")

        return cls.from_dict(data or {})


@dataclass
class Impact:
    """Impact assessment attached to a change."""
    affected_components: list[str] = field(default_factory=list)
    affected_languages: list[str] = field(default_factory=list)
    migration_complexity: int = 1

    def to_dict(self) -> dict:
        return {
            "affectedComponents": list(self.affected_components),
            "affectedLanguages": list(self.affected_languages),
            "migrationComplexity": self.migration_complexity,
        }


@dataclass
class CompatibilityChange:
    """A single difference between the source and target schema."""
    change_id: str
    category: ChangeCategory
    severity: Severity
    path: str
    description: str
    impact: Impact
    source_value: Any = None
    target_value: Any = None
    diff: Optional[str] = None
    upgrade_guidance: Optional[str] = None

    def to_dict(self) -> dict:
        result = {
            "changeId": self.change_id,
            "category": self.category.value,
            "severity": self.severity.value,
            "path": self.path,
            "description": self.description,
        }
        if self.source_value is not None:
            result["sourceValue"] = self.source_value
        if self.target_value is not None:
            result["targetValue"] = self.target_value
        if self.diff is not None:
            result["diff"] = self.diff
        result["impact"] = self.impact.to_dict()
        if self.upgrade_guidance is not None:
            result["upgradeGuidance"] = self.upgrade_guidance
        return result


@dataclass
class CompatibilitySummary:
    """Counts of detected changes by severity and by category."""
    total_changes: int = 0
    breaking_changes: int = 0
    non_breaking_changes: int = 0
    patch_changes: int = 0
    informational_changes: int = 0
    changes_by_category: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "totalChanges": self.total_changes,
            "breakingChanges": self.breaking_changes,
            "nonBreakingChanges": self.non_breaking_changes,
            "patchChanges": self.patch_changes,
            "informationalChanges": self.informational_changes,
            "changesByCategory": dict(sorted(self.changes_by_category.items())),
        }


@dataclass
class VersionRecommendation:
    """Recommended semantic-version bump."""
    bump_type: BumpType
    recommended_version: str
    rationale: str

    def to_dict(self) -> dict:
        return {
            "bumpType": self.bump_type.value,
            "recommendedVersion": self.recommended_version,
            "rationale": self.rationale,
        }


@dataclass
class SchemaVersion:
    """Identifies one side of a comparison."""
    provider_id: str
    version: str
    schema_hash: Optional[str] = None

    def to_dict(self) -> dict:
        result = {
            "providerId": self.provider_id,
            "version": self.version,
        }
        if self.schema_hash is not None:
            result["schemaHash"] = self.schema_hash
        return result


@dataclass
class AnalysisMetadata:
    """Execution metadata."""
    agent_version: str
    analyzed_at: str
    duration_ms: int
    determinism_hash: str

    def to_dict(self) -> dict:
        return {
            "agentVersion": self.agent_version,
            "analyzedAt": self.analyzed_at,
            "durationMs": self.duration_ms,
            "determinismHash": self.determinism_hash,
        }


@dataclass
class AnalysisOptions:
    """Per-request analysis options."""
    strictness: Strictness = Strictness.STANDARD
    include_upgrade_guidance: bool = True
    include_detailed_diff: bool = False
    analyze_categories: list[AnalysisCategory] = field(
        default_factory=lambda: list(CATEGORY_ORDER)
    )
    ignore_paths: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> AnalysisOptions:
        """Parse the wire form of the options, applying defaults."""
        from .exceptions import ValidationError

        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValidationError(
                "options must be an object",
                {"type": type(data).__name__}
            )

        options = cls()

        strictness = data.get('strictness', Strictness.STANDARD.value)
        try:
            options.strictness = Strictness(strictness)
        except ValueError:
            raise ValidationError(
                f"Invalid strictness: {strictness}",
                {"allowed": [s.value for s in Strictness]}
            )

        for key, attr in (
            ('includeUpgradeGuidance', 'include_upgrade_guidance'),
            ('includeDetailedDiff', 'include_detailed_diff'),
        ):
            if key in data:
                if not isinstance(data[key], bool):
                    raise ValidationError(f"{key} must be a boolean")
                setattr(options, attr, data[key])

        if 'analyzeCategories' in data:
            categories = data['analyzeCategories']
            if not isinstance(categories, list):
                raise ValidationError("analyzeCategories must be a list")
            try:
                options.analyze_categories = [AnalysisCategory(c) for c in categories]
            except ValueError:
                raise ValidationError(
                    "Invalid analyzeCategories",
                    {"allowed": [c.value for c in AnalysisCategory], "got": categories}
                )

        if 'ignorePaths' in data:
            ignore_paths = data['ignorePaths']
            if not isinstance(ignore_paths, list) or not all(
                isinstance(p, str) for p in ignore_paths
            ):
                raise ValidationError("ignorePaths must be a list of strings")
            options.ignore_paths = list(ignore_paths)

        return options

    def to_dict(self) -> dict:
        return {
            "strictness": self.strictness.value,
            "includeUpgradeGuidance": self.include_upgrade_guidance,
            "includeDetailedDiff": self.include_detailed_diff,
            "analyzeCategories": [c.value for c in self.analyze_categories],
            "ignorePaths": list(self.ignore_paths),
        }


@dataclass
class AnalysisRequest:
    """
    A compatibility analysis request.

    ``source_schema`` and ``target_schema`` may be canonical schema dicts or
    already-built ``CanonicalSchema`` objects.
    """
    request_id: str
    source_schema: Any
    target_schema: Any
    options: AnalysisOptions = field(default_factory=AnalysisOptions)

    @classmethod
    def from_dict(cls, data: dict) -> AnalysisRequest:
        """Build a request from its wire form; options are parsed lazily by the engine."""
        return cls(
            request_id=data.get('requestId'),
            source_schema=data.get('sourceSchema'),
            target_schema=data.get('targetSchema'),
            options=data.get('options'),
        )


@dataclass
class AnalysisResponse:
    """Complete analysis report; failures use the same shape with success=False."""
    request_id: Optional[str]
    success: bool
    source_version: SchemaVersion
    target_version: SchemaVersion
    verdict: Verdict
    summary: CompatibilitySummary
    version_recommendation: VersionRecommendation
    analysis_metadata: AnalysisMetadata
    changes: list[CompatibilityChange] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "requestId": self.request_id,
            "success": self.success,
            "sourceVersion": self.source_version.to_dict(),
            "targetVersion": self.target_version.to_dict(),
            "verdict": self.verdict.value,
            "summary": self.summary.to_dict(),
            "changes": [c.to_dict() for c in self.changes],
            "versionRecommendation": self.version_recommendation.to_dict(),
            "analysisMetadata": self.analysis_metadata.to_dict(),
            "warnings": list(self.warnings),
            "errors": list(self.errors),
        }
