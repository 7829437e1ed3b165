"""
compatdiff - Schema Compatibility Analysis Engine

Compares two versions of a canonical API schema (types, endpoints,
authentication, errors) and reports every difference with a severity,
an overall compatibility verdict and a semantic-version bump
recommendation. Results are deterministic and carry reproducibility hashes.
"""

from .engine import CompatibilityEngine, AnalysisState, analyze
from .comparators import SchemaComparator
from .indexer import ReferenceIndexer
from .schema import CanonicalSchema, SchemaLoader, TypeKind
from .models import (
    EngineConfig,
    AnalysisRequest,
    AnalysisOptions,
    AnalysisResponse,
    CompatibilityChange,
    ChangeCategory,
    Severity,
    Strictness,
    Verdict,
    BumpType,
    FailureMode,
)
from .verdict import (
    summarize,
    determine_verdict,
    calculate_version_recommendation,
    generate_upgrade_guidance,
)
from .events import (
    DecisionEvent,
    EmitResult,
    EventSink,
    InMemoryEventSink,
    HttpEventSink,
)
from .exceptions import CompatDiffError, ValidationError, SchemaParseError
from .runner import FixtureRunner, ScenarioResult, GlobalReport

__version__ = "1.0.0"
__all__ = [
    # Engine
    "CompatibilityEngine",
    "AnalysisState",
    "analyze",
    "EngineConfig",
    # Schema
    "CanonicalSchema",
    "SchemaLoader",
    "TypeKind",
    "ReferenceIndexer",
    "SchemaComparator",
    # Reports
    "AnalysisRequest",
    "AnalysisOptions",
    "AnalysisResponse",
    "CompatibilityChange",
    "ChangeCategory",
    "Severity",
    "Strictness",
    "Verdict",
    "BumpType",
    "FailureMode",
    # Verdict
    "summarize",
    "determine_verdict",
    "calculate_version_recommendation",
    "generate_upgrade_guidance",
    # Events
    "DecisionEvent",
    "EmitResult",
    "EventSink",
    "InMemoryEventSink",
    "HttpEventSink",
    # Errors
    "CompatDiffError",
    "ValidationError",
    "SchemaParseError",
    # Fixture Runner
    "FixtureRunner",
    "ScenarioResult",
    "GlobalReport",
]
