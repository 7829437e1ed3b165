"""Analysis orchestrator for compatdiff."""

from __future__ import annotations

import logging
import time
import uuid
from enum import Enum
from typing import Any, Optional

from .comparators import SchemaComparator
from .events import EventFactory, EventSink, confidence_score
from .exceptions import (
    CompatDiffError,
    IncompatibleProvidersError,
    ResourceExhaustedError,
    ValidationError,
    SchemaParseError,
)
from .hashing import input_hash, output_hash, schema_hash
from .indexer import ReferenceIndexer
from .models import (
    CATEGORY_ORDER,
    AnalysisCategory,
    AnalysisMetadata,
    AnalysisOptions,
    AnalysisRequest,
    AnalysisResponse,
    BumpType,
    CompatibilitySummary,
    EngineConfig,
    FailureMode,
    SchemaVersion,
    Severity,
    Verdict,
    VersionRecommendation,
    format_issue,
    utc_timestamp,
)
from .schema import CanonicalSchema, SchemaLoader
from .verdict import (
    calculate_version_recommendation,
    determine_verdict,
    generate_upgrade_guidance,
    parse_semver,
    summarize,
)

logger = logging.getLogger(__name__)


class AnalysisState(Enum):
    VALIDATING = "validating"
    PRECONDITION_CHECK = "precondition_check"
    COMPARING = "comparing"
    AGGREGATING = "aggregating"
    DONE = "done"
    FAILED = "failed"


class CompatibilityEngine:
    """
    Orchestrates one compatibility analysis:

    1. Validating: request id, options and both schemas
    2. Precondition check: provider identity, version ordering
    3. Comparing: one comparator per selected category, in fixed order
    4. Aggregating: summary, verdict, version recommendation, guidance, hashes

    ``analyze`` never raises. Every failure is returned as an
    ``AnalysisResponse`` with ``success=False`` and a ``FailureMode`` code in
    ``errors``. Decision events are handed to the optional sink after the
    result is built; sink failures are logged and never change the result.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        event_sink: Optional[EventSink] = None
    ):
        """
        Initialize the engine.

        Args:
            config: Engine configuration (uses defaults if not provided)
            event_sink: Receiver for decision events; events are dropped if None
        """
        self.config = config or EngineConfig()
        self.event_sink = event_sink
        self.event_factory = EventFactory(self.config.agent_version)

    def analyze(self, request: AnalysisRequest | dict) -> AnalysisResponse:
        """
        Analyze the compatibility of two schema versions.

        Args:
            request: ``AnalysisRequest`` or its wire-form dict

        Returns:
            AnalysisResponse; ``success`` is False on any failure
        """
        start_time = time.time()
        trail: list[AnalysisState] = []
        request_id = self._raw_request_id(request)
        in_hash = ""
        events = []

        try:
            self._enter(trail, AnalysisState.VALIDATING)
            request = self._coerce_request(request)
            request_id = self._validate_request_id(request.request_id)
            options = self._parse_options(request.options)
            source = self._load_schema(request.source_schema, "source")
            target = self._load_schema(request.target_schema, "target")
            self._check_resources(source, "source")
            self._check_resources(target, "target")

            source_hash = schema_hash(source)
            target_hash = schema_hash(target)
            in_hash = input_hash(source_hash, target_hash, options)
            events.append(self.event_factory.initiated(request_id, in_hash, {
                "sourceVersion": source.metadata.version,
                "targetVersion": target.metadata.version,
                "sourceSchemaHash": source_hash,
                "targetSchemaHash": target_hash,
                "strictness": options.strictness.value,
                "categoriesToAnalyze": [c.value for c in options.analyze_categories],
            }))

            self._enter(trail, AnalysisState.PRECONDITION_CHECK)
            warnings = self._check_preconditions(source, target)

            self._enter(trail, AnalysisState.COMPARING)
            source_index = ReferenceIndexer(source, "source schema")
            target_index = ReferenceIndexer(target, "target schema")
            warnings.extend(source_index.warnings)
            warnings.extend(target_index.warnings)
            changes = self._run_comparators(source, target, options, source_index)

            self._enter(trail, AnalysisState.AGGREGATING)
            summary = summarize(changes)
            verdict = determine_verdict(changes, options.strictness, self.config)
            recommendation = calculate_version_recommendation(
                target.metadata.version, changes
            )
            if options.include_upgrade_guidance:
                for change in changes:
                    change.upgrade_guidance = generate_upgrade_guidance(change)
            out_hash = output_hash(verdict, summary, changes, recommendation)
            confidence = confidence_score(
                len(source_index.unresolved_types | target_index.unresolved_types)
            )

            duration_ms = int((time.time() - start_time) * 1000)
            response = AnalysisResponse(
                request_id=request_id,
                success=True,
                source_version=SchemaVersion(
                    source.metadata.provider_id, source.metadata.version, source_hash
                ),
                target_version=SchemaVersion(
                    target.metadata.provider_id, target.metadata.version, target_hash
                ),
                verdict=verdict,
                summary=summary,
                changes=changes,
                version_recommendation=recommendation,
                analysis_metadata=AnalysisMetadata(
                    agent_version=self.config.agent_version,
                    analyzed_at=utc_timestamp(),
                    duration_ms=duration_ms,
                    determinism_hash=out_hash,
                ),
                warnings=warnings,
            )
            self._enter(trail, AnalysisState.DONE)

            events.extend(self._result_events(
                request_id, in_hash, out_hash, target.metadata.version, response, confidence
            ))
            logger.info(
                "Analysis %s: %s, %d changes (%d breaking) in %dms",
                request_id, verdict.value, summary.total_changes,
                summary.breaking_changes, duration_ms
            )

        except CompatDiffError as e:
            self._enter(trail, AnalysisState.FAILED)
            logger.warning("Analysis %s failed: %s: %s", request_id, e.failure_mode.value, e.message)
            response = self._create_failed_response(
                request_id, e.failure_mode, e.message, start_time
            )
            events.append(self.event_factory.failed(
                request_id, in_hash, e.failure_mode, e.message
            ))
        except Exception as e:
            self._enter(trail, AnalysisState.FAILED)
            logger.exception("Unexpected failure analysing request %s", request_id)
            message = str(e) or type(e).__name__
            response = self._create_failed_response(
                request_id, FailureMode.ANALYSIS_FAILURE, message, start_time
            )
            events.append(self.event_factory.failed(
                request_id, in_hash, FailureMode.ANALYSIS_FAILURE, message
            ))

        logger.debug(
            "Request %s state trail: %s", request_id, " -> ".join(s.value for s in trail)
        )
        self._emit(events)
        return response

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _enter(trail: list[AnalysisState], state: AnalysisState):
        trail.append(state)

    @staticmethod
    def _raw_request_id(request: Any) -> Optional[str]:
        if isinstance(request, AnalysisRequest):
            value = request.request_id
        elif isinstance(request, dict):
            value = request.get('requestId')
        else:
            return None
        return value if isinstance(value, str) else None

    @staticmethod
    def _coerce_request(request: Any) -> AnalysisRequest:
        if isinstance(request, AnalysisRequest):
            return request
        if isinstance(request, dict):
            return AnalysisRequest.from_dict(request)
        raise ValidationError(
            "Request must be an AnalysisRequest or an object",
            {"type": type(request).__name__}
        )

    @staticmethod
    def _validate_request_id(request_id: Any) -> str:
        if not isinstance(request_id, str):
            raise ValidationError("requestId is required and must be a UUID string")
        try:
            uuid.UUID(request_id)
        except ValueError:
            raise ValidationError(
                f"requestId is not a valid UUID: {request_id}",
                {"requestId": request_id}
            )
        return request_id

    @staticmethod
    def _parse_options(options: Any) -> AnalysisOptions:
        if isinstance(options, AnalysisOptions):
            return options
        return AnalysisOptions.from_dict(options)

    @staticmethod
    def _load_schema(value: Any, side: str) -> CanonicalSchema:
        failure_mode = (
            FailureMode.INVALID_SOURCE_SCHEMA if side == "source"
            else FailureMode.INVALID_TARGET_SCHEMA
        )
        if isinstance(value, CanonicalSchema):
            return value
        if value is None:
            raise ValidationError(f"{side}Schema is required", failure_mode=failure_mode)

        try:
            return SchemaLoader.from_dict(value)
        except SchemaParseError as e:
            raise ValidationError(
                f"Invalid {side} schema: {e.message}",
                {"location": e.location, "reason": e.reason},
                failure_mode=failure_mode
            ) from e

    def _check_resources(self, schema: CanonicalSchema, side: str):
        elements = schema.element_count()
        if elements > self.config.max_schema_elements:
            raise ResourceExhaustedError(side, elements, self.config.max_schema_elements)

    @staticmethod
    def _check_preconditions(source: CanonicalSchema, target: CanonicalSchema) -> list[str]:
        """Fail on a provider mismatch; return recoverable warnings."""
        if source.metadata.provider_id != target.metadata.provider_id:
            raise IncompatibleProvidersError(
                source.metadata.provider_id, target.metadata.provider_id
            )

        warnings = []
        source_semver = parse_semver(source.metadata.version)
        target_semver = parse_semver(target.metadata.version)
        if source_semver and target_semver and target_semver < source_semver:
            warnings.append(format_issue(
                FailureMode.SCHEMA_VERSION_MISMATCH,
                f"target version {target.metadata.version} is lower than "
                f"source version {source.metadata.version}"
            ))
        return warnings

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    def _run_comparators(
        self,
        source: CanonicalSchema,
        target: CanonicalSchema,
        options: AnalysisOptions,
        source_index: ReferenceIndexer
    ) -> list:
        comparator = SchemaComparator(
            ignore_paths=options.ignore_paths,
            affected_languages=self.config.affected_languages,
            include_detailed_diff=options.include_detailed_diff,
        )
        runners = {
            AnalysisCategory.TYPES: lambda: comparator.compare_types(
                source, target, source_index
            ),
            AnalysisCategory.ENDPOINTS: lambda: comparator.compare_endpoints(source, target),
            AnalysisCategory.AUTHENTICATION: lambda: comparator.compare_authentication(
                source, target
            ),
            AnalysisCategory.ERRORS: lambda: comparator.compare_errors(source, target),
        }

        selected = set(options.analyze_categories)
        changes = []
        for category in CATEGORY_ORDER:
            if category in selected:
                found = runners[category]()
                logger.debug("%s: %d changes", category.value, len(found))
                changes.extend(found)
        return changes

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _result_events(
        self,
        request_id: str,
        in_hash: str,
        out_hash: str,
        current_version: str,
        response: AnalysisResponse,
        confidence: float
    ) -> list:
        events = [self.event_factory.completed(request_id, in_hash, out_hash, {
            "success": True,
            "verdict": response.verdict.value,
            "totalChanges": response.summary.total_changes,
            "breakingChanges": response.summary.breaking_changes,
            "nonBreakingChanges": response.summary.non_breaking_changes,
            "recommendedBump": response.version_recommendation.bump_type.value,
            "durationMs": response.analysis_metadata.duration_ms,
            "determinismHash": out_hash,
        }, confidence)]

        for change in response.changes:
            if change.severity == Severity.BREAKING:
                events.append(self.event_factory.breaking_change(
                    request_id, in_hash, out_hash, change, confidence
                ))

        events.append(self.event_factory.version_recommendation(
            request_id, in_hash, out_hash, current_version,
            response.version_recommendation, confidence
        ))
        return events

    def _emit(self, events: list):
        if self.event_sink is None:
            return
        for event in events:
            try:
                result = self.event_sink.emit(event)
            except Exception as e:
                logger.warning("Event sink raised for %s: %s", event.event_type.value, e)
                continue
            if not result.success:
                logger.warning(
                    "Failed to emit %s event %s: %s",
                    event.event_type.value, result.event_id, result.error
                )

    # ------------------------------------------------------------------
    # Failure
    # ------------------------------------------------------------------

    def _create_failed_response(
        self,
        request_id: Optional[str],
        failure_mode: FailureMode,
        message: str,
        start_time: float
    ) -> AnalysisResponse:
        """Create a failure response with the same shape as a success."""
        return AnalysisResponse(
            request_id=request_id,
            success=False,
            source_version=SchemaVersion(provider_id="", version="0.0.0"),
            target_version=SchemaVersion(provider_id="", version="0.0.0"),
            verdict=Verdict.INCOMPATIBLE,
            summary=CompatibilitySummary(),
            changes=[],
            version_recommendation=VersionRecommendation(
                bump_type=BumpType.NONE,
                recommended_version="0.0.0",
                rationale="Analysis failed",
            ),
            analysis_metadata=AnalysisMetadata(
                agent_version=self.config.agent_version,
                analyzed_at=utc_timestamp(),
                duration_ms=int((time.time() - start_time) * 1000),
                determinism_hash="",
            ),
            warnings=[],
            errors=[format_issue(failure_mode, message)],
        )


def analyze(
    request: AnalysisRequest | dict,
    config: Optional[EngineConfig] = None,
    event_sink: Optional[EventSink] = None
) -> AnalysisResponse:
    """
    Convenience function to analyze one request.

    Args:
        request: ``AnalysisRequest`` or its wire-form dict
        config: Optional engine configuration
        event_sink: Optional receiver for decision events

    Returns:
        AnalysisResponse (never raises)
    """
    engine = CompatibilityEngine(config, event_sink)
    return engine.analyze(request)
