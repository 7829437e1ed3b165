"""Decision events and the sinks that receive them."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import requests

from .models import (
    AGENT_ID,
    AGENT_VERSION,
    CompatibilityChange,
    FailureMode,
    VersionRecommendation,
    utc_timestamp,
)

logger = logging.getLogger(__name__)

EVENTS_ENDPOINT = "/api/v1/events"


class EventType(Enum):
    INITIATED = "version_compatibility_analysis.initiated"
    COMPLETED = "version_compatibility_analysis.completed"
    FAILED = "version_compatibility_analysis.failed"
    BREAKING_CHANGE = "version_compatibility_analysis.breaking_change"
    VERSION_RECOMMENDATION = "version_compatibility_analysis.version_recommendation"


def confidence_score(unresolved_types: int) -> float:
    """
    Confidence in an analysis result.

    Fully resolved schemas give 1.0; every unresolved type id lowers the
    score by 0.05, down to 0.5.
    """
    return max(0.5, round(1.0 - 0.05 * unresolved_types, 2))


def confidence_semantics(score: float) -> str:
    return "deterministic" if score >= 1.0 else "constraint_based"


@dataclass
class DecisionEvent:
    """An auditable record of one analysis decision."""
    event_type: EventType
    request_id: Optional[str]
    input_hash: str
    rationale: str
    payload: dict[str, Any] = field(default_factory=dict)
    output_hash: Optional[str] = None
    confidence_score: float = 1.0
    agent_id: str = AGENT_ID
    agent_version: str = AGENT_VERSION
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=utc_timestamp)

    def to_dict(self) -> dict:
        result = {
            "eventId": self.event_id,
            "eventType": self.event_type.value,
            "agentId": self.agent_id,
            "agentVersion": self.agent_version,
            "requestId": self.request_id,
            "timestamp": self.timestamp,
            "confidenceScore": self.confidence_score,
            "confidenceSemantics": confidence_semantics(self.confidence_score),
            "inputHash": self.input_hash,
            "rationale": self.rationale,
            "payload": self.payload,
        }
        if self.output_hash is not None:
            result["outputHash"] = self.output_hash
        return result


@dataclass
class EmitResult:
    """Outcome of handing one event to a sink."""
    success: bool
    event_id: Optional[str] = None
    error: Optional[str] = None


class EventFactory:
    """Builds the decision events of one analysis run."""

    def __init__(self, agent_version: str = AGENT_VERSION):
        self.agent_version = agent_version

    def _event(self, event_type: EventType, request_id, input_hash, rationale, payload, **kwargs):
        return DecisionEvent(
            event_type=event_type,
            request_id=request_id,
            input_hash=input_hash,
            rationale=rationale,
            payload=payload,
            agent_version=self.agent_version,
            **kwargs
        )

    def initiated(self, request_id: str, input_hash: str, payload: dict) -> DecisionEvent:
        return self._event(
            EventType.INITIATED, request_id, input_hash,
            "Compatibility analysis initiated", payload
        )

    def completed(
        self,
        request_id: str,
        input_hash: str,
        output_hash: str,
        payload: dict,
        confidence: float = 1.0
    ) -> DecisionEvent:
        return self._event(
            EventType.COMPLETED, request_id, input_hash,
            f"Analysis completed with verdict {payload.get('verdict')}", payload,
            output_hash=output_hash, confidence_score=confidence
        )

    def failed(
        self,
        request_id: Optional[str],
        input_hash: str,
        failure_mode: FailureMode,
        message: str,
        recoverable: bool = False,
        partial_analysis: bool = False
    ) -> DecisionEvent:
        return self._event(
            EventType.FAILED, request_id, input_hash,
            f"Analysis failed: {failure_mode.value}",
            {
                "failureMode": failure_mode.value,
                "errorMessage": message,
                "recoverable": recoverable,
                "partialAnalysis": partial_analysis,
            },
            confidence_score=0.0
        )

    def breaking_change(
        self,
        request_id: str,
        input_hash: str,
        output_hash: str,
        change: CompatibilityChange,
        confidence: float = 1.0
    ) -> DecisionEvent:
        return self._event(
            EventType.BREAKING_CHANGE, request_id, input_hash,
            change.description,
            {
                "changeId": change.change_id,
                "category": change.category.value,
                "path": change.path,
                "affectedComponents": list(change.impact.affected_components),
                "migrationComplexity": change.impact.migration_complexity,
            },
            output_hash=output_hash, confidence_score=confidence
        )

    def version_recommendation(
        self,
        request_id: str,
        input_hash: str,
        output_hash: str,
        current_version: str,
        recommendation: VersionRecommendation,
        confidence: float = 1.0
    ) -> DecisionEvent:
        payload = {"currentVersion": current_version}
        payload.update(recommendation.to_dict())
        return self._event(
            EventType.VERSION_RECOMMENDATION, request_id, input_hash,
            recommendation.rationale, payload,
            output_hash=output_hash, confidence_score=confidence
        )


class EventSink:
    """Receives decision events. Subclasses implement ``emit``."""

    def emit(self, event: DecisionEvent) -> EmitResult:
        raise NotImplementedError


class InMemoryEventSink(EventSink):
    """Collects events in a list."""

    def __init__(self):
        self.events: list[DecisionEvent] = []

    def emit(self, event: DecisionEvent) -> EmitResult:
        self.events.append(event)
        return EmitResult(success=True, event_id=event.event_id)

    def of_type(self, event_type: EventType) -> list[DecisionEvent]:
        return [e for e in self.events if e.event_type == event_type]


class HttpEventSink(EventSink):
    """
    POSTs each event as JSON to ``<base_url>/api/v1/events``.

    Transport errors and 5xx responses are retried up to ``retry_attempts``
    times with a linearly growing delay; 4xx responses are returned at once.
    Never raises: every outcome is reported through ``EmitResult``.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        retry_attempts: int = 3,
        retry_delay: float = 0.1,
        agent_version: str = AGENT_VERSION
    ):
        self.url = base_url.rstrip('/') + EVENTS_ENDPOINT
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay
        self.headers = {
            "Content-Type": "application/json",
            "X-Agent-ID": AGENT_ID,
            "X-Agent-Version": agent_version,
        }

    def emit(self, event: DecisionEvent) -> EmitResult:
        error = "Max retry attempts exceeded"

        for attempt in range(1, self.retry_attempts + 1):
            try:
                response = requests.post(
                    self.url,
                    json=event.to_dict(),
                    headers=self.headers,
                    timeout=self.timeout,
                )
            except requests.exceptions.RequestException as e:
                error = str(e)
                logger.warning(
                    "Event %s delivery attempt %d failed: %s", event.event_id, attempt, e
                )
            else:
                if response.ok:
                    return EmitResult(success=True, event_id=event.event_id)
                error = f"HTTP {response.status_code}: {response.text[:200]}"
                if 400 <= response.status_code < 500:
                    logger.warning("Event %s rejected: %s", event.event_id, error)
                    return EmitResult(success=False, event_id=event.event_id, error=error)
                logger.warning(
                    "Event %s delivery attempt %d failed: %s", event.event_id, attempt, error
                )

            if attempt < self.retry_attempts:
                time.sleep(self.retry_delay * attempt)

        return EmitResult(success=False, event_id=event.event_id, error=error)
