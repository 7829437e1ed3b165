"""Canonical hashing for reproducibility checks."""

from __future__ import annotations

import hashlib
import json
from enum import Enum
from typing import Any

from .models import (
    AnalysisOptions,
    CompatibilityChange,
    CompatibilitySummary,
    Verdict,
    VersionRecommendation,
)


def _default(value: Any) -> Any:
    """JSON fallback for enums, models and sets."""
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, 'to_dict'):
        return value.to_dict()
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    if isinstance(value, tuple):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not hashable as JSON")


def canonical_json(obj: Any) -> str:
    """
    Serialize an object to its canonical JSON text.

    Object keys are sorted at every depth and separators are compact, so
    two equal structures always serialize to the same string.
    """
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(',', ':'),
        ensure_ascii=False,
        default=_default,
    )


def hash_object(obj: Any) -> str:
    """SHA-256 hex digest of the canonical JSON form."""
    return hashlib.sha256(canonical_json(obj).encode('utf-8')).hexdigest()


def schema_hash(schema) -> str:
    """Hash a CanonicalSchema (or its dict form)."""
    data = schema.to_dict() if hasattr(schema, 'to_dict') else schema
    return hash_object(data)


def normalize_options(options: AnalysisOptions) -> dict:
    """Options with order-insensitive lists sorted."""
    return {
        "strictness": options.strictness.value,
        "includeUpgradeGuidance": options.include_upgrade_guidance,
        "includeDetailedDiff": options.include_detailed_diff,
        "analyzeCategories": sorted({c.value for c in options.analyze_categories}),
        "ignorePaths": sorted(set(options.ignore_paths)),
    }


def input_hash(source_hash: str, target_hash: str, options: AnalysisOptions) -> str:
    """Hash identifying the inputs of one analysis."""
    return hash_object({
        "sourceHash": source_hash,
        "targetHash": target_hash,
        "options": normalize_options(options),
    })


def simplify_changes(changes: list[CompatibilityChange]) -> list[dict]:
    """Reduce changes to (category, path, severity), sorted by a stable key."""
    simplified = [
        {
            "category": c.category.value,
            "path": c.path,
            "severity": c.severity.value,
        }
        for c in changes
    ]
    return sorted(simplified, key=lambda c: (c["category"], c["path"], c["severity"]))


def output_hash(
    verdict: Verdict,
    summary: CompatibilitySummary,
    changes: list[CompatibilityChange],
    recommendation: VersionRecommendation,
) -> str:
    """
    Determinism hash over the analysis result.

    The change list is sorted before hashing, so the hash does not depend on
    the order in which comparators produced changes.
    """
    return hash_object({
        "verdict": verdict.value,
        "summary": summary.to_dict(),
        "changes": simplify_changes(changes),
        "versionRecommendation": recommendation.to_dict(),
    })
