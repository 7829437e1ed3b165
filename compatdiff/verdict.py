"""Verdict, version recommendation and upgrade guidance."""

from __future__ import annotations

import re
from collections import Counter
from typing import Optional

from .models import (
    BumpType,
    ChangeCategory,
    CompatibilityChange,
    CompatibilitySummary,
    EngineConfig,
    Severity,
    Strictness,
    Verdict,
    VersionRecommendation,
)

SEMVER_PATTERN = re.compile(r'^(\d+)\.(\d+)\.(\d+)')

GUIDANCE_TEMPLATES = {
    ChangeCategory.TYPE_ADDED: 'New type "{name}" is available. No migration required.',
    ChangeCategory.TYPE_REMOVED: (
        'Type "{name}" has been removed. Update all references to use alternative types.'
    ),
    ChangeCategory.TYPE_MODIFIED: (
        'Type "{name}" has been modified. Review property changes and update usage accordingly.'
    ),
    ChangeCategory.PROPERTY_ADDED: (
        'New property added at "{path}". No migration required for existing code.'
    ),
    ChangeCategory.PROPERTY_REMOVED: (
        'Property at "{path}" has been removed. Remove all references from your code.'
    ),
    ChangeCategory.PROPERTY_MODIFIED: (
        'Property at "{path}" has been modified. Review the changes and update your code.'
    ),
    ChangeCategory.ENDPOINT_ADDED: 'New endpoint available. No migration required.',
    ChangeCategory.ENDPOINT_REMOVED: (
        'Endpoint at "{path}" has been removed. Update all API calls to use alternative endpoints.'
    ),
    ChangeCategory.ENDPOINT_MODIFIED: (
        'Endpoint at "{path}" has been modified. Review parameter and response changes.'
    ),
    ChangeCategory.PARAMETER_ADDED: (
        "New parameter added. Optional parameters don't require code changes."
    ),
    ChangeCategory.PARAMETER_REMOVED: 'Parameter has been removed. Remove from all API calls.',
    ChangeCategory.PARAMETER_MODIFIED: (
        'Parameter has been modified. Update your API calls accordingly.'
    ),
    ChangeCategory.RESPONSE_ADDED: (
        'New response type added. Handle the new response in your code.'
    ),
    ChangeCategory.RESPONSE_REMOVED: 'Response type has been removed. Update response handling.',
    ChangeCategory.RESPONSE_MODIFIED: (
        'Response structure has been modified. Update response parsing.'
    ),
    ChangeCategory.AUTH_ADDED: 'New authentication method available.',
    ChangeCategory.AUTH_REMOVED: (
        'Authentication method removed. Switch to alternative auth method.'
    ),
    ChangeCategory.AUTH_MODIFIED: (
        'Authentication requirements changed. Update your auth configuration.'
    ),
    ChangeCategory.ERROR_ADDED: 'New error code added. Consider adding error handling for it.',
    ChangeCategory.ERROR_REMOVED: (
        'Error code removed. Can remove specific error handling if no longer needed.'
    ),
    ChangeCategory.ERROR_MODIFIED: 'Error format changed. Update error handling code.',
    ChangeCategory.METADATA_CHANGED: 'Metadata updated. Usually no code changes required.',
}

FALLBACK_GUIDANCE = 'Review the change at "{path}" and update your code accordingly.'


def summarize(changes: list[CompatibilityChange]) -> CompatibilitySummary:
    """Count changes by severity and by category."""
    by_severity = Counter(c.severity for c in changes)
    by_category = Counter(c.category.value for c in changes)

    return CompatibilitySummary(
        total_changes=len(changes),
        breaking_changes=by_severity[Severity.BREAKING],
        non_breaking_changes=by_severity[Severity.NON_BREAKING],
        patch_changes=by_severity[Severity.PATCH],
        informational_changes=by_severity[Severity.INFORMATIONAL],
        changes_by_category=dict(sorted(by_category.items())),
    )


def determine_verdict(
    changes: list[CompatibilityChange],
    strictness: Strictness,
    config: Optional[EngineConfig] = None
) -> Verdict:
    """
    Aggregate changes into a verdict.

    Without breaking changes the verdict is backwards-compatible when anything
    non-breaking changed, fully-compatible otherwise. With breaking changes it
    is incompatible once the breaking count exceeds the strictness threshold
    (strict 0, standard 10, lenient 5 by default), breaking below it.
    """
    config = config or EngineConfig()
    breaking = sum(1 for c in changes if c.severity == Severity.BREAKING)

    if breaking == 0:
        if any(c.severity == Severity.NON_BREAKING for c in changes):
            return Verdict.BACKWARDS_COMPATIBLE
        return Verdict.FULLY_COMPATIBLE

    if breaking > config.threshold_for(strictness):
        return Verdict.INCOMPATIBLE
    return Verdict.BREAKING


def calculate_version_recommendation(
    current_version: str,
    changes: list[CompatibilityChange]
) -> VersionRecommendation:
    """
    Recommend the semantic-version bump implied by the changes.

    An unparseable version yields bump ``none`` with the input echoed back.
    """
    match = SEMVER_PATTERN.match(current_version or '')
    if not match:
        return VersionRecommendation(
            bump_type=BumpType.NONE,
            recommended_version=current_version,
            rationale="Unable to parse current version",
        )

    major, minor, patch = (int(part) for part in match.groups())
    counts = Counter(c.severity for c in changes)

    if counts[Severity.BREAKING]:
        return VersionRecommendation(
            bump_type=BumpType.MAJOR,
            recommended_version=f"{major + 1}.0.0",
            rationale=(
                f"Breaking changes detected: {counts[Severity.BREAKING]} "
                f"breaking change(s) require major version bump"
            ),
        )

    if counts[Severity.NON_BREAKING]:
        return VersionRecommendation(
            bump_type=BumpType.MINOR,
            recommended_version=f"{major}.{minor + 1}.0",
            rationale=(
                f"New features/additions detected: {counts[Severity.NON_BREAKING]} "
                f"non-breaking change(s) require minor version bump"
            ),
        )

    if counts[Severity.PATCH]:
        return VersionRecommendation(
            bump_type=BumpType.PATCH,
            recommended_version=f"{major}.{minor}.{patch + 1}",
            rationale=f"Backwards-compatible fixes: {counts[Severity.PATCH]} patch change(s)",
        )

    return VersionRecommendation(
        bump_type=BumpType.NONE,
        recommended_version=current_version,
        rationale="No significant changes detected",
    )


def parse_semver(version: str) -> Optional[tuple[int, int, int]]:
    """(major, minor, patch) or None when the version does not parse."""
    match = SEMVER_PATTERN.match(version or '')
    if not match:
        return None
    return tuple(int(part) for part in match.groups())


def generate_upgrade_guidance(change: CompatibilityChange) -> str:
    """Static, category-indexed upgrade hint for a change."""
    segments = change.path.split('.')
    # types.<Name>... names the type; other paths use their last segment
    name = segments[1] if segments[0] == 'types' and len(segments) > 1 else segments[-1]
    template = GUIDANCE_TEMPLATES.get(change.category, FALLBACK_GUIDANCE)
    return template.format(name=name, path=change.path)
