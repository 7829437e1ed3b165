"""Category comparators: types, endpoints, authentication and errors."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from .hashing import canonical_json
from .indexer import ReferenceIndexer
from .jsonpath_utils import is_ignored
from .models import (
    DEFAULT_AFFECTED_LANGUAGES,
    ChangeCategory,
    CompatibilityChange,
    Impact,
    Severity,
)
from .schema import (
    ArrayType,
    CanonicalSchema,
    EndpointDefinition,
    EnumType,
    ObjectType,
    PrimitiveType,
    ReferenceType,
    TypeKind,
    UnionType,
    ref_id,
)

logger = logging.getLogger(__name__)

# Namespace for name-based change ids; equal changes get equal ids across runs.
CHANGE_ID_NAMESPACE = uuid.UUID("6f1c9a52-3e7b-5d0a-9b1e-2c4f8d7a6e31")


def _required_severity(required: bool) -> Severity:
    return Severity.BREAKING if required else Severity.NON_BREAKING


class SchemaComparator:
    """
    Detects breaking and non-breaking changes between two schema versions.

    Each ``compare_*`` method is independent and side-effect free. Entities
    are visited in sorted id order and every entity's changes are sorted by
    (path, category), so the output never depends on input array order.

    Args:
        ignore_paths: Dotted path prefixes (``*`` matches one segment) whose
            entities and changes are skipped
        affected_languages: Languages listed in every change's impact
        include_detailed_diff: Attach a ``-``/``+`` diff text to each change
    """

    def __init__(
        self,
        ignore_paths: Optional[list[str]] = None,
        affected_languages: Optional[list[str]] = None,
        include_detailed_diff: bool = False
    ):
        self.ignore_paths = list(ignore_paths or [])
        self.affected_languages = list(
            affected_languages if affected_languages is not None
            else DEFAULT_AFFECTED_LANGUAGES
        )
        self.include_detailed_diff = include_detailed_diff

    # ------------------------------------------------------------------
    # Types
    # ------------------------------------------------------------------

    def compare_types(
        self,
        source: CanonicalSchema,
        target: CanonicalSchema,
        source_index: Optional[ReferenceIndexer] = None
    ) -> list[CompatibilityChange]:
        """
        Compare type definitions, indexed by type id.

        Args:
            source: Baseline schema
            target: New schema
            source_index: Prebuilt reference index of the source schema;
                built here when not supplied

        Returns:
            Changes ordered by type id, then path
        """
        index = source_index or ReferenceIndexer(source, "source schema")
        source_types = source.type_map()
        target_types = target.type_map()
        changes = []

        for type_id in sorted(set(source_types) | set(target_types)):
            source_type = source_types.get(type_id)
            target_type = target_types.get(type_id)
            path = f"types.{(source_type or target_type).name}"

            if self._ignored(path):
                continue

            if target_type is None:
                entity_changes = [self._create_change(
                    category=ChangeCategory.TYPE_REMOVED,
                    severity=Severity.BREAKING,
                    path=path,
                    description=f'Type "{source_type.name}" has been removed',
                    source_value=source_type.name,
                    affected_components=index.references_to(type_id),
                    migration_complexity=4,
                )]
            elif source_type is None:
                entity_changes = [self._create_change(
                    category=ChangeCategory.TYPE_ADDED,
                    severity=Severity.NON_BREAKING,
                    path=path,
                    description=f'New type "{target_type.name}" added',
                    target_value=target_type.name,
                    affected_components=[],
                    migration_complexity=1,
                )]
            elif source_type.kind != target_type.kind:
                # A kind change is breaking in either direction.
                entity_changes = [self._create_change(
                    category=ChangeCategory.TYPE_MODIFIED,
                    severity=Severity.BREAKING,
                    path=f"{path}.kind",
                    description=(
                        f'Type "{source_type.name}" kind changed from '
                        f'{source_type.kind.value} to {target_type.kind.value}'
                    ),
                    source_value=source_type.kind.value,
                    target_value=target_type.kind.value,
                    affected_components=index.references_to(type_id),
                    migration_complexity=5,
                )]
            else:
                compare = self.KIND_COMPARATORS[source_type.kind]
                entity_changes = compare(self, source_type, target_type, path)

            changes.extend(self._finalize(entity_changes))

        logger.debug("Type comparison produced %d changes", len(changes))
        return changes

    def _compare_primitive(
        self,
        source_type: PrimitiveType,
        target_type: PrimitiveType,
        path: str
    ) -> list[CompatibilityChange]:
        if source_type.primitive_kind == target_type.primitive_kind:
            return []
        return [self._create_change(
            category=ChangeCategory.TYPE_MODIFIED,
            severity=Severity.BREAKING,
            path=f"{path}.primitiveKind",
            description=(
                f'Type "{source_type.name}" primitive changed from '
                f'{source_type.primitive_kind} to {target_type.primitive_kind}'
            ),
            source_value=source_type.primitive_kind,
            target_value=target_type.primitive_kind,
            affected_components=[source_type.name],
            migration_complexity=3,
        )]

    def _compare_object_properties(
        self,
        source_type: ObjectType,
        target_type: ObjectType,
        path: str
    ) -> list[CompatibilityChange]:
        """Property-level diff of two object types."""
        changes = []
        type_name = source_type.name
        source_props = {p.name: p for p in source_type.properties}
        target_props = {p.name: p for p in target_type.properties}

        for name in sorted(set(source_props) | set(target_props)):
            source_prop = source_props.get(name)
            target_prop = target_props.get(name)
            prop_path = f"{path}.properties.{name}"
            component = f"{type_name}.{name}"

            if target_prop is None:
                changes.append(self._create_change(
                    category=ChangeCategory.PROPERTY_REMOVED,
                    severity=_required_severity(source_prop.required),
                    path=prop_path,
                    description=(
                        f'Property "{name}" removed from type "{type_name}"'
                        + (' (was required)' if source_prop.required else '')
                    ),
                    source_value=name,
                    affected_components=[component],
                    migration_complexity=4 if source_prop.required else 2,
                ))
                continue

            if source_prop is None:
                kind = 'required' if target_prop.required else 'optional'
                changes.append(self._create_change(
                    category=ChangeCategory.PROPERTY_ADDED,
                    severity=_required_severity(target_prop.required),
                    path=prop_path,
                    description=f'New {kind} property "{name}" added to type "{type_name}"',
                    target_value=name,
                    affected_components=[component],
                    migration_complexity=3 if target_prop.required else 1,
                ))
                continue

            if source_prop.required != target_prop.required:
                tightened = target_prop.required
                changes.append(self._create_change(
                    category=ChangeCategory.PROPERTY_MODIFIED,
                    severity=_required_severity(tightened),
                    path=f"{prop_path}.required",
                    description=(
                        f'Property "{name}" required status changed from '
                        f'{str(source_prop.required).lower()} to '
                        f'{str(target_prop.required).lower()}'
                    ),
                    source_value=source_prop.required,
                    target_value=target_prop.required,
                    affected_components=[component],
                    migration_complexity=3 if tightened else 1,
                ))

            if ref_id(source_prop.type) != ref_id(target_prop.type):
                changes.append(self._create_change(
                    category=ChangeCategory.PROPERTY_MODIFIED,
                    severity=Severity.BREAKING,
                    path=f"{prop_path}.type",
                    description=f'Property "{name}" type changed',
                    source_value=ref_id(source_prop.type),
                    target_value=ref_id(target_prop.type),
                    affected_components=[component],
                    migration_complexity=4,
                ))

        return changes

    def _compare_enum_values(
        self,
        source_type: EnumType,
        target_type: EnumType,
        path: str
    ) -> list[CompatibilityChange]:
        """
        Removed values are breaking. Added values are non-breaking at every
        strictness level.
        """
        changes = []
        type_name = source_type.name

        for value in source_type.values:
            if value not in target_type.values:
                changes.append(self._create_change(
                    category=ChangeCategory.TYPE_MODIFIED,
                    severity=Severity.BREAKING,
                    path=f"{path}.values.{value}",
                    description=f'Enum value "{value}" removed from "{type_name}"',
                    source_value=value,
                    affected_components=[f"{type_name}.{value}"],
                    migration_complexity=3,
                ))

        for value in target_type.values:
            if value not in source_type.values:
                changes.append(self._create_change(
                    category=ChangeCategory.TYPE_MODIFIED,
                    severity=Severity.NON_BREAKING,
                    path=f"{path}.values.{value}",
                    description=f'New enum value "{value}" added to "{type_name}"',
                    target_value=value,
                    affected_components=[],
                    migration_complexity=1,
                ))

        return changes

    def _compare_union_variants(
        self,
        source_type: UnionType,
        target_type: UnionType,
        path: str
    ) -> list[CompatibilityChange]:
        changes = []
        type_name = source_type.name
        source_variants = {ref_id(v) for v in source_type.variants}
        target_variants = {ref_id(v) for v in target_type.variants}

        for type_id in sorted(source_variants - target_variants):
            changes.append(self._create_change(
                category=ChangeCategory.TYPE_MODIFIED,
                severity=Severity.BREAKING,
                path=f"{path}.variants.{type_id}",
                description=f'Union variant "{type_id}" removed from "{type_name}"',
                source_value=type_id,
                affected_components=[type_name],
                migration_complexity=4,
            ))

        # Widening an output union is non-breaking
        for type_id in sorted(target_variants - source_variants):
            changes.append(self._create_change(
                category=ChangeCategory.TYPE_MODIFIED,
                severity=Severity.NON_BREAKING,
                path=f"{path}.variants.{type_id}",
                description=f'New union variant "{type_id}" added to "{type_name}"',
                target_value=type_id,
                affected_components=[],
                migration_complexity=1,
            ))

        return changes

    def _compare_array_items(
        self,
        source_type: ArrayType,
        target_type: ArrayType,
        path: str
    ) -> list[CompatibilityChange]:
        if ref_id(source_type.items) == ref_id(target_type.items):
            return []
        return [self._create_change(
            category=ChangeCategory.TYPE_MODIFIED,
            severity=Severity.BREAKING,
            path=f"{path}.items",
            description=f'Array "{source_type.name}" element type changed',
            source_value=ref_id(source_type.items),
            target_value=ref_id(target_type.items),
            affected_components=[f"{source_type.name}[]"],
            migration_complexity=4,
        )]

    def _compare_reference_target(
        self,
        source_type: ReferenceType,
        target_type: ReferenceType,
        path: str
    ) -> list[CompatibilityChange]:
        if ref_id(source_type.target) == ref_id(target_type.target):
            return []
        return [self._create_change(
            category=ChangeCategory.TYPE_MODIFIED,
            severity=Severity.BREAKING,
            path=f"{path}.target",
            description=f'Reference "{source_type.name}" now points at a different type',
            source_value=ref_id(source_type.target),
            target_value=ref_id(target_type.target),
            affected_components=[source_type.name],
            migration_complexity=4,
        )]

    # One comparator per kind; checked for completeness below the class.
    KIND_COMPARATORS = {
        TypeKind.PRIMITIVE: _compare_primitive,
        TypeKind.OBJECT: _compare_object_properties,
        TypeKind.ARRAY: _compare_array_items,
        TypeKind.UNION: _compare_union_variants,
        TypeKind.ENUM: _compare_enum_values,
        TypeKind.REFERENCE: _compare_reference_target,
    }

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def compare_endpoints(
        self,
        source: CanonicalSchema,
        target: CanonicalSchema
    ) -> list[CompatibilityChange]:
        """Compare endpoints, indexed by operationId."""
        source_endpoints = source.endpoint_map()
        target_endpoints = target.endpoint_map()
        changes = []

        for op_id in sorted(set(source_endpoints) | set(target_endpoints)):
            source_ep = source_endpoints.get(op_id)
            target_ep = target_endpoints.get(op_id)
            endpoint = source_ep or target_ep
            path = f"endpoints.{endpoint.path}.{endpoint.method}"

            if self._ignored(path):
                continue

            if target_ep is None:
                entity_changes = [self._create_change(
                    category=ChangeCategory.ENDPOINT_REMOVED,
                    severity=Severity.BREAKING,
                    path=path,
                    description=(
                        f"Endpoint {source_ep.method} {source_ep.path} has been removed"
                    ),
                    source_value=op_id,
                    affected_components=[op_id],
                    migration_complexity=5,
                )]
            elif source_ep is None:
                entity_changes = [self._create_change(
                    category=ChangeCategory.ENDPOINT_ADDED,
                    severity=Severity.NON_BREAKING,
                    path=path,
                    description=f"New endpoint {target_ep.method} {target_ep.path} added",
                    target_value=op_id,
                    affected_components=[],
                    migration_complexity=1,
                )]
            else:
                entity_changes = self._compare_endpoint(source_ep, target_ep, path)

            changes.extend(self._finalize(entity_changes))

        logger.debug("Endpoint comparison produced %d changes", len(changes))
        return changes

    def _compare_endpoint(
        self,
        source: EndpointDefinition,
        target: EndpointDefinition,
        path: str
    ) -> list[CompatibilityChange]:
        changes = []
        op_id = source.operation_id

        if source.path != target.path:
            changes.append(self._create_change(
                category=ChangeCategory.ENDPOINT_MODIFIED,
                severity=Severity.BREAKING,
                path=f"{path}.path",
                description=f"Endpoint path changed from {source.path} to {target.path}",
                source_value=source.path,
                target_value=target.path,
                affected_components=[op_id],
                migration_complexity=4,
            ))

        if source.method != target.method:
            changes.append(self._create_change(
                category=ChangeCategory.ENDPOINT_MODIFIED,
                severity=Severity.BREAKING,
                path=f"{path}.method",
                description=f"Endpoint method changed from {source.method} to {target.method}",
                source_value=source.method,
                target_value=target.method,
                affected_components=[op_id],
                migration_complexity=3,
            ))

        changes.extend(self._compare_parameters(source, target, path))
        changes.extend(self._compare_responses(source, target, path))
        return changes

    def _compare_parameters(
        self,
        source: EndpointDefinition,
        target: EndpointDefinition,
        base_path: str
    ) -> list[CompatibilityChange]:
        """Parameter diff keyed by (location, name)."""
        changes = []
        op_id = source.operation_id
        source_params = {p.key: p for p in source.parameters}
        target_params = {p.key: p for p in target.parameters}

        for key in sorted(set(source_params) | set(target_params)):
            source_param = source_params.get(key)
            target_param = target_params.get(key)
            location, name = key
            param_path = f"{base_path}.parameters.{location}.{name}"

            if target_param is None:
                changes.append(self._create_change(
                    category=ChangeCategory.PARAMETER_REMOVED,
                    severity=_required_severity(source_param.required),
                    path=param_path,
                    description=(
                        f'Parameter "{name}" ({location}) removed from '
                        f'{source.method} {source.path}'
                    ),
                    source_value=name,
                    affected_components=[op_id],
                    migration_complexity=3 if source_param.required else 1,
                ))
            elif source_param is None:
                kind = 'required' if target_param.required else 'optional'
                changes.append(self._create_change(
                    category=ChangeCategory.PARAMETER_ADDED,
                    severity=_required_severity(target_param.required),
                    path=param_path,
                    description=(
                        f'New {kind} parameter "{name}" ({location}) added to '
                        f'{target.method} {target.path}'
                    ),
                    target_value=name,
                    affected_components=[op_id],
                    migration_complexity=4 if target_param.required else 1,
                ))
            elif source_param.required != target_param.required:
                tightened = target_param.required
                changes.append(self._create_change(
                    category=ChangeCategory.PARAMETER_MODIFIED,
                    severity=_required_severity(tightened),
                    path=f"{param_path}.required",
                    description=f'Parameter "{name}" ({location}) required status changed',
                    source_value=source_param.required,
                    target_value=target_param.required,
                    affected_components=[op_id],
                    migration_complexity=3 if tightened else 1,
                ))

        return changes

    def _compare_responses(
        self,
        source: EndpointDefinition,
        target: EndpointDefinition,
        base_path: str
    ) -> list[CompatibilityChange]:
        """Response diff keyed by status code."""
        changes = []
        op_id = source.operation_id
        source_responses = {r.status_code: r for r in source.responses}
        target_responses = {r.status_code: r for r in target.responses}

        for code in sorted(set(source_responses) | set(target_responses)):
            source_resp = source_responses.get(code)
            target_resp = target_responses.get(code)
            resp_path = f"{base_path}.responses.{code}"
            # Only success payloads are part of the client contract
            severity = (
                Severity.BREAKING if (source_resp or target_resp).is_success
                else Severity.NON_BREAKING
            )
            complexity = 4 if severity == Severity.BREAKING else 2

            if target_resp is None:
                changes.append(self._create_change(
                    category=ChangeCategory.RESPONSE_REMOVED,
                    severity=severity,
                    path=resp_path,
                    description=f"Response {code} removed from {source.method} {source.path}",
                    source_value=code,
                    affected_components=[op_id],
                    migration_complexity=complexity,
                ))
            elif source_resp is None:
                changes.append(self._create_change(
                    category=ChangeCategory.RESPONSE_ADDED,
                    severity=Severity.NON_BREAKING,
                    path=resp_path,
                    description=f"New response {code} added to {target.method} {target.path}",
                    target_value=code,
                    affected_components=[],
                    migration_complexity=1,
                ))
            elif ref_id(source_resp.type) != ref_id(target_resp.type):
                changes.append(self._create_change(
                    category=ChangeCategory.RESPONSE_MODIFIED,
                    severity=severity,
                    path=f"{resp_path}.type",
                    description=(
                        f"Response {code} type changed for {source.method} {source.path}"
                    ),
                    source_value=ref_id(source_resp.type),
                    target_value=ref_id(target_resp.type),
                    affected_components=[op_id],
                    migration_complexity=complexity,
                ))

        return changes

    # ------------------------------------------------------------------
    # Authentication and errors
    # ------------------------------------------------------------------

    def compare_authentication(
        self,
        source: CanonicalSchema,
        target: CanonicalSchema
    ) -> list[CompatibilityChange]:
        """Compare authentication schemes, indexed by scheme id."""
        source_auth = {a.id: a for a in source.authentication}
        target_auth = {a.id: a for a in target.authentication}
        changes = []

        for scheme_id in sorted(set(source_auth) | set(target_auth)):
            source_scheme = source_auth.get(scheme_id)
            target_scheme = target_auth.get(scheme_id)
            path = f"authentication.{scheme_id}"

            if self._ignored(path):
                continue

            if target_scheme is None:
                changes.append(self._create_change(
                    category=ChangeCategory.AUTH_REMOVED,
                    severity=Severity.BREAKING,
                    path=path,
                    description=(
                        f'Authentication scheme "{scheme_id}" '
                        f'({source_scheme.type}) has been removed'
                    ),
                    source_value=scheme_id,
                    affected_components=['authentication'],
                    migration_complexity=5,
                ))
            elif source_scheme is None:
                changes.append(self._create_change(
                    category=ChangeCategory.AUTH_ADDED,
                    severity=Severity.NON_BREAKING,
                    path=path,
                    description=(
                        f'New authentication scheme "{scheme_id}" '
                        f'({target_scheme.type}) added'
                    ),
                    target_value=scheme_id,
                    affected_components=[],
                    migration_complexity=1,
                ))
            elif source_scheme.type != target_scheme.type:
                changes.append(self._create_change(
                    category=ChangeCategory.AUTH_MODIFIED,
                    severity=Severity.BREAKING,
                    path=f"{path}.type",
                    description=(
                        f'Authentication scheme "{scheme_id}" type changed from '
                        f'{source_scheme.type} to {target_scheme.type}'
                    ),
                    source_value=source_scheme.type,
                    target_value=target_scheme.type,
                    affected_components=['authentication'],
                    migration_complexity=4,
                ))

        return self._finalize(changes)

    def compare_errors(
        self,
        source: CanonicalSchema,
        target: CanonicalSchema
    ) -> list[CompatibilityChange]:
        """Compare error codes."""
        source_codes = {e.code for e in source.errors}
        target_codes = {e.code for e in target.errors}
        changes = []

        for code in sorted(source_codes | target_codes):
            path = f"errors.{code}"

            if self._ignored(path):
                continue

            if code not in target_codes:
                # Clients must already tolerate unknown codes
                changes.append(self._create_change(
                    category=ChangeCategory.ERROR_REMOVED,
                    severity=Severity.INFORMATIONAL,
                    path=path,
                    description=f'Error "{code}" has been removed',
                    source_value=code,
                    affected_components=[],
                    migration_complexity=1,
                ))
            elif code not in source_codes:
                changes.append(self._create_change(
                    category=ChangeCategory.ERROR_ADDED,
                    severity=Severity.NON_BREAKING,
                    path=path,
                    description=f'New error "{code}" added',
                    target_value=code,
                    affected_components=[],
                    migration_complexity=1,
                ))

        return self._finalize(changes)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ignored(self, path: str) -> bool:
        return is_ignored(path, self.ignore_paths)

    def _finalize(self, changes: list[CompatibilityChange]) -> list[CompatibilityChange]:
        """Drop ignored changes and sort by (path, category)."""
        kept = [c for c in changes if not self._ignored(c.path)]
        return sorted(kept, key=lambda c: (c.path, c.category.value))

    def _create_change(
        self,
        category: ChangeCategory,
        severity: Severity,
        path: str,
        description: str,
        affected_components: list[str],
        migration_complexity: int,
        source_value: Any = None,
        target_value: Any = None
    ) -> CompatibilityChange:
        """Create a change record with a reproducible id."""
        change_id = uuid.uuid5(
            CHANGE_ID_NAMESPACE,
            canonical_json([category.value, path, source_value, target_value])
        )

        diff = None
        if self.include_detailed_diff:
            diff = self._render_diff(source_value, target_value)

        return CompatibilityChange(
            change_id=str(change_id),
            category=category,
            severity=severity,
            path=path,
            description=description,
            source_value=source_value,
            target_value=target_value,
            diff=diff,
            impact=Impact(
                affected_components=list(affected_components),
                affected_languages=list(self.affected_languages),
                migration_complexity=migration_complexity,
            ),
        )

    @staticmethod
    def _render_diff(source_value: Any, target_value: Any) -> str:
        lines = []
        if source_value is not None:
            lines.append(f"- {canonical_json(source_value)}")
        if target_value is not None:
            lines.append(f"+ {canonical_json(target_value)}")
        return "\n".join(lines)


_missing_kinds = set(TypeKind) - set(SchemaComparator.KIND_COMPARATORS)
if _missing_kinds:
    raise ImportError(
        "No comparator for type kinds: "
        + ", ".join(sorted(k.value for k in _missing_kinds))
    )
