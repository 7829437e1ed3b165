"""Reverse type-reference index used for impact reporting."""

from __future__ import annotations

import logging
from collections import defaultdict

from .models import FailureMode, format_issue
from .schema import ArrayType, CanonicalSchema, ObjectType, TypeRef

logger = logging.getLogger(__name__)


class ReferenceIndexer:
    """
    Maps every type id to the syntactic locations that reference it.

    Locations are rendered as:
    - ``Type.property`` for object properties
    - ``Type[]`` for array element types
    - ``operationId.requestBody`` for request bodies
    - ``operationId.response.<code>`` for responses
    - ``operationId.<param>`` for parameters

    A location that reaches a type through wrapper types (reference aliases,
    array element types, union variants) is recorded against every type on
    the way. The descent keeps a visited set, so self- or mutually-referential
    wrappers stop instead of recursing forever; each distinct cycle is
    reported once as a CIRCULAR_REFERENCE warning. References to ids the
    schema does not define are reported as TYPE_RESOLUTION_FAILURE warnings
    and treated as unknown types.

    The index is built once, so impact lookups for any number of removed
    types cost a dict access each.
    """

    def __init__(self, schema: CanonicalSchema, label: str = "schema"):
        self.schema = schema
        self.label = label
        self.warnings: list[str] = []
        self.unresolved_types: set[str] = set()
        self.cycles: list[list[str]] = []

        self._types = schema.type_map()
        self._index: dict[str, set[str]] = defaultdict(set)
        self._seen_cycles: set[frozenset] = set()

        self._build()

    def references_to(self, type_id: str) -> list[str]:
        """All locations referencing the type id, sorted."""
        return sorted(self._index.get(type_id, ()))

    def _build(self):
        for type_def in sorted(self.schema.types, key=lambda t: t.id):
            if isinstance(type_def, ObjectType):
                for prop in type_def.properties:
                    if prop.type:
                        self._record(prop.type, f"{type_def.name}.{prop.name}")
            elif isinstance(type_def, ArrayType) and type_def.items:
                self._record(type_def.items, f"{type_def.name}[]")

            # Unreferenced wrappers still get their targets resolved
            for ref in type_def.wrapped_refs():
                self._check_resolved(ref.type_id, type_def.name)

        for endpoint in sorted(self.schema.endpoints, key=lambda e: e.operation_id):
            op = endpoint.operation_id
            if endpoint.request_body and endpoint.request_body.type:
                self._record(endpoint.request_body.type, f"{op}.requestBody")
            for response in endpoint.responses:
                if response.type:
                    self._record(response.type, f"{op}.response.{response.status_code}")
            for param in endpoint.parameters:
                if param.type:
                    self._record(param.type, f"{op}.{param.name}")

        logger.debug(
            "Indexed %s: %d referenced types, %d unresolved, %d cycles",
            self.label, len(self._index), len(self.unresolved_types), len(self.cycles)
        )

    def _record(self, ref: TypeRef, location: str):
        self._descend(ref.type_id, location, [], set())

    def _descend(self, type_id: str, location: str, trail: list[str], visited: set[str]):
        if type_id in visited:
            if type_id in trail:
                self._report_cycle(trail[trail.index(type_id):] + [type_id])
            return
        visited.add(type_id)

        self._index[type_id].add(location)

        type_def = self._types.get(type_id)
        if type_def is None:
            self._check_resolved(type_id, location)
            return

        trail.append(type_id)
        for child in type_def.wrapped_refs():
            self._descend(child.type_id, location, trail, visited)
        trail.pop()

    def _check_resolved(self, type_id: str, location: str):
        if type_id in self._types or type_id in self.unresolved_types:
            return
        self.unresolved_types.add(type_id)
        self.warnings.append(format_issue(
            FailureMode.TYPE_RESOLUTION_FAILURE,
            f"{self.label} references unknown type '{type_id}' at {location}; "
            f"treated as unknown"
        ))

    def _report_cycle(self, cycle: list[str]):
        key = frozenset(cycle)
        if key in self._seen_cycles:
            return
        self._seen_cycles.add(key)
        self.cycles.append(cycle)
        self.warnings.append(format_issue(
            FailureMode.CIRCULAR_REFERENCE,
            f"{self.label} has circular type reference {' -> '.join(cycle)}; "
            f"descent stopped"
        ))
