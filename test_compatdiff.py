"""Tests for the compatdiff analysis engine."""

import copy
import uuid

import pytest
import requests

from compatdiff import (
    AnalysisOptions,
    AnalysisRequest,
    BumpType,
    ChangeCategory,
    CompatibilityEngine,
    EngineConfig,
    FailureMode,
    InMemoryEventSink,
    ReferenceIndexer,
    SchemaComparator,
    SchemaLoader,
    SchemaParseError,
    Severity,
    Strictness,
    ValidationError,
    Verdict,
    analyze,
    calculate_version_recommendation,
    determine_verdict,
    generate_upgrade_guidance,
    summarize,
)
from compatdiff.events import EmitResult, EventSink, EventType, HttpEventSink
from compatdiff.hashing import canonical_json, output_hash
from compatdiff.jsonpath_utils import is_ignored, matches_prefix
from compatdiff.models import CompatibilityChange, Impact


STRING = {"id": "string", "name": "string", "kind": "primitive", "primitiveKind": "string"}
INTEGER = {"id": "integer", "name": "integer", "kind": "primitive", "primitiveKind": "integer"}
STATUS = {"id": "status", "name": "Status", "kind": "enum", "values": ["active", "inactive"]}

GET_USER = {
    "operationId": "getUser",
    "path": "/users/{id}",
    "method": "GET",
    "parameters": [{"name": "id", "in": "path", "type": "string", "required": True}],
    "responses": [{"statusCode": 200, "type": "user"}, {"statusCode": 404}],
}
DELETE_USER = {
    "operationId": "deleteUser",
    "path": "/users/{id}",
    "method": "DELETE",
    "responses": [{"statusCode": 204}],
}


def user_type(properties=None):
    if properties is None:
        properties = [
            {"name": "id", "type": {"typeId": "string"}, "required": True},
            {"name": "name", "type": {"typeId": "string"}, "required": True},
        ]
    return {"id": "user", "name": "User", "kind": "object", "properties": properties}


def make_schema(types=None, endpoints=None, authentication=None, errors=None,
                version="1.0.0", provider="acme"):
    return {
        "metadata": {"providerId": provider, "version": version},
        "types": copy.deepcopy(types if types is not None else [STRING, user_type()]),
        "endpoints": copy.deepcopy(endpoints if endpoints is not None else []),
        "authentication": copy.deepcopy(authentication or []),
        "errors": copy.deepcopy(errors or []),
    }


def make_request(source, target, options=None, request_id=None):
    return {
        "requestId": request_id or str(uuid.uuid4()),
        "sourceSchema": source,
        "targetSchema": target,
        "options": options,
    }


def make_change(severity, category=ChangeCategory.TYPE_MODIFIED, path="types.X"):
    return CompatibilityChange(
        change_id="c",
        category=category,
        severity=severity,
        path=path,
        description="test change",
        impact=Impact(),
    )


def compare_types(source, target):
    return SchemaComparator().compare_types(
        SchemaLoader.from_dict(source), SchemaLoader.from_dict(target)
    )


def compare_endpoints(source, target):
    return SchemaComparator().compare_endpoints(
        SchemaLoader.from_dict(source), SchemaLoader.from_dict(target)
    )


class TestScenarios:
    """End-to-end analysis scenarios."""

    def setup_method(self):
        self.engine = CompatibilityEngine()

    def test_required_property_removed(self):
        """Test that removing a required property is breaking and needs a major bump."""
        source = make_schema()
        target = make_schema(types=[STRING, user_type([
            {"name": "id", "type": "string", "required": True},
        ])])

        result = self.engine.analyze(make_request(source, target))

        assert result.success is True
        assert len(result.changes) == 1
        change = result.changes[0]
        assert change.category == ChangeCategory.PROPERTY_REMOVED
        assert change.severity == Severity.BREAKING
        assert change.path == "types.User.properties.name"
        assert change.impact.affected_components == ["User.name"]
        assert change.impact.migration_complexity == 4
        assert result.verdict == Verdict.BREAKING
        assert result.version_recommendation.bump_type == BumpType.MAJOR
        assert result.version_recommendation.recommended_version == "2.0.0"

    def test_optional_property_added(self):
        """Test that adding an optional property is backwards compatible."""
        source = make_schema()
        target = make_schema(types=[STRING, user_type([
            {"name": "id", "type": "string", "required": True},
            {"name": "name", "type": "string", "required": True},
            {"name": "nickname", "type": "string"},
        ])])

        result = self.engine.analyze(make_request(source, target))

        assert len(result.changes) == 1
        assert result.changes[0].category == ChangeCategory.PROPERTY_ADDED
        assert result.changes[0].severity == Severity.NON_BREAKING
        assert result.verdict == Verdict.BACKWARDS_COMPATIBLE
        assert result.version_recommendation.bump_type == BumpType.MINOR
        assert result.version_recommendation.recommended_version == "1.1.0"

    def test_version_only_change(self):
        """Test that a version-only change reports no changes."""
        source = make_schema(version="1.0.0")
        target = make_schema(version="1.1.0")

        result = self.engine.analyze(make_request(source, target))

        assert result.changes == []
        assert result.verdict == Verdict.FULLY_COMPATIBLE
        assert result.version_recommendation.bump_type == BumpType.NONE
        assert result.version_recommendation.recommended_version == "1.1.0"
        assert result.source_version.schema_hash != result.target_version.schema_hash

    def test_delete_endpoint_removed(self):
        """Test that removing the DELETE endpoint is breaking."""
        source = make_schema(endpoints=[GET_USER, DELETE_USER])
        target = make_schema(endpoints=[GET_USER])

        result = self.engine.analyze(make_request(source, target))

        assert len(result.changes) == 1
        change = result.changes[0]
        assert change.category == ChangeCategory.ENDPOINT_REMOVED
        assert change.severity == Severity.BREAKING
        assert change.path == "endpoints./users/{id}.DELETE"
        assert change.impact.affected_components == ["deleteUser"]

    def test_provider_mismatch(self):
        """Test that schemas from different providers fail the analysis."""
        source = make_schema(provider="acme")
        target = make_schema(provider="other")

        result = self.engine.analyze(make_request(source, target))

        assert result.success is False
        assert result.errors[0].startswith("INCOMPATIBLE_PROVIDERS:")
        assert "acme vs other" in result.errors[0]
        assert result.verdict == Verdict.INCOMPATIBLE
        assert result.changes == []

    def test_request_object_with_built_schemas(self):
        """Test analysis of a request built from model objects."""
        source = SchemaLoader.from_dict(make_schema())
        target = SchemaLoader.from_dict(make_schema(types=[STRING]))
        request = AnalysisRequest(
            request_id=str(uuid.uuid4()),
            source_schema=source,
            target_schema=target,
            options=AnalysisOptions(strictness=Strictness.STRICT),
        )

        result = analyze(request)

        assert result.success is True
        assert result.changes[0].category == ChangeCategory.TYPE_REMOVED
        assert result.verdict == Verdict.INCOMPATIBLE


class TestDeterminism:
    """Identical inputs must produce identical outputs."""

    def setup_method(self):
        self.engine = CompatibilityEngine()
        self.source = make_schema(
            types=[STRING, INTEGER, STATUS, user_type()],
            endpoints=[GET_USER, DELETE_USER],
            authentication=[{"id": "apiKey", "type": "apiKey"}],
            errors=[{"code": "not_found"}, {"code": "rate_limited"}],
        )
        self.target = make_schema(
            types=[
                STRING,
                {"id": "status", "name": "Status", "kind": "enum", "values": ["active", "banned"]},
                user_type([{"name": "id", "type": "integer", "required": True}]),
            ],
            endpoints=[GET_USER],
            authentication=[{"id": "oauth", "type": "oauth2"}],
            errors=[{"code": "not_found"}, {"code": "conflict"}],
            version="2.0.0",
        )

    def test_idempotence(self):
        """Test that comparing a schema with itself reports nothing."""
        result = self.engine.analyze(make_request(self.source, copy.deepcopy(self.source)))

        assert result.verdict == Verdict.FULLY_COMPATIBLE
        assert result.summary.total_changes == 0
        assert result.version_recommendation.bump_type == BumpType.NONE

    def test_repeated_runs_match(self):
        """Test that repeated runs give identical ids and hashes."""
        first = self.engine.analyze(make_request(self.source, self.target))
        second = self.engine.analyze(make_request(self.source, self.target))

        assert first.analysis_metadata.determinism_hash == second.analysis_metadata.determinism_hash
        assert [c.change_id for c in first.changes] == [c.change_id for c in second.changes]
        assert [c.to_dict() for c in first.changes] == [c.to_dict() for c in second.changes]

    def test_reordered_inputs_match(self):
        """Test that reordering input arrays does not change the output."""
        reordered_source = copy.deepcopy(self.source)
        reordered_target = copy.deepcopy(self.target)
        for schema in (reordered_source, reordered_target):
            for key in ("types", "endpoints", "authentication", "errors"):
                schema[key].reverse()
            for type_def in schema["types"]:
                if type_def["kind"] == "object":
                    type_def["properties"].reverse()

        first = self.engine.analyze(make_request(self.source, self.target))
        second = self.engine.analyze(make_request(reordered_source, reordered_target))

        assert first.analysis_metadata.determinism_hash == second.analysis_metadata.determinism_hash
        assert first.source_version.schema_hash == second.source_version.schema_hash
        assert [c.path for c in first.changes] == [c.path for c in second.changes]

    def test_change_order_follows_categories(self):
        """Test that changes are grouped in category order."""
        result = self.engine.analyze(make_request(self.source, self.target))

        prefixes = [c.path.split(".")[0] for c in result.changes]
        order = ["types", "endpoints", "authentication", "errors"]
        assert prefixes == sorted(prefixes, key=order.index)

    def test_output_hash_ignores_change_order(self):
        """Test that the output hash does not depend on change order."""
        result = self.engine.analyze(make_request(self.source, self.target))
        reversed_hash = output_hash(
            result.verdict,
            result.summary,
            list(reversed(result.changes)),
            result.version_recommendation,
        )

        assert reversed_hash == result.analysis_metadata.determinism_hash

    def test_change_ids_are_uuids(self):
        """Test that change ids are valid UUIDs."""
        result = self.engine.analyze(make_request(self.source, self.target))

        for change in result.changes:
            assert str(uuid.UUID(change.change_id)) == change.change_id

    def test_canonical_json_sorts_keys(self):
        """Test that canonical JSON sorts nested keys."""
        assert canonical_json({"b": 1, "a": {"d": 2, "c": 3}}) == '{"a":{"c":3,"d":2},"b":1}'


class TestTypeComparison:
    """Type-level change detection."""

    def test_optional_property_removed_is_non_breaking(self):
        """Test that removing an optional property is non-breaking."""
        source = make_schema(types=[STRING, user_type([
            {"name": "id", "type": "string", "required": True},
            {"name": "bio", "type": "string"},
        ])])
        target = make_schema(types=[STRING, user_type([
            {"name": "id", "type": "string", "required": True},
        ])])

        changes = compare_types(source, target)

        assert len(changes) == 1
        assert changes[0].severity == Severity.NON_BREAKING
        assert changes[0].impact.migration_complexity == 2

    def test_required_property_added_is_breaking(self):
        """Test that adding a required property is breaking."""
        target = make_schema(types=[STRING, user_type([
            {"name": "id", "type": "string", "required": True},
            {"name": "name", "type": "string", "required": True},
            {"name": "email", "type": "string", "required": True},
        ])])

        changes = compare_types(make_schema(), target)

        assert len(changes) == 1
        assert changes[0].category == ChangeCategory.PROPERTY_ADDED
        assert changes[0].severity == Severity.BREAKING
        assert changes[0].impact.migration_complexity == 3

    def test_required_list_on_type(self):
        """Test that a type-level required list marks properties required."""
        source = make_schema(types=[STRING, {
            "id": "user", "name": "User", "kind": "object",
            "properties": [{"name": "id", "type": "string"}],
            "required": ["id"],
        }])
        target = make_schema(types=[STRING, user_type([{"name": "id", "type": "string"}])])

        changes = compare_types(source, target)

        assert len(changes) == 1
        assert changes[0].path == "types.User.properties.id.required"
        assert changes[0].severity == Severity.NON_BREAKING

    def test_property_becomes_required(self):
        """Test that making a property required is breaking."""
        source = make_schema(types=[STRING, user_type([{"name": "id", "type": "string"}])])
        target = make_schema(types=[STRING, user_type([
            {"name": "id", "type": "string", "required": True},
        ])])

        changes = compare_types(source, target)

        assert len(changes) == 1
        assert changes[0].category == ChangeCategory.PROPERTY_MODIFIED
        assert changes[0].severity == Severity.BREAKING
        assert changes[0].source_value is False
        assert changes[0].target_value is True

    def test_property_type_changed(self):
        """Test detection of a property type change."""
        source = make_schema(types=[STRING, INTEGER, user_type()])
        target = make_schema(types=[STRING, INTEGER, user_type([
            {"name": "id", "type": "integer", "required": True},
            {"name": "name", "type": "string", "required": True},
        ])])

        changes = compare_types(source, target)

        assert len(changes) == 1
        assert changes[0].path == "types.User.properties.id.type"
        assert changes[0].severity == Severity.BREAKING
        assert changes[0].source_value == "string"
        assert changes[0].target_value == "integer"

    def test_enum_value_removed_is_breaking(self):
        """Test that removing an enum value is breaking."""
        target = make_schema(types=[
            {"id": "status", "name": "Status", "kind": "enum", "values": ["active"]},
        ])

        changes = compare_types(make_schema(types=[STATUS]), target)

        assert len(changes) == 1
        assert changes[0].category == ChangeCategory.TYPE_MODIFIED
        assert changes[0].severity == Severity.BREAKING
        assert changes[0].path == "types.Status.values.inactive"
        assert changes[0].impact.affected_components == ["Status.inactive"]

    @pytest.mark.parametrize("strictness", ["strict", "standard", "lenient"])
    def test_enum_value_added_never_breaking(self, strictness):
        """Test that adding an enum value is non-breaking at every strictness."""
        target = make_schema(types=[{
            "id": "status", "name": "Status", "kind": "enum",
            "values": [{"value": "active"}, {"value": "inactive"}, {"value": "banned"}],
        }])

        result = analyze(make_request(
            make_schema(types=[STATUS]), target, {"strictness": strictness}
        ))

        assert len(result.changes) == 1
        assert result.changes[0].severity == Severity.NON_BREAKING
        assert result.verdict == Verdict.BACKWARDS_COMPATIBLE

    def test_union_variants(self):
        """Test detection of added and removed union variants."""
        cat = {"id": "cat", "name": "Cat", "kind": "object", "properties": []}
        dog = {"id": "dog", "name": "Dog", "kind": "object", "properties": []}
        bird = {"id": "bird", "name": "Bird", "kind": "object", "properties": []}
        source = make_schema(types=[cat, dog, {
            "id": "pet", "name": "Pet", "kind": "union", "variants": ["cat", "dog"],
        }])
        target = make_schema(types=[cat, dog, bird, {
            "id": "pet", "name": "Pet", "kind": "union", "variants": ["dog", "bird"],
        }])

        changes = {c.path: c for c in compare_types(source, target)}

        assert changes["types.Pet.variants.cat"].severity == Severity.BREAKING
        assert changes["types.Pet.variants.bird"].severity == Severity.NON_BREAKING
        assert changes["types.Bird"].category == ChangeCategory.TYPE_ADDED

    def test_kind_change_is_breaking(self):
        """Test that changing a type's kind is breaking."""
        target = make_schema(types=[STRING, {
            "id": "user", "name": "User", "kind": "reference", "target": "string",
        }])

        changes = compare_types(make_schema(), target)

        assert len(changes) == 1
        assert changes[0].path == "types.User.kind"
        assert changes[0].severity == Severity.BREAKING
        assert changes[0].source_value == "object"
        assert changes[0].target_value == "reference"

    def test_wrapper_targets_changed(self):
        """Test detection of changed array items, alias targets and primitives."""
        source = make_schema(types=[
            STRING, INTEGER,
            {"id": "ids", "name": "Ids", "kind": "array", "items": "string"},
            {"id": "key", "name": "Key", "kind": "reference", "target": "string"},
            {"id": "amount", "name": "Amount", "kind": "primitive", "primitiveKind": "integer"},
        ])
        target = make_schema(types=[
            STRING, INTEGER,
            {"id": "ids", "name": "Ids", "kind": "array", "items": "integer"},
            {"id": "key", "name": "Key", "kind": "reference", "target": "integer"},
            {"id": "amount", "name": "Amount", "kind": "primitive", "primitiveKind": "number"},
        ])

        changes = compare_types(source, target)

        assert [c.path for c in changes] == [
            "types.Amount.primitiveKind",
            "types.Ids.items",
            "types.Key.target",
        ]
        assert all(c.severity == Severity.BREAKING for c in changes)

    def test_removed_type_impact(self):
        """Test that a removed type lists every place it was used."""
        address = {"id": "address", "name": "Address", "kind": "object", "properties": []}
        user = user_type([{"name": "address", "type": "address"}])
        get_address = {
            "operationId": "getAddress",
            "path": "/addresses/{id}",
            "method": "GET",
            "responses": [{"statusCode": 200, "type": "address"}],
        }
        source = make_schema(types=[address, user], endpoints=[get_address])
        target = make_schema(types=[user], endpoints=[get_address])

        changes = compare_types(source, target)

        assert len(changes) == 1
        assert changes[0].category == ChangeCategory.TYPE_REMOVED
        assert changes[0].impact.affected_components == [
            "User.address",
            "getAddress.response.200",
        ]

    def test_entities_visited_in_id_order(self):
        """Test that types are visited in id order."""
        types = [
            {"id": "b", "name": "Alpha", "kind": "object", "properties": []},
            {"id": "a", "name": "Beta", "kind": "object", "properties": []},
        ]

        changes = compare_types(make_schema(types=[]), make_schema(types=types))

        assert [c.path for c in changes] == ["types.Beta", "types.Alpha"]

    def test_detailed_diff(self):
        """Test that detailed diff text is attached when requested."""
        target = make_schema(types=[STRING, user_type([
            {"name": "id", "type": "string", "required": True},
            {"name": "name", "type": "string"},
        ])])

        result = analyze(make_request(make_schema(), target, {"includeDetailedDiff": True}))

        assert result.changes[0].diff == "- true\n+ false"
        assert "diff" in result.changes[0].to_dict()

    def test_no_diff_by_default(self):
        """Test that diff text is omitted by default."""
        target = make_schema(types=[STRING])

        result = analyze(make_request(make_schema(), target))

        assert result.changes[0].diff is None
        assert "diff" not in result.changes[0].to_dict()


class TestEndpointComparison:
    """Endpoint, parameter and response change detection."""

    def _with(self, **overrides):
        endpoint = copy.deepcopy(GET_USER)
        endpoint.update(overrides)
        return make_schema(endpoints=[endpoint])

    def test_endpoint_added(self):
        """Test that a new endpoint is non-breaking."""
        changes = compare_endpoints(make_schema(), make_schema(endpoints=[GET_USER]))

        assert len(changes) == 1
        assert changes[0].category == ChangeCategory.ENDPOINT_ADDED
        assert changes[0].severity == Severity.NON_BREAKING

    def test_path_and_method_change(self):
        """Test detection of endpoint path and method changes."""
        target = self._with(path="/members/{id}", method="post")

        changes = compare_endpoints(self._with(), target)

        assert [c.path for c in changes] == [
            "endpoints./users/{id}.GET.method",
            "endpoints./users/{id}.GET.path",
        ]
        assert all(c.severity == Severity.BREAKING for c in changes)
        assert changes[0].target_value == "POST"

    def test_required_parameter_added(self):
        """Test that adding a required parameter is breaking."""
        params = GET_USER["parameters"] + [
            {"name": "expand", "in": "query", "type": "string", "required": True},
        ]

        changes = compare_endpoints(self._with(), self._with(parameters=params))

        assert len(changes) == 1
        assert changes[0].category == ChangeCategory.PARAMETER_ADDED
        assert changes[0].severity == Severity.BREAKING
        assert changes[0].path == "endpoints./users/{id}.GET.parameters.query.expand"
        assert changes[0].impact.migration_complexity == 4
        assert changes[0].impact.affected_components == ["getUser"]

    def test_optional_parameter_added(self):
        """Test that adding an optional parameter is non-breaking."""
        params = GET_USER["parameters"] + [{"name": "expand", "location": "query"}]

        changes = compare_endpoints(self._with(), self._with(parameters=params))

        assert changes[0].severity == Severity.NON_BREAKING

    def test_required_parameter_removed(self):
        """Test that removing a required parameter is breaking."""
        changes = compare_endpoints(self._with(), self._with(parameters=[]))

        assert len(changes) == 1
        assert changes[0].category == ChangeCategory.PARAMETER_REMOVED
        assert changes[0].severity == Severity.BREAKING

    def test_parameter_keyed_by_location(self):
        """Test that parameters are keyed by location and name."""
        moved = [{"name": "id", "in": "query", "type": "string", "required": True}]

        changes = compare_endpoints(self._with(), self._with(parameters=moved))

        categories = sorted(c.category.value for c in changes)
        assert categories == ["parameter-added", "parameter-removed"]

    def test_parameter_relaxed(self):
        """Test that relaxing a required parameter is non-breaking."""
        relaxed = [{"name": "id", "in": "path", "type": "string", "required": False}]

        changes = compare_endpoints(self._with(), self._with(parameters=relaxed))

        assert len(changes) == 1
        assert changes[0].category == ChangeCategory.PARAMETER_MODIFIED
        assert changes[0].severity == Severity.NON_BREAKING

    def test_responses(self):
        """Test detection of added, removed and retyped responses."""
        responses = [{"statusCode": "200", "type": "string"}, {"statusCode": 201}]

        changes = {
            c.path: c for c in compare_endpoints(self._with(), self._with(responses=responses))
        }

        base = "endpoints./users/{id}.GET.responses"
        assert changes[f"{base}.200.type"].category == ChangeCategory.RESPONSE_MODIFIED
        assert changes[f"{base}.200.type"].severity == Severity.BREAKING
        assert changes[f"{base}.201"].severity == Severity.NON_BREAKING
        assert changes[f"{base}.404"].category == ChangeCategory.RESPONSE_REMOVED
        assert changes[f"{base}.404"].severity == Severity.NON_BREAKING

    def test_success_response_removed(self):
        """Test that removing the success response is breaking."""
        changes = compare_endpoints(
            self._with(), self._with(responses=[{"statusCode": 404}])
        )

        assert len(changes) == 1
        assert changes[0].severity == Severity.BREAKING
        assert changes[0].impact.migration_complexity == 4


class TestAuthAndErrors:
    """Authentication and error-code comparison."""

    def setup_method(self):
        self.comparator = SchemaComparator()

    def _compare(self, method, source, target):
        return getattr(self.comparator, method)(
            SchemaLoader.from_dict(source), SchemaLoader.from_dict(target)
        )

    def test_auth_changes(self):
        """Test detection of authentication scheme changes."""
        source = make_schema(authentication=[
            {"id": "apiKey", "type": "apiKey"},
            {"id": "basic", "type": "http"},
        ])
        target = make_schema(authentication=[
            {"id": "apiKey", "type": "oauth2"},
            {"id": "bearer", "type": "http"},
        ])

        changes = self._compare("compare_authentication", source, target)

        assert [(c.path, c.category.value, c.severity.value) for c in changes] == [
            ("authentication.apiKey.type", "auth-modified", "breaking"),
            ("authentication.basic", "auth-removed", "breaking"),
            ("authentication.bearer", "auth-added", "non-breaking"),
        ]
        assert changes[1].impact.migration_complexity == 5

    def test_error_changes(self):
        """Test detection of added and removed error codes."""
        source = make_schema(errors=["not_found", {"code": "gone"}])
        target = make_schema(errors=["not_found", "conflict"])

        changes = self._compare("compare_errors", source, target)

        assert [(c.path, c.severity) for c in changes] == [
            ("errors.conflict", Severity.NON_BREAKING),
            ("errors.gone", Severity.INFORMATIONAL),
        ]

    def test_informational_only_is_fully_compatible(self):
        """Test that informational changes keep full compatibility."""
        source = make_schema(errors=["gone"])

        result = analyze(make_request(source, make_schema()))

        assert result.summary.informational_changes == 1
        assert result.verdict == Verdict.FULLY_COMPATIBLE
        assert result.version_recommendation.bump_type == BumpType.NONE


class TestIgnoreAndCategories:
    """Ignore paths and category selection."""

    def test_ignore_type_prefix(self):
        """Test that an ignored type prefix drops its changes."""
        target = make_schema(types=[STRING, user_type([])])

        result = analyze(make_request(make_schema(), target, {"ignorePaths": ["types.User"]}))

        assert result.changes == []
        assert result.verdict == Verdict.FULLY_COMPATIBLE

    def test_ignore_wildcard_segment(self):
        """Test that a wildcard segment ignores matching endpoints."""
        source = make_schema(endpoints=[GET_USER, DELETE_USER])

        result = analyze(make_request(
            source, make_schema(), {"ignorePaths": ["endpoints.*.DELETE"]}
        ))

        assert [c.path for c in result.changes] == ["endpoints./users/{id}.GET"]

    def test_ignore_errors_and_auth(self):
        """Test ignore paths for errors and authentication."""
        source = make_schema(authentication=[{"id": "basic", "type": "http"}], errors=["gone"])

        result = analyze(make_request(
            source, make_schema(), {"ignorePaths": ["errors", "authentication.basic"]}
        ))

        assert result.changes == []

    def test_categories_selection(self):
        """Test that only selected categories are analyzed."""
        source = make_schema(endpoints=[GET_USER], errors=["gone"])
        target = make_schema(types=[STRING], errors=["conflict"])

        result = analyze(make_request(
            source, target, {"analyzeCategories": ["errors", "types"]}
        ))

        assert [c.path.split(".")[0] for c in result.changes] == ["types", "errors", "errors"]

    def test_matches_prefix(self):
        """Test ignore pattern matching."""
        assert matches_prefix("types.User.properties.email", "types.User")
        assert matches_prefix("endpoints./a.DELETE.parameters", "endpoints.*.DELETE")
        assert not matches_prefix("endpoints./a.GET", "endpoints.*.DELETE")
        assert not matches_prefix("types.User", "types.User.properties")
        assert not is_ignored("types.User", [])

    def test_prefix_matches_whole_segments(self):
        """Test that plain ignore prefixes match whole segments."""
        assert matches_prefix("types.User", "types.User")
        assert not matches_prefix("types.UserProfile", "types.User")
        assert not matches_prefix("types.UserProfile.properties.id", "types.User")

    def test_ignore_does_not_cover_longer_type_names(self):
        """Test that ignoring a type leaves longer type names alone."""
        profile = {"id": "profile", "name": "UserProfile", "kind": "object", "properties": []}
        source = make_schema(types=[STRING, user_type(), profile])

        result = analyze(make_request(
            source, make_schema(types=[STRING]), {"ignorePaths": ["types.User"]}
        ))

        assert [c.path for c in result.changes] == ["types.UserProfile"]


class TestReferenceIndexer:
    """Reverse type-reference index."""

    def test_locations(self):
        """Test that references are recorded for each location."""
        endpoint = {
            "operationId": "createUser",
            "path": "/users",
            "method": "POST",
            "parameters": [{"name": "tenant", "in": "header", "type": "string"}],
            "requestBody": {"type": "user", "required": True},
            "responses": [{"statusCode": 201, "type": "user"}],
        }
        schema = SchemaLoader.from_dict(make_schema(endpoints=[endpoint]))

        index = ReferenceIndexer(schema)

        assert index.references_to("user") == [
            "createUser.requestBody",
            "createUser.response.201",
        ]
        assert index.references_to("string") == ["User.id", "User.name", "createUser.tenant"]
        assert index.warnings == []

    def test_descends_through_wrappers(self):
        """Test that references resolve through wrapper types."""
        schema = SchemaLoader.from_dict(make_schema(types=[
            STRING,
            user_type(),
            {"id": "userRef", "name": "UserRef", "kind": "reference", "target": "user"},
            {"id": "users", "name": "Users", "kind": "array", "items": "userRef"},
            {"id": "doc", "name": "Doc", "kind": "object",
             "properties": [{"name": "owner", "type": "userRef"}]},
        ]))

        index = ReferenceIndexer(schema)

        assert index.references_to("user") == ["Doc.owner", "Users[]"]

    def test_cycle_terminates(self):
        """Test that a reference cycle is reported and terminates."""
        schema = SchemaLoader.from_dict(make_schema(types=[
            {"id": "a", "name": "A", "kind": "reference", "target": "b"},
            {"id": "b", "name": "B", "kind": "reference", "target": "a"},
            {"id": "doc", "name": "Doc", "kind": "object",
             "properties": [{"name": "link", "type": "a"}]},
        ]))

        index = ReferenceIndexer(schema)

        assert index.cycles == [["a", "b", "a"]]
        assert len(index.warnings) == 1
        assert index.warnings[0].startswith("CIRCULAR_REFERENCE:")
        assert index.references_to("b") == ["Doc.link"]

    def test_self_referential_union(self):
        """Test that a self-referential union is handled."""
        schema = SchemaLoader.from_dict(make_schema(types=[
            STRING,
            {"id": "node", "name": "Node", "kind": "union", "variants": ["node", "string"]},
            {"id": "tree", "name": "Tree", "kind": "object",
             "properties": [{"name": "root", "type": "node"}]},
        ]))

        index = ReferenceIndexer(schema)

        assert index.references_to("string") == ["Tree.root"]
        assert [w.split(":")[0] for w in index.warnings] == ["CIRCULAR_REFERENCE"]

    def test_unresolved_type(self):
        """Test that unknown type ids are reported as warnings."""
        schema = SchemaLoader.from_dict(make_schema(types=[
            user_type([{"name": "profile", "type": "missing"}]),
        ]))

        index = ReferenceIndexer(schema)

        assert index.unresolved_types == {"missing"}
        assert index.warnings[0].startswith("TYPE_RESOLUTION_FAILURE:")

    def test_unresolved_type_lowers_confidence(self):
        """Test that unresolved types lower the event confidence."""
        schema = make_schema(types=[user_type([{"name": "profile", "type": "missing"}])])
        sink = InMemoryEventSink()

        result = analyze(make_request(schema, copy.deepcopy(schema)), event_sink=sink)

        assert result.success is True
        assert any(w.startswith("TYPE_RESOLUTION_FAILURE") for w in result.warnings)
        completed = sink.of_type(EventType.COMPLETED)[0]
        assert completed.confidence_score == 0.95
        assert completed.to_dict()["confidenceSemantics"] == "constraint_based"


class TestVerdict:
    """Verdict thresholds, version recommendation and guidance."""

    def test_no_breaking(self):
        """Test verdicts without breaking changes."""
        assert determine_verdict([], Strictness.STRICT) == Verdict.FULLY_COMPATIBLE
        non_breaking = [make_change(Severity.NON_BREAKING)]
        assert determine_verdict(non_breaking, Strictness.STRICT) == Verdict.BACKWARDS_COMPATIBLE

    @pytest.mark.parametrize("strictness,count,expected", [
        (Strictness.STRICT, 1, Verdict.INCOMPATIBLE),
        (Strictness.STANDARD, 1, Verdict.BREAKING),
        (Strictness.STANDARD, 10, Verdict.BREAKING),
        (Strictness.STANDARD, 11, Verdict.INCOMPATIBLE),
        (Strictness.LENIENT, 5, Verdict.BREAKING),
        (Strictness.LENIENT, 6, Verdict.INCOMPATIBLE),
    ])
    def test_thresholds(self, strictness, count, expected):
        """Test the incompatible thresholds for each strictness."""
        changes = [make_change(Severity.BREAKING) for _ in range(count)]

        assert determine_verdict(changes, strictness) == expected

    def test_configured_threshold(self):
        """Test that configured thresholds override the defaults."""
        config = EngineConfig.from_dict({"incompatible_thresholds": {"standard": 0}})

        verdict = determine_verdict([make_change(Severity.BREAKING)], Strictness.STANDARD, config)

        assert verdict == Verdict.INCOMPATIBLE

    def test_summary_counts(self):
        """Test summary counts by severity and category."""
        summary = summarize([
            make_change(Severity.BREAKING, ChangeCategory.PROPERTY_REMOVED),
            make_change(Severity.BREAKING, ChangeCategory.PROPERTY_REMOVED),
            make_change(Severity.PATCH, ChangeCategory.METADATA_CHANGED),
        ])

        assert summary.total_changes == 3
        assert summary.breaking_changes == 2
        assert summary.patch_changes == 1
        assert summary.changes_by_category == {"metadata-changed": 1, "property-removed": 2}

    def test_version_bumps(self):
        """Test major, minor, patch and no-op version bumps."""
        breaking = make_change(Severity.BREAKING)
        additive = make_change(Severity.NON_BREAKING)
        patch = make_change(Severity.PATCH)

        major = calculate_version_recommendation("1.2.3", [patch, additive, breaking])
        assert major.bump_type == BumpType.MAJOR
        assert major.recommended_version == "2.0.0"
        assert major.rationale == (
            "Breaking changes detected: 1 breaking change(s) require major version bump"
        )
        assert calculate_version_recommendation("1.2.3", [patch, additive]).recommended_version == "1.3.0"
        assert calculate_version_recommendation("1.2.3", [patch]).recommended_version == "1.2.4"

        none = calculate_version_recommendation("1.2.3", [])
        assert none.bump_type == BumpType.NONE
        assert none.recommended_version == "1.2.3"

    def test_unparseable_version(self):
        """Test that an unparseable version is left unchanged."""
        result = calculate_version_recommendation("latest", [make_change(Severity.BREAKING)])

        assert result.bump_type == BumpType.NONE
        assert result.recommended_version == "latest"
        assert result.rationale == "Unable to parse current version"

    def test_guidance(self):
        """Test the upgrade guidance templates."""
        added = make_change(Severity.NON_BREAKING, ChangeCategory.TYPE_ADDED, "types.User")
        enum = make_change(Severity.BREAKING, ChangeCategory.TYPE_MODIFIED, "types.Status.values.a")
        removed = make_change(
            Severity.BREAKING, ChangeCategory.PROPERTY_REMOVED, "types.User.properties.name"
        )

        assert generate_upgrade_guidance(added) == (
            'New type "User" is available. No migration required.'
        )
        assert generate_upgrade_guidance(enum).startswith('Type "Status" has been modified.')
        assert generate_upgrade_guidance(removed) == (
            'Property at "types.User.properties.name" has been removed. '
            'Remove all references from your code.'
        )

    def test_guidance_toggle(self):
        """Test that guidance can be turned off."""
        target = make_schema(types=[STRING])

        with_guidance = analyze(make_request(make_schema(), target))
        without = analyze(make_request(
            make_schema(), target, {"includeUpgradeGuidance": False}
        ))

        assert with_guidance.changes[0].upgrade_guidance.startswith('Type "User" has been removed')
        assert without.changes[0].upgrade_guidance is None


class TestFailures:
    """Failures are returned, never raised, and share the success shape."""

    def setup_method(self):
        self.engine = CompatibilityEngine()
        self.success_keys = set(
            self.engine.analyze(make_request(make_schema(), make_schema())).to_dict()
        )

    def _assert_failure(self, result, failure_mode):
        assert result.success is False
        assert result.errors[0].startswith(f"{failure_mode.value}:")
        assert result.verdict == Verdict.INCOMPATIBLE
        assert result.summary.total_changes == 0
        assert result.version_recommendation.bump_type == BumpType.NONE
        assert result.version_recommendation.recommended_version == "0.0.0"
        assert result.source_version.version == "0.0.0"
        assert set(result.to_dict()) == self.success_keys

    def test_invalid_request_id(self):
        """Test that a non-UUID request id is rejected."""
        result = self.engine.analyze(make_request(make_schema(), make_schema(), request_id="abc"))

        self._assert_failure(result, FailureMode.INVALID_REQUEST)
        assert result.request_id == "abc"

    def test_request_not_an_object(self):
        """Test that a non-object request is rejected."""
        result = self.engine.analyze(["not", "a", "request"])

        self._assert_failure(result, FailureMode.INVALID_REQUEST)
        assert result.request_id is None

    def test_invalid_options(self):
        """Test that an unknown strictness is rejected."""
        result = self.engine.analyze(make_request(
            make_schema(), make_schema(), {"strictness": "paranoid"}
        ))

        self._assert_failure(result, FailureMode.INVALID_REQUEST)

    def test_invalid_source_schema(self):
        """Test that a malformed source schema is reported."""
        source = make_schema()
        del source["metadata"]

        result = self.engine.analyze(make_request(source, make_schema()))

        self._assert_failure(result, FailureMode.INVALID_SOURCE_SCHEMA)

    def test_invalid_target_schema(self):
        """Test that a malformed target schema is reported."""
        target = make_schema()
        target["types"] = "not a list"

        result = self.engine.analyze(make_request(make_schema(), target))

        self._assert_failure(result, FailureMode.INVALID_TARGET_SCHEMA)

    def test_missing_target_schema(self):
        """Test that a missing target schema is reported."""
        result = self.engine.analyze(make_request(make_schema(), None))

        self._assert_failure(result, FailureMode.INVALID_TARGET_SCHEMA)

    def test_null_union_variant(self):
        """Test that a null union variant is an invalid schema."""
        source = make_schema(types=[STRING, {
            "id": "pet", "name": "Pet", "kind": "union", "variants": ["string", None],
        }])

        result = self.engine.analyze(make_request(source, make_schema()))

        self._assert_failure(result, FailureMode.INVALID_SOURCE_SCHEMA)
        assert "variants[1]" in result.errors[0]

    @pytest.mark.parametrize("key,value", [
        ("required", True),
        ("properties", {"id": "string"}),
        ("variants", "string"),
        ("values", 3),
    ])
    def test_non_list_type_members(self, key, value):
        """Test that non-list type members are an invalid schema."""
        kinds = {"required": "object", "properties": "object", "variants": "union", "values": "enum"}
        target = make_schema(types=[STRING, {
            "id": "odd", "name": "Odd", "kind": kinds[key], key: value,
        }])

        result = self.engine.analyze(make_request(make_schema(), target))

        self._assert_failure(result, FailureMode.INVALID_TARGET_SCHEMA)
        assert f"'{key}' must be a list" in result.errors[0]

    def test_duplicate_auth_scheme(self):
        """Test that duplicate auth scheme ids are an invalid schema."""
        source = make_schema(authentication=[
            {"id": "k", "type": "apiKey"},
            {"id": "k", "type": "oauth2"},
        ])

        result = self.engine.analyze(make_request(source, make_schema()))

        self._assert_failure(result, FailureMode.INVALID_SOURCE_SCHEMA)
        assert "Duplicate auth scheme id 'k'" in result.errors[0]

    def test_resource_exhaustion(self):
        """Test that oversized schemas fail with resource exhaustion."""
        engine = CompatibilityEngine(EngineConfig(max_schema_elements=2))

        result = engine.analyze(make_request(make_schema(), make_schema()))

        self._assert_failure(result, FailureMode.RESOURCE_EXHAUSTION)

    def test_unexpected_error(self, monkeypatch):
        """Test that unexpected errors become an analysis failure."""
        def explode(changes):
            raise RuntimeError("boom")

        monkeypatch.setattr("compatdiff.engine.summarize", explode)

        result = self.engine.analyze(make_request(make_schema(), make_schema()))

        self._assert_failure(result, FailureMode.ANALYSIS_FAILURE)
        assert result.errors == ["ANALYSIS_FAILURE: boom"]

    def test_version_downgrade_warns(self):
        """Test that a version downgrade only warns."""
        result = self.engine.analyze(make_request(
            make_schema(version="2.0.0"), make_schema(version="1.9.0")
        ))

        assert result.success is True
        assert len(result.warnings) == 1
        assert result.warnings[0].startswith("SCHEMA_VERSION_MISMATCH:")


class TestSchemaLoader:
    """Canonical schema loading."""

    def test_duplicate_type_id(self):
        """Test that duplicate type ids are rejected."""
        with pytest.raises(SchemaParseError):
            SchemaLoader.from_dict(make_schema(types=[STRING, STRING]))

    def test_unknown_kind(self):
        """Test that an unknown type kind is rejected."""
        with pytest.raises(SchemaParseError) as exc_info:
            SchemaLoader.from_dict(make_schema(types=[{"id": "x", "kind": "tuple"}]))
        assert "tuple" in exc_info.value.message

    def test_from_file(self, tmp_path):
        """Test loading a schema from a YAML file."""
        path = tmp_path / "schema.yaml"
        path.write_text(
            "metadata: {providerId: acme, version: 1.0.0}\n"
            "types:\n"
            "  - {id: status, name: Status, kind: enum, values: [a, b]}\n"
            "endpoints: []\n"
        )

        schema = SchemaLoader.from_file(path)

        assert schema.metadata.provider_id == "acme"
        assert schema.type_map()["status"].values == ("a", "b")

    def test_duplicate_parameter(self):
        """Test that duplicate parameters are rejected."""
        endpoint = copy.deepcopy(GET_USER)
        endpoint["parameters"].append({"name": "id", "in": "path", "type": "integer"})

        with pytest.raises(SchemaParseError) as exc_info:
            SchemaLoader.from_dict(make_schema(endpoints=[endpoint]))
        assert exc_info.value.message == "Duplicate parameter 'path:id'"

    def test_same_parameter_name_in_two_locations(self):
        """Test that one name may be used in two parameter locations."""
        endpoint = copy.deepcopy(GET_USER)
        endpoint["parameters"].append({"name": "id", "in": "query", "type": "string"})

        schema = SchemaLoader.from_dict(make_schema(endpoints=[endpoint]))

        assert len(schema.endpoints[0].parameters) == 2

    def test_duplicate_response_status(self):
        """Test that duplicate response status codes are rejected."""
        endpoint = copy.deepcopy(GET_USER)
        endpoint["responses"].append({"statusCode": "200", "type": "string"})

        with pytest.raises(SchemaParseError) as exc_info:
            SchemaLoader.from_dict(make_schema(endpoints=[endpoint]))
        assert exc_info.value.message == "Duplicate response status '200'"

    def test_auth_order_does_not_matter(self):
        """Test that auth scheme order does not change the result."""
        schemes = [{"id": "k", "type": "apiKey"}, {"id": "basic", "type": "http"}]
        target = make_schema(authentication=[{"id": "k", "type": "oauth2"}])

        first = analyze(make_request(make_schema(authentication=schemes), target))
        second = analyze(make_request(make_schema(authentication=schemes[::-1]), target))

        assert first.summary.total_changes == second.summary.total_changes == 2
        assert (first.analysis_metadata.determinism_hash
                == second.analysis_metadata.determinism_hash)

    def test_from_file_rejects_invalid_utf8(self, tmp_path):
        """Test that a non-UTF-8 schema file is rejected."""
        path = tmp_path / "schema.yaml"
        path.write_bytes(b"metadata: \xff\xfe\n")

        with pytest.raises(UnicodeDecodeError):
            SchemaLoader.from_file(path)

    def test_element_count(self):
        """Test the schema element count."""
        schema = SchemaLoader.from_dict(make_schema(endpoints=[GET_USER]))

        # 2 types + 2 properties + endpoint + 1 parameter + 2 responses
        assert schema.element_count() == 8


class TestConfig:
    """Engine configuration."""

    def test_defaults(self):
        """Test the default thresholds."""
        config = EngineConfig()

        assert config.threshold_for(Strictness.STRICT) == 0
        assert config.threshold_for(Strictness.STANDARD) == 10
        assert config.threshold_for(Strictness.LENIENT) == 5

    def test_unknown_key(self):
        """Test that unknown config keys are rejected."""
        with pytest.raises(ValidationError):
            EngineConfig.from_dict({"thresholds": {}})

    def test_negative_threshold(self):
        """Test that negative thresholds are rejected."""
        with pytest.raises(ValidationError):
            EngineConfig.from_dict({"incompatible_thresholds": {"lenient": -1}})

    def test_from_file(self, tmp_path):
        """Test loading configuration from a YAML file."""
        path = tmp_path / "config.yaml"
        path.write_text(
            "incompatible_thresholds:\n"
            "  lenient: 2\n"
            "affected_languages: [python]\n"
            "log_level: debug\n"
        )

        config = EngineConfig.from_file(path)

        assert config.threshold_for(Strictness.LENIENT) == 2
        assert config.threshold_for(Strictness.STANDARD) == 10
        assert config.affected_languages == ["python"]
        assert config.log_level.value == "DEBUG"

    def test_affected_languages_flow_into_changes(self):
        """Test that configured languages appear in change impact."""
        config = EngineConfig(affected_languages=["go"])

        result = analyze(make_request(make_schema(), make_schema(types=[STRING])), config)

        assert result.changes[0].impact.affected_languages == ["go"]


class BrokenSink(EventSink):
    def emit(self, event):
        raise RuntimeError("sink down")


class RejectingSink(EventSink):
    def emit(self, event):
        return EmitResult(success=False, event_id=event.event_id, error="rejected")


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code
        self.ok = status_code < 400
        self.text = "body"


class TestEvents:
    """Decision events and sinks."""

    def test_success_events(self):
        """Test the events emitted for a successful analysis."""
        sink = InMemoryEventSink()
        target = make_schema(types=[STRING, user_type([
            {"name": "id", "type": "string", "required": True},
        ])])

        result = analyze(make_request(make_schema(), target), event_sink=sink)

        assert [e.event_type for e in sink.events] == [
            EventType.INITIATED,
            EventType.COMPLETED,
            EventType.BREAKING_CHANGE,
            EventType.VERSION_RECOMMENDATION,
        ]
        completed = sink.events[1].to_dict()
        assert completed["outputHash"] == result.analysis_metadata.determinism_hash
        assert completed["confidenceSemantics"] == "deterministic"
        assert completed["payload"]["verdict"] == "breaking"
        assert sink.events[2].payload["path"] == "types.User.properties.name"
        assert all(e.input_hash == sink.events[0].input_hash for e in sink.events)

    def test_failure_event(self):
        """Test the events emitted for a failed analysis."""
        sink = InMemoryEventSink()

        analyze(make_request(make_schema(), make_schema(provider="other")), event_sink=sink)

        assert [e.event_type for e in sink.events] == [EventType.INITIATED, EventType.FAILED]
        assert sink.events[1].payload["failureMode"] == "INCOMPATIBLE_PROVIDERS"
        assert sink.events[1].payload["partialAnalysis"] is False

    @pytest.mark.parametrize("sink", [BrokenSink(), RejectingSink()])
    def test_sink_failure_does_not_change_result(self, sink):
        """Test that a failing sink does not change the result."""
        request = make_request(make_schema(), make_schema(types=[STRING]))

        plain = analyze(request)
        with_sink = analyze(request, event_sink=sink)

        assert with_sink.success is True
        assert with_sink.verdict == plain.verdict
        assert (with_sink.analysis_metadata.determinism_hash
                == plain.analysis_metadata.determinism_hash)

    def test_http_sink_posts_event(self, monkeypatch):
        """Test that the HTTP sink posts each event."""
        calls = []

        def fake_post(url, json=None, headers=None, timeout=None):
            calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
            return FakeResponse(201)

        monkeypatch.setattr(requests, "post", fake_post)
        sink = HttpEventSink("http://events.local/")

        result = analyze(make_request(make_schema(), make_schema()), event_sink=sink)

        assert result.success is True
        assert len(calls) == 3
        assert calls[0]["url"] == "http://events.local/api/v1/events"
        assert calls[0]["headers"]["X-Agent-ID"] == "compatdiff"
        assert calls[0]["timeout"] == 5.0
        assert calls[0]["json"]["eventType"] == "version_compatibility_analysis.initiated"

    def test_http_sink_no_retry_on_client_error(self, monkeypatch):
        """Test that the HTTP sink does not retry client errors."""
        calls = []

        def fake_post(url, **kwargs):
            calls.append(url)
            return FakeResponse(422)

        monkeypatch.setattr(requests, "post", fake_post)
        sink = HttpEventSink("http://events.local", retry_delay=0)

        result = sink.emit(_sample_event())

        assert result.success is False
        assert "422" in result.error
        assert len(calls) == 1

    def test_http_sink_retries_transport_errors(self, monkeypatch):
        """Test that the HTTP sink retries transport errors."""
        calls = []

        def fake_post(url, **kwargs):
            calls.append(url)
            raise requests.exceptions.ConnectionError("refused")

        monkeypatch.setattr(requests, "post", fake_post)
        sink = HttpEventSink("http://events.local", retry_attempts=3, retry_delay=0)

        result = sink.emit(_sample_event())

        assert result.success is False
        assert "refused" in result.error
        assert len(calls) == 3

    def test_http_sink_recovers_after_server_error(self, monkeypatch):
        """Test that the HTTP sink retries after a server error."""
        statuses = [503, 200]

        def fake_post(url, **kwargs):
            return FakeResponse(statuses.pop(0))

        monkeypatch.setattr(requests, "post", fake_post)
        sink = HttpEventSink("http://events.local", retry_delay=0)

        result = sink.emit(_sample_event())

        assert result.success is True
        assert statuses == []


def _sample_event():
    sink = InMemoryEventSink()
    analyze(make_request(make_schema(), make_schema()), event_sink=sink)
    return sink.events[0]
