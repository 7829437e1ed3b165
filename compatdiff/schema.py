"""Canonical schema model and loader for the compatdiff engine."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, Optional

import yaml

from .exceptions import SchemaParseError


class TypeKind(Enum):
    PRIMITIVE = "primitive"
    OBJECT = "object"
    ARRAY = "array"
    UNION = "union"
    ENUM = "enum"
    REFERENCE = "reference"


class ParameterLocation(Enum):
    PATH = "path"
    QUERY = "query"
    HEADER = "header"
    COOKIE = "cookie"


@dataclass(frozen=True)
class TypeRef:
    """Reference to a type by id."""
    type_id: str

    def to_dict(self) -> dict:
        return {"typeId": self.type_id}


def ref_id(ref: Optional[TypeRef]) -> Optional[str]:
    return ref.type_id if ref is not None else None


@dataclass(frozen=True)
class PropertyDefinition:
    name: str
    type: Optional[TypeRef] = None
    required: bool = False

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "type": self.type.to_dict() if self.type else None,
            "required": self.required,
        }


@dataclass(frozen=True)
class TypeDefinition:
    """Base of the type variants; ``kind`` tags the concrete class."""
    id: str
    name: str
    kind: ClassVar[TypeKind]

    def wrapped_refs(self) -> tuple[TypeRef, ...]:
        """Types this type stands in for (alias target, array items, union members)."""
        return ()

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "kind": self.kind.value}


@dataclass(frozen=True)
class PrimitiveType(TypeDefinition):
    kind: ClassVar[TypeKind] = TypeKind.PRIMITIVE
    primitive_kind: str = "string"

    def to_dict(self) -> dict:
        result = super().to_dict()
        result["primitiveKind"] = self.primitive_kind
        return result


@dataclass(frozen=True)
class ObjectType(TypeDefinition):
    kind: ClassVar[TypeKind] = TypeKind.OBJECT
    properties: tuple[PropertyDefinition, ...] = ()

    def to_dict(self) -> dict:
        result = super().to_dict()
        result["properties"] = [
            p.to_dict() for p in sorted(self.properties, key=lambda p: p.name)
        ]
        return result


@dataclass(frozen=True)
class ArrayType(TypeDefinition):
    kind: ClassVar[TypeKind] = TypeKind.ARRAY
    items: Optional[TypeRef] = None

    def wrapped_refs(self) -> tuple[TypeRef, ...]:
        return (self.items,) if self.items else ()

    def to_dict(self) -> dict:
        result = super().to_dict()
        result["items"] = self.items.to_dict() if self.items else None
        return result


@dataclass(frozen=True)
class UnionType(TypeDefinition):
    kind: ClassVar[TypeKind] = TypeKind.UNION
    variants: tuple[TypeRef, ...] = ()

    def wrapped_refs(self) -> tuple[TypeRef, ...]:
        return self.variants

    def to_dict(self) -> dict:
        result = super().to_dict()
        result["variants"] = [v.to_dict() for v in sorted(self.variants, key=ref_id)]
        return result


@dataclass(frozen=True)
class EnumType(TypeDefinition):
    kind: ClassVar[TypeKind] = TypeKind.ENUM
    values: tuple = ()

    def to_dict(self) -> dict:
        result = super().to_dict()
        result["values"] = sorted(self.values, key=repr)
        return result


@dataclass(frozen=True)
class ReferenceType(TypeDefinition):
    kind: ClassVar[TypeKind] = TypeKind.REFERENCE
    target: Optional[TypeRef] = None

    def wrapped_refs(self) -> tuple[TypeRef, ...]:
        return (self.target,) if self.target else ()

    def to_dict(self) -> dict:
        result = super().to_dict()
        result["target"] = self.target.to_dict() if self.target else None
        return result


@dataclass(frozen=True)
class Parameter:
    name: str
    location: ParameterLocation
    type: Optional[TypeRef] = None
    required: bool = False

    @property
    def key(self) -> tuple[str, str]:
        return (self.location.value, self.name)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "in": self.location.value,
            "type": self.type.to_dict() if self.type else None,
            "required": self.required,
        }


@dataclass(frozen=True)
class RequestBody:
    type: Optional[TypeRef] = None
    required: bool = False

    def to_dict(self) -> dict:
        return {
            "type": self.type.to_dict() if self.type else None,
            "required": self.required,
        }


@dataclass(frozen=True)
class Response:
    status_code: str
    type: Optional[TypeRef] = None

    @property
    def is_success(self) -> bool:
        return self.status_code.startswith('2')

    def to_dict(self) -> dict:
        return {
            "statusCode": self.status_code,
            "type": self.type.to_dict() if self.type else None,
        }


@dataclass(frozen=True)
class EndpointDefinition:
    operation_id: str
    path: str
    method: str
    parameters: tuple[Parameter, ...] = ()
    request_body: Optional[RequestBody] = None
    responses: tuple[Response, ...] = ()

    def to_dict(self) -> dict:
        return {
            "operationId": self.operation_id,
            "path": self.path,
            "method": self.method,
            "parameters": [
                p.to_dict() for p in sorted(self.parameters, key=lambda p: p.key)
            ],
            "requestBody": self.request_body.to_dict() if self.request_body else None,
            "responses": [
                r.to_dict() for r in sorted(self.responses, key=lambda r: r.status_code)
            ],
        }


@dataclass(frozen=True)
class AuthScheme:
    id: str
    type: str

    def to_dict(self) -> dict:
        return {"id": self.id, "type": self.type}


@dataclass(frozen=True)
class ErrorDefinition:
    code: str

    def to_dict(self) -> dict:
        return {"code": self.code}


@dataclass(frozen=True)
class SchemaMetadata:
    provider_id: str
    version: str
    provider_name: Optional[str] = None
    api_version: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "providerId": self.provider_id,
            "version": self.version,
            "providerName": self.provider_name,
            "apiVersion": self.api_version,
        }


@dataclass(frozen=True)
class CanonicalSchema:
    """One immutable version of a provider's API description."""
    metadata: SchemaMetadata
    types: tuple[TypeDefinition, ...] = ()
    endpoints: tuple[EndpointDefinition, ...] = ()
    authentication: tuple[AuthScheme, ...] = ()
    errors: tuple[ErrorDefinition, ...] = ()

    def type_map(self) -> dict[str, TypeDefinition]:
        return {t.id: t for t in self.types}

    def endpoint_map(self) -> dict[str, EndpointDefinition]:
        return {e.operation_id: e for e in self.endpoints}

    def element_count(self) -> int:
        """Rough size of the schema, used for the resource limit."""
        count = len(self.types) + len(self.authentication) + len(self.errors)
        for type_def in self.types:
            if isinstance(type_def, ObjectType):
                count += len(type_def.properties)
            elif isinstance(type_def, UnionType):
                count += len(type_def.variants)
            elif isinstance(type_def, EnumType):
                count += len(type_def.values)
        for endpoint in self.endpoints:
            count += 1 + len(endpoint.parameters) + len(endpoint.responses)
        return count

    def to_dict(self) -> dict:
        """
        Canonical dict form.

        Collections are sorted by their identifying key so that equal schemas
        serialized in a different order produce the same dict (and hash).
        """
        return {
            "metadata": self.metadata.to_dict(),
            "types": [t.to_dict() for t in sorted(self.types, key=lambda t: t.id)],
            "endpoints": [
                e.to_dict() for e in sorted(self.endpoints, key=lambda e: e.operation_id)
            ],
            "authentication": [
                a.to_dict() for a in sorted(self.authentication, key=lambda a: a.id)
            ],
            "errors": [e.to_dict() for e in sorted(self.errors, key=lambda e: e.code)],
        }


class SchemaLoader:
    """Builds ``CanonicalSchema`` objects from canonical JSON/YAML documents."""

    REQUIRED_SECTIONS = ('metadata', 'types', 'endpoints')

    @classmethod
    def from_file(cls, path: str | Path) -> CanonicalSchema:
        """Load a canonical schema from a YAML or JSON file."""
        schema_path = Path(path)
        if not schema_path.exists():
            raise FileNotFoundError(f"Schema file not found: {schema_path}")

        with open(schema_path, 'r', encoding='utf-8') as f:
            content = f.read()

        # JSON is valid YAML, so one parser covers both
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise SchemaParseError(
                f"Failed to parse schema file: {schema_path}",
                reason=str(e)
            )

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Any) -> CanonicalSchema:
        """
        Build a schema from its canonical dict form.

        Args:
            data: Mapping with metadata, types, endpoints and optionally
                authentication and errors sections

        Returns:
            The immutable schema model

        Raises:
            SchemaParseError: if a section is missing or malformed
        """
        if not isinstance(data, dict):
            raise SchemaParseError(
                "Schema must be an object",
                reason=f"got {type(data).__name__}"
            )

        missing = [s for s in cls.REQUIRED_SECTIONS if s not in data]
        if missing:
            raise SchemaParseError(
                f"Schema is missing required sections: {', '.join(missing)}",
                location="$"
            )

        metadata = cls._parse_metadata(data['metadata'])
        types = cls._parse_list(data['types'], 'types', cls._parse_type)
        endpoints = cls._parse_list(data['endpoints'], 'endpoints', cls._parse_endpoint)
        authentication = cls._parse_list(
            data.get('authentication') or [], 'authentication', cls._parse_auth
        )
        errors = cls._parse_list(data.get('errors') or [], 'errors', cls._parse_error)

        cls._check_unique([t.id for t in types], 'types', 'type id')
        cls._check_unique([e.operation_id for e in endpoints], 'endpoints', 'operationId')
        cls._check_unique([a.id for a in authentication], 'authentication', 'auth scheme id')

        return CanonicalSchema(
            metadata=metadata,
            types=types,
            endpoints=endpoints,
            authentication=authentication,
            errors=errors,
        )

    @staticmethod
    def _parse_list(items: Any, location: str, parse) -> tuple:
        if not isinstance(items, list):
            raise SchemaParseError(f"'{location}' must be a list", location=location)
        return tuple(parse(item, f"{location}[{i}]") for i, item in enumerate(items))

    @staticmethod
    def _optional_list(node: dict, key: str, location: str) -> list:
        value = node.get(key)
        if value is None:
            return []
        if not isinstance(value, list):
            raise SchemaParseError(
                f"'{key}' must be a list at {location}",
                location=f"{location}.{key}"
            )
        return value

    @staticmethod
    def _check_unique(keys: list, location: str, label: str):
        seen = set()
        for key in keys:
            if key in seen:
                raise SchemaParseError(
                    f"Duplicate {label} '{key}'",
                    location=location
                )
            seen.add(key)

    @staticmethod
    def _require(node: Any, key: str, location: str) -> Any:
        if not isinstance(node, dict):
            raise SchemaParseError(f"Expected an object at {location}", location=location)
        value = node.get(key)
        if value is None or value == "":
            raise SchemaParseError(f"Missing '{key}' at {location}", location=location)
        return value

    @classmethod
    def _parse_metadata(cls, node: Any) -> SchemaMetadata:
        return SchemaMetadata(
            provider_id=str(cls._require(node, 'providerId', 'metadata')),
            version=str(cls._require(node, 'version', 'metadata')),
            provider_name=node.get('providerName'),
            api_version=node.get('apiVersion'),
        )

    @staticmethod
    def _parse_ref(node: Any, location: str) -> Optional[TypeRef]:
        """Accept ``{"typeId": ...}`` or a bare type id string."""
        if node is None:
            return None
        if isinstance(node, str):
            return TypeRef(node)
        if isinstance(node, dict) and node.get('typeId'):
            return TypeRef(str(node['typeId']))
        raise SchemaParseError(f"Invalid type reference at {location}", location=location)

    @classmethod
    def _parse_type(cls, node: Any, location: str) -> TypeDefinition:
        type_id = str(cls._require(node, 'id', location))
        name = str(node.get('name') or type_id)
        kind_value = cls._require(node, 'kind', location)

        try:
            kind = TypeKind(kind_value)
        except ValueError:
            raise SchemaParseError(
                f"Unknown type kind '{kind_value}' at {location}",
                location=location
            )

        if kind == TypeKind.PRIMITIVE:
            return PrimitiveType(
                id=type_id,
                name=name,
                primitive_kind=str(node.get('primitiveKind', 'string')),
            )

        if kind == TypeKind.OBJECT:
            # Required-ness may be flagged per property or listed on the type.
            required_names = set(
                str(n) for n in cls._optional_list(node, 'required', location)
            )
            properties = []
            for i, prop in enumerate(cls._optional_list(node, 'properties', location)):
                prop_location = f"{location}.properties[{i}]"
                prop_name = str(cls._require(prop, 'name', prop_location))
                properties.append(PropertyDefinition(
                    name=prop_name,
                    type=cls._parse_ref(prop.get('type'), prop_location),
                    required=bool(prop.get('required')) or prop_name in required_names,
                ))
            cls._check_unique([p.name for p in properties], location, 'property')
            return ObjectType(id=type_id, name=name, properties=tuple(properties))

        if kind == TypeKind.ARRAY:
            return ArrayType(
                id=type_id,
                name=name,
                items=cls._parse_ref(node.get('items'), f"{location}.items"),
            )

        if kind == TypeKind.UNION:
            variants = []
            for i, v in enumerate(cls._optional_list(node, 'variants', location)):
                variant_location = f"{location}.variants[{i}]"
                if v is None:
                    raise SchemaParseError(
                        f"Empty union variant at {variant_location}",
                        location=variant_location
                    )
                variants.append(cls._parse_ref(v, variant_location))
            return UnionType(id=type_id, name=name, variants=tuple(variants))

        if kind == TypeKind.ENUM:
            values = []
            for value in cls._optional_list(node, 'values', location):
                # Upstream emits {"value": ..., "description": ...} entries
                if isinstance(value, dict):
                    value = value.get('value')
                if value not in values:
                    values.append(value)
            return EnumType(id=type_id, name=name, values=tuple(values))

        target = node.get('target', node.get('typeId'))
        return ReferenceType(
            id=type_id,
            name=name,
            target=cls._parse_ref(target, f"{location}.target"),
        )

    @classmethod
    def _parse_endpoint(cls, node: Any, location: str) -> EndpointDefinition:
        operation_id = str(cls._require(node, 'operationId', location))
        path = str(cls._require(node, 'path', location))
        method = str(cls._require(node, 'method', location)).upper()

        parameters = []
        for i, param in enumerate(cls._optional_list(node, 'parameters', location)):
            param_location = f"{location}.parameters[{i}]"
            raw_in = param.get('in', param.get('location')) if isinstance(param, dict) else None
            try:
                param_in = ParameterLocation(raw_in)
            except ValueError:
                raise SchemaParseError(
                    f"Invalid parameter location '{raw_in}' at {param_location}",
                    location=param_location
                )
            parameters.append(Parameter(
                name=str(cls._require(param, 'name', param_location)),
                location=param_in,
                type=cls._parse_ref(param.get('type'), param_location),
                required=bool(param.get('required')),
            ))

        request_body = None
        body = node.get('requestBody')
        if body is not None and not isinstance(body, dict):
            raise SchemaParseError(
                f"Invalid requestBody at {location}", location=f"{location}.requestBody"
            )
        if body:
            request_body = RequestBody(
                type=cls._parse_ref(body.get('type'), f"{location}.requestBody"),
                required=bool(body.get('required')),
            )

        responses = []
        for i, resp in enumerate(cls._optional_list(node, 'responses', location)):
            resp_location = f"{location}.responses[{i}]"
            responses.append(Response(
                status_code=str(cls._require(resp, 'statusCode', resp_location)),
                type=cls._parse_ref(resp.get('type'), resp_location),
            ))

        cls._check_unique(
            [":".join(p.key) for p in parameters],
            f"{location}.parameters", 'parameter'
        )
        cls._check_unique(
            [r.status_code for r in responses], f"{location}.responses", 'response status'
        )

        return EndpointDefinition(
            operation_id=operation_id,
            path=path,
            method=method,
            parameters=tuple(parameters),
            request_body=request_body,
            responses=tuple(responses),
        )

    @classmethod
    def _parse_auth(cls, node: Any, location: str) -> AuthScheme:
        return AuthScheme(
            id=str(cls._require(node, 'id', location)),
            type=str(cls._require(node, 'type', location)),
        )

    @classmethod
    def _parse_error(cls, node: Any, location: str) -> ErrorDefinition:
        if isinstance(node, str):
            return ErrorDefinition(code=node)
        return ErrorDefinition(code=str(cls._require(node, 'code', location)))
