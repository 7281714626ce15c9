"""
Confluence MCP Registry
-----------------------
Descriptor types for tools and resources and the immutable lookup
structure built from them once at startup.

All structural problems (duplicate identifiers, malformed URI templates,
template variables without a matching parameter) raise ``RegistryError``
while the registry is being built, never at call time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger("ConfluenceMCP.mcp.registry")

DEFAULT_MIME_TYPE = "text/plain"


class RegistryError(ValueError):
    """Startup-fatal registration problem."""


class ValueType(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    OPTIONAL_STRING = "optional_string"

    @property
    def json_type(self) -> str:
        if self is ValueType.OPTIONAL_STRING:
            return "string"
        return self.value


class _NoDefault:
    def __repr__(self) -> str:
        return "NO_DEFAULT"


NO_DEFAULT: Any = _NoDefault()


@dataclass(frozen=True)
class ParameterSpec:
    name: str
    description: str
    value_type: ValueType = ValueType.STRING
    required: bool = True
    default: Any = NO_DEFAULT

    def __post_init__(self) -> None:
        if self.required and self.default is not NO_DEFAULT:
            raise RegistryError(f"Required parameter '{self.name}' must not declare a default")
        if not self.required and self.default is NO_DEFAULT:
            raise RegistryError(f"Optional parameter '{self.name}' must declare a default")

    def to_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": self.value_type.json_type, "description": self.description}
        if not self.required and self.default is not None:
            schema["default"] = self.default
        return schema


def param(name: str, description: str, value_type: ValueType = ValueType.STRING) -> ParameterSpec:
    return ParameterSpec(name, description, value_type, required=True)


def optional_param(
    name: str,
    description: str,
    default: Any,
    value_type: ValueType = ValueType.STRING,
) -> ParameterSpec:
    return ParameterSpec(name, description, value_type, required=False, default=default)


@dataclass(frozen=True)
class OperationDescriptor:
    identifier: str
    description: str
    parameters: Tuple[ParameterSpec, ...]
    handler: Callable[..., Any]
    error_prefix: str = "Error"
    read_only: bool = False
    destructive: bool = False
    idempotent: bool = False

    def input_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {spec.name: spec.to_schema() for spec in self.parameters},
            "required": [spec.name for spec in self.parameters if spec.required],
        }

    def summary(self) -> Dict[str, Any]:
        return {
            "name": self.identifier,
            "description": self.description,
            "inputSchema": self.input_schema(),
            "annotations": {
                "readOnlyHint": self.read_only,
                "destructiveHint": self.destructive,
                "idempotentHint": self.idempotent,
            },
        }


@dataclass(frozen=True)
class UriTemplate:
    """A ``/``-segmented URI pattern whose variable segments are exactly ``{name}``."""

    source: str
    segments: Tuple[Tuple[bool, str], ...]

    @classmethod
    def parse(cls, template: str) -> "UriTemplate":
        segments: List[Tuple[bool, str]] = []
        for segment in template.split("/"):
            if segment.startswith("{") and segment.endswith("}") and len(segment) > 2:
                name = segment[1:-1]
                if "{" in name or "}" in name:
                    raise RegistryError(f"Malformed URI template segment '{segment}' in {template}")
                segments.append((True, name))
            elif "{" in segment or "}" in segment:
                raise RegistryError(f"Malformed URI template segment '{segment}' in {template}")
            else:
                segments.append((False, segment))
        return cls(source=template, segments=tuple(segments))

    @property
    def variables(self) -> Tuple[str, ...]:
        return tuple(text for is_var, text in self.segments if is_var)

    def match(self, uri: str) -> Optional[Dict[str, str]]:
        parts = uri.split("/")
        if len(parts) != len(self.segments):
            return None
        bound: Dict[str, str] = {}
        for (is_var, text), part in zip(self.segments, parts):
            if is_var:
                bound[text] = part
            elif text != part:
                return None
        return bound


def is_template(uri: str) -> bool:
    return "{" in uri or "}" in uri


@dataclass(frozen=True)
class ResourceDescriptor:
    uri: str
    name: str
    description: str
    mime_type: str
    handler: Callable[..., Any]
    parameters: Tuple[ParameterSpec, ...] = ()
    template: Optional[UriTemplate] = field(default=None, compare=False)

    @property
    def is_template(self) -> bool:
        return self.template is not None

    def summary(self) -> Dict[str, Any]:
        key = "uriTemplate" if self.is_template else "uri"
        return {
            key: self.uri,
            "name": self.name,
            "description": self.description,
            "mimeType": self.mime_type,
        }


def resource(
    uri: str,
    name: str,
    description: str,
    handler: Callable[..., Any],
    mime_type: str = "application/json",
    parameters: Sequence[ParameterSpec] = (),
) -> ResourceDescriptor:
    """Build a resource descriptor, parsing ``uri`` as a template when it has ``{var}`` segments."""
    template = UriTemplate.parse(uri) if is_template(uri) else None
    return ResourceDescriptor(
        uri=uri,
        name=name,
        description=description,
        mime_type=mime_type,
        handler=handler,
        parameters=tuple(parameters),
        template=template,
    )


class Registry:
    """Read-only lookup of tools by identifier and resources by URI."""

    def __init__(
        self,
        operations: Iterable[OperationDescriptor] = (),
        resources: Iterable[ResourceDescriptor] = (),
    ):
        ops: Dict[str, OperationDescriptor] = {}
        for op in operations:
            if op.identifier in ops:
                raise RegistryError(f"Duplicate operation identifier '{op.identifier}'")
            ops[op.identifier] = op

        static: Dict[str, ResourceDescriptor] = {}
        templated: List[ResourceDescriptor] = []
        ordered: List[ResourceDescriptor] = []
        for res in resources:
            if res.is_template:
                self._check_template_parameters(res)
                if any(existing.uri == res.uri for existing in templated):
                    raise RegistryError(f"Duplicate resource template '{res.uri}'")
                templated.append(res)
            else:
                if res.parameters:
                    raise RegistryError(f"Static resource '{res.uri}' must not declare parameters")
                if res.uri in static:
                    raise RegistryError(f"Duplicate resource URI '{res.uri}'")
                static[res.uri] = res
            ordered.append(res)

        self._operations: Mapping[str, OperationDescriptor] = MappingProxyType(ops)
        self._static: Mapping[str, ResourceDescriptor] = MappingProxyType(static)
        self._templated: Tuple[ResourceDescriptor, ...] = tuple(templated)
        self._resources: Tuple[ResourceDescriptor, ...] = tuple(ordered)
        logger.debug(
            "Registry built: %d operations, %d static resources, %d templates",
            len(ops),
            len(static),
            len(templated),
        )

    @staticmethod
    def _check_template_parameters(res: ResourceDescriptor) -> None:
        variables = res.template.variables
        if len(set(variables)) != len(variables):
            raise RegistryError(f"Resource template '{res.uri}' repeats a variable")
        param_names = [spec.name for spec in res.parameters]
        if sorted(variables) != sorted(param_names):
            raise RegistryError(
                f"Resource template '{res.uri}' variables {list(variables)} "
                f"do not match handler parameters {param_names}"
            )
        for spec in res.parameters:
            if not spec.required:
                raise RegistryError(
                    f"Template variable '{spec.name}' in '{res.uri}' must be a required parameter"
                )

    @property
    def operations(self) -> Mapping[str, OperationDescriptor]:
        return self._operations

    @property
    def resources(self) -> Tuple[ResourceDescriptor, ...]:
        return self._resources

    def get_operation(self, identifier: str) -> Optional[OperationDescriptor]:
        return self._operations.get(identifier)

    def match_resource(self, uri: str) -> Optional[Tuple[ResourceDescriptor, Dict[str, str]]]:
        """Exact static match first, then templates in registration order; first match wins."""
        res = self._static.get(uri)
        if res is not None:
            return res, {}
        for candidate in self._templated:
            bound = candidate.template.match(uri)
            if bound is not None:
                return candidate, bound
        return None
