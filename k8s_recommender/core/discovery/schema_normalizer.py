"""
Schema normalization.

Turns the heterogeneous schema shapes a cluster serves (OpenAPI v2
definitions for built-in kinds, OpenAPI v3 components, CRD
``openAPIV3Schema`` documents) into a uniform ``CapabilityDescriptor``.

The function is pure and deterministic. ``$ref`` targets are expanded in
place up to ``max_depth`` levels of nesting; a reference back to a
definition already on the current path, an unresolvable reference, or
nesting past the bound produces a node marked ``truncated``.
"""

from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from .models import (
    CapabilityDescriptor,
    FieldNode,
    FieldType,
    ITEMS_SUFFIX,
    ROOT_ID,
)

DEFAULT_MAX_DEPTH = 10

_REF_PREFIXES = ("#/definitions/", "#/components/schemas/")

_TYPE_MAP = {
    "string": FieldType.STRING,
    "integer": FieldType.NUMBER,
    "number": FieldType.NUMBER,
    "boolean": FieldType.BOOL,
    "array": FieldType.ARRAY,
    "object": FieldType.OBJECT,
}


class RawSchema(BaseModel):
    """A schema document as fetched from the cluster."""
    body: Dict[str, Any] = Field(default_factory=dict, description="Root schema of the kind")
    definitions: Dict[str, Any] = Field(
        default_factory=dict,
        description="Named definitions that ``$ref`` pointers resolve against",
    )


def normalize(raw_schema: Any, max_depth: int = DEFAULT_MAX_DEPTH) -> CapabilityDescriptor:
    """
    Normalize a raw schema into a ``CapabilityDescriptor``.

    Args:
        raw_schema: ``RawSchema`` or a bare schema dictionary
        max_depth: Maximum nesting depth expanded below the root

    Returns:
        CapabilityDescriptor: arena of field nodes keyed by field path
    """
    if isinstance(raw_schema, RawSchema):
        body, definitions = raw_schema.body, raw_schema.definitions
    elif isinstance(raw_schema, dict):
        body, definitions = raw_schema, {}
    else:
        body, definitions = {}, {}
    builder = _DescriptorBuilder(definitions or {}, max(0, int(max_depth)))
    builder.add(ROOT_ID, "root", body, required=False, depth=0, ref_stack=())
    return CapabilityDescriptor(root=ROOT_ID, nodes=builder.nodes, max_depth=builder.max_depth)


def _definition_name(ref: Any) -> Optional[str]:
    if not isinstance(ref, str):
        return None
    for prefix in _REF_PREFIXES:
        if ref.startswith(prefix):
            return ref[len(prefix):]
    return ref.rsplit("/", 1)[-1] or None


def _semantic_type(schema: Dict[str, Any]) -> FieldType:
    if schema.get("x-kubernetes-int-or-string"):
        return FieldType.STRING
    declared = schema.get("type")
    if isinstance(declared, list):
        declared = next((t for t in declared if t != "null"), None)
    if isinstance(declared, str) and declared in _TYPE_MAP:
        return _TYPE_MAP[declared]
    if "items" in schema:
        return FieldType.ARRAY
    return FieldType.OBJECT


def _enum_values(schema: Dict[str, Any]) -> List[Any]:
    values = schema.get("enum")
    if not isinstance(values, list):
        return []
    return [v for v in values if isinstance(v, (str, int, float, bool))]


def _description(schema: Dict[str, Any], fallback: str) -> str:
    text = schema.get("description")
    if isinstance(text, str) and text.strip():
        return " ".join(text.split())
    return fallback


class _DescriptorBuilder:
    def __init__(self, definitions: Dict[str, Any], max_depth: int) -> None:
        self.definitions = definitions
        self.max_depth = max_depth
        self.nodes: Dict[str, FieldNode] = {}

    def _expand(
        self, schema: Dict[str, Any], ref_stack: Tuple[str, ...]
    ) -> Tuple[Optional[Dict[str, Any]], List[str], Optional[str]]:
        """
        Follow ``$ref`` chains and merge ``allOf`` members.

        Returns the expanded schema (None when expansion must stop), the
        definition names followed, and the name of the offending reference.
        """
        followed: List[str] = []
        current = schema
        while "$ref" in current:
            name = _definition_name(current.get("$ref"))
            if name is None or name in ref_stack or name in followed:
                return None, followed, name
            target = self.definitions.get(name)
            if not isinstance(target, dict):
                return None, followed, name
            followed.append(name)
            overlay = {k: v for k, v in current.items() if k != "$ref"}
            current = dict(target)
            current.update(overlay)

        members = current.get("allOf")
        if isinstance(members, list) and members:
            merged = {k: v for k, v in current.items() if k != "allOf"}
            properties: Dict[str, Any] = dict(merged.get("properties") or {})
            required: List[str] = list(merged.get("required") or [])
            for member in members:
                if not isinstance(member, dict):
                    continue
                expanded, names, broken = self._expand(member, ref_stack + tuple(followed))
                if expanded is None:
                    continue
                followed.extend(n for n in names if n not in followed)
                properties.update(expanded.get("properties") or {})
                required.extend(r for r in expanded.get("required") or [] if r not in required)
                for key in ("type", "description", "items", "enum", "additionalProperties"):
                    if key in expanded and key not in merged:
                        merged[key] = expanded[key]
            if properties:
                merged["properties"] = properties
            if required:
                merged["required"] = required
            current = merged

        if "type" not in current and "properties" not in current and "items" not in current:
            for key in ("anyOf", "oneOf"):
                options = current.get(key)
                if isinstance(options, list) and not current.get("x-kubernetes-int-or-string"):
                    typed = next((o for o in options if isinstance(o, dict) and "type" in o), None)
                    if typed is not None:
                        current = {**typed, **{k: v for k, v in current.items() if k != key}}
                        break
        return current, followed, None

    def add(
        self,
        node_id: str,
        name: str,
        schema: Any,
        required: bool,
        depth: int,
        ref_stack: Tuple[str, ...],
    ) -> None:
        schema = schema if isinstance(schema, dict) else {}
        expanded, followed, broken_ref = self._expand(schema, ref_stack)

        if expanded is None:
            self.nodes[node_id] = FieldNode(
                id=node_id,
                name=name,
                type=FieldType.REFERENCE,
                required=required,
                description=_description(schema, name),
                ref=broken_ref,
                truncated=True,
            )
            return

        field_type = _semantic_type(expanded)
        description = _description(expanded, name)
        ref_name = followed[-1] if followed else None
        properties = expanded.get("properties")
        properties = properties if isinstance(properties, dict) else {}
        open_ended = field_type == FieldType.OBJECT and not properties

        if depth > self.max_depth and field_type in (FieldType.OBJECT, FieldType.ARRAY):
            self.nodes[node_id] = FieldNode(
                id=node_id,
                name=name,
                type=field_type,
                required=required,
                enum=_enum_values(expanded),
                description=description,
                ref=ref_name,
                truncated=True,
            )
            return

        child_stack = ref_stack + tuple(followed)
        children: List[str] = []
        items_id: Optional[str] = None

        if field_type == FieldType.OBJECT:
            required_names = expanded.get("required")
            required_names = set(required_names) if isinstance(required_names, list) else set()
            for child_name in sorted(properties):
                child_id = child_name if node_id == ROOT_ID else f"{node_id}.{child_name}"
                self.add(
                    child_id,
                    child_name,
                    properties[child_name],
                    required=child_name in required_names,
                    depth=depth + 1,
                    ref_stack=child_stack,
                )
                children.append(child_id)
        elif field_type == FieldType.ARRAY:
            items_id = f"{node_id}{ITEMS_SUFFIX}"
            self.add(
                items_id,
                f"{name}{ITEMS_SUFFIX}",
                expanded.get("items"),
                required=False,
                depth=depth + 1,
                ref_stack=child_stack,
            )

        self.nodes[node_id] = FieldNode(
            id=node_id,
            name=name,
            type=field_type,
            required=required,
            enum=_enum_values(expanded),
            description=description,
            children=children,
            items=items_id,
            ref=ref_name,
            open_ended=open_ended,
        )
