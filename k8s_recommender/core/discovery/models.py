"""
Data model for cluster capability discovery.

A ``CapabilityIndex`` is a read-only snapshot of every resource kind a
cluster can express. Each ``ResourceDescriptor`` carries a
``CapabilityDescriptor``: an arena of ``FieldNode`` objects addressed by
their field path, so lookups are plain dictionary reads and the tree can
never contain a cycle.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from k8s_recommender.utils.fingerprint import digest

# ============================================================================
# Resource identity
# ============================================================================

KNOWN_VERBS = ("get", "list", "create", "update", "delete")

ROOT_ID = ""
ITEMS_SUFFIX = "[]"
_INDEX_RE = re.compile(r"\[\d*\]")

# ObjectMeta fields every kind accepts, whether or not a CRD schema declares them
UNIVERSAL_METADATA_FIELDS = ("metadata.name", "metadata.namespace")
UNIVERSAL_METADATA_MAPS = ("metadata.labels.", "metadata.annotations.")

_SKIPPED_FIELDS = frozenset({"apiVersion", "kind", "status"})


class ResourceOrigin(str, Enum):
    """Where a resource kind comes from."""
    BUILT_IN = "built-in"
    CUSTOM_RESOURCE_DEFINITION = "custom-resource-definition"


class FieldType(str, Enum):
    """Semantic type of a schema field."""
    STRING = "string"
    NUMBER = "number"
    BOOL = "bool"
    OBJECT = "object"
    ARRAY = "array"
    REFERENCE = "reference"


class ResourceIdentity(BaseModel):
    """Group/version/kind triple identifying a resource kind."""
    model_config = ConfigDict(frozen=True)

    group: str = Field(default="", description="API group, empty for the core group")
    version: str = Field(..., description="API version, e.g. v1")
    kind: str = Field(..., description="Resource kind, e.g. Deployment")

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    @property
    def key(self) -> str:
        return f"{self.api_version}/{self.kind}"

    @classmethod
    def from_key(cls, key: str) -> "ResourceIdentity":
        parts = key.split("/")
        if len(parts) == 2:
            return cls(group="", version=parts[0], kind=parts[1])
        if len(parts) == 3:
            return cls(group=parts[0], version=parts[1], kind=parts[2])
        raise ValueError(f"Invalid resource key: {key!r}")

    def __str__(self) -> str:
        return self.key


# ============================================================================
# Capability descriptor (schema arena)
# ============================================================================

def normalize_field_path(field_path: str) -> str:
    """Map concrete array indexes to the item marker: ``a.b[0].c`` -> ``a.b[].c``."""
    return _INDEX_RE.sub(ITEMS_SUFFIX, field_path.strip())


def concrete_field_path(field_path: str) -> str:
    """Map item markers to the first element: ``a.b[].c`` -> ``a.b[0].c``."""
    return field_path.replace(ITEMS_SUFFIX, "[0]")


def parent_field_path(node_id: str) -> Optional[str]:
    """Identifier of the enclosing node, or None for the root."""
    if node_id == ROOT_ID:
        return None
    if node_id.endswith(ITEMS_SUFFIX):
        return node_id[: -len(ITEMS_SUFFIX)]
    if "." in node_id:
        return node_id.rsplit(".", 1)[0]
    return ROOT_ID


class FieldNode(BaseModel):
    """One field of a normalized schema. ``id`` equals its normalized path."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    type: FieldType
    required: bool = False
    enum: List[Any] = Field(default_factory=list)
    description: str = ""
    children: List[str] = Field(default_factory=list)
    items: Optional[str] = None
    ref: Optional[str] = Field(default=None, description="Definition name the field was resolved from")
    open_ended: bool = Field(default=False, description="Object accepting arbitrary keys")
    truncated: bool = Field(default=False, description="Expansion stopped here (depth bound or reference cycle)")

    @property
    def path(self) -> str:
        return self.id


class CapabilityDescriptor(BaseModel):
    """Normalized schema tree of one resource kind."""
    model_config = ConfigDict(frozen=True)

    root: str = ROOT_ID
    nodes: Dict[str, FieldNode] = Field(default_factory=dict)
    max_depth: int = 10

    @property
    def root_node(self) -> Optional[FieldNode]:
        return self.nodes.get(self.root)

    @property
    def description(self) -> str:
        node = self.root_node
        return node.description if node else ""

    def node(self, node_id: str) -> Optional[FieldNode]:
        return self.nodes.get(node_id)

    def children(self, node: FieldNode) -> List[FieldNode]:
        return [self.nodes[c] for c in node.children if c in self.nodes]

    def lookup(self, field_path: str) -> Optional[FieldNode]:
        """
        Find the node addressed by ``field_path``.

        Paths below an open-ended object resolve to that object. Paths below a
        truncated node do not resolve: their existence is unknown.
        """
        normalized = normalize_field_path(field_path)
        if not normalized:
            return None
        node = self.nodes.get(normalized)
        if node is not None:
            return node
        ancestor = parent_field_path(normalized)
        while ancestor is not None:
            candidate = self.nodes.get(ancestor)
            if candidate is not None:
                if candidate.open_ended and not candidate.truncated:
                    return candidate
                return None
            ancestor = parent_field_path(ancestor)
        return None

    def has_field(self, field_path: str) -> bool:
        normalized = normalize_field_path(field_path)
        if normalized in UNIVERSAL_METADATA_FIELDS:
            return True
        if any(normalized.startswith(prefix) and len(normalized) > len(prefix) for prefix in UNIVERSAL_METADATA_MAPS):
            return True
        return self.lookup(normalized) is not None

    def field_type(self, field_path: str) -> FieldType:
        """Semantic type used to validate values for ``field_path``."""
        node = self.lookup(field_path)
        normalized = normalize_field_path(field_path)
        if node is None or (node.open_ended and node.id != normalized):
            return FieldType.STRING
        return node.type

    def iter_fields(self, start: Optional[str] = None, max_depth: Optional[int] = None) -> Iterator[FieldNode]:
        """Depth-first walk (children sorted by name) below ``start``."""
        begin = self.nodes.get(self.root if start is None else start)
        if begin is None:
            return
        limit = self.max_depth if max_depth is None else max_depth
        stack = [(begin, 0)]
        while stack:
            node, depth = stack.pop()
            if node.id != self.root:
                yield node
            if depth >= limit:
                continue
            next_ids = list(node.children)
            if node.items:
                next_ids.append(node.items)
            for child_id in reversed(next_ids):
                child = self.nodes.get(child_id)
                if child is not None:
                    stack.append((child, depth + 1))

    def required_leaf_paths(self, start: str = "spec", max_depth: int = 6) -> List[str]:
        """
        Leaf fields reachable from ``start`` through required fields only.

        Required objects without required members and truncated nodes are not
        reported; they carry no value a user has to supply.
        """
        begin = self.nodes.get(start)
        if begin is None:
            return []
        found: List[str] = []
        stack = [(begin, 0)]
        while stack:
            node, depth = stack.pop()
            if depth > max_depth or node.truncated:
                continue
            if node.type == FieldType.OBJECT:
                required = [c for c in self.children(node) if c.required]
                for child in sorted(required, key=lambda c: c.id, reverse=True):
                    stack.append((child, depth + 1))
            elif node.type == FieldType.ARRAY and node.items:
                item = self.nodes.get(node.items)
                if item is not None and item.type == FieldType.OBJECT and not item.open_ended:
                    stack.append((item, depth + 1))
                elif node.id != start:
                    found.append(node.id)
            elif node.id != start:
                found.append(node.id)
        return found


# ============================================================================
# Resource descriptor and index
# ============================================================================

class ResourceDescriptor(BaseModel):
    """Identity, schema and supported operations of one resource kind."""
    model_config = ConfigDict(frozen=True)

    identity: ResourceIdentity
    origin: ResourceOrigin = ResourceOrigin.BUILT_IN
    verbs: List[str] = Field(default_factory=list)
    namespaced: bool = True
    plural: str = ""
    owner_hint: Optional[str] = None
    description: str = ""
    capabilities: CapabilityDescriptor = Field(default_factory=CapabilityDescriptor)

    @property
    def key(self) -> str:
        return self.identity.key

    def summary(self) -> Dict[str, Any]:
        """Compact catalog entry used when seeding the decision oracle."""
        entry: Dict[str, Any] = {
            "kind": self.identity.kind,
            "apiVersion": self.identity.api_version,
            "origin": self.origin.value,
            "namespaced": self.namespaced,
            "description": (self.description or self.identity.kind)[:240],
        }
        if self.owner_hint:
            entry["owner"] = self.owner_hint
        return entry

    def field_listing(
        self,
        max_depth: int = 5,
        limit: Optional[int] = None,
        with_descriptions: bool = False,
    ) -> List[Dict[str, Any]]:
        """Flat listing of settable fields (``status`` and type meta excluded)."""
        entries: List[Dict[str, Any]] = []
        for node in self.capabilities.iter_fields(max_depth=max_depth):
            if node.id in _SKIPPED_FIELDS or node.id.startswith("status."):
                continue
            entry: Dict[str, Any] = {"path": node.id, "type": node.type.value}
            if node.required:
                entry["required"] = True
            if node.enum:
                entry["enum"] = list(node.enum)
            if node.truncated:
                entry["truncated"] = True
            if with_descriptions:
                entry["description"] = node.description
            entries.append(entry)
            if limit and len(entries) >= limit:
                break
        return entries


class CapabilityIndex(BaseModel):
    """
    Point-in-time snapshot of everything a cluster can express.

    Built once per discovery run and never mutated; a refresh builds a new
    index. ``index_id`` is derived from the content so two runs against an
    unchanged cluster yield the same id.
    """
    model_config = ConfigDict(frozen=True)

    index_id: str
    built_at: datetime
    resources: Dict[str, ResourceDescriptor] = Field(default_factory=dict)
    partial_failures: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def build(
        cls,
        resources: List[ResourceDescriptor],
        partial_failures: Optional[Dict[str, str]] = None,
        built_at: Optional[datetime] = None,
    ) -> "CapabilityIndex":
        ordered = {r.key: r for r in sorted(resources, key=lambda r: r.key)}
        failures = dict(sorted((partial_failures or {}).items()))
        fingerprint = _content_digest(ordered, failures)
        return cls(
            index_id=fingerprint[:16],
            built_at=built_at or datetime.now(timezone.utc),
            resources=ordered,
            partial_failures=failures,
        )

    def content_fingerprint(self) -> str:
        """Digest of the index contents, excluding the build timestamp."""
        return _content_digest(self.resources, self.partial_failures)

    def __len__(self) -> int:
        return len(self.resources)

    def __contains__(self, key: object) -> bool:
        if isinstance(key, ResourceIdentity):
            key = key.key
        return key in self.resources

    def get(self, identity: Any) -> Optional[ResourceDescriptor]:
        key = identity.key if isinstance(identity, ResourceIdentity) else str(identity)
        return self.resources.get(key)

    def resolve(
        self,
        kind: str,
        group: Optional[str] = None,
        version: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Optional[ResourceDescriptor]:
        """
        Resolve a possibly partial kind reference to a descriptor.

        ``group``/``version`` narrow the match when given. Among several
        matches, built-in kinds win, then lexical order of the key.
        """
        if not kind:
            return None
        if api_version:
            if "/" in api_version:
                group, version = api_version.split("/", 1)
            else:
                group, version = "", api_version
        wanted = kind.strip().lower()
        matches = [
            r for r in self.resources.values()
            if r.identity.kind.lower() == wanted
            and (group is None or r.identity.group == group)
            and (version is None or r.identity.version == version)
        ]
        if not matches:
            return None
        matches.sort(key=lambda r: (r.origin != ResourceOrigin.BUILT_IN, r.key))
        return matches[0]

    def find_by_kind(self, kind: str) -> List[ResourceDescriptor]:
        wanted = kind.strip().lower()
        return [r for r in self.resources.values() if r.identity.kind.lower() == wanted]

    def catalog(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Catalog summaries of resources that can be created, in key order."""
        entries = [
            r.summary() for r in self.resources.values()
            if not r.verbs or "create" in r.verbs
        ]
        return entries[:limit] if limit else entries


def _content_digest(resources: Dict[str, ResourceDescriptor], failures: Dict[str, str]) -> str:
    return digest({
        "resources": {k: v.model_dump(mode="json") for k, v in resources.items()},
        "partial_failures": failures,
    })
