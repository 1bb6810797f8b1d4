from .models import (
    ResourceIdentity,
    ResourceOrigin,
    FieldType,
    FieldNode,
    CapabilityDescriptor,
    ResourceDescriptor,
    CapabilityIndex
)
from .schema_normalizer import RawSchema, normalize
from .cluster_connection import ClusterConnection, DiscoveredKind, KubernetesClusterConnection
from .capability_index import DiscoveryOptions, discover
from .index_store import IndexStore, MemoryIndexStore, FileIndexStore, create_index_store

__all__ = [
    "ResourceIdentity",
    "ResourceOrigin",
    "FieldType",
    "FieldNode",
    "CapabilityDescriptor",
    "ResourceDescriptor",
    "CapabilityIndex",
    "RawSchema",
    "normalize",
    "ClusterConnection",
    "DiscoveredKind",
    "KubernetesClusterConnection",
    "DiscoveryOptions",
    "discover",
    "IndexStore",
    "MemoryIndexStore",
    "FileIndexStore",
    "create_index_store",
]
