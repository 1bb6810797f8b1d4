"""
Capability discovery.

Builds a ``CapabilityIndex`` from a ``ClusterConnection``. Schema fetches
fan out on a dedicated pool of worker threads; each fetch has its
own timeout and its failure is recorded, never propagated. Only an
unreachable cluster aborts discovery.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import Dict, List, Optional, Tuple

from k8s_recommender.config.config import Config
from k8s_recommender.utils.exceptions import ClusterUnreachable, SchemaFetchFailed
from k8s_recommender.utils.logger import AgentLogger

from .cluster_connection import ClusterConnection, DiscoveredKind
from .models import (
    CapabilityDescriptor,
    CapabilityIndex,
    ResourceDescriptor,
    ResourceOrigin,
)
from .schema_normalizer import DEFAULT_MAX_DEPTH, normalize

discovery_logger = AgentLogger("K8S_RECOMMENDER_DISCOVERY")

CRD_LISTING_KEY = "customresourcedefinitions"


@dataclass
class DiscoveryOptions:
    max_workers: int = 8
    fetch_timeout_seconds: float = 30.0
    schema_max_depth: int = DEFAULT_MAX_DEPTH

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> "DiscoveryOptions":
        config = config or Config()
        return cls(
            max_workers=max(1, int(config.DISCOVERY_MAX_WORKERS)),
            fetch_timeout_seconds=float(config.DISCOVERY_FETCH_TIMEOUT_SECONDS),
            schema_max_depth=int(config.SCHEMA_MAX_DEPTH),
        )


def _merge_kinds(listed: List[DiscoveredKind], custom: List[DiscoveredKind]) -> List[DiscoveredKind]:
    """
    Combine the kind listing with the CRD listing.

    CRD entries contribute origin and owner hint; the listing contributes
    the verbs the API server actually serves.
    """
    merged: Dict[str, DiscoveredKind] = {k.identity.key: k for k in listed}
    for crd_kind in custom:
        key = crd_kind.identity.key
        existing = merged.get(key)
        if existing is None:
            merged[key] = crd_kind
            continue
        merged[key] = existing.model_copy(update={
            "origin": ResourceOrigin.CUSTOM_RESOURCE_DEFINITION,
            "owner_hint": crd_kind.owner_hint or existing.owner_hint,
            "plural": existing.plural or crd_kind.plural,
        })
    return [merged[key] for key in sorted(merged)]


def _release_slot(semaphore: asyncio.Semaphore, fetch: "asyncio.Future") -> None:
    if not fetch.cancelled():
        # Retrieve late failures of abandoned fetches so they are not reported as unhandled
        fetch.exception()
    semaphore.release()


async def _describe_kind(
    connection: ClusterConnection,
    kind: DiscoveredKind,
    options: DiscoveryOptions,
    semaphore: asyncio.Semaphore,
    executor: ThreadPoolExecutor,
) -> Tuple[Optional[ResourceDescriptor], Optional[str]]:
    await semaphore.acquire()
    fetch = asyncio.get_running_loop().run_in_executor(executor, connection.fetch_schema, kind.identity)
    # The slot is held until the worker thread returns, even after a timeout
    fetch.add_done_callback(partial(_release_slot, semaphore))
    try:
        raw = await asyncio.wait_for(asyncio.shield(fetch), timeout=options.fetch_timeout_seconds)
    except asyncio.TimeoutError:
        return None, f"schema fetch timed out after {options.fetch_timeout_seconds}s"
    except SchemaFetchFailed as e:
        return None, e.reason
    except ClusterUnreachable:
        raise
    except Exception as e:
        return None, f"{type(e).__name__}: {e}"

    capabilities: CapabilityDescriptor = normalize(raw, max_depth=options.schema_max_depth)
    descriptor = ResourceDescriptor(
        identity=kind.identity,
        origin=kind.origin,
        verbs=list(kind.verbs),
        namespaced=kind.namespaced,
        plural=kind.plural,
        owner_hint=kind.owner_hint,
        description=capabilities.description if capabilities.description != "root" else kind.identity.kind,
        capabilities=capabilities,
    )
    return descriptor, None


async def discover(
    connection: ClusterConnection,
    options: Optional[DiscoveryOptions] = None,
    built_at: Optional[datetime] = None,
) -> CapabilityIndex:
    """
    Build a capability index from a live cluster.

    Args:
        connection: Cluster to introspect
        options: Concurrency, timeout and normalization bounds
        built_at: Timestamp override for the snapshot

    Returns:
        CapabilityIndex: every kind whose schema could be fetched, plus the
        reasons the others could not

    Raises:
        ClusterUnreachable: If the cluster cannot be reached or listed
    """
    options = options or DiscoveryOptions()
    discovery_logger.log_structured(
        level="INFO",
        message="Starting cluster discovery",
        extra={"cluster": connection.describe(), "max_workers": options.max_workers},
    )

    try:
        listed = await asyncio.to_thread(connection.list_resource_kinds)
    except ClusterUnreachable:
        discovery_logger.log_structured(
            level="ERROR",
            message="Cluster unreachable while listing resource kinds",
            extra={"cluster": connection.describe()},
        )
        raise
    except Exception as e:
        discovery_logger.log_structured(
            level="ERROR",
            message=f"Listing resource kinds failed: {e}",
            extra={"cluster": connection.describe(), "error_type": type(e).__name__},
        )
        raise ClusterUnreachable(f"Cannot list resource kinds: {e}", connection.describe()) from e

    partial_failures: Dict[str, str] = {}
    try:
        custom = await asyncio.to_thread(connection.fetch_custom_resource_definitions)
    except ClusterUnreachable:
        raise
    except Exception as e:
        custom = []
        partial_failures[CRD_LISTING_KEY] = f"{type(e).__name__}: {e}"
        discovery_logger.log_structured(
            level="WARNING",
            message="Listing custom resource definitions failed, continuing with kind listing only",
            extra={"error": str(e)},
        )

    kinds = _merge_kinds(listed, custom)
    workers = max(1, options.max_workers)
    semaphore = asyncio.Semaphore(workers)
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="schema-fetch")
    try:
        results = await asyncio.gather(*(
            _describe_kind(connection, kind, options, semaphore, executor) for kind in kinds
        ))
    finally:
        # Timed-out fetches keep their thread until the API server answers
        executor.shutdown(wait=False)

    resources: List[ResourceDescriptor] = []
    for kind, (descriptor, failure) in zip(kinds, results):
        if descriptor is not None:
            resources.append(descriptor)
        else:
            partial_failures[kind.identity.key] = failure or "unknown failure"
            discovery_logger.log_structured(
                level="WARNING",
                message="Schema fetch failed, kind excluded from index",
                extra={"kind": kind.identity.key, "reason": failure},
            )

    index = CapabilityIndex.build(resources, partial_failures, built_at=built_at)
    discovery_logger.log_structured(
        level="INFO",
        message="Cluster discovery completed",
        extra={
            "index_id": index.index_id,
            "resources": len(index),
            "partial_failures": len(index.partial_failures),
        },
    )
    return index
