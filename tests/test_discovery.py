"""Tests for capability discovery, cluster helpers and index stores."""

import threading
from datetime import datetime, timezone

import pytest

from k8s_recommender.core.discovery.capability_index import CRD_LISTING_KEY, DiscoveryOptions, discover
from k8s_recommender.core.discovery.cluster_connection import DiscoveredKind, filter_verbs, infer_owner_hint
from k8s_recommender.core.discovery.index_store import FileIndexStore, MemoryIndexStore, create_index_store
from k8s_recommender.core.discovery.models import CapabilityIndex, ResourceIdentity, ResourceOrigin
from k8s_recommender.utils.exceptions import ClusterUnreachable, IndexNotAvailable, SchemaFetchFailed

from conftest import DEPLOYMENT, POSTGRES_CLUSTER, SERVICE, VERBS, FakeClusterConnection

BUILT_AT = datetime(2026, 1, 1, tzinfo=timezone.utc)


class TestClusterHelpers:
    def test_filter_verbs(self):
        assert filter_verbs(["watch", "list", "create", "patch", "get"]) == ["get", "list", "create"]

    def test_owner_hint_from_group(self):
        assert infer_owner_hint("postgresql.cnpg.io") == "managed by CloudNativePG"
        assert infer_owner_hint("apps") is None

    def test_owner_hint_prefers_labels(self):
        hint = infer_owner_hint("postgresql.cnpg.io", labels={"app.kubernetes.io/managed-by": "helm"})
        assert hint == "managed by helm"

    def test_owner_hint_composite(self):
        hint = infer_owner_hint("example.org", owner_kinds=["CompositeResourceDefinition"])
        assert "Crossplane" in hint

    def test_resource_key_round_trip(self):
        assert ResourceIdentity.from_key("apps/v1/Deployment") == DEPLOYMENT
        assert ResourceIdentity.from_key("v1/Service") == SERVICE
        with pytest.raises(ValueError):
            ResourceIdentity.from_key("Deployment")


class TestDiscover:
    async def test_builds_index(self, sample_connection):
        index = await discover(sample_connection, built_at=BUILT_AT)
        assert len(index) == 3
        assert index.partial_failures == {}
        cluster = index.get(POSTGRES_CLUSTER)
        assert cluster.origin == ResourceOrigin.CUSTOM_RESOURCE_DEFINITION
        assert cluster.owner_hint == "managed by CloudNativePG"
        assert index.get(DEPLOYMENT).description.startswith("Deployment enables")

    async def test_index_id_is_stable(self, sample_connection):
        first = await discover(sample_connection, built_at=BUILT_AT)
        second = await discover(sample_connection, built_at=datetime(2026, 2, 1, tzinfo=timezone.utc))
        assert first.index_id == second.index_id
        assert first.content_fingerprint() == second.content_fingerprint()

    async def test_schema_failure_is_partial(self, sample_connection):
        sample_connection.failures[SERVICE.key] = SchemaFetchFailed("boom", "Service", "forbidden")
        index = await discover(sample_connection)
        assert SERVICE.key not in index
        assert index.partial_failures == {SERVICE.key: "forbidden"}
        assert DEPLOYMENT.key in index

    async def test_unexpected_error_is_partial(self, sample_connection):
        sample_connection.failures[SERVICE.key] = KeyError("definitions")
        index = await discover(sample_connection)
        assert index.partial_failures[SERVICE.key].startswith("KeyError")

    async def test_slow_crd_schema_times_out(self, sample_connection):
        sample_connection.slow[POSTGRES_CLUSTER.key] = 0.3
        options = DiscoveryOptions(max_workers=2, fetch_timeout_seconds=0.05)
        index = await discover(sample_connection, options)
        assert POSTGRES_CLUSTER.key not in index
        assert "timed out" in index.partial_failures[POSTGRES_CLUSTER.key]
        assert len(index) == 2

    async def test_timed_out_fetch_keeps_its_worker(self, sample_connection):
        class CountingConnection(FakeClusterConnection):
            def __init__(self, **kwargs):
                super().__init__(**kwargs)
                self.lock = threading.Lock()
                self.active = 0
                self.peak = 0

            def fetch_schema(self, identity):
                with self.lock:
                    self.active += 1
                    self.peak = max(self.peak, self.active)
                try:
                    return super().fetch_schema(identity)
                finally:
                    with self.lock:
                        self.active -= 1

        connection = CountingConnection(
            kinds=sample_connection.kinds,
            schemas=sample_connection.schemas,
            slow={DEPLOYMENT.key: 0.2},
        )
        options = DiscoveryOptions(max_workers=1, fetch_timeout_seconds=0.05)
        index = await discover(connection, options)
        assert "timed out" in index.partial_failures[DEPLOYMENT.key]
        assert SERVICE.key in index
        assert POSTGRES_CLUSTER.key in index
        assert connection.peak == 1

    async def test_unreachable_cluster_aborts(self):
        with pytest.raises(ClusterUnreachable):
            await discover(FakeClusterConnection(unreachable=True))

    async def test_unreachable_during_fetch_aborts(self, sample_connection):
        sample_connection.failures[SERVICE.key] = ClusterUnreachable("connection reset")
        with pytest.raises(ClusterUnreachable):
            await discover(sample_connection)

    async def test_listing_error_becomes_unreachable(self):
        class BrokenListing(FakeClusterConnection):
            def list_resource_kinds(self):
                raise OSError("no route to host")

        with pytest.raises(ClusterUnreachable):
            await discover(BrokenListing())

    async def test_crd_listing_failure_is_partial(self, sample_connection):
        sample_connection.crd_error = RuntimeError("forbidden")
        index = await discover(sample_connection)
        assert CRD_LISTING_KEY in index.partial_failures
        assert index.get(POSTGRES_CLUSTER).origin == ResourceOrigin.BUILT_IN

    async def test_crd_missing_from_listing_is_included(self, sample_connection):
        sample_connection.kinds = [k for k in sample_connection.kinds if k.identity != POSTGRES_CLUSTER]
        index = await discover(sample_connection)
        assert POSTGRES_CLUSTER.key in index


class TestCapabilityIndex:
    def test_resolve_prefers_built_in(self, sample_index):
        assert sample_index.resolve("deployment").identity == DEPLOYMENT
        assert sample_index.resolve("Cluster", api_version="postgresql.cnpg.io/v1").identity == POSTGRES_CLUSTER
        assert sample_index.resolve("Deployment", api_version="apps/v2") is None
        assert sample_index.resolve("") is None

    def test_catalog_only_lists_creatable_kinds(self, sample_index):
        kinds = [entry["kind"] for entry in sample_index.catalog()]
        assert kinds == ["Deployment", "Cluster", "Service"]
        assert len(sample_index.catalog(limit=1)) == 1

    def test_contains(self, sample_index):
        assert DEPLOYMENT in sample_index
        assert "v1/ConfigMap" not in sample_index

    def test_field_listing_skips_status(self, sample_index):
        paths = [entry["path"] for entry in sample_index.get(DEPLOYMENT).field_listing(max_depth=8)]
        assert "spec.template.spec.containers[].image" in paths
        assert not any(p == "status" or p.startswith("status.") for p in paths)
        assert "kind" not in paths


class TestIndexStore:
    async def test_memory_store_requires_discovery(self):
        store = MemoryIndexStore()
        with pytest.raises(IndexNotAvailable):
            await store.current()

    async def test_memory_store_keeps_versions(self, sample_index):
        store = MemoryIndexStore()
        await store.save(sample_index)
        smaller = CapabilityIndex.build([sample_index.get(DEPLOYMENT)])
        await store.save(smaller, make_current=False)
        assert (await store.current()).index_id == sample_index.index_id
        assert (await store.load(smaller.index_id)).index_id == smaller.index_id
        assert await store.list_ids() == sorted([sample_index.index_id, smaller.index_id])

    async def test_file_store_round_trip(self, tmp_path, sample_index):
        store = FileIndexStore(str(tmp_path))
        await store.save(sample_index)
        reloaded = await FileIndexStore(str(tmp_path)).current()
        assert reloaded == sample_index

    async def test_file_store_unknown_id(self, tmp_path):
        with pytest.raises(IndexNotAvailable):
            await FileIndexStore(str(tmp_path)).load("missing")

    def test_factory(self, tmp_path):
        assert isinstance(create_index_store("memory"), MemoryIndexStore)
        assert isinstance(create_index_store("file", directory=str(tmp_path)), FileIndexStore)
        with pytest.raises(ValueError):
            create_index_store("redis")


def test_discovered_kind_defaults():
    kind = DiscoveredKind(identity=SERVICE, verbs=list(VERBS))
    assert kind.origin == ResourceOrigin.BUILT_IN
    assert kind.namespaced
