"""
Cluster connection interface and the ``kubernetes`` client adapter.

Discovery only talks to ``ClusterConnection``. Implementations must raise
``ClusterUnreachable`` when the API server cannot be reached at all and
``SchemaFetchFailed`` for per-kind problems, so the two stay
distinguishable.
"""

import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

import urllib3
from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from pydantic import BaseModel, ConfigDict, Field

from k8s_recommender.config.config import Config
from k8s_recommender.utils.exceptions import ClusterUnreachable, SchemaFetchFailed
from k8s_recommender.utils.logger import AgentLogger

from .models import KNOWN_VERBS, ResourceIdentity, ResourceOrigin
from .schema_normalizer import RawSchema

cluster_logger = AgentLogger("K8S_RECOMMENDER_CLUSTER")

GVK_EXTENSION = "x-kubernetes-group-version-kind"

# Group suffix -> controller that typically owns CRDs in that group
KNOWN_CONTROLLERS: Dict[str, str] = {
    "crossplane.io": "Crossplane",
    "upbound.io": "Crossplane",
    "argoproj.io": "Argo",
    "cert-manager.io": "cert-manager",
    "cnpg.io": "CloudNativePG",
    "knative.dev": "Knative",
    "istio.io": "Istio",
    "traefik.io": "Traefik",
    "traefik.containo.us": "Traefik",
    "monitoring.coreos.com": "Prometheus Operator",
    "keda.sh": "KEDA",
    "fluxcd.io": "Flux",
    "kyverno.io": "Kyverno",
    "strimzi.io": "Strimzi",
    "gateway.networking.k8s.io": "Gateway API",
    "services.k8s.aws": "AWS Controllers for Kubernetes",
    "cnrm.cloud.google.com": "Config Connector",
}


class DiscoveredKind(BaseModel):
    """A resource kind as listed by the cluster, before its schema is fetched."""
    model_config = ConfigDict(frozen=True)

    identity: ResourceIdentity
    plural: str = ""
    namespaced: bool = True
    verbs: List[str] = Field(default_factory=list)
    origin: ResourceOrigin = ResourceOrigin.BUILT_IN
    owner_hint: Optional[str] = None


def filter_verbs(verbs: Iterable[str]) -> List[str]:
    """Keep the verbs the recommender reasons about, in canonical order."""
    present = {v for v in verbs or []}
    return [v for v in KNOWN_VERBS if v in present]


def infer_owner_hint(
    group: str,
    labels: Optional[Dict[str, str]] = None,
    annotations: Optional[Dict[str, str]] = None,
    owner_kinds: Optional[Iterable[str]] = None,
) -> Optional[str]:
    """
    Best-effort guess of the controller that manages a CRD.

    Owner references win over labels, labels over the API group suffix.
    """
    owner_kinds = list(owner_kinds or [])
    if "CompositeResourceDefinition" in owner_kinds:
        return "managed by Crossplane (composite resource)"
    labels = labels or {}
    annotations = annotations or {}
    for key in ("app.kubernetes.io/managed-by", "app.kubernetes.io/part-of"):
        value = labels.get(key) or annotations.get(key)
        if value:
            return f"managed by {value}"
    for suffix, controller in KNOWN_CONTROLLERS.items():
        if group == suffix or group.endswith("." + suffix):
            return f"managed by {controller}"
    return None


class ClusterConnection(ABC):
    """Read-only view of a cluster's API surface used by discovery."""

    @abstractmethod
    def list_resource_kinds(self) -> List[DiscoveredKind]:
        """List every served resource kind (built-in and custom)."""
        pass

    @abstractmethod
    def fetch_schema(self, identity: ResourceIdentity) -> RawSchema:
        """Fetch the raw schema of one kind. Raises SchemaFetchFailed."""
        pass

    @abstractmethod
    def fetch_custom_resource_definitions(self) -> List[DiscoveredKind]:
        """List kinds backed by installed custom resource definitions."""
        pass

    def describe(self) -> str:
        return type(self).__name__


class KubernetesClusterConnection(ClusterConnection):
    """
    ``ClusterConnection`` backed by the official ``kubernetes`` client.

    Built-in schemas come from the cluster's ``/openapi/v2`` document, which
    is fetched once and shared by all kinds. CRD schemas are read per CRD.
    """

    def __init__(
        self,
        kubeconfig_path: Optional[str] = None,
        context: Optional[str] = None,
        in_cluster: bool = False,
        request_timeout: float = 30.0,
    ) -> None:
        self.kubeconfig_path = kubeconfig_path or None
        self.context = context or None
        self.in_cluster = in_cluster
        self.request_timeout = request_timeout
        self._api_client: Optional[k8s_client.ApiClient] = None
        self._openapi_lock = threading.Lock()
        self._definitions: Optional[Dict[str, Any]] = None
        self._definition_by_key: Dict[str, str] = {}
        self._crd_names: Dict[str, str] = {}

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> "KubernetesClusterConnection":
        config = config or Config()
        return cls(
            kubeconfig_path=config.KUBECONFIG_PATH,
            context=config.KUBE_CONTEXT,
            in_cluster=config.KUBE_IN_CLUSTER,
            request_timeout=config.DISCOVERY_FETCH_TIMEOUT_SECONDS,
        )

    def describe(self) -> str:
        if self.in_cluster:
            return "in-cluster"
        return f"kubeconfig context={self.context or 'current'}"

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _client(self) -> k8s_client.ApiClient:
        if self._api_client is None:
            try:
                if self.in_cluster:
                    configuration = k8s_client.Configuration()
                    k8s_config.load_incluster_config(client_configuration=configuration)
                    self._api_client = k8s_client.ApiClient(configuration)
                else:
                    self._api_client = k8s_config.new_client_from_config(
                        config_file=self.kubeconfig_path,
                        context=self.context,
                    )
            except (ConfigException, OSError) as e:
                raise ClusterUnreachable(f"Cannot load cluster configuration: {e}", self.describe()) from e
        return self._api_client

    def _get_json(self, path: str) -> Dict[str, Any]:
        try:
            data = self._client().call_api(
                path,
                "GET",
                auth_settings=["BearerToken"],
                response_type="object",
                _return_http_data_only=True,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if not e.status:
                raise ClusterUnreachable(f"Cluster API unreachable: {e.reason}", self.describe()) from e
            raise
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise ClusterUnreachable(f"Cluster API unreachable: {e}", self.describe()) from e
        return data if isinstance(data, dict) else {}

    # ------------------------------------------------------------------
    # ClusterConnection
    # ------------------------------------------------------------------

    def list_resource_kinds(self) -> List[DiscoveredKind]:
        group_versions = [("", v) for v in self._get_json("/api").get("versions", [])]
        for group in self._get_json("/apis").get("groups", []):
            for version in group.get("versions", []):
                group_versions.append((group.get("name", ""), version.get("version", "")))

        kinds: List[DiscoveredKind] = []
        for group, version in group_versions:
            path = f"/apis/{group}/{version}" if group else f"/api/{version}"
            try:
                listing = self._get_json(path)
            except ApiException as e:
                # Aggregated APIs (e.g. metrics) may be registered but down
                cluster_logger.log_structured(
                    level="WARNING",
                    message="Skipping unavailable API group version",
                    extra={"group_version": path, "status": e.status},
                )
                continue
            for resource in listing.get("resources", []):
                name = resource.get("name", "")
                if not name or "/" in name or not resource.get("kind"):
                    continue
                kinds.append(DiscoveredKind(
                    identity=ResourceIdentity(group=group, version=version, kind=resource["kind"]),
                    plural=name,
                    namespaced=bool(resource.get("namespaced", True)),
                    verbs=filter_verbs(resource.get("verbs", [])),
                ))
        return kinds

    def fetch_custom_resource_definitions(self) -> List[DiscoveredKind]:
        api = k8s_client.ApiextensionsV1Api(self._client())
        try:
            crds = api.list_custom_resource_definition(_request_timeout=self.request_timeout)
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise ClusterUnreachable(f"Cluster API unreachable: {e}", self.describe()) from e

        kinds: List[DiscoveredKind] = []
        for crd in crds.items:
            metadata = crd.metadata
            owner_kinds = [ref.kind for ref in (metadata.owner_references or [])]
            hint = infer_owner_hint(crd.spec.group, metadata.labels, metadata.annotations, owner_kinds)
            for version in crd.spec.versions or []:
                if not version.served:
                    continue
                identity = ResourceIdentity(group=crd.spec.group, version=version.name, kind=crd.spec.names.kind)
                self._crd_names[identity.key] = metadata.name
                kinds.append(DiscoveredKind(
                    identity=identity,
                    plural=crd.spec.names.plural,
                    namespaced=crd.spec.scope == "Namespaced",
                    origin=ResourceOrigin.CUSTOM_RESOURCE_DEFINITION,
                    owner_hint=hint,
                ))
        return kinds

    def fetch_schema(self, identity: ResourceIdentity) -> RawSchema:
        crd_name = self._crd_names.get(identity.key)
        try:
            if crd_name:
                return self._fetch_crd_schema(crd_name, identity)
            return self._fetch_builtin_schema(identity)
        except SchemaFetchFailed:
            raise
        except ApiException as e:
            raise SchemaFetchFailed(f"Schema request failed: {e.status} {e.reason}", identity.key) from e

    def _fetch_crd_schema(self, crd_name: str, identity: ResourceIdentity) -> RawSchema:
        api = k8s_client.ApiextensionsV1Api(self._client())
        crd = api.read_custom_resource_definition(crd_name, _request_timeout=self.request_timeout)
        for version in crd.spec.versions or []:
            if version.name == identity.version and version.schema and version.schema.open_api_v3_schema:
                body = self._client().sanitize_for_serialization(version.schema.open_api_v3_schema)
                return RawSchema(body=body)
        raise SchemaFetchFailed("CRD version has no structural schema", identity.key)

    def _load_openapi_definitions(self) -> Dict[str, Any]:
        with self._openapi_lock:
            if self._definitions is None:
                document = self._get_json("/openapi/v2")
                definitions = document.get("definitions", {}) or {}
                by_key: Dict[str, str] = {}
                for name, definition in definitions.items():
                    for gvk in definition.get(GVK_EXTENSION, []) or []:
                        key = ResourceIdentity(
                            group=gvk.get("group", ""),
                            version=gvk.get("version", ""),
                            kind=gvk.get("kind", ""),
                        ).key
                        by_key.setdefault(key, name)
                self._definition_by_key = by_key
                self._definitions = definitions
            return self._definitions

    def _fetch_builtin_schema(self, identity: ResourceIdentity) -> RawSchema:
        definitions = self._load_openapi_definitions()
        name = self._definition_by_key.get(identity.key)
        if not name:
            raise SchemaFetchFailed("No OpenAPI definition published for kind", identity.key)
        return RawSchema(body={"$ref": f"#/definitions/{name}"}, definitions=definitions)
