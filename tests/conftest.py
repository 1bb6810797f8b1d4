"""Shared test fixtures."""

import copy
import time
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from k8s_recommender.config.config import Config
from k8s_recommender.core.discovery.cluster_connection import ClusterConnection, DiscoveredKind
from k8s_recommender.core.discovery.models import (
    CapabilityIndex,
    ResourceDescriptor,
    ResourceIdentity,
    ResourceOrigin,
)
from k8s_recommender.core.discovery.schema_normalizer import RawSchema, normalize
from k8s_recommender.core.oracle.decision_oracle import DecisionOracle
from k8s_recommender.core.oracle.retry import RetryPolicy
from k8s_recommender.core.oracle.templates import (
    CANDIDATE_SELECTION,
    QUESTION_DERIVATION,
    SOLUTION_ENHANCEMENT,
    SOLUTION_RANKING,
)
from k8s_recommender.utils.exceptions import ClusterUnreachable, OracleUnavailable

# ============================================================================
# Sample schemas
# ============================================================================

OBJECT_META = {
    "description": "Standard object metadata.",
    "type": "object",
    "properties": {
        "name": {"type": "string", "description": "Name must be unique within a namespace."},
        "namespace": {"type": "string"},
        "labels": {"type": "object", "additionalProperties": {"type": "string"}},
        "annotations": {"type": "object", "additionalProperties": {"type": "string"}},
    },
}

K8S_DEFINITIONS: Dict[str, Any] = {
    "io.k8s.apimachinery.pkg.apis.meta.v1.ObjectMeta": OBJECT_META,
    "io.k8s.apimachinery.pkg.apis.meta.v1.LabelSelector": {
        "type": "object",
        "properties": {
            "matchLabels": {"type": "object", "additionalProperties": {"type": "string"}},
        },
    },
    "io.k8s.api.apps.v1.Deployment": {
        "description": "Deployment enables declarative updates for Pods and ReplicaSets.",
        "type": "object",
        "properties": {
            "apiVersion": {"type": "string"},
            "kind": {"type": "string"},
            "metadata": {"$ref": "#/definitions/io.k8s.apimachinery.pkg.apis.meta.v1.ObjectMeta"},
            "spec": {"$ref": "#/definitions/io.k8s.api.apps.v1.DeploymentSpec"},
            "status": {"type": "object", "properties": {"replicas": {"type": "integer"}}},
        },
        "x-kubernetes-group-version-kind": [{"group": "apps", "version": "v1", "kind": "Deployment"}],
    },
    "io.k8s.api.apps.v1.DeploymentSpec": {
        "type": "object",
        "required": ["selector", "template"],
        "properties": {
            "replicas": {"type": "integer", "description": "Number of desired pods."},
            "selector": {"$ref": "#/definitions/io.k8s.apimachinery.pkg.apis.meta.v1.LabelSelector"},
            "template": {"$ref": "#/definitions/io.k8s.api.core.v1.PodTemplateSpec"},
            "strategy": {
                "type": "object",
                "properties": {"type": {"type": "string", "enum": ["Recreate", "RollingUpdate"]}},
            },
        },
    },
    "io.k8s.api.core.v1.PodTemplateSpec": {
        "type": "object",
        "required": ["spec"],
        "properties": {
            "metadata": {"$ref": "#/definitions/io.k8s.apimachinery.pkg.apis.meta.v1.ObjectMeta"},
            "spec": {"$ref": "#/definitions/io.k8s.api.core.v1.PodSpec"},
        },
    },
    "io.k8s.api.core.v1.PodSpec": {
        "type": "object",
        "required": ["containers"],
        "properties": {
            "containers": {
                "type": "array",
                "items": {"$ref": "#/definitions/io.k8s.api.core.v1.Container"},
            },
            "restartPolicy": {"type": "string", "enum": ["Always", "OnFailure", "Never"]},
        },
    },
    "io.k8s.api.core.v1.Container": {
        "type": "object",
        "required": ["name"],
        "properties": {
            "name": {"type": "string", "description": "Name of the container."},
            "image": {"type": "string", "description": "Container image name."},
            "ports": {
                "type": "array",
                "items": {
                    "type": "object",
                    "required": ["containerPort"],
                    "properties": {"containerPort": {"type": "integer"}},
                },
            },
        },
    },
    "io.k8s.api.core.v1.Service": {
        "description": "Service is a named abstraction of software service.",
        "type": "object",
        "properties": {
            "metadata": {"$ref": "#/definitions/io.k8s.apimachinery.pkg.apis.meta.v1.ObjectMeta"},
            "spec": {
                "type": "object",
                "properties": {
                    "type": {"type": "string", "enum": ["ClusterIP", "NodePort", "LoadBalancer"]},
                    "ports": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "required": ["port"],
                            "properties": {
                                "port": {"type": "integer"},
                                "targetPort": {"x-kubernetes-int-or-string": True},
                            },
                        },
                    },
                    "selector": {"type": "object", "additionalProperties": {"type": "string"}},
                },
            },
        },
    },
}

POSTGRES_CLUSTER_SCHEMA = {
    "description": "Cluster is the Schema for the PostgreSQL API.",
    "type": "object",
    "properties": {
        "spec": {
            "type": "object",
            "required": ["instances"],
            "properties": {
                "instances": {"type": "integer", "description": "Number of instances."},
                "storage": {"type": "object", "properties": {"size": {"type": "string"}}},
            },
        },
    },
}

SELF_REFERENTIAL_DEFINITIONS = {
    "Node": {
        "type": "object",
        "properties": {
            "value": {"type": "string"},
            "child": {"$ref": "#/definitions/Node"},
        },
    },
}

DEPLOYMENT = ResourceIdentity(group="apps", version="v1", kind="Deployment")
SERVICE = ResourceIdentity(group="", version="v1", kind="Service")
POSTGRES_CLUSTER = ResourceIdentity(group="postgresql.cnpg.io", version="v1", kind="Cluster")


def definition_ref(name: str) -> Dict[str, str]:
    return {"$ref": f"#/definitions/{name}"}


def deployment_schema() -> RawSchema:
    return RawSchema(body=definition_ref("io.k8s.api.apps.v1.Deployment"), definitions=K8S_DEFINITIONS)


def service_schema() -> RawSchema:
    return RawSchema(body=definition_ref("io.k8s.api.core.v1.Service"), definitions=K8S_DEFINITIONS)


def postgres_schema() -> RawSchema:
    return RawSchema(body=POSTGRES_CLUSTER_SCHEMA)


# ============================================================================
# Fakes
# ============================================================================

VERBS = ["create", "delete", "get", "list", "update"]


class FakeClusterConnection(ClusterConnection):
    """In-memory cluster with scripted schemas, failures and slow kinds."""

    def __init__(
        self,
        kinds: Optional[List[DiscoveredKind]] = None,
        schemas: Optional[Dict[str, RawSchema]] = None,
        custom: Optional[List[DiscoveredKind]] = None,
        failures: Optional[Dict[str, Exception]] = None,
        slow: Optional[Dict[str, float]] = None,
        unreachable: bool = False,
        crd_error: Optional[Exception] = None,
    ) -> None:
        self.kinds = kinds or []
        self.schemas = schemas or {}
        self.custom = custom or []
        self.failures = failures or {}
        self.slow = slow or {}
        self.unreachable = unreachable
        self.crd_error = crd_error
        self.fetched: List[str] = []

    def list_resource_kinds(self) -> List[DiscoveredKind]:
        if self.unreachable:
            raise ClusterUnreachable("connection refused", "https://127.0.0.1:6443")
        return list(self.kinds)

    def fetch_custom_resource_definitions(self) -> List[DiscoveredKind]:
        if self.crd_error is not None:
            raise self.crd_error
        return list(self.custom)

    def fetch_schema(self, identity: ResourceIdentity) -> RawSchema:
        self.fetched.append(identity.key)
        if identity.key in self.slow:
            time.sleep(self.slow[identity.key])
        if identity.key in self.failures:
            raise self.failures[identity.key]
        return self.schemas[identity.key]

    def describe(self) -> str:
        return "fake-cluster"


Scripted = Union[Dict[str, Any], Exception, Callable[[Dict[str, Any]], Dict[str, Any]]]


class FakeOracle(DecisionOracle):
    """
    Scripted decision oracle.

    ``responses`` maps a template id to one response, a callable of the
    context, or a list consumed in order (the last entry repeats).
    """

    def __init__(self, responses: Optional[Dict[str, Union[Scripted, List[Scripted]]]] = None) -> None:
        self.responses: Dict[str, Any] = {
            key: list(value) if isinstance(value, list) else value
            for key, value in (responses or {}).items()
        }
        self.calls: List[tuple] = []

    def calls_for(self, template_id: str) -> List[Dict[str, Any]]:
        return [context for tid, context in self.calls if tid == template_id]

    async def ask(self, template_id: str, context: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append((template_id, copy.deepcopy(context)))
        scripted = self.responses.get(template_id)
        if scripted is None:
            raise OracleUnavailable("no scripted response", template_id)
        if isinstance(scripted, list):
            scripted = scripted.pop(0) if len(scripted) > 1 else scripted[0]
        if isinstance(scripted, Exception):
            raise scripted
        if callable(scripted):
            scripted = scripted(context)
        return copy.deepcopy(scripted)


# ============================================================================
# Scripted oracle responses for "run a web app"
# ============================================================================

IMAGE_PATH = "spec.template.spec.containers[0].image"

CANDIDATES_RESPONSE = {
    "candidates": [
        {"kind": "Deployment", "api_version": "apps/v1", "reason": "runs stateless pods"},
        {"kind": "Service", "api_version": "v1", "reason": "exposes the pods"},
        {"kind": "KnativeService", "api_version": "serving.knative.dev/v1", "reason": "serverless"},
    ]
}

RANKING_RESPONSE = {
    "solutions": [
        {
            "resources": [{"kind": "Deployment", "api_version": "apps/v1"}],
            "rationale": "A Deployment runs the web app",
            "score": 0.9,
            "open_questions": [
                {"resource_index": 0, "field_path": IMAGE_PATH, "reason": "container image to run"},
            ],
            "assignments": [{"resource_index": 0, "field_path": "spec.replicas", "value": 1}],
        },
        {
            "resources": [
                {"kind": "Deployment", "api_version": "apps/v1"},
                {"kind": "Service", "api_version": "v1"},
            ],
            "rationale": "Deployment plus a Service to reach it",
            "score": 0.8,
            "open_questions": [
                {"resource_index": 0, "field_path": IMAGE_PATH, "reason": "container image to run"},
            ],
        },
    ]
}

QUESTIONS_RESPONSE = {
    "questions": [
        {
            "resource_index": 0,
            "field_path": IMAGE_PATH,
            "prompt": "Which container image should run?",
            "category": "required",
        },
        {
            "resource_index": 0,
            "field_path": "spec.strategy.type",
            "prompt": "How should updates roll out?",
            "category": "advanced",
        },
    ]
}

ENHANCEMENT_RESPONSE = {
    "assignments": [{"resource_index": 0, "field_path": "spec.replicas", "value": 3}],
}


def web_app_responses() -> Dict[str, Any]:
    return {
        CANDIDATE_SELECTION: CANDIDATES_RESPONSE,
        SOLUTION_RANKING: RANKING_RESPONSE,
        QUESTION_DERIVATION: QUESTIONS_RESPONSE,
        SOLUTION_ENHANCEMENT: ENHANCEMENT_RESPONSE,
    }


# ============================================================================
# Fixtures
# ============================================================================

def make_descriptor(identity: ResourceIdentity, raw: RawSchema, **fields: Any) -> ResourceDescriptor:
    capabilities = normalize(raw)
    return ResourceDescriptor(
        identity=identity,
        verbs=list(VERBS),
        description=capabilities.description,
        capabilities=capabilities,
        **fields,
    )


@pytest.fixture
def sample_index() -> CapabilityIndex:
    return CapabilityIndex.build([
        make_descriptor(DEPLOYMENT, deployment_schema(), plural="deployments"),
        make_descriptor(SERVICE, service_schema(), plural="services"),
        make_descriptor(
            POSTGRES_CLUSTER,
            postgres_schema(),
            plural="clusters",
            origin=ResourceOrigin.CUSTOM_RESOURCE_DEFINITION,
            owner_hint="managed by CloudNativePG",
        ),
    ])


@pytest.fixture
def deployment_only_index() -> CapabilityIndex:
    return CapabilityIndex.build([make_descriptor(DEPLOYMENT, deployment_schema(), plural="deployments")])


@pytest.fixture
def sample_connection() -> FakeClusterConnection:
    return FakeClusterConnection(
        kinds=[
            DiscoveredKind(identity=DEPLOYMENT, plural="deployments", verbs=list(VERBS)),
            DiscoveredKind(identity=SERVICE, plural="services", verbs=list(VERBS)),
            DiscoveredKind(identity=POSTGRES_CLUSTER, plural="clusters", verbs=list(VERBS)),
        ],
        custom=[
            DiscoveredKind(
                identity=POSTGRES_CLUSTER,
                plural="clusters",
                verbs=list(VERBS),
                origin=ResourceOrigin.CUSTOM_RESOURCE_DEFINITION,
                owner_hint="managed by CloudNativePG",
            ),
        ],
        schemas={
            DEPLOYMENT.key: deployment_schema(),
            SERVICE.key: service_schema(),
            POSTGRES_CLUSTER.key: postgres_schema(),
        },
    )


@pytest.fixture
def no_wait_retry() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, backoff_base_seconds=0.0, backoff_max_seconds=0.0)


@pytest.fixture
def web_app_oracle() -> FakeOracle:
    return FakeOracle(web_app_responses())


@pytest.fixture
def test_config() -> Config:
    return Config({
        "SESSION_STORE": "memory",
        "ORACLE_BACKOFF_BASE_SECONDS": 0.0,
        "ORACLE_BACKOFF_MAX_SECONDS": 0.0,
        "SESSION_TTL_SECONDS": 3600,
        "SESSION_MAX_ORACLE_FAILURES": 2,
    })
