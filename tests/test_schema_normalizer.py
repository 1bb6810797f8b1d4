"""Tests for schema normalization and the capability descriptor."""

from k8s_recommender.core.discovery.models import FieldType, concrete_field_path, normalize_field_path
from k8s_recommender.core.discovery.schema_normalizer import RawSchema, normalize

from conftest import SELF_REFERENTIAL_DEFINITIONS, deployment_schema, postgres_schema, service_schema


class TestFieldPaths:
    def test_normalize_replaces_indexes(self):
        assert normalize_field_path("spec.containers[0].ports[12].name") == "spec.containers[].ports[].name"

    def test_concrete_uses_first_element(self):
        assert concrete_field_path("spec.containers[].image") == "spec.containers[0].image"


class TestNormalizeBuiltIn:
    def test_resolves_definitions(self):
        descriptor = normalize(deployment_schema())
        assert descriptor.description.startswith("Deployment enables")
        image = descriptor.node("spec.template.spec.containers[].image")
        assert image is not None
        assert image.type == FieldType.STRING
        assert image.description == "Container image name."

    def test_semantic_types(self):
        descriptor = normalize(deployment_schema())
        assert descriptor.node("spec.replicas").type == FieldType.NUMBER
        assert descriptor.node("spec.template.spec.containers").type == FieldType.ARRAY
        assert descriptor.node("spec.template").type == FieldType.OBJECT
        assert descriptor.node("spec.template").ref == "io.k8s.api.core.v1.PodTemplateSpec"

    def test_required_and_enum(self):
        descriptor = normalize(deployment_schema())
        assert descriptor.node("spec.template").required
        assert not descriptor.node("spec.replicas").required
        assert descriptor.node("spec.strategy.type").enum == ["Recreate", "RollingUpdate"]

    def test_open_ended_maps(self):
        descriptor = normalize(deployment_schema())
        labels = descriptor.node("metadata.labels")
        assert labels.open_ended
        assert descriptor.lookup("metadata.labels.app") == labels
        assert descriptor.field_type("metadata.labels.app") == FieldType.STRING

    def test_int_or_string(self):
        descriptor = normalize(service_schema())
        assert descriptor.node("spec.ports[].targetPort").type == FieldType.STRING

    def test_lookup_with_concrete_index(self):
        descriptor = normalize(deployment_schema())
        node = descriptor.lookup("spec.template.spec.containers[3].name")
        assert node is not None
        assert node.id == "spec.template.spec.containers[].name"

    def test_unknown_path(self):
        descriptor = normalize(deployment_schema())
        assert descriptor.lookup("spec.bogus") is None
        assert not descriptor.has_field("spec.template.spec.containers[0].imagee")

    def test_universal_metadata(self):
        descriptor = normalize(postgres_schema())
        assert descriptor.has_field("metadata.name")
        assert descriptor.has_field("metadata.labels.team")
        assert not descriptor.has_field("metadata.labels.")

    def test_deterministic(self):
        assert normalize(deployment_schema()) == normalize(deployment_schema())


class TestNormalizeBounds:
    def test_self_reference_is_truncated(self):
        raw = RawSchema(body={"$ref": "#/definitions/Node"}, definitions=SELF_REFERENTIAL_DEFINITIONS)
        descriptor = normalize(raw)
        child = descriptor.node("child")
        assert child.truncated
        assert child.type == FieldType.REFERENCE
        assert child.ref == "Node"
        assert descriptor.node("value").type == FieldType.STRING
        assert descriptor.lookup("child.value") is None

    def test_unresolvable_reference(self):
        descriptor = normalize({
            "type": "object",
            "properties": {"x": {"$ref": "#/definitions/Missing"}},
        })
        node = descriptor.node("x")
        assert node.truncated
        assert node.ref == "Missing"

    def test_depth_bound(self):
        schema = {
            "type": "object",
            "properties": {
                "a": {
                    "type": "object",
                    "properties": {
                        "b": {"type": "object", "properties": {"c": {"type": "string"}}},
                    },
                },
            },
        }
        descriptor = normalize(schema, max_depth=1)
        assert not descriptor.node("a").truncated
        assert descriptor.node("a.b").truncated
        assert descriptor.node("a.b.c") is None
        assert descriptor.lookup("a.b.c") is None

    def test_all_of_merges_members(self):
        raw = RawSchema(
            body={
                "allOf": [{"$ref": "#/definitions/Base"}],
                "properties": {"extra": {"type": "string"}},
            },
            definitions={
                "Base": {"type": "object", "required": ["id"], "properties": {"id": {"type": "string"}}},
            },
        )
        descriptor = normalize(raw)
        assert descriptor.node("id").required
        assert descriptor.node("extra") is not None

    def test_garbage_input(self):
        descriptor = normalize(None)
        assert descriptor.root_node is not None
        assert descriptor.root_node.open_ended


class TestCapabilityDescriptor:
    def test_required_leaf_paths(self):
        descriptor = normalize(deployment_schema())
        assert descriptor.required_leaf_paths("spec") == ["spec.template.spec.containers[].name"]

    def test_required_leaf_paths_crd(self):
        descriptor = normalize(postgres_schema())
        assert descriptor.required_leaf_paths("spec") == ["spec.instances"]

    def test_iter_fields_is_sorted_depth_first(self):
        descriptor = normalize(postgres_schema())
        assert [n.id for n in descriptor.iter_fields()] == [
            "spec",
            "spec.instances",
            "spec.storage",
            "spec.storage.size",
        ]
