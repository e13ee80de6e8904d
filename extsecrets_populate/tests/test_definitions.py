# -*- coding: utf-8 -*-
"""
This modules purpose is to test loading ExternalSecrets and annotating them from a schema

"""

import logging
import os
import shutil
import tempfile
import unittest
from unittest import mock

from kubernetes.client.rest import ApiException

from extsecrets_populate import *
from extsecrets_populate.definitions import new_definition_source
from extsecrets_populate.model import KIND_COMPOSED, KIND_DEFAULT, KIND_GENERATED, KIND_LITERAL
from extsecrets_populate.schema import SCHEMA_OBJECT_ANNOTATION, annotate_definition

TEST_DATA = os.path.join(os.path.dirname(__file__), "test_data")


def setup_module():
    logging.basicConfig(level=logging.DEBUG)


def body(name, spec, namespace="jx", annotations=None):
    metadata = {"name": name}
    if namespace:
        metadata["namespace"] = namespace
    if annotations:
        metadata["annotations"] = annotations
    return {"apiVersion": "kubernetes-client.io/v1", "kind": "ExternalSecret",
            "metadata": metadata, "spec": spec}


class TestParseDefinition(unittest.TestCase):

    def test_vault_definition(self):
        definition = parse_definition(body("pipeline", {
            "backendType": "vault",
            "data": [{"name": "token", "key": "secret/data/jx/pipelineUser", "property": "token"},
                     {"name": "whole", "key": "secret/data/jx/other"}]}))
        self.assertEqual("vault", definition.backend_type)
        self.assertEqual("", definition.location)
        self.assertEqual(SecretStoreLocation("", "secret/data/jx/pipelineUser", "token"),
                         definition.address_of(definition.fields[0]))
        self.assertEqual("", definition.fields[1].property)
        self.assertFalse(definition.managed_fields)

    def test_location_fields(self):
        gsm = parse_definition(body("a", {"backendType": "gcpSecretsManager", "projectId": "123456",
                                          "data": [{"name": "x", "key": "x"}]}))
        self.assertEqual("123456", gsm.location)
        azure = parse_definition(body("a", {"backendType": "azureKeyVault",
                                            "keyVaultName": "myVault",
                                            "data": [{"name": "x", "key": "x"}]}))
        self.assertEqual("myVault", azure.location)

    def test_kubernetes_definition(self):
        definition = parse_definition(body("oauth", {"backendType": "local",
                                                     "data": [{"name": "oauth", "property": "token"},
                                                              {"name": "user"}]}))
        self.assertEqual("kubernetes", definition.backend_type)
        self.assertEqual("jx", definition.location)
        self.assertEqual(SecretStoreLocation("jx", "oauth", "token"),
                         definition.address_of(definition.fields[0]))
        self.assertEqual("user", definition.fields[1].property)

    def test_source_ref(self):
        definition = parse_definition(body("pipeline", {
            "backendType": "vault",
            "data": [{"name": "token", "key": "secret/data/p", "property": "token",
                      "sourceRef": {"name": "jx-boot", "key": "password"}}]}))
        self.assertEqual(KIND_LITERAL, definition.fields[0].kind)
        self.assertEqual(("jx-boot", "password"),
                         (definition.fields[0].source_key, definition.fields[0].source_property))

    def test_default_namespace(self):
        definition = parse_definition(body("a", {"backendType": "vault", "data": []}, namespace=None),
                                      default_namespace="tools")
        self.assertEqual("tools", definition.namespace)

    def test_malformed(self):
        cases = [
            ("missing name", {"kind": "ExternalSecret", "metadata": {}, "spec": {}}),
            ("missing namespace", body("a", {"backendType": "vault"}, namespace=None)),
            ("missing spec", {"kind": "ExternalSecret", "metadata": {"name": "a", "namespace": "jx"}}),
            ("unknown backend", body("a", {"backendType": "carrierPigeon"})),
            ("missing project", body("a", {"backendType": "gcpSecretsManager", "data": []})),
            ("missing vault", body("a", {"backendType": "azureKeyVault", "data": []})),
            ("data not a list", body("a", {"backendType": "vault", "data": {"x": 1}})),
            ("missing key", body("a", {"backendType": "vault", "data": [{"name": "x"}]})),
            ("bad sourceRef", body("a", {"backendType": "vault",
                                         "data": [{"name": "x", "key": "k", "sourceRef": {"name": "s"}}]})),
            ("duplicate address", body("a", {"backendType": "vault",
                                             "data": [{"name": "x", "key": "k", "property": "p"},
                                                      {"name": "y", "key": "k", "property": "p"}]})),
            ("metadata not a mapping", {"kind": "ExternalSecret", "metadata": "oops",
                                        "spec": {"backendType": "vault"}}),
            ("annotations not a mapping", body("a", {"backendType": "vault", "data": []},
                                               annotations=["not", "a", "mapping"])),
        ]
        for description, document in cases:
            with self.subTest(description):
                with self.assertRaises(DefinitionError):
                    parse_definition(document)


class FakeCustomObjectsApi:

    def __init__(self, items=None, error=None):
        self.items = items or []
        self.error = error
        self.calls = []

    def list_namespaced_custom_object(self, group, version, namespace, plural):
        self.calls.append((group, version, namespace, plural))
        if self.error is not None:
            raise self.error
        return {"items": self.items}


class TestDefinitionSources(unittest.TestCase):

    def setUp(self):
        self.dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.dir)

    def write(self, relative_path, text):
        path = os.path.join(self.dir, relative_path)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as fh:
            fh.write(text)

    def test_cluster_source_keeps_good_definitions(self):
        api = FakeCustomObjectsApi([
            body("zeta", {"backendType": "vault", "data": []}),
            body("alpha", {"backendType": "vault", "data": []}),
            body("broken", {"backendType": "carrierPigeon"}),
        ])
        result = ClusterDefinitionSource(custom_objects_api=api).load("jx")
        self.assertEqual(["alpha", "zeta"], [d.name for d in result.definitions])
        self.assertEqual([("broken", "jx")], [(n, ns) for n, ns, _ in result.failures])
        self.assertEqual([("kubernetes-client.io", "v1", "jx", "externalsecrets")], api.calls)

    def test_cluster_source_skips_resource_with_bad_metadata(self):
        api = FakeCustomObjectsApi([
            {"apiVersion": "kubernetes-client.io/v1", "kind": "ExternalSecret", "metadata": "oops"},
            "not even a mapping",
            body("good", {"backendType": "vault", "data": []}),
        ])
        result = ClusterDefinitionSource(custom_objects_api=api).load("jx")
        self.assertEqual(["good"], [d.name for d in result.definitions])
        self.assertEqual(1, len(result.failures))
        self.assertIsInstance(result.failures[0][2], DefinitionError)

    def test_cluster_source_api_error(self):
        api = FakeCustomObjectsApi(error=ApiException(status=404, reason="Not Found"))
        with self.assertRaises(PopulateError):
            ClusterDefinitionSource(custom_objects_api=api).load("jx")

    def test_filesystem_source(self):
        result = FileSystemDefinitionSource(os.path.join(TEST_DATA, "filesystem")).load("jx")
        self.assertEqual([], result.failures)
        self.assertEqual(1, len(result.definitions))
        definition = result.definitions[0]
        self.assertEqual(("lighthouse-oauth-token", "jx"), (definition.name, definition.namespace))
        # the embedded schema object annotated the field
        self.assertEqual(("jx-boot", "password"),
                         (definition.fields[0].source_key, definition.fields[0].source_property))

    def test_filesystem_namespaces_and_failures(self):
        self.write("jx/a.yaml", "apiVersion: kubernetes-client.io/v1\nkind: ExternalSecret\n"
                                "metadata:\n  name: a\nspec:\n  backendType: vault\n  data: []\n")
        self.write("other/b.yaml", "apiVersion: kubernetes-client.io/v1\nkind: ExternalSecret\n"
                                   "metadata:\n  name: b\nspec:\n  backendType: vault\n  data: []\n")
        self.write("c.yml", "apiVersion: kubernetes-client.io/v1\nkind: ExternalSecret\n"
                            "metadata:\n  name: c\nspec:\n  backendType: vault\n  data: []\n")
        self.write("jx/broken.yaml", "kind: ExternalSecret\nmetadata: [unclosed\n")
        self.write("jx/notes.txt", "not yaml at all: [")

        result = new_definition_source("filesystem", dir=self.dir).load("jx")
        self.assertEqual(["a", "c"], [d.name for d in result.definitions])
        self.assertEqual(1, len(result.failures))
        self.assertTrue(result.failures[0][0].endswith("broken.yaml"))

    def test_filesystem_undecodable_file(self):
        path = os.path.join(self.dir, "jx", "a-bad.yaml")
        os.makedirs(os.path.dirname(path))
        with open(path, "wb") as fh:
            fh.write(b"kind: ExternalSecret\nmetadata:\n  name: \xff\xfe\n")
        self.write("jx/good.yaml", "apiVersion: kubernetes-client.io/v1\nkind: ExternalSecret\n"
                                   "metadata:\n  name: good\nspec:\n  backendType: vault\n  data: []\n")

        result = FileSystemDefinitionSource(self.dir).load("jx")
        self.assertEqual(["good"], [d.name for d in result.definitions])
        self.assertEqual(1, len(result.failures))
        self.assertTrue(result.failures[0][0].endswith("a-bad.yaml"))

    def test_filesystem_unreadable_file(self):
        self.write("jx/good.yaml", "apiVersion: kubernetes-client.io/v1\nkind: ExternalSecret\n"
                                   "metadata:\n  name: good\nspec:\n  backendType: vault\n  data: []\n")
        self.write("jx/locked.yaml", "")

        def guarded_open(path, *args, **kwargs):
            if path.endswith("locked.yaml"):
                raise PermissionError(13, "Permission denied", path)
            return open(path, *args, **kwargs)

        with mock.patch("extsecrets_populate.definitions.open", create=True, side_effect=guarded_open):
            result = FileSystemDefinitionSource(self.dir).load("jx")
        self.assertEqual(["good"], [d.name for d in result.definitions])
        self.assertEqual(1, len(result.failures))
        self.assertTrue(result.failures[0][0].endswith("locked.yaml"))

    def test_filesystem_missing_dir(self):
        with self.assertRaises(PopulateError):
            FileSystemDefinitionSource(os.path.join(self.dir, "nope")).load("jx")

    def test_unknown_source(self):
        with self.assertRaises(ValueError):
            new_definition_source("carrierPigeon")


class TestSchema(unittest.TestCase):

    def setUp(self):
        self.schema = load_schema(os.path.join(TEST_DATA, "secret-schema.yaml"))

    def definition(self, name, *entries, annotations=None):
        return parse_definition(body(name, {"backendType": "vault", "data": list(entries)},
                                     annotations=annotations))

    def test_load_schema(self):
        self.assertIn("jenkins-maven-settings", self.schema.objects)
        self.assertIsNotNone(self.schema.object_for("lighthouse-hmac-token"))
        self.assertIsNone(self.schema.object_for("unknown"))

    def test_annotation_kinds(self):
        annotated = annotate_definition(
            self.definition("jenkins-x-bucketrepo",
                            {"name": "username", "key": "secret/data/b", "property": "username"},
                            {"name": "password", "key": "secret/data/b", "property": "password"},
                            {"name": "other", "key": "secret/data/b", "property": "other"}),
            self.schema)
        username, password, other = annotated.fields
        self.assertEqual((KIND_DEFAULT, "admin"), (username.kind, username.default_value))
        self.assertEqual((KIND_GENERATED, "password", 24),
                         (password.kind, password.generator, password.length))
        self.assertIsNone(other.kind)

        settings = annotate_definition(
            self.definition("jenkins-maven-settings",
                            {"name": "settingsXml", "key": "secret/data/m", "property": "settingsXml"}),
            self.schema)
        self.assertEqual(KIND_COMPOSED, settings.fields[0].kind)
        self.assertEqual("xml", settings.fields[0].template_format)
        self.assertTrue(settings.composed)

    def test_embedded_annotation_wins(self):
        annotations = {SCHEMA_OBJECT_ANNOTATION: "name: jenkins-x-bucketrepo\n"
                                                 "properties:\n"
                                                 "- name: username\n"
                                                 "  defaultValue: root\n"}
        annotated = annotate_definition(
            self.definition("jenkins-x-bucketrepo",
                            {"name": "username", "key": "secret/data/b", "property": "username"},
                            annotations=annotations),
            self.schema)
        self.assertEqual("root", annotated.fields[0].default_value)

    def test_invalid_properties(self):
        cases = [
            ("two sources", {"name": "x", "defaultValue": "a", "generator": "password"}),
            ("unknown generator", {"name": "x", "generator": "uuid"}),
            ("bad length", {"name": "x", "generator": "password", "length": -1}),
            ("bad source", {"name": "x", "source": {"secret": "jx-boot"}}),
            ("template not a string", {"name": "x", "template": ["a"]}),
        ]
        for description, prop in cases:
            with self.subTest(description):
                schema = Schema({"a": {"name": "a", "properties": [prop]}})
                with self.assertRaises(SchemaAnnotationError):
                    annotate_definition(self.definition("a", {"name": "x", "key": "k"}), schema)

    def test_source_ref_with_template_is_rejected(self):
        schema = Schema({"a": {"name": "a", "properties": [{"name": "x", "template": "y"}]}})
        definition = self.definition("a", {"name": "x", "key": "k",
                                           "sourceRef": {"name": "jx-boot", "key": "password"}})
        with self.assertRaises(SchemaAnnotationError):
            annotate_definition(definition, schema)

    def test_annotate_collects_failures(self):
        schema = Schema({"bad": {"name": "bad", "properties": [{"name": "x", "generator": "uuid"}]}})
        good = self.definition("good", {"name": "x", "key": "k"})
        bad = self.definition("bad", {"name": "x", "key": "k"})
        annotated, failures = annotate([good, bad], schema)
        self.assertEqual(["good"], [d.name for d in annotated])
        self.assertEqual([("bad", "jx")], [(n, ns) for n, ns, _ in failures])

    def test_load_schema_from_gcs(self):
        with open(os.path.join(TEST_DATA, "secret-schema.yaml"), "rb") as fh:
            document = fh.read()
        with mock.patch("extsecrets_populate.schema.storage.Client") as client_class:
            blob = client_class.return_value.get_bucket.return_value.get_blob.return_value
            blob.download_as_bytes.return_value = document
            schema = load_schema("gs://my-bucket/config/secret-schema.yaml",
                                 _credentials_callback=lambda: ("credentials", "project"))
        client_class.assert_called_once_with(credentials="credentials")
        client_class.return_value.get_bucket.assert_called_once_with("my-bucket")
        client_class.return_value.get_bucket.return_value.get_blob.assert_called_once_with(
            "config/secret-schema.yaml")
        self.assertEqual(len(self.schema), len(schema))

    def test_load_schema_from_missing_gcs_object(self):
        with mock.patch("extsecrets_populate.schema.storage.Client") as client_class:
            client_class.return_value.get_bucket.return_value.get_blob.return_value = None
            with self.assertRaises(FileNotFoundError):
                load_schema("gs://my-bucket/missing.yaml")


if __name__ == '__main__':
    unittest.main()
