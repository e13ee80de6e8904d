# -*- coding: utf-8 -*-
"""Secret schema documents and the annotation of ExternalSecrets from them.

A schema lists, per ExternalSecret name, how each field gets its value:

    spec:
      objects:
      - name: jenkins-x-bucketrepo
        properties:
        - name: username
          defaultValue: admin
        - name: password
          generator: password
        - name: token
          source: {secret: jx-boot, key: password}
        - name: settingsXml
          format: xml
          template: |
            <password>{{ secret("nexus", "password") }}</password>

An ExternalSecret may carry its schema object inline in the
`secret.jenkins-x.io/schema-object` annotation, which wins over the schema document.
"""

import dataclasses
import logging

import yaml
from google.cloud import storage

from .exceptions import SchemaAnnotationError
from .generators import GENERATORS

SCHEMA_OBJECT_ANNOTATION = "secret.jenkins-x.io/schema-object"

VALUE_SOURCES = ("source", "template", "generator", "defaultValue")


class Schema:
    """Schema objects keyed by ExternalSecret name."""

    def __init__(self, objects=None):
        self._objects = dict(objects or {})

    @classmethod
    def from_document(cls, document):
        objects = {}
        for obj in ((document or {}).get("spec") or {}).get("objects") or []:
            if not isinstance(obj, dict) or not obj.get("name"):
                raise ValueError(f"schema object without a name: {obj!r}")
            objects[obj["name"]] = obj
        return cls(objects)

    @property
    def objects(self):
        return dict(self._objects)

    def object_for(self, name):
        return self._objects.get(name)

    def __len__(self):
        return len(self._objects)


def _load_gcs(uri, _credentials_callback=None):
    bucket_name, _, blob_name = uri[len("gs://"):].partition("/")
    credentials = None
    if _credentials_callback is not None:
        credentials, _project_id = _credentials_callback()
    client = storage.Client(credentials=credentials)
    bucket = client.get_bucket(bucket_name)
    blob = bucket.get_blob(blob_name)
    if blob is None:
        raise FileNotFoundError(f"schema object {uri} does not exist")
    return blob.download_as_bytes().decode("utf-8")


def load_schema(path, _credentials_callback=None):
    """Load a schema from a local file or a ``gs://bucket/object`` uri."""
    if path.startswith("gs://"):
        text = _load_gcs(path, _credentials_callback)
    else:
        with open(path, "r", encoding="utf-8") as fh:
            text = fh.read()
    schema = Schema.from_document(yaml.safe_load(text))
    logging.getLogger(__name__).info(f"Loaded {len(schema)} schema objects from {path}")
    return schema


def _embedded_object(definition):
    embedded = definition.annotations.get(SCHEMA_OBJECT_ANNOTATION)
    if not embedded:
        return None
    try:
        obj = yaml.safe_load(embedded)
    except yaml.YAMLError as e:
        raise SchemaAnnotationError(definition.name, f"invalid {SCHEMA_OBJECT_ANNOTATION}: {e}")
    if not isinstance(obj, dict):
        raise SchemaAnnotationError(definition.name, f"{SCHEMA_OBJECT_ANNOTATION} is not a mapping")
    return obj


def _annotate_field(definition, field_mapping, prop):
    sources = [k for k in VALUE_SOURCES if prop.get(k) is not None]
    if len(sources) > 1:
        raise SchemaAnnotationError(
            definition.name,
            f"property {field_mapping.name} sets more than one of {', '.join(sources)}")
    if not sources:
        return field_mapping
    if field_mapping.source_key and sources[0] != "source":
        raise SchemaAnnotationError(
            definition.name,
            f"property {field_mapping.name} has a sourceRef and a {sources[0]}")

    if "template" in sources:
        if not isinstance(prop["template"], str):
            raise SchemaAnnotationError(definition.name,
                                        f"template of {field_mapping.name} is not a string")
        return dataclasses.replace(field_mapping,
                                   template=prop["template"],
                                   template_format=prop.get("format"))
    if "source" in sources:
        source = prop["source"]
        if not isinstance(source, dict) or not source.get("secret") or not source.get("key"):
            raise SchemaAnnotationError(
                definition.name,
                f"source of {field_mapping.name} needs a secret and a key")
        return dataclasses.replace(field_mapping,
                                   source_key=str(source["secret"]),
                                   source_property=str(source["key"]))
    if "generator" in sources:
        if prop["generator"] not in GENERATORS:
            raise SchemaAnnotationError(
                definition.name,
                f"unknown generator {prop['generator']} for {field_mapping.name}")
        length = prop.get("length")
        if length is not None and (not isinstance(length, int) or length <= 0):
            raise SchemaAnnotationError(definition.name,
                                        f"length of {field_mapping.name} must be a positive integer")
        return dataclasses.replace(field_mapping, generator=prop["generator"], length=length)
    return dataclasses.replace(field_mapping, default_value=str(prop["defaultValue"]))


def annotate_definition(definition, schema=None):
    """Return a copy of the definition with template, source and generator markers.

    Raises:
        SchemaAnnotationError: when the schema object for this definition is unusable.
    """
    obj = _embedded_object(definition)
    if obj is None and schema is not None:
        obj = schema.object_for(definition.name)
    if obj is None:
        return definition

    properties = {}
    for prop in obj.get("properties") or []:
        if not isinstance(prop, dict) or not prop.get("name"):
            raise SchemaAnnotationError(definition.name, f"schema property without a name: {prop!r}")
        properties[prop["name"]] = prop

    fields = tuple(_annotate_field(definition, f, properties[f.name]) if f.name in properties else f
                   for f in definition.fields)
    return dataclasses.replace(definition, fields=fields)


def annotate(definitions, schema=None):
    """Annotate every definition, collecting failures rather than stopping at one.

    Returns:
        tuple: (annotated definitions, list of (name, namespace, SchemaAnnotationError))
    """
    annotated = []
    failures = []
    for definition in definitions:
        try:
            annotated.append(annotate_definition(definition, schema))
        except SchemaAnnotationError as e:
            logging.getLogger(__name__).error(str(e))
            failures.append((definition.name, definition.namespace, e))
    return annotated, failures
