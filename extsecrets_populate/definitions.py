# -*- coding: utf-8 -*-
"""Sources of ExternalSecret definitions.

Definitions come either from the cluster, as custom resources, or from a directory of YAML
files laid out as <namespace>/<name>.yaml. Both parse the same document shape and apply the
same schema annotation, so resolution does not care where a definition came from. A malformed
definition is reported and skipped; the rest still load.
"""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import yaml
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from .exceptions import DefinitionError, PopulateError
from .model import (BACKEND_AZURE, BACKEND_GSM, BACKEND_KUBERNETES, BACKEND_VAULT,
                    ExternalSecretDefinition, FieldMapping, normalize_backend_type)
from .schema import annotate

EXTERNAL_SECRET_KIND = "ExternalSecret"
EXTERNAL_SECRET_GROUP = "kubernetes-client.io"
EXTERNAL_SECRET_VERSION = "v1"
EXTERNAL_SECRET_PLURAL = "externalsecrets"

SOURCE_CLUSTER = "cluster"
SOURCE_FILESYSTEM = "filesystem"

# spec field holding the store location for each backend
LOCATION_FIELDS = {
    BACKEND_VAULT: "vaultLocation",
    BACKEND_GSM: "projectId",
    BACKEND_AZURE: "keyVaultName",
}


@dataclass
class LoadResult:
    definitions: list = field(default_factory=list)
    # (name, namespace, DefinitionError)
    failures: list = field(default_factory=list)


def _parse_field(name, entry, namespaced):
    if not isinstance(entry, dict):
        raise DefinitionError(name, f"data entry {entry!r} is not a mapping")
    key = str(entry.get("key") or "")
    prop = entry.get("property")
    field_name = entry.get("name") or prop or key
    if not field_name:
        raise DefinitionError(name, f"data entry {entry!r} has no name")
    if not key and not namespaced:
        raise DefinitionError(name, f"data entry {field_name} has no key")
    if prop is None:
        prop = field_name if namespaced else ""

    source_key = source_property = None
    source_ref = entry.get("sourceRef")
    if source_ref is not None:
        if not isinstance(source_ref, dict) or not source_ref.get("name") or not source_ref.get("key"):
            raise DefinitionError(name, f"sourceRef of {field_name} needs a name and a key")
        source_key = str(source_ref["name"])
        source_property = str(source_ref["key"])

    return FieldMapping(name=str(field_name),
                        key=key,
                        property=str(prop),
                        source_key=source_key,
                        source_property=source_property)


def parse_definition(body, default_namespace=None, origin=""):
    """Build an ExternalSecretDefinition from a resource body.

    Raises:
        DefinitionError: when the body is not a usable ExternalSecret.
    """
    if not isinstance(body, dict):
        raise DefinitionError(origin, "document is not a mapping")
    metadata = body.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise DefinitionError(origin, "metadata is not a mapping")
    name = metadata.get("name")
    if not name:
        raise DefinitionError(origin, "metadata.name is missing")
    namespace = metadata.get("namespace") or default_namespace
    if not namespace:
        raise DefinitionError(name, "metadata.namespace is missing")

    annotations = metadata.get("annotations") or {}
    if not isinstance(annotations, dict):
        raise DefinitionError(name, "metadata.annotations is not a mapping")

    spec = body.get("spec")
    if not isinstance(spec, dict):
        raise DefinitionError(name, "spec is missing")
    backend_type = normalize_backend_type(spec.get("backendType") or "")
    if backend_type == BACKEND_KUBERNETES:
        location = namespace
    elif backend_type in LOCATION_FIELDS:
        location = str(spec.get(LOCATION_FIELDS[backend_type]) or "")
        if not location and backend_type != BACKEND_VAULT:
            raise DefinitionError(name, f"spec.{LOCATION_FIELDS[backend_type]} is required "
                                        f"for backendType {backend_type}")
    else:
        raise DefinitionError(name, f"unsupported backendType {spec.get('backendType')!r}")

    data = spec.get("data") or []
    if not isinstance(data, list):
        raise DefinitionError(name, "spec.data is not a list")
    namespaced = backend_type == BACKEND_KUBERNETES
    fields = tuple(_parse_field(name, entry, namespaced) for entry in data)

    definition = ExternalSecretDefinition(name=str(name),
                                          namespace=str(namespace),
                                          backend_type=backend_type,
                                          location=location,
                                          fields=fields,
                                          annotations=dict(annotations),
                                          origin=origin)
    seen = set()
    for f in fields:
        address = definition.address_of(f)
        if address in seen:
            raise DefinitionError(name, f"more than one data entry writes {address}")
        seen.add(address)
    return definition


class DefinitionSource(ABC):
    """Loads the ExternalSecret definitions of a namespace.

    Args:
        schema (extsecrets_populate.schema.Schema, optional): annotates the definitions
            with templates, sources and generators.
    """

    def __init__(self, schema=None):
        self.schema = schema

    @abstractmethod
    def _documents(self, namespace, failures):
        """Yield (origin, body, default namespace) for every candidate document."""
        return iter(())

    def load(self, namespace):
        """Load, parse and annotate the definitions in a namespace.

        The definitions are ordered by namespace and name.

        Returns:
            LoadResult
        """
        result = LoadResult()
        definitions = []
        for origin, body, default_namespace in self._documents(namespace, result.failures):
            if not isinstance(body, dict) or body.get("kind") != EXTERNAL_SECRET_KIND:
                logging.getLogger(__name__).debug(f"Ignoring non ExternalSecret document in {origin}")
                continue
            try:
                definition = parse_definition(body, default_namespace, origin)
            except DefinitionError as e:
                logging.getLogger(__name__).error(f"{e} ({origin})")
                result.failures.append((e.name, default_namespace or namespace, e))
                continue
            if definition.namespace != namespace:
                continue
            definitions.append(definition)

        definitions.sort(key=lambda d: (d.namespace, d.name))
        result.definitions, annotation_failures = annotate(definitions, self.schema)
        result.failures.extend(annotation_failures)
        logging.getLogger(__name__).info(
            f"Loaded {len(result.definitions)} ExternalSecrets from namespace {namespace} "
            f"with {len(result.failures)} failures")
        return result


class ClusterDefinitionSource(DefinitionSource):
    """ExternalSecret custom resources read through the kubernetes api."""

    def __init__(self, custom_objects_api=None, schema=None,
                 group=EXTERNAL_SECRET_GROUP,
                 version=EXTERNAL_SECRET_VERSION,
                 plural=EXTERNAL_SECRET_PLURAL):
        super(ClusterDefinitionSource, self).__init__(schema=schema)
        self._custom_objects_api = custom_objects_api
        self.group = group
        self.version = version
        self.plural = plural

    @property
    def custom_objects_api(self):
        if self._custom_objects_api is None:
            try:
                config.load_incluster_config()
            except ConfigException:
                config.load_kube_config()
            self._custom_objects_api = client.CustomObjectsApi()
        return self._custom_objects_api

    def _documents(self, namespace, failures):
        try:
            response = self.custom_objects_api.list_namespaced_custom_object(
                group=self.group,
                version=self.version,
                namespace=namespace,
                plural=self.plural)
        except ApiException as e:
            if e.status == 404:
                logging.getLogger(__name__).error(
                    f"{self.plural}.{self.group} is not installed in the cluster")
            raise PopulateError(f"failed to list {self.plural} in namespace {namespace}: {e}")
        for item in response.get("items", []):
            metadata = item.get("metadata") if isinstance(item, dict) else None
            name = metadata.get("name", "") if isinstance(metadata, dict) else ""
            yield f"{namespace}/{name}", item, namespace


class FileSystemDefinitionSource(DefinitionSource):
    """ExternalSecret YAML files below a directory.

    A document without a namespace takes the name of the directory holding it, or the
    requested namespace when it sits directly in the root.
    """

    EXTENSIONS = (".yaml", ".yml")

    def __init__(self, dir, schema=None):
        super(FileSystemDefinitionSource, self).__init__(schema=schema)
        self.dir = dir

    def _documents(self, namespace, failures):
        if not os.path.isdir(self.dir):
            raise PopulateError(f"definition directory {self.dir} does not exist")
        for root, dirs, files in os.walk(self.dir):
            dirs.sort()
            rel = os.path.relpath(root, self.dir)
            default_namespace = namespace if rel == "." else os.path.basename(root)
            for file_name in sorted(files):
                if not file_name.endswith(self.EXTENSIONS):
                    continue
                path = os.path.join(root, file_name)
                try:
                    with open(path, "r", encoding="utf-8") as fh:
                        documents = list(yaml.safe_load_all(fh))
                except (yaml.YAMLError, UnicodeDecodeError, OSError) as e:
                    logging.getLogger(__name__).error(f"Failed to parse {path}: {e}")
                    failures.append((path, default_namespace, DefinitionError(path, str(e))))
                    continue
                for document in documents:
                    yield path, document, default_namespace


def new_definition_source(source, dir=None, schema=None, custom_objects_api=None):
    """Create the definition source named by configuration."""
    if source == SOURCE_FILESYSTEM:
        return FileSystemDefinitionSource(dir or ".", schema=schema)
    if source == SOURCE_CLUSTER:
        return ClusterDefinitionSource(custom_objects_api=custom_objects_api, schema=schema)
    raise ValueError(f"unknown definition source {source!r}, expected "
                     f"{SOURCE_CLUSTER} or {SOURCE_FILESYSTEM}")
