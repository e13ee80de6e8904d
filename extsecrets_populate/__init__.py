# -*- coding: utf-8 -*-
"""extsecrets_populate

Populates the secret stores behind ExternalSecret definitions. Values are copied from
existing secrets, generated, or rendered from templates over other secrets, and written to
Vault, Google Secret Manager, Azure Key Vault or Kubernetes Secrets. Runs are idempotent
and can be repeated as new source secrets appear.

"""

from extsecrets_populate.exceptions import PopulateError, \
    SecretDecodeError, \
    SecretStoreError, \
    WriteConflictError, \
    DefinitionError, \
    SchemaAnnotationError, \
    TemplateRenderError, \
    PopulateFailed
from extsecrets_populate.model import ExternalSecretDefinition, \
    FieldMapping, \
    ResolvedSecretValue, \
    SecretStoreLocation, \
    RetryPolicy, \
    PopulateState, \
    DefinitionOutcome, \
    PopulateResult
from extsecrets_populate.stores import SecretStore, SecretStoreFactory
from extsecrets_populate.schema import Schema, load_schema, annotate
from extsecrets_populate.definitions import ClusterDefinitionSource, \
    FileSystemDefinitionSource, \
    parse_definition
from extsecrets_populate.templating import TemplateRenderer
from extsecrets_populate.resolver import ValueResolver
from extsecrets_populate.populate import PopulateOptions, SecretPopulator
from ._version import __version__

__all__ = ["__version__",
           "PopulateError",
           "SecretStoreError",
           "SecretDecodeError",
           "WriteConflictError",
           "DefinitionError",
           "SchemaAnnotationError",
           "TemplateRenderError",
           "PopulateFailed",
           "ExternalSecretDefinition",
           "FieldMapping",
           "ResolvedSecretValue",
           "SecretStoreLocation",
           "RetryPolicy",
           "PopulateState",
           "DefinitionOutcome",
           "PopulateResult",
           "SecretStore",
           "SecretStoreFactory",
           "Schema",
           "load_schema",
           "annotate",
           "ClusterDefinitionSource",
           "FileSystemDefinitionSource",
           "parse_definition",
           "TemplateRenderer",
           "ValueResolver",
           "PopulateOptions",
           "SecretPopulator"]
