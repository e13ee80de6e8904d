# -*- coding: utf-8 -*-
"""Value types shared by the definition sources, the resolver and the populate driver.

Definitions are built fresh on every run and are never mutated; resolution produces
ResolvedSecretValue instances and the driver records a DefinitionOutcome per definition.
"""

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional, Tuple

BACKEND_VAULT = "vault"
BACKEND_GSM = "gcpSecretsManager"
BACKEND_AZURE = "azureKeyVault"
BACKEND_KUBERNETES = "kubernetes"

BACKEND_ALIASES = {
    "local": BACKEND_KUBERNETES,
    "secretsManager": BACKEND_GSM,
}

# backends whose secrets are addressed by the ExternalSecret name in its namespace
NAMESPACED_BACKENDS = (BACKEND_KUBERNETES,)

KIND_LITERAL = "literal"
KIND_COMPOSED = "composed"
KIND_GENERATED = "generated"
KIND_DEFAULT = "default"


def normalize_backend_type(backend_type):
    return BACKEND_ALIASES.get(backend_type, backend_type)


@dataclass(frozen=True)
class SecretStoreLocation:
    location: str
    scope: str
    property: str

    def __str__(self):
        prefix = f"{self.location}:" if self.location else ""
        suffix = f"#{self.property}" if self.property else ""
        return f"{prefix}{self.scope}{suffix}"


@dataclass(frozen=True)
class FieldMapping:
    """One entry of an ExternalSecret's data.

    `key` and `property` address the destination. A field is resolved from exactly one of
    a literal source secret, a template, a generator or a default value; a field with none
    of them is unmanaged and left alone.
    """
    name: str
    key: str
    property: str
    source_key: Optional[str] = None
    source_property: Optional[str] = None
    template: Optional[str] = None
    template_format: Optional[str] = None
    generator: Optional[str] = None
    length: Optional[int] = None
    default_value: Optional[str] = None

    @property
    def kind(self):
        if self.template is not None:
            return KIND_COMPOSED
        if self.source_key:
            return KIND_LITERAL
        if self.generator:
            return KIND_GENERATED
        if self.default_value is not None:
            return KIND_DEFAULT
        return None

    @property
    def managed(self):
        return self.kind is not None

    @property
    def composed(self):
        return self.kind == KIND_COMPOSED


@dataclass(frozen=True)
class ExternalSecretDefinition:
    name: str
    namespace: str
    backend_type: str
    location: str
    fields: Tuple[FieldMapping, ...] = ()
    annotations: Mapping[str, str] = field(default_factory=dict, compare=False)
    origin: str = ""

    @property
    def namespaced(self):
        return self.backend_type in NAMESPACED_BACKENDS

    @property
    def composed(self):
        return any(f.composed for f in self.fields)

    @property
    def managed_fields(self):
        return tuple(f for f in self.fields if f.managed)

    def scope_for(self, field_mapping):
        if self.namespaced or not field_mapping.key:
            return self.name
        return field_mapping.key

    def address_of(self, field_mapping):
        return SecretStoreLocation(self.location,
                                   self.scope_for(field_mapping),
                                   field_mapping.property)

    def find_field(self, key):
        """Look up a field by field name, falling back to destination property."""
        for f in self.fields:
            if f.name == key:
                return f
        for f in self.fields:
            if f.property == key:
                return f
        return None


@dataclass(frozen=True)
class ResolvedSecretValue:
    field_name: str
    address: SecretStoreLocation
    value: str
    changed: bool = True


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with jitter bounding the attempts made for one definition.

    `steps` is the total number of resolution attempts; the waits between them grow by
    `factor` from `duration` seconds with up to `jitter` of extra random delay.
    """
    steps: int = 5
    duration: float = 2.0
    factor: float = 2.0
    jitter: float = 0.1

    @classmethod
    def no_wait(cls):
        return cls(steps=1, duration=0.0, factor=1.0, jitter=0.0)

    def delays(self):
        duration = self.duration
        for _ in range(max(self.steps - 1, 0)):
            delay = duration
            if self.jitter > 0:
                delay = delay + random.random() * self.jitter * duration
            yield delay
            if self.factor:
                duration = duration * self.factor


class PopulateState(Enum):
    PENDING = "Pending"
    RESOLVING = "Resolving"
    RETRYING = "Retrying"
    WRITTEN = "Written"
    SKIPPED = "Skipped"
    FAILED = "Failed"

    @property
    def terminal(self):
        return self in (PopulateState.WRITTEN, PopulateState.SKIPPED, PopulateState.FAILED)


@dataclass
class DefinitionOutcome:
    name: str
    namespace: str
    state: PopulateState = PopulateState.PENDING
    attempts: int = 0
    written: list = field(default_factory=list)
    reasons: list = field(default_factory=list)


@dataclass
class PopulateResult:
    outcomes: list = field(default_factory=list)

    def _with_state(self, state):
        return [o for o in self.outcomes if o.state == state]

    @property
    def failed(self):
        return self._with_state(PopulateState.FAILED)

    @property
    def written(self):
        return self._with_state(PopulateState.WRITTEN)

    @property
    def skipped(self):
        return self._with_state(PopulateState.SKIPPED)

    @property
    def succeeded(self):
        return not self.failed

    def outcome(self, name, namespace=None):
        for o in self.outcomes:
            if o.name == name and (namespace is None or o.namespace == namespace):
                return o
        return None
