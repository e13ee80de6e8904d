# -*- coding: utf-8 -*-
"""Resolves the values of one ExternalSecret definition.

Literal fields copy a property of a source secret, generated and default fields fill
destinations that are still empty, and composed fields render a template whose lookups may
read the literal, generated or default fields of any definition in the run, or any source
secret. Composed fields can never be looked up from a template, which rules out cycles.
"""

import logging
import threading
from dataclasses import dataclass, field

from .exceptions import SecretDecodeError, SecretStoreError, TemplateRenderError
from .generators import generate
from .model import KIND_COMPOSED, KIND_DEFAULT, KIND_GENERATED, KIND_LITERAL, ResolvedSecretValue
from .templating import TemplateRenderer


@dataclass
class Resolution:
    """The outcome of resolving one definition once.

    `pending` holds retryable reasons (a missing dependency, an incomplete template or a
    store error), `errors` holds fatal ones such as template syntax errors.
    """
    values: list = field(default_factory=list)
    pending: list = field(default_factory=list)
    errors: list = field(default_factory=list)

    @property
    def changed(self):
        return [v for v in self.values if v.changed]

    @property
    def complete(self):
        return not self.pending and not self.errors


class ValueResolver:
    """Resolve definitions against the destination store and the source secrets.

    Args:
        store_for (callable): returns the destination SecretStore of a definition.
        source_store (SecretStore): holds the boot and other source secrets.
        source_location (str): location of the source secrets, usually the boot namespace.
        definitions (iterable): every definition of the run, for template lookups by name.
        renderer (TemplateRenderer, optional)
    """

    def __init__(self, store_for, source_store, source_location, definitions=(), renderer=None):
        self._store_for = store_for
        self._source_store = source_store
        self._source_location = source_location
        self._definitions = {d.name: d for d in definitions}
        self._renderer = renderer or TemplateRenderer()
        self._known_scopes = {}
        self._lock = threading.Lock()

    def _scope_set_key(self, definition):
        return id(self._store_for(definition)), definition.location

    def prime(self, definition, refresh=False):
        """List the scopes of the definition's location once, so reads of scopes that do
        not exist yet are skipped. A store that cannot list is read property by property.

        `refresh` lists again, picking up scopes other processes created since.
        """
        key = self._scope_set_key(definition)
        with self._lock:
            if key in self._known_scopes and not refresh:
                return
        store = self._store_for(definition)
        try:
            scopes = set(store.list_scopes(definition.location))
        except (SecretStoreError, NotImplementedError) as e:
            logging.getLogger(__name__).warning(
                f"Could not list {store.backend_type} scopes at {definition.location!r}, "
                f"reading each property instead: {e}")
            scopes = None
        with self._lock:
            if refresh:
                # keep scopes written by this run since the listing started
                previous = self._known_scopes.get(key)
                if scopes is not None and previous is not None:
                    scopes |= previous
                self._known_scopes[key] = scopes
            else:
                self._known_scopes.setdefault(key, scopes)

    def mark_written(self, definition, address):
        store = self._store_for(definition)
        with self._lock:
            scopes = self._known_scopes.get(self._scope_set_key(definition))
            if scopes is not None:
                scopes.add(store.scope_key(address.scope))

    def existing_value(self, definition, field_mapping):
        """The value currently stored at a field's destination as (value, found)."""
        store = self._store_for(definition)
        address = definition.address_of(field_mapping)
        with self._lock:
            scopes = self._known_scopes.get(self._scope_set_key(definition))
            if scopes is not None and store.scope_key(address.scope) not in scopes:
                return "", False
        return store.get_value(address.location, address.scope, address.property)

    def source_value(self, name, key):
        value, found = self._source_store.get_value(self._source_location, name, key)
        if not found or value == "":
            return "", False
        return value, True

    def _resolve_plain(self, definition, field_mapping, existing, exists):
        kind = field_mapping.kind
        if kind == KIND_LITERAL:
            value, found = self.source_value(field_mapping.source_key, field_mapping.source_property)
            if found:
                return value, True
            if exists and existing:
                return existing, True
            return "", False
        if exists and existing:
            return existing, True
        if kind == KIND_GENERATED:
            logging.getLogger(__name__).info(
                f"Generating {field_mapping.generator} for {definition.name}.{field_mapping.name}")
            return generate(field_mapping.generator, field_mapping.length), True
        if kind == KIND_DEFAULT:
            return field_mapping.default_value, True
        return "", False

    def lookup(self, name, key, current=None, overlay=None):
        """Resolve ``secret(name, key)`` for a template.

        A definition of the run named `name` answers first, from values resolved earlier in
        the current attempt, then its destination, then its own source. Anything else is a
        source secret.
        """
        definition = self._definitions.get(name)
        if current is not None and current.name == name:
            definition = current
        if definition is not None:
            field_mapping = definition.find_field(key)
            if field_mapping is not None:
                if definition is current and overlay and field_mapping.name in overlay:
                    return overlay[field_mapping.name], True
                if field_mapping.kind == KIND_COMPOSED:
                    raise TemplateRenderError(
                        f"{name}.{key}", "composed fields cannot be referenced from a template")
                existing, exists = self.existing_value(definition, field_mapping)
                if exists and existing:
                    return existing, True
                if field_mapping.kind == KIND_LITERAL:
                    return self.source_value(field_mapping.source_key, field_mapping.source_property)
                if field_mapping.kind == KIND_DEFAULT:
                    return field_mapping.default_value, True
                # generated values only exist once their own definition has stored them
                return "", False
        return self.source_value(name, key)

    def resolve(self, definition):
        """Resolve every managed field of a definition once.

        Returns:
            Resolution
        """
        resolution = Resolution()
        overlay = {}
        fields = sorted(definition.managed_fields, key=lambda f: f.kind == KIND_COMPOSED)
        for f in fields:
            address = definition.address_of(f)
            try:
                existing, exists = self.existing_value(definition, f)
                if f.kind == KIND_COMPOSED:
                    value, satisfied = self._renderer.render(
                        f.template,
                        lambda n, k: self.lookup(n, k, current=definition, overlay=overlay),
                        template_format=f.template_format,
                        field_name=f"{definition.name}.{f.name}")
                    if not satisfied:
                        resolution.pending.append(f"{f.name}: template references are not available yet")
                        continue
                else:
                    value, found = self._resolve_plain(definition, f, existing, exists)
                    if not found:
                        resolution.pending.append(
                            f"{f.name}: source {f.source_key}.{f.source_property} not found")
                        continue
            except (TemplateRenderError, SecretDecodeError) as e:
                logging.getLogger(__name__).error(str(e))
                resolution.errors.append(f"{f.name}: {e}")
                continue
            except SecretStoreError as e:
                logging.getLogger(__name__).warning(str(e))
                resolution.pending.append(f"{f.name}: {e}")
                continue

            overlay[f.name] = value
            resolution.values.append(ResolvedSecretValue(field_name=f.name,
                                                         address=address,
                                                         value=value,
                                                         changed=not (exists and existing == value)))
        return resolution
