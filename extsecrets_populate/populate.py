# -*- coding: utf-8 -*-
"""The populate run: reconcile ExternalSecret definitions into their secret stores.

A run loads every definition of a namespace, resolves each one and writes the values that
changed. Definitions without composed fields go first so the templates of the second phase
can read what the first phase stored. A definition whose dependencies are missing is
retried on its own with exponential backoff; it never holds up the others, and every
definition is attempted before the run reports the ones that failed.

Running again is safe: values already stored are left alone, generated values are never
regenerated and templates are rendered again so they pick up newly available secrets.
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Optional

import yaml

from .definitions import SOURCE_CLUSTER, new_definition_source
from .exceptions import (PopulateError, PopulateFailed, SecretDecodeError, SecretStoreError,
                         WriteConflictError)
from .model import DefinitionOutcome, PopulateResult, PopulateState, RetryPolicy
from .resolver import ValueResolver
from .schema import load_schema
from .stores import SecretStoreFactory

TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass
class PopulateOptions:
    """Configuration of a populate run.

    The collaborators at the bottom are normally left unset and built from the other
    options; tests inject explicit instances.
    """
    namespace: str = "jx"
    boot_secret_namespace: Optional[str] = None
    dir: str = "."
    source: str = SOURCE_CLUSTER
    schema_file: Optional[str] = None
    no_wait: bool = False
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    backend_type: Optional[str] = None
    workers: int = 1

    store_factory: Any = None
    source_store: Any = None
    definition_source: Any = None

    @property
    def effective_retry_policy(self):
        if self.no_wait:
            return RetryPolicy.no_wait()
        return self.retry_policy

    @property
    def source_namespace(self):
        return self.boot_secret_namespace or self.namespace

    @classmethod
    def from_env(cls, environ=None, **overrides):
        """Options from ``EXTSECRETS_*`` environment variables, then keyword overrides."""
        environ = os.environ if environ is None else environ
        options = {}
        for env_name, option in (("EXTSECRETS_NAMESPACE", "namespace"),
                                 ("EXTSECRETS_BOOT_NAMESPACE", "boot_secret_namespace"),
                                 ("EXTSECRETS_DIR", "dir"),
                                 ("EXTSECRETS_SOURCE", "source"),
                                 ("EXTSECRETS_SCHEMA", "schema_file"),
                                 ("EXTSECRETS_BACKEND", "backend_type")):
            if environ.get(env_name):
                options[option] = environ[env_name]
        if environ.get("EXTSECRETS_NO_WAIT"):
            options["no_wait"] = environ["EXTSECRETS_NO_WAIT"].lower() in TRUE_VALUES
        options.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**options)


class SecretPopulator:
    """Runs one populate pass per call of `run`.

    Args:
        options (PopulateOptions): the run configuration.
    """

    def __init__(self, options):
        self._options = options
        self._cancelled = threading.Event()

    @property
    def options(self):
        return self._options

    @property
    def cancelled(self):
        return self._cancelled.is_set()

    def cancel(self):
        """Stop scheduling definitions and wake any backoff wait.

        Writes already under way complete so no property is left half written.
        """
        self._cancelled.set()

    def _definition_source(self):
        if self.options.definition_source is not None:
            return self.options.definition_source
        try:
            schema = load_schema(self.options.schema_file) if self.options.schema_file else None
            return new_definition_source(self.options.source, dir=self.options.dir, schema=schema)
        except (ValueError, OSError, yaml.YAMLError) as e:
            raise PopulateError(f"invalid configuration: {e}") from e

    def _store_factory(self):
        if self.options.store_factory is None:
            self.options.store_factory = SecretStoreFactory(self.options.backend_type)
        return self.options.store_factory

    def _source_store(self):
        if self.options.source_store is None:
            from .backends import KubernetesSecretStore

            self.options.source_store = KubernetesSecretStore()
        return self.options.source_store

    def run(self):
        """Populate every ExternalSecret of the namespace.

        Returns:
            PopulateResult: when every definition was written or skipped.

        Raises:
            PopulateFailed: carrying the PopulateResult when any definition failed.
        """
        namespace = self.options.namespace
        loaded = self._definition_source().load(namespace)

        result = PopulateResult()
        for name, failed_namespace, error in loaded.failures:
            result.outcomes.append(DefinitionOutcome(name=name,
                                                     namespace=failed_namespace or namespace,
                                                     state=PopulateState.FAILED,
                                                     reasons=[str(error)]))

        factory = self._store_factory()

        def store_for(definition):
            return factory.get_store(definition.backend_type)

        resolver = ValueResolver(store_for,
                                 self._source_store(),
                                 self.options.source_namespace,
                                 definitions=loaded.definitions)

        literal = []
        composed = []
        for definition in loaded.definitions:
            outcome = DefinitionOutcome(name=definition.name, namespace=definition.namespace)
            result.outcomes.append(outcome)
            (composed if definition.composed else literal).append((definition, outcome))

        for phase in (literal, composed):
            self._run_phase(phase, resolver, store_for)

        logging.getLogger(__name__).info(
            f"Populated namespace {namespace}: {len(result.written)} written, "
            f"{len(result.skipped)} unchanged, {len(result.failed)} failed")
        if result.failed:
            raise PopulateFailed(result)
        return result

    def _run_phase(self, work, resolver, store_for):
        if self.options.workers <= 1:
            for definition, outcome in work:
                self._populate(definition, outcome, resolver, store_for)
            return
        with ThreadPoolExecutor(max_workers=self.options.workers,
                                thread_name_prefix="populate") as pool:
            futures = [pool.submit(self._populate, definition, outcome, resolver, store_for)
                       for definition, outcome in work]
            for future in futures:
                future.result()

    def _fail(self, outcome, reasons):
        outcome.state = PopulateState.FAILED
        outcome.reasons.extend(reasons)
        logging.getLogger(__name__).error(
            f"Failed to populate ExternalSecret {outcome.namespace}/{outcome.name}: "
            f"{'; '.join(reasons)}")

    def _write(self, definition, resolution, outcome, resolver, store):
        for value in resolution.changed:
            address = value.address
            try:
                store.set_value(address.location, address.scope, address.property, value.value)
            except (WriteConflictError, SecretDecodeError) as e:
                resolution.errors.append(f"{value.field_name}: {e}")
                continue
            except SecretStoreError as e:
                resolution.pending.append(f"{value.field_name}: {e}")
                continue
            resolver.mark_written(definition, address)
            outcome.written.append(str(address))
            logging.getLogger(__name__).info(
                f"Populated {definition.name}.{value.field_name} at {address}")

    def _populate(self, definition, outcome, resolver, store_for):
        try:
            self._reconcile(definition, outcome, resolver, store_for)
        except Exception as e:
            # one definition must never abort the others
            logging.getLogger(__name__).exception(
                f"Unexpected error populating ExternalSecret {definition.namespace}/{definition.name}")
            self._fail(outcome, [f"unexpected error: {e!r}"])

    def _reconcile(self, definition, outcome, resolver, store_for):
        if self.cancelled:
            self._fail(outcome, ["run cancelled before this ExternalSecret was attempted"])
            return
        if not definition.managed_fields:
            outcome.state = PopulateState.SKIPPED
            logging.getLogger(__name__).debug(
                f"ExternalSecret {definition.name} has no fields to populate")
            return

        try:
            store = store_for(definition)
        except ValueError as e:
            self._fail(outcome, [str(e)])
            return
        resolver.prime(definition)

        delays = self.options.effective_retry_policy.delays()
        while True:
            if outcome.attempts:
                resolver.prime(definition, refresh=True)
            outcome.state = PopulateState.RESOLVING
            outcome.attempts += 1
            resolution = resolver.resolve(definition)
            self._write(definition, resolution, outcome, resolver, store)

            if resolution.errors:
                self._fail(outcome, resolution.errors + resolution.pending)
                return
            if not resolution.pending:
                outcome.state = PopulateState.WRITTEN if outcome.written else PopulateState.SKIPPED
                return

            delay = next(delays, None)
            if delay is None:
                self._fail(outcome, resolution.pending)
                return
            outcome.state = PopulateState.RETRYING
            logging.getLogger(__name__).info(
                f"Waiting {delay:.3f}s for ExternalSecret {definition.name} after attempt "
                f"{outcome.attempts}: {'; '.join(resolution.pending)}")
            if self._cancelled.wait(delay):
                self._fail(outcome, resolution.pending + ["run cancelled while waiting"])
                return
