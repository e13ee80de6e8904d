# -*- coding: utf-8 -*-
"""Uniform access to the secret store backends.

Every backend is addressed by the same three levels: a location (vault instance, GCP
project, key vault name or namespace), a scope within it (a path or secret name) and a
property of that scope. Backends without hierarchical locations fold the location into
the scope.
"""

import logging
import threading
from abc import ABC, abstractmethod

from .model import normalize_backend_type, SecretStoreLocation


class SecretStore(ABC):
    """Abstract Base Class for a secret store backend.

    Reads may run concurrently. Writes are serialized per (location, scope) so two
    writers never interleave a read-modify-write of the same secret.

    Concrete stores implement `_get_value`, `_set_value` and `list_scopes`.
    """

    backend_type = None

    def __init__(self):
        self._locks_lock = threading.Lock()
        self._locks = {}
        self.ns = threading.local()

    def _write_lock(self, location, scope):
        with self._locks_lock:
            lock = self._locks.get((location, scope))
            if lock is None:
                lock = threading.Lock()
                self._locks[(location, scope)] = lock
            return lock

    def scope_key(self, scope):
        """The name a scope is stored under, as returned by `list_scopes`."""
        return scope

    def get_value(self, location, scope, property):
        """Fetch one property.

        Returns:
            tuple: (value, found). Absence is reported as ("", False); only transport
            or authentication failures raise.
        """
        return self._get_value(location or "", scope, property or "")

    def set_value(self, location, scope, property, value):
        """Upsert one property, creating the scope when the backend needs it."""
        location = location or ""
        property = property or ""
        with self._write_lock(location, scope):
            self._set_value(location, scope, property, value)
        logging.getLogger(__name__).debug(
            f"Wrote {SecretStoreLocation(location, scope, property)} to {self.backend_type}")

    @abstractmethod
    def _get_value(self, location, scope, property):
        return "", False

    @abstractmethod
    def _set_value(self, location, scope, property, value):
        pass

    @abstractmethod
    def list_scopes(self, location):
        """The set of scope names that currently exist at a location."""
        return set()


class SecretStoreFactory:
    """Creates one store per backend type and hands the same instance out for a run.

    Args:
        backend_type (str, optional): when set, every request is served by this backend
            whatever backend the ExternalSecret declares.
        **backend_kwargs: passed to the store constructors, keyed by backend type, for
            example ``vault={"url": ..., "token": ...}``.
    """

    def __init__(self, backend_type=None, **backend_kwargs):
        self._backend_type = normalize_backend_type(backend_type) if backend_type else None
        self._backend_kwargs = backend_kwargs
        self._stores = {}
        self._lock = threading.Lock()

    @property
    def backend_type(self):
        return self._backend_type

    def get_store(self, backend_type):
        backend_type = self._backend_type or normalize_backend_type(backend_type)
        with self._lock:
            store = self._stores.get(backend_type)
            if store is None:
                store = self.create_store(backend_type)
                self._stores[backend_type] = store
                logging.getLogger(__name__).info(f"Using {backend_type} secret store")
            return store

    def create_store(self, backend_type):
        # backends imports this module
        from . import backends

        store_class = backends.STORE_CLASSES.get(backend_type)
        if store_class is None:
            raise ValueError(f"Unsupported secret store backend {backend_type}")
        return store_class(**self._backend_kwargs.get(backend_type, {}))
