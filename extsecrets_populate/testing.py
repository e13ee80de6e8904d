# -*- coding: utf-8 -*-
"""In memory secret store for tests.

Create a FakeSecretStore per test and pass it in through the populate options so tests
never share state.
"""

import threading

from .model import SecretStoreLocation
from .stores import SecretStore


class FakeSecretStore(SecretStore):
    """A SecretStore holding ``{(location, scope): {property: value}}`` in memory."""

    backend_type = "fake"

    def __init__(self, secrets=None):
        super(FakeSecretStore, self).__init__()
        self._data_lock = threading.Lock()
        self._secrets = {}
        self.writes = []
        for (location, scope), values in (secrets or {}).items():
            self._secrets[(location, scope)] = dict(values)

    def _get_value(self, location, scope, property):
        with self._data_lock:
            values = self._secrets.get((location, scope))
            if values is None or property not in values:
                return "", False
            return values[property], True

    def _set_value(self, location, scope, property, value):
        with self._data_lock:
            self._secrets.setdefault((location, scope), {})[property] = value
            self.writes.append(SecretStoreLocation(location, scope, property))

    def list_scopes(self, location):
        with self._data_lock:
            return {scope for (loc, scope) in self._secrets if loc == location}

    def put_secret(self, location, scope, values):
        """Seed a whole secret, replacing any existing one."""
        with self._data_lock:
            self._secrets[(location, scope)] = dict(values)

    def get_secret(self, location, scope, property):
        value, _ = self.get_value(location, scope, property)
        return value

    def secrets(self):
        with self._data_lock:
            return {k: dict(v) for k, v in self._secrets.items()}

    def assert_value_equals(self, testcase, location, scope, property, expected):
        value, found = self.get_value(location, scope, property)
        testcase.assertTrue(found, f"no value at {SecretStoreLocation(location, scope, property)}")
        testcase.assertEqual(expected, value,
                             f"value at {SecretStoreLocation(location, scope, property)}")

    def assert_has_value(self, testcase, location, scope, property):
        value, found = self.get_value(location, scope, property)
        testcase.assertTrue(found and value != "",
                            f"no value at {SecretStoreLocation(location, scope, property)}")


class FakeSecretStoreFactory:
    """Serves one FakeSecretStore whatever backend a definition asks for."""

    def __init__(self, store=None):
        self.store = store if store is not None else FakeSecretStore()
        self.requested = []

    def get_store(self, backend_type):
        self.requested.append(backend_type)
        return self.store
