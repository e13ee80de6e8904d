# -*- coding: utf-8 -*-

class PopulateError(Exception):
    """Base Error class."""


class SecretStoreError(PopulateError):
    """Transport or authentication failure talking to a secret store backend.

    These are retried under the same backoff policy as a missing dependency.
    """
    CUSTOM_ERROR_MESSAGE = "Secret store {} failed accessing {} error {}"

    def __init__(self, backend, address, error):
        super(SecretStoreError, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(backend,
                                                                                address,
                                                                                str(error)))
        self._backend = backend
        self._address = address
        self._error = error

    @property
    def backend(self):
        return self._backend

    @property
    def address(self):
        return self._address

    @property
    def error(self):
        return self._error


class WriteConflictError(PopulateError):
    CUSTOM_ERROR_MESSAGE = "Secret store {} rejected write to {} error {}"

    def __init__(self, backend, address, error):
        super(WriteConflictError, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(backend,
                                                                                  address,
                                                                                  str(error)))
        self._backend = backend
        self._address = address
        self._error = error

    @property
    def backend(self):
        return self._backend

    @property
    def address(self):
        return self._address

    @property
    def error(self):
        return self._error


class SecretDecodeError(PopulateError):
    """A stored value is not UTF-8 text. Retrying cannot fix it."""
    CUSTOM_ERROR_MESSAGE = "Secret store {} holds binary data at {} error {}"

    def __init__(self, backend, address, error):
        super(SecretDecodeError, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(backend,
                                                                                 address,
                                                                                 str(error)))
        self._backend = backend
        self._address = address
        self._error = error

    @property
    def backend(self):
        return self._backend

    @property
    def address(self):
        return self._address

    @property
    def error(self):
        return self._error


class DefinitionError(PopulateError):
    CUSTOM_ERROR_MESSAGE = "ExternalSecret {} is malformed: {}"

    def __init__(self, name, reason):
        super(DefinitionError, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(name, reason))
        self._name = name
        self._reason = reason

    @property
    def name(self):
        return self._name

    @property
    def reason(self):
        return self._reason


class SchemaAnnotationError(DefinitionError):
    CUSTOM_ERROR_MESSAGE = "ExternalSecret {} could not be annotated from schema: {}"


class TemplateRenderError(PopulateError):
    CUSTOM_ERROR_MESSAGE = "Template for field {} failed to render: {}"

    def __init__(self, field, error):
        super(TemplateRenderError, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(field,
                                                                                   str(error)))
        self._field = field
        self._error = error

    @property
    def field(self):
        return self._field

    @property
    def error(self):
        return self._error


class PopulateFailed(PopulateError):
    CUSTOM_ERROR_MESSAGE = "Failed to populate {} ExternalSecret(s): {}"

    def __init__(self, result):
        failed = result.failed
        super(PopulateFailed, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(
            len(failed),
            "; ".join(f"{o.namespace}/{o.name}: {', '.join(o.reasons)}" for o in failed)))
        self._result = result

    @property
    def result(self):
        return self._result
