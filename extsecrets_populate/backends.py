# -*- coding: utf-8 -*-
"""Concrete secret store backends.

vault              - HashiCorp Vault KV version 2. Scopes are full API paths such as
                     ``secret/data/jx/adminUser``; the mount is the segment before ``data``.
                     Location is the vault address, "" for the client's default.
gcpSecretsManager  - Google Cloud Secret Manager. Location is the project id, the scope is
                     folded into a secret id. Property "" is the whole payload, anything
                     else a field of a JSON object payload.
azureKeyVault      - Azure Key Vault. Location is the vault name, otherwise as above.
kubernetes         - native Secret objects. Location is the namespace, scope the Secret
                     name and property a key of its data.

SDK clients are kept in thread local storage as they are not all safe to share.
"""

import base64
import binascii
import json
import logging
import re
import threading

import google.auth
import google_crc32c
import hvac
import hvac.exceptions
from azure.core.exceptions import AzureError, HttpResponseError, ResourceNotFoundError
from azure.identity import DefaultAzureCredential
from azure.keyvault.secrets import SecretClient
from google.api_core import exceptions
from google.cloud import secretmanager
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from .exceptions import SecretDecodeError, SecretStoreError, WriteConflictError
from .model import (BACKEND_AZURE, BACKEND_GSM, BACKEND_KUBERNETES, BACKEND_VAULT,
                    SecretStoreLocation)
from .stores import SecretStore

# property used when a caller addresses a whole vault secret
VAULT_DEFAULT_PROPERTY = "value"

WRITE_REJECTED_STATUS = (401, 403, 409, 413, 422, 429)


def _merge_json_property(payload, property, value, address, backend):
    """Set one field of a JSON object payload, returning the new payload text."""
    data = {}
    if payload:
        try:
            data = json.loads(payload)
        except ValueError as e:
            raise WriteConflictError(backend, address, f"existing value is not JSON: {e}")
        if not isinstance(data, dict):
            raise WriteConflictError(backend, address, "existing value is not a JSON object")
    data[property] = value
    return json.dumps(data, sort_keys=True)


def _json_property(payload, property):
    if property == "":
        return payload, True
    try:
        data = json.loads(payload)
    except ValueError:
        return "", False
    if not isinstance(data, dict) or property not in data:
        return "", False
    value = data[property]
    if not isinstance(value, str):
        value = json.dumps(value)
    return value, True


class VaultSecretStore(SecretStore):
    """HashiCorp Vault KV v2 backend.

    Args:
        url (str, optional): vault address, defaults to ``VAULT_ADDR`` as read by hvac.
        token (str, optional): vault token, defaults to ``VAULT_TOKEN``.
        default_mount_point (str): mount used for scopes without a ``/data/`` segment.
        _client_callback (callable, optional): returns a client for a location, for tests.
    """

    backend_type = BACKEND_VAULT

    def __init__(self, url=None, token=None, default_mount_point="secret",
                 _client_callback=None, **client_kwargs):
        super(VaultSecretStore, self).__init__()
        self._url = url
        self._token = token
        self._default_mount_point = default_mount_point
        self._client_callback = _client_callback
        self._client_kwargs = client_kwargs

    def _client(self, location):
        if not hasattr(self.ns, "clients"):
            self.ns.clients = {}
        if location not in self.ns.clients:
            if self._client_callback is not None:
                self.ns.clients[location] = self._client_callback(location)
            else:
                self.ns.clients[location] = hvac.Client(url=location or self._url,
                                                        token=self._token,
                                                        **self._client_kwargs)
        return self.ns.clients[location]

    def _split(self, scope):
        parts = scope.strip("/").split("/")
        if len(parts) >= 3 and parts[1] == "data":
            return parts[0], "/".join(parts[2:])
        return self._default_mount_point, scope.strip("/")

    def scope_key(self, scope):
        mount_point, path = self._split(scope)
        return f"{mount_point}/data/{path}"

    def _read(self, location, scope):
        mount_point, path = self._split(scope)
        try:
            response = self._client(location).secrets.kv.v2.read_secret_version(
                path=path,
                mount_point=mount_point,
                raise_on_deleted_version=True)
        except hvac.exceptions.InvalidPath:
            return None
        except (hvac.exceptions.VaultError, OSError) as e:
            raise SecretStoreError(self.backend_type, SecretStoreLocation(location, scope, ""), e)
        return dict(response.get("data", {}).get("data") or {})

    def _get_value(self, location, scope, property):
        data = self._read(location, scope)
        property = property or VAULT_DEFAULT_PROPERTY
        if not data or property not in data or data[property] is None:
            return "", False
        return str(data[property]), True

    def _set_value(self, location, scope, property, value):
        address = SecretStoreLocation(location, scope, property)
        data = self._read(location, scope) or {}
        property = property or VAULT_DEFAULT_PROPERTY
        if data.get(property) == value:
            return
        data[property] = value
        mount_point, path = self._split(scope)
        try:
            self._client(location).secrets.kv.v2.create_or_update_secret(
                path=path,
                secret=data,
                mount_point=mount_point)
        except (hvac.exceptions.Forbidden, hvac.exceptions.Unauthorized,
                hvac.exceptions.InvalidRequest) as e:
            raise WriteConflictError(self.backend_type, address, e)
        except (hvac.exceptions.VaultError, OSError) as e:
            raise SecretStoreError(self.backend_type, address, e)

    def _walk(self, kv, mount_point, prefix):
        try:
            response = kv.list_secrets(path=prefix, mount_point=mount_point)
        except hvac.exceptions.InvalidPath:
            return
        for key in response.get("data", {}).get("keys", []):
            if key.endswith("/"):
                yield from self._walk(kv, mount_point, prefix + key)
            else:
                yield f"{mount_point}/data/{prefix}{key}"

    def list_scopes(self, location):
        vault = self._client(location)
        try:
            mounts = vault.sys.list_mounted_secrets_engines().get("data", {})
            scopes = set()
            for mount, details in mounts.items():
                options = details.get("options") or {}
                if details.get("type") != "kv" or options.get("version") != "2":
                    continue
                scopes.update(self._walk(vault.secrets.kv.v2, mount.strip("/"), ""))
            return scopes
        except (hvac.exceptions.VaultError, OSError) as e:
            raise SecretStoreError(self.backend_type, SecretStoreLocation(location, "", ""), e)


class GCPSecretManagerStore(SecretStore):
    """Google Cloud Secret Manager backend.

    Every change adds a new secret version; reads access the latest version.

    Args:
        _credentials_callback (callable, optional): returns a tuple of
            (credentials, project_id). If not provided `google.auth.default()` is used.
    """

    backend_type = BACKEND_GSM

    def __init__(self, _credentials_callback=None):
        super(GCPSecretManagerStore, self).__init__()
        self._credentials_callback = _credentials_callback

    @property
    def _credentials(self):
        if not hasattr(self.ns, "_credentials"):
            if self._credentials_callback is not None:
                _credentials, _project_id = self._credentials_callback()
            else:
                _credentials, _project_id = google.auth.default()
            self.ns._credentials = _credentials
            self.ns._project_id = _project_id
        return self.ns._credentials

    def _client(self):
        if not hasattr(self.ns, "client"):
            self.ns.client = secretmanager.SecretManagerServiceClient(
                credentials=self._credentials)
        return self.ns.client

    def _project(self, location):
        if location:
            return location
        # This triggers the credentials property to populate the project_id
        _ = self._credentials
        return self.ns._project_id

    def scope_key(self, scope):
        return re.sub(r"[^a-zA-Z0-9_-]", "-", scope.strip("/"))[:255]

    def _read(self, location, scope):
        name = self._client().secret_path(self._project(location), self.scope_key(scope))
        try:
            response = self._client().access_secret_version(
                request={"name": f"{name}/versions/latest"})
        except (exceptions.NotFound, exceptions.FailedPrecondition):
            return None
        except exceptions.GoogleAPICallError as e:
            raise SecretStoreError(self.backend_type, SecretStoreLocation(location, scope, ""), e)
        try:
            return response.payload.data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise SecretDecodeError(self.backend_type, SecretStoreLocation(location, scope, ""), e)

    def _get_value(self, location, scope, property):
        payload = self._read(location, scope)
        if payload is None:
            return "", False
        return _json_property(payload, property)

    def _set_value(self, location, scope, property, value):
        address = SecretStoreLocation(location, scope, property)
        payload = self._read(location, scope)
        if property:
            secret = _merge_json_property(payload, property, value, address, self.backend_type)
        else:
            secret = value
        if secret == payload:
            return

        project = self._project(location)
        secret_id = self.scope_key(scope)
        secret = secret.encode("utf-8")

        # Calculate payload checksum. Passing a checksum in add-version request
        # is optional.
        crc32c = google_crc32c.Checksum()
        crc32c.update(secret)
        try:
            if payload is None:
                self._create_secret(project, secret_id)
            self._client().add_secret_version(
                request={
                    "parent": self._client().secret_path(project, secret_id),
                    "payload": {"data": secret, "data_crc32c": int(crc32c.hexdigest(), 16)},
                }
            )
        except (exceptions.PermissionDenied, exceptions.Unauthenticated,
                exceptions.InvalidArgument, exceptions.ResourceExhausted) as e:
            raise WriteConflictError(self.backend_type, address, e)
        except exceptions.GoogleAPICallError as e:
            raise SecretStoreError(self.backend_type, address, e)

    def _create_secret(self, project, secret_id):
        try:
            self._client().create_secret(
                request={
                    "parent": f"projects/{project}",
                    "secret_id": secret_id,
                    "secret": {"replication": {"automatic": {}}},
                }
            )
            logging.getLogger(__name__).info(f"Created secret projects/{project}/secrets/{secret_id}")
        except exceptions.AlreadyExists:
            pass

    def list_scopes(self, location):
        try:
            page_result = self._client().list_secrets(
                request={"parent": f"projects/{self._project(location)}"})
            return {secret.name.rsplit("/", 1)[-1] for secret in page_result}
        except exceptions.GoogleAPICallError as e:
            raise SecretStoreError(self.backend_type, SecretStoreLocation(location, "", ""), e)


class AzureKeyVaultStore(SecretStore):
    """Azure Key Vault backend, one vault per location.

    Args:
        credential (optional): azure credential, `DefaultAzureCredential` when omitted.
        vault_url_template (str): turns a vault name into its url.
    """

    backend_type = BACKEND_AZURE

    def __init__(self, credential=None, vault_url_template="https://{}.vault.azure.net/"):
        super(AzureKeyVaultStore, self).__init__()
        self._credential = credential
        self._vault_url_template = vault_url_template

    def _client(self, location):
        if not hasattr(self.ns, "clients"):
            self.ns.clients = {}
        if location not in self.ns.clients:
            if self._credential is None:
                self._credential = DefaultAzureCredential()
            self.ns.clients[location] = SecretClient(
                vault_url=self._vault_url_template.format(location),
                credential=self._credential)
        return self.ns.clients[location]

    def scope_key(self, scope):
        return re.sub(r"[^0-9a-zA-Z-]", "-", scope.strip("/"))[:127]

    def _read(self, location, scope):
        try:
            return self._client(location).get_secret(self.scope_key(scope)).value
        except ResourceNotFoundError:
            return None
        except AzureError as e:
            raise SecretStoreError(self.backend_type, SecretStoreLocation(location, scope, ""), e)

    def _get_value(self, location, scope, property):
        payload = self._read(location, scope)
        if payload is None:
            return "", False
        return _json_property(payload, property)

    def _set_value(self, location, scope, property, value):
        address = SecretStoreLocation(location, scope, property)
        payload = self._read(location, scope)
        if property:
            secret = _merge_json_property(payload, property, value, address, self.backend_type)
        else:
            secret = value
        if secret == payload:
            return
        try:
            self._client(location).set_secret(self.scope_key(scope), secret)
        except HttpResponseError as e:
            if e.status_code in WRITE_REJECTED_STATUS:
                raise WriteConflictError(self.backend_type, address, e)
            raise SecretStoreError(self.backend_type, address, e)
        except AzureError as e:
            raise SecretStoreError(self.backend_type, address, e)

    def list_scopes(self, location):
        try:
            return {p.name for p in self._client(location).list_properties_of_secrets()}
        except AzureError as e:
            raise SecretStoreError(self.backend_type, SecretStoreLocation(location, "", ""), e)


class KubernetesSecretStore(SecretStore):
    """Native Kubernetes Secrets, addressed as (namespace, name, data key).

    Args:
        core_api (kubernetes.client.CoreV1Api, optional): preconfigured api client shared by
            every thread. Without one each thread builds its own.
        context (str, optional): kube config context used outside a cluster.
    """

    backend_type = BACKEND_KUBERNETES

    def __init__(self, core_api=None, context=None):
        super(KubernetesSecretStore, self).__init__()
        self._core_api = core_api
        self._context = context
        self._configured = False
        self._config_lock = threading.Lock()

    def _load_config(self):
        with self._config_lock:
            if self._configured:
                return
            try:
                config.load_incluster_config()
                logging.getLogger(__name__).debug("Loaded in cluster kubernetes configuration")
            except ConfigException:
                config.load_kube_config(context=self._context)
            self._configured = True

    @property
    def core_api(self):
        if self._core_api is not None:
            return self._core_api
        if not hasattr(self.ns, "core_api"):
            self._load_config()
            self.ns.core_api = client.CoreV1Api()
        return self.ns.core_api

    def _read(self, namespace, name):
        try:
            return self.core_api.read_namespaced_secret(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise SecretStoreError(self.backend_type, SecretStoreLocation(namespace, name, ""), e)

    def _get_value(self, location, scope, property):
        secret = self._read(location, scope)
        if secret is None or not secret.data or property not in secret.data:
            return "", False
        try:
            return base64.b64decode(secret.data[property]).decode("utf-8"), True
        except (UnicodeDecodeError, binascii.Error) as e:
            raise SecretDecodeError(self.backend_type, SecretStoreLocation(location, scope, property), e)

    def _set_value(self, location, scope, property, value):
        address = SecretStoreLocation(location, scope, property)
        if not location or not property:
            raise WriteConflictError(self.backend_type, address,
                                     "a namespace and data key are required")
        encoded = base64.b64encode(value.encode("utf-8")).decode("ascii")
        try:
            secret = self._read(location, scope)
            if secret is None:
                self.core_api.create_namespaced_secret(
                    namespace=location,
                    body=client.V1Secret(
                        metadata=client.V1ObjectMeta(name=scope, namespace=location),
                        type="Opaque",
                        data={property: encoded}))
                return
            if (secret.data or {}).get(property) == encoded:
                return
            self.core_api.patch_namespaced_secret(name=scope,
                                                  namespace=location,
                                                  body={"data": {property: encoded}})
        except ApiException as e:
            if e.status in WRITE_REJECTED_STATUS:
                raise WriteConflictError(self.backend_type, address, e)
            raise SecretStoreError(self.backend_type, address, e)

    def list_scopes(self, location):
        try:
            secrets = self.core_api.list_namespaced_secret(namespace=location)
        except ApiException as e:
            raise SecretStoreError(self.backend_type, SecretStoreLocation(location, "", ""), e)
        return {s.metadata.name for s in secrets.items}


STORE_CLASSES = {
    BACKEND_VAULT: VaultSecretStore,
    BACKEND_GSM: GCPSecretManagerStore,
    BACKEND_AZURE: AzureKeyVaultStore,
    BACKEND_KUBERNETES: KubernetesSecretStore,
}
