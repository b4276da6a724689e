"""Secret naming and read-only Secret Store adapters.

Secret *names* are pure functions of the release context and an optional
user override; they are never generated per render.  Secret *values* are
only ever read through a :class:`SecretStore`, and only by the summary
renderer when the caller opts out of redaction.

Store adapters:

* :class:`InMemorySecretStore` — dict-backed, for tests and offline runs.
* :class:`KubernetesSecretStore` — ``CoreV1Api.read_namespaced_secret``;
  one attempt per lookup, no retries.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Protocol

from stackrender.config.models import ReleaseContext
from stackrender.config.values import derive_name
from stackrender.errors import SecretNotFoundError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# References and names
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SecretReference:
    """Pointer to one key of a named Secret (never the value itself)."""

    secret_name: str
    key: str

    def to_manifest(self) -> Dict[str, Any]:
        return {"secretKeyRef": {"name": self.secret_name, "key": self.key}}


def secret_name(ctx: ReleaseContext, user_override: Optional[str] = "") -> str:
    """Name of the PostgreSQL credentials Secret.

    Precedence:

    1. *user_override*, trimmed, when non-empty after trimming
    2. ``<release>-postgres-secret``
    """
    if user_override is not None:
        trimmed = str(user_override).strip()
        if trimmed:
            return trimmed
    return derive_name(ctx, "postgres", "secret")


def gateway_secret_name(ctx: ReleaseContext) -> str:
    """Name of the gateway's bulk Secret (auth password, JWT key, ...)."""
    return derive_name(ctx, "gateway", "secret")


def retrieval_command(namespace: str, ref: SecretReference) -> str:
    """Shell command that fetches and decodes *ref* out of band."""
    return (
        f"kubectl -n {namespace} get secret {ref.secret_name} "
        f"-o jsonpath=\"{{.data.{ref.key}}}\" | base64 -d"
    )


# ---------------------------------------------------------------------------
# Secret Store
# ---------------------------------------------------------------------------


class SecretStore(Protocol):
    """Read-only access to decoded secret data."""

    def get(self, namespace: str, name: str) -> Mapping[str, str]:
        """Return ``{key: decoded value}`` or raise :class:`SecretNotFoundError`."""
        ...


class InMemorySecretStore:
    """Dict-backed store keyed by ``(namespace, name)``."""

    def __init__(
        self, secrets: Optional[Mapping[tuple, Mapping[str, str]]] = None,
    ) -> None:
        self._secrets: Dict[tuple, Dict[str, str]] = {
            key: dict(data) for key, data in (secrets or {}).items()
        }

    def put(self, namespace: str, name: str, data: Mapping[str, str]) -> None:
        self._secrets[(namespace, name)] = dict(data)

    def get(self, namespace: str, name: str) -> Mapping[str, str]:
        try:
            return dict(self._secrets[(namespace, name)])
        except KeyError:
            raise SecretNotFoundError(namespace, name) from None


class KubernetesSecretStore:
    """Secret Store backed by the Kubernetes API.

    *core_api* is a ``kubernetes.client.CoreV1Api`` (or anything exposing
    ``read_namespaced_secret``), injected so tests can pass a mock.
    """

    def __init__(self, core_api: Any) -> None:
        self._core_api = core_api

    @classmethod
    def from_kubeconfig(cls, context: Optional[str] = None) -> "KubernetesSecretStore":
        """Build a store from ``~/.kube/config``, falling back to in-cluster."""
        from kubernetes import client, config
        from kubernetes.config.config_exception import ConfigException

        try:
            config.load_kube_config(context=context)
        except ConfigException:
            logger.debug("No usable kubeconfig, trying in-cluster configuration")
            config.load_incluster_config()
        configuration = client.Configuration.get_default_copy()
        configuration.retries = False
        return cls(client.CoreV1Api(client.ApiClient(configuration)))

    def get(self, namespace: str, name: str) -> Mapping[str, str]:
        from kubernetes.client.rest import ApiException
        from urllib3.exceptions import HTTPError

        try:
            secret = self._core_api.read_namespaced_secret(name, namespace)
        except ApiException as exc:
            if exc.status != 404:
                logger.warning(
                    "Secret lookup %s/%s failed: status=%s reason=%s",
                    namespace, name, exc.status, exc.reason,
                )
            raise SecretNotFoundError(namespace, name) from exc
        except (HTTPError, OSError) as exc:
            logger.warning("Secret lookup %s/%s failed: %s", namespace, name, exc)
            raise SecretNotFoundError(namespace, name) from exc

        decoded: Dict[str, str] = {}
        for key, raw in (secret.data or {}).items():
            try:
                decoded[key] = base64.b64decode(raw, validate=True).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError):
                logger.warning("Secret %s/%s key %s is not valid base64 text", namespace, name, key)
        return decoded


def lookup_secret_value(store: SecretStore, namespace: str, ref: SecretReference) -> str:
    """Fetch one decoded value; a missing secret or key is :class:`SecretNotFoundError`."""
    data = store.get(namespace, ref.secret_name)
    if ref.key not in data:
        raise SecretNotFoundError(namespace, ref.secret_name, ref.key)
    return data[ref.key]
