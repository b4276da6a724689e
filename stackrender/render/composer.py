"""Manifest composition from the merged value tree.

Each component contributes a group of resources (Deployment + Service,
plus ConfigMap / Ingress for the gateway).  Existence-conditional blocks
(probes, ingress) are only emitted when their configuration is present and
non-empty; an absent block never appears as an empty or null field.
Resource requests/limits are copied through unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from stackrender.config.models import (
    ImageSpec,
    IngressSpec,
    ProbeSpec,
    ReleaseContext,
    parse_block,
)
from stackrender.config.values import ValueTree, coerce, derive_name
from stackrender.errors import RenderError
from stackrender.render.linker import EnvironmentBinding, gateway_bindings, link_bindings
from stackrender.render.secrets import SecretReference, gateway_secret_name, secret_name

logger = logging.getLogger(__name__)

#: Probe blocks in the order they appear on a container.
PROBE_FIELDS = (
    ("startup", "startupProbe"),
    ("readiness", "readinessProbe"),
    ("liveness", "livenessProbe"),
)


# ---------------------------------------------------------------------------
# ManifestResource
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ManifestResource:
    """One Kubernetes object: ``{apiVersion, kind, metadata, spec|data}``."""

    kind: str
    api_version: str
    metadata: Dict[str, Any]
    spec: Dict[str, Any] = field(default_factory=dict)
    data: Optional[Dict[str, str]] = None

    @property
    def name(self) -> str:
        return self.metadata["name"]

    def to_dict(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": self.metadata,
        }
        if self.data is not None:
            doc["data"] = self.data
        else:
            doc["spec"] = self.spec
        return doc


def _metadata(ctx: ReleaseContext, name: str) -> Dict[str, Any]:
    return {"name": name, "namespace": ctx.namespace, "labels": ctx.labels()}


# ---------------------------------------------------------------------------
# Conditional blocks
# ---------------------------------------------------------------------------


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, (dict, list, str)) and not value)


def probe_blocks(values: ValueTree, component: str) -> Dict[str, Dict[str, Any]]:
    """Container probe fields for *component*; absent probes are left out."""
    blocks: Dict[str, Dict[str, Any]] = {}
    probes = values.section(f"{component}.probes")
    if _is_empty(probes):
        return blocks
    if not isinstance(probes, dict):
        raise RenderError(
            f"'{component}.probes' must be a mapping", path=f"{component}.probes",
        )
    for key, manifest_field in PROBE_FIELDS:
        raw = probes.get(key)
        if _is_empty(raw):
            continue
        spec = parse_block(ProbeSpec, raw, f"{component}.probes.{key}")
        blocks[manifest_field] = spec.to_manifest()
    return blocks


def ingress_spec(values: ValueTree, component: str) -> Optional[IngressSpec]:
    """Parsed ingress block when present and enabled, else ``None``."""
    raw = values.section(f"{component}.ingress")
    if _is_empty(raw):
        return None
    spec = parse_block(IngressSpec, raw, f"{component}.ingress")
    return spec if spec.enabled else None


def _resources(values: ValueTree, component: str) -> Optional[Dict[str, Any]]:
    raw = values.section(f"{component}.resources")
    if _is_empty(raw):
        return None
    if not isinstance(raw, dict):
        raise RenderError(
            f"'{component}.resources' must be a mapping", path=f"{component}.resources",
        )
    return raw


def _image(values: ValueTree, component: str) -> ImageSpec:
    path = f"{component}.image"
    return parse_block(ImageSpec, values.get(path, required=True), path)


def _enabled(values: ValueTree, component: str) -> bool:
    flag = values.get(f"{component}.enabled", as_type=bool)
    return True if flag is None else flag


# ---------------------------------------------------------------------------
# Generic builders
# ---------------------------------------------------------------------------


def _container(
    values: ValueTree,
    component: str,
    container_name: str,
    port: int,
    env: Sequence[EnvironmentBinding] = (),
    env_from: Sequence[Dict[str, Any]] = (),
) -> Dict[str, Any]:
    image = _image(values, component)
    container: Dict[str, Any] = {
        "name": container_name,
        "image": image.reference,
        "imagePullPolicy": image.pull_policy,
        "ports": [{"containerPort": port}],
    }
    if env:
        container["env"] = [b.to_manifest() for b in env]
    if env_from:
        container["envFrom"] = list(env_from)
    container.update(probe_blocks(values, component))
    resources = _resources(values, component)
    if resources is not None:
        container["resources"] = resources
    return container


def _deployment(
    ctx: ReleaseContext, name: str, replicas: int, container: Dict[str, Any],
) -> ManifestResource:
    return ManifestResource(
        kind="Deployment",
        api_version="apps/v1",
        metadata=_metadata(ctx, name),
        spec={
            "replicas": replicas,
            "selector": {"matchLabels": {"app": name}},
            "template": {
                "metadata": {"labels": {"app": name}},
                "spec": {"containers": [container]},
            },
        },
    )


def _service(
    ctx: ReleaseContext, name: str, service_type: str, port: int, target_port: int,
) -> ManifestResource:
    return ManifestResource(
        kind="Service",
        api_version="v1",
        metadata=_metadata(ctx, name),
        spec={
            "type": service_type,
            "selector": {"app": name},
            "ports": [{"port": port, "targetPort": target_port, "protocol": "TCP"}],
        },
    )


# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------


def compose_gateway(ctx: ReleaseContext, values: ValueTree) -> List[ManifestResource]:
    """ConfigMap, Deployment, Service and optional Ingress for the gateway."""
    component = "mcpContextForge"
    name = derive_name(ctx, "mcpgateway")
    config_name = derive_name(ctx, "gateway", "config")
    port = values.get(f"{component}.containerPort", required=True, as_type=int)

    settings = values.get(f"{component}.config") or {}
    if not isinstance(settings, dict):
        raise RenderError(
            f"'{component}.config' must be a mapping", path=f"{component}.config",
        )
    config_map = ManifestResource(
        kind="ConfigMap",
        api_version="v1",
        metadata=_metadata(ctx, config_name),
        data={
            k: coerce(v, str, f"{component}.config.{k}")
            for k, v in settings.items()
        },
    )

    env_from = [
        {"secretRef": {"name": gateway_secret_name(ctx)}},
        {"configMapRef": {"name": config_name}},
    ]
    container = _container(
        values, component, "mcp-context-forge", port,
        env=gateway_bindings(ctx, values),
        env_from=env_from,
    )
    resources = [
        config_map,
        _deployment(
            ctx, name,
            values.get(f"{component}.replicaCount", required=True, as_type=int),
            container,
        ),
        _service(
            ctx, name,
            values.get(f"{component}.service.type", required=True, as_type=str),
            values.get(f"{component}.service.port", required=True, as_type=int),
            port,
        ),
    ]

    ingress = ingress_spec(values, component)
    if ingress is not None:
        resources.append(_ingress(ctx, name, ingress, values, component))
    return resources


def _ingress(
    ctx: ReleaseContext,
    service_name: str,
    ingress: IngressSpec,
    values: ValueTree,
    component: str,
) -> ManifestResource:
    metadata = _metadata(ctx, service_name)
    if ingress.annotations:
        metadata["annotations"] = dict(ingress.annotations)

    rule: Dict[str, Any] = {
        "http": {
            "paths": [{
                "path": ingress.path,
                "pathType": ingress.path_type,
                "backend": {
                    "service": {
                        "name": service_name,
                        "port": {
                            "number": values.get(
                                f"{component}.service.port", required=True, as_type=int,
                            ),
                        },
                    },
                },
            }],
        },
    }
    if ingress.host:
        rule = {"host": ingress.host, **rule}

    spec: Dict[str, Any] = {}
    if ingress.class_name:
        spec["ingressClassName"] = ingress.class_name
    if ingress.tls:
        spec["tls"] = list(ingress.tls)
    spec["rules"] = [rule]

    return ManifestResource(
        kind="Ingress",
        api_version="networking.k8s.io/v1",
        metadata=metadata,
        spec=spec,
    )


def compose_postgres(ctx: ReleaseContext, values: ValueTree) -> List[ManifestResource]:
    component = "postgres"
    name = derive_name(ctx, "postgres")
    port = values.get(f"{component}.service.port", required=True, as_type=int)
    creds = secret_name(ctx, values.get(f"{component}.existingSecret", as_type=str))
    user_key = values.get("mcpContextForge.env.postgres.userKey", required=True, as_type=str)
    password_key = values.get(
        "mcpContextForge.env.postgres.passwordKey", required=True, as_type=str,
    )

    env = [
        EnvironmentBinding.literal(
            "POSTGRES_DB",
            values.get("mcpContextForge.env.postgres.db", required=True, as_type=str),
        ),
        EnvironmentBinding.secret_ref("POSTGRES_USER", SecretReference(creds, user_key)),
        EnvironmentBinding.secret_ref(
            "POSTGRES_PASSWORD", SecretReference(creds, password_key),
        ),
    ]
    container = _container(values, component, "postgres", port, env=link_bindings(env))
    return [
        _deployment(ctx, name, 1, container),
        _service(
            ctx, name,
            values.get(f"{component}.service.type", required=True, as_type=str),
            port, port,
        ),
    ]


def compose_redis(ctx: ReleaseContext, values: ValueTree) -> List[ManifestResource]:
    component = "redis"
    name = derive_name(ctx, "redis")
    port = values.get(f"{component}.service.port", required=True, as_type=int)
    container = _container(values, component, "redis", port)
    return [
        _deployment(ctx, name, 1, container),
        _service(
            ctx, name,
            values.get(f"{component}.service.type", required=True, as_type=str),
            port, port,
        ),
    ]


def compose_fast_time_server(ctx: ReleaseContext, values: ValueTree) -> List[ManifestResource]:
    component = "mcpFastTimeServer"
    name = derive_name(ctx, "mcp-fast-time-server")
    port = values.get(f"{component}.port", required=True, as_type=int)
    container = _container(values, component, "mcp-fast-time-server", port)
    return [
        _deployment(
            ctx, name,
            values.get(f"{component}.replicaCount", required=True, as_type=int),
            container,
        ),
        _service(ctx, name, "ClusterIP", port, port),
    ]


def compose_manifests(ctx: ReleaseContext, values: ValueTree) -> List[ManifestResource]:
    """All resources for the release, grouped per component.

    Raises :class:`ConfigError`, :class:`CyclicReferenceError` or
    :class:`RenderError`; no partial list is ever returned.
    """
    resources = compose_gateway(ctx, values)
    if _enabled(values, "postgres"):
        resources.extend(compose_postgres(ctx, values))
    if _enabled(values, "redis"):
        resources.extend(compose_redis(ctx, values))
    if _enabled(values, "mcpFastTimeServer"):
        resources.extend(compose_fast_time_server(ctx, values))
    logger.debug(
        "Composed %d resources for release %s", len(resources), ctx.release_name,
    )
    return resources
