"""Tests for stackrender.render.composer — resources and conditional blocks."""

from __future__ import annotations

import copy

import pytest

from stackrender.config.models import ReleaseContext
from stackrender.config.values import ValueTree, load_chart
from stackrender.errors import ConfigError, CyclicReferenceError, RenderError
from stackrender.render.composer import (
    compose_gateway,
    compose_manifests,
    ingress_spec,
    probe_blocks,
)

CHART, DEFAULTS = load_chart()
CTX = ReleaseContext.create("demo", "ns1", chart=CHART)


def _compose(overrides=None):
    return compose_manifests(CTX, ValueTree(DEFAULTS, overrides or {}))


def _find(resources, kind, name):
    for r in resources:
        if r.kind == kind and r.name == name:
            return r
    raise AssertionError(f"{kind}/{name} not composed")


def _gateway_container(resources):
    deploy = _find(resources, "Deployment", "demo-mcpgateway")
    return deploy.spec["template"]["spec"]["containers"][0]


# ── resource set ─────────────────────────────────────────────────────


class TestResourceSet:
    def test_default_resources(self):
        kinds = [(r.kind, r.name) for r in _compose()]
        assert kinds == [
            ("ConfigMap", "demo-gateway-config"),
            ("Deployment", "demo-mcpgateway"),
            ("Service", "demo-mcpgateway"),
            ("Ingress", "demo-mcpgateway"),
            ("Deployment", "demo-postgres"),
            ("Service", "demo-postgres"),
            ("Deployment", "demo-redis"),
            ("Service", "demo-redis"),
            ("Deployment", "demo-mcp-fast-time-server"),
            ("Service", "demo-mcp-fast-time-server"),
        ]

    def test_disabled_components_omitted(self):
        resources = _compose({
            "postgres": {"enabled": False},
            "redis": {"enabled": False},
            "mcpFastTimeServer": {"enabled": False},
        })
        assert {r.name for r in resources} == {"demo-gateway-config", "demo-mcpgateway"}

    def test_metadata_labels_and_namespace(self):
        for r in _compose():
            assert r.metadata["namespace"] == "ns1"
            assert r.metadata["labels"]["app.kubernetes.io/instance"] == "demo"

    def test_defaults_not_mutated(self):
        snapshot = copy.deepcopy(DEFAULTS)
        _compose({"mcpContextForge": {"replicaCount": 4}})
        assert DEFAULTS == snapshot

    def test_deterministic(self):
        a = [r.to_dict() for r in _compose()]
        b = [r.to_dict() for r in _compose()]
        assert a == b


# ── gateway ──────────────────────────────────────────────────────────


class TestGateway:
    def test_container_basics(self):
        c = _gateway_container(_compose({"mcpContextForge": {"image": {"tag": "v1.2"}}}))
        assert c["image"] == "ghcr.io/ibm/mcp-context-forge:v1.2"
        assert c["imagePullPolicy"] == "IfNotPresent"
        assert c["ports"] == [{"containerPort": 4444}]

    def test_replicas(self):
        deploy = _find(_compose({"mcpContextForge": {"replicaCount": "3"}}), "Deployment", "demo-mcpgateway")
        assert deploy.spec["replicas"] == 3

    def test_env_order_literal_secret_derived(self):
        env = _gateway_container(_compose())["env"]
        kinds = []
        for entry in env:
            if "valueFrom" in entry:
                kinds.append("secret")
            elif "$(" in entry["value"]:
                kinds.append("derived")
            else:
                kinds.append("literal")
        assert kinds == sorted(kinds, key=["literal", "secret", "derived"].index)
        assert [e["name"] for e in env][-2:] == ["DATABASE_URL", "REDIS_URL"]

    def test_port_rendered_as_string(self):
        env = {e["name"]: e for e in _gateway_container(_compose())["env"]}
        assert env["POSTGRES_PORT"]["value"] == "5432"
        assert env["REDIS_PORT"]["value"] == "6379"

    def test_secret_ref_entry(self):
        env = {e["name"]: e for e in _gateway_container(_compose())["env"]}
        assert env["POSTGRES_USER"]["valueFrom"] == {
            "secretKeyRef": {"name": "demo-postgres-secret", "key": "POSTGRES_USER"},
        }

    def test_env_from(self):
        assert _gateway_container(_compose())["envFrom"] == [
            {"secretRef": {"name": "demo-gateway-secret"}},
            {"configMapRef": {"name": "demo-gateway-config"}},
        ]

    def test_config_map_values_are_strings(self):
        cm = _find(_compose(), "ConfigMap", "demo-gateway-config")
        assert cm.data["PORT"] == "4444"
        assert cm.data["AUTH_REQUIRED"] == "true"
        assert "spec" not in cm.to_dict()

    def test_service(self):
        svc = _find(_compose(), "Service", "demo-mcpgateway")
        assert svc.spec["ports"] == [{"port": 80, "targetPort": 4444, "protocol": "TCP"}]
        assert svc.spec["selector"] == {"app": "demo-mcpgateway"}

    def test_resources_pass_through(self):
        custom = {"limits": {"cpu": "2", "nvidia.com/gpu": 1}, "requests": {"cpu": "1"}}
        overrides = {"mcpContextForge": {"resources": None}}
        c = _gateway_container(_compose(overrides))
        assert "resources" not in c
        c = _gateway_container(compose_gateway(CTX, ValueTree(
            {**DEFAULTS, "mcpContextForge": {**DEFAULTS["mcpContextForge"], "resources": custom}},
        )))
        assert c["resources"] == custom

    def test_cycle_aborts_render(self):
        with pytest.raises(CyclicReferenceError):
            _compose({"mcpContextForge": {"extraEnv": [
                {"name": "A", "value": "$(B)"}, {"name": "B", "value": "$(A)"},
            ]}})

    def test_missing_required_value(self):
        with pytest.raises(ConfigError, match="mcpContextForge.containerPort"):
            _compose({"mcpContextForge": {"containerPort": None}})


# ── probes ───────────────────────────────────────────────────────────


class TestProbes:
    def test_default_probes_present(self):
        c = _gateway_container(_compose())
        assert c["readinessProbe"]["httpGet"]["path"] == "/ready"
        assert c["livenessProbe"]["httpGet"]["path"] == "/health"
        assert c["startupProbe"]["exec"]["command"] == ["sh", "-c", "sleep 10"]

    def test_absent_probe_key_omitted(self):
        c = _gateway_container(_compose({"mcpContextForge": {"probes": {"startup": None}}}))
        assert "startupProbe" not in c
        assert "readinessProbe" in c

    def test_no_probe_configuration_at_all(self):
        c = _gateway_container(_compose({"mcpContextForge": {"probes": None}}))
        for key in ("startupProbe", "readinessProbe", "livenessProbe"):
            assert key not in c

    def test_empty_probe_block_omitted(self):
        c = _gateway_container(_compose({"mcpContextForge": {"probes": {"liveness": {}}}}))
        assert c["livenessProbe"]["httpGet"]["path"] == "/health"
        values = ValueTree({"x": {"probes": {"liveness": {}}}})
        assert probe_blocks(values, "x") == {}

    def test_malformed_probe(self):
        with pytest.raises(RenderError, match="mcpContextForge.probes.readiness"):
            _compose({"mcpContextForge": {"probes": {"readiness": "yes"}}})

    def test_probe_missing_port(self):
        with pytest.raises(RenderError, match="mcpContextForge.probes.liveness"):
            _compose({"mcpContextForge": {"probes": {"liveness": {"port": None}}}})

    def test_probes_not_a_mapping(self):
        with pytest.raises(RenderError, match="mcpContextForge.probes"):
            _compose({"mcpContextForge": {"probes": ["readiness"]}})


# ── ingress ──────────────────────────────────────────────────────────


class TestIngress:
    def test_default_ingress(self):
        ing = _find(_compose(), "Ingress", "demo-mcpgateway")
        assert ing.spec["ingressClassName"] == "nginx"
        rule = ing.spec["rules"][0]
        assert rule["host"] == "gateway.local"
        path = rule["http"]["paths"][0]
        assert path["backend"]["service"] == {"name": "demo-mcpgateway", "port": {"number": 80}}
        assert ing.metadata["annotations"]["nginx.ingress.kubernetes.io/rewrite-target"] == "/"

    def test_disabled(self):
        resources = _compose({"mcpContextForge": {"ingress": {"enabled": False}}})
        assert all(r.kind != "Ingress" for r in resources)

    def test_absent(self):
        resources = _compose({"mcpContextForge": {"ingress": None}})
        assert all(r.kind != "Ingress" for r in resources)
        assert ingress_spec(ValueTree({}), "mcpContextForge") is None

    def test_without_host_or_class(self):
        ing = _find(
            _compose({"mcpContextForge": {"ingress": {"host": None, "className": None, "annotations": None}}}),
            "Ingress", "demo-mcpgateway",
        )
        assert "host" not in ing.spec["rules"][0]
        assert "ingressClassName" not in ing.spec
        assert "annotations" not in ing.metadata

    def test_invalid_shape(self):
        with pytest.raises(RenderError, match="mcpContextForge.ingress"):
            _compose({"mcpContextForge": {"ingress": "on"}})


# ── datastores ───────────────────────────────────────────────────────


class TestDatastores:
    def test_postgres_env_uses_secret(self):
        deploy = _find(
            _compose({"postgres": {"existingSecret": "pg-creds"}}),
            "Deployment", "demo-postgres",
        )
        env = deploy.spec["template"]["spec"]["containers"][0]["env"]
        assert env[0] == {"name": "POSTGRES_DB", "value": "postgresdb"}
        assert env[1]["valueFrom"]["secretKeyRef"]["name"] == "pg-creds"

    def test_gateway_and_postgres_agree_on_secret_name(self):
        resources = _compose()
        gw_env = {e["name"]: e for e in _gateway_container(resources)["env"]}
        pg = _find(resources, "Deployment", "demo-postgres")
        pg_env = {e["name"]: e for e in pg.spec["template"]["spec"]["containers"][0]["env"]}
        assert gw_env["POSTGRES_PASSWORD"]["valueFrom"] == pg_env["POSTGRES_PASSWORD"]["valueFrom"]

    def test_postgres_image_tag_text(self):
        deploy = _find(_compose(), "Deployment", "demo-postgres")
        assert deploy.spec["template"]["spec"]["containers"][0]["image"] == "postgres:17"

    def test_redis_service_port(self):
        svc = _find(_compose({"redis": {"service": {"port": 6380}}}), "Service", "demo-redis")
        assert svc.spec["ports"][0]["port"] == 6380

    def test_fast_time_server_probe(self):
        deploy = _find(_compose(), "Deployment", "demo-mcp-fast-time-server")
        c = deploy.spec["template"]["spec"]["containers"][0]
        assert c["readinessProbe"]["httpGet"]["port"] == 8080
        assert "livenessProbe" not in c
