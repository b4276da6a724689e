"""Pydantic models for release identity and structural chart blocks.

Defines the data structures for:
- The immutable per-render release context (name, namespace, chart)
- Chart metadata parsed from ``Chart.yaml``
- Existence-conditional blocks (probes, ingress) and image references
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from stackrender.errors import ConfigError, RenderError

_DNS1123_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")

#: Helm limits release names to 53 characters so suffixed names fit in 63.
MAX_RELEASE_NAME_LENGTH = 53

ModelT = TypeVar("ModelT", bound=BaseModel)


# ---------------------------------------------------------------------------
# Release context
# ---------------------------------------------------------------------------


class ReleaseContext(BaseModel):
    """Identity of one render invocation.  Created once, never mutated."""

    model_config = ConfigDict(frozen=True)

    release_name: str
    namespace: str = "default"
    chart_name: str = "mcp-stack"
    chart_version: str = "0.0.0"
    app_version: str = ""

    @field_validator("release_name")
    @classmethod
    def _check_release_name(cls, value: str) -> str:
        if not value:
            raise ValueError("release name must not be empty")
        if len(value) > MAX_RELEASE_NAME_LENGTH:
            raise ValueError(
                f"release name '{value}' exceeds {MAX_RELEASE_NAME_LENGTH} characters"
            )
        if not _DNS1123_LABEL.match(value):
            raise ValueError(
                f"release name '{value}' must consist of lowercase "
                "alphanumerics and '-'"
            )
        return value

    @field_validator("namespace")
    @classmethod
    def _check_namespace(cls, value: str) -> str:
        if not _DNS1123_LABEL.match(value or ""):
            raise ValueError(f"namespace '{value}' is not a valid DNS-1123 label")
        return value

    @classmethod
    def create(
        cls,
        release_name: str,
        namespace: str = "default",
        *,
        chart: Optional["ChartMetadata"] = None,
    ) -> "ReleaseContext":
        """Build a context, reporting invalid input as :class:`ConfigError`."""
        fields: Dict[str, Any] = {
            "release_name": release_name,
            "namespace": namespace,
        }
        if chart is not None:
            fields.update(
                chart_name=chart.name,
                chart_version=chart.version,
                app_version=chart.app_version,
            )
        try:
            return cls(**fields)
        except ValidationError as exc:
            first = exc.errors()[0]
            loc = ".".join(str(p) for p in first.get("loc", ()))
            raise ConfigError(
                f"Invalid release context ({loc}): {first.get('msg', exc)}",
                path=loc or None,
            ) from exc

    def labels(self) -> Dict[str, str]:
        """Standard chart labels shared by every composed resource."""
        labels = {
            "helm.sh/chart": f"{self.chart_name}-{self.chart_version}",
            "app.kubernetes.io/name": self.chart_name,
            "app.kubernetes.io/instance": self.release_name,
            "app.kubernetes.io/managed-by": "stackrender",
        }
        if self.app_version:
            labels["app.kubernetes.io/version"] = self.app_version
        return labels


class ChartMetadata(BaseModel):
    """The subset of ``Chart.yaml`` used while rendering."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    version: str
    app_version: str = Field(default="", alias="appVersion")
    description: str = ""

    @field_validator("version", "app_version", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if isinstance(value, (int, float)):
            return str(value)
        return value


# ---------------------------------------------------------------------------
# Structural blocks
# ---------------------------------------------------------------------------


class ImageSpec(BaseModel):
    """Container image coordinates."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    repository: str
    tag: str = "latest"
    pull_policy: str = Field(default="IfNotPresent", alias="pullPolicy")

    @field_validator("tag", mode="before")
    @classmethod
    def _tag_as_text(cls, value: Any) -> Any:
        # Unquoted YAML tags such as 17 or 3.12 arrive as numbers
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @property
    def reference(self) -> str:
        return f"{self.repository}:{self.tag}"


class ProbeType(str, Enum):
    """Probe handler kinds understood by the composer."""

    HTTP = "http"
    TCP = "tcp"
    EXEC = "exec"


class ProbeSpec(BaseModel):
    """One startup / readiness / liveness probe definition."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    type: ProbeType = ProbeType.HTTP
    path: Optional[str] = None
    port: Optional[Union[int, str]] = None
    scheme: str = "HTTP"
    command: List[str] = Field(default_factory=list)
    initial_delay_seconds: Optional[int] = Field(default=None, alias="initialDelaySeconds")
    period_seconds: Optional[int] = Field(default=None, alias="periodSeconds")
    timeout_seconds: Optional[int] = Field(default=None, alias="timeoutSeconds")
    success_threshold: Optional[int] = Field(default=None, alias="successThreshold")
    failure_threshold: Optional[int] = Field(default=None, alias="failureThreshold")

    @model_validator(mode="after")
    def _check_handler(self) -> "ProbeSpec":
        if self.type is ProbeType.HTTP:
            if not self.path or self.port is None:
                raise ValueError("http probes require both 'path' and 'port'")
        elif self.type is ProbeType.TCP:
            if self.port is None:
                raise ValueError("tcp probes require 'port'")
        elif not self.command:
            raise ValueError("exec probes require a non-empty 'command'")
        return self

    def to_manifest(self) -> Dict[str, Any]:
        """Kubernetes probe object (handler plus any configured timings)."""
        if self.type is ProbeType.HTTP:
            body: Dict[str, Any] = {
                "httpGet": {
                    "path": self.path,
                    "port": self.port,
                    "scheme": self.scheme,
                },
            }
        elif self.type is ProbeType.TCP:
            body = {"tcpSocket": {"port": self.port}}
        else:
            body = {"exec": {"command": list(self.command)}}

        timings = {
            "initialDelaySeconds": self.initial_delay_seconds,
            "periodSeconds": self.period_seconds,
            "timeoutSeconds": self.timeout_seconds,
            "successThreshold": self.success_threshold,
            "failureThreshold": self.failure_threshold,
        }
        body.update({k: v for k, v in timings.items() if v is not None})
        return body


class IngressSpec(BaseModel):
    """Ingress settings for the gateway service."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    enabled: bool = False
    class_name: Optional[str] = Field(default=None, alias="className")
    host: Optional[str] = None
    path: str = "/"
    path_type: str = Field(default="Prefix", alias="pathType")
    annotations: Dict[str, str] = Field(default_factory=dict)
    tls: List[Dict[str, Any]] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Parsing helper
# ---------------------------------------------------------------------------


def parse_block(model: Type[ModelT], data: Any, path: str) -> ModelT:
    """Validate *data* against *model*, raising :class:`RenderError` on failure.

    The error names the configuration *path* and the first offending field.
    """
    if not isinstance(data, dict):
        raise RenderError(
            f"Configuration block '{path}' must be a mapping, "
            f"got {type(data).__name__}",
            path=path,
        )
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        loc = ".".join(str(p) for p in first.get("loc", ()))
        where = f"{path}.{loc}" if loc else path
        raise RenderError(
            f"Invalid configuration block '{where}': {first.get('msg', exc)}",
            path=where,
        ) from exc
