"""Release renderer — values in, manifests (and notes) out.

This module ties the pipeline together::

    defaults + overrides ─► ValueTree ─► compose_manifests ─► YAML
                                    └──► render_notes

Rendering is a pure function of ``(ReleaseContext, defaults, overrides)``:
identical inputs yield byte-identical YAML.  Any structural error aborts
the render before anything is returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

import yaml

from stackrender.config.models import ReleaseContext
from stackrender.config.values import ValueTree
from stackrender.render.composer import ManifestResource, compose_manifests
from stackrender.render.notes import NotesDocument, render_notes
from stackrender.render.secrets import SecretStore

logger = logging.getLogger(__name__)


# ── public API ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class RenderResult:
    """Everything produced by one render invocation."""

    context: ReleaseContext
    manifests: List[ManifestResource]

    def to_yaml(self) -> str:
        return dump_manifests(self.manifests)


def render_release(
    ctx: ReleaseContext,
    defaults: Mapping[str, Any],
    overrides: Optional[Mapping[str, Any]] = None,
) -> RenderResult:
    """Resolve values and compose every manifest for *ctx*.

    Raises
    ------
    ConfigError
        A required value is missing or unusable, or a binding references an
        undefined name.
    CyclicReferenceError
        Derived environment bindings form a cycle.
    RenderError
        A conditional block (probe, ingress, ...) has an invalid shape.
    """
    values = ValueTree(defaults, overrides)
    manifests = compose_manifests(ctx, values)
    logger.info(
        "Rendered release %s in namespace %s (%d resources)",
        ctx.release_name, ctx.namespace, len(manifests),
    )
    return RenderResult(context=ctx, manifests=manifests)


def render_release_notes(
    ctx: ReleaseContext,
    defaults: Mapping[str, Any],
    overrides: Optional[Mapping[str, Any]] = None,
    *,
    redact: bool = True,
    store: Optional[SecretStore] = None,
) -> NotesDocument:
    """Summary document for *ctx*; see :func:`render_notes` for redaction."""
    return render_notes(ctx, ValueTree(defaults, overrides), redact=redact, store=store)


def dump_manifests(manifests: List[ManifestResource]) -> str:
    """Multi-document YAML, keys in composition order."""
    return yaml.safe_dump_all(
        [m.to_dict() for m in manifests],
        sort_keys=False,
        default_flow_style=False,
        explicit_start=True,
    )
