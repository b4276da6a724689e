"""Binding linking, manifest composition, secrets, and summary rendering."""

from stackrender.render.composer import ManifestResource, compose_manifests
from stackrender.render.linker import (
    BindingKind,
    EnvironmentBinding,
    expand_bindings,
    gateway_bindings,
    link_bindings,
)
from stackrender.render.notes import (
    HIDDEN,
    NOT_YET_CREATED,
    NotesDocument,
    NotesSection,
    SecretLine,
    TextLine,
    render_notes,
)
from stackrender.render.renderer import (
    RenderResult,
    dump_manifests,
    render_release,
    render_release_notes,
)
from stackrender.render.secrets import (
    InMemorySecretStore,
    KubernetesSecretStore,
    SecretReference,
    SecretStore,
    gateway_secret_name,
    secret_name,
)

__all__ = [
    "BindingKind",
    "EnvironmentBinding",
    "HIDDEN",
    "InMemorySecretStore",
    "KubernetesSecretStore",
    "ManifestResource",
    "NOT_YET_CREATED",
    "NotesDocument",
    "NotesSection",
    "RenderResult",
    "SecretLine",
    "SecretReference",
    "SecretStore",
    "TextLine",
    "compose_manifests",
    "dump_manifests",
    "expand_bindings",
    "gateway_bindings",
    "gateway_secret_name",
    "link_bindings",
    "render_notes",
    "render_release",
    "render_release_notes",
    "secret_name",
]
