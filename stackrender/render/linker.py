"""Environment binding linker for substitution-safe container env lists.

The container runtime expands ``$(NAME)`` placeholders in a single
left-to-right pass: a value may only reference names declared earlier in
the same list, and unresolvable references are left verbatim.  The linker
turns that ordering rule into a checked invariant:

* every placeholder in a derived binding must name a binding in scope
  (otherwise :class:`ConfigError`);
* derived bindings must not reference each other in a cycle
  (otherwise :class:`CyclicReferenceError`);
* the emitted order is literals, then secret refs, then derived bindings
  in a stable topological order (declaration order breaks ties).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Set

from stackrender.config.models import ReleaseContext
from stackrender.config.values import ValueTree, coerce, derive_name
from stackrender.errors import ConfigError, CyclicReferenceError
from stackrender.render.secrets import SecretReference, secret_name

logger = logging.getLogger(__name__)

#: ``$$`` is the runtime's escape for a literal ``$``; it never references.
_PLACEHOLDER = re.compile(r"\$\$|\$\(([A-Za-z_][A-Za-z0-9_.-]*)\)")


# ---------------------------------------------------------------------------
# Bindings
# ---------------------------------------------------------------------------


class BindingKind(str, Enum):
    """How a binding's value is produced."""

    LITERAL = "literal"
    SECRET_REF = "secretRef"
    DERIVED = "derived"


@dataclass(frozen=True)
class EnvironmentBinding:
    """One ``env`` entry destined for a container.

    ``value`` holds the literal text or the derived template;
    ``secret`` holds the reference for secretRef bindings.
    """

    name: str
    kind: BindingKind
    value: str = ""
    secret: Optional[SecretReference] = None
    references: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if (self.kind is BindingKind.SECRET_REF) != (self.secret is not None):
            raise ConfigError(
                f"Binding '{self.name}' of kind {self.kind.value} "
                f"{'requires' if self.secret is None else 'does not take'} a secret reference",
                path=self.name,
            )

    @classmethod
    def literal(cls, name: str, value: Any) -> "EnvironmentBinding":
        return cls(name=name, kind=BindingKind.LITERAL, value=coerce(value, str, name))

    @classmethod
    def secret_ref(cls, name: str, ref: SecretReference) -> "EnvironmentBinding":
        return cls(name=name, kind=BindingKind.SECRET_REF, secret=ref)

    @classmethod
    def derived(cls, name: str, template: str) -> "EnvironmentBinding":
        return cls(
            name=name,
            kind=BindingKind.DERIVED,
            value=template,
            references=frozenset(placeholder_names(template)),
        )

    def to_manifest(self) -> Dict[str, Any]:
        if self.kind is BindingKind.SECRET_REF:
            return {"name": self.name, "valueFrom": self.secret.to_manifest()}
        return {"name": self.name, "value": self.value}


def placeholder_names(template: str) -> List[str]:
    """Names referenced by ``$(NAME)`` placeholders, in order of appearance."""
    names: List[str] = []
    for match in _PLACEHOLDER.finditer(template):
        name = match.group(1)
        if name and name not in names:
            names.append(name)
    return names


def binding_from_config(entry: Any, path: str) -> EnvironmentBinding:
    """Build a binding from an ``extraEnv`` entry.

    Accepted shapes::

        {name: FOO, value: "bar"}                       # literal
        {name: URL, value: "http://$(HOST):$(PORT)"}    # derived
        {name: TOKEN, secretKeyRef: {name: s, key: k}}  # secretRef
    """
    if not isinstance(entry, dict) or not entry.get("name"):
        raise ConfigError(f"'{path}' must be a mapping with a 'name'", path=path)
    name = str(entry["name"])
    ref = entry.get("secretKeyRef")
    if ref is not None:
        if not isinstance(ref, dict) or not ref.get("name") or not ref.get("key"):
            raise ConfigError(
                f"'{path}.secretKeyRef' requires 'name' and 'key'", path=f"{path}.secretKeyRef",
            )
        return EnvironmentBinding.secret_ref(
            name, SecretReference(str(ref["name"]), str(ref["key"])),
        )
    if "value" not in entry:
        raise ConfigError(f"'{path}' requires 'value' or 'secretKeyRef'", path=path)
    value = coerce(entry["value"], str, f"{path}.value")
    if placeholder_names(value):
        return EnvironmentBinding.derived(name, value)
    return EnvironmentBinding.literal(name, value)


# ---------------------------------------------------------------------------
# Linking
# ---------------------------------------------------------------------------


def link_bindings(bindings: Sequence[EnvironmentBinding]) -> List[EnvironmentBinding]:
    """Return *bindings* in an order the single-pass runtime can expand.

    Raises:
        ConfigError: duplicate names, or a derived binding referencing a
            name not defined anywhere in *bindings*.
        CyclicReferenceError: derived bindings that reference each other
            in a cycle.  No partial list is returned.
    """
    by_name: Dict[str, EnvironmentBinding] = {}
    for b in bindings:
        if b.name in by_name:
            raise ConfigError(f"Duplicate environment binding '{b.name}'", path=b.name)
        by_name[b.name] = b

    for b in bindings:
        for ref in sorted(b.references):
            if ref not in by_name:
                raise ConfigError(
                    f"Binding '{b.name}' references undefined name '{ref}'",
                    path=b.name,
                )

    literals = [b for b in bindings if b.kind is BindingKind.LITERAL]
    secret_refs = [b for b in bindings if b.kind is BindingKind.SECRET_REF]
    derived = [b for b in bindings if b.kind is BindingKind.DERIVED]

    ordered = literals + secret_refs + _stable_toposort(derived)
    logger.debug("Linked %d bindings: %s", len(ordered), [b.name for b in ordered])
    return ordered


def _stable_toposort(derived: Sequence[EnvironmentBinding]) -> List[EnvironmentBinding]:
    """Kahn's algorithm, always picking the earliest-declared ready binding."""
    position = {b.name: i for i, b in enumerate(derived)}
    deps: Dict[str, Set[str]] = {
        b.name: {r for r in b.references if r in position} for b in derived
    }

    emitted: List[EnvironmentBinding] = []
    done: Set[str] = set()
    while len(emitted) < len(derived):
        ready = [
            b for b in derived
            if b.name not in done and deps[b.name] <= done
        ]
        if not ready:
            raise CyclicReferenceError(_cycle_members(derived, deps, done))
        nxt = min(ready, key=lambda b: position[b.name])
        emitted.append(nxt)
        done.add(nxt.name)
    return emitted


def _cycle_members(
    derived: Sequence[EnvironmentBinding],
    deps: Mapping[str, Set[str]],
    done: Set[str],
) -> List[str]:
    """Names on a dependency cycle among the unresolved bindings."""
    pending = [b.name for b in derived if b.name not in done]
    # Walk dependency edges from the first pending binding until a name repeats
    path: List[str] = []
    current = pending[0]
    while current not in path:
        path.append(current)
        current = min(
            (d for d in deps[current] if d not in done),
            key=pending.index,
        )
    return path[path.index(current):]


# ---------------------------------------------------------------------------
# Runtime model
# ---------------------------------------------------------------------------


def expand_bindings(
    bindings: Sequence[EnvironmentBinding],
    secret_values: Optional[Mapping[SecretReference, str]] = None,
) -> Dict[str, str]:
    """Expand *bindings* the way the container runtime does.

    One left-to-right pass; a placeholder resolves only against names
    already expanded, otherwise it is kept verbatim.  ``$$`` becomes ``$``.
    """
    secret_values = secret_values or {}
    env: Dict[str, str] = {}

    for b in bindings:
        if b.kind is BindingKind.SECRET_REF:
            env[b.name] = secret_values.get(b.secret, "")
        elif b.kind is BindingKind.LITERAL:
            env[b.name] = b.value
        else:
            env[b.name] = _substitute(b.value, env)
    return env


def _substitute(template: str, env: Mapping[str, str]) -> str:
    def repl(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name is None:
            return "$"
        return env.get(name, match.group(0))

    return _PLACEHOLDER.sub(repl, template)


# ---------------------------------------------------------------------------
# Gateway container
# ---------------------------------------------------------------------------


def gateway_bindings(ctx: ReleaseContext, values: ValueTree) -> List[EnvironmentBinding]:
    """Declare and link the gateway container's environment.

    Datastore endpoints are concrete bindings so the derived
    ``DATABASE_URL`` / ``REDIS_URL`` templates can reference them.
    """
    pg = "mcpContextForge.env.postgres"
    redis = "mcpContextForge.env.redis"

    pg_secret = secret_name(ctx, values.get("postgres.existingSecret", as_type=str))
    user_key = values.get(f"{pg}.userKey", required=True, as_type=str)
    password_key = values.get(f"{pg}.passwordKey", required=True, as_type=str)

    pg_host = values.get(f"{pg}.host", as_type=str) or derive_name(ctx, "postgres")
    redis_host = values.get(f"{redis}.host", as_type=str) or derive_name(ctx, "redis")

    declared: List[EnvironmentBinding] = [
        EnvironmentBinding.literal("POSTGRES_HOST", pg_host),
        EnvironmentBinding.literal(
            "POSTGRES_PORT", values.get(f"{pg}.port", required=True, as_type=str),
        ),
        EnvironmentBinding.literal(
            "POSTGRES_DB", values.get(f"{pg}.db", required=True, as_type=str),
        ),
        EnvironmentBinding.secret_ref("POSTGRES_USER", SecretReference(pg_secret, user_key)),
        EnvironmentBinding.secret_ref(
            "POSTGRES_PASSWORD", SecretReference(pg_secret, password_key),
        ),
        EnvironmentBinding.literal("REDIS_HOST", redis_host),
        EnvironmentBinding.literal(
            "REDIS_PORT", values.get(f"{redis}.port", required=True, as_type=str),
        ),
        EnvironmentBinding.derived(
            "DATABASE_URL",
            "postgresql://$(POSTGRES_USER):$(POSTGRES_PASSWORD)"
            "@$(POSTGRES_HOST):$(POSTGRES_PORT)/$(POSTGRES_DB)",
        ),
        EnvironmentBinding.derived("REDIS_URL", "redis://$(REDIS_HOST):$(REDIS_PORT)/0"),
    ]

    extra = values.get("mcpContextForge.extraEnv") or []
    if not isinstance(extra, list):
        raise ConfigError(
            "'mcpContextForge.extraEnv' must be a list", path="mcpContextForge.extraEnv",
        )
    for i, entry in enumerate(extra):
        declared.append(binding_from_config(entry, f"mcpContextForge.extraEnv[{i}]"))

    return link_bindings(declared)
