"""Post-install summary (the chart's NOTES) with explicit secret redaction.

The whole document is rendered under one boolean *redact* flag:

* ``redact=True`` (default) — every secret-bearing line shows
  :data:`HIDDEN` plus a command that retrieves the value out of band.
  The Secret Store is never consulted.
* ``redact=False`` — each secret is looked up once.  A missing basic-auth
  or database credential renders :data:`NOT_YET_CREATED`; a missing JWT
  signing key keeps :data:`HIDDEN` and its retrieval command.

Lookups are best effort: :class:`SecretNotFoundError` never fails the
summary.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple, Union

from stackrender.config.models import ReleaseContext
from stackrender.config.values import ValueTree, derive_name
from stackrender.errors import SecretNotFoundError
from stackrender.render.composer import ingress_spec
from stackrender.render.secrets import (
    SecretReference,
    SecretStore,
    gateway_secret_name,
    lookup_secret_value,
    retrieval_command,
    secret_name,
)

logger = logging.getLogger(__name__)

HIDDEN = "<hidden>"
NOT_YET_CREATED = "<secret-not-yet-created>"

#: Local port used by the quick-start port-forward.
LOCAL_PORT = 4444


# ---------------------------------------------------------------------------
# Document model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextLine:
    text: str

    def render(self) -> str:
        return self.text


@dataclass(frozen=True)
class SecretLine:
    """A line whose value comes from a secret.

    ``value`` is what gets printed: a decoded secret, :data:`HIDDEN` or
    :data:`NOT_YET_CREATED`.  ``command`` is set whenever the value is not
    disclosed inline.
    """

    label: str
    reference: SecretReference
    value: str
    command: Optional[str] = None

    def render(self) -> str:
        line = f"{self.label}: {self.value}"
        if self.command:
            line += f"\n    retrieve with: {self.command}"
        return line


NoteLine = Union[TextLine, SecretLine]


@dataclass(frozen=True)
class NotesSection:
    title: str
    lines: Tuple[NoteLine, ...]


@dataclass(frozen=True)
class NotesDocument:
    """Ordered summary sections rendered under a single redaction flag."""

    redacted: bool
    sections: Tuple[NotesSection, ...]

    def section(self, title: str) -> NotesSection:
        for s in self.sections:
            if s.title == title:
                return s
        raise KeyError(title)

    def secret_lines(self) -> List[SecretLine]:
        return [
            line for s in self.sections for line in s.lines
            if isinstance(line, SecretLine)
        ]

    def to_text(self) -> str:
        blocks = []
        for s in self.sections:
            body = "\n".join(f"  {line.render()}" for line in s.lines)
            blocks.append(f"{s.title}\n{'-' * len(s.title)}\n{body}")
        return "\n\n".join(blocks) + "\n"


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


class _SecretResolver:
    """Turns references into :class:`SecretLine` under the document's policy.

    Each secret is fetched from the store at most once per document; a
    not-found outcome is remembered too, so later keys of the same secret
    fall back without another lookup.
    """

    def __init__(self, ctx: ReleaseContext, redact: bool, store: Optional[SecretStore]) -> None:
        self._ns = ctx.namespace
        self._redact = redact
        self._store = store
        self._fetched: Dict[str, Union[Mapping[str, str], SecretNotFoundError]] = {}

    def get(self, namespace: str, name: str) -> Mapping[str, str]:
        if name not in self._fetched:
            try:
                self._fetched[name] = self._store.get(namespace, name)
            except SecretNotFoundError as exc:
                self._fetched[name] = exc
        outcome = self._fetched[name]
        if isinstance(outcome, SecretNotFoundError):
            raise outcome
        return outcome

    def line(self, label: str, ref: SecretReference, *, fallback: Optional[str]) -> SecretLine:
        command = retrieval_command(self._ns, ref)
        if self._redact or self._store is None:
            return SecretLine(label, ref, HIDDEN, command)
        try:
            value = lookup_secret_value(self, self._ns, ref)
        except SecretNotFoundError as exc:
            logger.info("Summary placeholder for %s: %s", label, exc)
            if fallback is None:
                return SecretLine(label, ref, HIDDEN, command)
            return SecretLine(label, ref, fallback, command)
        return SecretLine(label, ref, value)


def render_notes(
    ctx: ReleaseContext,
    values: ValueTree,
    *,
    redact: bool = True,
    store: Optional[SecretStore] = None,
) -> NotesDocument:
    """Build the post-install summary for *ctx*.

    *store* is only consulted when *redact* is ``False``.  Without a store,
    unredacted rendering degrades to placeholders as well.
    """
    secrets = _SecretResolver(ctx, redact, store)
    ns = ctx.namespace
    gateway = derive_name(ctx, "mcpgateway")
    gw_secret = gateway_secret_name(ctx)
    service_port = values.get("mcpContextForge.service.port", required=True, as_type=int)

    password_ref = SecretReference(
        gw_secret,
        values.get("mcpContextForge.secretKeys.basicAuthPassword", required=True, as_type=str),
    )
    jwt_ref = SecretReference(
        gw_secret,
        values.get("mcpContextForge.secretKeys.jwtSecretKey", required=True, as_type=str),
    )
    auth_user = values.get("mcpContextForge.config.BASIC_AUTH_USER", as_type=str) or "admin"

    sections: List[NotesSection] = []

    # -- gateway -----------------------------------------------------------
    gw_lines: List[NoteLine] = [
        TextLine(f"Service: {gateway}.{ns}.svc.cluster.local:{service_port}"),
    ]
    ingress = ingress_spec(values, "mcpContextForge")
    if ingress is not None and ingress.host:
        scheme = "https" if ingress.tls else "http"
        gw_lines.append(TextLine(f"Ingress: {scheme}://{ingress.host}{ingress.path}"))
    gw_lines.append(TextLine(f"Basic auth user: {auth_user}"))
    password_line = secrets.line("Basic auth password", password_ref, fallback=NOT_YET_CREATED)
    gw_lines.append(password_line)
    sections.append(NotesSection("MCP Gateway", tuple(gw_lines)))

    # -- signing key (no not-yet-created fallback) -------------------------
    jwt_line = secrets.line("JWT signing key", jwt_ref, fallback=None)
    sections.append(NotesSection("JWT signing key", (jwt_line,)))

    # -- companion server --------------------------------------------------
    fast_time_url = None
    if values.get("mcpFastTimeServer.enabled", as_type=bool) is not False:
        fts = derive_name(ctx, "mcp-fast-time-server")
        fts_port = values.get("mcpFastTimeServer.port", required=True, as_type=int)
        fast_time_url = f"http://{fts}.{ns}.svc.cluster.local:{fts_port}/sse"
        sections.append(NotesSection("Fast-time server", (TextLine(f"SSE endpoint: {fast_time_url}"),)))

    # -- datastores --------------------------------------------------------
    pg = "mcpContextForge.env.postgres"
    pg_secret = secret_name(ctx, values.get("postgres.existingSecret", as_type=str))
    pg_host = values.get(f"{pg}.host", as_type=str) or derive_name(ctx, "postgres")
    sections.append(NotesSection("PostgreSQL", (
        TextLine(f"Host: {pg_host}"),
        TextLine(f"Port: {values.get(f'{pg}.port', required=True, as_type=str)}"),
        TextLine(f"Database: {values.get(f'{pg}.db', required=True, as_type=str)}"),
        secrets.line(
            "User",
            SecretReference(pg_secret, values.get(f"{pg}.userKey", required=True, as_type=str)),
            fallback=NOT_YET_CREATED,
        ),
        secrets.line(
            "Password",
            SecretReference(pg_secret, values.get(f"{pg}.passwordKey", required=True, as_type=str)),
            fallback=NOT_YET_CREATED,
        ),
    )))

    redis_host = values.get("mcpContextForge.env.redis.host", as_type=str) or derive_name(ctx, "redis")
    sections.append(NotesSection("Redis", (
        TextLine(f"Host: {redis_host}"),
        TextLine(f"Port: {values.get('mcpContextForge.env.redis.port', required=True, as_type=str)}"),
    )))

    # -- quick start -------------------------------------------------------
    if jwt_line.command is None:
        jwt_arg = _shell_quote(jwt_line.value)
    else:
        jwt_arg = f"\"$({jwt_line.command})\""
    token_expiry = values.get("mcpContextForge.config.TOKEN_EXPIRY", as_type=str) or "10080"

    steps: List[NoteLine] = [
        TextLine(f"1. kubectl -n {ns} port-forward svc/{gateway} {LOCAL_PORT}:{service_port}"),
        TextLine(
            f"2. export MCPGATEWAY_BEARER_TOKEN=$(kubectl -n {ns} exec deploy/{gateway} -- "
            f"python3 -m mcpgateway.utils.create_jwt_token --username {auth_user} "
            f"--exp {token_expiry} --secret {jwt_arg})"
        ),
    ]
    if fast_time_url is not None:
        payload = json.dumps({"name": "fast_time", "url": fast_time_url})
        steps.append(TextLine(
            "3. curl -s -X POST -H \"Authorization: Bearer $MCPGATEWAY_BEARER_TOKEN\" "
            f"-H \"Content-Type: application/json\" -d '{payload}' "
            f"http://localhost:{LOCAL_PORT}/gateways"
        ))
    sections.append(NotesSection("Quick start", tuple(steps)))

    return NotesDocument(redacted=redact, sections=tuple(sections))


def _shell_quote(value: str) -> str:
    return "'" + value.replace("'", "'\"'\"'") + "'"
