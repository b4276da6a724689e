"""CLI entry point for stackrender, built on typer.

Provides ``render``, ``notes`` and ``values`` commands for the bundled
mcp-stack chart.

Usage::

    python -m stackrender --help
    python -m stackrender render --release demo --namespace ns1 -f my-values.yaml
    python -m stackrender notes --release demo --namespace ns1 --show-secrets
    python -m stackrender values --set mcpContextForge.replicaCount=3
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Dict, List, Optional

import typer
import yaml

from stackrender import ui
from stackrender.errors import StackRenderError

# Exit codes
EXIT_SUCCESS = 0
EXIT_RENDER_FAILURE = 1
EXIT_IO_FAILURE = 2

app = typer.Typer(
    name="stackrender",
    help="Resolve mcp-stack values and render Kubernetes manifests and notes.",
    no_args_is_help=True,
    add_completion=False,
)


# ── shared option helpers ────────────────────────────────────────────────────


def _load_overrides(values_files: Optional[List[str]], set_args: Optional[List[str]]) -> Dict[str, Any]:
    """Fold ``-f`` files (left to right) and then ``--set`` pairs."""
    from stackrender.config.values import load_values_file, merge_all, parse_set_args

    layers = [load_values_file(p) for p in values_files or []]
    layers.append(parse_set_args(set_args or []))
    return merge_all(layers)


def _setup(debug: bool) -> None:
    if debug:
        logging.basicConfig(level=logging.DEBUG)
        ui.info("Debug logging enabled")


def _fail(exc: Exception, code: int) -> None:
    ui.error_msg(str(exc))
    raise typer.Exit(code) from exc


# ── render command ───────────────────────────────────────────────────────────


@app.command()
def render(
    release: str = typer.Option(..., "--release", "-r", help="Release name."),
    namespace: str = typer.Option("default", "--namespace", "-n", help="Target namespace."),
    values_files: Optional[List[str]] = typer.Option(
        None, "--values", "-f", help="Values file; may be given multiple times.",
    ),
    set_args: Optional[List[str]] = typer.Option(
        None, "--set", help="Override a value: path=value. May be repeated.",
    ),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging."),
) -> None:
    """Render the chart's manifests as multi-document YAML on stdout."""
    from stackrender.config.models import ReleaseContext
    from stackrender.config.values import load_chart
    from stackrender.render.renderer import render_release

    _setup(debug)
    try:
        chart, defaults = load_chart()
        overrides = _load_overrides(values_files, set_args)
    except FileNotFoundError as exc:
        _fail(exc, EXIT_IO_FAILURE)
    except StackRenderError as exc:
        _fail(exc, EXIT_RENDER_FAILURE)

    try:
        ctx = ReleaseContext.create(release, namespace, chart=chart)
        result = render_release(ctx, defaults, overrides)
    except StackRenderError as exc:
        _fail(exc, EXIT_RENDER_FAILURE)

    typer.echo(result.to_yaml(), nl=False)
    ui.ok(f"Rendered {len(result.manifests)} resources for release '{release}'")


# ── notes command ────────────────────────────────────────────────────────────


@app.command()
def notes(
    release: str = typer.Option(..., "--release", "-r", help="Release name."),
    namespace: str = typer.Option("default", "--namespace", "-n", help="Target namespace."),
    values_files: Optional[List[str]] = typer.Option(
        None, "--values", "-f", help="Values file; may be given multiple times.",
    ),
    set_args: Optional[List[str]] = typer.Option(
        None, "--set", help="Override a value: path=value. May be repeated.",
    ),
    show_secrets: bool = typer.Option(
        False,
        "--show-secrets",
        help="Look up live secret values in the cluster and print them.",
    ),
    kube_context: Optional[str] = typer.Option(
        None, "--kube-context", help="kubeconfig context used for secret lookups.",
    ),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging."),
) -> None:
    """Print the post-install summary.

    Secrets are shown as placeholders with retrieval commands unless
    --show-secrets is given.
    """
    from stackrender.config.models import ReleaseContext
    from stackrender.config.values import load_chart
    from stackrender.render.renderer import render_release_notes
    from stackrender.render.secrets import KubernetesSecretStore

    _setup(debug)
    try:
        chart, defaults = load_chart()
        overrides = _load_overrides(values_files, set_args)
    except FileNotFoundError as exc:
        _fail(exc, EXIT_IO_FAILURE)
    except StackRenderError as exc:
        _fail(exc, EXIT_RENDER_FAILURE)

    store = None
    if show_secrets:
        ui.warn("Secret values will be printed in clear text.")
        try:
            store = KubernetesSecretStore.from_kubeconfig(context=kube_context)
        except Exception as exc:
            # Best effort: without a cluster the summary falls back to placeholders
            logging.getLogger(__name__).debug("Secret store unavailable: %s", exc)
            ui.warn(f"Cannot reach the cluster ({exc}); secrets stay hidden.")

    try:
        ctx = ReleaseContext.create(release, namespace, chart=chart)
        document = render_release_notes(
            ctx, defaults, overrides, redact=not show_secrets, store=store,
        )
    except StackRenderError as exc:
        _fail(exc, EXIT_RENDER_FAILURE)

    typer.echo(document.to_text(), nl=False)


# ── values command ───────────────────────────────────────────────────────────


@app.command("values")
def show_values(
    values_files: Optional[List[str]] = typer.Option(
        None, "--values", "-f", help="Values file; may be given multiple times.",
    ),
    set_args: Optional[List[str]] = typer.Option(
        None, "--set", help="Override a value: path=value. May be repeated.",
    ),
) -> None:
    """Print the merged value tree (chart defaults + overrides) as YAML."""
    from stackrender.config.values import ValueTree, load_chart

    try:
        _, defaults = load_chart()
        overrides = _load_overrides(values_files, set_args)
    except FileNotFoundError as exc:
        _fail(exc, EXIT_IO_FAILURE)
    except StackRenderError as exc:
        _fail(exc, EXIT_RENDER_FAILURE)

    merged = ValueTree(defaults, overrides).to_dict()
    typer.echo(yaml.safe_dump(merged, sort_keys=False, default_flow_style=False), nl=False)


# ── Entry point ──────────────────────────────────────────────────────────────


def main() -> int:
    """Run the CLI and return an exit code."""
    try:
        app()
        return 0
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else 0


if __name__ == "__main__":
    sys.exit(main())
