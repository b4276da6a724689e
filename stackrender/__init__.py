"""stackrender - configuration resolution and manifest rendering for mcp-stack.

Merges chart defaults with user overrides, links container environment
bindings in substitution-safe order, composes Kubernetes manifests, and
renders the post-install summary with explicit secret redaction.
"""

try:
    from importlib.metadata import version

    __version__ = version("stackrender")
except Exception:
    __version__ = "0.0.0.dev0"

__all__ = ["__version__"]
