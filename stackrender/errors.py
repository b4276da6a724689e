"""Error taxonomy for a single render invocation.

``ConfigError``, ``CyclicReferenceError`` and ``RenderError`` abort the
whole render.  ``SecretNotFoundError`` is recovered locally by the summary
renderer, which substitutes a placeholder.
"""

from __future__ import annotations

from typing import Iterable, Optional, Tuple


class StackRenderError(Exception):
    """Base class for every error raised by stackrender."""


class ConfigError(StackRenderError, ValueError):
    """A required configuration path is missing, or a value is unusable.

    Attributes:
        path: Dotted configuration path (or binding name) at fault.
    """

    def __init__(self, message: str, *, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class CyclicReferenceError(StackRenderError):
    """Derived environment bindings reference each other in a cycle."""

    def __init__(self, names: Iterable[str]) -> None:
        self.names: Tuple[str, ...] = tuple(names)
        super().__init__(
            "Cyclic reference between derived bindings: "
            + ", ".join(self.names)
        )


class RenderError(StackRenderError, ValueError):
    """A structural block is configured with an invalid shape."""

    def __init__(self, message: str, *, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class SecretNotFoundError(StackRenderError, LookupError):
    """A live Secret Store lookup found no secret (or no such key)."""

    def __init__(
        self, namespace: str, name: str, key: Optional[str] = None,
    ) -> None:
        self.namespace = namespace
        self.name = name
        self.key = key
        target = f"{namespace}/{name}"
        if key:
            target += f"[{key}]"
        super().__init__(f"Secret not found: {target}")
