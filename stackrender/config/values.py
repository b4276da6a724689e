"""Value resolution: chart defaults vs. user overrides.

This module is the single source of truth for configuration lookups and
release-scoped names.  It provides:

- :func:`load_chart` — parse the bundled ``Chart.yaml`` and ``values.yaml``
- :func:`load_values_file` — parse a user ``-f`` values file
- :func:`parse_set_args` — turn ``--set a.b=c`` pairs into an override tree
- :func:`merge_values` — deep-merge two trees without mutating either
- :func:`resolve` — override → default → ``ConfigError`` lookup for one path
- :func:`coerce` — deterministic int/bool/str conversion
- :class:`ValueTree` — read-only merged view used by the composers
- :func:`derive_name` — ``<release>-<component>[-<suffix>]``
"""

from __future__ import annotations

import logging
import re
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import yaml

from stackrender.config.models import ChartMetadata, ReleaseContext
from stackrender.errors import ConfigError

logger = logging.getLogger(__name__)

#: Directory holding the bundled chart (``Chart.yaml`` + ``values.yaml``).
CHART_DIR: Path = Path(__file__).resolve().parent.parent / "chart"

PathLike = Union[str, Sequence[str]]

_MISSING = object()
_INT_TEXT = re.compile(r"-?[0-9]+")


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _read_yaml_mapping(path: Path) -> Dict[str, Any]:
    with open(path, encoding="utf-8") as fh:
        try:
            data = yaml.safe_load(fh)
        except yaml.YAMLError as exc:
            raise ConfigError(f"{path} is not valid YAML: {exc}", path=str(path)) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"{path} must contain a mapping at the top level, "
            f"got {type(data).__name__}",
        )
    return data


def load_chart(chart_dir: Optional[Path] = None) -> Tuple[ChartMetadata, Dict[str, Any]]:
    """Load chart metadata and the default value tree.

    Returns ``(metadata, defaults)``.  Raises :class:`FileNotFoundError` if
    either file is absent.
    """
    base = chart_dir if chart_dir is not None else CHART_DIR
    chart_file = base / "Chart.yaml"
    values_file = base / "values.yaml"
    for f in (chart_file, values_file):
        if not f.is_file():
            raise FileNotFoundError(f"Chart file not found: {f}")

    metadata = ChartMetadata.model_validate(_read_yaml_mapping(chart_file))
    defaults = _read_yaml_mapping(values_file)
    logger.debug("Loaded chart %s-%s from %s", metadata.name, metadata.version, base)
    return metadata, defaults


def load_values_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Parse one user values file.  An empty file is an empty override tree."""
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Values file not found: {path}")
    return _read_yaml_mapping(path)


def parse_set_args(pairs: Iterable[str]) -> Dict[str, Any]:
    """Build an override tree from Helm-style ``path=value`` pairs.

    The right-hand side is parsed as a YAML scalar, so ``5432`` becomes an
    int, ``true`` a bool and ``null`` deletes the key on merge.  Later pairs
    win over earlier ones.
    """
    tree: Dict[str, Any] = {}
    for pair in pairs:
        if "=" not in pair:
            raise ConfigError(f"--set expects path=value, got '{pair}'", path=pair)
        raw_path, raw_value = pair.split("=", 1)
        keys = _split_path(raw_path)
        try:
            value = yaml.safe_load(raw_value) if raw_value else ""
        except yaml.YAMLError as exc:
            raise ConfigError(
                f"--set value for '{raw_path}' is not valid YAML: {exc}", path=raw_path,
            ) from exc
        node = tree
        for key in keys[:-1]:
            child = node.get(key)
            if not isinstance(child, dict):
                child = {}
                node[key] = child
            node = child
        node[keys[-1]] = value
    return tree


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------


def merge_values(defaults: Mapping[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    """Deep-merge *overrides* onto *defaults* and return a new tree.

    - mapping + mapping → recursive merge
    - override ``None`` → key removed from the result
    - anything else → override replaces the default (lists included)
    """
    result: Dict[str, Any] = deepcopy(dict(defaults))
    for key, override in overrides.items():
        if override is None:
            result.pop(key, None)
            continue
        base = result.get(key)
        if isinstance(base, dict) and isinstance(override, dict):
            result[key] = merge_values(base, override)
        else:
            result[key] = deepcopy(override)
    return result


def merge_all(trees: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
    """Fold several override trees left to right (later files win)."""
    merged: Dict[str, Any] = {}
    for tree in trees:
        merged = _merge_keep_nulls(merged, tree)
    return merged


def _merge_keep_nulls(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    # Override layers keep explicit nulls so they still delete chart defaults
    result: Dict[str, Any] = deepcopy(dict(base))
    for key, value in override.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = _merge_keep_nulls(current, value)
        else:
            result[key] = deepcopy(value)
    return result


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def _split_path(path: PathLike) -> List[str]:
    keys = path.split(".") if isinstance(path, str) else [str(k) for k in path]
    if not keys or any(not k for k in keys):
        raise ConfigError(f"Invalid configuration path '{path}'", path=str(path))
    return keys


def _dotted(path: PathLike) -> str:
    return path if isinstance(path, str) else ".".join(str(k) for k in path)


def _lookup(tree: Mapping[str, Any], keys: Sequence[str]) -> Any:
    node: Any = tree
    for key in keys:
        if not isinstance(node, Mapping) or key not in node:
            return _MISSING
        node = node[key]
    return node


def _deleted_by_override(overrides: Mapping[str, Any], keys: Sequence[str]) -> bool:
    """True if an explicit ``null`` in *overrides* sits on or above *keys*."""
    node: Any = overrides
    for key in keys:
        if not isinstance(node, Mapping) or key not in node:
            return False
        node = node[key]
        if node is None:
            return True
    return False


def coerce(value: Any, as_type: type, path: str = "") -> Any:
    """Convert *value* to *as_type* (``str``, ``int`` or ``bool``).

    ``str`` renders ints as decimal text and bools as ``"true"``/``"false"``.
    Conversions that would lose information raise :class:`ConfigError`.
    """
    if as_type is str:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, str)):
            return str(value)
    elif as_type is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str) and _INT_TEXT.fullmatch(value.strip()):
            return int(value.strip())
    elif as_type is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
    else:
        raise ConfigError(
            f"Unsupported coercion target {as_type!r} for '{path}'", path=path,
        )
    raise ConfigError(
        f"Configuration value at '{path}' cannot be used as "
        f"{as_type.__name__}: {value!r}",
        path=path,
    )


def resolve(
    path: PathLike,
    defaults: Mapping[str, Any],
    overrides: Mapping[str, Any],
    required: bool = False,
    *,
    as_type: Optional[type] = None,
) -> Any:
    """Return the effective value at *path*.

    Cascade: ``overrides[path]`` → ``defaults[path]`` → ``ConfigError`` if
    *required*, else ``None``.  Subtrees are returned merged and copied.
    """
    keys = _split_path(path)
    dotted = _dotted(path)

    value: Any = _MISSING
    if not _deleted_by_override(overrides, keys):
        value = _lookup(overrides, keys)
        default = _lookup(defaults, keys)
        if isinstance(value, Mapping) and isinstance(default, Mapping):
            value = merge_values(default, value)
        elif value is _MISSING:
            value = deepcopy(default) if default is not _MISSING else _MISSING

    if value is _MISSING or value is None:
        if required:
            raise ConfigError(
                f"Required configuration value '{dotted}' is not set", path=dotted,
            )
        return None

    if as_type is not None:
        return coerce(value, as_type, dotted)
    return value


# ---------------------------------------------------------------------------
# Merged view
# ---------------------------------------------------------------------------


class ValueTree:
    """Read-only merged view over a default tree and an override tree.

    Neither input is mutated; every read returns a copy, so concurrent
    renders can share the same inputs.
    """

    def __init__(
        self,
        defaults: Mapping[str, Any],
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self._defaults = defaults
        self._overrides = overrides or {}
        self._merged = merge_values(defaults, self._overrides)

    def get(
        self,
        path: PathLike,
        *,
        required: bool = False,
        as_type: Optional[type] = None,
    ) -> Any:
        return resolve(
            path, self._defaults, self._overrides, required, as_type=as_type,
        )

    def has(self, path: PathLike) -> bool:
        """True when *path* is present and not null in the merged view."""
        return _lookup(self._merged, _split_path(path)) not in (_MISSING, None)

    def section(self, path: PathLike) -> Optional[Any]:
        """Merged subtree at *path*, or ``None`` when absent."""
        value = _lookup(self._merged, _split_path(path))
        if value is _MISSING:
            return None
        return deepcopy(value)

    def to_dict(self) -> Dict[str, Any]:
        return deepcopy(self._merged)


# ---------------------------------------------------------------------------
# Names
# ---------------------------------------------------------------------------


def derive_name(ctx: ReleaseContext, component: str, suffix: Optional[str] = None) -> str:
    """Return ``<release>-<component>[-<suffix>]``.

    Every resource name and cross-reference is built here so that a given
    (release, component, suffix) always yields the same string.
    """
    if not component:
        raise ConfigError("Component name must not be empty", path="component")
    name = f"{ctx.release_name}-{component}"
    if suffix:
        name = f"{name}-{suffix}"
    return name
