"""Configuration loading, merging, and release-scoped naming."""

from stackrender.config.models import (
    ChartMetadata,
    ImageSpec,
    IngressSpec,
    ProbeSpec,
    ProbeType,
    ReleaseContext,
    parse_block,
)
from stackrender.config.values import (
    CHART_DIR,
    ValueTree,
    coerce,
    derive_name,
    load_chart,
    load_values_file,
    merge_all,
    merge_values,
    parse_set_args,
    resolve,
)

__all__ = [
    "CHART_DIR",
    "ChartMetadata",
    "ImageSpec",
    "IngressSpec",
    "ProbeSpec",
    "ProbeType",
    "ReleaseContext",
    "ValueTree",
    "coerce",
    "derive_name",
    "load_chart",
    "load_values_file",
    "merge_all",
    "merge_values",
    "parse_block",
    "parse_set_args",
    "resolve",
]
