"""Configuration — layer merging, run defaults and input loading."""

from stackplane.core.config.defaults import PlannerDefaults, load_defaults
from stackplane.core.config.merge import merge, merge_pair

__all__ = [
    "PlannerDefaults",
    "load_defaults",
    "merge",
    "merge_pair",
]
