"""Planning: grouping a flat stage list and deciding which groups run."""

from __future__ import annotations

from agent_pipeline.planning.conditions import requested_flags, should_skip_group
from agent_pipeline.planning.grouping import (
    DEFAULT_GROUP_RULES,
    DEFAULT_GROUPING_POLICY,
    GroupingPolicy,
    GroupRule,
    build_dependency_graph,
)

__all__ = [
    "DEFAULT_GROUPING_POLICY",
    "DEFAULT_GROUP_RULES",
    "GroupRule",
    "GroupingPolicy",
    "build_dependency_graph",
    "requested_flags",
    "should_skip_group",
]
