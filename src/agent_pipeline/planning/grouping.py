"""
agent-pipeline — stage grouping engine

File: src/agent_pipeline/planning/grouping.py

Purpose
- Partition a flat, ordered stage list into named stage groups and chain them into
  a ``DependencyGraph``.

Normative behavior
- Group membership comes from a statically declared rule table (``GroupRule``).
  The table is validated when a ``GroupingPolicy`` is built; a stage list is
  validated before any group is formed, so an unmatched or ambiguous stage
  fails fast instead of quietly forming a singleton group.
- Consecutive stages matching the same rule share a group. A rule matching again
  after its group has closed is rejected.
- Each group depends on exactly the group discovered before it (single
  predecessor chain). Execution order is discovery order, and the builder
  asserts every dependency was discovered earlier.
- An empty stage list yields an empty graph.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from agent_pipeline.domain.errors import GraphOrderError, GroupingError, UnmatchedStageError
from agent_pipeline.domain.models import DependencyGraph, StageGroup

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from agent_pipeline.domain.models import WorkflowStage

RESEARCH_GROUP: Final[str] = "Research"
CRITIQUE_GROUP: Final[str] = "Critique"
IMPLEMENTATION_GROUP: Final[str] = "Implementation"
QUALITY_ASSURANCE_GROUP: Final[str] = "Quality Assurance"
CONDITIONAL_TESTING_GROUP: Final[str] = "Conditional Testing"
STATISTICS_GROUP: Final[str] = "Statistics"
DEVOPS_GROUP: Final[str] = "DevOps"
DOCUMENTATION_GROUP: Final[str] = "Documentation"


@dataclass(frozen=True, slots=True)
class GroupRule:
    """Declarative definition of one group: its name and member predicate."""

    name: str
    stage_names: frozenset[str] = frozenset()
    agents: frozenset[str] = frozenset()
    match_conditional: bool = False
    conditional: bool = False
    verify_builds: bool = False
    block_on_test_failure: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValueError("GroupRule.name must be a non-empty string")
        object.__setattr__(self, "stage_names", frozenset(self.stage_names))
        object.__setattr__(self, "agents", frozenset(self.agents))
        if not self.stage_names and not self.agents and not self.match_conditional:
            raise ValueError(f"GroupRule {self.name!r} has an empty predicate")

    def matches(self, stage: WorkflowStage) -> bool:
        if stage.name in self.stage_names or stage.agent in self.agents:
            return True
        return self.match_conditional and stage.conditional is not None


DEFAULT_GROUP_RULES: Final[tuple[GroupRule, ...]] = (
    GroupRule(RESEARCH_GROUP, stage_names=frozenset({"Research"})),
    GroupRule(CRITIQUE_GROUP, stage_names=frozenset({"Critique"})),
    GroupRule(
        IMPLEMENTATION_GROUP,
        stage_names=frozenset({"Backend Implementation", "Frontend Implementation"}),
        verify_builds=True,
    ),
    GroupRule(
        QUALITY_ASSURANCE_GROUP,
        stage_names=frozenset({"Backend QA", "Frontend QA"}),
        block_on_test_failure=True,
    ),
    GroupRule(CONDITIONAL_TESTING_GROUP, match_conditional=True, conditional=True),
    GroupRule(STATISTICS_GROUP, stage_names=frozenset({"Statistics"})),
    GroupRule(DEVOPS_GROUP, stage_names=frozenset({"DevOps Deployment"})),
    GroupRule(DOCUMENTATION_GROUP, stage_names=frozenset({"Documentation Update"})),
)


def _validate_rules(rules: Sequence[GroupRule]) -> None:
    if not rules:
        raise GroupingError("grouping policy needs at least one rule")
    names: set[str] = set()
    claimed_stage_names: dict[str, str] = {}
    claimed_agents: dict[str, str] = {}
    conditional_rules: list[str] = []
    for rule in rules:
        if not isinstance(rule, GroupRule):
            raise GroupingError(f"expected GroupRule, got {type(rule).__name__}")
        if rule.name in names:
            raise GroupingError(f"duplicate group rule name {rule.name!r}")
        names.add(rule.name)
        for stage_name in rule.stage_names:
            owner = claimed_stage_names.setdefault(stage_name, rule.name)
            if owner != rule.name:
                raise GroupingError(
                    f"stage name {stage_name!r} is claimed by both {owner!r} and {rule.name!r}"
                )
        for agent in rule.agents:
            owner = claimed_agents.setdefault(agent, rule.name)
            if owner != rule.name:
                raise GroupingError(
                    f"agent {agent!r} is claimed by both {owner!r} and {rule.name!r}"
                )
        if rule.match_conditional:
            conditional_rules.append(rule.name)
    if len(conditional_rules) > 1:
        raise GroupingError(f"only one rule may match conditional stages, got {conditional_rules}")


class GroupingPolicy:
    """Validated rule table that turns stage lists into dependency graphs."""

    __slots__ = ("_rules",)

    def __init__(self, rules: Iterable[GroupRule] = DEFAULT_GROUP_RULES) -> None:
        self._rules: tuple[GroupRule, ...] = tuple(rules)
        _validate_rules(self._rules)

    @property
    def rules(self) -> tuple[GroupRule, ...]:
        return self._rules

    def rule_for(self, stage: WorkflowStage) -> GroupRule:
        """Return the single rule matching ``stage``."""

        matched = [rule for rule in self._rules if rule.matches(stage)]
        if not matched:
            raise UnmatchedStageError([stage.name])
        if len(matched) > 1:
            names = ", ".join(repr(rule.name) for rule in matched)
            raise GroupingError(f"stage {stage.name!r} matches more than one group: {names}")
        return matched[0]

    def validate(self, stages: Sequence[WorkflowStage]) -> None:
        """Reject the stage list if any stage matches no rule."""

        unmatched = [
            stage.name for stage in stages if not any(rule.matches(stage) for rule in self._rules)
        ]
        if unmatched:
            raise UnmatchedStageError(unmatched)

    def build(self, stages: Sequence[WorkflowStage]) -> DependencyGraph:
        """Scan ``stages`` once and return the chained group graph."""

        stages = tuple(stages)
        self.validate(stages)

        runs: list[tuple[GroupRule, list[int]]] = []
        closed: set[str] = set()
        for index, stage in enumerate(stages):
            rule = self.rule_for(stage)
            if runs and runs[-1][0] is rule:
                runs[-1][1].append(index)
                continue
            if rule.name in closed:
                raise GroupingError(
                    f"stage {stage.name!r} at position {index} belongs to group"
                    f" {rule.name!r}, which already closed"
                )
            if runs:
                closed.add(runs[-1][0].name)
            runs.append((rule, [index]))

        groups: list[StageGroup] = []
        for group_id, (rule, indices) in enumerate(runs):
            depends_on = frozenset({groups[-1].id}) if groups else frozenset()
            groups.append(
                StageGroup(
                    id=group_id,
                    name=rule.name,
                    stages=tuple(stages[index] for index in indices),
                    stage_indices=tuple(indices),
                    depends_on=depends_on,
                    conditional=rule.conditional,
                    verify_builds=rule.verify_builds,
                    block_on_test_failure=rule.block_on_test_failure,
                )
            )

        execution_order = tuple(group.id for group in groups)
        assert_discovery_order(groups, execution_order)
        return DependencyGraph(groups=tuple(groups), execution_order=execution_order)


DEFAULT_GROUPING_POLICY: Final[GroupingPolicy] = GroupingPolicy()


def build_dependency_graph(
    stages: Sequence[WorkflowStage],
    *,
    policy: GroupingPolicy = DEFAULT_GROUPING_POLICY,
) -> DependencyGraph:
    """Group ``stages`` with ``policy`` (the default rule table unless given)."""

    return policy.build(stages)


def assert_discovery_order(groups: Sequence[StageGroup], execution_order: Sequence[int]) -> None:
    """Raise ``GraphOrderError`` unless every dependency precedes its dependent."""

    by_id = {group.id: group for group in groups}
    seen: set[int] = set()
    for group_id in execution_order:
        group = by_id[group_id]
        missing = sorted(dep for dep in group.depends_on if dep not in seen)
        if missing:
            raise GraphOrderError(group_id, missing)
        seen.add(group_id)


__all__ = [
    "CONDITIONAL_TESTING_GROUP",
    "CRITIQUE_GROUP",
    "DEFAULT_GROUPING_POLICY",
    "DEFAULT_GROUP_RULES",
    "DEVOPS_GROUP",
    "DOCUMENTATION_GROUP",
    "GroupRule",
    "GroupingPolicy",
    "IMPLEMENTATION_GROUP",
    "QUALITY_ASSURANCE_GROUP",
    "RESEARCH_GROUP",
    "STATISTICS_GROUP",
    "assert_discovery_order",
    "build_dependency_graph",
]
