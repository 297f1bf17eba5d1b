"""Conditional skip evaluation for optional stage groups."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, TypeAlias

from agent_pipeline.domain.models import GroupResult, StageResult, coerce_flag

if TYPE_CHECKING:
    from collections.abc import Iterator

    from agent_pipeline.domain.models import StageGroup

UpstreamResult: TypeAlias = GroupResult | StageResult | Mapping[str, object]


def should_skip_group(group: StageGroup, upstream: Mapping[int, UpstreamResult]) -> bool:
    """Return ``True`` when ``group`` is conditional and nothing upstream requested it.

    Every upstream result is consulted, not only the immediate predecessor: one
    truthy flag named by any member stage's ``conditional`` field anywhere
    upstream is enough to run the group. Non-conditional groups never skip.
    """

    if not group.conditional:
        return False
    flags = group.conditional_flags
    if not flags:
        return True
    return not any(
        _flag_is_set(result, flag) for result in _iter_stage_results(upstream) for flag in flags
    )


def requested_flags(upstream: Mapping[int, UpstreamResult]) -> frozenset[str]:
    """All ``needs_<worker>`` flags that some upstream result sets to a truthy value."""

    names: set[str] = set()
    for result in _iter_stage_results(upstream):
        if isinstance(result, StageResult):
            names.update(name for name, value in result.flags.items() if value)
        else:
            names.update(
                str(name)
                for name, value in result.items()
                if str(name).startswith("needs_") and coerce_flag(value)
            )
    return frozenset(names)


def _iter_stage_results(
    upstream: Mapping[int, UpstreamResult],
) -> Iterator[StageResult | Mapping[str, object]]:
    for key in sorted(upstream):
        value = upstream[key]
        if isinstance(value, GroupResult):
            for index in sorted(value.results):
                yield value.results[index]
        elif isinstance(value, StageResult | Mapping):
            yield value
        else:
            raise TypeError(
                f"upstream result for key {key} must be a GroupResult, StageResult or mapping,"
                f" got {type(value).__name__}"
            )


def _flag_is_set(result: StageResult | Mapping[str, object], flag: str) -> bool:
    if isinstance(result, StageResult):
        return result.flag(flag)
    return coerce_flag(result.get(flag))


__all__ = ["UpstreamResult", "requested_flags", "should_skip_group"]
