# s3ship/services/target_resolver.py
"""
Target resolution: pick the targets a trigger applies to and order them by
their dependsOn edges.

Ordering uses Kahn's algorithm with level tracking. Every target in a level
has all of its dependencies in earlier levels, so a level may be uploaded
concurrently while levels run one after another. Ties inside a level keep
configuration (declaration) order.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Sequence

from s3ship.errors import CycleDetected, NoTargetsMatched
from s3ship.models.target import Target, TriggerContext

logger = logging.getLogger(__name__)


def build_levels(targets: Sequence[Target], graph: Mapping[str, Sequence[str]]) -> List[List[Target]]:
    """
    Topologically group targets into dependency levels.

    graph maps target name -> names it depends on; every name must be in
    targets. Raises CycleDetected if some targets can never become ready.
    """
    position = {t.name: i for i, t in enumerate(targets)}
    by_name = {t.name: t for t in targets}
    in_degree: Dict[str, int] = {t.name: 0 for t in targets}
    dependents: Dict[str, List[str]] = {t.name: [] for t in targets}

    for name, deps in graph.items():
        for dep in deps:
            dependents[dep].append(name)
            in_degree[name] += 1

    levels: List[List[Target]] = []
    ready = [t.name for t in targets if in_degree[t.name] == 0]
    processed = 0
    while ready:
        ready.sort(key=position.__getitem__)
        levels.append([by_name[n] for n in ready])
        next_ready: List[str] = []
        for name in ready:
            processed += 1
            for dependent in dependents[name]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    next_ready.append(dependent)
        ready = next_ready

    if processed != len(targets):
        raise CycleDetected(n for n, d in in_degree.items() if d > 0)
    return levels


class TargetResolver:
    def __init__(self, targets: Sequence[Target]):
        self.targets = list(targets)

    def validate(self) -> List[List[Target]]:
        """Check the full configured graph for cycles before anything runs."""
        return build_levels(self.targets, {t.name: sorted(t.depends_on) for t in self.targets})

    def select(self, trigger: TriggerContext) -> List[Target]:
        if trigger.environment_override:
            return [t for t in self.targets if t.matches_environment(trigger.environment_override)]
        return [t for t in self.targets if t.matches_branch(trigger.branch)]

    def resolve_levels(self, trigger: TriggerContext) -> List[List[Target]]:
        selected = self.select(trigger)
        if not selected:
            raise NoTargetsMatched(trigger.branch, trigger.environment_override)

        names = {t.name for t in selected}
        graph: Dict[str, List[str]] = {}
        for t in selected:
            deps = [d for d in sorted(t.depends_on) if d in names]
            dropped = sorted(set(t.depends_on) - names)
            if dropped:
                logger.warning(
                    "Target '%s' depends on %s which this trigger does not select; ignoring",
                    t.name, dropped,
                )
            graph[t.name] = deps

        levels = build_levels(selected, graph)
        logger.info(
            "Resolved %d targets in %d levels for branch '%s': %s",
            len(selected), len(levels), trigger.branch,
            [[t.name for t in level] for level in levels],
        )
        return levels

    def resolve(self, trigger: TriggerContext) -> List[Target]:
        return [t for level in self.resolve_levels(trigger) for t in level]
