"""
Cross-entity propagation queries.

References between registries are plain id strings: assumption loads name
hypotheses and tests, assumptions name the assumptions they depend on,
anomalies name what they conflict with, critiques name their target.
Nothing here checks that a referenced id exists, and nothing here mutates
an entity. The caller decides what to do with an impact report.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Iterable

from .anomaly import Anomaly
from .assumption import Assumption
from .critique import Critique

logger = logging.getLogger(__name__)


def _ordered_unique(values: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(values))


def find_dependent_assumptions(
    assumption_id: str,
    assumptions: Iterable[Assumption],
) -> tuple[str, ...]:
    """
    Ids of every assumption that transitively depends on assumption_id.

    Breadth-first over depends_on edges; cycles are visited once and the
    starting id is never reported as its own dependent.
    """
    dependents_of: dict[str, list[str]] = {}
    for assumption in assumptions:
        for parent in assumption.depends_on:
            dependents_of.setdefault(parent, []).append(assumption.id)

    found: list[str] = []
    visited = {assumption_id}
    queue = deque([assumption_id])
    while queue:
        current = queue.popleft()
        for child in dependents_of.get(current, ()):
            if child not in visited:
                visited.add(child)
                found.append(child)
                queue.append(child)
    return tuple(found)


def anomalies_conflicting_with(entity_id: str, anomalies: Iterable[Anomaly]) -> tuple[Anomaly, ...]:
    """Anomalies whose conflict set names the given hypothesis or assumption id."""
    return tuple(
        a for a in anomalies
        if entity_id in a.conflicts_with.hypotheses or entity_id in a.conflicts_with.assumptions
    )


def critiques_targeting(entity_id: str, critiques: Iterable[Critique]) -> tuple[Critique, ...]:
    return tuple(c for c in critiques if c.target_id == entity_id)


@dataclass(frozen=True)
class FalsificationImpact:
    """Everything that leans on a falsified assumption, directly or not."""
    assumption_id: str
    dependent_assumptions: tuple[str, ...] = ()
    hypotheses: tuple[str, ...] = ()
    tests: tuple[str, ...] = ()
    anomalies: tuple[str, ...] = ()
    critiques: tuple[str, ...] = ()

    @property
    def total_affected(self) -> int:
        return (
            len(self.dependent_assumptions)
            + len(self.hypotheses)
            + len(self.tests)
            + len(self.anomalies)
            + len(self.critiques)
        )


def compute_falsification_impact(
    assumption: Assumption,
    assumptions: Iterable[Assumption],
    anomalies: Iterable[Anomaly] = (),
    critiques: Iterable[Critique] = (),
) -> FalsificationImpact:
    """
    Blast radius of falsifying an assumption.

    The union of the loads of the assumption and of every assumption that
    transitively depends on it, plus the anomalies and critiques that
    reference any of those assumptions.
    """
    pool = list(assumptions)
    by_id = {a.id: a for a in pool}
    by_id[assumption.id] = assumption

    dependents = find_dependent_assumptions(assumption.id, pool)
    chain = [assumption] + [by_id[i] for i in dependents if i in by_id]
    chain_ids = {a.id for a in chain}

    hypotheses = _ordered_unique(h for a in chain for h in a.load.affected_hypotheses)
    tests = _ordered_unique(t for a in chain for t in a.load.affected_tests)
    anomaly_ids = _ordered_unique(
        x.id for x in anomalies
        if chain_ids.intersection(x.conflicts_with.assumptions)
    )
    critique_ids = _ordered_unique(c.id for c in critiques if c.target_id in chain_ids)

    impact = FalsificationImpact(
        assumption_id=assumption.id,
        dependent_assumptions=dependents,
        hypotheses=hypotheses,
        tests=tests,
        anomalies=anomaly_ids,
        critiques=critique_ids,
    )
    logger.debug("Falsifying %s affects %d items", assumption.id, impact.total_affected)
    return impact
