"""Rule dependency graph and cycle detection.

Dependency edges (parent -> child) only exist to keep rule authoring sane:
the graph must stay acyclic, so a new edge is rejected when the child can
already reach the parent.
"""

from __future__ import annotations

from typing import Iterable

from sqlmodel import Session, select

from surveyflow.surveys.models import RuleDependency, SurveyRule


class DependencyGraph:
    """Arena-indexed directed graph over rule ids.

    Rule ids are mapped to dense integer indices; edges are kept as adjacency
    lists of indices.
    """

    def __init__(self, edges: Iterable[tuple[int, int]] = ()):
        self._index: dict[int, int] = {}
        self._ids: list[int] = []
        self._adjacency: list[list[int]] = []
        for parent, child in edges:
            self.add_edge(parent, child)

    @classmethod
    def for_survey(cls, db: Session, survey_id: int) -> "DependencyGraph":
        """Build the graph of every dependency edge between rules of a survey."""
        statement = (
            select(RuleDependency.parent_rule_id, RuleDependency.child_rule_id)
            .join(SurveyRule, SurveyRule.id == RuleDependency.parent_rule_id)
            .where(SurveyRule.survey_id == survey_id)
            .order_by(RuleDependency.id)
        )
        return cls(db.exec(statement).all())

    def _node(self, rule_id: int) -> int:
        idx = self._index.get(rule_id)
        if idx is None:
            idx = len(self._ids)
            self._index[rule_id] = idx
            self._ids.append(rule_id)
            self._adjacency.append([])
        return idx

    def add_edge(self, parent_id: int, child_id: int) -> None:
        parent = self._node(parent_id)
        child = self._node(child_id)
        if child not in self._adjacency[parent]:
            self._adjacency[parent].append(child)

    def has_edge(self, parent_id: int, child_id: int) -> bool:
        if parent_id not in self._index or child_id not in self._index:
            return False
        return self._index[child_id] in self._adjacency[self._index[parent_id]]

    def successors(self, rule_id: int) -> list[int]:
        if rule_id not in self._index:
            return []
        return [self._ids[i] for i in self._adjacency[self._index[rule_id]]]

    def reaches(self, source_id: int, target_id: int) -> bool:
        """True if a path of one or more edges leads from source to target."""
        if source_id not in self._index or target_id not in self._index:
            return False

        target = self._index[target_id]
        visited = [False] * len(self._ids)
        stack = list(self._adjacency[self._index[source_id]])

        while stack:
            node = stack.pop()
            if node == target:
                return True
            if visited[node]:
                continue
            visited[node] = True
            stack.extend(n for n in self._adjacency[node] if not visited[n])

        return False

    def would_create_cycle(self, parent_id: int, child_id: int) -> bool:
        """Would adding ``parent -> child`` close a cycle?"""
        return parent_id == child_id or self.reaches(child_id, parent_id)

    def circular_edges(self, rule_id: int) -> list[tuple[int, int]]:
        """Edges ``rule -> X`` for which a path ``X -> rule`` exists."""
        return [
            (rule_id, child)
            for child in self.successors(rule_id)
            if child == rule_id or self.reaches(child, rule_id)
        ]

    def __len__(self) -> int:
        return len(self._ids)


class DependencyValidator:
    """Checks proposed dependency edges before they are persisted."""

    def __init__(self, db: Session):
        self.db = db

    def check_new_edge(self, parent_rule_id: int, child_rule_id: int) -> list[str]:
        """Return every problem with adding ``parent -> child`` (empty = valid)."""
        errors: list[str] = []
        parent = self.db.get(SurveyRule, parent_rule_id)
        child = self.db.get(SurveyRule, child_rule_id)

        if parent is None:
            errors.append(f"Parent rule not found: {parent_rule_id}")
        if child is None:
            errors.append(f"Child rule not found: {child_rule_id}")
        if errors:
            return errors

        if parent.survey_id != child.survey_id:
            errors.append("Dependent rules must belong to the same survey")
            return errors
        if parent_rule_id == child_rule_id:
            errors.append("A rule cannot depend on itself")
            return errors

        graph = DependencyGraph.for_survey(self.db, parent.survey_id)
        if graph.has_edge(parent_rule_id, child_rule_id):
            errors.append(
                f"Dependency already exists: rule {parent_rule_id} -> rule {child_rule_id}"
            )
        elif graph.would_create_cycle(parent_rule_id, child_rule_id):
            errors.append(
                f"Dependency rule {parent_rule_id} -> rule {child_rule_id} "
                "creates a circular dependency"
            )
        return errors

    def circular_dependencies(self, rule: SurveyRule) -> list[tuple[int, int]]:
        """Existing edges that put ``rule`` on a cycle."""
        if rule.id is None:
            return []
        graph = DependencyGraph.for_survey(self.db, rule.survey_id)
        return graph.circular_edges(rule.id)
