"""
Generation planning.

Orders an object's generatable fields so every field comes after the fields
it depends on: inferred rule dependencies and controlling picklists. Cycles
never fail planning; each cyclic group of fields is emitted in declaration
order and reported as a diagnostic.
"""

import hashlib
import json
import logging
from collections.abc import Iterable

from pydantic import BaseModel, Field

from ..analysis.rule_parser import ObjectRuleAnalysis, analyze_object_rules
from ..shared.cache import LRUCache
from ..shared.metrics import metrics_collector
from ..shared.models import (
    ConstraintKind,
    Diagnostic,
    DiagnosticKind,
    FieldConstraint,
    FieldDependency,
    FieldDescriptor,
    ObjectSchema,
    ValidationRule,
)

logger = logging.getLogger(__name__)


class GenerationStep(BaseModel):
    """One generatable field with its constraints and dependency edges."""

    field: FieldDescriptor
    constraints: list[FieldConstraint] = Field(default_factory=list)
    dependencies: list[FieldDependency] = Field(default_factory=list)

    @property
    def name(self) -> str:
        return self.field.name

    @property
    def required(self) -> bool:
        return self.field.required or any(c.kind is ConstraintKind.REQUIRED for c in self.constraints)

    @property
    def unique(self) -> bool:
        return self.field.unique or any(c.kind is ConstraintKind.UNIQUE for c in self.constraints)

    def incoming(self) -> list[FieldDependency]:
        """Dependencies whose target is this field."""
        return [dep for dep in self.dependencies if dep.target_field == self.field.name]


class GenerationPlan(BaseModel):
    """Dependency-respecting field order for one object."""

    object_name: str
    steps: list[GenerationStep] = Field(default_factory=list)
    dependencies: list[FieldDependency] = Field(default_factory=list)
    diagnostics: list[Diagnostic] = Field(default_factory=list)

    @property
    def field_order(self) -> list[str]:
        return [step.name for step in self.steps]

    @property
    def has_cycles(self) -> bool:
        return any(d.kind is DiagnosticKind.DEPENDENCY_CYCLE for d in self.diagnostics)

    def step_for(self, field_name: str) -> GenerationStep | None:
        lowered = field_name.lower()
        for step in self.steps:
            if step.name.lower() == lowered:
                return step
        return None


def field_constraints(field: FieldDescriptor) -> list[FieldConstraint]:
    """Constraints implied by the field descriptor itself."""
    constraints = []
    if field.required:
        constraints.append(FieldConstraint(field=field.name, kind=ConstraintKind.REQUIRED))
    if field.unique:
        constraints.append(FieldConstraint(field=field.name, kind=ConstraintKind.UNIQUE))
    if field.max_length and field.type.is_text and not field.is_select:
        constraints.append(
            FieldConstraint(field=field.name, kind=ConstraintKind.MAX_LENGTH, max_length=field.max_length)
        )
    if field.is_select:
        constraints.append(FieldConstraint(field=field.name, kind=ConstraintKind.PICKLIST))
    return constraints


def strongly_connected_components(nodes: list[str], edges: dict[str, list[str]]) -> list[list[str]]:
    """
    Tarjan's algorithm, iterative so deep dependency chains cannot hit the
    recursion limit.

    Args:
        nodes: Node names
        edges: Adjacency lists

    Returns:
        Components in reverse topological order of the condensation
    """
    index: dict[str, int] = {}
    low: dict[str, int] = {}
    stack: list[str] = []
    on_stack: set[str] = set()
    components: list[list[str]] = []
    counter = 0

    for root in nodes:
        if root in index:
            continue

        index[root] = low[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)
        work = [(root, iter(edges.get(root, ())))]

        while work:
            node, successors = work[-1]
            descended = False
            for successor in successors:
                if successor not in index:
                    index[successor] = low[successor] = counter
                    counter += 1
                    stack.append(successor)
                    on_stack.add(successor)
                    work.append((successor, iter(edges.get(successor, ()))))
                    descended = True
                    break
                if successor in on_stack:
                    low[node] = min(low[node], index[successor])
            if descended:
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                low[parent] = min(low[parent], low[node])

            if low[node] == index[node]:
                component = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node:
                        break
                components.append(component)

    return components


class GenerationPlanner:
    """
    Builds and caches generation plans.

    Plans are keyed by a digest of the schema and rule set, so a changed
    schema or rule simply misses the cache.
    """

    def __init__(self, cache_size: int = 64):
        self._cache: LRUCache[str, GenerationPlan] = LRUCache(max_size=cache_size)

    def build_plan(
        self,
        schema: ObjectSchema,
        rules: Iterable[ValidationRule] | None = None,
        analysis: ObjectRuleAnalysis | None = None,
    ) -> GenerationPlan:
        """
        Build (or fetch) the generation plan for an object.

        Args:
            schema: Object schema
            rules: Validation rules; analyzed here unless `analysis` is given
            analysis: Precomputed rule analysis for the object

        Returns:
            GenerationPlan with one step per generatable field
        """
        if analysis is None:
            analysis = analyze_object_rules(rules, schema.name)

        key = self._cache_key(schema, analysis)
        plan, hit = self._cache.get_or_compute(key, lambda: self._plan(schema, analysis))
        if hit:
            logger.debug(f"Using cached generation plan for {schema.name}")
        return plan

    def clear(self) -> None:
        self._cache.clear()

    def sort_fields(
        self,
        fields: list[FieldDescriptor],
        dependencies: Iterable[FieldDependency],
    ) -> tuple[list[FieldDescriptor], list[Diagnostic]]:
        """
        Order fields so dependency sources come before their targets.

        Controlling picklists add an edge to their dependent field. Each
        strongly connected group larger than one field is a cycle: its
        members are emitted together in declaration order once everything
        the group depends on has been emitted.

        Returns:
            Tuple of (ordered fields, dependency_cycle diagnostics)
        """
        by_lower = {field.name.lower(): field.name for field in fields}
        position = {field.name: i for i, field in enumerate(fields)}
        names = [field.name for field in fields]

        # predecessors[target] = fields that must be generated first
        predecessors: dict[str, list[str]] = {name: [] for name in names}

        def add_edge(source: str | None, target: str | None) -> None:
            if not source or not target:
                return
            source_name = by_lower.get(source.lower())
            target_name = by_lower.get(target.lower())
            if source_name and target_name and source_name != target_name:
                if source_name not in predecessors[target_name]:
                    predecessors[target_name].append(source_name)

        for dependency in dependencies:
            add_edge(dependency.source_field, dependency.target_field)
        for field in fields:
            if field.controller_name:
                add_edge(field.controller_name, field.name)

        components = strongly_connected_components(names, predecessors)
        component_of = {member: i for i, component in enumerate(components) for member in component}
        members = [sorted(component, key=position.__getitem__) for component in components]

        component_predecessors: list[list[int]] = []
        for i, component in enumerate(members):
            preds = {component_of[p] for member in component for p in predecessors[member]} - {i}
            component_predecessors.append(sorted(preds, key=lambda c: position[members[c][0]]))

        diagnostics: list[Diagnostic] = []
        ordered: list[str] = []
        done: set[int] = set()

        for name in names:
            root = component_of[name]
            if root in done:
                continue
            in_progress = {root}
            work = [(root, iter(component_predecessors[root]))]
            while work:
                current, pending = work[-1]
                for pred in pending:
                    if pred not in done and pred not in in_progress:
                        in_progress.add(pred)
                        work.append((pred, iter(component_predecessors[pred])))
                        break
                else:
                    work.pop()
                    done.add(current)
                    ordered.extend(members[current])
                    if len(members[current]) > 1:
                        diagnostics.append(self._cycle_diagnostic(members[current]))

        field_map = {field.name: field for field in fields}
        return [field_map[name] for name in ordered], diagnostics

    def _plan(self, schema: ObjectSchema, analysis: ObjectRuleAnalysis) -> GenerationPlan:
        generatable = schema.generatable_fields()
        generatable_names = {field.name.lower() for field in generatable}

        dependencies = [
            dep.model_copy(
                update={
                    "source_field": _canonical(schema, dep.source_field),
                    "target_field": _canonical(schema, dep.target_field),
                }
            )
            for analyzed in analysis.active()
            for dep in analyzed.analysis.dependencies
            if dep.source_field.lower() in generatable_names and dep.target_field.lower() in generatable_names
        ]

        ordered, diagnostics = self.sort_fields(generatable, dependencies)

        steps = []
        for field in ordered:
            steps.append(
                GenerationStep(
                    field=field,
                    constraints=field_constraints(field) + analysis.constraints_for(field.name),
                    dependencies=[
                        dep for dep in dependencies if field.name in (dep.source_field, dep.target_field)
                    ],
                )
            )

        logger.info(
            f"Planned {len(steps)} fields for {schema.name} "
            f"({len(dependencies)} dependencies, {len(diagnostics)} cycles)"
        )
        return GenerationPlan(
            object_name=schema.name,
            steps=steps,
            dependencies=dependencies,
            diagnostics=diagnostics,
        )

    def _cycle_diagnostic(self, members: list[str]) -> Diagnostic:
        logger.warning(f"Dependency cycle between {', '.join(members)}; using declaration order")
        metrics_collector.record_dependency_cycle()
        return Diagnostic(
            kind=DiagnosticKind.DEPENDENCY_CYCLE,
            message=f"Circular dependency between fields: {', '.join(members)}",
            field=members[0],
            details={"fields": members},
        )

    @staticmethod
    def _cache_key(schema: ObjectSchema, analysis: ObjectRuleAnalysis) -> str:
        rules = [(a.rule.id, a.rule.active, a.rule.formula) for a in analysis.rules]
        payload = schema.model_dump_json() + json.dumps(rules)
        return hashlib.blake2b(payload.encode("utf-8"), digest_size=16).hexdigest()


def _canonical(schema: ObjectSchema, name: str) -> str:
    field = schema.get_field(name)
    return field.name if field else name
