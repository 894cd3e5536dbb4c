"""Property-based tests for evaluation, ordering, picklist bitmaps and batching."""

import pytest

_hyp = pytest.importorskip("hypothesis")
from hypothesis import given, settings
from hypothesis import strategies as st

from record_datagen.formula.evaluator import FormulaEvaluator
from record_datagen.generators.picklist_decoder import PicklistDecoder, base64_to_bits, encode_valid_for
from record_datagen.generators.planner import GenerationPlanner
from record_datagen.shared.cache import LRUCache
from record_datagen.shared.models import DependencyKind, FieldDependency, FieldDescriptor
from record_datagen.validation.pre_validator import chunked

from tests.test_utils import FIXED_NOW

FIELDS = ["Name", "Amount", "Stage", "Flag"]

field_values = st.one_of(
    st.none(),
    st.text(max_size=12),
    st.integers(min_value=-1000, max_value=1000),
    st.booleans(),
)
records = st.fixed_dictionaries({name: field_values for name in FIELDS})

atoms = st.one_of(
    st.sampled_from(FIELDS).map(lambda f: f"ISBLANK({f})"),
    st.tuples(st.sampled_from(FIELDS), st.integers(0, 20)).map(lambda t: f"LEN({t[0]}) > {t[1]}"),
    st.tuples(st.sampled_from(FIELDS), st.sampled_from(["<", "<=", ">", ">=", "=", "<>"]), st.integers(-50, 50)).map(
        lambda t: f"{t[0]} {t[1]} {t[2]}"
    ),
    st.tuples(st.sampled_from(FIELDS), st.sampled_from(["Open", "Closed", ""])).map(
        lambda t: f'{t[0]} = "{t[1]}"'
    ),
)
formulas = st.recursive(
    atoms,
    lambda inner: st.one_of(
        st.tuples(inner, st.sampled_from(["&&", "||"]), inner).map(lambda t: f"({t[0]}) {t[1]} ({t[2]})"),
        inner.map(lambda f: f"NOT({f})"),
        st.tuples(inner, inner, inner).map(lambda t: f"IF({t[0]}, {t[1]}, {t[2]})"),
    ),
    max_leaves=6,
)


class TestEvaluationProperties:
    @given(formula=formulas, record=records)
    @settings(max_examples=150, deadline=None)
    def test_evaluate_is_total_and_deterministic(self, formula: str, record: dict):
        evaluator = FormulaEvaluator(clock=lambda: FIXED_NOW)

        first = evaluator.evaluate(formula, record)

        assert isinstance(first, bool)
        assert evaluator.evaluate(formula, record) is first
        assert FormulaEvaluator(clock=lambda: FIXED_NOW).evaluate(formula, record) is first

    @given(formula=formulas, record=records, noise=st.text(max_size=8))
    @settings(max_examples=100, deadline=None)
    def test_unreferenced_fields_do_not_matter(self, formula: str, record: dict, noise: str):
        evaluator = FormulaEvaluator(clock=lambda: FIXED_NOW)
        assert evaluator.evaluate(formula, record) is evaluator.evaluate(formula, {**record, "Other__c": noise})


class TestOrderingProperties:
    @given(
        count=st.integers(min_value=1, max_value=12),
        edges=st.lists(st.tuples(st.integers(0, 11), st.integers(0, 11)), max_size=30),
    )
    @settings(max_examples=100, deadline=None)
    def test_acyclic_edges_respected(self, count: int, edges: list[tuple[int, int]]):
        fields = [FieldDescriptor(name=f"F{i}", type="string") for i in range(count)]
        # Keep only forward edges so the graph is acyclic
        dependencies = [
            FieldDependency(source_field=f"F{a}", target_field=f"F{b}", kind=DependencyKind.CONDITIONAL)
            for a, b in edges
            if a < b < count
        ]

        ordered, diagnostics = GenerationPlanner().sort_fields(fields, dependencies)
        position = {field.name: i for i, field in enumerate(ordered)}

        assert sorted(position) == sorted(f.name for f in fields)
        assert diagnostics == []
        for dependency in dependencies:
            assert position[dependency.source_field] < position[dependency.target_field]

    @given(
        count=st.integers(min_value=1, max_value=10),
        edges=st.lists(st.tuples(st.integers(0, 9), st.integers(0, 9)), max_size=25),
    )
    @settings(max_examples=100, deadline=None)
    def test_every_field_emitted_once_with_cycles(self, count: int, edges: list[tuple[int, int]]):
        fields = [FieldDescriptor(name=f"F{i}", type="string") for i in range(count)]
        dependencies = [
            FieldDependency(source_field=f"F{a}", target_field=f"F{b}", kind=DependencyKind.CONDITIONAL)
            for a, b in edges
            if a < count and b < count
        ]

        ordered, _ = GenerationPlanner().sort_fields(fields, dependencies)

        assert sorted(f.name for f in ordered) == sorted(f.name for f in fields)


class TestBitmapProperties:
    @given(
        width=st.integers(min_value=1, max_value=40),
        data=st.data(),
    )
    def test_bits_round_trip(self, width: int, data):
        positions = data.draw(st.sets(st.integers(0, width - 1)))

        bits = base64_to_bits(encode_valid_for(sorted(positions), width))

        assert len(bits) % 8 == 0
        assert {i for i, bit in enumerate(bits) if bit == "1"} == positions

    @given(
        width=st.integers(min_value=1, max_value=24),
        data=st.data(),
    )
    @settings(max_examples=100, deadline=None)
    def test_decoded_mapping_matches_encoded_sets(self, width: int, data):
        valid_for = data.draw(st.lists(st.sets(st.integers(0, width - 1)), min_size=1, max_size=6))
        controlling = FieldDescriptor(
            name="Region",
            type="picklist",
            picklistValues=[{"value": f"C{i}"} for i in range(width)],
        )
        dependent = FieldDescriptor(
            name="Territory",
            type="picklist",
            controllerName="Region",
            picklistValues=[
                {"value": f"D{j}", "validFor": encode_valid_for(sorted(indexes), width)}
                for j, indexes in enumerate(valid_for)
            ],
        )

        mapping = PicklistDecoder().decode(dependent, controlling)

        assert mapping.fallback is False
        for i in range(width):
            expected = [f"D{j}" for j, indexes in enumerate(valid_for) if i in indexes]
            assert mapping.valid_values(f"C{i}") == expected


class TestBatchingProperties:
    @given(items=st.lists(st.integers(), max_size=200), chunk_count=st.integers(min_value=1, max_value=16))
    def test_chunked_partitions_in_order(self, items: list[int], chunk_count: int):
        chunks = chunked(items, chunk_count)

        assert [item for chunk in chunks for item in chunk] == items
        assert len(chunks) <= chunk_count
        assert all(chunks)

    @given(keys=st.lists(st.integers(0, 50), max_size=100), max_size=st.integers(1, 10))
    def test_lru_never_exceeds_capacity(self, keys: list[int], max_size: int):
        cache = LRUCache(max_size=max_size)
        for key in keys:
            cache.set(key, key)
            assert len(cache) <= max_size
        if keys:
            assert keys[-1] in cache
