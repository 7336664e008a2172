from __future__ import annotations

import random

import pytest

from strategy_search.errors import ConfigurationError
from strategy_search.optimization.genome import (
    DEFAULT_PARAMETER_SPECS,
    WEIGHT_PARAMS,
    Genome,
    ParameterSpace,
    ParameterSpec,
    crossover,
    mutate,
    population_diversity,
    random_genome,
    tournament_select,
)


@pytest.fixture
def space() -> ParameterSpace:
    return ParameterSpace()


def _assert_valid(space: ParameterSpace, genes) -> None:
    for spec, value in zip(space.specs, genes):
        assert spec.min - 1e-9 <= value <= spec.max + 1e-9, spec.name
        assert spec.on_grid(value), (spec.name, value)
    assert abs(space.weight_sum(genes) - 1.0) <= 1e-6
    assert space.is_valid(genes)


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(name="x", min=2.0, max=1.0, step=0.1),
        dict(name="x", min=0.0, max=1.0, step=0.0),
        dict(name="x", min=0.0, max=1.0, step=-0.5),
        dict(name="x", min=0.5, max=3.0, step=1.0, integer=True),
        dict(name="", min=0.0, max=1.0, step=0.1),
    ],
)
def test_parameter_spec_rejects_malformed_ranges(kwargs) -> None:
    with pytest.raises(ConfigurationError):
        ParameterSpec(**kwargs)


def test_quantize_clamps_and_snaps() -> None:
    spec = ParameterSpec("breadth_weight", 0.02, 0.15, 0.02)
    assert spec.steps == 6
    assert spec.quantize(1.0) == pytest.approx(0.14)  # top of the grid, not the raw max
    assert spec.quantize(-3.0) == pytest.approx(0.02)
    assert spec.quantize(0.071) == pytest.approx(0.08)
    ints = ParameterSpec("sma_medium", 20, 50, 5, integer=True)
    assert ints.quantize(33) == 35.0


def test_space_rejects_infeasible_weight_ranges() -> None:
    specs = [ParameterSpec(name, 0.5, 0.9, 0.1) for name in WEIGHT_PARAMS]
    with pytest.raises(ConfigurationError):
        ParameterSpace(specs)


def test_default_table_and_lookup(space: ParameterSpace) -> None:
    assert len(space) == len(DEFAULT_PARAMETER_SPECS) == 28
    assert space.names[space.index("rsi_period")] == "rsi_period"
    assert "max_portfolio_exposure" not in space.names


def test_random_genomes_respect_grid_and_weight_sum(space: ParameterSpace) -> None:
    rng = random.Random(42)
    for _ in range(200):
        _assert_valid(space, space.random_genes(rng))


def test_normalize_weights_handles_zero_and_oversized_weights(space: ParameterSpace) -> None:
    genes = list(space.from_mapping({}))
    for i in space.weight_indices:
        genes[i] = 0.0
    _assert_valid(space, space.normalize_weights(genes))
    for i in space.weight_indices:
        genes[i] = 5.0
    _assert_valid(space, space.normalize_weights(genes))


def test_from_mapping_uses_midpoint_for_missing(space: ParameterSpace) -> None:
    genes = space.from_mapping({"rsi_period": 9})
    values = space.to_dict(genes)
    assert values["rsi_period"] == 9.0
    spec = space.spec("atr_period")
    assert values["atr_period"] == spec.value_at(spec.steps // 2)
    _assert_valid(space, genes)


def test_blend_crossover_between_min_and_max_parents(space: ParameterSpace) -> None:
    spec = space.spec("max_position_pct")
    low = Genome(id="lo", genes=space.from_mapping({"max_position_pct": spec.min}))
    high = Genome(id="hi", genes=space.from_mapping({"max_position_pct": spec.max}))
    rng = random.Random(7)
    i = space.index("max_position_pct")
    for _ in range(50):
        child = crossover(low, high, space, 1, 0, rng, take_probability=0.0)
        value = child.genes[i]
        assert spec.min <= value <= spec.max
        assert spec.on_grid(value)
        _assert_valid(space, child.genes)
        assert child.parent_ids == ("lo", "hi")


def test_mutate_zero_rate_keeps_genes(space: ParameterSpace) -> None:
    rng = random.Random(1)
    parent = random_genome(space, 0, 0, rng)
    child = mutate(parent, space, 0.0, 1, 0, rng)
    assert child.genes == parent.genes
    assert child.mutations == ()
    assert child.parent_ids == (parent.id,)
    assert child.id != parent.id


def test_mutate_full_rate_stays_valid(space: ParameterSpace) -> None:
    rng = random.Random(2)
    parent = random_genome(space, 0, 0, rng)
    for _ in range(50):
        child = mutate(parent, space, 1.0, 1, 0, rng)
        _assert_valid(space, child.genes)
        assert not child.evaluated


def test_guided_mutation_uses_suggestion(space: ParameterSpace) -> None:
    rng = random.Random(3)
    parent = Genome(id="p", genes=space.from_mapping({"rsi_period": 10}))
    child = mutate(parent, space, 1.0, 1, 0, rng, suggestions={"rsi_period": 25}, guided_probability=1.0)
    assert space.to_dict(child.genes)["rsi_period"] == 21.0
    assert "rsi_period:guided" in child.mutations


def test_tournament_prefers_fitter(space: ParameterSpace) -> None:
    rng = random.Random(4)
    pop = [Genome(id=str(i), genes=space.random_genes(rng), fitness=float(i)) for i in range(5)]
    assert tournament_select(pop, 200, rng).id == "4"
    with pytest.raises(ValueError):
        tournament_select([], 3, rng)


def test_diversity_of_identical_population(space: ParameterSpace) -> None:
    genes = space.from_mapping({})
    pop = [Genome(id=str(i), genes=genes) for i in range(50)]
    assert population_diversity(pop) == pytest.approx(1 / 50)
    rng = random.Random(5)
    mixed = pop[:25] + [random_genome(space, 0, 0, rng) for _ in range(25)]
    assert population_diversity(mixed) > 0.5
    assert population_diversity([]) == 0.0
