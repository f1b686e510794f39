"""
Solver: sample bookkeeping, boolean predicates and function search.
"""

import sys
import os

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from arc_synth.config import SolverOptions
from arc_synth.core.cancellation import CancellationToken
from arc_synth.core.solver import Solver
from arc_synth.errors import SolverTimeout
from arc_synth.functions import F
from arc_synth.grid import Grid
from arc_synth.images import Pixel, SubImages, basic_image
from arc_synth.types import Color
from arc_synth.utils import booleans_to_bitfield


def row(width, color=1):
    return basic_image(Grid.from_list([[color] * width]))


def images(grids):
    return [basic_image(Grid.from_list(g)) for g in grids]


# ==============================================================================
# Samples and boolean predicates
# ==============================================================================

def test_samples_mask_matches_count():
    inputs = [row(1), row(2), row(3)]
    solver = Solver.make(inputs, inputs)
    assert solver.samples_count == 3
    assert solver.samples_mask == 0b111
    assert len(list(solver.samples())) == 3
    assert [s.input_image for s in solver.samples(0b101)] == [inputs[0], inputs[2]]


def test_boolean_functions_are_informative():
    """
    Test: every kept predicate reproduces its bitfield.

    Verify:
    - Bitfields are neither empty, full nor single-sample
    - Evaluating the predicate on each sample gives back the bitfield
    """
    inputs = [row(1), row(2), row(3), row(4)]
    solver = Solver.make(inputs, inputs)
    assert solver.boolean_functions, "Widths 1..4 give some predicates"
    for bitfield, f in solver.boolean_functions.items():
        assert bitfield != 0 and bitfield != solver.samples_mask
        assert bitfield & (bitfield - 1) != 0, "Single-sample predicates are dropped"
        assert bitfield & ~solver.samples_mask == 0
        values = [bool(sample.input(f)) for sample in solver.samples()]
        assert booleans_to_bitfield(values) == bitfield, f.path


def test_boolean_conjunction_is_bitwise_and():
    inputs = [row(1), row(2), row(3), row(4)]
    solver = Solver.make(inputs, inputs)
    items = list(solver.boolean_functions.items())
    (b1, f1), (b2, f2) = items[0], items[1]
    conjunction = F.and_(f1, f2)
    values = [bool(sample.input(conjunction)) for sample in solver.samples()]
    assert booleans_to_bitfield(values) == b1 & b2


def test_enum_boolean_functions_separate_samples():
    inputs = [row(1), row(2), row(3), row(4)]
    solver = Solver.make(inputs, inputs)
    positives, negatives = 0b0101, 0b1010
    found = 0
    for f in solver.enum_boolean_functions(positives, negatives):
        values = [bool(sample.input(f)) for sample in solver.samples()]
        assert values == [True, False, True, False], f.path
        found += 1
        if found == 3:
            break
    assert found > 0


# ==============================================================================
# Function search
# ==============================================================================

def test_identity_grid_function():
    inputs = images([[[1, 2]], [[3, 4, 5]]])
    solver = Solver.make(inputs, images([[[1, 2]], [[3, 4, 5]]]))
    f = solver.build_grid_function(F.make('grid'))
    assert f.path == '@grid'


def test_constant_number_function():
    inputs = [row(1), row(2)]
    solver = Solver.make(inputs, [row(3), row(3)])
    f = solver.select_number_function(F.make('width'))
    assert f is not None
    assert [f(image) for image in inputs] == [3, 3]


def test_delta_number_function():
    inputs = [row(1), row(2), row(3)]
    solver = Solver.make(inputs, [row(2), row(3), row(4)])
    f = solver.select_number_function(F.make('width'))
    assert f is not None
    assert [f(image) for image in inputs] == [2, 3, 4]


def test_transformed_grid_function():
    grids = [[[1, 2], [0, 0]], [[3, 0, 4]]]
    flipped = [[[2, 1], [0, 0]], [[4, 0, 3]]]
    inputs = images(grids)
    solver = Solver.make(inputs, images(flipped))
    f = solver.select_grid_function(F.make('grid'))
    assert f is not None
    assert [f(image).to_list() for image in inputs] == flipped


def test_constant_color_function():
    inputs = [Pixel(Color.blue), Pixel(Color.green)]
    solver = Solver.make(inputs, [Pixel(Color.red), Pixel(Color.red)])
    f = solver.select_color_function(F.make('color'))
    assert f is not None
    assert [f(image) for image in inputs] == [Color.red, Color.red]


def test_search_is_deterministic():
    def search():
        inputs = [row(1), row(2), row(3)]
        solver = Solver.make(inputs, [row(2), row(3), row(4)])
        return solver.select_number_function(F.make('width')).path

    assert search() == search()


def test_failed_search_is_remembered():
    inputs = [row(1), row(2)]
    solver = Solver.make(inputs, [row(7), row(5)], SolverOptions(no_decision_tree=True, no_mapping=True))
    assert solver.select_number_function(F.make('width')) is None
    assert solver.select_number_function(F.make('width')) is None


# ==============================================================================
# Sub-solvers
# ==============================================================================

def test_sub_solver_has_one_sample_per_sub_image():
    inputs = [
        SubImages([row(1), row(2), row(3)], 'free'),
        SubImages([row(4), row(5)], 'free'),
    ]
    solver = Solver.make(inputs, inputs)
    sub_functions = next(solver.sub_functions())
    mapping = solver.make_sub_solver(sub_functions)
    sub_solver = mapping.sub_solver
    assert sub_solver.samples_count == 5
    assert sub_solver.samples_mask == 0b11111
    assert sub_solver.group_counts() == [3, 2]


def test_sibling_shares_samples_and_duals():
    inputs = [row(1), row(2), row(3)]
    solver = Solver.make(inputs, inputs)
    sibling = Solver(solver.options)
    sibling.sibling_init(solver)
    assert sibling.samples_count == solver.samples_count
    assert sibling.grid_table is solver.grid_table
    assert list(sibling.boolean_functions) == list(solver.boolean_functions)


# ==============================================================================
# Cancellation
# ==============================================================================

def test_cancelled_token_stops_the_tree():
    token = CancellationToken()
    child = token.child()
    child.check()
    token.cancel()
    with pytest.raises(SolverTimeout):
        child.check()


def test_fuel_runs_out():
    token = CancellationToken(fuel=1)
    token.check()
    with pytest.raises(SolverTimeout):
        token.check()
