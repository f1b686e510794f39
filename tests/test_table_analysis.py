"""
Table analysis over sub-image collections.
"""

import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from arc_synth.core.solver import Solver
from arc_synth.core.table_analysis import (
    arrays_same_value, count_array, count_arrays, inv_rank_array, rank_array,
)
from arc_synth.grid import Grid
from arc_synth.images import SubImages, basic_image


def row(width):
    return basic_image(Grid.from_list([[1] * width]))


def collection(*widths):
    return SubImages([row(w) for w in widths], 'free')


# ==============================================================================
# Column statistics
# ==============================================================================

def test_count_array():
    assert count_array([3, 1, 3, None]) == [2, 1, 2, None]


def test_count_arrays_over_tuples():
    assert count_arrays([[1, 1, 2], [5, 6, 5]]) == [1, 1, 1]
    assert count_arrays([[1, 1, None], [5, 5, 5]]) == [2, 2, None]


def test_ranks_share_ties():
    assert rank_array([5, 1, 5, 3]) == [2, 0, 2, 1]
    assert inv_rank_array([5, 1, 5, 3]) == [0, 2, 0, 1]
    assert rank_array([None, 2]) == [None, 0]


def test_arrays_same_value():
    assert arrays_same_value([[1, None], [1]])
    assert arrays_same_value([[], [None]])
    assert not arrays_same_value([[1], [2]])


# ==============================================================================
# Function search
# ==============================================================================

def test_largest_element_is_found_through_inverse_rank():
    inputs = [collection(1, 4, 2), collection(3, 1), collection(2, 6, 1)]
    solver = Solver.make(inputs, inputs)
    assert solver.sub_images_table_analysis, "One table per sub-image collection"
    table = solver.sub_images_table_analysis[0]

    f = next(table.enum_functions('number', [4, 3, 6]))
    assert [sample.input(f) for sample in solver.samples()] == [4, 3, 6]
    assert 'inv_rank_array' in f.path


def test_columns_with_a_single_value_are_dropped():
    inputs = [collection(1, 2), collection(3, 4)]
    solver = Solver.make(inputs, inputs)
    table = solver.sub_images_table_analysis[0]
    for desc, samples_values in zip(table.columns_desc, table.columns_samples):
        assert not arrays_same_value(samples_values), desc


def test_unreachable_values_yield_nothing():
    inputs = [collection(1, 2), collection(3, 4)]
    solver = Solver.make(inputs, inputs)
    table = solver.sub_images_table_analysis[0]
    assert list(table.enum_functions('number', [7, 8])) == []
