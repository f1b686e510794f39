"""
Tracked functions: paths, re-rooting and combinators.
"""

import sys
import os
from types import SimpleNamespace

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from arc_synth.errors import FunctionEvaluationError, SolverError
from arc_synth.functions import F, push_index, with_index
from arc_synth.config import MAX_GENERATIONS


def make_tree():
    """outer[k].list[j].area == 10 * k + j"""
    return SimpleNamespace(outer=[
        SimpleNamespace(list=[SimpleNamespace(area=10 * k + j) for j in range(3)])
        for k in range(2)
    ])


# ==============================================================================
# Paths and prefixing
# ==============================================================================

def test_attribute_path():
    f = F.make('area')
    assert f.path == '@area'
    assert f(SimpleNamespace(area=4)) == 4


def test_missing_attribute_reads_none():
    assert F.make('area')(SimpleNamespace()) is None


def test_prefix():
    f = F.make('area').prefix('image')
    assert f.path == '@image.area'
    assert f(SimpleNamespace(image=SimpleNamespace(area=7))) == 7


def test_prefix_list():
    f = F.make('area').prefix_list('items', 1)
    assert f.path == '@items[1].area'
    image = SimpleNamespace(items=[SimpleNamespace(area=1), SimpleNamespace(area=2)])
    assert f(image) == 2


def test_prefix_generation_uses_index_vector():
    f = F.make('area').prefix_generation('list', 0)
    assert f.path == '@list[i0].area'
    image = SimpleNamespace(list=[SimpleNamespace(area=3), SimpleNamespace(area=5)])
    assert f(image, (1,)) == 5
    assert f(image, ()) is None, "No index for the generation reads as None"


def test_nested_prefix_generation_shifts_generations():
    f = F.make('area').prefix_generation('list', 0).prefix_generation('outer', 0)
    assert f.path == '@outer[i0].list[i1].area'
    assert f(make_tree(), (1, 2)) == 12


def test_length_and_index():
    f = F.make('list').length()
    assert f.path == '@list.length'
    assert f(SimpleNamespace(list=[1, 2, 3])) == 3
    assert F.index(1)(None, (4, 6)) == 6


def test_const_and_identity():
    assert F.const(3)(None) == 3
    assert F.const(3).path == '3'
    image = SimpleNamespace()
    assert F.identity('input')(image) is image


def test_make_with_index():
    f = F.make('data', index=2)
    assert f.name == 'data[2]'
    assert f(SimpleNamespace(data=[5, 6, 7])) == 7


def test_call():
    f = F.call('get_type')
    assert f(SimpleNamespace(get_type=lambda: 'Pixel')) == 'Pixel'


# ==============================================================================
# Combinators
# ==============================================================================

def test_arithmetic_propagates_none():
    f = F.plus(F.make('a'), 1)
    assert f.name == '(a + 1)'
    assert f(SimpleNamespace(a=2)) == 3
    assert f(SimpleNamespace()) is None


def test_mod_keeps_sign_of_dividend():
    f = F.mod(F.make('a'), 2)
    assert f(SimpleNamespace(a=-3)) == -1
    assert f(SimpleNamespace(a=5)) == 1


def test_comparisons_with_none_are_false():
    assert F.lower_than(F.make('a'), 3)(SimpleNamespace()) is False
    assert F.lower_than(F.make('a'), 3)(SimpleNamespace(a=1)) is True


def test_boolean_combinators():
    a = F.equals(F.make('a'), 1)
    b = F.equals(F.make('b'), 2)
    image = SimpleNamespace(a=1, b=3)
    assert not F.and_v([a, b])(image)
    assert F.or_v([a, b])(image)
    assert F.not_(b)(image)


def test_comparison_and_variadic_combinators():
    image = SimpleNamespace(a=2, b=3)
    assert F.bigger_than(F.make('b'), F.make('a'))(image)
    assert F.bigger_or_equal_to(F.make('a'), 2)(image)
    assert F.lower_or_equal_to(F.make('a'), 2)(image)
    assert F.not_equals(F.make('a'), F.make('b'))(image)
    assert F.plus_v([F.make('a'), F.make('b'), F.const(1)])(image) == 6
    assert F.times_v([F.make('a'), F.make('b')])(image) == 6


def test_ifthenelse():
    f = F.ifthenelse(F.equals(F.make('a'), 1), F.make('b'), -1)
    assert f(SimpleNamespace(a=1, b=9)) == 9
    assert f(SimpleNamespace(a=2, b=9)) == -1


def test_lookup_normalizes_keys():
    f = F.lookup({1: 5, 2: 6}, F.make('a'))
    assert f.name == 'mapping(a)'
    assert f(SimpleNamespace(a=1.0)) == 5
    assert f(SimpleNamespace(a=3)) is None


# ==============================================================================
# Errors
# ==============================================================================

def test_evaluation_errors_carry_path():
    f = F.make('boom', lambda image, indices: 1 / 0)
    with pytest.raises(FunctionEvaluationError) as info:
        f(SimpleNamespace(), (2,))
    assert info.value.path == '@boom'
    assert info.value.indices == (2,)
    assert isinstance(info.value.__cause__, ZeroDivisionError)


def test_index_vectors_are_bounded():
    indices = ()
    for i in range(MAX_GENERATIONS):
        indices = push_index(indices, i)
    with pytest.raises(SolverError):
        push_index(indices, 0)
    assert with_index((), 2, 5) == (0, 0, 5)
