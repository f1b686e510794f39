"""
Decomposer trees: serialization, keys, tree helpers and compilation.
"""

import sys
import os
import json

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from arc_synth.compiler import build_decomposer
from arc_synth.decomposers import (
    Decomposer, alternatives, background, basic_grid, color_decomposition, decomposer_clone,
    decomposer_prefix, decomposer_root, decomposer_suffix, decomposer_to_key, decomposer_to_list,
    find_master_grid, horizontal_decomposition, image_window, master_grid, monochrome, normalize_decomposer,
    object_list, remove_failed_alternatives, semantic_box, solid_color, transform, trim_object,
)
from arc_synth.errors import DecompositionError
from arc_synth.grid import Grid
from arc_synth.images import Alternatives, SubImages
from arc_synth.types import Transform


def grid(rows):
    return Grid.from_list(rows)


# ==============================================================================
# Serialization and keys
# ==============================================================================

def test_json_round_trip():
    trees = [
        image_window(object_list(trim_object(basic_grid()))),
        find_master_grid(basic_grid(), 5, True),
        background(10, monochrome(basic_grid())),
        alternatives([basic_grid(), solid_color()]),
    ]
    text = Decomposer.to_json(trees)
    assert Decomposer.to_json(Decomposer.from_json(text)) == text


def test_unset_fields_are_omitted():
    data = json.loads(Decomposer.to_json([image_window(basic_grid())]))
    assert data == [{'name': 'image_window', 'decomposer': {'name': 'basic_grid'}}]


def test_keys():
    assert decomposer_to_key(image_window(object_list(basic_grid()))) == 'image_window(object_list(basic_grid()))'
    assert decomposer_to_key(master_grid(2, 3, basic_grid())) == 'master_grid(basic_grid(),2,3)'
    assert decomposer_to_key(horizontal_decomposition(basic_grid())) == 'horizontal_decomposition(basic_grid())'
    assert decomposer_to_key(alternatives([basic_grid()])) == 'alternatives([basic_grid()])'
    assert decomposer_to_key(None) == 'none'


def test_tree_helpers():
    d = image_window(object_list(trim_object(basic_grid())))
    assert decomposer_to_key(decomposer_root(d)) == 'object_list()'
    assert decomposer_to_key(decomposer_prefix(d)) == 'image_window()'
    assert decomposer_to_key(decomposer_suffix(d)) == 'trim_object(basic_grid())'
    assert decomposer_to_list(d) == ['image_window', 'object_list', 'trim_object', 'basic_grid']
    assert decomposer_root(image_window(basic_grid())) is None


# ==============================================================================
# Compilation
# ==============================================================================

@pytest.mark.parametrize("decomposer", [
    image_window(object_list(basic_grid())),
    image_window(trim_object(basic_grid())),
    image_window(color_decomposition(basic_grid())),
    image_window(master_grid(2, 1, basic_grid())),
    image_window(background(None, basic_grid())),
    transform(Transform.rotate_180, image_window(basic_grid())),
], ids=lambda d: d.key)
def test_decompositions_render_the_grid(decomposer):
    g = grid([[1, 0, 2, 2], [0, 0, 2, 0]])
    image = build_decomposer(decomposer)(g)
    assert image.to_grid().equals(g)


def test_object_list_elements():
    image = build_decomposer(object_list(trim_object(basic_grid())))(grid([[1, 0, 2], [1, 0, 2]]))
    assert isinstance(image, SubImages)
    assert image.count == 2


def test_find_master_grid_cells():
    g = grid([[1, 5, 2], [5, 5, 5], [3, 5, 4]])
    image = build_decomposer(find_master_grid(basic_grid()))(g)
    assert image.stride == 2
    assert image.grid_color == 5
    assert [cell.data[0] for cell in image.list] == [0, 1, 2, 3]
    assert image.to_grid().equals(g)


def test_semantic_box_rejects_small_grids():
    with pytest.raises(DecompositionError):
        build_decomposer(semantic_box())(grid([[1, 1], [1, 1]]))


def test_unknown_decomposer():
    with pytest.raises(DecompositionError):
        build_decomposer(Decomposer('no_such_decomposer'))


def test_failed_alternatives_are_marked_and_pruned():
    d = decomposer_clone(alternatives([solid_color(), basic_grid()]))
    image = build_decomposer(d)(grid([[1, 2]]))
    assert isinstance(image, Alternatives)
    assert image.alternatives[0] is None
    assert d.decomposers[0].failed

    pruned = remove_failed_alternatives(d)
    assert decomposer_to_key(pruned) == 'alternatives([basic_grid()])'
    assert build_decomposer(pruned)(grid([[1, 2]])).to_grid().to_list() == [[1, 2]]


def test_clone_resets_failed():
    d = alternatives([solid_color()])
    d.decomposers[0].failed = True
    assert not decomposer_clone(d).decomposers[0].failed
    assert d.decomposers[0].failed, "The cloned tree is a copy"


def test_normalize_decomposer_frames_in_a_window():
    assert decomposer_to_key(normalize_decomposer(object_list(basic_grid()))) == \
        'image_window(object_list(basic_grid()))'
    assert decomposer_to_key(normalize_decomposer(basic_grid())) == 'basic_grid()'
    d = image_window(basic_grid())
    assert normalize_decomposer(d) is d
