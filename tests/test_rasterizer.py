"""
Rasterizer: tiles, painting and learned tile functions.
"""

import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from arc_synth.compiler import build_decomposer
from arc_synth.decomposers import basic_grid
from arc_synth.grid import Grid
from arc_synth.rasterizer import Rasterizer, Tile
from arc_synth.types import Color


def grid(rows):
    return Grid.from_list(rows)


# ==============================================================================
# Tiles
# ==============================================================================

def test_tile_window_marks_outside_cells():
    tile = Tile(0, 0, 1, grid([[1, 2], [3, 4]]))
    assert tile.origin == [-1, -1, -1, -1, 1, 2, -1, 3, 4]
    assert tile.at_center() == 1
    assert tile.at(5, 5) == Color.no_color


def test_tile_set_copies():
    tile = Tile(0, 0, 1, grid([[1, 2]]))
    painted = tile.set(1, 0, Color.green)
    assert painted.at(1, 0) == Color.green
    assert tile.at(1, 0) == 2
    assert painted.key != tile.key
    assert painted.coord == tile.coord


def test_tile_target():
    tile = Tile(1, 0, 1, grid([[1, 0]]), grid([[1, 2]]))
    assert tile.target == Color.red
    same = Tile(0, 0, 1, grid([[1, 0]]), grid([[1, 2]]))
    assert same.target == Color.no_color, "Already correct"


# ==============================================================================
# Painting
# ==============================================================================

def test_no_layers_is_not_written():
    rasterizer = Rasterizer(1, None, grid([[1, 0]]))
    assert rasterizer.final_grid().to_list() == [[Color.not_written, Color.not_written]]


def test_draw_updates_neighbour_tiles():
    rasterizer = Rasterizer(1, None, grid([[0, 0, 0]]))
    touched = set()
    rasterizer.draw_at(0, 1, 0, Color.red, touched)
    assert touched == {0, 1, 2}
    assert rasterizer.tile_at(0, 0, 0).at(1, 0) == Color.red
    assert rasterizer.grid_at_layer(0).to_list() == [[0, 2, 0]]


# ==============================================================================
# Learning
# ==============================================================================

def test_learn_fill_black_cells():
    inputs = [grid([[1, 0, 0]]), grid([[0, 1, 0]])]
    outputs = [grid([[1, 2, 2]]), grid([[2, 1, 2]])]
    rasterize = Rasterizer.learn_rasterization(inputs, outputs, build_decomposer(basic_grid()))
    assert rasterize is not None
    assert rasterize(grid([[0, 0, 1]])).to_list() == [[2, 2, 1]]


def test_learn_rejects_size_changes():
    inputs = [grid([[1, 0]])]
    outputs = [grid([[1, 0, 0]])]
    assert Rasterizer.learn_rasterization(inputs, outputs, build_decomposer(basic_grid())) is None


def test_identity_needs_no_painting():
    inputs = [grid([[1, 0]]), grid([[0, 3]])]
    assert Rasterizer.learn_rasterization(inputs, inputs, build_decomposer(basic_grid())) is None
