"""
Grid primitives: keys, geometry, objects and master grids.

Each test uses a grid small enough to check by hand.
"""

import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from arc_synth.grid import Grid
from arc_synth.types import Color, Transform


# ==============================================================================
# Keys and access
# ==============================================================================

def test_canonical_key():
    g = Grid.from_list([[1, 0], [0, 1]])
    assert str(g) == '[[1,0],[0,1]]'
    assert g.width == 2 and g.height == 2


def test_at_is_column_first():
    g = Grid.from_list([[1, 2, 3], [4, 5, 6]])
    assert g.at(2, 0) == 3
    assert g.at(0, 1) == 4
    assert g.at(3, 0) is None, "Reads outside the grid return None"


def test_out_of_bounds_writes_are_ignored():
    g = Grid(2, 2)
    g.set(5, 5, Color.red)
    assert g.to_list() == [[0, 0], [0, 0]]


def test_list_round_trip():
    rows = [[1, 2, 3], [4, 5, 6]]
    assert Grid.from_list(rows).to_list() == rows


def test_equals_checks_shape():
    assert not Grid(2, 1).equals(Grid(1, 2))
    assert Grid(2, 1).equals(Grid(2, 1))


# ==============================================================================
# Geometry
# ==============================================================================

def test_trim():
    g = Grid.from_list([[0, 0, 0], [0, 5, 0], [0, 0, 0]])
    trimmed, x0, y0 = g.trim()
    assert trimmed.to_list() == [[5]]
    assert (x0, y0) == (1, 1)


def test_scaling_factor():
    g = Grid.from_list([[1, 2]]).scaled(2)
    assert g.to_list() == [[1, 1, 2, 2], [1, 1, 2, 2]]
    assert g.is_scaled_by(2)
    assert g.get_scaling_factor() == 2
    assert g.inv_scale(2).to_list() == [[1, 2]]


def test_find_tile():
    g = Grid.from_list([[1, 2, 1, 2, 1, 2]])
    assert g.find_tile().to_list() == [[1, 2]]


def test_symmetrical():
    assert Grid.from_list([[1, 2, 1]]).symmetrical(Transform.flip_x)
    assert not Grid.from_list([[1, 2, 3]]).symmetrical(Transform.flip_x)


def test_paste_rotate_180():
    region = Grid.from_list([[1, 2], [3, 4]])
    g = Grid(2, 2)
    g.paste(region, transform=Transform.rotate_180)
    assert g.to_list() == [[4, 3], [2, 1]]


# ==============================================================================
# Objects
# ==============================================================================

def test_foreach_object_column_major_order():
    g = Grid.from_list([[0, 2, 0, 1], [0, 2, 0, 1]])
    objects = list(g.foreach_object())
    assert len(objects) == 2
    assert objects[0].count_color(2) == 2, "Leftmost object comes first"
    assert objects[1].count_color(1) == 2


def test_corners_connectivity():
    g = Grid.from_list([[1, 0], [0, 1]])
    assert len(list(g.foreach_object(corners=False))) == 2
    assert len(list(g.foreach_object(corners=True))) == 1


def test_holes_count():
    ring = Grid.from_list([[1, 1, 1], [1, 0, 1], [1, 1, 1]])
    assert ring.holes_count() == 1
    assert Grid.from_list([[1, 0, 1]]).holes_count() == 0


def test_colors_first_occurrence():
    g = Grid.from_list([[3, 0, 1], [1, 3, 2]])
    assert g.colors() == [3, 0, 1, 2]
    assert g.colors(background_color=0) == [3, 1, 2]


def test_find_master_grid():
    g = Grid.from_list([[1, 5, 2], [5, 5, 5], [3, 5, 4]])
    master = g.find_master_grid()
    assert master.grid_color == 5
    assert master.stride == 2
    assert [cell.grid.to_list() for cell in master.cells] == [[[1]], [[2]], [[3]], [[4]]]
    assert [(cell.x, cell.y) for cell in master.cells] == [(0, 0), (2, 0), (0, 2), (2, 2)]


def test_find_master_grid_fallback():
    g = Grid.from_list([[1, 2], [3, 4]])
    master = g.find_master_grid()
    assert master.grid_color is None
    assert master.stride == 1
    assert master.cells[0].grid.equals(g)


# ==============================================================================
# Drawing
# ==============================================================================

def test_draw_perimeter_and_boxes():
    g = Grid(3, 3)
    g.draw_perimeter(Color.red)
    assert g.to_list() == [[2, 2, 2], [2, 0, 2], [2, 2, 2]]
    assert not g.is_solid_color()

    g = Grid(4, 3)
    g.draw_box_perimeter(0, 0, 3, 3, Color.blue)
    g.draw_box(3, 0, 4, 2, Color.green)
    assert g.to_list() == [[1, 1, 1, 3], [1, 0, 1, 3], [1, 1, 1, 0]]


def test_draw_line_goes_diagonal_first():
    g = Grid(4, 2)
    g.draw_line(0, 0, 3, 1, Color.yellow)
    assert g.to_list() == [[4, 0, 0, 0], [0, 4, 4, 4]]


def test_erase_and_complement():
    g = Grid.from_list([[1, 2], [3, 4]])
    g.erase(Grid.from_list([[0, 5], [5, 0]]))
    assert g.to_list() == [[1, 0], [0, 4]]
    assert Grid.from_list([[0, 1], [2, 0]]).complement().to_list() == [[1, 0], [0, 1]]
    assert Grid(2, 2, Color.grey).is_solid_color()


def test_propagate_marks_border_contacts():
    g = Grid.from_list([[1, 0], [0, 0]])
    obj, contour = g.propagate(0, 0)
    assert obj.to_list() == [[1, 0], [0, 0]]
    assert contour.to_list() == [[0, 1, 0, 0], [1, 0, 0, 0], [0, 0, 0, 0], [0, 0, 0, 0]]
