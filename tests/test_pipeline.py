"""
End-to-end puzzle solving on tiny hand-made tasks.
"""

import sys
import os

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from arc_synth.compiler import build_decomposer
from arc_synth.config import SolverOptions
from arc_synth.core import Solver
from arc_synth.decomposers import (
    alternatives, basic_grid, decomposer_to_key, master_grid2, object_list, scaled, solid_color, trim_object,
    trim_object_center,
)
from arc_synth.errors import SolverTimeout
from arc_synth.grid import Grid
from arc_synth.images import SubImages
from arc_synth.pipeline import (
    default_decomposers_to_try, is_solution, solve_puzzle, solve_puzzle_trying_all_decomposers,
    solve_puzzle_using_decomposers,
)
from arc_synth.types import ArcPuzzle, ArcSample, PuzzleState


def grid(rows):
    return Grid.from_list(rows)


def make_puzzle(train, test, name='task'):
    return ArcPuzzle(
        name,
        [ArcSample(grid(i), grid(o)) for i, o in train],
        [ArcSample(grid(i), grid(o) if o is not None else None) for i, o in test],
    )


@pytest.fixture
def options():
    return SolverOptions(timeout=30.0)


# ==============================================================================
# Samples and loading
# ==============================================================================

def test_is_solution():
    sample = ArcSample(grid([[1]]), grid([[2]]))
    assert not is_solution(sample), "No solution yet"
    sample.solution = grid([[2]])
    assert is_solution(sample)
    assert not is_solution(ArcSample(grid([[1]]), None, grid([[1]]))), "No expected output"


def test_puzzle_from_json():
    data = {
        'train': [{'input': [[1, 0]], 'output': [[0, 1]]}],
        'test': [{'input': [[2, 0]]}],
    }
    puzzle = ArcPuzzle.from_json('flip', data)
    assert puzzle.name == 'flip'
    assert puzzle.train[0].output.to_list() == [[0, 1]]
    assert puzzle.test[0].output is None
    assert len(puzzle.samples) == 2
    assert ArcPuzzle.from_json('flip', puzzle.to_json()).to_json() == puzzle.to_json()


def test_default_pairs():
    pairs = default_decomposers_to_try()
    assert len(pairs) == 1 + 112 + 112
    standalone = pairs[0][0]
    assert pairs[0][1].key == standalone.key
    assert pairs[-1][1].key == standalone.key


# ==============================================================================
# Decompositions used by the puzzles below
# ==============================================================================

def test_object_list_trims_objects():
    image = build_decomposer(object_list(trim_object(basic_grid())))(grid([[0, 2, 2], [0, 2, 2], [0, 0, 0]]))
    assert isinstance(image, SubImages)
    assert image.count == 1
    translation = image.list[0]
    assert (translation.x, translation.y) == (1, 0)
    assert translation.image.grid.to_list() == [[2, 2], [2, 2]]


def test_master_grid2_cells():
    g = grid([[1, 1, 2, 2], [1, 1, 2, 2], [3, 3, 4, 4], [3, 3, 4, 4]])
    image = build_decomposer(master_grid2(2, 2, basic_grid()))(g)
    assert image.count == 4
    assert image.to_grid().equals(g)


# ==============================================================================
# Solving
# ==============================================================================

def test_identity_puzzle(options):
    """
    Test: an identity task solves with basic_grid on both sides.

    Setup:
    - Two train pairs and one test pair whose output equals the input

    Verify:
    - State is solved and the test solution equals its input
    """
    puzzle = make_puzzle(
        train=[([[1, 0], [0, 1]], [[1, 0], [0, 1]]), ([[2, 2], [0, 3]], [[2, 2], [0, 3]])],
        test=[([[4, 0], [0, 5]], [[4, 0], [0, 5]])],
    )
    puzzle.decomposer_input = basic_grid()
    puzzle.decomposer_output = basic_grid()
    assert solve_puzzle(puzzle, options=options)
    assert puzzle.state == PuzzleState.SOLVED
    assert puzzle.test[0].solution.to_list() == [[4, 0], [0, 5]]


def test_flip_puzzle_with_explicit_pair(options):
    puzzle = make_puzzle(
        train=[([[1, 2], [0, 0]], [[2, 1], [0, 0]]), ([[3, 0, 4]], [[4, 0, 3]])],
        test=[([[5, 6, 7]], [[7, 6, 5]])],
    )
    assert solve_puzzle_trying_all_decomposers(puzzle, [(basic_grid(), basic_grid())], options)
    assert puzzle.state == PuzzleState.SOLVED
    assert puzzle.decomposer_input.key == basic_grid().key


def test_scale_puzzle(options):
    """
    Test: a 2x upscale rebuilds a Scale image from the input grid.

    Verify:
    - The scale is found as a constant and the child grid as the input grid
    """
    puzzle = make_puzzle(
        train=[
            ([[1, 2]], [[1, 1, 2, 2], [1, 1, 2, 2]]),
            ([[3, 4], [4, 3]], [[3, 3, 4, 4], [3, 3, 4, 4], [4, 4, 3, 3], [4, 4, 3, 3]]),
        ],
        test=[([[5, 6]], [[5, 5, 6, 6], [5, 5, 6, 6]])],
    )
    puzzle.decomposer_input = basic_grid()
    puzzle.decomposer_output = scaled(basic_grid())
    assert solve_puzzle(puzzle, options=options)
    assert puzzle.test[0].solution.to_list() == [[5, 5, 6, 6], [5, 5, 6, 6]]


def test_rasterized_puzzle(options):
    puzzle = make_puzzle(
        train=[([[1, 0, 0]], [[1, 2, 2]]), ([[0, 1, 0]], [[2, 1, 2]])],
        test=[([[0, 0, 1]], [[2, 2, 1]])],
    )
    assert solve_puzzle(puzzle, rasterize=True, options=options)
    assert puzzle.state == PuzzleState.SOLVED


def test_already_seen_pair_is_skipped(options):
    puzzle = make_puzzle(
        train=[([[1, 0]], [[1, 0]]), ([[0, 3]], [[0, 3]])],
        test=[],
    )
    seen = set()
    assert solve_puzzle_using_decomposers(puzzle, basic_grid(), basic_grid(), seen, options)
    assert len(seen) == 1
    assert not solve_puzzle_using_decomposers(puzzle, basic_grid(), basic_grid(), seen, options)


def test_unsolvable_puzzle_fails(options):
    puzzle = make_puzzle(
        train=[([[1]], [[7, 7, 7]]), ([[2]], [[5]])],
        test=[],
    )
    assert not solve_puzzle_using_decomposers(puzzle, basic_grid(), basic_grid(), options=options)
    assert puzzle.state in (PuzzleState.FAILED, PuzzleState.BUG)


def test_failed_alternative_under_a_translating_wrapper(options):
    """
    Test: a failing alternatives branch inside trim_object_center is pruned.

    Setup:
    - solid_color fails on the two-color object, basic_grid succeeds

    Verify:
    - The attempt is not marked invalid
    - The pruned decomposers are kept on the puzzle
    """
    puzzle = make_puzzle(
        train=[([[0, 2, 3], [0, 2, 3], [0, 0, 0]], [[0, 2, 3], [0, 2, 3], [0, 0, 0]])],
        test=[],
    )
    d = trim_object_center(alternatives([solid_color(), basic_grid()]))
    solve_puzzle_using_decomposers(puzzle, d, d, options=options)
    assert puzzle.state != PuzzleState.INVALID
    assert decomposer_to_key(puzzle.decomposer_input) == 'trim_object_center(alternatives([basic_grid()]))'
    assert decomposer_to_key(puzzle.decomposer_output) == 'trim_object_center(alternatives([basic_grid()]))'


# ==============================================================================
# Timeouts
# ==============================================================================

@pytest.fixture
def timed_out_solver(monkeypatch):
    """Solver.make raising SolverTimeout; returns the list of calls made."""
    calls = []

    def make(inputs, outputs, options=None):
        calls.append(options)
        raise SolverTimeout('Solver timeout !')

    monkeypatch.setattr(Solver, 'make', staticmethod(make))
    return calls


def test_timeout_stops_the_pair_search(timed_out_solver, options):
    puzzle = make_puzzle(
        train=[([[1, 0], [0, 1]], [[1, 0], [0, 1]])],
        test=[([[4, 0], [0, 5]], None)],
    )
    with pytest.raises(SolverTimeout):
        solve_puzzle_trying_all_decomposers(puzzle, default_decomposers_to_try(), options)
    assert len(timed_out_solver) == 1, "No pair is tried after a timeout"


def test_timeout_fails_the_puzzle(timed_out_solver, options):
    puzzle = make_puzzle(
        train=[([[1, 0], [0, 1]], [[1, 0], [0, 1]])],
        test=[([[4, 0], [0, 5]], None)],
    )
    assert not solve_puzzle(puzzle, options=options)
    assert puzzle.state == PuzzleState.FAILED
    assert len(timed_out_solver) == 1


def test_timeout_fails_known_decomposers(timed_out_solver, options):
    puzzle = make_puzzle(
        train=[([[1, 0], [0, 1]], [[1, 0], [0, 1]])],
        test=[],
    )
    puzzle.decomposer_input = basic_grid()
    puzzle.decomposer_output = basic_grid()
    assert not solve_puzzle(puzzle, options=options)
    assert puzzle.state == PuzzleState.FAILED
    assert len(timed_out_solver) == 1, "The second pass is not attempted"
