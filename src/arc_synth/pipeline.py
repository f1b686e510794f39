"""
Puzzle solving entry points.

A puzzle is solved by choosing a decomposer for its inputs and one for its
outputs, fitting a Solver on the decomposed training pairs and asking the
first output image to rebuild itself from the input image. When the puzzle
does not name its decomposers, a fixed list of pairs is tried in order.
"""

import logging
from typing import Callable, List, Optional, Set, Tuple

from .abstraction import Abstraction
from .compiler import DECOMPOSITION_FAILURES, build_decomposer
from .config import SolverOptions
from .core import Solver
from .decomposers import (
    Decomposer, alternatives, background, basic_grid, block_list, centered, color_decomposition,
    decomposer_clone, decomposer_to_key, decomposer_to_list, find_master_grid, horizontal_decomposition,
    image_window, master_grid, master_grid2, monochrome, monochrome_object_list, monochrome_object_list2,
    object_list, object_list2, pixel_grid, remove_failed_alternatives, scaled, semantic_box, solid_color,
    tile, tile_x, transform, trim_object, trim_object_center,
)
from .errors import ArcSynthError, SolverTimeout
from .functions import F
from .grid import Grid
from .rasterizer import Rasterizer
from .types import ArcPuzzle, ArcSample, PuzzleState, Transform

logger = logging.getLogger(__name__)

DecomposerPair = Tuple[Decomposer, Decomposer]

# Failures of one attempt that mark the puzzle as 'bug' rather than 'invalid'
ATTEMPT_FAILURES = DECOMPOSITION_FAILURES + (NotImplementedError,)


def is_solution(sample: ArcSample) -> bool:
    """Whether the sample has a solution equal to its expected output."""
    if sample.solution is None or sample.output is None:
        return False
    return sample.solution.equals(sample.output)


# ==============================================================================
# Default decomposers
# ==============================================================================

def _add_root(decomposer: Decomposer) -> List[Decomposer]:
    return [
        horizontal_decomposition(decomposer),
        find_master_grid(decomposer),
        monochrome_object_list(decomposer),
        find_master_grid(decomposer, 5),
        color_decomposition(decomposer),
        object_list(decomposer),
        monochrome_object_list2(decomposer),
        object_list2(decomposer),
        find_master_grid(decomposer, 5, True),
        master_grid2(2, 2, decomposer),
        master_grid2(3, 3, decomposer),
        master_grid2(4, 4, decomposer),
        find_master_grid(decomposer, None, True),
        block_list(decomposer),
    ]


def _add_prefix(decomposer: Decomposer) -> List[Decomposer]:
    return [
        decomposer,
        background(10, decomposer),
        image_window(trim_object_center(decomposer)),
        trim_object(decomposer),
        background(None, decomposer),
        image_window(decomposer),
        transform(Transform.rotate_180, image_window(decomposer)),
        background(10, image_window(decomposer)),
    ]


def _add_mastergrids(decomposer: Decomposer) -> List[Decomposer]:
    return [
        master_grid(2, 2, decomposer),
        master_grid(2, 1, decomposer),
        master_grid(1, 2, decomposer),
        master_grid(3, 3, decomposer),
        master_grid(3, 1, decomposer),
        master_grid(1, 3, decomposer),
    ]


def alternatives_suffix() -> Decomposer:
    """Leaf alternatives applied to every element of a collection."""
    return alternatives([
        trim_object(basic_grid()),
        monochrome(image_window(basic_grid())),
        basic_grid(),
        monochrome(basic_grid()),
        trim_object_center(basic_grid()),
        trim_object(image_window(solid_color())),
        image_window(solid_color()),
        image_window(basic_grid()),
        trim_object(monochrome(scaled(basic_grid()))),
        monochrome(trim_object(basic_grid())),
        image_window(solid_color()),
        trim_object(monochrome(basic_grid())),
        image_window(monochrome(basic_grid())),
        trim_object(image_window(monochrome(basic_grid()))),
        trim_object(image_window(background(7, monochrome(basic_grid())))),
        centered(basic_grid()),
        trim_object(semantic_box()),
        trim_object(image_window(solid_color())),
        trim_object(image_window(basic_grid())),
        monochrome(trim_object(semantic_box())),
    ])


def alternatives_standalone() -> Decomposer:
    """Whole-grid alternatives, tried on their own."""
    return alternatives([
        image_window(tile(basic_grid())),
        image_window(monochrome(basic_grid())),
        image_window(trim_object(image_window(monochrome(basic_grid())))),
        image_window(trim_object(image_window(background(2, monochrome(basic_grid()))))),
        image_window(trim_object(monochrome(basic_grid()))),
        image_window(pixel_grid()),
        image_window(solid_color()),
        image_window(basic_grid()),
        image_window(trim_object(image_window(solid_color()))),
        basic_grid(),
        monochrome(basic_grid()),
        scaled(basic_grid()),
        background(5, monochrome(basic_grid())),
        semantic_box(),
        trim_object(basic_grid()),
        image_window(trim_object(tile_x(basic_grid()))),
        trim_object(image_window(monochrome(basic_grid()))),
        image_window(monochrome(trim_object(basic_grid()))),
        pixel_grid(),
        background(None, trim_object(basic_grid())),
        tile(basic_grid()),
    ] + _add_mastergrids(alternatives_suffix()))


def default_decomposers_to_try() -> List[DecomposerPair]:
    """
    (input, output) decomposer pairs in the order they are tried.

    The standalone pair comes first, then every prefixed collection
    decomposer used on both sides, then each of them on the input side only.
    """
    standalone = alternatives_standalone()
    main = [prefixed for root in _add_root(alternatives_suffix()) for prefixed in _add_prefix(root)]
    return [(standalone, standalone)] + [(d, d) for d in main] + [(d, standalone) for d in main]


# ==============================================================================
# Solving
# ==============================================================================

def _fill_solutions(puzzle: ArcPuzzle, fsolver: Callable[[Grid], Grid]) -> bool:
    """Solve every sample; True when each one with an expected output matches it."""
    success = True
    for sample in puzzle.samples:
        sample.solution = fsolver(sample.input.clone())
        if sample.output is not None:
            success = is_solution(sample) and success
    return success


def _train_solved(puzzle: ArcPuzzle) -> bool:
    return all(is_solution(sample) for sample in puzzle.train)


def _image_solver(solver: Solver, output_image, input_decomposer,
                  flesh: Optional[Callable] = None) -> Callable[[Grid], Grid]:
    """Grid -> Grid function rebuilding the output image from a decomposed input."""
    image_to_image = output_image.build_solver_function(solver, F.identity('input'))

    def fsolver(grid: Grid) -> Grid:
        input_image = input_decomposer(grid)
        if flesh is not None:
            flesh(input_image)
        return image_to_image(input_image, ()).to_grid()

    return fsolver


def solve_puzzle_using_decomposers(puzzle: ArcPuzzle, decomposer_input: Decomposer,
                                   decomposer_output: Decomposer, seen: Optional[Set[str]] = None,
                                   options: Optional[SolverOptions] = None) -> bool:
    """
    Try one (input, output) decomposer pair.

    Alternatives that fail on any sample are pruned before fitting. A pair
    whose decomposed training images were already tried is skipped.

    Args:
        puzzle: Puzzle to solve; its state, decomposers and solutions are updated
        decomposer_input: Decomposer for input grids
        decomposer_output: Decomposer for output grids
        seen: Signatures of the decomposed training pairs already tried
        options: Base solver options

    Returns:
        True when every training sample is reproduced
    """
    seen = set() if seen is None else seen
    options = (options or SolverOptions()).replace(no_decision_tree=True, no_sub_table_analysis=True)
    decomposer_input = decomposer_clone(decomposer_input)
    decomposer_output = decomposer_clone(decomposer_output)
    logger.debug('Trying %s -> %s', ','.join(decomposer_to_list(decomposer_input)),
                 ','.join(decomposer_to_list(decomposer_output)))

    try:
        bug = False
        success = True
        try:
            input_decomposer = build_decomposer(decomposer_input)
            output_decomposer = build_decomposer(decomposer_output)
            for sample in puzzle.train:
                input_decomposer(sample.input.clone())
                output_decomposer(sample.output.clone())
            for sample in puzzle.test:
                input_decomposer(sample.input.clone())

            decomposer_input = remove_failed_alternatives(decomposer_input)
            decomposer_output = remove_failed_alternatives(decomposer_output)
            input_decomposer = build_decomposer(decomposer_input)
            output_decomposer = build_decomposer(decomposer_output)

            input_images = [input_decomposer(sample.input.clone()) for sample in puzzle.train]
            output_images = [output_decomposer(sample.output.clone()) for sample in puzzle.train]

            key = (','.join(image.key for image in input_images) + '->' +
                   ','.join(image.key for image in output_images))
            if key in seen:
                return False
            seen.add(key)

            solver = Solver.make(input_images, output_images, options)
            puzzle.decomposer_input = decomposer_input
            puzzle.decomposer_output = decomposer_output

            fsolver = _image_solver(solver, output_images[0], input_decomposer)
            success = _fill_solutions(puzzle, fsolver)
        except SolverTimeout:
            raise
        except ATTEMPT_FAILURES as e:
            logger.debug('Attempt %s -> %s failed: %s', decomposer_to_key(decomposer_input),
                         decomposer_to_key(decomposer_output), e)
            bug = True
            success = False

        puzzle.state = PuzzleState.SOLVED if success else PuzzleState.BUG if bug else PuzzleState.FAILED
        return not bug and _train_solved(puzzle)
    except SolverTimeout:
        raise
    except Exception:
        logger.exception('Puzzle %s: unexpected error', puzzle.name)
        puzzle.state = PuzzleState.INVALID
        return False


def solve_puzzle_trying_all_decomposers(puzzle: ArcPuzzle, pairs: List[DecomposerPair],
                                        options: Optional[SolverOptions] = None) -> bool:
    """Try each pair in order, stopping at the first that reproduces the training samples."""
    seen: Set[str] = set()
    for decomposer_input, decomposer_output in pairs:
        logger.debug('Doing %s -> %s', decomposer_to_key(decomposer_input), decomposer_to_key(decomposer_output))
        if solve_puzzle_using_decomposers(puzzle, decomposer_input, decomposer_output, seen, options):
            return True
    return False


def solve_puzzle_trying_default_decomposers(puzzle: ArcPuzzle, options: Optional[SolverOptions] = None) -> bool:
    return solve_puzzle_trying_all_decomposers(puzzle, default_decomposers_to_try(), options)


def _solve_with_known_decomposers(puzzle: ArcPuzzle, options: SolverOptions) -> None:
    """
    Two passes over the puzzle's own decomposers.

    The first pass fits without value mappings. The second discovers
    abstractions in the decomposed images and allows decision trees.
    """
    input_decomposer = build_decomposer(puzzle.decomposer_input)
    output_decomposer = build_decomposer(puzzle.decomposer_output)
    bug = False
    success = True
    success2 = True

    try:
        input_images = [input_decomposer(sample.input.clone()) for sample in puzzle.train]
        output_images = [output_decomposer(sample.output.clone()) for sample in puzzle.train]
        solver = Solver.make(input_images, output_images, options.replace(no_mapping=True))
        success2 = _fill_solutions(puzzle, _image_solver(solver, output_images[0], input_decomposer))
    except SolverTimeout:
        raise
    except ATTEMPT_FAILURES as e:
        logger.debug('Puzzle %s: first pass failed: %s', puzzle.name, e)
        bug = True
        success2 = False

    try:
        input_images = [input_decomposer(sample.input.clone()) for sample in puzzle.train]
        output_images = [output_decomposer(sample.output.clone()) for sample in puzzle.train]
        flesh_input = Abstraction.discover_abstractions(input_images)
        Abstraction.discover_abstractions(output_images)
        solver = Solver.make(input_images, output_images, options.replace(no_decision_tree=False))
        success = _fill_solutions(puzzle, _image_solver(solver, output_images[0], input_decomposer, flesh_input))
    except SolverTimeout:
        raise
    except ATTEMPT_FAILURES as e:
        logger.debug('Puzzle %s: second pass failed: %s', puzzle.name, e)
        bug = True
        success = False

    if success:
        puzzle.state = PuzzleState.SOLVED
    elif success2:
        puzzle.state = PuzzleState.HALF_SOLVED
    elif bug:
        puzzle.state = PuzzleState.BUG
    else:
        puzzle.state = PuzzleState.FAILED


def _solve_with_rasterizer(puzzle: ArcPuzzle, options: SolverOptions) -> None:
    decomposer = puzzle.decomposer_input or basic_grid()
    bug = False
    success = False
    try:
        fsolver = Rasterizer.learn_rasterization(
            [sample.input.clone() for sample in puzzle.train],
            [sample.output.clone() for sample in puzzle.train],
            build_decomposer(decomposer),
            options=options,
        )
        if fsolver is not None:
            success = _fill_solutions(puzzle, fsolver)
    except SolverTimeout:
        raise
    except ATTEMPT_FAILURES as e:
        logger.debug('Puzzle %s: rasterization failed: %s', puzzle.name, e)
        bug = True

    puzzle.state = PuzzleState.SOLVED if success else PuzzleState.BUG if bug else PuzzleState.FAILED


def solve_puzzle(puzzle: ArcPuzzle, rasterize: bool = False, options: Optional[SolverOptions] = None) -> bool:
    """
    Solve a puzzle, filling in every sample's solution and the puzzle state.

    Args:
        puzzle: Puzzle to solve
        rasterize: Learn per-pixel tile rules instead of rebuilding images
        options: Base solver options (timeout, fuel)

    Returns:
        True when every training sample is reproduced
    """
    options = options or SolverOptions()
    try:
        if rasterize:
            _solve_with_rasterizer(puzzle, options)
        elif puzzle.decomposer_input is not None and puzzle.decomposer_output is not None:
            _solve_with_known_decomposers(puzzle, options)
        else:
            solve_puzzle_trying_default_decomposers(puzzle, options)
    except SolverTimeout as e:
        logger.debug('Puzzle %s: %s', puzzle.name, e)
        puzzle.state = PuzzleState.FAILED
    except ArcSynthError as e:
        logger.debug('Puzzle %s: %s', puzzle.name, e)
        puzzle.state = PuzzleState.BUG
    except Exception:
        logger.exception('Puzzle %s: unexpected error', puzzle.name)
        puzzle.state = PuzzleState.INVALID

    solved = puzzle.state != PuzzleState.INVALID and _train_solved(puzzle)
    logger.info('Puzzle %s: %s', puzzle.name, puzzle.state)
    return solved
