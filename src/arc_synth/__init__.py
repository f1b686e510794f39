"""
arc-synth - program synthesis for ARC puzzles

Decomposes grids into structured images, fits tracked feature functions
across training pairs and rebuilds each output from its input.
"""

from .types import Color, Transform, PuzzleState, ArcSample, ArcPuzzle
from .grid import Grid
from .errors import (
    ArcSynthError, CantBuildFunction, CantBuildNumberFunction, CantBuildColorFunction,
    CantBuildGridFunction, DecompositionError, FunctionEvaluationError, TableAnalysisError,
    SolverError, SolverTimeout,
)
from .config import SolverOptions
from .functions import F
from .decomposers import Decomposer
from .compiler import build_decomposer
from .core import Solver, TableAnalysis
from .abstraction import Abstraction
from .rasterizer import Rasterizer, Tile
from .pipeline import (
    is_solution,
    default_decomposers_to_try,
    solve_puzzle,
    solve_puzzle_using_decomposers,
    solve_puzzle_trying_all_decomposers,
    solve_puzzle_trying_default_decomposers,
)
from .utils import task_sha, program_sha, log_receipt

__all__ = [
    # Types
    'Color', 'Transform', 'PuzzleState', 'ArcSample', 'ArcPuzzle', 'Grid',

    # Errors
    'ArcSynthError', 'CantBuildFunction', 'CantBuildNumberFunction', 'CantBuildColorFunction',
    'CantBuildGridFunction', 'DecompositionError', 'FunctionEvaluationError', 'TableAnalysisError',
    'SolverError', 'SolverTimeout',

    # Synthesis
    'SolverOptions', 'F', 'Decomposer', 'build_decomposer', 'Solver', 'TableAnalysis',
    'Abstraction', 'Rasterizer', 'Tile',

    # Pipeline
    'is_solution', 'default_decomposers_to_try', 'solve_puzzle', 'solve_puzzle_using_decomposers',
    'solve_puzzle_trying_all_decomposers', 'solve_puzzle_trying_default_decomposers',

    # Receipts
    'task_sha', 'program_sha', 'log_receipt',
]
