"""
Type definitions and dataclasses for arc-synth.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional, Dict, TYPE_CHECKING

if TYPE_CHECKING:
    from .grid import Grid
    from .decomposers import Decomposer


class Color(IntEnum):
    """ARC palette plus sentinel values. `false`/`true` alias black/blue."""
    no_color = -1
    black = 0
    blue = 1
    red = 2
    green = 3
    yellow = 4
    grey = 5
    fuschia = 6
    orange = 7
    teal = 8
    brown = 9
    true_black = 10
    not_written = 11

    false = 0
    true = 1


# Colors exposed as per-color count features (black..true_black)
PALETTE = [Color(c) for c in range(11)]

IDENTITY_COLOR_MAPPING = list(range(11))


class Transform(IntEnum):
    """Geometric transforms. The first 8 are finite symmetries."""
    identity = 0
    flip_x = 1
    flip_y = 2
    rotate_90 = 3
    rotate_180 = 4
    rotate_270 = 5
    transpose = 6
    opposite_transpose = 7
    tile_x = 8
    tile_y = 9
    tile = 10
    ping_pong_x = 11
    ping_pong_y = 12
    ping_pong = 13
    rotation = 14


# Symmetries tried when looking for a transformed grid
FINITE_TRANSFORMS = [
    Transform.flip_x, Transform.flip_y,
    Transform.rotate_90, Transform.rotate_180, Transform.rotate_270,
    Transform.transpose, Transform.opposite_transpose,
]

# Transforms whose output has width and height swapped
TRANSPOSING_TRANSFORMS = {
    Transform.rotate_90, Transform.rotate_270,
    Transform.transpose, Transform.opposite_transpose,
}


class PuzzleState:
    """Outcome of a solve attempt."""
    SOLVED = 'solved'
    HALF_SOLVED = 'half-solved'
    FAILED = 'failed'
    BUG = 'bug'
    INVALID = 'invalid'


@dataclass
class ArcSample:
    """One input/output example. `solution` is filled by the solver."""
    input: 'Grid'
    output: Optional['Grid'] = None
    solution: Optional['Grid'] = None

    @staticmethod
    def from_json(data: Dict) -> 'ArcSample':
        from .grid import Grid
        output = data.get('output')
        solution = data.get('solution')
        return ArcSample(
            Grid.from_list(data['input']),
            Grid.from_list(output) if output is not None else None,
            Grid.from_list(solution) if solution is not None else None,
        )

    def to_json(self) -> Dict:
        data = {'input': self.input.to_list()}
        if self.output is not None:
            data['output'] = self.output.to_list()
        if self.solution is not None:
            data['solution'] = self.solution.to_list()
        return data


@dataclass
class ArcPuzzle:
    """ARC task: training and test samples plus optional decomposers."""
    name: str
    train: List[ArcSample]
    test: List[ArcSample]
    state: Optional[str] = None
    decomposer_input: Optional['Decomposer'] = None
    decomposer_output: Optional['Decomposer'] = None
    metadata: Dict = field(default_factory=dict)

    @property
    def samples(self) -> List[ArcSample]:
        return self.train + self.test

    @staticmethod
    def from_json(name: str, data: Dict) -> 'ArcPuzzle':
        """Load a puzzle from the ARC challenge JSON shape."""
        from .decomposers import Decomposer
        puzzle = ArcPuzzle(
            name,
            [ArcSample.from_json(s) for s in data.get('train', [])],
            [ArcSample.from_json(s) for s in data.get('test', [])],
            data.get('state'),
        )
        if data.get('decomposer_input'):
            puzzle.decomposer_input = Decomposer.from_dict(data['decomposer_input'])
        if data.get('decomposer_output'):
            puzzle.decomposer_output = Decomposer.from_dict(data['decomposer_output'])
        return puzzle

    def to_json(self) -> Dict:
        data = {
            'train': [s.to_json() for s in self.train],
            'test': [s.to_json() for s in self.test],
        }
        if self.state is not None:
            data['state'] = self.state
        if self.decomposer_input is not None:
            data['decomposer_input'] = self.decomposer_input.to_dict()
        if self.decomposer_output is not None:
            data['decomposer_output'] = self.decomposer_output.to_dict()
        return data
