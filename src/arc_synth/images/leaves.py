"""
Leaf image variants: raw grids, semantic boxes, pixels and solid colors.
"""

import logging
from functools import cached_property
from typing import Callable, List, Optional, Sequence

import numpy as np

from ..functions import F, Call, ROOT
from ..grid import Grid
from ..types import Color, Transform, PALETTE
from .base import ConcreteImage, ImageCompilation, ImageBuilder

logger = logging.getLogger(__name__)

INFINITY = float('inf')


def _floor(v: float) -> int:
    return int(np.floor(v))


class BasicImage(ConcreteImage):
    """A raw grid stored row-major with a stride (the width)."""

    def __init__(self, pixels: Sequence[int], stride: int):
        self.list = [int(c) for c in pixels]
        self.stride = int(stride)

    @cached_property
    def grid(self) -> Grid:
        if self.stride == 0:
            return Grid(0, 0)
        return Grid.from_array(np.array(self.list, dtype=int).reshape(-1, self.stride))

    @property
    def key(self) -> str:
        return f"BasicImage([{','.join(str(c) for c in self.list)}], {self.stride})"

    def get_type(self) -> str:
        return 'BasicImage'

    def clone(self) -> 'BasicImage':
        return BasicImage(list(self.list), self.stride)

    def compile(self) -> ImageCompilation:
        x1 = self.stride
        y1 = self.height
        data = self.grid.data

        def at(x, y):
            if 0 <= x < x1 and 0 <= y < y1:
                return int(data[_floor(y), _floor(x)])
            return Color.black

        return ImageCompilation(0, 0, x1, y1, at)

    def to_grid(self) -> Grid:
        return self.grid.clone()

    # ==========================================================================
    # Features
    # ==========================================================================

    @property
    def width(self) -> int:
        return self.stride

    @property
    def height(self) -> int:
        return len(self.list) // self.stride if self.stride else 0

    @property
    def area(self) -> int:
        return len(self.list)

    @property
    def non_black(self) -> int:
        return sum(1 for c in self.list if c != Color.black)

    @property
    def nb_colors(self) -> int:
        return len(set(self.list))

    @property
    def touching_perimeter(self) -> int:
        return 1 if self.grid.count_perimeter(lambda c: c != Color.black) > 0 else 0

    @cached_property
    def symmetrical_x(self) -> int:
        return 1 if self.grid.symmetrical(Transform.flip_x) else 0

    @cached_property
    def holes_count(self) -> int:
        return self.grid.holes_count()

    def count_color(self, color: int) -> int:
        return sum(1 for c in self.list if c == color)

    def number_functions(self) -> List[F]:
        names = ['area', 'width', 'height', 'non_black', 'touching_perimeter',
                 'symmetrical_x', 'nb_colors', 'holes_count']
        return [F.make(name) for name in names] + [
            F(color.name, Call(ROOT, 'count_color', (int(color),))) for color in PALETTE
        ]

    def grid_functions(self) -> List[F]:
        return [F.make('grid')]

    def build_solver_function(self, solver, path: F) -> ImageBuilder:
        logger.debug('BasicImage.build_solver_function %s', path.path)
        grid_function = solver.build_grid_function(F.make('grid').prefix(path))

        def build(image, indices=()):
            return basic_image(grid_function(image, indices)).set_builders({'grid': grid_function.path})

        return build

    def grids(self):
        yield self.to_grid()


def basic_image(grid: Grid) -> BasicImage:
    image = BasicImage(grid.data.ravel().tolist(), grid.width)
    image.__dict__['grid'] = grid.clone()
    return image


class SemanticBox(ConcreteImage):
    """
    A box described by 9 colors: 4 corners, 4 edges and the interior.

    Colors are listed row by row: c0 c1 c2 / c3 c4 c5 / c6 c7 c8.
    """

    def __init__(self, width: int, height: int, colors: Sequence[int]):
        self.width = width
        self.height = height
        self.list = [int(c) for c in colors]

    @property
    def key(self) -> str:
        return f"SemanticBox({self.width}, {self.height}, [{','.join(str(c) for c in self.list)}])"

    @property
    def area(self):
        return self.width * self.height

    def get_type(self) -> str:
        return 'SemanticBox'

    def clone(self) -> 'SemanticBox':
        return SemanticBox(self.width, self.height, list(self.list))

    def compile(self) -> ImageCompilation:
        w, h, colors = self.width, self.height, self.list

        def at(x, y):
            if not (0 <= x < w and 0 <= y < h):
                return Color.black
            column = 0 if x < 1 else 1 if x < w - 1 else 2
            row = 0 if y < 1 else 1 if y < h - 1 else 2
            return colors[row * 3 + column]

        return ImageCompilation(0, 0, w, h, at)

    def __getattr__(self, name: str):
        # c0..c8
        if len(name) == 2 and name[0] == 'c' and name[1].isdigit():
            return self.list[int(name[1])]
        raise AttributeError(name)

    def number_functions(self) -> List[F]:
        return [F.make(name) for name in ('area', 'width', 'height')]

    def color_functions(self) -> List[F]:
        return [F.make(f"c{i}") for i in range(len(self.list))]

    def build_solver_function(self, solver, path: F) -> ImageBuilder:
        logger.debug('SemanticBox.build_solver_function %s', path.path)
        width_function = solver.build_number_function(F.make('width').prefix(path))
        height_function = solver.build_number_function(F.make('height').prefix(path))
        color_functions = [solver.build_color_function(F.make(f"c{i}").prefix(path)) for i in range(len(self.list))]

        def build(image, indices=()):
            return SemanticBox(
                width_function(image, indices),
                height_function(image, indices),
                [f(image, indices) for f in color_functions],
            ).set_builders({
                'width': width_function.path,
                'height': height_function.path,
                'list': [f.path for f in color_functions],
            })

        return build


class BackgroundPixel(ConcreteImage):
    """A transparent unit pixel centered on the origin."""

    @property
    def key(self) -> str:
        return 'BackgroundPixel()'

    def get_type(self) -> str:
        return 'BackgroundPixel'

    def clone(self) -> 'BackgroundPixel':
        return BackgroundPixel()

    def compile(self) -> ImageCompilation:
        return ImageCompilation(-0.5, -0.5, 0.5, 0.5, lambda x, y: Color.black)


class Pixel(ConcreteImage):
    """A unit pixel centered on the origin; uncolored pixels read as true."""

    def __init__(self, color: Optional[int] = None):
        self.color = color

    @property
    def key(self) -> str:
        return f"Pixel({self.color})"

    def get_type(self) -> str:
        return 'Pixel'

    def clone(self) -> 'Pixel':
        return Pixel(self.color)

    def compile(self) -> ImageCompilation:
        color = Color.true if self.color is None else self.color
        return ImageCompilation(-0.5, -0.5, 0.5, 0.5, lambda x, y: color)

    def color_functions(self) -> List[F]:
        return [F.make('color')]

    def build_solver_function(self, solver, path: F) -> ImageBuilder:
        logger.debug('Pixel.build_solver_function %s', path.path)
        color_function = solver.build_color_function(F.make('color').prefix(path))

        def build(image, indices=()):
            return Pixel(color_function(image, indices)).set_builders({'color': color_function.path})

        return build


class SolidColor(ConcreteImage):
    """An unbounded plane of one color."""

    def __init__(self, color: Optional[int] = None):
        self.color = color

    @property
    def key(self) -> str:
        return f"SolidColor({self.color})"

    def get_type(self) -> str:
        return 'SolidColor'

    def clone(self) -> 'SolidColor':
        return SolidColor(self.color)

    def translate(self, dx, dy) -> 'SolidColor':
        return self.clone()

    def compile(self) -> ImageCompilation:
        color = Color.true if self.color is None else self.color
        return ImageCompilation(-INFINITY, -INFINITY, INFINITY, INFINITY, lambda x, y: color)

    def color_functions(self) -> List[F]:
        return [F.make('color')]

    def build_solver_function(self, solver, path: F) -> ImageBuilder:
        logger.debug('SolidColor.build_solver_function %s', path.path)
        color_function = solver.build_color_function(F.make('color').prefix(path))

        def build(image, indices=()):
            return SolidColor(color_function(image, indices)).set_builders({'color': color_function.path})

        return build


class Procedural(ConcreteImage):
    """An unbounded image defined by a sampling function."""

    def __init__(self, at: Callable[[float, float], int]):
        self.at = at

    @property
    def key(self) -> str:
        return 'Procedural()'

    def get_type(self) -> str:
        return 'Procedural'

    def clone(self) -> 'Procedural':
        return Procedural(self.at)

    def compile(self) -> ImageCompilation:
        return ImageCompilation(-INFINITY, -INFINITY, INFINITY, INFINITY, self.at)
