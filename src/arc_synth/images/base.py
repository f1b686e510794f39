"""
Base classes for symbolic images.

A ConcreteImage is one node of the structured image tree built by a
decomposer. It compiles to a bounding box plus a sampling function, has a
structural key, and exposes batches of tracked feature functions whose paths
can be evaluated on any other image of the same shape.
"""

import math
from typing import Callable, Iterator, List, Optional, Tuple, TYPE_CHECKING

from ..errors import ArcSynthError
from ..functions import F
from ..grid import Grid
from ..types import Color

if TYPE_CHECKING:
    from ..core.solver import Solver

# builder(image, indices) -> ConcreteImage
ImageBuilder = Callable[[object, Tuple[int, ...]], 'ConcreteImage']


class ImageCompilation:
    """Bounding box [x0, x1) x [y0, y1) plus a sampling function at(x, y)."""

    __slots__ = ('x0', 'y0', 'x1', 'y1', 'at')

    def __init__(self, x0: float, y0: float, x1: float, y1: float, at: Callable[[float, float], int]):
        self.x0 = x0
        self.y0 = y0
        self.x1 = x1
        self.y1 = y1
        self.at = at

    def contains(self, x: float, y: float) -> bool:
        return self.x0 <= x < self.x1 and self.y0 <= y < self.y1

    def generate_grid(self) -> Grid:
        """Sample every cell center of the bounding box."""
        width = self.x1 - self.x0
        height = self.y1 - self.y0
        if math.isinf(width) or math.isinf(height):
            raise ArcSynthError('Cannot rasterize an unbounded image')
        width = max(0, math.ceil(width))
        height = max(0, math.ceil(height))
        grid = Grid(width, height)
        for x in range(width):
            for y in range(height):
                color = self.at(self.x0 + x + 0.5, self.y0 + y + 0.5)
                grid.set(x, y, Color.black if color is None else color)
        return grid


class SymbolicImage:
    """Anything the Solver can extract feature functions from."""

    def number_functions(self) -> List[F]:
        return []

    def color_functions(self) -> List[F]:
        return []

    def grid_functions(self) -> List[F]:
        return []

    def sub_images_functions(self) -> List[F]:
        return []

    def to_grid(self) -> Grid:
        return Grid(0, 0)

    def grids(self) -> Iterator[Grid]:
        return iter(())


class ConcreteImage(SymbolicImage):
    """One node of a decomposed image tree."""

    builders: Optional[dict] = None

    def set_builders(self, builders: dict) -> 'ConcreteImage':
        """Record the paths of the functions that rebuilt this image."""
        self.builders = builders
        return self

    def get_type(self) -> str:
        raise NotImplementedError

    def clone(self) -> 'ConcreteImage':
        raise NotImplementedError

    @property
    def key(self) -> str:
        raise NotImplementedError

    def translate(self, dx: float, dy: float) -> 'ConcreteImage':
        from .wrappers import Translation
        return Translation(dx, dy, self.clone())

    def compile(self) -> ImageCompilation:
        raise NotImplementedError

    def build_solver_function(self, solver: 'Solver', path: F) -> ImageBuilder:
        raise NotImplementedError(f"{type(self).__name__} cannot be rebuilt")

    def to_grid(self) -> Grid:
        return self.compile().generate_grid()

    def images(self) -> Iterator['ConcreteImage']:
        return iter(())

    def recur_images(self) -> Iterator['ConcreteImage']:
        yield self
        for sub_image in self.images():
            yield from sub_image.recur_images()

    def __repr__(self) -> str:
        return self.key


class WrapperImage(ConcreteImage):
    """Image with a single child exposed under `image.`"""

    image: ConcreteImage

    def number_functions(self) -> List[F]:
        return [f.prefix('image') for f in self.image.number_functions()]

    def color_functions(self) -> List[F]:
        return [f.prefix('image') for f in self.image.color_functions()]

    def grid_functions(self) -> List[F]:
        return [f.prefix('image') for f in self.image.grid_functions()]

    def sub_images_functions(self) -> List[F]:
        return [f.prefix('image') for f in self.image.sub_images_functions()]

    def build_image_function(self, solver: 'Solver', path: F) -> ImageBuilder:
        return self.image.build_solver_function(solver, F.make('image').prefix(path))

    def grids(self) -> Iterator[Grid]:
        return self.image.grids()

    def images(self) -> Iterator[ConcreteImage]:
        yield self.image
