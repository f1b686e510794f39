"""
Composite image variants: sub-image collections and alternative branches.
"""

import logging
from typing import List, Optional, Union

from ..config import MAX_SUB_IMAGES, MAX_CONSTANT_SUB_IMAGES
from ..errors import ArcSynthError, DecompositionError, SolverError, SolverTimeout
from ..functions import F, with_index
from ..types import Color, Transform
from .base import ConcreteImage, ImageCompilation, ImageBuilder
from .wrappers import BackgroundColor, ImageTransformation, ImageWindow, Translation

logger = logging.getLogger(__name__)

Stride = Union[int, str]  # cells per row, or 'free' / 'xor' / 'and'


class SubImages(ConcreteImage):
    """
    A collection of child images drawn together.

    With stride 'xor' a pixel is set when exactly one child sets it, with
    'and' when every child sets it to the same color. Otherwise the first
    non-black child wins and pixels covered by no child take `grid_color`.
    """

    def __init__(self, images: List[ConcreteImage], stride: Stride, grid_color: int = Color.black,
                 fixed_size: bool = False):
        if len(images) > MAX_SUB_IMAGES:
            raise SolverError('Too many sub objects')
        self.list = list(images)
        self.stride = stride
        self.grid_color = grid_color
        self.fixed_size = fixed_size

    @property
    def key(self) -> str:
        return f"SubImage([{','.join(sorted(image.key for image in self.list))}])"

    def get_type(self) -> str:
        first = self.list[0].get_type() if self.list else ''
        stride = 'number' if isinstance(self.stride, int) else self.stride
        return f"Subimages<{first},{stride}{',fixed_size' if self.fixed_size else ''}>"

    def clone(self) -> 'SubImages':
        return SubImages([image.clone() for image in self.list], self.stride, self.grid_color, self.fixed_size)

    def translate(self, dx, dy) -> 'SubImages':
        return SubImages([image.translate(dx, dy) for image in self.list], self.stride, self.grid_color, self.fixed_size)

    def compile(self) -> ImageCompilation:
        children = [image.compile() for image in self.list]
        x0 = min((c.x0 for c in children), default=0)
        x1 = max((c.x1 for c in children), default=0)
        y0 = min((c.y0 for c in children), default=0)
        y1 = max((c.y1 for c in children), default=0)
        grid_color = self.grid_color

        if self.stride == 'xor':
            def at(x, y):
                value = Color.black
                hits = 0
                for child in children:
                    new_value = child.at(x, y)
                    if new_value != Color.black:
                        value = new_value
                        hits += 1
                return value if hits == 1 else Color.black
        elif self.stride == 'and':
            def at(x, y):
                value = None
                for child in children:
                    new_value = child.at(x, y)
                    if new_value == Color.black or (value is not None and new_value != value):
                        return Color.black
                    value = new_value
                return Color.black if value is None else value
        else:
            def at(x, y):
                hit = False
                for child in children:
                    if child.contains(x, y):
                        hit = True
                        color = child.at(x, y)
                        if color != Color.black:
                            return color
                return Color.black if hit else grid_color

        return ImageCompilation(x0, y0, x1, y1, at)

    @property
    def count(self) -> int:
        return len(self.list)

    def number_functions(self) -> List[F]:
        functions = [F.make('count')]
        if self.fixed_size:
            for i, image in enumerate(self.list):
                functions += [f.prefix_list('list', i) for f in image.number_functions()]
        return functions

    def color_functions(self) -> List[F]:
        functions = [F.make('grid_color')]
        if self.fixed_size:
            for i, image in enumerate(self.list):
                functions += [f.prefix_list('list', i) for f in image.color_functions()]
        return functions

    def grid_functions(self) -> List[F]:
        functions = []
        if self.fixed_size:
            for i, image in enumerate(self.list):
                functions += [f.prefix_list('list', i) for f in image.grid_functions()]
        return functions

    def sub_images_functions(self) -> List[F]:
        return [F.make('list')]

    def build_solver_function(self, solver, path: F) -> ImageBuilder:
        """
        Rebuild the collection element by element.

        First try each input collection the solver can map onto this one,
        building the element shape in a sub-solver. Fall back to rebuilding a
        fixed number of elements one by one.
        """
        logger.debug('SubImages.build_solver_function %s', path.path)
        stride = self.stride
        fixed_size = self.fixed_size

        for mapping in solver.find_mapping_sub_solvers(F.make('list').prefix(path)):
            sub_solver = mapping.sub_solver
            boolean_function = mapping.boolean_function
            length_function = mapping.length_function
            generation = sub_solver.generation - 1
            try:
                color_function = solver.build_color_function(F.make('grid_color').prefix(path))
                element_path = F.make('list').generation_item(generation).prefix(path)
                element_builder = self.list[0].build_solver_function(sub_solver, element_path)
            except SolverTimeout:
                raise
            except ArcSynthError as e:
                logger.debug('SubImages mapping rejected: %s', e)
                continue

            def build(image, indices=(), length_function=length_function, boolean_function=boolean_function,
                      element_builder=element_builder, color_function=color_function, generation=generation):
                sub_images = []
                n = length_function(image, indices) or 0
                for i in range(n):
                    new_indices = with_index(indices, generation, i)
                    if boolean_function(image, new_indices):
                        sub_images.append(element_builder(image, new_indices))
                return SubImages(sub_images, stride, color_function(image, indices), fixed_size).set_builders({
                    'color': color_function.path,
                    'discriminator': boolean_function.path,
                })

            logger.debug('SubImages.build_solver_function success')
            return build

        if solver.is_constant_output(F.make('count')) and len(self.list) <= MAX_CONSTANT_SUB_IMAGES:
            try:
                element_builders = [
                    image.build_solver_function(solver, F.make('list', index=i).prefix(path))
                    for i, image in enumerate(self.list)
                ]
                color_function = solver.select_color_function(F.make('grid_color').prefix(path))
                if color_function is not None:
                    def build_fixed(image, indices=()):
                        return SubImages([b(image, indices) for b in element_builders], stride,
                                         color_function(image, indices), fixed_size)
                    return build_fixed
            except SolverTimeout:
                raise
            except ArcSynthError as e:
                logger.debug('SubImages fixed rebuild rejected: %s', e)

        raise SolverError("Can't build solver")

    def grids(self):
        for image in self.list:
            yield from image.grids()

    def images(self):
        yield from self.list


class Alternatives(ConcreteImage):
    """
    Several decompositions of the same grid; renders as the first.

    A branch that failed to decompose is held as None so the remaining
    branches keep their index.
    """

    def __init__(self, alternatives: List[Optional[ConcreteImage]]):
        self.alternatives = list(alternatives)

    @property
    def key(self) -> str:
        return f"Alternatives([{','.join(a.key if a is not None else 'none' for a in self.alternatives)}])"

    def get_type(self) -> str:
        return f"Alternatives<{','.join(a.get_type() if a is not None else 'none' for a in self.alternatives)}>"

    def clone(self) -> 'Alternatives':
        return Alternatives([a.clone() if a is not None else None for a in self.alternatives])

    def translate(self, dx, dy) -> 'Alternatives':
        return Alternatives([a.translate(dx, dy) if a is not None else None for a in self.alternatives])

    def compile(self) -> ImageCompilation:
        for alternative in self.alternatives:
            if alternative is not None:
                return alternative.compile()
        raise DecompositionError('Every alternative failed')

    def _prefixed(self, method: str) -> List[F]:
        functions = []
        for i, alternative in enumerate(self.alternatives):
            if alternative is not None:
                functions += [f.prefix_list('alternatives', i) for f in getattr(alternative, method)()]
        return functions

    def number_functions(self) -> List[F]:
        return self._prefixed('number_functions')

    def color_functions(self) -> List[F]:
        return self._prefixed('color_functions')

    def grid_functions(self) -> List[F]:
        return self._prefixed('grid_functions')

    def sub_images_functions(self) -> List[F]:
        return self._prefixed('sub_images_functions')

    def build_solver_function(self, solver, path: F) -> ImageBuilder:
        logger.debug('Alternatives.build_solver_function %s', path.path)
        for i, alternative in enumerate(self.alternatives):
            if alternative is None:
                continue
            try:
                return alternative.build_solver_function(solver, F.make('alternatives', index=i).prefix(path))
            except SolverTimeout:
                raise
            except ArcSynthError as e:
                logger.debug('Alternative %d rejected: %s', i, e)
        raise SolverError("Can't build alternatives")

    def grids(self):
        for alternative in self.images():
            yield from alternative.grids()

    def images(self):
        yield from (a for a in self.alternatives if a is not None)


# ==============================================================================
# Helpers
# ==============================================================================

def translate(x: float, y: float, image: ConcreteImage) -> Translation:
    return Translation(x, y, image)


def set_background(color: int, image: ConcreteImage) -> BackgroundColor:
    return BackgroundColor(color, image)


def make_object_list(images: List[ConcreteImage]) -> SubImages:
    return SubImages(images, 'free')


def make_rotation(image: ConcreteImage) -> SubImages:
    """The four rotations of an image drawn on top of each other."""
    return SubImages([
        ImageTransformation(t, image)
        for t in (Transform.identity, Transform.rotate_90, Transform.rotate_180, Transform.rotate_270)
    ], 'free')


def make_image_window(image: ConcreteImage) -> ImageWindow:
    c = image.compile()
    return ImageWindow(c.x0, c.y0, c.x1, c.y1, image)
