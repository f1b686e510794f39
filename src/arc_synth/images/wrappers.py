"""
Image variants wrapping a single child: recoloring, data tags, windows,
scaling, translation and geometric transforms.
"""

import logging
import math
from typing import List, Sequence, Union

from ..errors import CantBuildNumberFunction
from ..functions import F
from ..types import Color, Transform
from .base import ConcreteImage, WrapperImage, ImageCompilation, ImageBuilder

logger = logging.getLogger(__name__)

INFINITY = float('inf')

Anchor = Union[int, str]  # 0, 1, 'zero' or 'center'


class MonochromeColor(WrapperImage):
    """Paints every non-black pixel of the child with one color."""

    def __init__(self, color: int, image: ConcreteImage):
        self.color = color
        self.image = image

    @property
    def key(self) -> str:
        return f"MonoChromeColor({self.color}, {self.image.key})"

    def get_type(self) -> str:
        return f"MonochromeColor<{self.image.get_type()}>"

    def clone(self) -> 'MonochromeColor':
        return MonochromeColor(self.color, self.image.clone())

    def translate(self, dx, dy) -> 'MonochromeColor':
        return MonochromeColor(self.color, self.image.translate(dx, dy))

    def compile(self) -> ImageCompilation:
        child = self.image.compile()
        color = self.color
        return ImageCompilation(child.x0, child.y0, child.x1, child.y1,
                                lambda x, y: color if child.at(x, y) != Color.black else Color.black)

    def color_functions(self) -> List[F]:
        return [F.make('color')] + super().color_functions()

    def build_solver_function(self, solver, path: F) -> ImageBuilder:
        logger.debug('MonochromeColor.build_solver_function %s', path.path)
        color_function = solver.build_color_function(F.make('color').prefix(path))
        image_function = self.build_image_function(solver, path)

        def build(image, indices=()):
            return MonochromeColor(color_function(image, indices), image_function(image, indices)) \
                .set_builders({'color': color_function.path})

        return build


class BackgroundColor(WrapperImage):
    """Swaps the background color with black."""

    def __init__(self, background_color: int, image: ConcreteImage):
        self.background_color = background_color
        self.image = image

    @property
    def key(self) -> str:
        return f"BackgroundColor({self.background_color}, {self.image.key})"

    def get_type(self) -> str:
        return f"BackgroundColor<{self.image.get_type()}>"

    def clone(self) -> 'BackgroundColor':
        return BackgroundColor(self.background_color, self.image.clone())

    def translate(self, dx, dy) -> 'BackgroundColor':
        return BackgroundColor(self.background_color, self.image.translate(dx, dy))

    def compile(self) -> ImageCompilation:
        child = self.image.compile()
        bg = self.background_color

        def at(x, y):
            color = child.at(x, y)
            if color == bg:
                return Color.black
            if color == Color.black:
                return bg
            return color

        return ImageCompilation(child.x0, child.y0, child.x1, child.y1, at)

    def color_functions(self) -> List[F]:
        return [F.make('background_color')] + super().color_functions()

    def build_solver_function(self, solver, path: F) -> ImageBuilder:
        logger.debug('BackgroundColor.build_solver_function %s', path.path)
        color_function = solver.build_color_function(F.make('background_color').prefix(path))
        image_function = self.build_image_function(solver, path)

        def build(image, indices=()):
            return BackgroundColor(color_function(image, indices), image_function(image, indices)) \
                .set_builders({'color': color_function.path})

        return build


class ImageData(WrapperImage):
    """Tags the child with numeric data (indices, relative positions)."""

    def __init__(self, data: Sequence[float], image: ConcreteImage):
        self.data = list(data)
        self.image = image

    @property
    def key(self) -> str:
        return f"ImageData([{','.join(str(v) for v in self.data)}])"

    def get_type(self) -> str:
        return f"ImageData<{self.image.get_type()}>"

    def clone(self) -> 'ImageData':
        return ImageData(self.data, self.image.clone())

    def translate(self, dx, dy) -> 'ImageData':
        return ImageData(self.data, self.image.translate(dx, dy))

    def compile(self) -> ImageCompilation:
        return self.image.compile()

    def number_functions(self) -> List[F]:
        return [F.make('data', index=i) for i in range(len(self.data))] + super().number_functions()

    def build_solver_function(self, solver, path: F) -> ImageBuilder:
        return self.build_image_function(solver, path)


class ImageWindow(WrapperImage):
    """Clips the child to [x0, x1) x [y0, y1)."""

    def __init__(self, x0: float, y0: float, x1: float, y1: float, image: ConcreteImage):
        self.x0 = x0
        self.y0 = y0
        self.x1 = x1
        self.y1 = y1
        self.image = image

    @property
    def key(self) -> str:
        return f"ImageWindow({self.x0}, {self.y0}, {self.x1}, {self.y1}, {self.image.key})"

    def get_type(self) -> str:
        return f"ImageWindow<{self.image.get_type()}>"

    def clone(self) -> 'ImageWindow':
        return ImageWindow(self.x0, self.y0, self.x1, self.y1, self.image.clone())

    def translate(self, dx, dy) -> 'ImageWindow':
        return ImageWindow(self.x0 + dx, self.y0 + dy, self.x1 + dx, self.y1 + dy, self.image.translate(dx, dy))

    def compile(self) -> ImageCompilation:
        child = self.image.compile()
        x0, y0, x1, y1 = self.x0, self.y0, self.x1, self.y1

        def at(x, y):
            if x < x0 or x >= x1 or y < y0 or y >= y1:
                return Color.black
            return child.at(x, y)

        return ImageCompilation(x0, y0, x1, y1, at)

    @property
    def width(self):
        return self.x1 - self.x0

    @property
    def height(self):
        return self.y1 - self.y0

    @property
    def area(self):
        return self.width * self.height

    def number_functions(self) -> List[F]:
        names = ['x0', 'x1', 'width', 'y0', 'y1', 'height', 'area']
        return [F.make(name) for name in names] + super().number_functions()

    def build_solver_function(self, solver, path: F) -> ImageBuilder:
        """Each edge may come from its own function or from the opposite edge and the size."""
        logger.debug('ImageWindow.build_solver_function %s', path.path)

        def select(name):
            return solver.select_number_function(F.make(name).prefix(path))

        sx0, sx1, sy0, sy1 = select('x0'), select('x1'), select('y0'), select('y1')
        width, height = select('width'), select('height')

        x0 = sx0 or (F.minus(sx1, width) if sx1 and width else None)
        y0 = sy0 or (F.minus(sy1, height) if sy1 and height else None)
        x1 = sx1 or (F.plus(sx0, width) if sx0 and width else None)
        y1 = sy1 or (F.plus(sy0, height) if sy0 and height else None)

        if x0 and x1 and y0 and y1:
            image_function = self.build_image_function(solver, path)

            def build(image, indices=()):
                return ImageWindow(
                    x0(image, indices), y0(image, indices),
                    x1(image, indices), y1(image, indices),
                    image_function(image, indices),
                ).set_builders({'x0': x0.path, 'y0': y0.path, 'x1': x1.path, 'y1': y1.path})

            return build

        if not width and (not x0 or not x1):
            raise CantBuildNumberFunction(F.make('width').prefix(path))
        if not x0:
            raise CantBuildNumberFunction(F.make('x0').prefix(path))
        if not height and (not y0 or not y1):
            raise CantBuildNumberFunction(F.make('height').prefix(path))
        raise CantBuildNumberFunction(F.make('y0').prefix(path))


class Scale(WrapperImage):
    """
    Integer upscaling of the child, optionally with 1-cell separator lines
    of `grid_color` between the blocks.
    """

    def __init__(self, scale: int, image: ConcreteImage, grid_color: int = Color.no_color):
        self.scale = scale
        self.image = image
        self.grid_color = grid_color

    @property
    def key(self) -> str:
        return f"Scale({self.scale}, {self.grid_color}, {self.image.key})"

    def get_type(self) -> str:
        return f"Scale<{self.image.get_type()}>"

    def clone(self) -> 'Scale':
        return Scale(self.scale, self.image.clone(), self.grid_color)

    def translate(self, dx, dy) -> 'Scale':
        return Scale(self.scale, self.image.translate(dx / self.scale, dy / self.scale), self.grid_color)

    def compile(self) -> ImageCompilation:
        child = self.image.compile()
        s = self.scale
        cx0, cy0 = child.x0, child.y0

        if self.grid_color == Color.no_color:
            return ImageCompilation(
                cx0, cy0, cx0 + s * (child.x1 - cx0), cy0 + s * (child.y1 - cy0),
                lambda x, y: child.at(cx0 + math.floor((x - cx0) / s), cy0 + math.floor((y - cy0) / s)),
            )

        width = s * (child.x1 - cx0) + child.x1 - cx0 - 1
        height = s * (child.y1 - cy0) + child.y1 - cy0 - 1
        grid_color = self.grid_color

        def at(x, y):
            if not (cx0 <= x < cx0 + width and cy0 <= y < cy0 + height):
                return Color.black
            if math.floor(x - cx0) % (s + 1) == s or math.floor(y - cy0) % (s + 1) == s:
                return grid_color
            return child.at(cx0 + math.floor((x - cx0) / (s + 1)), cy0 + math.floor((y - cy0) / (s + 1)))

        return ImageCompilation(cx0, cy0, cx0 + width, cy0 + height, at)

    def number_functions(self) -> List[F]:
        return [F.make('scale')] + super().number_functions()

    def color_functions(self) -> List[F]:
        return [F.make('grid_color')] + super().color_functions()

    def build_solver_function(self, solver, path: F) -> ImageBuilder:
        logger.debug('Scale.build_solver_function %s', path.path)
        scale_function = solver.build_number_function(F.make('scale').prefix(path))
        grid_color_function = solver.build_color_function(F.make('grid_color').prefix(path))
        image_function = self.build_image_function(solver, path)

        def build(image, indices=()):
            return Scale(
                scale_function(image, indices),
                image_function(image, indices),
                grid_color_function(image, indices),
            ).set_builders({'scale': scale_function.path, 'grid': grid_color_function.path})

        return build


def _anchor(anchor: Anchor, value: float, c0: float, c1: float):
    """(offset, low, high) for one axis given the child extent [c0, c1)."""
    if anchor == 0:
        low = value
        offset = low - c0
        return offset, low, offset + c1
    if anchor == 1:
        high = value
        offset = high - c1
        return offset, offset + c0, high
    if anchor == 'center':
        offset = value - 0.5 * (c0 + c1)
        return offset, offset + c0, offset + c1
    return value, value + c0, value + c1


_ANCHOR_NAMES = {0: ('x0', 'y0'), 1: ('x1', 'y1'), 'center': ('cx', 'cy'), 'zero': ('x', 'y')}


class Translation(WrapperImage):
    """
    Moves the child. The position given at construction is interpreted
    according to the anchor: 0 sets the low edge, 1 the high edge, 'zero'
    the raw offset and 'center' the centroid.
    """

    def __init__(self, x: float, y: float, image: ConcreteImage, anchor_x: Anchor = 'zero', anchor_y: Anchor = 'zero'):
        self.image = image
        child = image.compile()
        self.x, self.x0, self.x1 = _anchor(anchor_x, x, child.x0, child.x1)
        self.y, self.y0, self.y1 = _anchor(anchor_y, y, child.y0, child.y1)

    @property
    def key(self) -> str:
        return f"Translation({self.x}, {self.y}, {self.x0}, {self.y0}, {self.x1}, {self.y1}, {self.image.key})"

    def get_type(self) -> str:
        return f"Translation<{self.image.get_type()}>"

    def clone(self) -> 'Translation':
        return Translation(self.x, self.y, self.image.clone())

    def translate(self, dx, dy) -> 'Translation':
        return Translation(self.x + dx, self.y + dy, self.image.clone())

    def compile(self) -> ImageCompilation:
        child = self.image.compile()
        tx, ty = self.x, self.y
        return ImageCompilation(child.x0 + tx, child.y0 + ty, child.x1 + tx, child.y1 + ty,
                                lambda x, y: child.at(x - tx, y - ty))

    @property
    def cx(self):
        return 0.5 * (self.x0 + self.x1)

    @property
    def cy(self):
        return 0.5 * (self.y0 + self.y1)

    def number_functions(self) -> List[F]:
        names = ['x', 'y', 'x0', 'y0', 'x1', 'y1', 'cx', 'cy']
        return [F.make(name) for name in names] + super().number_functions()

    def build_solver_function(self, solver, path: F) -> ImageBuilder:
        """Try the raw offset, then each edge, and fall back to the center."""
        logger.debug('Translation.build_solver_function %s', path.path)

        def axis(axis_index: int):
            for anchor in ('zero', 0, 1):
                name = _ANCHOR_NAMES[anchor][axis_index]
                function = solver.select_number_function(F.make(name).prefix(path))
                if function is not None:
                    return anchor, function
            name = _ANCHOR_NAMES['center'][axis_index]
            return 'center', solver.build_number_function(F.make(name).prefix(path))

        anchor_x, x_function = axis(0)
        anchor_y, y_function = axis(1)
        image_function = self.build_image_function(solver, path)

        builders = {
            _ANCHOR_NAMES[anchor_x][0]: x_function.path,
            _ANCHOR_NAMES[anchor_y][1]: y_function.path,
        }

        def build(image, indices=()):
            return Translation(
                x_function(image, indices), y_function(image, indices),
                image_function(image, indices), anchor_x, anchor_y,
            ).set_builders(builders)

        return build


def _wrap(r: float) -> float:
    return r - math.floor(r)


def _bounce(r: float) -> float:
    f = math.floor(r)
    return r - f if (int(f) & 1) == 0 else 1 - r + f


class ImageTransformation(WrapperImage):
    """The 8 finite symmetries plus the unbounded tiling/ping-pong/rotation modes."""

    def __init__(self, transformation: Transform, image: ConcreteImage):
        self.transformation = Transform(transformation)
        self.image = image

    @property
    def key(self) -> str:
        return f"ImageTransformation({int(self.transformation)}, {self.image.key})"

    def get_type(self) -> str:
        return f"ImageTransformation<{self.image.get_type()}>"

    def clone(self) -> 'ImageTransformation':
        return ImageTransformation(self.transformation, self.image.clone())

    def compile(self) -> ImageCompilation:
        child = self.image.compile()
        at = child.at
        x0, y0, x1, y1 = child.x0, child.y0, child.x1, child.y1
        dx = x1 - x0
        dy = y1 - y0
        t = self.transformation

        if t == Transform.identity:
            return ImageCompilation(x0, y0, x1, y1, at)
        if t == Transform.flip_x:
            return ImageCompilation(-x1, y0, -x0, y1, lambda x, y: at(-x, y))
        if t == Transform.flip_y:
            return ImageCompilation(x0, -y1, x1, -y0, lambda x, y: at(x, -y))
        if t == Transform.rotate_180:
            return ImageCompilation(-x1, -y1, -x0, -y0, lambda x, y: at(-x, -y))
        if t == Transform.transpose:
            return ImageCompilation(y0, x0, y1, x1, lambda x, y: at(y, x))
        if t == Transform.opposite_transpose:
            return ImageCompilation(-y1, -x1, -y0, -x0, lambda x, y: at(-y, -x))
        if t == Transform.rotate_90:
            return ImageCompilation(-y1, x0, -y0, x1, lambda x, y: at(y, -x))
        if t == Transform.rotate_270:
            return ImageCompilation(y0, -x1, y1, -x0, lambda x, y: at(-y, x))

        if t == Transform.rotation:
            radius = max(abs(x0), abs(x1), abs(y0), abs(y1))
            rotations = [at] + [ImageTransformation(r, self.image).compile().at
                                for r in (Transform.rotate_90, Transform.rotate_180, Transform.rotate_270)]

            def rotation_at(x, y):
                color = Color.black
                for rotated in rotations:
                    color = rotated(x, y)
                    if color != Color.black:
                        return color
                return color

            return ImageCompilation(-radius, -radius, radius, radius, rotation_at)

        if dx == 0 or dy == 0:
            return ImageCompilation(-INFINITY, -INFINITY, INFINITY, INFINITY, lambda x, y: Color.black)

        def periodic(fx, fy):
            return lambda x, y: at(x0 + dx * fx((x - x0) / dx), y0 + dy * fy((y - y0) / dy))

        if t == Transform.tile:
            return ImageCompilation(-INFINITY, -INFINITY, INFINITY, INFINITY, periodic(_wrap, _wrap))
        if t == Transform.tile_x:
            return ImageCompilation(-INFINITY, y0, INFINITY, y1, lambda x, y: at(x0 + dx * _wrap((x - x0) / dx), y))
        if t == Transform.tile_y:
            return ImageCompilation(x0, -INFINITY, x1, INFINITY, lambda x, y: at(x, y0 + dy * _wrap((y - y0) / dy)))
        if t == Transform.ping_pong:
            return ImageCompilation(-INFINITY, -INFINITY, INFINITY, INFINITY, periodic(_bounce, _bounce))
        if t == Transform.ping_pong_x:
            return ImageCompilation(-INFINITY, -INFINITY, INFINITY, INFINITY, periodic(_bounce, _wrap))
        if t == Transform.ping_pong_y:
            return ImageCompilation(-INFINITY, -INFINITY, INFINITY, INFINITY, periodic(_wrap, _bounce))

        raise ValueError(f"Unknown transform {t}")

    def build_solver_function(self, solver, path: F) -> ImageBuilder:
        logger.debug('ImageTransformation.build_solver_function %s', path.path)
        image_function = self.build_image_function(solver, path)
        transformation = self.transformation
        return lambda image, indices=(): ImageTransformation(transformation, image_function(image, indices))


class Concentric(WrapperImage):
    """Rings: the child's first row read outward by Chebyshev distance."""

    def __init__(self, image: ConcreteImage):
        self.image = image

    @property
    def key(self) -> str:
        return 'Concentric()'

    def get_type(self) -> str:
        return f"Concentric<{self.image.get_type()}>"

    def clone(self) -> 'Concentric':
        return Concentric(self.image.clone())

    def translate(self, dx, dy) -> 'Concentric':
        return Concentric(self.image.translate(dx, dy))

    def compile(self) -> ImageCompilation:
        child = self.image.compile()
        r = child.x1
        return ImageCompilation(-r, -r, r, r, lambda x, y: child.at(max(abs(x), abs(y)), 0))

    def number_functions(self) -> List[F]:
        return []

    def color_functions(self) -> List[F]:
        return []

    def grid_functions(self) -> List[F]:
        return []

    def sub_images_functions(self) -> List[F]:
        return []


class Info(WrapperImage):
    """Renders `image` inside the union box of `image` and `info`; both are traversed."""

    def __init__(self, image: ConcreteImage, info: ConcreteImage):
        self.image = image
        self.info = info

    @property
    def key(self) -> str:
        return f"Info({self.image.key}, {self.info.key})"

    def get_type(self) -> str:
        return f"Info<{self.image.get_type()},{self.info.get_type()}>"

    def clone(self) -> 'Info':
        return Info(self.image.clone(), self.info.clone())

    def translate(self, dx, dy) -> 'Info':
        return Info(self.image.translate(dx, dy), self.info.translate(dx, dy))

    def compile(self) -> ImageCompilation:
        c1 = self.image.compile()
        c2 = self.info.compile()
        return ImageCompilation(min(c1.x0, c2.x0), min(c1.y0, c2.y0), max(c1.x1, c2.x1), max(c1.y1, c2.y1), c1.at)

    def number_functions(self) -> List[F]:
        return []

    def color_functions(self) -> List[F]:
        return []

    def grid_functions(self) -> List[F]:
        return []

    def sub_images_functions(self) -> List[F]:
        return []

    def grids(self):
        yield from self.image.grids()
        yield from self.info.grids()

    def images(self):
        yield self.image
        yield self.info
