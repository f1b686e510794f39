"""
Decomposer compiler.

build_decomposer turns a Decomposer tree into a `Grid -> ConcreteImage`
closure. Each node name maps to a builder in a registry; builders receive the
node and return the closure, compiling their children first.
"""

import logging
from typing import Callable, Dict, List

from .abstraction import Abstraction
from .decomposers import Decomposer
from .errors import ArcSynthError, DecompositionError, SolverTimeout
from .grid import Grid
from .images import (
    Alternatives, BackgroundColor, ConcreteImage, ImageData, ImageTransformation, ImageWindow,
    Info, MonochromeColor, Pixel, Scale, SemanticBox, SolidColor, SubImages, Translation, basic_image,
)
from .types import Color, Transform
from .utils import highest, normalize_value, safe_ratio

logger = logging.getLogger(__name__)

GridDecomposer = Callable[[Grid], ConcreteImage]

# Errors that make one decomposition branch fail without aborting its siblings
DECOMPOSITION_FAILURES = (ArcSynthError, ValueError, IndexError, ZeroDivisionError)

_BUILDERS: Dict[str, Callable[[Decomposer], GridDecomposer]] = {}


def _register(name: str):
    def decorator(builder):
        _BUILDERS[name] = builder
        return builder
    return decorator


def build_decomposer(decomposer: Decomposer) -> GridDecomposer:
    """
    Compile a decomposer tree.

    Args:
        decomposer: Root of the tree

    Returns:
        Function mapping a grid to its structured image

    Raises:
        DecompositionError: unknown decomposer name
    """
    logger.debug('build_decomposer for %s', decomposer.name)
    builder = _BUILDERS.get(decomposer.name)
    if builder is None:
        raise DecompositionError(f"Unknown decomposer '{decomposer.name}'")
    return builder(decomposer)


def _child(decomposer: Decomposer) -> GridDecomposer:
    if decomposer.decomposer is None:
        raise DecompositionError(f"Decomposer '{decomposer.name}' needs a child")
    return build_decomposer(decomposer.decomposer)


def _first_success(decomposers: List[GridDecomposer]) -> GridDecomposer:
    def decompose(grid: Grid) -> ConcreteImage:
        for d in decomposers:
            try:
                return d(grid)
            except SolverTimeout:
                raise
            except DECOMPOSITION_FAILURES as e:
                logger.debug('Decomposition of %s failed: %s', grid, e)
        raise DecompositionError("Can't decompose image")
    return decompose


# ==============================================================================
# Leaves
# ==============================================================================

@_register('basic_grid')
def _basic_grid(decomposer):
    return basic_image


@_register('semantic_box')
def _semantic_box(decomposer):
    def decompose(grid):
        if not grid.is_semantic_box():
            raise DecompositionError('Not a semantic box')
        box = grid.get_semantic_box()
        return SemanticBox(grid.width, grid.height, box.data.ravel().tolist())
    return decompose


@_register('solid_color')
def _solid_color(decomposer):
    def decompose(grid):
        colors = grid.colors()
        if len(colors) > 1:
            raise DecompositionError('not-a-solid-color')
        return SolidColor(colors[0] if colors else None)
    return decompose


@_register('pixel_grid')
def _pixel_grid(decomposer):
    def decompose(grid):
        sub_images = []
        index = 0
        for y0 in range(grid.height):
            for x0 in range(grid.width):
                sub_images.append(ImageData([index, x0, y0], Translation(x0, y0, Pixel(grid.at(x0, y0)))))
                index += 1
        return SubImages(sub_images, 'free')
    return decompose


# ==============================================================================
# Wrappers
# ==============================================================================

@_register('image_window')
def _image_window(decomposer):
    child = _child(decomposer)
    return lambda grid: ImageWindow(0, 0, grid.width, grid.height, child(grid))


@_register('scaled')
def _scaled(decomposer):
    child = _child(decomposer)

    def decompose(grid):
        with_grid = grid.get_scaling_factor_with_grid_color()
        if with_grid is not None:
            scale, grid_color = with_grid
            return Scale(scale, child(grid.inv_scale_with_grid(scale)), grid_color)
        s = grid.get_scaling_factor()
        return Scale(s, child(grid.inv_scale(s)))
    return decompose


def _tiling(t: Transform):
    def builder(decomposer):
        child = _child(decomposer)
        return lambda grid: ImageTransformation(t, child(grid.find_tile()))
    return builder


_register('tile')(_tiling(Transform.tile))
_register('tile_x')(_tiling(Transform.tile_x))
_register('tile_y')(_tiling(Transform.tile_y))


@_register('transform')
def _transform(decomposer):
    child = _child(decomposer)
    t = Transform(decomposer.transform or 0)
    return lambda grid: ImageTransformation(t, child(ImageTransformation(t, basic_image(grid)).to_grid()))


@_register('trim_object')
def _trim_object(decomposer):
    child = _child(decomposer)

    def decompose(grid):
        trimmed, x, y = grid.trim()
        return Translation(x, y, child(trimmed))
    return decompose


@_register('trim_object_center')
def _trim_object_center(decomposer):
    child = _child(decomposer)

    def decompose(grid):
        trimmed, x, y = grid.trim()
        half_w = trimmed.width / 2
        half_h = trimmed.height / 2
        return Translation(x + half_w, y + half_h, child(trimmed).translate(-half_w, -half_h))
    return decompose


@_register('monochrome')
def _monochrome(decomposer):
    child = _child(decomposer)

    def decompose(grid):
        colors = grid.colors(Color.black)
        if len(colors) > 1:
            raise DecompositionError('not-a-monochrome-image')
        mask = grid.map_colors(lambda c: Color.false if c == Color.black else Color.true)
        return MonochromeColor(colors[0] if colors else Color.blue, child(mask))
    return decompose


def swap_background(grid: Grid, color: int) -> Grid:
    return grid.map_colors(lambda c: Color.black if c == color else color if c == Color.black else c)


@_register('background')
def _background(decomposer):
    child = _child(decomposer)
    background_color = decomposer.background_color

    def decompose(grid):
        color = background_color
        if color is None:
            color = highest(grid.colors(), grid.count_color)
        return BackgroundColor(color, child(swap_background(grid, color)))
    return decompose


@_register('complement')
def _complement(decomposer):
    child = _child(decomposer)
    return lambda grid: child(grid.complement())


@_register('centered')
def _centered(decomposer):
    child = _child(decomposer)

    def decompose(grid):
        half_w = grid.width / 2
        half_h = grid.height / 2
        return Translation(half_w, half_h, Translation(-half_w, -half_h, child(grid)))
    return decompose


@_register('add_info')
def _add_info(decomposer):
    first = _child(decomposer)
    if decomposer.decomposer2 is None:
        raise DecompositionError("Decomposer 'add_info' needs two children")
    second = build_decomposer(decomposer.decomposer2)
    return lambda grid: Info(first(grid), second(grid))


# ==============================================================================
# Collections
# ==============================================================================

def object_list_of(child: GridDecomposer, corners: bool) -> GridDecomposer:
    return lambda grid: SubImages([child(obj) for obj in grid.foreach_object(corners)], 'free')


def color_decomposition_of(child: GridDecomposer) -> GridDecomposer:
    """One monochrome layer per non-black color, by ascending color."""
    def decompose(grid):
        layers = []
        for color in sorted(grid.colors(Color.black)):
            mask = grid.map_colors(lambda c, color=color: Color.true if c == color else Color.false)
            layers.append(MonochromeColor(color, child(mask)))
        return SubImages(layers, 'free')
    return decompose


def _monochrome_objects(grid: Grid, child: GridDecomposer, corners: bool) -> List[ConcreteImage]:
    objects = []
    for layer in color_decomposition_of(object_list_of(child, corners))(grid).list:
        for obj in layer.image.list:
            objects.append(MonochromeColor(layer.color, obj))
    return objects


@_register('object_list')
def _object_list(decomposer):
    return object_list_of(_child(decomposer), False)


@_register('object_list2')
def _object_list2(decomposer):
    return object_list_of(_child(decomposer), True)


@_register('block_list')
def _block_list(decomposer):
    child = _child(decomposer)
    return lambda grid: SubImages([child(block) for block in grid.foreach_block()], 'free')


@_register('color_decomposition')
def _color_decomposition(decomposer):
    return color_decomposition_of(_child(decomposer))


@_register('monochrome_object_list')
def _monochrome_object_list(decomposer):
    child = _child(decomposer)
    return lambda grid: SubImages(_monochrome_objects(grid, child, False), 'free')


@_register('monochrome_object_list2')
def _monochrome_object_list2(decomposer):
    child = _child(decomposer)
    return lambda grid: SubImages(_monochrome_objects(grid, child, True), 'free')


@_register('horizontal_decomposition')
def _horizontal_decomposition(decomposer):
    child = _child(decomposer)
    fixed_size = bool(decomposer.fixed_size)

    def decompose(grid):
        rows = []
        for y in range(grid.height):
            if (grid.data[y] == Color.black).all():
                continue
            row = grid.clear_clone()
            row.data[y] = grid.data[y]
            rows.append(child(row))
        return SubImages(rows, 'free', Color.black, fixed_size)
    return decompose


@_register('find_master_grid')
def _find_master_grid(decomposer):
    child = _child(decomposer)
    default_grid_color = decomposer.default_grid_color
    fixed_size = bool(decomposer.fixed_size)

    def decompose(grid):
        master = grid.find_master_grid(default_grid_color)
        stride = master.stride
        rows = len(master.cells) // stride
        cells = []
        for index, cell in enumerate(master.cells):
            col, row = index % stride, index // stride
            data = [index, col, row, safe_ratio(col, stride - 1), safe_ratio(row, rows - 1)]
            cells.append(ImageData([normalize_value(v) for v in data], Translation(cell.x, cell.y, child(cell.grid))))
        grid_color = Color.black if master.grid_color is None else master.grid_color
        return SubImages(cells, stride, grid_color, fixed_size)
    return decompose


def _cells(grid: Grid, nx: int, ny: int, child: GridDecomposer) -> List[ConcreteImage]:
    """Cells of nx by ny pixels in row-major order, tagged with their position."""
    cells = []
    index = 0
    for y0 in range(0, grid.height, ny):
        for x0 in range(0, grid.width, nx):
            data = [index, x0 // nx, y0 // ny, safe_ratio(x0, grid.width - nx), safe_ratio(y0, grid.height - ny)]
            cell = child(grid.subgrid(x0, y0, x0 + nx, y0 + ny))
            cells.append(ImageData([normalize_value(v) for v in data], Translation(x0, y0, cell)))
            index += 1
    return cells


@_register('master_grid')
def _master_grid(decomposer):
    child = _child(decomposer)
    sx, sy = decomposer.sx or 0, decomposer.sy or 0

    def decompose(grid):
        nx = grid.width // sx if sx else 0
        ny = grid.height // sy if sy else 0
        if nx == 0 or ny == 0:
            raise DecompositionError('master_grid() does not work')
        return SubImages(_cells(grid, nx, ny, child), 'free', Color.black, True)
    return decompose


@_register('master_grid2')
def _master_grid2(decomposer):
    child = _child(decomposer)
    nx, ny = decomposer.nx or 0, decomposer.ny or 0

    def decompose(grid):
        if nx == 0 or ny == 0:
            raise DecompositionError('master_grid() does not work')
        return SubImages(_cells(grid, nx, ny, child), 'free')
    return decompose


@_register('alternatives')
def _alternatives(decomposer):
    """Every branch is tried; a failing branch is marked and left empty."""
    branches = decomposer.decomposers or []
    compiled = [build_decomposer(d) for d in branches]

    def decompose(grid):
        images = []
        for branch, d in zip(branches, compiled):
            try:
                images.append(d(grid))
            except SolverTimeout:
                raise
            except DECOMPOSITION_FAILURES as e:
                logger.debug('Alternative %s failed: %s', branch.name, e)
                images.append(None)
                branch.failed = True
        return Alternatives(images)
    return decompose


# ==============================================================================
# Abstractions
# ==============================================================================

def _abstraction_name(decomposer: Decomposer) -> str:
    if not decomposer.abstraction_name:
        raise DecompositionError(f"Decomposer '{decomposer.name}' needs an abstraction name")
    return decomposer.abstraction_name


@_register('monochrome_object_list_abstraction')
def _monochrome_object_list_abstraction(decomposer):
    name = _abstraction_name(decomposer)
    child = _first_success([build_decomposer(d) for d in decomposer.decomposers or []])
    return lambda grid: Abstraction(name, _monochrome_objects(grid, child, False))


@_register('monochrome_decomposition_abstraction')
def _monochrome_decomposition_abstraction(decomposer):
    name = _abstraction_name(decomposer)
    child = _first_success([build_decomposer(d) for d in decomposer.decomposers or []])
    return lambda grid: Abstraction(name, color_decomposition_of(child)(grid).list)


@_register('simple_abstraction')
def _simple_abstraction(decomposer):
    name = _abstraction_name(decomposer)
    child = _child(decomposer)
    return lambda grid: Abstraction(name, [child(grid)])
