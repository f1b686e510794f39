"""
Cellular rasterization.

A Rasterizer sees a grid as one Tile per cell: the colors in a square window
around the cell. A learned tile function predicts the color each tile's
center should take; painting a cell updates the windows of its neighbours,
so painting repeats until no tile changes. Layers stack such passes, each
layer starting from the previous one's tiles.
"""

import logging
from typing import Callable, Dict, List, Optional, Set, Tuple

from .config import RASTERIZER_MAX_ATTEMPTS, RASTERIZER_MAX_LAYERS, RASTERIZER_RADIUS, SolverOptions
from .core.solver import Solver, SubFunctions
from .errors import ArcSynthError, SolverTimeout
from .functions import F
from .grid import Grid
from .images.base import ConcreteImage, ImageCompilation, SymbolicImage
from .types import Color

logger = logging.getLogger(__name__)


# ==============================================================================
# Tile
# ==============================================================================

class Tile(SymbolicImage):
    """
    The (2 * radius + 1)^2 window centered on cell (x, y).

    `origin` holds the input colors (no_color outside the grid) and `data`
    the colors painted so far.
    """

    def __init__(self, x: int, y: int, radius: int, input_grid: Grid, output_grid: Optional[Grid] = None,
                 data: Optional[List[int]] = None):
        self.x = x
        self.y = y
        self.radius = radius
        self.input_grid = input_grid
        self.output_grid = output_grid
        self.coord = y * input_grid.width + x
        self.size = 2 * radius + 1
        self.origin = []
        for yy in range(y - radius, y + radius + 1):
            for xx in range(x - radius, x + radius + 1):
                color = input_grid.at(xx, yy)
                self.origin.append(Color.no_color if color is None else color)
        self.data = list(data) if data is not None else list(self.origin)
        self.key = f"{self.coord}:{','.join(str(int(c)) for c in self.data)}"

    def set(self, x: int, y: int, color: int) -> 'Tile':
        """Copy of this tile with cell (x, y) painted, when inside the window."""
        data = list(self.data)
        dx = x - self.x
        dy = y - self.y
        if abs(dx) <= self.radius and abs(dy) <= self.radius:
            data[(dy + self.radius) * self.size + dx + self.radius] = color
        return Tile(self.x, self.y, self.radius, self.input_grid, self.output_grid, data)

    def at(self, x: int, y: int) -> int:
        dx = x - self.x
        dy = y - self.y
        if abs(dx) <= self.radius and abs(dy) <= self.radius:
            return self.data[(dy + self.radius) * self.size + dx + self.radius]
        return Color.no_color

    def at_center(self) -> int:
        return self.at(self.x, self.y)

    @property
    def target(self) -> Optional[int]:
        """Expected output color, no_color when the tile already shows it."""
        if self.output_grid is None:
            return None
        color = self.output_grid.at(self.x, self.y)
        return Color.no_color if color == self.at(self.x, self.y) else color

    def number_functions(self) -> List[F]:
        return [F.make('x'), F.make('y')]

    def color_functions(self) -> List[F]:
        return [F.make('data', index=i) for i in range(len(self.data))] + \
               [F.make('origin', index=i) for i in range(len(self.origin))]

    def __repr__(self) -> str:
        return f"Tile({self.x}, {self.y}, {self.key})"


# ==============================================================================
# Rasterizer
# ==============================================================================

class Rasterizer(ConcreteImage):
    """
    Per-layer tile tables of one grid.

    tiles[layer] only grows: painting adds the updated tile and points the
    cell's entry of tile_grid[layer] at it.
    """

    def __init__(self, tile_radius: int, image: ConcreteImage, input_grid: Grid, output_grid: Optional[Grid] = None):
        self.tile_radius = tile_radius
        self.image = image
        self.input_grid = input_grid
        self.output_grid = output_grid
        self.width = input_grid.width
        self.height = input_grid.height
        self.tile_index: List[Dict[str, int]] = []
        self.tiles: List[List[Tile]] = []
        self.tile_grid: List[List[int]] = []
        self.tile_functions: List[F] = []
        self.reset_tiles(0)

    @property
    def key(self) -> str:
        return f"Rasterizer({self.width}x{self.height}, {len(self.tile_functions)} layers)"

    def get_type(self) -> str:
        return 'Rasterizer'

    def clone(self) -> 'Rasterizer':
        clone = Rasterizer(self.tile_radius, self.image, self.input_grid, self.output_grid)
        clone.tile_functions = list(self.tile_functions)
        return clone

    def compile(self) -> ImageCompilation:
        grid = self.final_grid()
        return ImageCompilation(0, 0, self.width, self.height, lambda x, y: grid.at(int(x), int(y)))

    def tile_at(self, layer: int, x: int, y: int) -> Optional[Tile]:
        if x < 0 or x >= self.width or y < 0 or y >= self.height:
            return None
        return self.tiles[layer][self.tile_grid[layer][y * self.width + x]]

    def set_tile(self, layer: int, tile: Tile) -> int:
        index = self.tile_index[layer].get(tile.key)
        if index is None:
            index = len(self.tiles[layer])
            self.tiles[layer].append(tile)
            self.tile_index[layer][tile.key] = index
        self.tile_grid[layer][tile.coord] = index
        return index

    def grid_at_layer(self, layer: int) -> Grid:
        grid = Grid(self.width, self.height)
        for x in range(self.width):
            for y in range(self.height):
                color = self.tile_at(layer, x, y).at_center()
                grid.set(x, y, Color.black if color < 0 else color)
        return grid

    def final_grid(self) -> Grid:
        if self.tile_functions:
            return self.grid_at_layer(len(self.tile_functions) - 1)
        return Grid(self.width, self.height, Color.not_written)

    def draw_at(self, layer: int, x: int, y: int, color: int, coords_affected: Set[int]) -> None:
        """Paint (x, y) into every tile whose window covers it."""
        radius = self.tile_radius
        for xx in range(x - radius, x + radius + 1):
            for yy in range(y - radius, y + radius + 1):
                tile = self.tile_at(layer, xx, yy)
                if tile is not None:
                    updated = tile.set(x, y, color)
                    coords_affected.add(updated.coord)
                    self.set_tile(layer, updated)

    def reset_tiles(self, layer: int) -> None:
        """Point every cell of layer at its starting tile: input windows, or the previous layer's tiles."""
        while len(self.tile_index) <= layer:
            self.tile_index.append({})
            self.tiles.append([])
            self.tile_grid.append(list(range(self.width * self.height)))
        for x in range(self.width):
            for y in range(self.height):
                if layer == 0:
                    tile = Tile(x, y, self.tile_radius, self.input_grid, self.output_grid)
                else:
                    tile = self.tile_at(layer - 1, x, y)
                self.set_tile(layer, tile)

    def rasterize_layer(self, layer: int) -> Tuple[int, int]:
        """
        Apply the layer's tile function until no tile changes.

        With an output grid, a predicted color that disagrees with it is
        counted as an error instead of being painted.

        Returns:
            (error_count, new_tile_count)
        """
        self.reset_tiles(layer)
        func = self.tile_functions[layer] if layer < len(self.tile_functions) else None
        tiles_before = len(self.tiles[layer])
        error_count = 0

        if func is not None:
            to_process = set(range(self.width * self.height))
            passes = 0
            while to_process and passes <= self.width * self.height:
                passes += 1
                for coord in sorted(to_process):
                    tile_index = self.tile_grid[layer][coord]
                    tile = self.tiles[layer][tile_index]
                    color = func(self, (tile_index,))
                    if color is not None and color >= 0 and color != tile.at_center():
                        if self.output_grid is None or self.output_grid.at(tile.x, tile.y) == color:
                            self.draw_at(layer, tile.x, tile.y, color, to_process)
                        else:
                            error_count += 1
                    to_process.discard(coord)
            if to_process:
                logger.debug('rasterize_layer %d did not settle', layer)

        new_tile_count = len(self.tiles[layer]) - tiles_before
        logger.debug('rasterize_layer %d: %d errors, %d new tiles', layer, error_count, new_tile_count)
        return error_count, new_tile_count

    def rasterize(self) -> Grid:
        for layer in range(len(self.tile_functions)):
            self.rasterize_layer(layer)
        return self.final_grid()

    # ==========================================================================
    # Learning
    # ==========================================================================

    @staticmethod
    def make_sub_solver(solver: Solver, layer: int) -> Solver:
        """Sub-solver with one sample per tile of the layer, over every rasterizer."""
        tiles = F.make('tiles', index=layer)
        prototype = solver.first_sample().input_image.tiles[layer][0]
        sub_functions = SubFunctions(
            length_function=tiles.length(),
            index_function=F.index(0),
            sub_images_functions=[],
            number_functions=[f.prefix_generation(tiles, 0) for f in prototype.number_functions()],
            color_functions=[f.prefix_generation(tiles, 0) for f in prototype.color_functions()],
            grid_functions=[],
        )
        sub_solver = Solver(solver.options)
        sub_solver.sub_init(solver, sub_functions, no_sub_table_analysis=True, no_equal=True)
        return sub_solver

    @staticmethod
    def compute_tile_function(solver: Solver, layer: int) -> Tuple[int, F]:
        sub_solver = Rasterizer.make_sub_solver(solver, layer)
        target = F.make('target').prefix_generation(F.make('tiles', index=layer), 0)
        return sub_solver.select_best_function(target, True, 'color')

    @staticmethod
    def learn_layer(solver: Solver, layer: int) -> bool:
        """
        Fit the tile function of one layer.

        Alternates painting with the current function and refitting on the
        tiles it produced, until painting adds no tile and makes no error.
        """
        rasterizers = [sample.input_image for sample in solver.samples()]
        tile_function = None

        for attempt in range(RASTERIZER_MAX_ATTEMPTS):
            for rasterizer in rasterizers:
                rasterizer.reset_tiles(layer)

            if tile_function is not None:
                done = True
                for rasterizer in rasterizers:
                    error_count, new_tile_count = rasterizer.rasterize_layer(layer)
                    if error_count > 0 or new_tile_count > 0:
                        done = False
                if done:
                    logger.debug('Layer %d learned after %d attempts', layer, attempt)
                    return True

            bitfield, func = Rasterizer.compute_tile_function(solver, layer)
            if bitfield == 0:
                return False
            tile_function = func
            for rasterizer in rasterizers:
                _set_layer_function(rasterizer, layer, tile_function)

        return False

    @staticmethod
    def learn_rasterization(input_grids: List[Grid], output_grids: List[Grid],
                            input_decomposer: Callable[[Grid], ConcreteImage],
                            tile_radius: int = RASTERIZER_RADIUS,
                            options: Optional[SolverOptions] = None) -> Optional[Callable[[Grid], Grid]]:
        """
        Learn layers of tile functions reproducing every training output.

        Returns:
            Function rasterizing a new input grid, or None when the outputs
            are not reproduced
        """
        if not input_grids or any(i.width != o.width or i.height != o.height
                                  for i, o in zip(input_grids, output_grids)):
            return None

        rasterizers = [Rasterizer(tile_radius, input_decomposer(i), i, o) for i, o in zip(input_grids, output_grids)]
        try:
            solver = Solver.make(rasterizers, rasterizers, options)
            layers = 0
            while layers < RASTERIZER_MAX_LAYERS:
                if not Rasterizer.learn_layer(solver, layers):
                    break
                layers += 1
                if all(r.output_grid.equals(r.grid_at_layer(layers - 1)) for r in rasterizers):
                    break
        except SolverTimeout:
            raise
        except ArcSynthError as e:
            logger.debug('learn_rasterization failed: %s', e)
            return None

        for rasterizer in rasterizers:
            del rasterizer.tile_functions[layers:]
        if layers == 0 or not all(r.output_grid.equals(r.final_grid()) for r in rasterizers):
            logger.info('Rasterization not learned (%d layers)', layers)
            return None

        tile_functions = list(rasterizers[0].tile_functions)
        logger.info('Rasterization learned with %d layers', layers)

        def rasterize(grid: Grid) -> Grid:
            rasterizer = Rasterizer(tile_radius, input_decomposer(grid), grid)
            rasterizer.tile_functions = list(tile_functions)
            return rasterizer.rasterize()

        return rasterize


def _set_layer_function(rasterizer: Rasterizer, layer: int, func: F) -> None:
    while len(rasterizer.tile_functions) <= layer:
        rasterizer.tile_functions.append(func)
    rasterizer.tile_functions[layer] = func
