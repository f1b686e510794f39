"""
Dense color grid with the raster primitives used by decomposers and images.

Coordinates are (x, y) with x the column. The backing numpy array is indexed
[y, x]. Reads outside the grid return None and writes are ignored.
"""

import numpy as np
from dataclasses import dataclass
from typing import List, Optional, Callable, Iterator, Tuple, Union, Dict
from scipy import ndimage

from .types import Color, Transform, TRANSPOSING_TRANSFORMS


# 4- and 8-connectivity for object labelling
_STRUCTURE_4 = ndimage.generate_binary_structure(2, 1)
_STRUCTURE_8 = ndimage.generate_binary_structure(2, 2)


@dataclass
class GridCell:
    """One cell of a master grid, located at (x, y) in the parent."""
    x: int
    y: int
    grid: 'Grid'


@dataclass
class MasterGrid:
    cells: List[GridCell]
    stride: int
    grid_color: Optional[int] = None


@dataclass
class Block:
    x0: int
    y0: int
    x1: int
    y1: int


class Grid:
    """
    Rectangular array of colors.

    Every transform returns a new Grid; only set/draw_*/paste/erase mutate.
    """

    def __init__(self, width: int, height: int, color: int = Color.black):
        self.data = np.full((int(height), int(width)), int(color), dtype=int)

    @staticmethod
    def from_array(array: np.ndarray) -> 'Grid':
        grid = Grid.__new__(Grid)
        grid.data = np.array(array, dtype=int).reshape(np.shape(array))
        return grid

    @staticmethod
    def from_list(rows: List[List[int]]) -> 'Grid':
        if len(rows) == 0:
            return Grid(0, 0)
        return Grid.from_array(np.array(rows, dtype=int))

    def to_list(self) -> List[List[int]]:
        return self.data.tolist()

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def height(self) -> int:
        return self.data.shape[0]

    def __str__(self) -> str:
        return '[' + ','.join('[' + ','.join(str(c) for c in row) + ']' for row in self.data.tolist()) + ']'

    __repr__ = __str__

    # ==========================================================================
    # Pixel access
    # ==========================================================================

    def in_bounds(self, x, y) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def at(self, x: int, y: int) -> Optional[int]:
        if 0 <= x < self.width and 0 <= y < self.height:
            return int(self.data[y, x])
        return None

    def set(self, x: int, y: int, color: int) -> None:
        if 0 <= x < self.width and 0 <= y < self.height:
            self.data[y, x] = color

    def clone(self) -> 'Grid':
        return Grid.from_array(self.data.copy())

    def clear_clone(self, color: int = Color.black) -> 'Grid':
        return Grid(self.width, self.height, color)

    def subgrid(self, x0: int, y0: int, x1: int, y1: int) -> 'Grid':
        """Cells [x0, x1) x [y0, y1). Out of range cells read as black."""
        result = Grid(max(0, x1 - x0), max(0, y1 - y0))
        cx0, cy0 = max(0, x0), max(0, y0)
        cx1, cy1 = min(self.width, x1), min(self.height, y1)
        if cx0 < cx1 and cy0 < cy1:
            result.data[cy0 - y0:cy1 - y0, cx0 - x0:cx1 - x0] = self.data[cy0:cy1, cx0:cx1]
        return result

    def equals(self, other: 'Grid') -> bool:
        return self.data.shape == other.data.shape and np.array_equal(self.data, other.data)

    # ==========================================================================
    # Counting
    # ==========================================================================

    def count(self, test: Callable[[int], bool]) -> int:
        return sum(1 for c in self.data.ravel().tolist() if test(c))

    def count_color(self, color: int) -> int:
        return int((self.data == color).sum())

    def perimeter_cells(self) -> List[int]:
        if self.width == 0 or self.height == 0:
            return []
        cells = self.data[0, :].tolist()
        if self.height > 1:
            cells += self.data[-1, :].tolist()
        if self.width > 0:
            cells += self.data[1:-1, 0].tolist()
        if self.width > 1:
            cells += self.data[1:-1, -1].tolist()
        return cells

    def count_perimeter(self, test: Callable[[int], bool]) -> int:
        return sum(1 for c in self.perimeter_cells() if test(c))

    def colors(self, background_color: Optional[int] = None) -> List[int]:
        """Distinct colors in row-major first-occurrence order."""
        return [c for c in dict.fromkeys(self.data.ravel().tolist()) if c != background_color]

    def horizontal_colors(self, y: int) -> List[int]:
        return list(dict.fromkeys(self.data[y, :].tolist()))

    def vertical_colors(self, x: int) -> List[int]:
        return list(dict.fromkeys(self.data[:, x].tolist()))

    def is_solid_color(self) -> bool:
        return self.data.size == 0 or bool((self.data == self.data.flat[0]).all())

    # ==========================================================================
    # Color mapping and drawing
    # ==========================================================================

    def map_colors(self, mapping: Union[Callable[[int], int], Dict[int, int]]) -> 'Grid':
        if isinstance(mapping, dict):
            mapping_fn = lambda c: mapping.get(c, c)
        else:
            mapping_fn = mapping
        result = self.clone()
        for c in np.unique(self.data).tolist():
            result.data[self.data == c] = mapping_fn(c)
        return result

    def complement(self) -> 'Grid':
        """false cells become true, everything else black."""
        return Grid.from_array(np.where(self.data == Color.false, int(Color.true), int(Color.black)))

    def draw_perimeter(self, color: int) -> None:
        if self.width == 0 or self.height == 0:
            return
        self.data[0, :] = color
        self.data[-1, :] = color
        self.data[:, 0] = color
        self.data[:, -1] = color

    def draw_line(self, x0: int, y0: int, x1: int, y1: int, color: int) -> None:
        """Unit-step line; diagonal moves until one axis is reached."""
        x, y = x0, y0
        self.set(x, y, color)
        while (x, y) != (x1, y1):
            x += (x < x1) - (x > x1)
            y += (y < y1) - (y > y1)
            self.set(x, y, color)

    def draw_box(self, x0: int, y0: int, x1: int, y1: int, color: int) -> None:
        for x in range(x0, x1):
            for y in range(y0, y1):
                self.set(x, y, color)

    def draw_box_perimeter(self, x0: int, y0: int, x1: int, y1: int, color: int) -> None:
        for x in range(x0, x1):
            self.set(x, y0, color)
            self.set(x, y1 - 1, color)
        for y in range(y0, y1):
            self.set(x0, y, color)
            self.set(x1 - 1, y, color)

    def erase(self, grid: 'Grid') -> None:
        """Blacken every cell where `grid` is not black."""
        h = min(self.height, grid.height)
        w = min(self.width, grid.width)
        region = self.data[:h, :w]
        region[grid.data[:h, :w] != Color.black] = Color.black

    def paste(self, region: 'Grid', offset_x: int = 0, offset_y: int = 0,
              transform: Transform = Transform.identity,
              transparent_color: Optional[int] = None,
              monochrome_color: Optional[int] = None,
              only_if_no_color: bool = False) -> None:
        """
        Paste `region` at an offset, optionally transformed.

        Args:
            transparent_color: region cells with this color are skipped; with
                only_if_no_color, only target cells of this color are written
            monochrome_color: paint every written cell with this color
        """
        w, h = region.width, region.height
        mappings = {
            Transform.identity: lambda x, y: (x, y),
            Transform.flip_x: lambda x, y: (w - 1 - x, y),
            Transform.flip_y: lambda x, y: (x, h - 1 - y),
            Transform.transpose: lambda x, y: (y, x),
            Transform.opposite_transpose: lambda x, y: (h - 1 - y, w - 1 - x),
            Transform.rotate_180: lambda x, y: (w - 1 - x, h - 1 - y),
            Transform.rotate_90: lambda x, y: (h - 1 - y, x),
            Transform.rotate_270: lambda x, y: (y, w - 1 - x),
        }
        mapping = mappings.get(transform)
        if mapping is None:
            mapping = lambda x, y: (x - offset_x, y - offset_y)

        for j in range(h):
            for i in range(w):
                c = int(region.data[j, i])
                if transparent_color is not None and c == transparent_color:
                    continue
                tx, ty = mapping(i, j)
                tx, ty = tx + offset_x, ty + offset_y
                if only_if_no_color and self.at(tx, ty) != transparent_color:
                    continue
                self.set(tx, ty, c if monochrome_color is None else monochrome_color)

    def symmetrical(self, transform: Transform) -> bool:
        if transform in TRANSPOSING_TRANSFORMS:
            grid = Grid(self.height, self.width)
        else:
            grid = Grid(self.width, self.height)
        grid.paste(self, transform=transform)
        return self.equals(grid)

    # ==========================================================================
    # Objects
    # ==========================================================================

    def _labels(self, corners: bool) -> Tuple[np.ndarray, int]:
        structure = _STRUCTURE_8 if corners else _STRUCTURE_4
        return ndimage.label(self.data != Color.black, structure=structure)

    def propagate(self, x: int, y: int, corners: bool = False) -> Tuple['Grid', 'Grid']:
        """
        Flood fill from (x, y) through non-black cells.

        Returns:
            (obj, contour): obj holds the component's colors on black;
            contour is (w+2)x(h+2) with out-of-bounds contacts marked true
        """
        obj = self.clear_clone()
        contour = Grid(self.width + 2, self.height + 2)
        if not self.in_bounds(x, y):
            contour.set(x + 1, y + 1, Color.true)
            return obj, contour
        if self.data[y, x] == Color.black:
            return obj, contour

        labels, _ = self._labels(corners)
        component = labels == labels[y, x]
        obj.data[component] = self.data[component]

        structure = _STRUCTURE_8 if corners else _STRUCTURE_4
        padded = np.pad(component, 1)
        touched = ndimage.binary_dilation(padded, structure=structure)
        ring = np.ones_like(padded)
        ring[1:-1, 1:-1] = False
        contour.data[touched & ring] = Color.true
        return obj, contour

    def foreach_object(self, corners: bool = False) -> Iterator['Grid']:
        """Connected components, ordered by first pixel in column-major scan."""
        if self.data.size == 0:
            return
        labels, count = self._labels(corners)
        if count == 0:
            return
        scan = labels.T.ravel()
        keys, first = np.unique(scan, return_index=True)
        order = [int(k) for _, k in sorted(zip(first.tolist(), keys.tolist())) if k != 0]
        for k in order:
            component = labels == k
            obj = self.clear_clone()
            obj.data[component] = self.data[component]
            yield obj

    def find_biggest_block(self) -> Optional[Block]:
        """Largest all-non-black rectangle, first found wins ties."""
        biggest_area = 0
        biggest = None
        for x0 in range(self.width):
            for y0 in range(self.height):
                if self.data[y0, x0] == Color.black:
                    continue
                x1 = self.width
                for y1 in range(y0 + 1, self.height + 1):
                    for x in range(x0, x1):
                        if self.data[y1 - 1, x] == Color.black:
                            x1 = x
                            break
                    area = (x1 - x0) * (y1 - y0)
                    if area == 0:
                        break
                    if area > biggest_area:
                        biggest_area = area
                        biggest = Block(x0, y0, x1, y1)
        return biggest

    def foreach_block(self) -> Iterator['Grid']:
        """Split every object into maximal rectangles, biggest first."""
        for shape in self.foreach_object(False):
            remaining = shape.clone()
            while True:
                block = remaining.find_biggest_block()
                if block is None:
                    break
                sub_shape = remaining.clear_clone()
                window = (slice(block.y0, block.y1), slice(block.x0, block.x1))
                sub_shape.data[window] = remaining.data[window]
                remaining.data[window] = Color.black
                yield sub_shape

    def holes_count(self) -> int:
        """Black regions that do not touch the border."""
        holes = self.map_colors(lambda c: Color.true if c == Color.black else Color.false)
        return sum(1 for region in holes.foreach_object(False)
                   if region.count_perimeter(lambda c: c == Color.true) == 0)

    # ==========================================================================
    # Geometry
    # ==========================================================================

    def trim(self, background_color: int = Color.black) -> Tuple['Grid', int, int]:
        """Strip border rows/columns of the background color."""
        data = self.data
        x0, y0, x1, y1 = 0, 0, self.width, self.height

        while y0 < y1 and x0 < x1 and (data[y0, x0:x1] == background_color).all():
            y0 += 1
        while y0 < y1 and x0 < x1 and (data[y1 - 1, x0:x1] == background_color).all():
            y1 -= 1
        while x0 < x1 and y0 < y1 and (data[y0:y1, x0] == background_color).all():
            x0 += 1
        while x0 < x1 and y0 < y1 and (data[y0:y1, x1 - 1] == background_color).all():
            x1 -= 1

        return self.subgrid(x0, y0, x1, y1), x0, y0

    def inv_scale(self, s: int) -> 'Grid':
        return Grid.from_array(self.data[::s, ::s][:self.height // s, :self.width // s])

    def inv_scale_with_grid(self, s: int) -> 'Grid':
        w = (self.width + 1) // (s + 1)
        h = (self.height + 1) // (s + 1)
        return Grid.from_array(self.data[::s + 1, ::s + 1][:h, :w])

    def is_semantic_box(self) -> bool:
        """Uniform edges and uniform interior, corners free."""
        if self.width < 3 or self.height < 3:
            return False
        d = self.data
        inner_x = slice(1, self.width - 1)
        inner_y = slice(1, self.height - 1)
        return (
            len(set(d[0, inner_x].tolist())) == 1
            and len(set(d[-1, inner_x].tolist())) == 1
            and len(set(d[inner_y, 0].tolist())) == 1
            and len(set(d[inner_y, -1].tolist())) == 1
            and len(set(d[inner_y, inner_x].ravel().tolist())) == 1
        )

    def get_semantic_box(self) -> 'Grid':
        """3x3 summary: corners, one edge sample each side, one interior sample."""
        xs = [0, 1, self.width - 1]
        ys = [0, 1, self.height - 1]
        return Grid.from_array(self.data[np.ix_(ys, xs)])

    def find_master_grid(self, default_grid_color: Optional[int] = None) -> MasterGrid:
        """
        Split along monochrome separator lines.

        Candidate separator colors come from monochrome columns then rows,
        unless a default is given. A candidate is rejected when a cell still
        contains it. Falls back to the whole grid with stride 1.
        """
        vs = [self.vertical_colors(x) for x in range(self.width)]
        hs = [self.horizontal_colors(y) for y in range(self.height)]

        if default_grid_color is not None:
            candidates = [default_grid_color]
        else:
            candidates = list(dict.fromkeys(
                [line[0] for line in vs if len(line) == 1] + [line[0] for line in hs if len(line) == 1]
            ))

        for grid_color in candidates:
            xs = [-1] + [x for x in range(self.width) if vs[x] == [grid_color]] + [self.width]
            ys = [-1] + [y for y in range(self.height) if hs[y] == [grid_color]] + [self.height]

            cells = []
            stride = 0
            valid = True
            for j in range(len(ys) - 1):
                y0, y1 = ys[j] + 1, ys[j + 1]
                if y0 >= y1:
                    continue
                stride = 0
                for i in range(len(xs) - 1):
                    x0, x1 = xs[i] + 1, xs[i + 1]
                    if x0 >= x1:
                        continue
                    cell = self.subgrid(x0, y0, x1, y1)
                    if default_grid_color is None and grid_color in cell.colors():
                        valid = False
                    stride += 1
                    cells.append(GridCell(x0, y0, cell))

            if valid:
                return MasterGrid(cells, stride, grid_color)

        return MasterGrid([GridCell(0, 0, self)], 1, None)

    def is_scaled_by(self, n: int) -> bool:
        if n <= 0 or self.width % n != 0 or self.height % n != 0:
            return False
        return self.inv_scale(n).scaled(n).equals(self)

    def scaled(self, n: int) -> 'Grid':
        return Grid.from_array(np.kron(self.data, np.ones((n, n), dtype=int)))

    def is_scaled_with_grid_by(self, n: int) -> int:
        """Separator color when blocks of n are split by 1-cell lines, else no_color."""
        if (self.width + 1) % (n + 1) != 0 or (self.height + 1) % (n + 1) != 0:
            return Color.no_color

        if self.width > n:
            grid_color = self.at(n, 0)
        elif self.height > n:
            grid_color = self.at(0, n)
        else:
            grid_color = Color.no_color

        for x in range(0, self.width, n + 1):
            for y in range(0, self.height, n + 1):
                block = self.data[y:y + n, x:x + n]
                if not (block == self.data[y, x]).all():
                    return Color.no_color
                if x + n + 1 < self.width and not (self.data[y:y + n, x + n] == grid_color).all():
                    return Color.no_color
                if y + n + 1 < self.height and not (self.data[y + n, x:x + n] == grid_color).all():
                    return Color.no_color
                if x + n + 1 < self.width and y + n + 1 < self.height and self.at(x + n, y + n) != grid_color:
                    return Color.no_color
        return grid_color

    def get_scaling_factor(self) -> int:
        for i in range(1, self.width):
            if self.width % i == 0:
                s = self.width // i
                if self.is_scaled_by(s):
                    return s
        return 1

    def get_scaling_factor_with_grid_color(self) -> Optional[Tuple[int, int]]:
        for i in range(1, self.width):
            if (self.width + 1) % i == 0:
                scale = (self.width + 1) // i - 1
                if scale <= 0:
                    continue
                grid_color = self.is_scaled_with_grid_by(scale)
                if grid_color is not None and grid_color != Color.no_color:
                    return scale, grid_color
        return None

    def find_tile(self) -> 'Grid':
        """Smallest period (at most 3/4 of the size) along each axis."""
        tile_x, tile_y = self.width, self.height
        d = self.data

        width = 1
        while width <= 0.75 * self.width:
            if np.array_equal(d[:, :self.width - width], d[:, width:]):
                tile_x = width
                break
            width += 1

        height = 1
        while height <= 0.75 * self.height:
            if np.array_equal(d[:self.height - height, :], d[height:, :]):
                tile_y = height
                break
            height += 1

        return self.subgrid(0, 0, tile_x, tile_y)
