"""
Decomposer trees.

A Decomposer is plain data naming how to turn a raw grid into a structured
image (see compiler.build_decomposer). Trees are cloned before they are
mutated: compiling `alternatives` marks the branches that failed so they can
be pruned afterwards.
"""

import json
from dataclasses import dataclass, fields, replace
from typing import List, Optional, Union

from .types import Transform


@dataclass
class Decomposer:
    name: str
    decomposer: Optional['Decomposer'] = None
    decomposer2: Optional['Decomposer'] = None
    decomposers: Optional[List['Decomposer']] = None
    transform: Optional[int] = None
    background_color: Optional[int] = None
    abstraction_name: Optional[str] = None
    fixed_size: Optional[bool] = None
    default_grid_color: Optional[int] = None
    sx: Optional[int] = None
    sy: Optional[int] = None
    nx: Optional[int] = None
    ny: Optional[int] = None
    failed: Optional[bool] = None

    # ==========================================================================
    # Serialization
    # ==========================================================================

    def to_dict(self) -> dict:
        """JSON shape; unset fields are omitted and `failed` only when set."""
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None or (f.name == 'failed' and not value):
                continue
            if isinstance(value, Decomposer):
                value = value.to_dict()
            elif f.name == 'decomposers':
                value = [d.to_dict() for d in value]
            elif f.name in ('transform', 'background_color', 'default_grid_color'):
                value = int(value)
            data[f.name] = value
        return data

    @staticmethod
    def from_dict(data: dict) -> 'Decomposer':
        kwargs = dict(data)
        for key in ('decomposer', 'decomposer2'):
            if kwargs.get(key) is not None:
                kwargs[key] = Decomposer.from_dict(kwargs[key])
        if kwargs.get('decomposers') is not None:
            kwargs['decomposers'] = [Decomposer.from_dict(d) for d in kwargs['decomposers']]
        return Decomposer(**kwargs)

    @staticmethod
    def to_json(decomposers: List['Decomposer']) -> str:
        return json.dumps([d.to_dict() for d in decomposers])

    @staticmethod
    def from_json(text: str) -> List['Decomposer']:
        return [Decomposer.from_dict(d) for d in json.loads(text)]

    @property
    def key(self) -> str:
        return decomposer_to_key(self)

    def clone(self) -> 'Decomposer':
        return decomposer_clone(self)


# ==============================================================================
# Constructors
# ==============================================================================

def image_window(decomposer: Decomposer) -> Decomposer:
    return Decomposer('image_window', decomposer=decomposer)


def basic_grid() -> Decomposer:
    return Decomposer('basic_grid')


def semantic_box() -> Decomposer:
    return Decomposer('semantic_box')


def solid_color() -> Decomposer:
    return Decomposer('solid_color')


def pixel_grid() -> Decomposer:
    return Decomposer('pixel_grid')


def object_list(decomposer: Decomposer) -> Decomposer:
    return Decomposer('object_list', decomposer=decomposer)


def object_list2(decomposer: Decomposer) -> Decomposer:
    return Decomposer('object_list2', decomposer=decomposer)


def block_list(decomposer: Decomposer) -> Decomposer:
    return Decomposer('block_list', decomposer=decomposer)


def scaled(decomposer: Decomposer) -> Decomposer:
    return Decomposer('scaled', decomposer=decomposer)


def tile(decomposer: Decomposer) -> Decomposer:
    return Decomposer('tile', decomposer=decomposer)


def tile_x(decomposer: Decomposer) -> Decomposer:
    return Decomposer('tile_x', decomposer=decomposer)


def tile_y(decomposer: Decomposer) -> Decomposer:
    return Decomposer('tile_y', decomposer=decomposer)


def transform(t: Transform, decomposer: Decomposer) -> Decomposer:
    return Decomposer('transform', decomposer=decomposer, transform=int(t))


def trim_object(decomposer: Decomposer) -> Decomposer:
    return Decomposer('trim_object', decomposer=decomposer)


def trim_object_center(decomposer: Decomposer) -> Decomposer:
    return Decomposer('trim_object_center', decomposer=decomposer)


def monochrome(decomposer: Decomposer) -> Decomposer:
    return Decomposer('monochrome', decomposer=decomposer)


def background(background_color: Optional[int], decomposer: Decomposer) -> Decomposer:
    """None picks the most frequent color of each grid."""
    return Decomposer('background', decomposer=decomposer,
                      background_color=None if background_color is None else int(background_color))


def complement(decomposer: Decomposer) -> Decomposer:
    return Decomposer('complement', decomposer=decomposer)


def centered(decomposer: Decomposer) -> Decomposer:
    return Decomposer('centered', decomposer=decomposer)


def color_decomposition(decomposer: Decomposer) -> Decomposer:
    return Decomposer('color_decomposition', decomposer=decomposer)


def monochrome_object_list(decomposer: Decomposer) -> Decomposer:
    return Decomposer('monochrome_object_list', decomposer=decomposer)


def monochrome_object_list2(decomposer: Decomposer) -> Decomposer:
    return Decomposer('monochrome_object_list2', decomposer=decomposer)


def horizontal_decomposition(decomposer: Decomposer, fixed_size: bool = False) -> Decomposer:
    return Decomposer('horizontal_decomposition', decomposer=decomposer, fixed_size=fixed_size)


def find_master_grid(decomposer: Decomposer, default_grid_color: Optional[int] = None,
                     fixed_size: bool = False) -> Decomposer:
    return Decomposer('find_master_grid', decomposer=decomposer, fixed_size=fixed_size,
                      default_grid_color=None if default_grid_color is None else int(default_grid_color))


def master_grid(sx: int, sy: int, decomposer: Decomposer) -> Decomposer:
    """Split into sx by sy cells."""
    return Decomposer('master_grid', decomposer=decomposer, sx=sx, sy=sy)


def master_grid2(nx: int, ny: int, decomposer: Decomposer) -> Decomposer:
    """Split into cells of nx by ny pixels."""
    return Decomposer('master_grid2', decomposer=decomposer, nx=nx, ny=ny)


def add_info(decomposer: Decomposer, decomposer2: Decomposer) -> Decomposer:
    return Decomposer('add_info', decomposer=decomposer, decomposer2=decomposer2)


def alternatives(decomposers: List[Decomposer]) -> Decomposer:
    return Decomposer('alternatives', decomposers=list(decomposers))


def monochrome_object_list_abstraction(abstraction_name: str, decomposers: List[Decomposer]) -> Decomposer:
    return Decomposer('monochrome_object_list_abstraction', abstraction_name=abstraction_name,
                      decomposers=list(decomposers))


def monochrome_decomposition_abstraction(abstraction_name: str, decomposers: List[Decomposer]) -> Decomposer:
    return Decomposer('monochrome_decomposition_abstraction', abstraction_name=abstraction_name,
                      decomposers=list(decomposers))


def simple_abstraction(abstraction_name: str, decomposer: Decomposer) -> Decomposer:
    return Decomposer('simple_abstraction', abstraction_name=abstraction_name, decomposer=decomposer)


# ==============================================================================
# Tree helpers
# ==============================================================================

# Decomposers that split a grid into a collection
ROOT_DECOMPOSERS = frozenset([
    'object_list',
    'object_list2',
    'block_list',
    'color_decomposition',
    'monochrome_object_list',
    'monochrome_object_list2',
    'horizontal_decomposition',
    'find_master_grid',
    'master_grid',
    'master_grid2',
    'monochrome_object_list_abstraction',
    'monochrome_decomposition_abstraction',
])

_KEY_FIELDS = ('transform', 'background_color', 'fixed_size', 'default_grid_color', 'sx', 'sy', 'nx', 'ny')


def normalize_decomposer(decomposer: Decomposer) -> Decomposer:
    """Every top-level decomposer except basic_grid is framed by an image window."""
    if decomposer.name in ('image_window', 'basic_grid'):
        return decomposer
    return image_window(decomposer)


def decomposer_to_key(decomposer: Union[None, Decomposer, List[Decomposer]]) -> str:
    """
    Canonical string of a tree, e.g. `image_window(object_list(basic_grid()))`.

    Parameters equal to 0 or False are left out.
    """
    if isinstance(decomposer, list):
        return f"[{','.join(decomposer_to_key(d) for d in decomposer)}]"
    if decomposer is None:
        return 'none'
    parts = []
    if decomposer.decomposer:
        parts.append(decomposer_to_key(decomposer.decomposer))
    if decomposer.decomposer2:
        parts.append(decomposer_to_key(decomposer.decomposer2))
    if decomposer.decomposers:
        parts.append(decomposer_to_key(decomposer.decomposers))
    for name in _KEY_FIELDS:
        value = getattr(decomposer, name)
        if value:
            parts.append('true' if value is True else str(int(value)))
    return f"{decomposer.name}({','.join(parts)})"


def decomposer_clone(decomposer: Decomposer) -> Decomposer:
    """Deep copy with every `failed` flag reset."""
    return replace(
        decomposer,
        decomposer=decomposer_clone(decomposer.decomposer) if decomposer.decomposer else None,
        decomposer2=decomposer_clone(decomposer.decomposer2) if decomposer.decomposer2 else None,
        decomposers=[decomposer_clone(d) for d in decomposer.decomposers] if decomposer.decomposers is not None else None,
        failed=None,
    )


def remove_failed_alternatives(decomposer: Decomposer) -> Decomposer:
    """Drop every alternative branch marked as failed, recursively."""
    if decomposer.name == 'alternatives':
        return alternatives([remove_failed_alternatives(d) for d in decomposer.decomposers or [] if not d.failed])
    return replace(
        decomposer,
        decomposer=remove_failed_alternatives(decomposer.decomposer) if decomposer.decomposer else None,
        decomposer2=remove_failed_alternatives(decomposer.decomposer2) if decomposer.decomposer2 else None,
        decomposers=[remove_failed_alternatives(d) for d in decomposer.decomposers]
        if decomposer.decomposers is not None else None,
        failed=None,
    )


def _prefix(decomposer: Decomposer) -> Optional[Decomposer]:
    if decomposer.name in ROOT_DECOMPOSERS:
        return None
    return replace(
        decomposer,
        decomposer=_prefix(decomposer.decomposer) if decomposer.decomposer else None,
        decomposer2=decomposer_clone(decomposer.decomposer2) if decomposer.decomposer2 else None,
        decomposers=[decomposer_clone(d) for d in decomposer.decomposers] if decomposer.decomposers is not None else None,
        failed=None,
    )


def decomposer_prefix(decomposer: Decomposer) -> Optional[Decomposer]:
    """The chain above the first collection decomposer, None when there is none."""
    if decomposer_root(decomposer) is not None:
        return _prefix(decomposer)
    return None


def decomposer_root(decomposer: Decomposer) -> Optional[Decomposer]:
    """The first collection decomposer of the chain, without its children."""
    if decomposer.name in ROOT_DECOMPOSERS:
        return replace(decomposer, decomposer=None, decomposers=None, failed=None)
    if decomposer.decomposer:
        return decomposer_root(decomposer.decomposer)
    return None


def decomposer_suffix(decomposer: Decomposer) -> Union[None, Decomposer, List[Decomposer]]:
    """What the first collection decomposer applies to each element."""
    if decomposer.name in ROOT_DECOMPOSERS:
        if decomposer.decomposer:
            return decomposer_clone(decomposer.decomposer)
        if decomposer.decomposers is not None:
            return [decomposer_clone(d) for d in decomposer.decomposers]
        return None
    if decomposer.decomposer:
        return decomposer_suffix(decomposer.decomposer)
    return None


def decomposer_to_list(decomposer: Decomposer) -> List[str]:
    """Names along the `decomposer` chain."""
    names = [decomposer.name]
    while decomposer.decomposer:
        decomposer = decomposer.decomposer
        names.append(decomposer.name)
    return names
