"""
Solver samples and nested mappings.

A Sample is one (input image, output image) pair seen at some nesting
generation. Entry g of `indices` is the sample's position among the samples
of the generation-g solver, while `input_indices` / `output_indices` select
the nested sub-images the sample stands for.

Nested mappings ("rec arrays") are lists of lists addressed by
input_index_0 followed by the input indices.
"""

from typing import Any, Callable, List, Tuple

from ..errors import SolverError
from ..functions import F, push_index

RecArray = List[Any]


# ==============================================================================
# Rec arrays
# ==============================================================================

def map_rec_array(array, func: Callable):
    if isinstance(array, list):
        return [map_rec_array(x, func) for x in array]
    return func(array)


def any_rec_array(array, test: Callable[[Any], bool]) -> bool:
    if isinstance(array, list):
        return any(any_rec_array(x, test) for x in array)
    return test(array)


def flatten_rec_array(array) -> List[Any]:
    if isinstance(array, list):
        result = []
        for x in array:
            result.extend(flatten_rec_array(x))
        return result
    return [array]


def _step(mapping, index: int):
    if not isinstance(mapping, list):
        raise SolverError('Expecting an array')
    if index >= len(mapping):
        return None
    return mapping[index]


def _slot(mapping: list, index: int) -> list:
    while len(mapping) <= index:
        mapping.append(None)
    if mapping[index] is None:
        mapping[index] = []
    return mapping[index]


# ==============================================================================
# Sample
# ==============================================================================

class Sample:

    __slots__ = ('unmask_index', 'indices', 'input_image', 'input_index_0', 'input_indices',
                 'output_image', 'output_index_0', 'output_indices')

    def __init__(self, unmask_index: int, indices: Tuple[int, ...], input_image, input_index_0: int,
                 input_indices: Tuple[int, ...], output_image, output_index_0: int,
                 output_indices: Tuple[int, ...]):
        self.unmask_index = unmask_index
        self.indices = indices
        self.input_image = input_image
        self.input_index_0 = input_index_0
        self.input_indices = input_indices
        self.output_image = output_image
        self.output_index_0 = output_index_0
        self.output_indices = output_indices

    @property
    def index(self) -> int:
        return self.indices[-1]

    def input(self, f: F):
        return f(self.input_image, self.input_indices)

    def dual_input(self, dual):
        return dual.values[self.indices[dual.generation]]

    def output(self, f: F, output_is_input: bool = False):
        if output_is_input:
            return f(self.input_image, self.input_indices)
        return f(self.output_image, self.output_indices)

    # ==========================================================================
    # Nested mappings
    # ==========================================================================

    def get_mapping(self, mapping):
        mapping = _step(mapping, self.input_index_0)
        for index in self.input_indices:
            mapping = _step(mapping, index)
        return mapping

    def output_mapping(self, mapping, final_index: int):
        value = _step(self.get_mapping(mapping), final_index)
        if isinstance(value, list):
            raise SolverError('Expecting a value')
        return value

    def set_mapping(self, mapping: list, value) -> None:
        if not self.input_indices:
            target, last = mapping, self.input_index_0
        else:
            target = _slot(mapping, self.input_index_0)
            for index in self.input_indices[:-1]:
                target = _slot(target, index)
            last = self.input_indices[-1]
        while len(target) <= last:
            target.append(None)
        target[last] = value

    def test_mapping(self, mapping, i: int) -> bool:
        """Whether sub-image i of this sample is kept by `mapping`."""
        if isinstance(mapping, F):
            return bool(self.sub_sample(0, 0, i, i).input(mapping))
        if mapping is not None:
            value = self.output_mapping(mapping, i)
            return value is not None and value >= 0
        return True

    def sub_sample(self, unmask_index: int, index: int, input_index: int, output_index: int) -> 'Sample':
        """The sample one generation down, standing for sub-image input_index."""
        return Sample(unmask_index, push_index(self.indices, index), self.input_image, self.input_index_0,
                      push_index(self.input_indices, input_index), self.output_image, self.output_index_0,
                      push_index(self.output_indices, output_index))

    def __repr__(self) -> str:
        return f"Sample(indices={list(self.indices)}, input={list(self.input_indices)}, output={list(self.output_indices)})"
