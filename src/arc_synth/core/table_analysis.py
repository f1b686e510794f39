"""
Relational analysis over sub-image tables.

For one sub-images function, every sample of a solver contributes a table:
one row per sub-image, one column per feature function. On top of the raw
columns the analysis derives count columns (how many rows share a value, or
a tuple of values), and rank / inverse rank columns. A target value per
sample can then be explained as "the output column at the row whose input
columns hold these values", which becomes a new tracked function.
"""

import logging
from dataclasses import dataclass, replace
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

from ..config import TABLE_ANALYSIS_MAX_COMPARISONS, TABLE_ANALYSIS_MAX_DEPTH
from ..errors import TableAnalysisError
from ..functions import F, Custom

logger = logging.getLogger(__name__)

Column = List[Optional[float]]


# ==============================================================================
# Column statistics
# ==============================================================================

def count_array(array: Sequence) -> Column:
    """For each element, how many elements share its value (None stays None)."""
    counts: Dict = {}
    for elem in array:
        if elem is not None:
            counts[elem] = counts.get(elem, 0) + 1
    return [counts[elem] if elem is not None else None for elem in array]


def count_arrays(arrays: Sequence[Sequence]) -> Column:
    """count_array over row tuples; a row is None when the first array is."""
    if len(arrays) == 1:
        return count_array(arrays[0])
    rows = [
        None if arrays[0][i] is None else tuple(a[i] for a in arrays)
        for i in range(len(arrays[0]))
    ]
    return count_array(rows)


def rank_array(array: Sequence) -> Column:
    """Rank of each element among the distinct values, smallest first."""
    elems = sorted(set(x for x in array if x is not None))
    ranks = {elem: i for i, elem in enumerate(elems)}
    return [ranks[elem] if elem is not None else None for elem in array]


def inv_rank_array(array: Sequence) -> Column:
    """Rank of each element among the distinct values, largest first."""
    elems = sorted(set(x for x in array if x is not None))
    ranks = {elem: len(elems) - i - 1 for i, elem in enumerate(elems)}
    return [ranks[elem] if elem is not None else None for elem in array]


def arrays_same_value(arrays: Sequence[Sequence]) -> bool:
    """True when every non-None element of every array is equal."""
    first = True
    value = None
    for array in arrays:
        for elem in array:
            if elem is not None:
                if first:
                    value = elem
                    first = False
                elif value != elem:
                    return False
    return True


def _samples_key(samples_values: Sequence[Sequence]) -> Tuple:
    return tuple(tuple(values) for values in samples_values)


@dataclass(frozen=True)
class ColumnDescription:
    indices: Tuple[int, ...]
    count: bool = False
    rank: bool = False
    inv_rank: bool = False
    type: str = 'number'

    @property
    def derived(self) -> bool:
        return self.count or self.rank or self.inv_rank


Input = Union[float, str]  # a constant, or 'index'


# ==============================================================================
# Table analysis
# ==============================================================================

class TableAnalysis:
    """
    Column tables for one sub-images function of a solver.

    Args:
        solver: Solver whose samples provide one table each
        mapping: Optional boolean function; rows where it is false are skipped
        length_function: Number of rows of a sample's table
        index_function: Current row index when evaluated one generation down
        generic_functions: Row features, number then color then grid-index
        counts: How many of generic_functions are number / color / grid
    """

    def __init__(self, solver, mapping: Optional[F], length_function: F, index_function: F,
                 generic_functions: List[F], counts: Sequence[int]):
        self.solver = solver
        self.mapping = mapping
        self.length_function = length_function
        self.index_function = index_function
        self.generic_functions = list(generic_functions)
        self.columns_desc: List[ColumnDescription] = []
        self.columns_samples: List[List[Column]] = []
        self.columns_map: Dict[int, int] = {}
        self.init(counts)

    def _add_column(self, desc: ColumnDescription, samples_values: List[Column]) -> None:
        self.columns_desc.append(desc)
        self.columns_samples.append(samples_values)

    def init(self, counts: Sequence[int]) -> None:
        number_count, color_count = counts[0], counts[1]

        seen = set()
        for i, generic_function in enumerate(self.generic_functions):
            samples_values = []
            for sample in self.solver.samples():
                size = sample.input(self.length_function) or 0
                sample_values = []
                for j in range(size):
                    if sample.test_mapping(self.mapping, j):
                        sample_values.append(sample.sub_sample(0, 0, j, j).input(generic_function))
                samples_values.append(sample_values)
            if arrays_same_value(samples_values):
                continue
            key = _samples_key(samples_values)
            if key in seen:
                continue
            seen.add(key)
            if i < number_count:
                column_type = 'number'
            elif i < number_count + color_count:
                column_type = 'color'
            else:
                column_type = 'grid'
            self.columns_map[i] = len(self.columns_desc)
            self._add_column(ColumnDescription((i,), type=column_type), samples_values)

        basic_columns_end = len(self.columns_desc)
        logger.debug('TableAnalysis: %d basic columns', basic_columns_end)

        # Counts over one column, then over tuples of columns
        count_seen = set()
        current_counts = []
        for i in range(basic_columns_end):
            samples_values = [count_array(values) for values in self.columns_samples[i]]
            if arrays_same_value(samples_values):
                continue
            key = _samples_key(samples_values)
            if key not in count_seen:
                count_seen.add(key)
                current_counts.append([i])
                self._add_column(replace(self.columns_desc[i], count=True, type='number'), samples_values)

        depth = TABLE_ANALYSIS_MAX_DEPTH
        while current_counts and depth > 0:
            depth -= 1
            next_counts = []
            for base in current_counts:
                for i in range(base[-1], basic_columns_end):
                    columns_index = base + [i]
                    columns = [self.columns_samples[index] for index in columns_index]
                    samples_values = [
                        count_arrays([column[s] for column in columns]) for s in range(len(columns[0]))
                    ]
                    if arrays_same_value(samples_values):
                        continue
                    key = _samples_key(samples_values)
                    if key not in count_seen:
                        count_seen.add(key)
                        next_counts.append(columns_index)
                        self._add_column(ColumnDescription(
                            tuple(self.columns_desc[index].indices[0] for index in columns_index),
                            count=True, type='number'), samples_values)
            current_counts = next_counts

        # Ranks of count columns, then of raw number columns
        count_columns_end = len(self.columns_desc)
        rank_seen = set()
        for wanted_count in (True, False):
            for i in range(count_columns_end):
                desc = self.columns_desc[i]
                if desc.count != wanted_count or desc.type != 'number':
                    continue
                for field, ranking in (('rank', rank_array), ('inv_rank', inv_rank_array)):
                    samples_values = [ranking(values) for values in self.columns_samples[i]]
                    key = _samples_key(samples_values)
                    if key not in rank_seen:
                        rank_seen.add(key)
                        self._add_column(replace(desc, type='number', **{field: True}), samples_values)

        logger.debug('TableAnalysis: %d columns', len(self.columns_desc))

    # ==========================================================================
    # Function search
    # ==========================================================================

    def _output_rows(self, output_column: List[Column], values: Sequence) -> Optional[List[List[int]]]:
        rows = []
        for j, value in enumerate(values):
            if j >= len(output_column):
                return None
            matching = [k for k, v in enumerate(output_column[j]) if v is not None and v == value]
            if not matching:
                return None
            rows.append(matching)
        return rows

    def enum_functions(self, type: str, values: Sequence) -> Iterator[F]:
        """
        Functions reproducing values[j] for each sample j.

        Derived number columns are tried first, keyed by the raw columns they
        were computed from. Then, for each column of the requested type, the
        search looks for constant values in other columns that single out
        rows holding the target, alone or in combination.
        """
        if type == 'number':
            for output_desc, output_column in zip(self.columns_desc, self.columns_samples):
                if output_desc.type != 'number' or not output_desc.derived:
                    continue
                output_rows = self._output_rows(output_column, values)
                if output_rows is None:
                    continue
                raw_descs = [self.columns_desc[self.columns_map[index]] for index in output_desc.indices]
                input_columns = [self.columns_samples[self.columns_map[index]] for index in output_desc.indices]
                candidates = None
                for j, rows in enumerate(output_rows):
                    keys = [tuple(column[j][k] for column in input_columns) for k in rows]
                    if candidates is None:
                        candidates = list(dict.fromkeys(keys))
                    else:
                        present = set(keys)
                        candidates = [key for key in candidates if key in present]
                candidates = [key for key in candidates or [] if None not in key]
                if candidates:
                    yield self.build_function(list(candidates[0]), raw_descs, output_desc)

        logger.debug("TableAnalysis.enum_functions('%s')", type)
        comparisons = TABLE_ANALYSIS_MAX_COMPARISONS

        for output_index, (output_desc, output_column) in enumerate(zip(self.columns_desc, self.columns_samples)):
            if output_desc.type != type:
                continue
            output_rows = self._output_rows(output_column, values)
            if output_rows is None:
                continue

            potential = []
            for input_index, (input_desc, input_column) in enumerate(zip(self.columns_desc, self.columns_samples)):
                self.solver.check_timeout()
                if input_index == output_index:
                    continue
                input_values = list(dict.fromkeys(input_column[0]))
                for j in range(len(input_column)):
                    if not input_values:
                        break
                    if j >= len(output_rows):
                        break
                    new_values = set(input_column[j][k] for k in output_rows[j])
                    input_values = [v for v in input_values if v in new_values]
                for value in input_values:
                    if value is not None:
                        potential.append((value, input_desc, input_column))

            potential.sort(key=lambda p: p[0])

            def test_potential_inputs(indices: Sequence[int]) -> str:
                incomplete = False
                for sample_index, target in enumerate(values):
                    output_values = set()
                    for row_index, output_value in enumerate(output_column[sample_index]):
                        if output_value is None:
                            continue
                        if all(potential[i][2][sample_index][row_index] == potential[i][0] for i in indices):
                            output_values.add(output_value)
                    if target not in output_values:
                        return 'invalid'
                    if len(output_values) > 1:
                        incomplete = True
                return 'incomplete' if incomplete else 'complete'

            incomplete_indices = []
            incomplete_sequences = set()
            current_sequences = []
            for i in range(len(potential)):
                result = test_potential_inputs([i])
                if result == 'complete':
                    yield self.build_function([potential[i][0]], [potential[i][1]], output_desc)
                elif result == 'incomplete':
                    self.solver.check_timeout()
                    incomplete_indices.append(i)
                    incomplete_sequences.add((i,))
                    current_sequences.append((i,))

            while current_sequences:
                next_sequences = []
                for sequence in current_sequences:
                    for index in incomplete_indices:
                        if index <= sequence[-1]:
                            continue
                        candidate = sequence + (index,)
                        if not all(candidate[:i] + candidate[i + 1:] in incomplete_sequences
                                   for i in range(len(candidate))):
                            continue
                        comparisons -= 1
                        if comparisons < 0:
                            raise TableAnalysisError('Table analysis failed!')
                        result = test_potential_inputs(candidate)
                        if result == 'complete':
                            yield self.build_function([potential[i][0] for i in candidate],
                                                      [potential[i][1] for i in candidate], output_desc)
                        elif result == 'incomplete':
                            self.solver.check_timeout()
                            incomplete_sequences.add(candidate)
                            next_sequences.append(candidate)
                current_sequences = next_sequences

    # ==========================================================================
    # Function construction
    # ==========================================================================

    def build_function(self, inputs: List[Input], inputs_desc: List[ColumnDescription],
                       output_desc: ColumnDescription) -> F:
        """
        Tracked function reading output_desc at the row selected by inputs.

        Each input narrows the candidate rows: a constant keeps the rows where
        the matching input column holds it, 'index' keeps the current row.
        """
        length_function = self.length_function
        index_function = self.index_function
        generation = self.solver.generation
        mapping = self.mapping
        generic_functions = self.generic_functions

        def column_at(image, indices, index: int) -> Column:
            f = generic_functions[index]
            size = length_function(image, indices) or 0
            result = []
            for i in range(size):
                new_indices = tuple(indices[:generation]) + (i,)
                if mapping is None or mapping(image, new_indices):
                    result.append(f(image, new_indices))
                else:
                    result.append(None)
            return result

        def get_column(image, indices, desc: ColumnDescription) -> Column:
            columns = [column_at(image, indices, index) for index in desc.indices]
            column = count_arrays(columns) if desc.count else columns[0]
            if desc.rank:
                return rank_array(column)
            if desc.inv_rank:
                return inv_rank_array(column)
            return column

        def func(image, indices):
            input_columns = [get_column(image, indices, desc) for desc in inputs_desc]
            output_column = get_column(image, indices, output_desc)
            current_index = index_function(image, indices)
            rows = list(range(len(output_column)))
            for value, column in zip(inputs, input_columns):
                if value == 'index':
                    rows = [row for row in rows if row == current_index]
                else:
                    rows = [row for row in rows if column[row] is not None and column[row] == value]
            return output_column[rows[0]] if rows else None

        source = self._source(inputs, inputs_desc, output_desc)
        return F(source, Custom(source, func))

    def _source(self, inputs: List[Input], inputs_desc: List[ColumnDescription],
                output_desc: ColumnDescription) -> str:
        current_index = f"i{self.solver.generation}"

        def get_column(desc: ColumnDescription) -> str:
            columns = [f"column({current_index}, {self.generic_functions[index].path})" for index in desc.indices]
            column = f"count_array({','.join(columns)})" if desc.count else columns[0]
            if desc.rank:
                return f"rank_array({column})"
            if desc.inv_rank:
                return f"inv_rank_array({column})"
            return column

        index = ''
        for value, desc in zip(inputs, inputs_desc):
            column = f"{get_column(desc)}[{index}]" if index else get_column(desc)
            index = current_index if value == 'index' else f"find_index({column}, {value})"
        return f"{get_column(output_desc)}[{index}]"

    def get_extended_number_functions(self) -> list:
        """
        One generation down, the rank of the current row in each single-column
        rank table, as dual functions over the flattened rows.
        """
        from .solver import DualFunction

        result = []
        for desc, samples_values in zip(self.columns_desc, self.columns_samples):
            if (desc.rank or desc.inv_rank) and len(desc.indices) == 1:
                values = [v for sample_values in samples_values for v in sample_values]
                result.append(DualFunction('number', self.build_function(['index'], [desc], desc),
                                           self.solver.generation + 1, values))
        return result
