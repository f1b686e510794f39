"""
Program-synthesis solver.

A Solver holds a set of (input image, output image) samples. Every feature
function offered by the input images is evaluated once per sample into a
dual function (function plus its per-sample values). Target features of the
output images are then reconstructed from those duals by a fixed cascade of
strategies: identity, constants, affine relations, table analysis, decision
trees and lookup tables. Every candidate is checked against all samples
before it is returned.

Sub-solvers descend one generation into a sub-image collection: each of
their samples is one sub-image of one parent sample, and the sample's
position is pushed onto its indices.
"""

import logging
import numbers
from typing import Callable, Dict, Iterator, List, NamedTuple, Optional, Sequence, Tuple

from ..config import (
    BOOLEAN_TABLE_CHECK_PERIOD, CONSTANT_CANDIDATES_MAX, DECISION_TREE_MAX_DEPTH, DECISION_TREE_MAX_STEPS,
    DECISION_TREE_ROOTS, MAPPING_MAX_RATIO, MAX_PERMUTED_SUB_IMAGES, SELECTOR_ROUNDS, SolverOptions,
)
from ..errors import (
    ArcSynthError, CantBuildColorFunction, CantBuildGridFunction, CantBuildNumberFunction, SolverError,
    SolverTimeout, TableAnalysisError,
)
from ..functions import F, Const, Custom, GridAt, GridIndex
from ..grid import Grid
from ..images import BackgroundColor, ImageTransformation, SubImages, basic_image
from ..types import Color, FINITE_TRANSFORMS, Transform
from ..utils import bitfield_to_string, booleans_to_bitfield, count_bits, make_permutations, normalize_value, unique
from .cancellation import CancellationToken
from .sample import Sample, any_rec_array, flatten_rec_array
from .table_analysis import TableAnalysis

logger = logging.getLogger(__name__)

FAILED = 'failed'


# ==============================================================================
# Value types
# ==============================================================================

class DualFunction(NamedTuple):
    """A feature function with its value on every sample of one generation."""
    type: str
    func: F
    generation: int
    values: List


def dual_function_key(dual: DualFunction) -> str:
    return f"{dual.type}: {dual.generation} = [{','.join(str(normalize_value(v)) for v in dual.values)}]"


class SubFunctions(NamedTuple):
    """Feature functions one generation down, inside a sub-image collection."""
    length_function: F
    index_function: F
    sub_images_functions: List[F]
    number_functions: List[F]
    color_functions: List[F]
    grid_functions: List[F]


class MappingSubSolver(NamedTuple):
    sub_solver: 'Solver'
    boolean_function: F
    length_function: F


class FunctionInfo(NamedTuple):
    func: F
    bitfield: int
    count: int


class GridTable:
    """Interns grids so grid-valued features can be handled as numbers."""

    def __init__(self):
        self.grids: List[Grid] = []
        self.index: Dict[str, int] = {}

    def intern(self, grid: Grid) -> int:
        key = str(grid)
        if key not in self.index:
            self.index[key] = len(self.grids)
            self.grids.append(grid)
        return self.index[key]

    def at(self, index) -> Optional[Grid]:
        if index is None or index < 0 or index >= len(self.grids):
            return None
        return self.grids[index]

    def __len__(self) -> int:
        return len(self.grids)


def _is_number(value) -> bool:
    return isinstance(value, numbers.Number) and not isinstance(value, bool)


def _same_output(expected, actual) -> bool:
    if isinstance(expected, Grid) or isinstance(actual, Grid):
        return isinstance(expected, Grid) and isinstance(actual, Grid) and expected.equals(actual)
    return normalize_value(expected) == normalize_value(actual)


def _same_value(a, b) -> bool:
    return a is not None and normalize_value(a) == normalize_value(b)


def _first_child(f: F, sample: Sample):
    try:
        children = sample.input(f)
    except SolverTimeout:
        raise
    except ArcSynthError as e:
        logger.debug('No sub-images for %s: %s', f.path, e)
        return None
    return children[0] if children else None


# ==============================================================================
# Solver
# ==============================================================================

class Solver:
    """
    Samples plus the dual functions and boolean predicates built over them.

    Construct with Solver.make() at the root, or make_sub_solver() one
    generation down.
    """

    def __init__(self, options: Optional[SolverOptions] = None):
        self.options = options or SolverOptions()
        self.token: Optional[CancellationToken] = None
        self.parent: Optional['Solver'] = None
        self.generation = 0
        self.mapping = None
        self.grid_table = GridTable()

        self.sample_list: List[Sample] = []
        self.samples_mask = 0
        self.samples_count = 0

        self.sub_images_functions: List[F] = []
        self.sub_images_number_functions: List[List[F]] = []
        self.sub_images_color_functions: List[List[F]] = []
        self.sub_images_grid_functions: List[List[F]] = []
        self.sub_images_table_analysis: List[TableAnalysis] = []

        self.number_functions: List[DualFunction] = []
        self.color_functions: List[DualFunction] = []
        self.grid_functions: List[DualFunction] = []
        self.generic_functions: List[DualFunction] = []
        self.seen_dual = set()

        self.boolean_functions: Dict[int, F] = {}
        self.output_dual: Dict[str, Dict[str, object]] = {'number': {}, 'color': {}, 'grid': {}}

    @staticmethod
    def make(inputs: Sequence, outputs: Sequence, options: Optional[SolverOptions] = None) -> 'Solver':
        """Root solver over the (input, output) image pairs."""
        solver = Solver(options)
        solver.token = CancellationToken(timeout=solver.options.timeout, fuel=solver.options.step_fuel)
        solver.init(inputs, outputs)
        return solver

    def check_timeout(self) -> None:
        if self.token is not None:
            self.token.check()

    # ==========================================================================
    # Samples
    # ==========================================================================

    def samples(self, mask: int = -1) -> Iterator[Sample]:
        """Samples whose position bit is set in mask."""
        for position, sample in enumerate(self.sample_list):
            if (mask >> position) & 1:
                yield sample

    def _set_samples(self, samples: List[Sample]) -> None:
        self.sample_list = samples
        self.samples_count = len(samples)
        self.samples_mask = (1 << self.samples_count) - 1

    def first_sample(self, mask: int = -1) -> Sample:
        for sample in self.samples(mask):
            return sample
        raise SolverError('No sample')

    def output_first_level(self, f: F, output_is_input: bool = False) -> List:
        """One output value per root sample; SolverError when the sub-samples disagree."""
        values = {}
        for sample in self.samples():
            value = sample.output(f, output_is_input)
            index_0 = sample.indices[0]
            if index_0 in values:
                if not _same_output(values[index_0], value):
                    raise SolverError('Output is not constant on sub-samples')
            else:
                values[index_0] = value
        return [values[k] for k in sorted(values)]

    def is_constant_output(self, f: F, output_is_input: bool = False) -> bool:
        first = None
        for position, sample in enumerate(self.samples()):
            value = sample.output(f, output_is_input)
            if position == 0:
                first = value
            elif not _same_output(first, value):
                return False
        return True

    # ==========================================================================
    # Dual functions
    # ==========================================================================

    def raise_dual(self, func: F, type: str) -> DualFunction:
        return DualFunction(type, func, self.generation, [sample.input(func) for sample in self.samples()])

    def raise_dual_output(self, func: F, type: str, output_is_input: bool = False) -> DualFunction:
        values = [sample.output(func, output_is_input) for sample in self.samples()]
        return DualFunction(type, func, self.generation, values)

    def raise_grid_number_function(self, grid_function: F) -> F:
        return F(grid_function.name, GridIndex(grid_function.expr, self.grid_table))

    def raise_grid_function(self, number_function: F) -> F:
        return F(f"grid({number_function.name})", GridAt(number_function.expr, self.grid_table))

    def lift_dual(self, dual: DualFunction) -> DualFunction:
        """A parent's dual expressed over this solver's samples."""
        return DualFunction(dual.type, dual.func, self.generation, [sample.dual_input(dual) for sample in self.samples()])

    def restrict_dual(self, dual: DualFunction) -> DualFunction:
        return DualFunction(dual.type, dual.func, dual.generation,
                            [dual.values[sample.unmask_index] for sample in self.samples()])

    def filter_dual(self, duals: Sequence[DualFunction]) -> List[DualFunction]:
        """Drop duals whose values repeat an earlier one."""
        result = []
        for dual in duals:
            key = dual_function_key(dual)
            if key not in self.seen_dual:
                self.seen_dual.add(key)
                result.append(dual)
        return result

    def _raise_duals(self, funcs: Sequence[F], type: str) -> List[DualFunction]:
        result = []
        for func in funcs:
            try:
                result.append(self.raise_dual(func, type))
            except SolverTimeout:
                raise
            except ArcSynthError as e:
                logger.debug('Skipping feature %s: %s', func.path, e)
        return result

    def _modulo_duals(self, duals: Sequence[DualFunction]) -> List[DualFunction]:
        return [DualFunction('number', F.mod(d.func, 2), d.generation,
                             [v % 2 if _is_number(v) else None for v in d.values]) for d in duals]

    def get_functions(self, type: str) -> List[DualFunction]:
        if type == 'number':
            return self.number_functions
        if type == 'color':
            return self.color_functions
        if type == 'grid':
            return self.grid_functions
        raise SolverError(f"Unknown type {type}")

    # ==========================================================================
    # Initialisation
    # ==========================================================================

    def init(self, inputs: Sequence, outputs: Sequence) -> None:
        self.check_timeout()
        self._set_samples([Sample(i, (i,), inputs[i], i, (), outputs[i], i, ()) for i in range(len(inputs))])
        for image in list(inputs) + list(outputs):
            for grid in image.grids():
                self.grid_table.intern(grid)

        first = inputs[0]
        self.sub_images_functions = list(first.sub_images_functions())
        for sub_images_function in self.sub_images_functions:
            self._add_sub_images_features(sub_images_function, _first_child(sub_images_function, self.first_sample()))

        for i, sub_images_function in enumerate(self.sub_images_functions):
            try:
                self.sub_images_table_analysis.append(self._make_table_analysis(i, None))
            except SolverTimeout:
                raise
            except ArcSynthError as e:
                logger.debug('No table analysis for %s: %s', sub_images_function.path, e)

        number_duals = self._raise_duals(first.number_functions(), 'number')
        self.number_functions = self.filter_dual(number_duals + self._modulo_duals(number_duals))
        self.color_functions = self.filter_dual(self._raise_duals(first.color_functions(), 'color'))
        grid_number_functions = [self.raise_grid_number_function(f) for f in first.grid_functions()]
        self.grid_functions = self.filter_dual(self._raise_duals(grid_number_functions, 'grid'))
        self.generic_functions = self.number_functions + self.color_functions + self.grid_functions
        logger.debug('Solver %d samples, %d number, %d color, %d grid functions', self.samples_count,
                     len(self.number_functions), len(self.color_functions), len(self.grid_functions))
        self.compute_boolean_functions()

    def _add_sub_images_features(self, sub_images_function: F, child) -> None:
        if child is None:
            numbers_, colors, grids = [], [], []
        else:
            numbers_ = list(child.number_functions())
            colors = list(child.color_functions())
            grids = list(child.grid_functions())
        self.sub_images_number_functions.append(numbers_)
        self.sub_images_color_functions.append(colors)
        self.sub_images_grid_functions.append(grids)

    def _sub_features(self, i: int) -> Tuple[List[F], List[F], List[F]]:
        """Features of collection i, rooted at this solver's images."""
        to_sub = self.sub_images_functions[i]
        generation = self.generation
        numbers_ = [f.prefix_generation(to_sub, generation) for f in self.sub_images_number_functions[i]]
        colors = [f.prefix_generation(to_sub, generation) for f in self.sub_images_color_functions[i]]
        grids = [self.raise_grid_number_function(f).prefix_generation(to_sub, generation)
                 for f in self.sub_images_grid_functions[i]]
        return numbers_, colors, grids

    def _make_table_analysis(self, i: int, mapping: Optional[F], index_function: Optional[F] = None) -> TableAnalysis:
        numbers_, colors, grids = self._sub_features(i)
        return TableAnalysis(self, mapping, self.sub_images_functions[i].length(),
                             index_function or F('no index', Const(None)),
                             numbers_ + colors + grids, [len(numbers_), len(colors), len(grids)])

    def sub_init(self, parent: 'Solver', sub_functions: SubFunctions, mapping=None,
                 boolean_function: Optional[F] = None, **option_overrides) -> None:
        """
        Descend into one sub-image collection of parent.

        Args:
            parent: Solver one generation up
            sub_functions: Features of the collection, rooted at parent's images
            mapping: None (keep every sub-image), a rec array of output
                indices (negative entries are dropped) or a boolean function
            boolean_function: Selector the mapping stands for, used for the
                second table analysis
            option_overrides: SolverOptions fields changed for this sub-solver
        """
        self.parent = parent
        self.token = parent.token.child() if parent.token is not None else None
        self.check_timeout()
        self.options = parent.options.replace(**option_overrides) if option_overrides else parent.options
        self.generation = parent.generation + 1
        self.mapping = mapping
        self.grid_table = parent.grid_table

        samples = []
        unmask_index = 0
        for sample in parent.samples():
            size = sample.input(sub_functions.length_function) or 0
            for i in range(size):
                if isinstance(mapping, F):
                    candidate = sample.sub_sample(unmask_index, len(samples), i, i)
                    if candidate.input(mapping):
                        samples.append(candidate)
                else:
                    j = sample.output_mapping(mapping, i) if mapping is not None else i
                    if j is not None and j >= 0:
                        samples.append(sample.sub_sample(unmask_index, len(samples), i, j))
                unmask_index += 1
        self._set_samples(samples)
        logger.debug('Sub-solver generation %d: %d of %d sub-images', self.generation, len(samples), unmask_index)

        # Sub-image collections of the parent, then of the sub-images themselves
        self.sub_images_functions = list(parent.sub_images_functions)
        self.sub_images_number_functions = list(parent.sub_images_number_functions)
        self.sub_images_color_functions = list(parent.sub_images_color_functions)
        self.sub_images_grid_functions = list(parent.sub_images_grid_functions)
        self.sub_images_table_analysis = list(parent.sub_images_table_analysis)
        if samples:
            for f in sub_functions.sub_images_functions:
                self.sub_images_functions.append(f)
                self._add_sub_images_features(f, _first_child(f, samples[0]))

        additional_numbers = self._raise_duals(sub_functions.number_functions, 'number')
        additional_numbers += self._modulo_duals(additional_numbers)
        if not self.options.no_sub_table_analysis:
            counts = [len(sub_functions.number_functions), len(sub_functions.color_functions),
                      len(sub_functions.grid_functions)]
            sub_features = sub_functions.number_functions + sub_functions.color_functions + sub_functions.grid_functions
            try:
                table_analysis = TableAnalysis(parent, None, sub_functions.length_function,
                                               sub_functions.index_function, sub_features, counts)
                additional_numbers += [self.restrict_dual(d) for d in table_analysis.get_extended_number_functions()]
                if boolean_function is not None:
                    selected_analysis = TableAnalysis(parent, boolean_function, sub_functions.length_function,
                                                      sub_functions.index_function, sub_features, counts)
                    for dual in selected_analysis.get_extended_number_functions():
                        if len(dual.values) == self.samples_count:
                            additional_numbers.append(dual)
            except SolverTimeout:
                raise
            except ArcSynthError as e:
                logger.debug('Sub table analysis failed: %s', e)

        lifted = [self.lift_dual(d) for d in parent.number_functions]
        self.number_functions = self.filter_dual(lifted + additional_numbers)
        lifted = [self.lift_dual(d) for d in parent.color_functions]
        self.color_functions = self.filter_dual(lifted + self._raise_duals(sub_functions.color_functions, 'color'))
        lifted = [self.lift_dual(d) for d in parent.grid_functions]
        self.grid_functions = self.filter_dual(lifted + self._raise_duals(sub_functions.grid_functions, 'grid'))
        self.generic_functions = self.number_functions + self.color_functions + self.grid_functions
        self.compute_boolean_functions()

    def sibling_init(self, solver: 'Solver', mapping=None) -> None:
        """Same samples and duals as solver, with fresh boolean predicates."""
        self.parent = solver.parent
        self.token = solver.token
        self.options = solver.options
        self.generation = solver.generation
        self.mapping = mapping
        self.grid_table = solver.grid_table
        self._set_samples(list(solver.sample_list))
        self.sub_images_functions = list(solver.sub_images_functions)
        self.sub_images_number_functions = list(solver.sub_images_number_functions)
        self.sub_images_color_functions = list(solver.sub_images_color_functions)
        self.sub_images_grid_functions = list(solver.sub_images_grid_functions)
        self.sub_images_table_analysis = list(solver.sub_images_table_analysis)
        self.number_functions = list(solver.number_functions)
        self.color_functions = list(solver.color_functions)
        self.grid_functions = list(solver.grid_functions)
        self.generic_functions = list(solver.generic_functions)
        self.seen_dual = set(solver.seen_dual)
        self.compute_boolean_functions()

    # ==========================================================================
    # Boolean predicates
    # ==========================================================================

    def add_boolean_function(self, f: F, values: Sequence[bool]) -> None:
        """Keep f unless its bitfield is known, empty, full or a single sample."""
        bitfield = booleans_to_bitfield(values)
        if bitfield == 0 or bitfield == self.samples_mask or bitfield & (bitfield - 1) == 0:
            return
        if bitfield not in self.boolean_functions:
            self.boolean_functions[bitfield] = f

    def compute_boolean_functions(self) -> None:
        """
        Predicates over the samples, one per distinct bitfield.

        Small constants come first so the simplest predicate wins a bitfield:
        equality with 0..4, with every observed value, then equality between
        same-typed duals and ordering between number duals.
        """
        self.boolean_functions = {}
        ticks = 0

        def tick():
            nonlocal ticks
            ticks += 1
            if ticks % BOOLEAN_TABLE_CHECK_PERIOD == 0:
                self.check_timeout()

        for value in range(5):
            for dual in self.generic_functions:
                if any(_same_value(v, value) for v in dual.values):
                    tick()
                    self.add_boolean_function(F.equals(dual.func, value), [_same_value(v, value) for v in dual.values])

        for dual in self.generic_functions:
            for value in unique(normalize_value(v) for v in dual.values):
                tick()
                self.add_boolean_function(F.equals(dual.func, value), [_same_value(v, value) for v in dual.values])

        if not self.options.no_equal:
            for duals in (self.number_functions, self.color_functions, self.grid_functions):
                for i, a in enumerate(duals):
                    for b in duals[i + 1:]:
                        tick()
                        self.add_boolean_function(F.equals(a.func, b.func),
                                                  [_same_value(x, y) for x, y in zip(a.values, b.values)])

        for a in self.number_functions:
            for b in self.number_functions:
                if a is b:
                    continue
                tick()
                self.add_boolean_function(F.lower_than(a.func, b.func),
                                          [_is_number(x) and _is_number(y) and x < y
                                           for x, y in zip(a.values, b.values)])

        logger.debug('Solver generation %d: %d boolean functions', self.generation, len(self.boolean_functions))

    def enum_boolean_functions(self, positives: int, negatives: int) -> Iterator[F]:
        """
        Predicates true on every positive and false on every negative sample.

        Single predicates (or their negation) first, then conjunctions and
        disjunctions of two and three predicates.
        """
        all_true_positives: Dict[int, F] = {}
        all_false_negatives: Dict[int, F] = {}

        for bitfield, f in self.boolean_functions.items():
            true_positive = positives & bitfield
            false_negative = negatives & ~bitfield
            all_true_positive = true_positive == positives
            none_true_positive = true_positive == 0
            all_false_negative = false_negative == negatives
            none_false_negative = false_negative == 0

            if all_true_positive and none_false_negative or none_true_positive and all_false_negative:
                continue
            if all_true_positive and all_false_negative:
                yield f
            elif none_true_positive and none_false_negative:
                yield F.not_(f)
            elif all_true_positive:
                all_true_positives.setdefault(false_negative, f)
            elif none_true_positive:
                all_true_positives.setdefault(negatives & bitfield, F.not_(f))
            elif all_false_negative:
                all_false_negatives.setdefault(true_positive, f)
            elif none_false_negative:
                all_false_negatives.setdefault(positives & ~bitfield, F.not_(f))

        ands = list(all_true_positives.items())
        ors = list(all_false_negatives.items())
        for nf1, f1 in ands:
            for nf2, f2 in ands:
                if nf1 | nf2 == negatives:
                    yield F.and_(f1, f2)
        for pf1, f1 in ors:
            for pf2, f2 in ors:
                if pf1 | pf2 == positives:
                    yield F.or_(f1, f2)

        for nf1, f1 in ands:
            for nf2, f2 in ands:
                self.check_timeout()
                for nf3, f3 in ands:
                    if nf1 | nf2 | nf3 == negatives and nf1 | nf2 != negatives and \
                            nf1 | nf3 != negatives and nf2 | nf3 != negatives:
                        yield F.and_(f1, F.and_(f2, f3))
        for pf1, f1 in ors:
            for pf2, f2 in ors:
                self.check_timeout()
                for pf3, f3 in ors:
                    if pf1 | pf2 | pf3 == positives and pf1 | pf2 != positives and \
                            pf1 | pf3 != positives and pf2 | pf3 != positives:
                        yield F.or_(f1, F.or_(f2, f3))

    def select_boolean_function(self, positives: int, negatives: int) -> Optional[F]:
        for f in self.enum_boolean_functions(positives, negatives):
            return f
        return None

    def group_counts(self) -> List[int]:
        """Number of samples per root sample, in sample order."""
        counts: Dict[int, int] = {}
        for sample in self.samples():
            counts[sample.indices[0]] = counts.get(sample.indices[0], 0) + 1
        if not counts:
            return []
        return [counts.get(g, 0) for g in range(max(counts) + 1)]

    def enum_boolean_selectors(self) -> Iterator[F]:
        """
        Predicates true on exactly one sample of every root sample.

        Predicates true on at least one sample of every group, and on more
        than one somewhere, are refined by conjunction over SELECTOR_ROUNDS
        rounds.
        """
        group_counts = self.group_counts()

        def classify(bitfield: int) -> str:
            shift = 0
            partial = False
            for count in group_counts:
                n = count_bits((bitfield >> shift) & ((1 << count) - 1))
                shift += count
                if n == 0:
                    return FAILED
                if n > 1:
                    partial = True
            return 'partial' if partial else 'success'

        partial_selectors: Dict[int, F] = {}
        for bitfield, f in list(self.boolean_functions.items()):
            for output, selector in ((bitfield, f), (self.samples_mask & ~bitfield, F.not_(f))):
                state = classify(output)
                if state == 'success':
                    yield selector
                elif state == 'partial':
                    partial_selectors.setdefault(output, selector)

        current = partial_selectors
        for _ in range(SELECTOR_ROUNDS):
            if not current:
                break
            next_selectors: Dict[int, F] = {}
            for output1, f1 in partial_selectors.items():
                for output2, f2 in current.items():
                    self.check_timeout()
                    if output1 == output2:
                        continue
                    output = output1 & output2
                    state = classify(output)
                    if state == 'success':
                        yield F.and_(f1, f2)
                    elif state == 'partial':
                        next_selectors.setdefault(output, F.and_(f1, f2))
            current = next_selectors

    def _is_group_valid(self, bitfield: int, group_counts: List[int]) -> bool:
        shift = 0
        for count in group_counts:
            if (bitfield >> shift) & ((1 << count) - 1) == 0:
                return False
            shift += count
        return True

    def enum_valid_boolean_terms(self, positives: int, negatives: int) -> Iterator[Tuple[int, F]]:
        """
        Conjunctions of predicates false on every negative sample and true
        on at least one positive sample of every root sample.

        Yields (bitfield, predicate). A conjunction is only extended when all
        of its sub-conjunctions were kept, as in level-wise itemset mining.
        """
        group_counts = self.group_counts()
        if not self._is_group_valid(positives, group_counts):
            return

        primaries: List[Tuple[int, F]] = []
        current: List[Tuple[int, Tuple[int, ...]]] = []
        range_ = positives | negatives
        seen = set()
        accepted = set()

        for bitfield, f in list(self.boolean_functions.items()):
            if not self._is_group_valid(bitfield & positives, group_counts):
                continue
            in_range = bitfield & range_
            if in_range in seen:
                continue
            seen.add(in_range)
            if bitfield & negatives == 0:
                yield bitfield, f
            else:
                current.append((bitfield, (len(primaries),)))
                accepted.add((len(primaries),))
                primaries.append((bitfield, f))

        def is_accepted(indices: Tuple[int, ...]) -> bool:
            return all(indices[:i] + indices[i + 1:] in accepted for i in range(len(indices)))

        while current:
            self.check_timeout()
            next_generation = []
            for current_bitfield, indices in current:
                for i in range(indices[-1] + 1, len(primaries)):
                    bitfield = current_bitfield & primaries[i][0]
                    if not self._is_group_valid(bitfield & positives, group_counts):
                        continue
                    in_range = bitfield & range_
                    new_indices = indices + (i,)
                    if in_range in seen or not is_accepted(new_indices):
                        continue
                    seen.add(in_range)
                    if bitfield & negatives == 0:
                        yield bitfield, F.and_v([primaries[k][1] for k in new_indices])
                    else:
                        next_generation.append((bitfield, new_indices))
                        accepted.add(new_indices)
            current = next_generation

    # ==========================================================================
    # Partial functions and decision trees
    # ==========================================================================

    def _function_infos(self, values: List, type: str) -> List[FunctionInfo]:
        infos = []
        for dual in self.get_functions(type):
            bits = booleans_to_bitfield(_same_output(v, d) for v, d in zip(values, dual.values))
            if bits:
                infos.append(FunctionInfo(dual.func, bits, count_bits(bits)))
        distinct = unique(normalize_value(v) for v in values if v is not None)
        if len(distinct) < CONSTANT_CANDIDATES_MAX:
            for value in distinct:
                if _is_number(value) and value < 0:
                    continue
                bits = booleans_to_bitfield(_same_output(v, value) for v in values)
                infos.append(FunctionInfo(F.const(value), bits, count_bits(bits)))
        return infos

    def select_best_function(self, f: F, output_is_input: bool = False,
                             type: str = 'number') -> Tuple[int, F]:
        """
        Best partial reconstruction of f.

        Returns (bitfield of reproduced samples, function). Partial functions
        are stacked with if-then-else, each guarded by the greedy set cover
        of valid boolean terms over the samples it still has to explain.
        Samples whose target is missing or negative are not considered.
        """
        values = [sample.output(f, output_is_input) for sample in self.samples()]
        considered = booleans_to_bitfield(v is not None and not (_is_number(v) and v < 0) for v in values)
        infos = self._function_infos(values, type)

        done = 0
        best = F.const(-1)
        while True:
            todo = considered & ~done
            seen = set()
            updated = []
            for info in infos:
                bits = info.bitfield & todo
                if bits and bits not in seen:
                    seen.add(bits)
                    updated.append((bits, info))
            updated.sort(key=lambda item: -count_bits(item[0]))

            progress = False
            for bits, info in updated:
                terms = list(self.enum_valid_boolean_terms(bits, considered & ~info.bitfield))
                self.check_timeout()
                if not terms:
                    continue
                selected = []
                left = [(term_bits & bits, term) for term_bits, term in terms]
                while left:
                    left.sort(key=lambda item: -count_bits(item[0]))
                    selected.append(left[0])
                    chosen = left[0][0]
                    left = [(term_bits & ~chosen, term) for term_bits, term in left[1:] if term_bits & ~chosen]
                added = 0
                for term_bits, _ in selected:
                    added |= term_bits
                added &= considered
                if added & ~done:
                    best = F.ifthenelse(F.or_v([term for _, term in selected]), info.func, best)
                    done |= added
                    progress = True
                    break
            if not progress:
                logger.debug('Best %s function for %s covers %s', type, f.path,
                             bitfield_to_string(done, self.samples_count))
                return done, best

    def enum_mapping_functions(self, f: F, output_is_input: bool = False) -> Iterator[F]:
        """Lookup tables from one input dual to the output, when the table is small."""
        values = [sample.output(f, output_is_input) for sample in self.samples()]
        for dual in self.generic_functions:
            table = {}
            valid = True
            for value, key in zip(values, dual.values):
                key = normalize_value(key)
                try:
                    if key in table:
                        if not _same_output(table[key], value):
                            valid = False
                            break
                    else:
                        table[key] = value
                except TypeError:
                    valid = False
                    break
            if valid and len(table) < MAPPING_MAX_RATIO * self.samples_count:
                yield F.lookup(table, dual.func)

    def select_decision_tree_function(self, f: F, output_is_input: bool = False,
                                      type: str = 'number') -> Optional[F]:
        """
        Chain of if-then-else over partial functions, each branch taken when
        a boolean predicate separates its samples from the rest. The first
        DECISION_TREE_ROOTS partial functions are tried as the default.
        """
        values = [sample.output(f, output_is_input) for sample in self.samples()]
        infos = sorted(self._function_infos(values, type), key=lambda info: -info.count)
        steps = DECISION_TREE_MAX_STEPS

        def analyse(covered: int, range_: int, build: Callable[[], Optional[F]], depth: int) -> Optional[F]:
            nonlocal steps
            steps -= 1
            if steps < 0:
                return None
            if range_ & ~covered == 0:
                return build()
            if depth >= DECISION_TREE_MAX_DEPTH or depth >= self.samples_count / 2:
                return None
            self.check_timeout()
            new_range = range_ & ~covered
            ranked = sorted(infos, key=lambda info: -count_bits(info.bitfield & new_range))
            for info in ranked:
                if not info.bitfield & new_range:
                    break

                def branch(info=info, new_range=new_range, build=build):
                    condition = self.select_boolean_function(info.bitfield & new_range,
                                                             self.samples_mask & ~info.bitfield)
                    if condition is None:
                        return None
                    otherwise = build()
                    if otherwise is None:
                        return None
                    return F.ifthenelse(condition, info.func, otherwise)

                result = analyse(covered | info.bitfield, range_, branch, depth + 1)
                if result is not None:
                    return result
            return None

        for info in infos[:DECISION_TREE_ROOTS]:
            result = analyse(info.bitfield, self.samples_mask, lambda info=info: info.func, 0)
            if result is not None:
                return result
        return None

    # ==========================================================================
    # Function search
    # ==========================================================================

    def _reproduces(self, candidate: F, f: F, output_is_input: bool) -> bool:
        for sample in self.samples():
            try:
                actual = sample.input(candidate)
            except SolverTimeout:
                raise
            except ArcSynthError as e:
                logger.debug('Candidate %s failed: %s', candidate.path, e)
                return False
            if not _same_output(sample.output(f, output_is_input), actual):
                return False
        return True

    def _search(self, type: str, f: F, output_is_input: bool,
                enum: Callable[[F, bool], Iterator[F]]) -> Optional[F]:
        key_function = self.raise_grid_number_function(f) if type == 'grid' else f
        key = dual_function_key(self.raise_dual_output(key_function, type, output_is_input))
        memo = self.output_dual[type]
        if key in memo:
            found = memo[key]
            return None if found == FAILED else found
        try:
            for candidate in enum(f, output_is_input):
                if self._reproduces(candidate, f, output_is_input):
                    logger.debug('Found %s function %s for %s', type, candidate.path, f.path)
                    memo[key] = candidate
                    return candidate
        except SolverTimeout:
            raise
        except ArcSynthError as e:
            logger.debug('%s search for %s stopped: %s', type, f.path, e)
        memo[key] = FAILED
        return None

    def _table_analysis_functions(self, type: str, values: List) -> Iterator[F]:
        for table_analysis in self.sub_images_table_analysis:
            try:
                yield from table_analysis.enum_functions(type, values)
            except TableAnalysisError as e:
                logger.debug('Table analysis stopped: %s', e)

    def _same_check(self, f: F, output_is_input: bool) -> bool:
        if self.options.no_same_check or output_is_input:
            return False
        try:
            return all(_same_output(sample.output(f), sample.input(f)) for sample in self.samples())
        except SolverTimeout:
            raise
        except ArcSynthError:
            return False

    def _constant_output(self, f: F, output_is_input: bool):
        values = [sample.output(f, output_is_input) for sample in self.samples()]
        if not values or values[0] is None:
            return None
        if all(_same_output(values[0], v) for v in values[1:]):
            return values[0]
        return None

    def _first_level_values(self, f: F, output_is_input: bool) -> Optional[List]:
        try:
            return self.output_first_level(f, output_is_input)
        except SolverError:
            return None

    def enum_number_functions(self, f: F, output_is_input: bool = False) -> Iterator[F]:
        if self._same_check(f, output_is_input):
            yield f
        constant = self._constant_output(f, output_is_input)
        if constant is not None:
            yield F.const(normalize_value(constant))

        values = [sample.output(f, output_is_input) for sample in self.samples()]
        if values and all(_is_number(v) for v in values):
            for dual in self.number_functions:
                first = dual.values[0] if dual.values else None
                if not _is_number(first):
                    continue
                delta = values[0] - first
                scale = values[0] / first if first else None
                ok_delta = True
                ok_scale = scale is not None
                for value, input_value in zip(values, dual.values):
                    if not _is_number(input_value):
                        ok_delta = ok_scale = False
                        break
                    ok_delta = ok_delta and input_value + delta == value
                    ok_scale = ok_scale and input_value * scale == value
                if ok_delta:
                    yield dual.func if delta == 0 else F.plus(dual.func, normalize_value(delta))
                elif ok_scale:
                    yield F.times(dual.func, normalize_value(scale))
        self.check_timeout()

        first_level = self._first_level_values(f, output_is_input)
        if first_level is not None:
            yield from self._table_analysis_functions('number', first_level)
        if not self.options.no_decision_tree:
            tree = self.select_decision_tree_function(f, output_is_input, 'number')
            if tree is not None:
                yield tree
        if not self.options.no_mapping:
            yield from self.enum_mapping_functions(f, output_is_input)

    def enum_color_functions(self, f: F, output_is_input: bool = False) -> Iterator[F]:
        if self._same_check(f, output_is_input):
            yield f
        constant = self._constant_output(f, output_is_input)
        if constant is not None:
            try:
                name = Color(constant).name
            except ValueError:
                name = str(constant)
            yield F(name, Const(normalize_value(constant)))

        values = [sample.output(f, output_is_input) for sample in self.samples()]
        for dual in self.color_functions:
            if all(_same_output(v, d) for v, d in zip(values, dual.values)):
                yield dual.func
        self.check_timeout()

        first_level = self._first_level_values(f, output_is_input)
        if first_level is not None:
            yield from self._table_analysis_functions('color', first_level)
        if not self.options.no_decision_tree:
            tree = self.select_decision_tree_function(f, output_is_input, 'color')
            if tree is not None:
                yield tree
        if not self.options.no_mapping:
            yield from self.enum_mapping_functions(f, output_is_input)

    def _transform_candidate(self, dual: DualFunction, transform: Transform) -> F:
        index_expr = dual.func.expr
        table = self.grid_table

        def func(image, indices):
            grid = table.at(index_expr.evaluate(image, indices))
            if grid is None:
                return None
            return ImageTransformation(transform, basic_image(grid)).to_grid()

        label = f"{transform.name}({dual.func.name})"
        return F(label, Custom(label, func))

    def _sub_images_candidates(self) -> Iterator[F]:
        """Grids drawn from a whole input collection, combined or permuted."""
        for i, sub_images_function in enumerate(self.sub_images_functions):
            for grid_function in self.sub_images_grid_functions[i]:
                def child_images(image, indices, sub_images_function=sub_images_function,
                                 grid_function=grid_function):
                    grids = [grid_function(sub_image) for sub_image in sub_images_function(image, indices) or []]
                    return [basic_image(g) for g in grids if g is not None]

                for stride in ('and', 'xor', 'free'):
                    def combine(image, indices, stride=stride, child_images=child_images):
                        return SubImages(child_images(image, indices), stride).to_grid()
                    label = f"SubImages({sub_images_function.name}[*].{grid_function.name}, {stride})"
                    yield F(label, Custom(label, combine))

                def background(image, indices, child_images=child_images):
                    return BackgroundColor(Color.true, SubImages(child_images(image, indices), 'free')).to_grid()
                label = f"BackgroundColor(true, {sub_images_function.name}[*].{grid_function.name})"
                yield F(label, Custom(label, background))

                try:
                    count = len(_first_child_list(sub_images_function, self.first_sample()))
                except SolverError:
                    count = 0
                if 1 < count <= MAX_PERMUTED_SUB_IMAGES:
                    for permutation in make_permutations(count):
                        def permuted(image, indices, permutation=permutation, child_images=child_images):
                            images = child_images(image, indices)
                            if len(images) != len(permutation):
                                return None
                            return SubImages([images[k] for k in permutation], 'free').to_grid()
                        label = f"SubImages({sub_images_function.name}[{permutation}].{grid_function.name})"
                        yield F(label, Custom(label, permuted))
            self.check_timeout()

    def enum_grid_functions(self, f: F, output_is_input: bool = False) -> Iterator[F]:
        if self._same_check(f, output_is_input):
            yield f
        constant = self._constant_output(f, output_is_input)
        if isinstance(constant, Grid):
            yield F(f"grid({constant.width}x{constant.height})", Const(constant))

        for dual in self.grid_functions:
            yield self.raise_grid_function(dual.func)
            for transform in FINITE_TRANSFORMS:
                if transform != Transform.identity:
                    yield self._transform_candidate(dual, transform)
        self.check_timeout()

        yield from self._sub_images_candidates()

        f_index = self.raise_grid_number_function(f)
        first_level = self._first_level_values(f_index, output_is_input)
        if first_level is not None:
            for candidate in self._table_analysis_functions('grid', first_level):
                yield self.raise_grid_function(candidate)
        if not self.options.no_decision_tree:
            tree = self.select_decision_tree_function(f_index, output_is_input, 'grid')
            if tree is not None:
                yield self.raise_grid_function(tree)
        if not self.options.no_mapping:
            for candidate in self.enum_mapping_functions(f_index, output_is_input):
                yield self.raise_grid_function(candidate)

    def select_number_function(self, f: F, output_is_input: bool = False) -> Optional[F]:
        return self._search('number', f, output_is_input, self.enum_number_functions)

    def select_color_function(self, f: F, output_is_input: bool = False) -> Optional[F]:
        return self._search('color', f, output_is_input, self.enum_color_functions)

    def select_grid_function(self, f: F, output_is_input: bool = False) -> Optional[F]:
        return self._search('grid', f, output_is_input, self.enum_grid_functions)

    def build_number_function(self, f: F, output_is_input: bool = False) -> F:
        result = self.select_number_function(f, output_is_input)
        if result is None:
            raise CantBuildNumberFunction(f)
        return result

    def build_color_function(self, f: F, output_is_input: bool = False) -> F:
        result = self.select_color_function(f, output_is_input)
        if result is None:
            raise CantBuildColorFunction(f)
        return result

    def build_grid_function(self, f: F, output_is_input: bool = False) -> F:
        result = self.select_grid_function(f, output_is_input)
        if result is None:
            raise CantBuildGridFunction(f)
        return result

    # ==========================================================================
    # Sub-solvers
    # ==========================================================================

    def sub_functions(self) -> Iterator[SubFunctions]:
        """Features one generation down, for each sub-image collection."""
        for i, sub_images_function in enumerate(self.sub_images_functions):
            numbers_, colors, grids = self._sub_features(i)
            child = _first_child(sub_images_function, self.first_sample()) if self.samples_count else None
            nested = [] if child is None else [
                f.prefix_generation(sub_images_function, self.generation) for f in child.sub_images_functions()
            ]
            yield SubFunctions(sub_images_function.length(), F.index(self.generation), nested,
                               numbers_, colors, grids)

    def make_sub_solver(self, sub_functions: SubFunctions, mapping=None,
                        boolean_function: Optional[F] = None, **option_overrides) -> Optional[MappingSubSolver]:
        """
        Sub-solver over the sub-images kept by mapping.

        When a rec-array mapping drops sub-images and no selector is given,
        a selector reproducing the drop is searched first; None when there
        is none.
        """
        if boolean_function is None and isinstance(mapping, list) and \
                any_rec_array(mapping, lambda v: v is not None and v < 0):
            always = Solver(self.options)
            always.sub_init(self, sub_functions, None, None, **option_overrides)
            kept = [v for v in flatten_rec_array(mapping) if v is not None]
            positives = booleans_to_bitfield(v >= 0 for v in kept)
            negatives = always.samples_mask & ~positives
            selector = always.select_boolean_function(positives, negatives)
            if selector is None:
                logger.debug('No selector for mapping %s', mapping)
                return None
            return self.make_sub_solver(sub_functions, mapping, selector, **option_overrides)

        sub_solver = Solver(self.options)
        sub_solver.sub_init(self, sub_functions, mapping, boolean_function, **option_overrides)
        if boolean_function is None:
            boolean_function = mapping if isinstance(mapping, F) else F.const(True)
        return MappingSubSolver(sub_solver, boolean_function, sub_functions.length_function)

    def find_mapping_sub_solvers(self, output_sub_images_function: F) -> Iterator[MappingSubSolver]:
        """
        Sub-solvers pairing an input collection with the output collection.

        Each output sub-image must be matched by exactly one input sub-image
        of the same sample, using one shared feature or the intersection of
        two. Mappings are yielded when every output element is matched.
        """
        first = self.first_sample()
        try:
            output_list = first.output(output_sub_images_function)
        except SolverTimeout:
            raise
        except ArcSynthError as e:
            logger.debug('No output collection: %s', e)
            return
        if not output_list:
            return
        prototype = output_list[0]
        output_features = (list(prototype.number_functions()), list(prototype.color_functions()),
                           [self.raise_grid_number_function(f) for f in prototype.grid_functions()])

        for sub_functions in self.sub_functions():
            self.check_timeout()
            input_features = (sub_functions.number_functions, sub_functions.color_functions,
                              sub_functions.grid_functions)
            seen = set()
            first_generation = []
            pairs = [(a, b) for inputs, outputs in zip(input_features, output_features)
                     for a in inputs for b in outputs]
            for input_feature, output_feature in pairs:
                mapping = self._match_feature(sub_functions, output_sub_images_function,
                                              input_feature, output_feature)
                if mapping is None:
                    continue
                key = _mapping_key(mapping)
                if key in seen:
                    continue
                seen.add(key)
                if _is_solution(mapping):
                    result = self._mapping_sub_solver(sub_functions, mapping)
                    if result is not None:
                        yield result
                else:
                    first_generation.append(mapping)

            for i, a in enumerate(first_generation):
                for b in first_generation[i + 1:]:
                    self.check_timeout()
                    mapping = _intersect_mappings(a, b)
                    if mapping is None:
                        continue
                    key = _mapping_key(mapping)
                    if key in seen:
                        continue
                    seen.add(key)
                    if _is_solution(mapping):
                        result = self._mapping_sub_solver(sub_functions, mapping)
                        if result is not None:
                            yield result

    def _mapping_sub_solver(self, sub_functions: SubFunctions, mapping: List) -> Optional[MappingSubSolver]:
        solution = []
        for sample, (size, matches) in zip(self.samples(), mapping):
            row = [-1] * size
            for output_index, m in enumerate(matches):
                row[next(iter(m))] = output_index
            sample.set_mapping(solution, row)
        try:
            return self.make_sub_solver(sub_functions, solution)
        except SolverTimeout:
            raise
        except ArcSynthError as e:
            logger.debug('Mapping sub-solver failed: %s', e)
            return None

    def _match_feature(self, sub_functions: SubFunctions, output_sub_images_function: F,
                       input_feature: F, output_feature: F) -> Optional[List]:
        """
        Per sample and output element, the set of input sub-images sharing
        the feature value. None when some output element has no match.
        """
        mapping = []
        for sample in self.samples():
            try:
                size = sample.input(sub_functions.length_function) or 0
                input_values = [sample.sub_sample(0, 0, i, i).input(input_feature) for i in range(size)]
                outputs = sample.output(output_sub_images_function) or []
                output_values = [output_feature(output_image) for output_image in outputs]
            except SolverTimeout:
                raise
            except ArcSynthError:
                return None
            sample_mapping = []
            for output_value in output_values:
                matches = {i for i, v in enumerate(input_values) if _same_output(v, output_value)}
                if not matches:
                    return None
                sample_mapping.append(matches)
            mapping.append((size, sample_mapping))
        return mapping


# ==============================================================================
# Mapping helpers
# ==============================================================================

def _first_child_list(f: F, sample: Sample) -> List:
    try:
        return sample.input(f) or []
    except SolverTimeout:
        raise
    except ArcSynthError:
        return []


def _mapping_key(mapping: List) -> str:
    return '|'.join(f"{size}:" + ';'.join(','.join(str(i) for i in sorted(m)) for m in matches)
                    for size, matches in mapping)


def _is_solution(mapping: List) -> bool:
    """Every output element matched by exactly one input, no input used twice."""
    for _, matches in mapping:
        if any(len(m) != 1 for m in matches):
            return False
        if len(set().union(*matches)) != len(matches):
            return False
    return True


def _intersect_mappings(a: List, b: List) -> Optional[List]:
    result = []
    for (size, matches_a), (_, matches_b) in zip(a, b):
        matches = []
        for ma, mb in zip(matches_a, matches_b):
            m = ma & mb
            if not m:
                return None
            matches.append(m)
        result.append((size, matches))
    return result

