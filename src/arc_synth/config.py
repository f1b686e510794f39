"""
Search limits and solver options.
"""

from dataclasses import dataclass, replace as _replace


# Per-solver wall clock budget (seconds)
DEFAULT_TIMEOUT_S = 10.0

# Cooperative checkpoints allowed per solver tree before aborting
DEFAULT_STEP_FUEL = 5_000_000

# compute_boolean_functions checks for cancellation every N candidates
BOOLEAN_TABLE_CHECK_PERIOD = 1000

# Decision trees
DECISION_TREE_MAX_STEPS = 100
DECISION_TREE_MAX_DEPTH = 4
DECISION_TREE_ROOTS = 4

# A value mapping is rejected when its domain covers this share of samples
MAPPING_MAX_RATIO = 0.7

# Constants are only tried when the target takes fewer distinct values
CONSTANT_CANDIDATES_MAX = 12

# Boolean selectors are refined by at most this many AND rounds
SELECTOR_ROUNDS = 3

# Table analysis
TABLE_ANALYSIS_MAX_DEPTH = 4
TABLE_ANALYSIS_MAX_COMPARISONS = 500

# Sub-image collections larger than this are not modelled
MAX_SUB_IMAGES = 30

# Output collections up to this size may be rebuilt element by element
MAX_CONSTANT_SUB_IMAGES = 10

# Grid search over sub-image permutations is limited to small collections
MAX_PERMUTED_SUB_IMAGES = 4

# Abstraction part search
ABSTRACTION_MAX_RETRIES = 100

# Rasterizer
RASTERIZER_RADIUS = 2
RASTERIZER_MAX_ATTEMPTS = 10
RASTERIZER_MAX_LAYERS = 3

# Deepest supported nesting of sub-image generations
MAX_GENERATIONS = 8


@dataclass(frozen=True)
class SolverOptions:
    """
    Switches controlling which search strategies a Solver uses.

    - no_mapping: skip value-keyed lookup tables
    - no_same_check: skip the identity-on-input shortcut
    - no_decision_tree: skip decision tree composition
    - no_equal: skip pairwise equality predicates
    - no_sub_table_analysis: skip table analysis in sub-solvers
    - timeout: wall clock budget in seconds (None = unlimited)
    """
    no_mapping: bool = False
    no_same_check: bool = False
    no_decision_tree: bool = False
    no_equal: bool = False
    no_sub_table_analysis: bool = False
    timeout: float = DEFAULT_TIMEOUT_S
    step_fuel: int = DEFAULT_STEP_FUEL

    def replace(self, **changes) -> 'SolverOptions':
        return _replace(self, **changes)
