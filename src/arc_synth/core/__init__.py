"""
Solver core: samples, cancellation, table analysis and function search.
"""

from .cancellation import CancellationToken
from .sample import Sample
from .solver import DualFunction, GridTable, MappingSubSolver, Solver, SubFunctions, dual_function_key
from .table_analysis import ColumnDescription, TableAnalysis

__all__ = [
    'CancellationToken', 'Sample', 'DualFunction', 'GridTable', 'MappingSubSolver', 'Solver', 'SubFunctions',
    'dual_function_key', 'ColumnDescription', 'TableAnalysis',
]
