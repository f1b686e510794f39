"""
Utility functions for arc-synth.
"""

import json
import hashlib
from pathlib import Path
from datetime import datetime
from typing import List, Dict, Iterable, Callable, Optional, TypeVar

import numpy as np

X = TypeVar('X')


# ==============================================================================
# Bitmasks (one bit per active sample)
# ==============================================================================

def count_bits(n: int) -> int:
    """Number of set bits of a non-negative bitmask."""
    return bin(n).count('1')


def booleans_to_bitfield(values: Iterable) -> int:
    """Bit i is set when values[i] is truthy."""
    result = 0
    for i, v in enumerate(values):
        if v:
            result |= 1 << i
    return result


def bitfield_to_string(bitfield: int, width: int) -> str:
    """Low bit first, for logging."""
    return ''.join('1' if (bitfield >> i) & 1 else '0' for i in range(width))


# ==============================================================================
# Ordered collections
# ==============================================================================

def unique(values: Iterable[X]) -> List[X]:
    """Distinct values in first-occurrence order."""
    return list(dict.fromkeys(values))


def highest(objs: Iterable[X], func: Callable[[X], float]) -> Optional[X]:
    """First element with the strictly highest score."""
    best_value = float('-inf')
    best = None
    for x in objs:
        value = func(x)
        if value > best_value:
            best_value = value
            best = x
    return best


def make_permutations(n: int) -> List[List[int]]:
    """All permutations of range(n), n-1 inserted at each position of the n-1 set."""
    if n < 1:
        return []
    if n == 1:
        return [[0]]
    result = []
    base = make_permutations(n - 1)
    for i in range(n):
        for elem in base:
            result.append(elem[:i] + [n - 1] + elem[i:])
    return result


def normalize_value(value):
    """Integral floats compare and print as ints."""
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, bool):
        return int(value)
    return value


def safe_ratio(a: float, b: float) -> float:
    """a / b, defined as 0 for an empty denominator."""
    return a / b if b else 0


# ==============================================================================
# Hash functions for receipts
# ==============================================================================

def task_sha(train_pairs: List) -> str:
    """
    Compute SHA-256 hash of train pairs for task identification.

    Args:
        train_pairs: List of (input, output) grids

    Returns:
        Hex string of SHA-256 hash
    """
    payload = {"train": [{"in": x.to_list(), "out": y.to_list()} for x, y in train_pairs]}
    return hashlib.sha256(json.dumps(payload, sort_keys=True).encode()).hexdigest()


def program_sha(decomposers: List) -> str:
    """
    Compute SHA-256 hash of the decomposer pair that solved a task.

    Args:
        decomposers: List of Decomposer nodes (None entries allowed)

    Returns:
        Hex string of SHA-256 hash
    """
    payload = [d.to_dict() if d is not None else None for d in decomposers]
    return hashlib.sha256(json.dumps(payload, sort_keys=True).encode()).hexdigest()


# ==============================================================================
# Receipt logging
# ==============================================================================

def log_receipt(record: Dict, out_dir: str = None) -> None:
    """
    Write receipt record to JSONL file.

    Args:
        record: Dictionary with receipt data
        out_dir: Output directory (default: runs/YYYY-MM-DD)
    """
    if out_dir is None:
        date_str = datetime.now().strftime("%Y-%m-%d")
        out_dir = f"runs/{date_str}"

    Path(out_dir).mkdir(parents=True, exist_ok=True)
    receipt_path = Path(out_dir) / "receipts.jsonl"

    with open(receipt_path, "a") as f:
        f.write(json.dumps(record, sort_keys=True) + "\n")
