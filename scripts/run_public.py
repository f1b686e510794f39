#!/usr/bin/env python3
"""
Run the synthesizer on an ARC challenges file and generate predictions.json.

Produces:
- predictions.json (one attempt per test input)
- receipts.jsonl (one record per task)

Usage:
    python scripts/run_public.py --dataset=data/arc-agi_evaluation_challenges.json --output=runs/eval
    python scripts/run_public.py --dataset=data/arc-agi_training_challenges.json --limit=20 --timeout=5
"""

import sys
import json
import time
import logging
import argparse
from pathlib import Path
from datetime import datetime

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from arc_synth import (
    ArcPuzzle, SolverOptions,
    solve_puzzle,
    task_sha, program_sha, log_receipt
)

logger = logging.getLogger('run_public')


def run_public(dataset_path: str, output_dir: str, limit: int = None, timeout: float = None,
               verbose: bool = True):
    """
    Run the synthesizer on a challenges file and write predictions.json.

    Args:
        dataset_path: Path to challenges JSON file
        output_dir: Output directory for predictions and receipts
        limit: Only process the first N tasks
        timeout: Per-solver wall clock budget in seconds
        verbose: Log progress messages

    Returns:
        (solved_count, total_count)
    """
    Path(output_dir).mkdir(parents=True, exist_ok=True)

    with open(dataset_path) as f:
        challenges = json.load(f)

    tasks = list(challenges.items())
    if limit is not None:
        tasks = tasks[:limit]

    options = SolverOptions() if timeout is None else SolverOptions(timeout=timeout)
    predictions = {}
    solved_count = 0
    total_count = len(tasks)

    if verbose:
        logger.info("=" * 70)
        logger.info("arc-synth")
        logger.info("Dataset: %s", dataset_path)
        logger.info("Output: %s", output_dir)
        logger.info("Tasks: %d", total_count)
        logger.info("=" * 70)

    for idx, (task_id, task_data) in enumerate(tasks, 1):
        puzzle = ArcPuzzle.from_json(task_id, task_data)

        start = time.perf_counter()
        solved = solve_puzzle(puzzle, options=options)
        timing_ms = int(1000 * (time.perf_counter() - start))

        if solved:
            solved_count += 1

        # Fall back to the test input when no solution was produced
        predictions[task_id] = [
            (sample.solution if sample.solution is not None else sample.input).to_list()
            for sample in puzzle.test
        ]

        decomposers = [puzzle.decomposer_input, puzzle.decomposer_output]
        receipt = {
            "task": task_id,
            "status": puzzle.state,
            "train_solved": solved,
            "decomposers": [d.to_dict() if d is not None else None for d in decomposers],
            "timing_ms": timing_ms,
            "hashes": {
                "task_sha": task_sha([(s.input, s.output) for s in puzzle.train]),
                "program_sha": program_sha(decomposers) if solved else ""
            }
        }
        log_receipt(receipt, out_dir=output_dir)

        if verbose and (idx % 10 == 0 or solved):
            progress_pct = 100 * idx / total_count
            logger.info("[%d/%d] (%.1f%%) %s: %s - Solved: %d",
                        idx, total_count, progress_pct, task_id, puzzle.state, solved_count)

    predictions_path = Path(output_dir) / "predictions.json"
    with open(predictions_path, "w") as f:
        json.dump(predictions, f, indent=2)

    if verbose:
        logger.info("=" * 70)
        logger.info("COMPLETE: Solved %d/%d (%.1f%%)", solved_count, total_count,
                    100 * solved_count / total_count if total_count else 0)
        logger.info("Predictions: %s", predictions_path)
        logger.info("Receipts: %s", Path(output_dir) / 'receipts.jsonl')
        logger.info("=" * 70)

    return solved_count, total_count


def main():
    parser = argparse.ArgumentParser(description="Run arc-synth on an ARC challenges file")
    parser.add_argument(
        "--dataset",
        type=str,
        default="data/arc-agi_evaluation_challenges.json",
        help="Path to challenges JSON file"
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output directory (default: runs/YYYY-MM-DD)"
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Only process the first N tasks"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-solver wall clock budget in seconds"
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress progress messages"
    )

    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING if args.quiet else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.output is None:
        date_str = datetime.now().strftime("%Y-%m-%d")
        output_dir = f"runs/{date_str}"
    else:
        output_dir = args.output

    solved, total = run_public(args.dataset, output_dir, limit=args.limit, timeout=args.timeout,
                               verbose=not args.quiet)

    # Exit code: 0 if solved > 0, 1 otherwise
    sys.exit(0 if solved > 0 else 1)


if __name__ == "__main__":
    main()
