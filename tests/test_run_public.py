"""
CLI runner on a one-task challenges file.
"""

import sys
import os
import json
import importlib.util

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

SCRIPT = os.path.join(os.path.dirname(__file__), '..', 'scripts', 'run_public.py')


def load_runner():
    found = importlib.util.spec_from_file_location('run_public', SCRIPT)
    module = importlib.util.module_from_spec(found)
    found.loader.exec_module(module)
    return module


def test_run_public_writes_predictions_and_receipts(tmp_path):
    """
    Test: one identity task goes through the runner.

    Verify:
    - predictions.json holds one prediction per test input
    - receipts.jsonl holds one receipt with task hash and status
    """
    dataset = tmp_path / 'challenges.json'
    dataset.write_text(json.dumps({
        'identity': {
            'train': [
                {'input': [[1, 0], [0, 1]], 'output': [[1, 0], [0, 1]]},
                {'input': [[2, 2], [0, 3]], 'output': [[2, 2], [0, 3]]},
            ],
            'test': [{'input': [[4, 0], [0, 5]]}],
        },
    }))
    out = tmp_path / 'run'

    runner = load_runner()
    solved, total = runner.run_public(str(dataset), str(out), timeout=30.0, verbose=False)
    assert total == 1
    assert solved in (0, 1)

    predictions = json.loads((out / 'predictions.json').read_text())
    assert list(predictions) == ['identity']
    assert len(predictions['identity']) == 1

    receipts = [json.loads(line) for line in (out / 'receipts.jsonl').read_text().splitlines()]
    assert len(receipts) == 1
    assert receipts[0]['task'] == 'identity'
    assert len(receipts[0]['hashes']['task_sha']) == 64
    assert receipts[0]['status'] is not None
