"""
Cooperative cancellation for the solver tree.

A token holds an optional monotonic deadline and a step-fuel budget. Search
loops call check() at their checkpoints; a sub-solver token also checks its
parent, so expiring the root stops the whole tree.
"""

import time
from typing import Optional

from ..errors import SolverTimeout


class CancellationToken:

    def __init__(self, timeout: Optional[float] = None, fuel: Optional[int] = None,
                 parent: Optional['CancellationToken'] = None):
        self.deadline = time.monotonic() + timeout if timeout is not None else None
        self.fuel = fuel
        self.parent = parent
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def child(self) -> 'CancellationToken':
        """Token without its own budget that expires with this one."""
        return CancellationToken(parent=self)

    def expired(self) -> bool:
        if self.cancelled:
            return True
        if self.deadline is not None and time.monotonic() > self.deadline:
            return True
        if self.fuel is not None and self.fuel < 0:
            return True
        return self.parent is not None and self.parent.expired()

    def check(self) -> None:
        """Consume one step of fuel along the chain; raise SolverTimeout when expired."""
        token = self
        while token is not None:
            if token.fuel is not None:
                token.fuel -= 1
            token = token.parent
        if self.expired():
            raise SolverTimeout('Solver timeout !')
