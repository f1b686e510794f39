"""
Exception taxonomy.

- CantBuild*Function: expected, recoverable. Carries the unmet function so
  callers can expose a new argument and retry.
- DecompositionError: a grid does not have the shape a decomposer assumes.
- FunctionEvaluationError: unexpected failure inside a tracked function,
  rewrapped with path/image/indices for diagnosis.
- TableAnalysisError: relational column search exceeded its budget.
- SolverError: structural failure while fitting or rebuilding.
- SolverTimeout: hard cancellation; never swallowed.
"""


class ArcSynthError(Exception):
    """Base class for all arc-synth errors."""


class CantBuildFunction(ArcSynthError):
    kind = 'generic'

    def __init__(self, function):
        self.function = function
        super().__init__(f"Can't build {self.kind} function: {function.path}")


class CantBuildNumberFunction(CantBuildFunction):
    kind = 'number'


class CantBuildColorFunction(CantBuildFunction):
    kind = 'color'


class CantBuildGridFunction(CantBuildFunction):
    kind = 'grid'


class DecompositionError(ArcSynthError):
    pass


class FunctionEvaluationError(ArcSynthError):

    def __init__(self, path: str, image, indices, cause: Exception):
        self.path = path
        self.image = image
        self.indices = tuple(indices)
        self.cause = cause
        image_key = getattr(image, 'key', type(image).__name__)
        super().__init__(
            f"Error while evaluating {path} on {image_key} "
            f"with indices {list(self.indices)}: {cause}"
        )


class TableAnalysisError(ArcSynthError):
    pass


class SolverError(ArcSynthError):
    pass


class SolverTimeout(ArcSynthError):
    pass
