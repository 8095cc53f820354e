class MeshError(Exception):
    """Base class for orchestration failures surfaced to callers"""


class MeshBusyError(MeshError):
    def __init__(self, message: str = "Already processing a request"):
        super().__init__(message)


class PlanningError(MeshError):
    """The planner could not produce an execution plan"""


class StorageError(MeshError):
    """A write to the persistent record store failed"""


class ToolExecutionError(MeshError):
    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class ToolParameterError(ToolExecutionError):
    """Arguments did not satisfy the tool's input schema"""
