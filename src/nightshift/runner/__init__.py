from nightshift.runner.engine import (
    RunnerAlreadyActiveError,
    RunnerEngine,
    RunResult,
    WorkingTreeError,
)
from nightshift.runner.log import RunnerLog
from nightshift.runner.process import CancellationRequested, CancellationToken, ProcessSupervisor
from nightshift.runner.state import RunnerStateChannel, RunnerStateSnapshot
from nightshift.runner.transitions import TransitionDecision, TransitionError, TransitionPolicy

__all__ = [
    "CancellationRequested",
    "CancellationToken",
    "ProcessSupervisor",
    "RunResult",
    "RunnerAlreadyActiveError",
    "RunnerEngine",
    "RunnerLog",
    "RunnerStateChannel",
    "RunnerStateSnapshot",
    "TransitionDecision",
    "TransitionError",
    "TransitionPolicy",
]
