from .launcher import SandboxLauncher
from .types import ExecutionOutcome, ExecutionRequest, OutcomeKind, SandboxProcess, Workspace

__all__ = [
    "ExecutionOutcome",
    "ExecutionRequest",
    "OutcomeKind",
    "SandboxLauncher",
    "SandboxProcess",
    "Workspace",
]
