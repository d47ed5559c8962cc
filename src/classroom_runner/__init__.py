from .execution.docker_launcher import DockerLauncher
from .execution.errors import (
    CapacityError,
    LaunchFailure,
    RunnerError,
    StorageFailure,
    UnsupportedLanguageError,
    ValidationError,
)
from .execution.local_launcher import LocalLauncher
from .execution.types import ExecutionOutcome, OutcomeKind
from .languages import DEFAULT_REGISTRY, LanguageProfile, LanguageRegistry
from .policy import SandboxPolicy, ServerSettings
from .runner import CodeRunner, run_code

__all__ = [
    "CapacityError",
    "CodeRunner",
    "DEFAULT_REGISTRY",
    "DockerLauncher",
    "ExecutionOutcome",
    "LanguageProfile",
    "LanguageRegistry",
    "LaunchFailure",
    "LocalLauncher",
    "OutcomeKind",
    "RunnerError",
    "SandboxPolicy",
    "ServerSettings",
    "StorageFailure",
    "UnsupportedLanguageError",
    "ValidationError",
    "run_code",
]
