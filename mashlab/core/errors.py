"""Exception types raised by the analysis pipeline."""


class AnalysisError(Exception):
    """Base class for per-file analysis failures."""


class ExtractionError(AnalysisError):
    """The extraction function raised inside a worker."""


class AnalysisTimeoutError(AnalysisError, TimeoutError):
    """A file did not finish analysis before its deadline."""

    def __init__(self, filename: str, timeout: float) -> None:
        super().__init__(f"Analysis timed out after {timeout:.0f}s: {filename}")
        self.filename = filename
        self.timeout = timeout


class WorkerCrashError(AnalysisError, RuntimeError):
    """The execution context died while running a task."""


class PoolUnavailableError(AnalysisError, RuntimeError):
    """No healthy execution context is left to run tasks."""


class InvalidResultError(AnalysisError, ValueError):
    """An extraction result failed validation (BPM range or key)."""


class InsufficientTracksError(ValueError):
    """Too few usable tracks to build a set."""
