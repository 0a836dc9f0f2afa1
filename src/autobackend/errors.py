"""Exception hierarchy raised by the generation pipeline."""

from __future__ import annotations

from typing import Any, Iterable


class AutoBackendError(Exception):
    """Base class for every error raised by :mod:`autobackend`."""


class VendorTimeoutError(AutoBackendError):
    def __init__(self, timeout: float, attempts: int) -> None:
        super().__init__(f"Vendor request timed out after {attempts} attempt(s), over {timeout} s.")
        self.timeout = timeout
        self.attempts = attempts


class FunctionCallingError(AutoBackendError):
    def __init__(self, source: str, reason: str = "") -> None:
        message = f"Failed to function calling in the {source} step"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.source = source
        self.reason = reason


class PhaseFailedError(AutoBackendError):
    def __init__(self, phase: str, cause: BaseException | str, artifact: Any = None) -> None:
        super().__init__(f"Phase '{phase}' failed: {cause}")
        self.phase = phase
        self.cause = cause
        # last draft, when the phase got far enough to produce one
        self.artifact = artifact


class CompilerCrashError(PhaseFailedError):
    """The compiler of a phase raised instead of reporting diagnostics."""

    def __init__(self, phase: str, cause: BaseException | str, artifact: Any = None) -> None:
        super().__init__(phase, f"compiler raised an unexpected exception: {cause}", artifact)


class PrerequisiteError(AutoBackendError):
    def __init__(self, phase: str, missing: Iterable[str]) -> None:
        self.phase = phase
        self.missing = list(missing)
        super().__init__(
            f"Phase '{phase}' requires fresh artifacts from: {', '.join(self.missing)}"
        )


class PipelineCancelledError(AutoBackendError):
    def __init__(self, source: str = "") -> None:
        super().__init__(f"Pipeline cancelled{f' during {source}' if source else ''}.")
        self.source = source


__all__ = [
    "AutoBackendError",
    "CompilerCrashError",
    "FunctionCallingError",
    "PhaseFailedError",
    "PipelineCancelledError",
    "PrerequisiteError",
    "VendorTimeoutError",
]
