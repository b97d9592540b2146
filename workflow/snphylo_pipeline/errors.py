from __future__ import annotations

from typing import Optional, Sequence


class PipelineError(RuntimeError):
    """Base class for every failure that aborts a pipeline run."""


class InputFileError(PipelineError):
    """Raised when a genotype file is missing, empty or too small."""


class ToolError(PipelineError):
    """Raised when an external program exits with a non-zero status."""

    def __init__(self, message: str, *, cmd: Optional[Sequence[str]] = None, returncode: Optional[int] = None):
        super().__init__(message)
        self.cmd = list(cmd) if cmd is not None else []
        self.returncode = returncode


class ToolNotFoundError(ToolError):
    """Raised when an executable or helper script cannot be located."""


class SequenceLengthError(PipelineError):
    """Raised when the generated SNP sequence is too short or too long."""

    def __init__(self, message: str, *, length: int):
        super().__init__(message)
        self.length = length


class OutgroupNotFoundError(PipelineError):
    """Raised when the requested outgroup is absent from the alignment."""
