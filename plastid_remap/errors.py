"""Exceptions raised by the pipeline.

Every error here is fatal: the command line entry point logs the message and
exits with a non-zero status.
"""


class PipelineError(Exception):
    """Base class for unrecoverable pipeline failures."""


class InputConflictError(PipelineError):
    """Both FASTQ and accession inputs were supplied."""


class MissingInputError(PipelineError):
    """No usable read input was supplied."""


class ToolNotFoundError(PipelineError):
    """An external executable could not be resolved."""


class UnsupportedVersionError(PipelineError):
    """An external tool is older than the pipeline supports."""


class DependencyMissingError(PipelineError):
    """A file required by an external tool is absent."""


class InvalidOptionError(PipelineError):
    """A runtime option outside the permitted set was passed through."""


class ToolExecutionError(PipelineError):
    """An external process exited with a non-zero status."""

    def __init__(self, tool: str, returncode: int, stderr: str):
        self.tool = tool
        self.returncode = returncode
        self.stderr = stderr
        message = f"{tool} exited with status {returncode}"
        if stderr.strip():
            message += f":\n{stderr.strip()}"
        super().__init__(message)
