"""Fatal load errors. Retryable store failures live in snbloader.neo.session."""

from pathlib import Path
from typing import Union

from ..neo.session import StoreError


class MalformedLineError(ValueError):
    """A data line could not be turned into a graph mutation."""

    def __init__(
        self,
        path: Union[str, Path],
        line_number: int,
        column: str,
        value: str,
        line: str,
        reason: str,
    ):
        self.path = Path(path)
        self.line_number = line_number
        self.column = column
        self.value = value
        self.line = line
        self.reason = reason
        super().__init__(
            f"Error processing field {column} with value {value!r} at line "
            f"{line_number} of file {self.path.name}: {reason}. Line: \"{line}\""
        )


class DataFileError(RuntimeError):
    """Opening, reading or closing a dataset file failed."""

    def __init__(self, path: Union[str, Path], operation: str, reason: str = ""):
        self.path = Path(path)
        self.operation = operation
        message = f"Encountered error during {operation} of file {self.path.name}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class BatchCommitError(StoreError):
    """The store rejected a batch for a reason other than a conflict or timeout."""

    def __init__(
        self,
        path: Union[str, Path],
        first_line_number: int,
        last_line_number: int,
        reason: str,
    ):
        self.path = Path(path)
        self.first_line_number = first_line_number
        self.last_line_number = last_line_number
        self.reason = reason
        super().__init__(
            f"Encountered error committing lines in range "
            f"[{first_line_number}, {last_line_number}] of file {self.path.name}: "
            f"{reason}"
        )


class LoadAborted(RuntimeError):
    """Raised in the main thread when any worker hit a fatal error."""
