# Ingestion pipeline: discovery, partitioning, transformation and commit
from .errors import BatchCommitError, DataFileError, LoadAborted, MalformedLineError
from .loader import GraphLoader
from .work import LoadPhase, LoadRole, WorkUnit, discover_work_units

__all__ = [
    "BatchCommitError",
    "DataFileError",
    "GraphLoader",
    "LoadAborted",
    "LoadPhase",
    "LoadRole",
    "MalformedLineError",
    "WorkUnit",
    "discover_work_units",
]
